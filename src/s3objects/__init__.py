"""
s3objects - object operations for S3-compatible storage
"""

__version__ = "0.1.0"

from .client import S3Client
from .object import S3Object
from .reader import ChunkedFileReader
from .multipart import (
    MultipartUploadCoordinator,
    InitiateOptions,
    PutPartOptions,
    UploadState,
)
from .models import (
    ObjectMetadata,
    StorageClass,
    CannedAcl,
    RestoreTier,
    PutObjectResult,
    PartResult,
    CompleteMultipartUploadResult,
    MultipartUpload,
    PresignedUrlResult,
)
from .error import (
    S3ObjectsException,
    CorruptedDownloadException,
    UploadException,
    RequestException,
    ObjectNotFoundException,
    AccessDeniedException,
    ProtocolException,
    ContractViolationException,
)

__all__ = [
    "S3Client",
    "S3Object",
    "ChunkedFileReader",
    "MultipartUploadCoordinator",
    "InitiateOptions",
    "PutPartOptions",
    "UploadState",
    "ObjectMetadata",
    "StorageClass",
    "CannedAcl",
    "RestoreTier",
    "PutObjectResult",
    "PartResult",
    "CompleteMultipartUploadResult",
    "MultipartUpload",
    "PresignedUrlResult",
    "S3ObjectsException",
    "CorruptedDownloadException",
    "UploadException",
    "RequestException",
    "ObjectNotFoundException",
    "AccessDeniedException",
    "ProtocolException",
    "ContractViolationException",
]
