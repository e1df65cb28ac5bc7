"""
Data models for s3objects
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from email.utils import parsedate_to_datetime
from enum import Enum
from types import MappingProxyType
from typing import Optional, List, Dict, Mapping, Union

from .checksum import normalize_etag
from .error import ContractViolationException

DEFAULT_CONTENT_TYPE = "binary/octet-stream"


class StorageClass(str, Enum):
    """Storage tiers accepted by PutObject."""
    STANDARD = "standard"
    REDUCED_REDUNDANCY = "reduced_redundancy"
    STANDARD_IA = "standard_ia"
    ONEZONE_IA = "onezone_ia"
    INTELLIGENT_TIERING = "intelligent_tiering"
    GLACIER = "glacier"
    DEEP_ARCHIVE = "deep_archive"

    @property
    def header_value(self) -> str:
        return self.value.upper()


class CannedAcl(str, Enum):
    """Canned ACLs that can be applied when an object is written."""
    PRIVATE = "private"
    PUBLIC_READ = "public-read"
    PUBLIC_READ_WRITE = "public-read-write"
    AWS_EXEC_READ = "aws-exec-read"
    AUTHENTICATED_READ = "authenticated-read"
    BUCKET_OWNER_READ = "bucket-owner-read"
    BUCKET_OWNER_FULL_CONTROL = "bucket-owner-full-control"
    LOG_DELIVERY_WRITE = "log-delivery-write"


class RestoreTier(str, Enum):
    """Retrieval tiers for restoring archived objects."""
    EXPEDITED = "Expedited"
    STANDARD = "Standard"
    BULK = "Bulk"


def coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value.lower() == value.strip().lower():
                return member
    allowed = ", ".join(member.value for member in enum_cls)
    raise ContractViolationException(f"Invalid {field_name} '{value}'; expected one of: {allowed}.")


def coerce_datetime(value: Union[datetime, str, int, float, None]) -> Optional[datetime]:
    """Turn a datetime, ISO-8601 or HTTP-date string, or epoch into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, UTC)
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError) as ex:
                raise ContractViolationException(f"Cannot parse timestamp '{value}'.") from ex
    else:
        raise ContractViolationException(f"Cannot parse timestamp '{value}'.")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def normalize_user_metadata(metadata: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Lower-case user metadata keys. When two keys fold to the same name the
    one that comes later in iteration order wins.
    """
    normalized: Dict[str, str] = {}
    for key, value in (metadata or {}).items():
        normalized[str(key).lower()] = str(value)
    return normalized


@dataclass(frozen=True)
class ObjectMetadata:
    """
    Transport-level properties of an object, validated at construction.

    ``user_metadata`` is a read-only view; use ``with_user_metadata`` to
    derive a copy with other entries.
    """
    content_type: str = DEFAULT_CONTENT_TYPE
    content_encoding: Optional[str] = None
    content_disposition: Optional[str] = None
    cache_control: Optional[str] = None
    storage_class: StorageClass = StorageClass.STANDARD
    acl_short: CannedAcl = CannedAcl.PRIVATE
    user_metadata: Mapping[str, str] = field(default_factory=dict, hash=False)
    website_redirect_location: Optional[str] = None
    encryption: Optional[str] = None
    expires: Optional[datetime] = None
    etag: Optional[str] = None
    size: Optional[int] = None
    last_modified: Optional[datetime] = None

    def __post_init__(self):
        # frozen dataclass: coerced values go through object.__setattr__
        set_ = object.__setattr__
        set_(self, "content_type", self.content_type or DEFAULT_CONTENT_TYPE)
        set_(self, "storage_class", coerce_enum(StorageClass, self.storage_class, "storage class"))
        set_(self, "acl_short", coerce_enum(CannedAcl, self.acl_short, "canned ACL"))
        set_(self, "user_metadata", MappingProxyType(normalize_user_metadata(self.user_metadata)))
        set_(self, "expires", coerce_datetime(self.expires))
        set_(self, "last_modified", coerce_datetime(self.last_modified))
        set_(self, "etag", normalize_etag(self.etag) or None)
        if self.size is not None:
            if int(self.size) < 0:
                raise ContractViolationException(f"Invalid size {self.size}.")
            set_(self, "size", int(self.size))

    def with_user_metadata(self, user_metadata: Mapping[str, str]) -> "ObjectMetadata":
        """Return a copy whose user metadata is replaced by ``user_metadata``."""
        return replace(self, user_metadata=dict(user_metadata))


@dataclass
class PutObjectResult:
    """Represents the result of a put object operation."""
    bucket_name: str
    object_name: str
    etag: Optional[str]
    version_id: Optional[str] = None


@dataclass
class PartResult:
    """A part accepted by the server for a multipart upload."""
    part_number: int
    etag: Optional[str]


@dataclass
class CompleteMultipartUploadResult:
    """Represents the result of completing a multipart upload."""
    bucket_name: str
    object_name: str
    upload_id: str
    etag: Optional[str] = None
    location: Optional[str] = None


@dataclass
class MultipartUpload:
    """An in-progress multipart upload and the parts accepted so far."""
    upload_id: str
    parts: List[PartResult] = field(default_factory=list)


@dataclass
class PresignedUrlResult:
    """Represents a presigned URL response."""
    url: str
    expires_at: datetime
