"""
Exception classes for s3objects
"""


class S3ObjectsException(Exception):
    """
    Base exception for all s3objects errors.
    """

    def __init__(self, message: str, status_code: int = None, error_code: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class CorruptedDownloadException(S3ObjectsException):
    """Thrown when downloaded content does not match its ETag."""

    def __init__(self, bucket_name: str, object_name: str, expected: str, actual: str):
        super().__init__(
            f"Corrupted download of '{object_name}' from bucket '{bucket_name}': "
            f"expected MD5 {expected}, got {actual}.",
            error_code="CorruptedDownload"
        )
        self.expected = expected
        self.actual = actual


class UploadException(S3ObjectsException):
    """Thrown when the server rejects an upload."""

    def __init__(self, message: str, status_code: int = None, error_code: str = None, response_text: str = ""):
        super().__init__(message, status_code, error_code)
        self.response_text = response_text


class RequestException(S3ObjectsException):
    """Thrown when a request that is expected to succeed does not."""

    def __init__(self, message: str, status_code: int = None, error_code: str = None, response_text: str = ""):
        super().__init__(message, status_code, error_code)
        self.response_text = response_text


class ObjectNotFoundException(RequestException):
    """Thrown when an object is not found."""

    def __init__(self, bucket_name: str, object_name: str, response_text: str = ""):
        super().__init__(
            f"Object '{object_name}' not found in bucket '{bucket_name}'.",
            status_code=404,
            error_code="NoSuchKey",
            response_text=response_text,
        )


class AccessDeniedException(RequestException):
    """Thrown when access is denied."""

    def __init__(self, message: str, response_text: str = ""):
        super().__init__(
            message,
            status_code=403,
            error_code="AccessDenied",
            response_text=response_text,
        )


class ProtocolException(S3ObjectsException):
    """Thrown when a response lacks a field it must carry."""


class ContractViolationException(S3ObjectsException, ValueError):
    """Thrown when an operation is called with arguments it cannot accept."""
