"""Custom exceptions for pys3sync."""

from typing import Optional


class S3SyncError(Exception):
    """Base exception for all sync errors."""

    pass


class S3SyncConfigError(S3SyncError):
    """Raised when the sync configuration is invalid or incomplete."""

    pass


class S3SyncBucketNotFoundError(S3SyncError):
    """Raised when the target bucket does not exist."""

    pass


class S3SyncCapabilityUnsupportedError(S3SyncError):
    """Raised when the bucket rejects an object attribute (e.g. ACLs disabled)."""

    def __init__(self, attribute: str, message: str = ""):
        self.attribute = attribute
        super().__init__(message or f"Bucket does not support attribute: {attribute}")


class S3SyncUploadError(S3SyncError):
    """Raised when writing an object fails."""

    pass


class S3SyncDeleteError(S3SyncError):
    """Raised when deleting objects fails."""

    def __init__(self, message: str, keys: Optional[list[str]] = None):
        self.keys = keys or []
        super().__init__(message)


class S3SyncInvalidationError(S3SyncError):
    """Raised when a CloudFront invalidation request fails."""

    pass


class S3SyncRateLimitError(S3SyncInvalidationError):
    """Raised when CloudFront throttles an invalidation request."""

    pass
