"""pys3sync - Sync static site builds to S3 with CloudFront invalidation."""

from .caching import BrowserCachePolicy, CachingPolicyResolver
from .config import SyncOptions, load_options
from .exceptions import (
    S3SyncBucketNotFoundError,
    S3SyncCapabilityUnsupportedError,
    S3SyncConfigError,
    S3SyncDeleteError,
    S3SyncError,
    S3SyncInvalidationError,
    S3SyncRateLimitError,
    S3SyncUploadError,
)
from .sync import SyncEngine

__version__ = "0.1.0"

__all__ = [
    "SyncEngine",
    "SyncOptions",
    "load_options",
    "BrowserCachePolicy",
    "CachingPolicyResolver",
    "S3SyncError",
    "S3SyncBucketNotFoundError",
    "S3SyncCapabilityUnsupportedError",
    "S3SyncConfigError",
    "S3SyncDeleteError",
    "S3SyncInvalidationError",
    "S3SyncRateLimitError",
    "S3SyncUploadError",
]
