"""Utility functions for pys3sync."""

import hashlib
import re
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import BinaryIO, Optional, TypeVar

T = TypeVar("T")

# =============================================================================
# Constants for sync operations
# =============================================================================

# Number of worker threads used for classification and uploads
DEFAULT_MAX_WORKERS: int = 8

# S3 accepts at most 1000 keys per DeleteObjects request
S3_DELETE_BATCH_LIMIT: int = 1000

# CloudFront accepts at most 3000 paths per invalidation batch
CLOUDFRONT_PATH_LIMIT: int = 3000

# Custom metadata key holding the MD5 of the uncompressed content
CONTENT_MD5_KEY: str = "content-md5"

# Read size used when hashing local files (1 MB)
HASH_CHUNK_SIZE: int = 1024 * 1024

# Content type used when nothing better can be determined
DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

GZIP_SUFFIX: str = ".gz"


# =============================================================================
# Content fingerprint utilities
# =============================================================================


def file_md5(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Calculate the hex MD5 digest of a file's bytes.

    Args:
        path: File to hash
        chunk_size: Number of bytes read per iteration

    Returns:
        Lowercase hex digest
    """
    with open(path, "rb") as f:
        return stream_md5(f, chunk_size)


def stream_md5(stream: BinaryIO, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Calculate the hex MD5 digest of everything left in a byte stream."""
    digest = hashlib.md5()
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        digest.update(chunk)
    return digest.hexdigest()


def bytes_md5(data: bytes) -> str:
    """Calculate the hex MD5 digest of an in-memory body."""
    return hashlib.md5(data).hexdigest()


def normalize_etag(etag: Optional[str]) -> Optional[str]:
    """Normalize an S3 ETag for comparison with a local MD5.

    S3 returns ETags wrapped in double quotes, and some S3-compatible
    stores prefix weak validators with ``W/``.

    Args:
        etag: Raw ETag value as returned by the store

    Returns:
        Lowercase bare digest, or None if no ETag is available

    Examples:
        >>> normalize_etag('"d41d8cd98f00b204e9800998ecf8427e"')
        'd41d8cd98f00b204e9800998ecf8427e'
        >>> normalize_etag('W/"ABC"')
        'abc'
    """
    if not etag:
        return None
    value = etag.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"').lower()


# =============================================================================
# Path utilities
# =============================================================================


_REPEATED_SLASHES = re.compile(r"/+")


def normalize_cdn_path(path: str) -> str:
    """Normalize a path for CloudFront.

    Ensures a single leading slash and collapses repeated slashes.

    Examples:
        >>> normalize_cdn_path("blog//index.html")
        '/blog/index.html'
        >>> normalize_cdn_path("/x")
        '/x'
    """
    return _REPEATED_SLASHES.sub("/", f"/{path}")


def normalize_prefix(prefix: Optional[str]) -> str:
    """Normalize a key prefix to either ``""`` or ``"some/prefix/"``.

    Examples:
        >>> normalize_prefix("site")
        'site/'
        >>> normalize_prefix("/site/")
        'site/'
        >>> normalize_prefix(None)
        ''
    """
    if not prefix:
        return ""
    stripped = prefix.strip("/")
    return f"{stripped}/" if stripped else ""


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split a sequence into consecutive lists of at most ``size`` items.

    Examples:
        >>> [len(c) for c in chunked(list(range(2500)), 1000)]
        [1000, 1000, 500]
    """
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
