"""Remote object index for the target bucket."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from botocore.exceptions import ClientError

from ..utils import CONTENT_MD5_KEY, normalize_etag

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


def error_code(error: ClientError) -> str:
    """Extract the provider error code from a botocore ClientError."""
    return str(error.response.get("Error", {}).get("Code", ""))


@dataclass(frozen=True)
class RemoteObject:
    """An object present in the bucket.

    Objects built from a listing only carry key, etag and size; objects
    built from a HEAD response also carry metadata (``has_metadata``).
    """

    key: str
    """Full object key including any prefix"""

    etag: Optional[str] = None
    """Store digest with quotes stripped"""

    size: Optional[int] = None
    content_hash_tag: Optional[str] = None
    """MD5 of the uncompressed content written by a previous sync"""

    cache_control: Optional[str] = None
    redirect_target: Optional[str] = None
    content_encoding: Optional[str] = None
    has_metadata: bool = False

    @property
    def is_redirect(self) -> bool:
        return bool(self.redirect_target)

    @classmethod
    def from_listing(cls, entry: dict[str, Any]) -> "RemoteObject":
        """Create from one ``Contents`` entry of a ListObjectsV2 page."""
        return cls(
            key=entry["Key"],
            etag=normalize_etag(entry.get("ETag")),
            size=entry.get("Size"),
        )

    @classmethod
    def from_head(cls, key: str, response: dict[str, Any]) -> "RemoteObject":
        """Create from a HeadObject response."""
        metadata = {k.lower(): v for k, v in (response.get("Metadata") or {}).items()}
        return cls(
            key=key,
            etag=normalize_etag(response.get("ETag")),
            size=response.get("ContentLength"),
            content_hash_tag=metadata.get(CONTENT_MD5_KEY),
            cache_control=response.get("CacheControl"),
            redirect_target=response.get("WebsiteRedirectLocation"),
            content_encoding=response.get("ContentEncoding"),
            has_metadata=True,
        )


class RemoteObjectIndex:
    """Maps logical paths to remote objects under the configured prefix.

    The listing is performed once per run; concurrent callers block until
    the first caller has finished enumerating. Full metadata is fetched
    per object on demand and memoized.
    """

    def __init__(self, client: Any, bucket: str, prefix: str = ""):
        """Initialize the index.

        Args:
            client: boto3 S3 client
            bucket: Bucket name
            prefix: Normalized key prefix ("" or "dir/")
        """
        self.client = client
        self.bucket = bucket
        self.prefix = prefix
        self._objects: Optional[dict[str, RemoteObject]] = None
        self._listing_lock = threading.Lock()
        self._metadata: dict[str, Optional[RemoteObject]] = {}
        self._metadata_lock = threading.Lock()

    def logical_path(self, key: str) -> str:
        if self.prefix and key.startswith(self.prefix):
            return key[len(self.prefix) :]
        return key

    @property
    def objects(self) -> dict[str, RemoteObject]:
        """Listed objects keyed by logical path."""
        with self._listing_lock:
            if self._objects is None:
                self._objects = self._list_objects()
            return self._objects

    def _list_objects(self) -> dict[str, RemoteObject]:
        start = time.time()
        objects: dict[str, RemoteObject] = {}
        paginator = self.client.get_paginator("list_objects_v2")
        params: dict[str, Any] = {"Bucket": self.bucket}
        if self.prefix:
            params["Prefix"] = self.prefix

        for page in paginator.paginate(**params):
            for entry in page.get("Contents", []) or []:
                remote = RemoteObject.from_listing(entry)
                logical_path = self.logical_path(remote.key)
                if not logical_path:
                    # The prefix "directory" marker itself
                    continue
                objects[logical_path] = remote

        logger.debug(
            "Listed %d object(s) in %s/%s in %.2fs",
            len(objects),
            self.bucket,
            self.prefix,
            time.time() - start,
        )
        return objects

    def head(self, key: str) -> Optional[RemoteObject]:
        """Fetch full metadata for an object key.

        Args:
            key: Full object key

        Returns:
            RemoteObject with metadata, or None if the object does not exist

        Raises:
            ClientError: For provider errors other than not-found
        """
        with self._metadata_lock:
            if key in self._metadata:
                return self._metadata[key]

        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
            remote: Optional[RemoteObject] = RemoteObject.from_head(key, response)
        except ClientError as e:
            if error_code(e) not in NOT_FOUND_CODES:
                raise
            logger.debug(f"HEAD {key}: not found")
            remote = None

        with self._metadata_lock:
            self._metadata.setdefault(key, remote)
            return self._metadata[key]

    def metadata_for(self, remote: RemoteObject) -> Optional[RemoteObject]:
        """Return a RemoteObject carrying metadata for a listed object."""
        if remote.has_metadata:
            return remote
        return self.head(remote.key)
