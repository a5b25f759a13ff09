"""Reconciliation unit pairing a local artifact with a remote object."""

import gzip
import logging
import mimetypes
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Optional

from botocore.exceptions import ClientError

from ..caching import BrowserCachePolicy
from ..exceptions import S3SyncCapabilityUnsupportedError, S3SyncUploadError
from ..utils import (
    CONTENT_MD5_KEY,
    DEFAULT_CONTENT_TYPE,
    file_md5,
    stream_md5,
)
from .context import RunContext
from .remote import RemoteObject, error_code
from .scanner import LocalArtifact

logger = logging.getLogger(__name__)

ACL_NOT_SUPPORTED_CODE = "AccessControlListNotSupported"
GZIP_ENCODING = "gzip"


class ResourceState(str, Enum):
    """Classification of a resource."""

    NEW = "new"
    """Exists locally only; will be created"""

    UPDATED = "updated"
    """Exists on both sides but differs; will be uploaded again"""

    IDENTICAL = "identical"
    """Exists on both sides with the same content and headers"""

    DELETED = "deleted"
    """Exists remotely only; will be deleted"""

    IGNORED = "ignored"
    """Excluded from the sync"""

    ALTERNATE_ENCODING = "alternate_encoding"
    """Compressed bytes differ but the underlying content is unchanged"""


class Resource:
    """One logical path with its optional local and remote sides.

    The classification and both hashes are computed at most once. The
    inputs never change after construction, so computing them from several
    threads concurrently yields the same values.
    """

    def __init__(
        self,
        path: str,
        local: Optional[LocalArtifact],
        remote: Optional[RemoteObject],
        context: RunContext,
    ):
        """Initialize resource.

        Args:
            path: Logical path relative to the build root
            local: Resolved local artifact, if the path exists locally
            remote: Listed remote object, if the path exists remotely
            context: Run context
        """
        self.path = path
        self.local = local
        self.remote = remote
        self.context = context
        self.options = context.options

        self._state: Optional[ResourceState] = None
        self._ignore_reason: Optional[str] = None
        self._object_hash: Optional[str] = None
        self._content_hash: Optional[str] = None
        self._remote_metadata: Optional[RemoteObject] = None
        self._remote_metadata_loaded = False

    def __repr__(self) -> str:
        return f"Resource({self.path!r}, state={self._state})"

    @property
    def remote_path(self) -> str:
        """Object key: configured prefix plus logical path."""
        return self.context.remote_path(self.path)

    @property
    def remote_metadata(self) -> Optional[RemoteObject]:
        """Remote object with full metadata (fetched on first use)."""
        if not self._remote_metadata_loaded:
            if self.remote is not None:
                self._remote_metadata = self.context.remote_index.metadata_for(
                    self.remote
                )
            self._remote_metadata_loaded = True
        return self._remote_metadata

    @property
    def ignore_reason(self) -> Optional[str]:
        self.classify()
        return self._ignore_reason

    # =========================================================================
    # Hashes
    # =========================================================================

    def _compute_hashes(self) -> None:
        assert self.local is not None
        if not self.local.is_compressed:
            with self.local.open() as stream:
                digest = stream_md5(stream)
            self._object_hash = digest
            self._content_hash = digest
            return

        self._object_hash = file_md5(self.local.disk_path)
        if self.local.source_path.is_file():
            self._content_hash = file_md5(self.local.source_path)
        else:
            # Only the compressed file exists; hash its decompressed stream
            with gzip.open(self.local.disk_path, "rb") as f:
                self._content_hash = stream_md5(f)

    @property
    def object_hash(self) -> str:
        """MD5 of exactly the bytes that would be uploaded."""
        if self._object_hash is None:
            self._compute_hashes()
        assert self._object_hash is not None
        return self._object_hash

    @property
    def content_hash(self) -> str:
        """MD5 of the uncompressed content."""
        if self._content_hash is None:
            self._compute_hashes()
        assert self._content_hash is not None
        return self._content_hash

    # =========================================================================
    # Derived attributes
    # =========================================================================

    @property
    def content_type(self) -> str:
        """Resolve the content type for the upload.

        Priority: explicit override for the path, override for the
        extension, type declared by the generator, guess from the
        extension, generic binary.
        """
        overrides = self.options.content_types
        if self.path in overrides:
            return overrides[self.path]

        suffix = PurePosixPath(self.path).suffix.lower()
        if suffix and suffix in overrides:
            return overrides[suffix]

        if self.local is not None and self.local.declared_content_type:
            return self.local.declared_content_type

        guessed, _ = mimetypes.guess_type(self.path, strict=False)
        return guessed or DEFAULT_CONTENT_TYPE

    @property
    def caching_policy(self) -> Optional[BrowserCachePolicy]:
        return self.options.caching_policy_for(self.content_type)

    @property
    def cache_control(self) -> Optional[str]:
        policy = self.caching_policy
        return policy.cache_control if policy else None

    @property
    def redirect_target(self) -> Optional[str]:
        return self.local.redirect_target if self.local is not None else None

    @property
    def is_compressed(self) -> bool:
        return self.local is not None and self.local.is_compressed

    def _local_is_directory(self) -> bool:
        if self.local is not None:
            return self.local.disk_path.is_dir()
        return self.context.scanner.is_directory(self.path)

    # =========================================================================
    # Classification
    # =========================================================================

    def classify(self) -> ResourceState:
        """Classify this resource (memoized)."""
        if self._state is None:
            self._state = self._classify()
            logger.debug(f"{self.path}: {self._state.value}")
        return self._state

    @property
    def state(self) -> ResourceState:
        return self.classify()

    def _ignored(self, reason: str) -> ResourceState:
        self._ignore_reason = reason
        return ResourceState.IGNORED

    def _classify(self) -> ResourceState:
        if self.context.ignore_rules.is_ignored(self.path):
            return self._ignored("ignored")

        if self._local_is_directory():
            if self.remote is None:
                return self._ignored("directory")
            return ResourceState.DELETED

        if self.local is None:
            if self.remote is None:
                return self._ignored("ignored")
            remote = self.remote_metadata
            if remote is None:
                # Listed but gone by the time we looked at it
                return self._ignored("ignored")
            if remote.is_redirect:
                return self._ignored("redirect")
            return ResourceState.DELETED

        if self.remote is None:
            return ResourceState.NEW

        remote = self.remote_metadata
        if remote is None:
            return ResourceState.NEW

        return self._compare(remote)

    def _compare(self, remote: RemoteObject) -> ResourceState:
        if self.options.force:
            return ResourceState.UPDATED

        if (self.redirect_target or None) != (remote.redirect_target or None):
            return ResourceState.UPDATED

        if (self.cache_control or None) != (remote.cache_control or None):
            return ResourceState.UPDATED

        if self.object_hash == remote.etag:
            return ResourceState.IDENTICAL

        if not self.is_compressed:
            return ResourceState.UPDATED

        if remote.content_encoding != GZIP_ENCODING:
            return ResourceState.UPDATED
        if self.content_hash != remote.content_hash_tag:
            return ResourceState.UPDATED

        self._ignore_reason = "alternate encoding"
        return ResourceState.ALTERNATE_ENCODING

    def to_create(self) -> bool:
        return self.classify() == ResourceState.NEW

    def to_update(self) -> bool:
        return self.classify() == ResourceState.UPDATED

    def to_delete(self) -> bool:
        return self.classify() == ResourceState.DELETED

    def to_ignore(self) -> bool:
        return self.classify() in (
            ResourceState.IGNORED,
            ResourceState.ALTERNATE_ENCODING,
        )

    def identical(self) -> bool:
        return self.classify() == ResourceState.IDENTICAL

    # =========================================================================
    # Write attributes
    # =========================================================================

    def upload_attributes(self, include_acl: Optional[bool] = None) -> dict[str, Any]:
        """Build PutObject keyword arguments (without the body).

        Args:
            include_acl: Send the configured ACL; defaults to whether ACLs
                are currently enabled

        Returns:
            Keyword arguments for ``put_object``
        """
        if include_acl is None:
            include_acl = self.options.acl_enabled

        attributes: dict[str, Any] = {
            "Bucket": self.context.bucket,
            "Key": self.remote_path,
            "ContentType": self.content_type,
            "Metadata": {CONTENT_MD5_KEY: self.content_hash},
        }

        policy = self.caching_policy
        if policy is not None:
            if policy.cache_control:
                attributes["CacheControl"] = policy.cache_control
            if policy.expires is not None:
                attributes["Expires"] = policy.expires

        if self.is_compressed:
            attributes["ContentEncoding"] = GZIP_ENCODING
        if include_acl and self.options.acl_enabled:
            attributes["ACL"] = self.options.acl
        if self.options.reduced_redundancy_storage:
            attributes["StorageClass"] = "REDUCED_REDUNDANCY"
        if self.options.encryption:
            attributes["ServerSideEncryption"] = "AES256"
        if self.redirect_target:
            attributes["WebsiteRedirectLocation"] = self.redirect_target

        return attributes

    def to_h(self) -> dict[str, Any]:
        """Write attributes as a flat, human-readable dict."""
        policy = self.caching_policy
        attributes: dict[str, Any] = {
            "key": self.remote_path,
            "content_type": self.content_type,
            CONTENT_MD5_KEY: self.content_hash,
        }
        if self.options.acl_enabled:
            attributes["acl"] = self.options.acl
        if policy is not None:
            attributes["cache_control"] = policy.cache_control
            attributes["expires"] = policy.expires_header
        if self.is_compressed:
            attributes["content_encoding"] = GZIP_ENCODING
        if self.redirect_target:
            attributes["website-redirect-location"] = self.redirect_target
        return attributes

    def _put(self, include_acl: bool) -> None:
        assert self.local is not None
        attributes = self.upload_attributes(include_acl=include_acl)
        try:
            with self.local.open() as body:
                self.context.s3_client.put_object(Body=body, **attributes)
        except ClientError as e:
            if error_code(e) == ACL_NOT_SUPPORTED_CODE:
                raise S3SyncCapabilityUnsupportedError("ACL", str(e)) from e
            raise S3SyncUploadError(f"Failed to upload {self.remote_path}: {e}") from e

    def _write(self) -> None:
        include_acl = self.options.acl_enabled
        try:
            self._put(include_acl)
        except S3SyncCapabilityUnsupportedError:
            if not include_acl:
                raise
            self.options.disable_acl()
            self.context.output.warning(
                "Bucket does not support ACLs, retrying without ACL "
                "(ACLs disabled for the rest of this run)"
            )
            self._put(False)

    # =========================================================================
    # Actions
    # =========================================================================

    def _announce(self, verb: str, style: str) -> None:
        note = "(gzipped)" if self.is_compressed else ""
        if self.options.dry_run:
            verb = f"DRY RUN: {verb}"
        self.context.output.action(verb, self.remote_path, style, note)

    def create(self) -> None:
        """Upload a new object."""
        self._announce("Creating", "green")
        if not self.options.dry_run:
            self._write()
        self.context.add_invalidation_path(self.path)

    def update(self) -> None:
        """Upload a changed object again."""
        self._announce("Updating", "blue")
        if not self.options.dry_run:
            self._write()
        self.context.add_invalidation_path(self.path)

    def destroy(self) -> None:
        """Report a deleted object.

        The engine removes objects with bulk requests and calls this once
        the request covering this resource has succeeded.
        """
        self._announce("Deleting", "red")
        self.context.add_invalidation_path(self.path)

    def ignore(self) -> None:
        """Log why this resource is left alone (verbose only)."""
        reason = self.ignore_reason or "ignored"
        if self.options.verbose:
            self.context.output.action("Ignoring", self.remote_path, "white", f"({reason})")
        else:
            logger.debug(f"Ignoring {self.remote_path} ({reason})")
