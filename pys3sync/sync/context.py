"""Per-run state shared by the sync components."""

import logging
import threading
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from ..config import SyncOptions
from ..exceptions import S3SyncBucketNotFoundError
from ..output import OutputFormatter
from ..utils import normalize_cdn_path
from .ignore import IgnoreRules
from .remote import NOT_FOUND_CODES, RemoteObjectIndex, error_code
from .scanner import DirectoryScanner

logger = logging.getLogger(__name__)

# CloudFront is a global service served from us-east-1
CLOUDFRONT_REGION = "us-east-1"


class InvalidationPathSet:
    """Thread-safe, deduplicating collection of CDN paths."""

    def __init__(self) -> None:
        self._paths: set[str] = set()
        self._lock = threading.Lock()

    def add(self, path: str) -> None:
        normalized = normalize_cdn_path(path)
        with self._lock:
            self._paths.add(normalized)

    def snapshot(self) -> list[str]:
        """Sorted copy of the collected paths."""
        with self._lock:
            return sorted(self._paths)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._paths

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)


class RunContext:
    """Everything one sync invocation shares between components.

    Clients, the bucket check and the remote listing are created lazily,
    each exactly once, even when first requested from several worker
    threads at the same time.
    """

    def __init__(
        self,
        options: SyncOptions,
        output: Optional[OutputFormatter] = None,
        s3_client: Any = None,
        cloudfront_client: Any = None,
    ):
        """Initialize the run context.

        Args:
            options: Sync options for this run
            output: Output formatter for status lines
            s3_client: Preconfigured S3 client (created from options if None)
            cloudfront_client: Preconfigured CloudFront client
        """
        self.options = options
        self.output = output or OutputFormatter()
        self.invalidation_paths = InvalidationPathSet()
        self.ignore_rules = IgnoreRules(options.ignore_paths)
        self.scanner = DirectoryScanner(
            options.build_dir, prefer_gzip=options.prefer_gzip
        )

        self._s3_client = s3_client
        self._cloudfront_client = cloudfront_client
        self._bucket_checked = False
        self._remote_index: Optional[RemoteObjectIndex] = None

        self._client_lock = threading.Lock()
        self._bucket_lock = threading.Lock()
        self._index_lock = threading.Lock()

    def _client_kwargs(self) -> dict[str, Any]:
        return dict(self.options.credentials())

    @property
    def s3_client(self) -> Any:
        with self._client_lock:
            if self._s3_client is None:
                addressing_style = "path" if self.options.path_style else "auto"
                kwargs = self._client_kwargs()
                if self.options.region:
                    kwargs["region_name"] = self.options.region
                if self.options.endpoint:
                    kwargs["endpoint_url"] = self.options.endpoint
                self._s3_client = boto3.client(
                    "s3",
                    config=BotoConfig(s3={"addressing_style": addressing_style}),
                    **kwargs,
                )
                logger.debug(
                    "Created S3 client (region=%s, endpoint=%s)",
                    self.options.region,
                    self.options.endpoint,
                )
            return self._s3_client

    @property
    def cloudfront_client(self) -> Any:
        with self._client_lock:
            if self._cloudfront_client is None:
                self._cloudfront_client = boto3.client(
                    "cloudfront",
                    region_name=CLOUDFRONT_REGION,
                    **self._client_kwargs(),
                )
            return self._cloudfront_client

    @property
    def bucket(self) -> str:
        """Bucket name, verified to exist on first access.

        Raises:
            S3SyncBucketNotFoundError: If the bucket does not exist
        """
        bucket = str(self.options.bucket)
        with self._bucket_lock:
            if not self._bucket_checked:
                try:
                    self.s3_client.head_bucket(Bucket=bucket)
                except ClientError as e:
                    if error_code(e) in NOT_FOUND_CODES | {"NoSuchBucket"}:
                        raise S3SyncBucketNotFoundError(
                            f"Bucket {bucket} doesn't exist!"
                        ) from e
                    raise
                self._bucket_checked = True
        return bucket

    @property
    def remote_index(self) -> RemoteObjectIndex:
        with self._index_lock:
            if self._remote_index is None:
                self._remote_index = RemoteObjectIndex(
                    self.s3_client, self.bucket, self.options.prefix
                )
            return self._remote_index

    def remote_path(self, logical_path: str) -> str:
        return f"{self.options.prefix}{logical_path}"

    def add_invalidation_path(self, logical_path: str) -> None:
        self.invalidation_paths.add(logical_path)
