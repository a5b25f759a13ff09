"""Configuration for sync runs.

Options are read from a JSON file (``.s3_sync.json`` by default) and may be
overridden programmatically or from the command line. AWS credentials fall
back to the standard environment variables when not set explicitly.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional, Union

from .caching import BrowserCachePolicy, CachingPolicyResolver
from .exceptions import S3SyncConfigError
from .utils import (
    CLOUDFRONT_PATH_LIMIT,
    DEFAULT_MAX_WORKERS,
    normalize_prefix,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".s3_sync.json"

IgnorePattern = Union[str, re.Pattern]


@dataclass
class SyncOptions:
    """Typed configuration for a sync run."""

    bucket: Optional[str] = None
    """Target bucket name (required)"""

    region: Optional[str] = None
    endpoint: Optional[str] = None
    """Custom endpoint URL for S3-compatible stores"""

    path_style: bool = True
    """Use path-style addressing"""

    prefix: str = ""
    """Key prefix applied to every logical path ("" or "dir/")"""

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_session_token: Optional[str] = None

    build_dir: Path = Path("build")
    """Local build output root"""

    scan_build_dir: bool = False
    """Also sync files found in build_dir that the artifact source omits"""

    delete: bool = True
    """Delete remote objects that no longer exist locally"""

    force: bool = False
    """Upload every local file regardless of remote state"""

    prefer_gzip: bool = True
    """Upload the .gz sibling of a file when it exists"""

    dry_run: bool = False
    verbose: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS

    acl: Optional[str] = "public-read"
    """Canned ACL; None, "" or False disables ACLs"""

    encryption: bool = False
    reduced_redundancy_storage: bool = False

    content_types: dict[str, str] = field(default_factory=dict)
    """Content type overrides keyed by logical path or extension (".webp")"""

    ignore_paths: list[IgnorePattern] = field(default_factory=list)

    caching_policies: CachingPolicyResolver = field(
        default_factory=CachingPolicyResolver
    )

    version_bucket: bool = False
    index_document: Optional[str] = None
    error_document: Optional[str] = None
    routing_rules: list[dict[str, Any]] = field(default_factory=list)

    cloudfront_distribution_id: Optional[str] = None
    cloudfront_invalidate: bool = False
    cloudfront_invalidate_all: bool = False
    cloudfront_invalidation_batch_size: int = 1000
    cloudfront_invalidation_max_retries: int = 5
    cloudfront_invalidation_batch_delay: float = 2.0
    cloudfront_wait: bool = False

    def __post_init__(self) -> None:
        self.prefix = normalize_prefix(self.prefix)
        self.build_dir = Path(self.build_dir)
        if self.acl is False:
            self.acl = None

    @property
    def acl_enabled(self) -> bool:
        """Whether object writes should carry an ACL attribute."""
        return bool(self.acl)

    def disable_acl(self) -> None:
        """Stop sending ACLs for the remainder of the run."""
        if self.acl_enabled:
            logger.debug("Disabling ACLs (was %s)", self.acl)
        self.acl = None

    @property
    def invalidation_batch_size(self) -> int:
        """Configured batch size capped at the CloudFront hard limit."""
        return min(self.cloudfront_invalidation_batch_size, CLOUDFRONT_PATH_LIMIT)

    def credentials(self) -> dict[str, str]:
        """Resolve explicit credentials, falling back to the environment.

        Returns:
            boto3 keyword arguments; empty when boto3's default credential
            chain should be used
        """
        key_id = self.aws_access_key_id or os.environ.get("AWS_ACCESS_KEY_ID")
        secret = self.aws_secret_access_key or os.environ.get(
            "AWS_SECRET_ACCESS_KEY"
        )
        if not (key_id and secret):
            return {}

        creds = {"aws_access_key_id": key_id, "aws_secret_access_key": secret}
        token = self.aws_session_token or os.environ.get("AWS_SESSION_TOKEN")
        if token:
            creds["aws_session_token"] = token
        return creds

    def add_caching_policy(self, content_type: str, **directives: Any) -> None:
        self.caching_policies.add_caching_policy(content_type, **directives)

    def default_caching_policy(self, **directives: Any) -> None:
        self.caching_policies.default_caching_policy(**directives)

    def caching_policy_for(
        self, content_type: Optional[str]
    ) -> Optional[BrowserCachePolicy]:
        return self.caching_policies.caching_policy_for(content_type)

    def merge_overrides(self, **overrides: Any) -> "SyncOptions":
        """Apply non-None overrides in place.

        Args:
            **overrides: Option names mapped to values; None values are skipped

        Returns:
            self, for chaining

        Raises:
            S3SyncConfigError: If an override names an unknown option
        """
        known = {f.name for f in fields(self)}
        for name, value in overrides.items():
            if value is None:
                continue
            if name not in known:
                raise S3SyncConfigError(f"Unknown option: {name}")
            setattr(self, name, value)
        self.__post_init__()
        return self

    def validate(self) -> None:
        """Check the options before any network call is made.

        Raises:
            S3SyncConfigError: If a required option is missing or invalid
        """
        if not self.bucket:
            raise S3SyncConfigError("No bucket configured. Set `bucket` option.")
        if self.error_document and not self.index_document:
            raise S3SyncConfigError(
                "S3 requires `index_document` if `error_document` is specified"
            )
        if self.routing_rules and not self.index_document:
            raise S3SyncConfigError(
                "S3 requires `index_document` if `routing_rules` are specified"
            )
        if self.max_workers < 1:
            raise S3SyncConfigError("`max_workers` must be at least 1")
        if self.cloudfront_invalidation_batch_size < 1:
            raise S3SyncConfigError(
                "`cloudfront_invalidation_batch_size` must be at least 1"
            )
        if self.cloudfront_invalidation_max_retries < 0:
            raise S3SyncConfigError(
                "`cloudfront_invalidation_max_retries` cannot be negative"
            )


def _parse_ignore_paths(values: list[Any]) -> list[IgnorePattern]:
    """Convert config ignore entries; ``{"regex": "..."}`` compiles a regex."""
    patterns: list[IgnorePattern] = []
    for value in values:
        if isinstance(value, dict) and "regex" in value:
            patterns.append(re.compile(value["regex"]))
        elif isinstance(value, str):
            patterns.append(value)
        else:
            raise S3SyncConfigError(f"Invalid ignore_paths entry: {value!r}")
    return patterns


def options_from_dict(data: dict[str, Any]) -> SyncOptions:
    """Build SyncOptions from a parsed config mapping.

    Args:
        data: Mapping of option names to values

    Returns:
        SyncOptions instance

    Raises:
        S3SyncConfigError: If the mapping contains unknown or malformed options
    """
    data = dict(data)
    policies = data.pop("caching_policies", {}) or {}
    ignore_paths = data.pop("ignore_paths", []) or []

    known = {f.name for f in fields(SyncOptions)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise S3SyncConfigError(f"Unknown option(s): {', '.join(unknown)}")

    try:
        options = SyncOptions(**data)
    except TypeError as e:
        raise S3SyncConfigError(f"Invalid configuration: {e}") from e

    options.ignore_paths = _parse_ignore_paths(ignore_paths)
    for content_type, directives in policies.items():
        if not isinstance(directives, dict):
            raise S3SyncConfigError(
                f"Caching policy for {content_type} must be an object"
            )
        try:
            policy = BrowserCachePolicy.from_dict(directives)
        except (TypeError, ValueError) as e:
            raise S3SyncConfigError(
                f"Invalid caching policy for {content_type}: {e}"
            ) from e
        options.caching_policies.set_policy(content_type, policy)

    return options


def load_options(config_path: Optional[Path] = None) -> SyncOptions:
    """Load sync options from a JSON config file.

    Args:
        config_path: Path to the config file (defaults to ./.s3_sync.json)

    Returns:
        SyncOptions; defaults when the default config file does not exist

    Raises:
        S3SyncConfigError: If an explicitly given file is missing or the
            file cannot be parsed
    """
    explicit = config_path is not None
    path = config_path if config_path is not None else Path.cwd() / CONFIG_FILE_NAME

    if not path.exists():
        if explicit:
            raise S3SyncConfigError(f"Config file not found: {path}")
        logger.debug(f"No config file at {path}, using defaults")
        return SyncOptions()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise S3SyncConfigError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise S3SyncConfigError(f"Config file {path} must contain a JSON object")

    logger.debug(f"Loaded config from {path}")
    return options_from_dict(data)
