"""Core sync engine for reconciling a build directory with a bucket."""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, Callable, Optional

from botocore.exceptions import ClientError
from rich.progress import Progress, SpinnerColumn, TextColumn

from ..config import SyncOptions
from ..exceptions import S3SyncDeleteError
from ..output import OutputFormatter
from ..utils import S3_DELETE_BATCH_LIMIT, chunked
from .cloudfront import InvalidationController
from .context import RunContext
from .remote import RemoteObject
from .resource import Resource, ResourceState
from .scanner import LocalArtifact, LocalArtifactSource

logger = logging.getLogger(__name__)


def _camelize(key: str) -> str:
    """Convert a snake_case key to the CamelCase S3 expects.

    Examples:
        >>> _camelize("key_prefix_equals")
        'KeyPrefixEquals'
        >>> _camelize("HostName")
        'HostName'
    """
    if "_" not in key and key[:1].isupper():
        return key
    return "".join(part[:1].upper() + part[1:] for part in key.split("_"))


def routing_rules_to_s3(rules: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert routing rules given in snake_case into the boto3 shape."""

    def convert(value: Any) -> Any:
        if isinstance(value, dict):
            return {_camelize(k): convert(v) for k, v in value.items()}
        if isinstance(value, list):
            return [convert(v) for v in value]
        return value

    return [convert(rule) for rule in rules]


class SyncEngine:
    """Reconciles local build artifacts with the objects in a bucket.

    A run goes through these phases:

    1. validate options
    2. enumerate local artifacts and list the bucket (in parallel)
    3. classify one ``Resource`` per path in a worker pool
    4. configure bucket versioning and website hosting
    5. ignore, create, update and delete resources
    6. invalidate changed paths on CloudFront
    """

    def __init__(
        self,
        options: SyncOptions,
        output: Optional[OutputFormatter] = None,
        s3_client: Any = None,
        cloudfront_client: Any = None,
    ):
        """Initialize sync engine.

        Args:
            options: Sync options
            output: Output formatter for displaying progress/status
            s3_client: Preconfigured boto3 S3 client (created lazily if None)
            cloudfront_client: Preconfigured boto3 CloudFront client
        """
        self.options = options
        self.output = output or OutputFormatter()
        self._s3_client = s3_client
        self._cloudfront_client = cloudfront_client
        self.context: Optional[RunContext] = None

    def _new_context(self) -> RunContext:
        return RunContext(
            self.options,
            output=self.output,
            s3_client=self._s3_client,
            cloudfront_client=self._cloudfront_client,
        )

    def sync(self, source: Optional[LocalArtifactSource] = None) -> dict:
        """Run one sync.

        Args:
            source: Artifact source of the build; when None every file
                under ``build_dir`` is synced

        Returns:
            Dictionary with sync statistics

        Raises:
            S3SyncConfigError: If the options are invalid
            S3SyncError: If a provider call fails

        Examples:
            >>> engine = SyncEngine(SyncOptions(bucket="example.com"))
            >>> stats = engine.sync()
            >>> print(f"Created {stats['created']} object(s)")
        """
        self.options.validate()
        context = self._new_context()
        self.context = context
        start = time.time()

        self.output.info("Let's see if there's work to be done...")
        resources = self._build_resources(context, source)
        self._classify(resources)

        stats = self._categorize(resources)
        stats["invalidation_ids"] = []

        if not (stats["created"] or stats["updated"] or stats["deleted"]):
            self.output.info("All S3 files are up to date.")
            if self.options.cloudfront_invalidate_all:
                controller = InvalidationController(context)
                stats["invalidation_ids"] = controller.invalidate([])
            return stats

        self.output.info(f"Ready to apply updates to {context.bucket}.")

        self.update_bucket_versioning(context)
        self.update_bucket_website(context)

        by_state = self._partition(resources)
        self.ignore_resources(
            by_state[ResourceState.IGNORED] + by_state[ResourceState.ALTERNATE_ENCODING]
        )
        self._run_parallel(by_state[ResourceState.NEW], Resource.create)
        self._run_parallel(by_state[ResourceState.UPDATED], Resource.update)
        self.delete_resources(context, by_state[ResourceState.DELETED])

        controller = InvalidationController(context)
        stats["invalidation_ids"] = controller.invalidate(
            context.invalidation_paths.snapshot()
        )

        logger.debug(f"Sync finished in {time.time() - start:.2f}s")
        if not self.output.quiet:
            self._display_summary(stats)

        return stats

    # =========================================================================
    # Enumeration and classification
    # =========================================================================

    def _scan_local(
        self, context: RunContext, source: Optional[LocalArtifactSource]
    ) -> dict[str, LocalArtifact]:
        scanner = context.scanner
        if source is None:
            return {a.logical_path: a for a in scanner.scan_local()}

        artifacts = scanner.resolve_all(source.artifacts())
        if self.options.scan_build_dir and scanner.build_dir.is_dir():
            for orphan in scanner.find_orphans(set(artifacts)):
                artifacts[orphan.logical_path] = orphan
        return artifacts

    def _build_resources(
        self, context: RunContext, source: Optional[LocalArtifactSource]
    ) -> list[Resource]:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.quiet,
        ) as progress:
            task = progress.add_task("Scanning local files and bucket...", total=None)
            with ThreadPoolExecutor(max_workers=2) as executor:
                local_future = executor.submit(self._scan_local, context, source)
                remote_future = executor.submit(lambda: context.remote_index.objects)
                local: dict[str, LocalArtifact] = local_future.result()
                remote: dict[str, RemoteObject] = remote_future.result()
            progress.update(
                task,
                description=(
                    f"Found {len(local)} local file(s), {len(remote)} remote object(s)"
                ),
            )

        paths = set(local)
        if self.options.delete:
            paths.update(remote)

        logger.debug(
            f"{len(local)} local, {len(remote)} remote, {len(paths)} path(s) to check"
        )
        return [
            Resource(path, local.get(path), remote.get(path), context)
            for path in sorted(paths)
        ]

    def _classify(self, resources: list[Resource]) -> None:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.quiet,
        ) as progress:
            progress.add_task(f"Comparing {len(resources)} file(s)...", total=None)
            self._run_parallel(resources, Resource.classify)

    def _partition(self, resources: list[Resource]) -> dict[ResourceState, list[Resource]]:
        by_state: dict[ResourceState, list[Resource]] = {
            state: [] for state in ResourceState
        }
        for resource in resources:
            if resource.to_create():
                state = ResourceState.NEW
            elif resource.to_update():
                state = ResourceState.UPDATED
            elif resource.to_delete():
                state = (
                    ResourceState.DELETED if self.options.delete else ResourceState.IGNORED
                )
            elif resource.identical():
                state = ResourceState.IDENTICAL
            else:
                state = resource.state
            by_state[state].append(resource)
        return by_state

    def _categorize(self, resources: list[Resource]) -> dict:
        """Count resources per classification.

        Args:
            resources: Classified resources

        Returns:
            Dictionary with statistics
        """
        by_state = self._partition(resources)
        return {
            "created": len(by_state[ResourceState.NEW]),
            "updated": len(by_state[ResourceState.UPDATED]),
            "deleted": len(by_state[ResourceState.DELETED]),
            "ignored": len(by_state[ResourceState.IGNORED]),
            "identical": len(by_state[ResourceState.IDENTICAL]),
            "alternate_encoding": len(by_state[ResourceState.ALTERNATE_ENCODING]),
        }

    # =========================================================================
    # Execution
    # =========================================================================

    def _run_parallel(
        self, resources: list[Resource], action: Callable[[Resource], Any]
    ) -> None:
        """Apply an action to every resource in the worker pool.

        The first failure cancels the work not yet started and is re-raised.
        """
        if not resources:
            return

        logger.debug(
            f"Running {action.__name__} on {len(resources)} resource(s) "
            f"with {self.options.max_workers} workers"
        )
        with ThreadPoolExecutor(max_workers=self.options.max_workers) as executor:
            futures: dict[Future, Resource] = {
                executor.submit(action, resource): resource for resource in resources
            }
            for future in as_completed(futures):
                try:
                    future.result()
                except Exception:
                    for pending in futures:
                        pending.cancel()
                    logger.debug(f"{action.__name__} failed for {futures[future].path}")
                    raise

    def ignore_resources(self, resources: list[Resource]) -> None:
        for resource in resources:
            resource.ignore()

    def update_bucket_versioning(self, context: RunContext) -> None:
        if not self.options.version_bucket:
            return
        self.output.info(f"Enabling versioning on {context.bucket}")
        if self.options.dry_run:
            return
        context.s3_client.put_bucket_versioning(
            Bucket=context.bucket,
            VersioningConfiguration={"Status": "Enabled"},
        )

    def update_bucket_website(self, context: RunContext) -> None:
        configuration: dict[str, Any] = {}
        if self.options.index_document:
            configuration["IndexDocument"] = {"Suffix": self.options.index_document}
        if self.options.error_document:
            configuration["ErrorDocument"] = {"Key": self.options.error_document}
        if self.options.routing_rules:
            configuration["RoutingRules"] = routing_rules_to_s3(
                self.options.routing_rules
            )

        if not configuration:
            return

        self.output.info(f"Putting bucket website: {configuration}")
        if self.options.dry_run:
            return
        context.s3_client.put_bucket_website(
            Bucket=context.bucket,
            WebsiteConfiguration=configuration,
        )

    def delete_resources(self, context: RunContext, resources: list[Resource]) -> None:
        """Delete remote objects in bulk requests of up to 1000 keys.

        Args:
            context: Run context
            resources: Resources classified as deleted

        Raises:
            S3SyncDeleteError: If a request fails or reports per-key errors
        """
        if not resources:
            return

        for batch in chunked(resources, S3_DELETE_BATCH_LIMIT):
            if not self.options.dry_run:
                self._delete_batch(context, [r.remote_path for r in batch])
            for resource in batch:
                resource.destroy()

    def _delete_batch(self, context: RunContext, keys: list[str]) -> None:
        logger.debug(f"Deleting {len(keys)} object(s) from {context.bucket}")
        try:
            response = context.s3_client.delete_objects(
                Bucket=context.bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
            )
        except ClientError as e:
            raise S3SyncDeleteError(
                f"Failed to delete {len(keys)} object(s): {e}", keys=keys
            ) from e

        errors = response.get("Errors") or []
        if errors:
            failed = [error.get("Key", "") for error in errors]
            first = errors[0]
            raise S3SyncDeleteError(
                f"Failed to delete {len(failed)} object(s), first error on "
                f"{first.get('Key')}: {first.get('Code')} {first.get('Message', '')}",
                keys=failed,
            )

    def _display_summary(self, stats: dict) -> None:
        """Display sync summary.

        Args:
            stats: Statistics dictionary
        """
        self.output.print("")
        if self.options.dry_run:
            self.output.success("Dry run complete!")
        else:
            self.output.success("Sync complete!")

        if stats["created"]:
            self.output.info(f"  Created: {stats['created']}")
        if stats["updated"]:
            self.output.info(f"  Updated: {stats['updated']}")
        if stats["deleted"]:
            self.output.info(f"  Deleted: {stats['deleted']}")
        if stats["identical"]:
            self.output.info(f"  Unchanged: {stats['identical']}")
        if stats["ignored"] or stats["alternate_encoding"]:
            self.output.info(
                f"  Ignored: {stats['ignored'] + stats['alternate_encoding']}"
            )
