"""CloudFront invalidation for paths changed by a sync run."""

import logging
import random
import secrets
import time
from collections.abc import Iterable
from typing import Optional
from urllib.parse import quote

from botocore.exceptions import ClientError, WaiterError

from ..exceptions import S3SyncInvalidationError, S3SyncRateLimitError
from ..utils import chunked, normalize_cdn_path
from .context import RunContext
from .remote import error_code

logger = logging.getLogger(__name__)

INVALIDATE_ALL_PATH = "/*"
# Reserved characters CloudFront accepts unencoded in invalidation paths
INVALIDATION_SAFE_CHARS = "/*!$&'()+,;=:@"
RATE_LIMIT_CODES = frozenset(
    {"Throttling", "ThrottlingException", "TooManyInvalidationsInProgress"}
)
RETRY_BASE_DELAY = 1.0
WAIT_DELAY = 60
WAIT_MAX_ATTEMPTS = 30


def is_rate_limit_error(error: ClientError) -> bool:
    """Check if a CloudFront error asks the caller to slow down."""
    if error_code(error) in RATE_LIMIT_CODES:
        return True
    message = str(error.response.get("Error", {}).get("Message", "")) or str(error)
    return "Rate exceeded" in message or "Throttling" in message


def remove_redundant_paths(paths: Iterable[str]) -> list[str]:
    """Drop paths already covered by a wildcard path.

    ``/a/*`` covers every path below ``/a``, including narrower wildcards
    such as ``/a/b/*``.

    Examples:
        >>> remove_redundant_paths(["/a/*", "/a/b.html", "/a/c/d.html", "/b"])
        ['/a/*', '/b']
    """
    unique = set(paths)
    wildcard_prefixes = {p[:-2] for p in unique if p.endswith("/*")}

    result: list[str] = []
    for path in sorted(unique):
        # A wildcard is checked by its directory so it does not cover itself
        target = path[:-2] if path.endswith("/*") else path
        if path_covered_by_wildcard(target, wildcard_prefixes):
            continue
        result.append(path)
    return result


def path_covered_by_wildcard(path: str, wildcard_prefixes: set[str]) -> bool:
    """Check the parent directories of ``path`` against recorded prefixes."""
    if not wildcard_prefixes:
        return False

    segments = path.split("/")
    current = segments[0]
    if current in wildcard_prefixes:
        return True
    for segment in segments[1:-1]:
        current = f"{current}/{segment}"
        if current in wildcard_prefixes:
            return True
    return False


def prepare_paths(paths: Iterable[str], invalidate_all: bool = False) -> list[str]:
    """Normalize, encode, deduplicate and minimize invalidation paths.

    Spaces, non-ASCII and other unsafe characters are percent-encoded.

    Args:
        paths: Changed logical paths, with or without a leading slash
        invalidate_all: Replace everything with a single wildcard

    Returns:
        Sorted list of paths to invalidate
    """
    if invalidate_all:
        return [INVALIDATE_ALL_PATH]

    normalized = sorted(
        {quote(normalize_cdn_path(p), safe=INVALIDATION_SAFE_CHARS) for p in paths}
    )
    if INVALIDATE_ALL_PATH in normalized:
        return [INVALIDATE_ALL_PATH]
    return remove_redundant_paths(normalized)


class InvalidationController:
    """Issues CloudFront invalidations for one sync run.

    Paths are minimized, split into batches no larger than the configured
    batch size (capped at CloudFront's per-request limit), and sent one
    request per batch with a pause in between. Throttled requests are
    retried with exponential backoff.
    """

    def __init__(self, context: RunContext):
        """Initialize invalidation controller.

        Args:
            context: Run context providing options, output and the client
        """
        self.context = context
        self.options = context.options
        self.output = context.output

    def should_invalidate(self) -> bool:
        if not self.options.cloudfront_invalidate:
            return False
        if not self.options.cloudfront_distribution_id:
            self.output.warning(
                "CloudFront invalidation skipped: no distribution ID provided"
            )
            return False
        return True

    def invalidate(self, paths: Optional[Iterable[str]] = None) -> list[str]:
        """Invalidate the given paths (or everything when configured).

        Args:
            paths: Changed logical paths; defaults to the paths collected
                on the run context

        Returns:
            IDs of the invalidations created (empty on dry run or no-op)

        Raises:
            S3SyncInvalidationError: If a request fails and verbose mode
                is off
        """
        if not self.should_invalidate():
            return []

        if paths is None:
            paths = self.context.invalidation_paths.snapshot()
        paths = list(paths)

        if not paths and not self.options.cloudfront_invalidate_all:
            logger.debug("No paths to invalidate")
            return []

        prepared = prepare_paths(paths, self.options.cloudfront_invalidate_all)
        if not prepared:
            return []
        if self.options.verbose:
            self.output.info(
                f"Prepared {len(prepared)} paths for CloudFront invalidation"
            )

        distribution_id = self.options.cloudfront_distribution_id
        self.output.info(f"Invalidating CloudFront distribution {distribution_id}")

        batches = list(chunked(prepared, self.options.invalidation_batch_size))

        if self.options.dry_run:
            self.output.info(
                f"DRY RUN: Would invalidate {len(prepared)} paths in CloudFront "
                f"({len(batches)} batch(es))"
            )
            if self.options.verbose:
                for path in prepared:
                    self.output.info(f"  {path}")
            return []

        invalidation_ids: list[str] = []
        for index, batch in enumerate(batches):
            self.output.info(
                f"Creating invalidation batch {index + 1}/{len(batches)} "
                f"({len(batch)} paths)"
            )
            invalidation_id = self._create_invalidation_with_retry(batch)
            if invalidation_id:
                invalidation_ids.append(invalidation_id)

            if index < len(batches) - 1:
                time.sleep(self.options.cloudfront_invalidation_batch_delay)

        if invalidation_ids:
            self.output.info(
                f"CloudFront invalidation(s) created: {', '.join(invalidation_ids)}"
            )
            if self.options.cloudfront_wait:
                self.wait_for_invalidations(invalidation_ids)
            else:
                self.output.info("Invalidations may take 10-15 minutes to complete")

        return invalidation_ids

    def _calculate_retry_delay(self, retries: int) -> float:
        """Backoff before retry number ``retries`` (1-based).

        The base delay doubles per retry; jitter adds up to 25% on top, so
        successive delays never decrease.
        """
        base_delay = RETRY_BASE_DELAY * (2 ** (retries - 1))
        jitter = base_delay * 0.25 * random.random()
        return base_delay + jitter

    def _create_invalidation_with_retry(self, paths: list[str]) -> Optional[str]:
        max_retries = self.options.cloudfront_invalidation_max_retries
        retries = 0

        while True:
            try:
                return self._create_invalidation(paths)
            except ClientError as e:
                if is_rate_limit_error(e) and retries < max_retries:
                    retries += 1
                    delay = self._calculate_retry_delay(retries)
                    self.output.warning(
                        f"Rate limit hit, retrying in {delay:.1f} seconds... "
                        f"(attempt {retries}/{max_retries})"
                    )
                    time.sleep(delay)
                    continue

                self.output.error(f"Failed to create CloudFront invalidation: {e}")
                if self.options.verbose:
                    self.output.info(f"Paths: {', '.join(paths)}")
                    return None
                if is_rate_limit_error(e):
                    raise S3SyncRateLimitError(
                        f"CloudFront invalidation still throttled after "
                        f"{max_retries} retries: {e}"
                    ) from e
                raise S3SyncInvalidationError(
                    f"CloudFront invalidation failed: {e}"
                ) from e

    def _create_invalidation(self, paths: list[str]) -> str:
        caller_reference = f"pys3sync-{int(time.time())}-{secrets.token_hex(4)}"
        response = self.context.cloudfront_client.create_invalidation(
            DistributionId=self.options.cloudfront_distribution_id,
            InvalidationBatch={
                "Paths": {"Quantity": len(paths), "Items": paths},
                "CallerReference": caller_reference,
            },
        )
        invalidation_id = response["Invalidation"]["Id"]
        logger.debug(f"Created invalidation {invalidation_id} ({len(paths)} paths)")
        return invalidation_id

    def wait_for_invalidations(self, invalidation_ids: list[str]) -> None:
        """Block until each invalidation completes or the waiter gives up.

        Timeouts and provider errors are reported as warnings; the
        invalidations keep running on CloudFront.
        """
        self.output.info("Waiting for CloudFront invalidation(s) to complete...")
        waiter = self.context.cloudfront_client.get_waiter("invalidation_completed")
        try:
            for invalidation_id in invalidation_ids:
                self.output.info(f"Waiting for invalidation {invalidation_id}...")
                waiter.wait(
                    DistributionId=self.options.cloudfront_distribution_id,
                    Id=invalidation_id,
                    WaiterConfig={"Delay": WAIT_DELAY, "MaxAttempts": WAIT_MAX_ATTEMPTS},
                )
        except WaiterError as e:
            self.output.warning(f"CloudFront invalidation wait timed out: {e}")
            self.output.warning("Invalidation is still in progress but sync will continue")
            return
        except ClientError as e:
            self.output.warning(f"CloudFront invalidation wait failed: {e}")
            self.output.warning("Invalidation may still be in progress")
            return

        self.output.success("CloudFront invalidation(s) completed successfully")
