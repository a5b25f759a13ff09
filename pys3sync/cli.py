"""CLI interface for pys3sync."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .config import load_options
from .exceptions import S3SyncConfigError, S3SyncError
from .output import OutputFormatter
from .sync.engine import SyncEngine
from .sync.scanner import BuildDirectorySource

logger = logging.getLogger(__name__)

# Third-party loggers that are too chatty at DEBUG
NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")


def configure_logging(verbose: bool) -> None:
    """Configure logging for the CLI.

    Args:
        verbose: Enable debug logging for pys3sync modules
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pys3sync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pys3sync")
@click.pass_context
def main(ctx: Any, quiet: bool, verbose: bool) -> None:
    """pys3sync - Sync a static site build to S3 and invalidate CloudFront."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["verbose"] = verbose
    configure_logging(verbose)


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the JSON config file (default: ./.s3_sync.json)",
)
@click.option("--bucket", "-b", help="Target bucket name")
@click.option("--prefix", "-p", help="Key prefix inside the bucket")
@click.option(
    "--build-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Build output directory (default: build)",
)
@click.option(
    "--force", "-f", is_flag=True, default=None, help="Upload every file"
)
@click.option(
    "--dry-run",
    "-n",
    is_flag=True,
    default=None,
    help="Show what would be synced without syncing",
)
@click.option(
    "--delete/--no-delete",
    default=None,
    help="Delete remote objects missing locally (default: delete)",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=None,
    help="Print ignore reasons and keep going when invalidation fails",
)
@click.option("--quiet", is_flag=True, help="Suppress non-essential output")
@click.option(
    "--cloudfront-invalidate",
    is_flag=True,
    default=None,
    help="Invalidate changed paths on CloudFront",
)
@click.option(
    "--cloudfront-invalidate-all",
    is_flag=True,
    default=None,
    help="Invalidate every path (/*) on CloudFront",
)
@click.option("--cloudfront-distribution-id", help="CloudFront distribution ID")
@click.option(
    "--cloudfront-wait",
    is_flag=True,
    default=None,
    help="Wait for invalidations to complete",
)
@click.pass_context
def sync(
    ctx: Any,
    config_path: Optional[Path],
    bucket: Optional[str],
    prefix: Optional[str],
    build_dir: Optional[Path],
    force: Optional[bool],
    dry_run: Optional[bool],
    delete: Optional[bool],
    verbose: Optional[bool],
    quiet: bool,
    cloudfront_invalidate: Optional[bool],
    cloudfront_invalidate_all: Optional[bool],
    cloudfront_distribution_id: Optional[str],
    cloudfront_wait: Optional[bool],
) -> None:
    """Sync the build directory to S3.

    Options given on the command line override the config file.

    Examples:
        pys3sync sync --bucket example.com            # Sync ./build
        pys3sync sync --dry-run                       # Preview changes
        pys3sync sync --cloudfront-invalidate \\
            --cloudfront-distribution-id E123ABC      # Sync and purge CDN
    """
    quiet = quiet or ctx.obj.get("quiet", False)
    verbose = verbose or ctx.obj.get("verbose") or None
    out = OutputFormatter(quiet=quiet)

    if verbose and not ctx.obj.get("verbose"):
        logging.getLogger("pys3sync").setLevel(logging.DEBUG)

    try:
        options = load_options(config_path)
        options.merge_overrides(
            bucket=bucket,
            prefix=prefix,
            build_dir=build_dir,
            force=force,
            dry_run=dry_run,
            delete=delete,
            verbose=verbose,
            cloudfront_invalidate=cloudfront_invalidate,
            cloudfront_invalidate_all=cloudfront_invalidate_all,
            cloudfront_distribution_id=cloudfront_distribution_id,
            cloudfront_wait=cloudfront_wait,
        )
        # Invalidating everything implies invalidating
        if options.cloudfront_invalidate_all:
            options.cloudfront_invalidate = True

        if not options.build_dir.is_dir():
            raise S3SyncConfigError(
                f"Build directory does not exist: {options.build_dir}"
            )

        engine = SyncEngine(options, out)
        engine.sync(BuildDirectorySource(options.build_dir, options.prefer_gzip))

    except KeyboardInterrupt:
        out.warning("Sync cancelled by user")
        ctx.exit(130)
    except S3SyncConfigError as e:
        out.error(f"Configuration error: {e}")
        ctx.exit(1)
    except S3SyncError as e:
        out.error(f"Sync failed: {e}")
        ctx.exit(1)
    except Exception as e:
        logger.debug("Unexpected error", exc_info=True)
        out.error(f"Error: {e}")
        ctx.exit(1)


if __name__ == "__main__":
    main()
