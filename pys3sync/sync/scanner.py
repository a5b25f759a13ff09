"""Local artifact discovery for sync operations."""

import io
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Protocol, runtime_checkable

from ..utils import GZIP_SUFFIX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactDescriptor:
    """One build artifact as reported by the site generator."""

    logical_path: str
    """Path relative to the build root, "/" separated, no leading slash"""

    disk_path: Optional[Path] = None
    """File holding the artifact (defaults to build_dir / logical_path)"""

    declared_content_type: Optional[str] = None
    """Content type assigned by the generator's pipeline, if any"""

    is_redirect: bool = False
    redirect_target: Optional[str] = None
    opener: Optional[Callable[[], BinaryIO]] = None
    """Returns the artifact's bytes when it has no file in the build directory"""


@runtime_checkable
class LocalArtifactSource(Protocol):
    """Anything that can list the artifacts of one build.

    Site generator integrations implement this with an adapter over their
    own resource model.
    """

    def artifacts(self) -> Iterable[ArtifactDescriptor]: ...


@dataclass(frozen=True)
class LocalArtifact:
    """A local file resolved for upload."""

    logical_path: str
    """Path relative to the build root, "/" separated, no leading slash"""

    disk_path: Path
    """File actually uploaded (the .gz sibling when compression is preferred)"""

    source_path: Path
    """Uncompressed form of the file"""

    declared_content_type: Optional[str] = None
    redirect_target: Optional[str] = None
    opener: Optional[Callable[[], BinaryIO]] = None

    @property
    def is_compressed(self) -> bool:
        return self.opener is None and self.disk_path != self.source_path

    @property
    def is_redirect(self) -> bool:
        return self.redirect_target is not None

    def open(self) -> BinaryIO:
        """Open the bytes that would be uploaded.

        A redirect with neither an opener nor a file has an empty body.
        """
        if self.opener is not None:
            return self.opener()
        if self.is_redirect and not self.disk_path.is_file():
            return io.BytesIO(b"")
        return open(self.disk_path, "rb")


def normalize_logical_path(path: str) -> str:
    """Normalize a generator path to "/" separators without a leading slash."""
    return path.replace("\\", "/").lstrip("/")


class DirectoryScanner:
    """Resolves artifact descriptors and scans build directories.

    Examples:
        >>> scanner = DirectoryScanner(Path("build"), prefer_gzip=True)
        >>> artifacts = scanner.scan_local()
        >>> # index.html is uploaded from index.html.gz when that exists
    """

    def __init__(self, build_dir: Path, prefer_gzip: bool = True):
        """Initialize directory scanner.

        Args:
            build_dir: Root of the build output
            prefer_gzip: Resolve artifacts to their .gz sibling when present
        """
        self.build_dir = Path(build_dir)
        self.prefer_gzip = prefer_gzip

    def local_path(self, logical_path: str) -> Path:
        return self.build_dir / logical_path

    def is_directory(self, logical_path: str) -> bool:
        """Check if a logical path names a directory in the build output."""
        return self.local_path(logical_path).is_dir()

    def resolve(self, descriptor: ArtifactDescriptor) -> LocalArtifact:
        """Resolve a descriptor to the file that should be uploaded.

        Args:
            descriptor: Artifact reported by the generator

        Returns:
            LocalArtifact, using the .gz sibling when compression is preferred
            and the sibling exists
        """
        logical_path = normalize_logical_path(descriptor.logical_path)
        source_path = descriptor.disk_path or self.local_path(logical_path)
        disk_path = source_path

        if self.prefer_gzip and descriptor.opener is None:
            gzip_path = source_path.with_name(source_path.name + GZIP_SUFFIX)
            if gzip_path.is_file():
                disk_path = gzip_path

        redirect_target = descriptor.redirect_target if descriptor.is_redirect else None
        return LocalArtifact(
            logical_path=logical_path,
            disk_path=disk_path,
            source_path=source_path,
            declared_content_type=descriptor.declared_content_type,
            redirect_target=redirect_target,
            opener=descriptor.opener,
        )

    def resolve_all(
        self, descriptors: Iterable[ArtifactDescriptor]
    ) -> dict[str, LocalArtifact]:
        """Resolve descriptors into a map keyed by logical path."""
        artifacts: dict[str, LocalArtifact] = {}
        for descriptor in descriptors:
            artifact = self.resolve(descriptor)
            artifacts[artifact.logical_path] = artifact
        return artifacts

    def scan_local(self, directory: Optional[Path] = None) -> list[LocalArtifact]:
        """Recursively scan the build directory.

        Compressed siblings are folded into their uncompressed file when
        compression is preferred; unreadable directories are skipped.

        Args:
            directory: Directory to scan (defaults to the build root)

        Returns:
            List of LocalArtifact objects
        """
        if directory is None:
            directory = self.build_dir

        artifacts: list[LocalArtifact] = []

        try:
            for item in sorted(directory.iterdir()):
                if item.is_dir():
                    artifacts.extend(self.scan_local(item))
                elif item.is_file():
                    if self._is_compressed_sibling(item):
                        continue
                    logical_path = item.relative_to(self.build_dir).as_posix()
                    artifacts.append(self.resolve(ArtifactDescriptor(logical_path)))
        except PermissionError:
            logger.warning(f"Permission denied while scanning {directory}")

        return artifacts

    def find_orphans(self, known_paths: set[str]) -> list[LocalArtifact]:
        """Find files in the build directory that the generator did not report.

        Args:
            known_paths: Logical paths already supplied by the generator

        Returns:
            Artifacts for files absent from known_paths
        """
        orphans = [
            artifact
            for artifact in self.scan_local()
            if artifact.logical_path not in known_paths
        ]
        if orphans:
            logger.debug(f"Found {len(orphans)} orphan file(s) in {self.build_dir}")
        return orphans

    def _is_compressed_sibling(self, path: Path) -> bool:
        if not self.prefer_gzip or path.suffix != GZIP_SUFFIX:
            return False
        return path.with_name(path.name[: -len(GZIP_SUFFIX)]).is_file()


class BuildDirectorySource:
    """Artifact source that reports every file under a build directory."""

    def __init__(self, build_dir: Path, prefer_gzip: bool = True):
        self.scanner = DirectoryScanner(build_dir, prefer_gzip=prefer_gzip)

    def artifacts(self) -> list[ArtifactDescriptor]:
        return [
            ArtifactDescriptor(
                logical_path=artifact.logical_path,
                disk_path=artifact.source_path,
            )
            for artifact in self.scanner.scan_local()
        ]
