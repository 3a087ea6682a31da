"""Local filesystem source for freshly built packages."""

from pathlib import Path
from typing import BinaryIO

from ..errors import ExtractionError
from ..manifest import BuiltPackage
from .utils import extract_archive


class LocalSource:
    """Adapter for archives built into a local packages directory.

    Layout: ``{packages_dir}/{arch}/{name}-{version}-r{epoch}.apk``.
    """

    def __init__(self, packages_dir: Path):
        self.packages_dir = Path(packages_dir)

    def archive_path(self, package: BuiltPackage) -> Path:
        return package.archive_path(self.packages_dir)

    def open_archive(self, package: BuiltPackage) -> BinaryIO:
        """Open the built archive of package for reading.

        Raises:
            ExtractionError: If the archive cannot be opened
        """
        path = self.archive_path(package)
        try:
            return open(path, "rb")
        except OSError as e:
            raise ExtractionError(f"failed to read {path}: {e}") from e

    def extract(self, package: BuiltPackage, extract_dir: Path) -> Path:
        """Extract the built archive of package into extract_dir."""
        with self.open_archive(package) as f:
            return extract_archive(f, extract_dir)
