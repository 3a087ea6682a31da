"""Base interface for package sources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional


@dataclass
class PublishedPackage:
    """A package as advertised by the published index."""
    name: str
    version: str
    arch: Optional[str] = None

    @property
    def filename(self) -> str:
        """Archive filename in the repository, e.g. ``hello-world-0.0.1-r0.apk``."""
        return f"{self.name}-{self.version}.apk"


class PackageIndex(ABC):
    """Abstract base class for published package repositories."""

    @abstractmethod
    def fetch_index(self) -> Dict[str, PublishedPackage]:
        """Return the latest published release of every package, keyed by name.

        Raises:
            IndexFetchError: If the index cannot be fetched or parsed
        """
        pass

    @abstractmethod
    def download_archive(self, filename: str, output_dir: Path) -> Path:
        """Download a published archive to output_dir.

        Args:
            filename: Archive filename (e.g. 'hello-world-0.0.1-r0.apk')
            output_dir: Directory to save the archive in

        Returns:
            Path to the downloaded archive

        Raises:
            DownloadError: If the download fails
        """
        pass
