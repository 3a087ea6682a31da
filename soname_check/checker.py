"""SONAME compatibility check between rebuilt and published packages.

For every package in the build manifest (subpackages included) the versioned
shared objects of the new archive are compared with those of the latest
published release. A library whose version suffix changed (``libfoo.so.1``
-> ``libfoo.so.2``) is reported as a possible ABI break.
"""

import logging
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .errors import ExtractionError, IncompatibleSonameError, SonameCheckError
from .manifest import BuiltPackage, load_built_packages
from .report import wrap_errors
from .soname import parse_soname, scan_sonames
from .sources import ApkIndexSource, LocalSource, PackageIndex, PublishedPackage
from .sources.utils import extract_archive

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = "https://packages.wolfi.dev/os/x86_64/APKINDEX.tar.gz"


class CheckVerdict(Enum):
    """Outcome of checking one package."""
    NO_PREVIOUS = "no previous package"    # Not published yet, nothing to break
    NO_SONAMES = "no sonames"              # New archive ships no versioned libraries
    COMPATIBLE = "compatible"
    INCOMPATIBLE = "incompatible"          # Only carried by IncompatibleSonameError


@dataclass
class CheckResult:
    """Result of a successful (non-failing) package check."""
    package: str
    verdict: CheckVerdict
    new_sonames: List[str] = field(default_factory=list)
    existing_sonames: List[str] = field(default_factory=list)


@dataclass
class CheckOptions:
    """Configuration of a soname check run."""
    package_list_file: Path = Path("packages.log")
    recipe_dir: Path = Path(".")
    packages_dir: Path = Path("packages")
    index_url: str = DEFAULT_INDEX_URL
    timeout: float = 60
    package_names: List[str] = field(default_factory=list)


def check_sonames_match(existing_sonames: Sequence[Union[str, Path]],
                        new_sonames: Sequence[Union[str, Path]]) -> None:
    """Compare soname files of a published and a new package.

    Libraries are matched on their base name. A library present on only one
    side is not a conflict. When the existing files contain the same base
    name twice, the last one wins.

    Raises:
        IncompatibleSonameError: For the first new library whose version
            suffix differs from the existing one
    """
    existing: Dict[str, str] = {}
    for filename in existing_sonames:
        soname = parse_soname(filename)
        if soname:
            existing[soname.base_name] = soname.version

    for filename in new_sonames:
        soname = parse_soname(filename)
        if not soname:
            continue
        existing_version = existing.get(soname.base_name)
        # skip if no matching file
        if existing_version is None:
            continue
        if existing_version != soname.version:
            raise IncompatibleSonameError(soname.base_name, existing_version, soname.version)


class SonameChecker:
    """Checks rebuilt packages for soname changes against a published index."""

    def __init__(self, options: CheckOptions,
                 index: Optional[PackageIndex] = None,
                 local: Optional[LocalSource] = None):
        self.options = options
        self.index = index or ApkIndexSource(options.index_url, timeout=options.timeout)
        self.local = local or LocalSource(options.packages_dir)

    def built_packages(self) -> Dict[str, BuiltPackage]:
        """Packages and subpackages to check, in manifest order."""
        packages = load_built_packages(self.options.package_list_file, self.options.recipe_dir)
        if self.options.package_names:
            wanted = set(self.options.package_names)
            packages = {name: pkg for name, pkg in packages.items() if name in wanted}
        return packages

    def check(self) -> None:
        """Check every built package, collecting failures.

        Raises:
            IndexFetchError: If the published index cannot be fetched
            ManifestError: If the build manifest is malformed
            SonameCheckErrors: If one or more packages failed the check
        """
        existing = self.index.fetch_index()
        packages = self.built_packages()

        errors: List[SonameCheckError] = []
        for name, pkg in packages.items():
            logger.info("checking %s", name)
            try:
                self.diff(name, pkg, existing)
            except SonameCheckError as e:
                logger.debug("%s failed: %s", name, e)
                errors.append(e)

        logger.info("checked %d packages, %d failed", len(packages), len(errors))
        report = wrap_errors(errors)
        if report is not None:
            raise report

    def diff(self, package_name: str, built: BuiltPackage,
             existing: Dict[str, PublishedPackage]) -> CheckResult:
        """Compare the sonames of one built package with its published release.

        Raises:
            IncompatibleSonameError: If a library changed its version suffix
            ExtractionError: If an archive cannot be read or extracted
            DownloadError: If the published archive cannot be downloaded
        """
        published = existing.get(package_name)
        if published is None:
            logger.info("no existing package found for %s, skipping so name check", package_name)
            return CheckResult(package_name, CheckVerdict.NO_PREVIOUS)

        with tempfile.TemporaryDirectory(prefix="soname-new-") as new_dir:
            self.local.extract(built, Path(new_dir))
            new_sonames = _scan(Path(new_dir))
            # if no .so name files, skip
            if not new_sonames:
                logger.debug("no soname files in %s", package_name)
                return CheckResult(package_name, CheckVerdict.NO_SONAMES)

            with tempfile.TemporaryDirectory(prefix="soname-existing-") as existing_dir:
                existing_sonames = self._published_sonames(published, Path(existing_dir))

                try:
                    check_sonames_match(existing_sonames, new_sonames)
                except IncompatibleSonameError as e:
                    raise e.for_package(
                        package_name,
                        [p.name for p in existing_sonames],
                        [p.name for p in new_sonames],
                    ) from e

            return CheckResult(
                package_name, CheckVerdict.COMPATIBLE,
                new_sonames=[p.name for p in new_sonames],
                existing_sonames=[p.name for p in existing_sonames],
            )

    def _published_sonames(self, published: PublishedPackage, work_dir: Path) -> List[Path]:
        """Download and extract a published archive, returning its soname files."""
        download_dir = work_dir / "download"
        extract_dir = work_dir / "extract"

        archive = self.index.download_archive(published.filename, download_dir)
        try:
            with open(archive, "rb") as f:
                extract_archive(f, extract_dir)
        except OSError as e:
            raise ExtractionError(f"failed to read {archive}: {e}") from e
        return _scan(extract_dir)


def _scan(directory: Path) -> List[Path]:
    try:
        return scan_sonames(directory)
    except OSError as e:
        raise ExtractionError(f"error when looking for soname files in {directory}: {e}") from e
