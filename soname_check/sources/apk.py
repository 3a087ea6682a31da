"""APK repository source adapter (APKINDEX + .apk downloads)."""

import io
import logging
import re
import shutil
import urllib.error
import urllib.request
from pathlib import Path, PurePosixPath
from typing import Dict, List
from urllib.parse import urlparse, urlunparse

from packaging.version import InvalidVersion, Version

from ..errors import DownloadError, ExtractionError, IndexFetchError
from .base import PackageIndex, PublishedPackage
from .utils import read_member

logger = logging.getLogger(__name__)

INDEX_TOKEN = "APKINDEX"


_PRE_RELEASE = {"alpha": "a", "beta": "b", "pre": "rc", "rc": "rc"}


def normalize_apk_version(ver: str) -> str:
    """Normalize an APK version string to PEP 440.

    The package release ``-rN`` becomes a numeric local segment, a single
    trailing letter becomes one more release component and the APK suffixes
    keep their relative order (``_rc`` < none < ``_git`` < ``_p``).

    Examples::

        "1.2.3-r4"          -> "1.2.3+4"
        "2.0_rc1-r0"        -> "2.0rc1+0"
        "1.2_p1"            -> "1.2.post1"
        "1.2_git20230101"   -> "1.2.post0.dev20230101"
        "1.1.1w-r0"         -> "1.1.1.23+0"
        "0.0.1"             -> "0.0.1"
    """
    ver = re.sub(r"-r(\d+)$", r"+\1", ver)
    ver = re.sub(r"(\d)([a-z])(?=[_+]|$)",
                 lambda m: f"{m.group(1)}.{ord(m.group(2)) - ord('a') + 1}", ver)
    ver = re.sub(r"_(alpha|beta|pre|rc)",
                 lambda m: _PRE_RELEASE[m.group(1)], ver)
    ver = re.sub(r"_(?:cvs|svn|git|hg)(\d*)", r".post0.dev\1", ver)
    ver = re.sub(r"_p(\d*)(?=[_+]|$)", r".post\1", ver)
    return ver


def apk_version_key(ver: str):
    """Sort key ordering APK versions.

    Versions PEP 440 cannot express are ordered by their leading numeric
    release, then by all of their numeric fields.
    """
    norm = normalize_apk_version(ver)
    try:
        return (Version(norm), 0, ())
    except InvalidVersion:
        prefix = re.match(r"\d+(?:\.\d+)*", norm)
        parts = re.split(r"[^0-9]+", norm)
        return (
            Version(prefix.group(0) if prefix else "0"),
            1,
            tuple(int(x) for x in parts if x),
        )


def parse_apkindex(content: str) -> List[PublishedPackage]:
    """Parse the text of an APKINDEX file.

    Records are separated by blank lines; each line is ``K:value``. Only
    ``P`` (name), ``V`` (version) and ``A`` (arch) are used. Records without
    a name or version are skipped.

    >>> parse_apkindex("P:curl\\nV:8.0-r0\\nA:x86_64\\n")
    [PublishedPackage(name='curl', version='8.0-r0', arch='x86_64')]
    """
    packages = []
    for block in content.split("\n\n"):
        fields = {}
        for line in block.splitlines():
            if len(line) > 2 and line[1] == ":":
                fields[line[0]] = line[2:].strip()
        if fields.get("P") and fields.get("V"):
            packages.append(PublishedPackage(
                name=fields["P"], version=fields["V"], arch=fields.get("A"),
            ))
    return packages


class ApkIndexSource(PackageIndex):
    """Adapter for APK repositories served over HTTP(S).

    The index URL points at ``APKINDEX.tar.gz``; archives live next to it,
    so their URL is the index URL with the last path segment replaced.
    """

    def __init__(self, index_url: str, timeout: float = 60):
        """Initialize APK source.

        Args:
            index_url: URL of the repository APKINDEX.tar.gz
            timeout: Seconds to wait on every network operation
        """
        parsed = urlparse(index_url)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(
                f"Invalid index URL scheme '{parsed.scheme}'. "
                f"Only http:// and https:// are supported."
            )
        if not PurePosixPath(parsed.path).name.startswith(INDEX_TOKEN):
            raise ValueError(
                f"Index URL must end with an {INDEX_TOKEN} file: {index_url}"
            )
        self.index_url = index_url
        self.timeout = timeout

    def archive_url(self, filename: str) -> str:
        """Return the URL of an archive stored next to the index.

        ``https://host/os/x86_64/APKINDEX.tar.gz`` and ``foo-1.0-r0.apk`` give
        ``https://host/os/x86_64/foo-1.0-r0.apk``.
        """
        parsed = urlparse(self.index_url)
        path = PurePosixPath(parsed.path)
        new_path = str(path.with_name(filename))
        return urlunparse(parsed._replace(path=new_path, params="", query="", fragment=""))

    def fetch_index(self) -> Dict[str, PublishedPackage]:
        """Fetch APKINDEX and return the latest version of every package."""
        url = self.index_url
        logger.debug("fetching %s", url)
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp:
                data = resp.read()
        except urllib.error.HTTPError as e:
            raise IndexFetchError(f"HTTP {e.code} fetching APK index: {url}") from e
        except urllib.error.URLError as e:
            raise IndexFetchError(f"Network error fetching APK index {url}: {e.reason}") from e
        except OSError as e:
            raise IndexFetchError(f"Failed to fetch APK index {url}: {e}") from e

        try:
            raw = read_member(io.BytesIO(data), INDEX_TOKEN)
        except ExtractionError as e:
            raise IndexFetchError(f"Failed to read APK index {url}: {e}") from e
        if raw is None:
            raise IndexFetchError(f"No {INDEX_TOKEN} file found in {url}")

        latest: Dict[str, PublishedPackage] = {}
        for pkg in parse_apkindex(raw.decode("utf-8", "ignore")):
            current = latest.get(pkg.name)
            if current is None or apk_version_key(pkg.version) > apk_version_key(current.version):
                latest[pkg.name] = pkg

        logger.debug("found %d packages in %s", len(latest), url)
        return latest

    def download_archive(self, filename: str, output_dir: Path) -> Path:
        """Download an archive published next to the index into output_dir."""
        url = self.archive_url(filename)
        output_file = output_dir / filename

        logger.debug("downloading %s", url)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            with urllib.request.urlopen(url, timeout=self.timeout) as resp, \
                    open(output_file, "wb") as out:
                shutil.copyfileobj(resp, out)
        except urllib.error.HTTPError as e:
            raise DownloadError(f"HTTP {e.code} downloading {url}") from e
        except urllib.error.URLError as e:
            raise DownloadError(f"Network error downloading {url}: {e.reason}") from e
        except OSError as e:
            raise DownloadError(f"Failed to download {url}: {e}") from e

        return output_file
