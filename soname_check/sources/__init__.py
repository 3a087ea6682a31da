"""Package source adapters for soname-check.

Provides access to the two sides of a soname comparison:
- Published packages from an APK repository (APKINDEX + archive downloads)
- Freshly built archives in a local packages directory
"""

from .base import PackageIndex, PublishedPackage
from .apk import ApkIndexSource, parse_apkindex
from .local import LocalSource
from .utils import extract_archive

__all__ = [
    'PackageIndex',
    'PublishedPackage',
    'ApkIndexSource',
    'LocalSource',
    'extract_archive',
    'parse_apkindex',
]
