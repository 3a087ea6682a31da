"""soname-check: detect SONAME changes between rebuilt and published APK packages."""

__version__ = "0.1.0"
