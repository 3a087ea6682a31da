"""Exception types raised by soname-check."""

from typing import Optional, Sequence


class SonameCheckError(Exception):
    """Base class for every error reported by a soname check."""


class ManifestError(SonameCheckError):
    """The build manifest could not be read or contains a malformed line."""


class RecipeError(SonameCheckError):
    """A package recipe could not be read or parsed."""


class ExtractionError(SonameCheckError):
    """An archive could not be opened or extracted."""


class IndexFetchError(SonameCheckError):
    """The published package index could not be fetched or parsed."""


class DownloadError(SonameCheckError):
    """A published archive could not be downloaded."""


class IncompatibleSonameError(SonameCheckError):
    """A library changed its version suffix between two releases.

    Attributes:
        library: Library base name (e.g. ``libfoo``)
        existing_version: Version suffix in the published package (e.g. ``.so.1``)
        new_version: Version suffix in the newly built package (e.g. ``.so.2``)
        package: Package the library was found in, when known
    """

    def __init__(self, library: str, existing_version: str, new_version: str,
                 package: Optional[str] = None,
                 existing_files: Sequence[str] = (),
                 new_files: Sequence[str] = ()):
        self.library = library
        self.existing_version = existing_version
        self.new_version = new_version
        self.package = package
        self.existing_files = list(existing_files)
        self.new_files = list(new_files)

        message = (
            f"soname version check failed, {library} has an existing version "
            f"{existing_version} while new package contains a different version "
            f"{new_version}.  This can cause ABI failures"
        )
        if package:
            message = (
                f"{package}: soname files differ, this can cause an ABI break.  "
                f"Existing soname files {','.join(self.existing_files)}, "
                f"New soname files {','.join(self.new_files)}: {message}"
            )
        super().__init__(message)

    def for_package(self, package: str, existing_files: Sequence[str],
                    new_files: Sequence[str]) -> "IncompatibleSonameError":
        """Return a copy of this error annotated with package context."""
        return IncompatibleSonameError(
            self.library, self.existing_version, self.new_version,
            package=package, existing_files=existing_files, new_files=new_files,
        )
