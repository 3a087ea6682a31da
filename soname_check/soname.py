"""Discovery and parsing of versioned shared-object filenames.

A versioned shared object follows the usual ELF naming convention::

    <library-name>.so.<N>[.<N>...]

``libfoo.so.1`` and ``libfoo.so.1.2.3`` qualify, an unversioned
``libfoo.so`` does not (it carries no ABI version to compare), and neither do
files that merely contain ``.so`` followed by other text
(``libfoo.so.1.debug``, ``foo.sources2.txt``).
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

# Shortest library name before a ".so" that is followed by a dotted
# numeric tail reaching the end of the filename.
SONAME_RE = re.compile(r"^(?P<name>.+?)(?P<version>\.so(?:\.\d+)+)$")


@dataclass(frozen=True)
class Soname:
    """A versioned shared-object filename split into name and version.

    Attributes:
        base_name: Library name before ``.so`` (e.g. ``libfoo``)
        version: Version suffix including ``.so`` (e.g. ``.so.1.2``)
        path: File the soname was read from
    """
    base_name: str
    version: str
    path: Optional[Path] = None

    @property
    def filename(self) -> str:
        return self.base_name + self.version

    def same_library(self, other: "Soname") -> bool:
        return self.base_name == other.base_name

    def compatible_with(self, other: "Soname") -> bool:
        return self.same_library(other) and self.version == other.version


def parse_soname(path: Union[str, Path]) -> Optional[Soname]:
    """Split a filename into a Soname, or return None if it is not versioned.

    Only the last path component is considered.

    Examples::

        "libfoo.so.1"         -> Soname("libfoo", ".so.1")
        "libfoo-2.0.so.0"     -> Soname("libfoo-2.0", ".so.0")
        "libfoo.so"           -> None
    """
    path = Path(path)
    m = SONAME_RE.match(path.name)
    if not m:
        return None
    return Soname(base_name=m.group("name"), version=m.group("version"), path=path)


def is_soname(filename: str) -> bool:
    """Return True if filename is a versioned shared object."""
    return SONAME_RE.match(filename) is not None


def scan_sonames(directory: Path) -> List[Path]:
    """Find versioned shared objects below directory.

    Results are absolute paths in filesystem walk order.

    Raises:
        FileNotFoundError: If directory does not exist
        OSError: If a directory cannot be listed
    """
    directory = Path(directory).resolve()
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")

    def _raise(err: OSError):
        raise err

    found = []
    for root, _dirs, files in os.walk(directory, onerror=_raise):
        for name in files:
            path = Path(root) / name
            if is_soname(name) and path.is_file():
                found.append(path)
    return found
