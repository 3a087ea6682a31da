"""Utility functions for safe package extraction."""

import bz2
import gzip
import io
import logging
import lzma
import shutil
import tarfile
import zlib
from pathlib import Path
from typing import BinaryIO, Optional

from ..errors import ExtractionError

logger = logging.getLogger(__name__)


def safe_extract_tar(tar: tarfile.TarFile, extract_dir: Path):
    """Safely extract tar archive preventing path traversal (CVE-2007-4559).

    Works with streamed archives: members are visited once, in archive order.
    Only regular files and directories are written. Links and device files
    are skipped since soname discovery only looks at real files.

    Args:
        tar: tarfile.TarFile object
        extract_dir: Destination directory

    Raises:
        ExtractionError: If any member attempts path traversal
    """
    extract_dir = extract_dir.resolve()

    for member in tar:
        # Compute target path and resolve it
        member_path = (extract_dir / member.name).resolve()

        # Check path traversal
        if member_path != extract_dir and extract_dir not in member_path.parents:
            raise ExtractionError(
                f"Path traversal attempt detected: {member.name} "
                f"would extract outside {extract_dir}"
            )

        if member.isdir():
            member_path.mkdir(parents=True, exist_ok=True)
        elif member.isfile():
            member_path.parent.mkdir(parents=True, exist_ok=True)
            src = tar.extractfile(member)
            with src, open(member_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
        else:
            logger.debug("skipping non-regular tar member %s", member.name)


_COMPRESSION_MAGIC = (
    (b"\x1f\x8b", lambda f: gzip.GzipFile(fileobj=f, mode="rb")),
    (b"BZh", bz2.BZ2File),
    (b"\xfd7zXZ\x00", lzma.LZMAFile),
)


def _decompressed(fileobj: BinaryIO) -> BinaryIO:
    """Wrap fileobj in a multi-stream aware decompressor when compressed."""
    head = fileobj.read(6)
    fileobj.seek(-len(head), io.SEEK_CUR)
    for magic, opener in _COMPRESSION_MAGIC:
        if head.startswith(magic):
            return opener(fileobj)
    return fileobj


def extract_archive(fileobj: BinaryIO, extract_dir: Path) -> Path:
    """Stream a (possibly compressed) tar archive into extract_dir.

    APK packages are several gzip-compressed tar segments concatenated
    (signature, control, data). The decompressors used here read every
    compressed stream, and end-of-archive blocks are ignored so every tar
    segment is extracted.

    Args:
        fileobj: Seekable binary file object positioned at the start of the archive
        extract_dir: Directory to extract into (created if missing)

    Returns:
        Path to the extraction root

    Raises:
        ExtractionError: On malformed headers, corrupt compression or I/O failure
    """
    name = getattr(fileobj, "name", "<stream>")

    try:
        extract_dir.mkdir(parents=True, exist_ok=True)
        stream = _decompressed(fileobj)
        with tarfile.open(fileobj=stream, mode="r|", ignore_zeros=True) as tar:
            safe_extract_tar(tar, extract_dir)
    except ExtractionError:
        raise
    except (tarfile.TarError, EOFError, zlib.error, lzma.LZMAError, OSError) as e:
        raise ExtractionError(f"failed to untar {name}: {e}") from e

    return extract_dir


def read_member(fileobj: BinaryIO, member_name: str) -> Optional[bytes]:
    """Return the content of a single regular file inside a tar archive.

    Accepts the same (possibly compressed, possibly concatenated) archives
    as extract_archive. Returns None when no such member exists.

    Raises:
        ExtractionError: On malformed headers or corrupt compression
    """
    name = getattr(fileobj, "name", "<stream>")
    try:
        stream = _decompressed(fileobj)
        with tarfile.open(fileobj=stream, mode="r|", ignore_zeros=True) as tar:
            for member in tar:
                path = member.name[2:] if member.name.startswith("./") else member.name
                if member.isfile() and path == member_name:
                    return tar.extractfile(member).read()
    except (tarfile.TarError, EOFError, zlib.error, lzma.LZMAError, OSError) as e:
        raise ExtractionError(f"failed to read {member_name} from {name}: {e}") from e
    return None
