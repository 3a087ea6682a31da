"""Shared fixtures: builders for APK-style archives and indexes."""

import gzip
import io
import tarfile
from pathlib import Path

import pytest


def tar_segment(files):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, content in files.items():
            data = content if isinstance(content, bytes) else content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def build_apk(files, pkginfo="pkgname = test\n"):
    """Return bytes of an APK: gzip(control tar) + gzip(data tar), concatenated."""
    control = gzip.compress(tar_segment({".PKGINFO": pkginfo}))
    data = gzip.compress(tar_segment(files))
    return control + data


def build_apkindex(records):
    """Return bytes of an APKINDEX.tar.gz for (name, version) records."""
    text = "\n".join(f"P:{name}\nV:{version}\nA:x86_64\n" for name, version in records)
    return gzip.compress(tar_segment({"DESCRIPTION": "test repo", "APKINDEX": text}))


@pytest.fixture
def make_apk(tmp_path):
    """Factory writing an APK archive with the given files, returning its path."""
    def _make(path, files):
        path = Path(path)
        if not path.is_absolute():
            path = tmp_path / path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_apk(files))
        return path
    return _make
