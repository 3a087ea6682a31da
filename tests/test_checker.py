"""Tests for the soname checker."""

from pathlib import Path

import pytest

from conftest import build_apk
from soname_check.checker import (
    CheckOptions,
    CheckVerdict,
    SonameChecker,
    check_sonames_match,
)
from soname_check.errors import (
    DownloadError,
    ExtractionError,
    IncompatibleSonameError,
    IndexFetchError,
    ManifestError,
)
from soname_check.manifest import BuiltPackage
from soname_check.report import SonameCheckErrors
from soname_check.sources.base import PackageIndex, PublishedPackage


class FakeIndex(PackageIndex):
    """In-memory published repository."""

    def __init__(self, archives=None, fail=False):
        # name -> (version, files)
        self.archives = archives or {}
        self.fail = fail
        self.downloads = []

    def fetch_index(self):
        if self.fail:
            raise IndexFetchError("HTTP 500 fetching APK index: https://example.com/APKINDEX.tar.gz")
        return {
            name: PublishedPackage(name=name, version=version)
            for name, (version, _files) in self.archives.items()
        }

    def download_archive(self, filename, output_dir):
        self.downloads.append(filename)
        for name, (version, files) in self.archives.items():
            if filename == f"{name}-{version}.apk":
                output_dir.mkdir(parents=True, exist_ok=True)
                path = output_dir / filename
                path.write_bytes(build_apk(files))
                return path
        raise DownloadError(f"HTTP 404 downloading https://example.com/{filename}")


@pytest.fixture
def workspace(tmp_path, make_apk):
    """Build manifest, recipe dir and packages dir under tmp_path."""

    class Workspace:
        manifest = tmp_path / "packages.log"
        recipes = tmp_path / "recipes"
        packages = tmp_path / "packages"

        def build(self, name, version, epoch, files, arch="x86_64"):
            make_apk(self.packages / arch / f"{name}-{version}-r{epoch}.apk", files)

        def options(self, **kwargs):
            return CheckOptions(
                package_list_file=self.manifest,
                recipe_dir=self.recipes,
                packages_dir=self.packages,
                index_url="https://example.com/os/x86_64/APKINDEX.tar.gz",
                **kwargs,
            )

    ws = Workspace()
    ws.recipes.mkdir()
    return ws


# check_sonames_match

def test_sonames_match_identical_versions():
    check_sonames_match(["/a/usr/lib/libfoo.so.1"], ["/b/usr/lib/libfoo.so.1"])


def test_sonames_match_new_library_is_compatible():
    check_sonames_match(["libfoo.so.1"], ["libfoo.so.1", "libbar.so.7"])


def test_sonames_match_removed_library_is_compatible():
    check_sonames_match(["libfoo.so.1", "libbar.so.7"], ["libfoo.so.1"])


def test_sonames_match_version_change():
    with pytest.raises(IncompatibleSonameError) as exc_info:
        check_sonames_match(["libfoo.so.1"], ["libfoo.so.2"])

    err = exc_info.value
    assert err.library == "libfoo"
    assert err.existing_version == ".so.1"
    assert err.new_version == ".so.2"
    assert "libfoo has an existing version .so.1" in str(err)
    assert "different version .so.2" in str(err)


def test_sonames_match_duplicate_existing_last_wins():
    # the later entry replaces the earlier one for the same library
    check_sonames_match(["libfoo.so.1", "libfoo.so.2"], ["libfoo.so.2"])
    with pytest.raises(IncompatibleSonameError):
        check_sonames_match(["libfoo.so.2", "libfoo.so.1"], ["libfoo.so.2"])


# diff

def test_diff_no_previous_package(workspace):
    checker = SonameChecker(workspace.options(), index=FakeIndex())
    built = BuiltPackage("brand-new", "x86_64", "1.0", "0")

    # no archive exists either: nothing must be read
    result = checker.diff("brand-new", built, {})

    assert result.verdict == CheckVerdict.NO_PREVIOUS


def test_diff_no_previous_package_is_logged(workspace, caplog):
    caplog.set_level("INFO", logger="soname_check")
    checker = SonameChecker(workspace.options(), index=FakeIndex())

    checker.diff("brand-new", BuiltPackage("brand-new", "x86_64", "1.0", "0"), {})

    assert "no existing package found for brand-new" in caplog.text


def test_diff_no_sonames(workspace):
    workspace.build("tool", "2.0", "0", {"usr/bin/tool": "bin", "usr/lib/libtool.so": "dev"})
    index = FakeIndex({"tool": ("1.0-r0", {"usr/lib/libtool.so.1": "lib"})})
    checker = SonameChecker(workspace.options(), index=index)

    result = checker.diff("tool", BuiltPackage("tool", "x86_64", "2.0", "0"), index.fetch_index())

    assert result.verdict == CheckVerdict.NO_SONAMES
    assert index.downloads == []


def test_diff_compatible(workspace):
    workspace.build("libfoo", "1.2.4", "0", {"usr/lib/libfoo.so.1": "lib"})
    index = FakeIndex({"libfoo": ("1.2.3-r1", {"usr/lib/libfoo.so.1": "lib"})})
    checker = SonameChecker(workspace.options(), index=index)

    result = checker.diff("libfoo", BuiltPackage("libfoo", "x86_64", "1.2.4", "0"),
                          index.fetch_index())

    assert result.verdict == CheckVerdict.COMPATIBLE
    assert result.new_sonames == ["libfoo.so.1"]
    assert result.existing_sonames == ["libfoo.so.1"]
    assert index.downloads == ["libfoo-1.2.3-r1.apk"]


def test_diff_incompatible_names_package_and_files(workspace):
    workspace.build("hello-world", "0.0.2", "0", {"usr/lib/libfoo.so.2": "lib"})
    index = FakeIndex({"hello-world": ("0.0.1", {"usr/lib/libfoo.so.1": "lib"})})
    checker = SonameChecker(workspace.options(), index=index)

    with pytest.raises(IncompatibleSonameError) as exc_info:
        checker.diff("hello-world", BuiltPackage("hello-world", "x86_64", "0.0.2", "0"),
                     index.fetch_index())

    err = exc_info.value
    assert err.package == "hello-world"
    assert err.library == "libfoo"
    assert (err.existing_version, err.new_version) == (".so.1", ".so.2")
    assert err.existing_files == ["libfoo.so.1"]
    assert err.new_files == ["libfoo.so.2"]
    assert str(err).startswith("hello-world: soname files differ")


def test_diff_missing_built_archive(workspace):
    index = FakeIndex({"ghost": ("1.0-r0", {"usr/lib/libghost.so.1": "lib"})})
    checker = SonameChecker(workspace.options(), index=index)

    with pytest.raises(ExtractionError, match="failed to read"):
        checker.diff("ghost", BuiltPackage("ghost", "x86_64", "1.1", "0"), index.fetch_index())


def test_diff_download_failure(workspace):
    workspace.build("libfoo", "2.0", "0", {"usr/lib/libfoo.so.2": "lib"})
    checker = SonameChecker(workspace.options(), index=FakeIndex())
    existing = {"libfoo": PublishedPackage("libfoo", "1.0-r0")}

    with pytest.raises(DownloadError, match="HTTP 404"):
        checker.diff("libfoo", BuiltPackage("libfoo", "x86_64", "2.0", "0"), existing)


# check

def test_check_end_to_end(workspace):
    workspace.manifest.write_text("x86_64|hello-world|0.0.2-r0.apk\n")
    workspace.build("hello-world", "0.0.2", "0", {"usr/lib/libfoo.so.2": "lib"})
    index = FakeIndex({"hello-world": ("0.0.1", {"usr/lib/libfoo.so.1": "lib"})})
    checker = SonameChecker(workspace.options(), index=index)

    with pytest.raises(SonameCheckErrors) as exc_info:
        checker.check()

    report = exc_info.value
    assert len(report) == 1
    finding = report.errors[0]
    assert index.downloads == ["hello-world-0.0.1.apk"]
    assert finding.library == "libfoo"
    assert (finding.existing_version, finding.new_version) == (".so.1", ".so.2")


def test_check_passes(workspace):
    workspace.manifest.write_text("x86_64|libfoo|1.0.1-r0\nx86_64|brand-new|1.0-r0\n")
    workspace.build("libfoo", "1.0.1", "0", {"usr/lib/libfoo.so.1": "lib"})
    workspace.build("brand-new", "1.0", "0", {"usr/lib/libnew.so.1": "lib"})
    index = FakeIndex({"libfoo": ("1.0.0-r3", {"usr/lib/libfoo.so.1": "lib"})})

    assert SonameChecker(workspace.options(), index=index).check() is None


def test_check_collects_failures_in_order(workspace):
    workspace.manifest.write_text(
        "x86_64|first|2.0-r0\n"
        "x86_64|second|2.0-r0\n"
        "x86_64|third|2.0-r0\n"
    )
    workspace.build("first", "2.0", "0", {"usr/lib/libfirst.so.2": "lib"})
    workspace.build("second", "2.0", "0", {"usr/lib/libsecond.so.1": "lib"})
    workspace.build("third", "2.0", "0", {"usr/lib/libthird.so.5": "lib"})
    index = FakeIndex({
        "first": ("1.0-r0", {"usr/lib/libfirst.so.1": "lib"}),
        "second": ("1.0-r0", {"usr/lib/libsecond.so.1": "lib"}),
        "third": ("1.0-r0", {"usr/lib/libthird.so.4": "lib"}),
    })

    with pytest.raises(SonameCheckErrors) as exc_info:
        SonameChecker(workspace.options(), index=index).check()

    report = exc_info.value
    assert [e.package for e in report] == ["first", "third"]
    lines = str(report).splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("first:")
    assert lines[1].startswith("third:")


def test_check_io_failure_does_not_abort_other_packages(workspace):
    workspace.manifest.write_text("x86_64|missing|2.0-r0\nx86_64|libfoo|2.0-r0\n")
    workspace.build("libfoo", "2.0", "0", {"usr/lib/libfoo.so.2": "lib"})
    index = FakeIndex({
        "missing": ("1.0-r0", {"usr/lib/libmissing.so.1": "lib"}),
        "libfoo": ("1.0-r0", {"usr/lib/libfoo.so.1": "lib"}),
    })

    with pytest.raises(SonameCheckErrors) as exc_info:
        SonameChecker(workspace.options(), index=index).check()

    errors = exc_info.value.errors
    assert isinstance(errors[0], ExtractionError)
    assert isinstance(errors[1], IncompatibleSonameError)


def test_check_includes_subpackages(workspace):
    workspace.manifest.write_text("x86_64|openssl|3.2.0-r0.apk\n")
    (workspace.recipes / "openssl.yaml").write_text(
        "package:\n  name: openssl\nsubpackages:\n  - name: libcrypto3\n"
    )
    workspace.build("openssl", "3.2.0", "0", {"usr/bin/openssl": "bin"})
    workspace.build("libcrypto3", "3.2.0", "0", {"usr/lib/libcrypto.so.4": "lib"})
    index = FakeIndex({
        "openssl": ("3.1.4-r0", {"usr/bin/openssl": "bin"}),
        "libcrypto3": ("3.1.4-r0", {"usr/lib/libcrypto.so.3": "lib"}),
    })

    with pytest.raises(SonameCheckErrors) as exc_info:
        SonameChecker(workspace.options(), index=index).check()

    assert [e.package for e in exc_info.value] == ["libcrypto3"]


def test_check_package_names_filter(workspace):
    workspace.manifest.write_text("x86_64|first|2.0-r0\nx86_64|second|2.0-r0\n")
    workspace.build("second", "2.0", "0", {"usr/lib/libsecond.so.1": "lib"})
    index = FakeIndex({
        "first": ("1.0-r0", {"usr/lib/libfirst.so.1": "lib"}),
        "second": ("1.0-r0", {"usr/lib/libsecond.so.1": "lib"}),
    })

    SonameChecker(workspace.options(package_names=["second"]), index=index).check()

    assert index.downloads == ["second-1.0-r0.apk"]


def test_check_index_failure_is_fatal(workspace):
    workspace.manifest.write_text("x86_64|libfoo|2.0-r0\n")

    with pytest.raises(IndexFetchError):
        SonameChecker(workspace.options(), index=FakeIndex(fail=True)).check()


def test_check_malformed_manifest_is_fatal(workspace):
    workspace.manifest.write_text("x86_64|libfoo|2.0\n")

    with pytest.raises(ManifestError):
        SonameChecker(workspace.options(), index=FakeIndex()).check()


def test_check_cleans_up_temporary_directories(workspace, tmp_path, monkeypatch):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr("tempfile.tempdir", str(scratch))
    workspace.manifest.write_text("x86_64|libfoo|2.0-r0\n")
    workspace.build("libfoo", "2.0", "0", {"usr/lib/libfoo.so.2": "lib"})
    index = FakeIndex({"libfoo": ("1.0-r0", {"usr/lib/libfoo.so.1": "lib"})})

    with pytest.raises(SonameCheckErrors):
        SonameChecker(workspace.options(), index=index).check()

    assert list(Path(scratch).iterdir()) == []
