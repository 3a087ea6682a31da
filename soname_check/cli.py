"""CLI interface for soname-check."""

import argparse
import json
import logging
import sys
import tempfile
from pathlib import Path

from . import __version__
from .checker import DEFAULT_INDEX_URL, CheckOptions, SonameChecker
from .errors import SonameCheckError
from .report import SonameCheckErrors
from .soname import parse_soname, scan_sonames
from .sources.utils import extract_archive


def _setup_logging(verbosity: int) -> None:
    level = {-1: logging.WARNING, 0: logging.INFO}.get(verbosity, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="soname-check: %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def cmd_check(args):
    """Check freshly built packages for soname changes."""
    options = CheckOptions(
        package_list_file=args.package_list_file,
        recipe_dir=args.dir,
        packages_dir=args.packages_dir,
        index_url=args.apk_index_url,
        timeout=args.timeout,
        package_names=args.packages,
    )

    try:
        checker = SonameChecker(options)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        checker.check()
    except SonameCheckErrors as e:
        print(f"{len(e)} package(s) failed the soname check:", file=sys.stderr)
        for err in e:
            print(f"  {err}", file=sys.stderr)
        return 2
    except SonameCheckError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("soname check passed", file=sys.stderr)
    return 0


def cmd_scan(args):
    """List versioned shared objects in a directory or archive."""
    target = args.path
    if not target.exists():
        print(f"Error: path not found: {target}", file=sys.stderr)
        return 1

    with tempfile.TemporaryDirectory(prefix="soname-scan-") as tmp:
        root = target
        if target.is_file():
            root = Path(tmp)
            try:
                with open(target, "rb") as f:
                    extract_archive(f, root)
            except (SonameCheckError, OSError) as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1

        sonames = [parse_soname(p) for p in scan_sonames(root)]
        entries = [
            {
                "path": str(s.path.relative_to(root.resolve())),
                "name": s.base_name,
                "version": s.version,
            }
            for s in sonames
        ]

    if args.format == "json":
        print(json.dumps(entries, indent=2))
    else:
        if not entries:
            print(f"No soname files found in {target}", file=sys.stderr)
        for e in entries:
            print(f"{e['path']}  {e['name']} {e['version']}")
    return 0


def create_parser():
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="soname-check",
        description="soname-check: detect SONAME changes in rebuilt APK packages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check every package listed in packages.log against the published index
  soname-check check --package-list-file packages.log --packages-dir packages

  # Only check some of the built packages
  soname-check check openssl libcrypto3

  # List sonames in a built archive
  soname-check scan packages/x86_64/openssl-3.1.0-r0.apk

Exit codes:
  0  = No soname changes
  1  = Invalid input, unreadable manifest or index
  2  = One or more packages changed a soname (possible ABI break)
"""
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # check
    ck = subparsers.add_parser("check", help="Compare built packages with the published index")
    ck.add_argument("packages", nargs="*", default=[],
                    help="Only check these package names (default: all built packages)")
    ck.add_argument("--package-list-file", type=Path, default=Path("packages.log"),
                    help="Build manifest with ARCH|NAME|VERSION-rEPOCH lines (default: packages.log)")
    ck.add_argument("--dir", type=Path, default=Path("."),
                    help="Directory containing the melange recipes (default: .)")
    ck.add_argument("--packages-dir", type=Path, default=Path("packages"),
                    help="Directory containing the built packages (default: packages)")
    ck.add_argument("--apk-index-url", metavar="URL", default=DEFAULT_INDEX_URL,
                    help=f"APKINDEX URL of the published repository (default: {DEFAULT_INDEX_URL})")
    ck.add_argument("--timeout", type=float, default=60,
                    help="Network timeout in seconds (default: 60)")

    # scan
    sc = subparsers.add_parser("scan", help="List versioned shared objects in a directory or archive")
    sc.add_argument("path", type=Path, help="Extracted package directory or .apk archive")
    sc.add_argument("--format", choices=["text", "json"], default="text")

    for sub in (ck, sc):
        sub.add_argument("-v", "--verbose", action="store_const", const=1, default=0,
                         dest="verbosity")
        sub.add_argument("-q", "--quiet", action="store_const", const=-1, dest="verbosity")

    return parser


def main(argv=None):
    """Entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    _setup_logging(args.verbosity)

    handlers = {
        "check": cmd_check,
        "scan":  cmd_scan,
    }
    return handlers[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
