#!/usr/bin/env python3
"""Setup script for soname-check."""

import re
from pathlib import Path

from setuptools import find_packages, setup

# Read README
root = Path(__file__).parent
readme_file = root / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

# Single-source version from package
version_file = root / "soname_check" / "__init__.py"
version_match = re.search(
    r"^__version__\s*=\s*[\"']([^\"']+)[\"']",
    version_file.read_text(),
    re.MULTILINE,
)
if not version_match:
    raise RuntimeError("Unable to find __version__ in soname_check/__init__.py")
package_version = version_match.group(1)

setup(
    name="soname-check",
    version=package_version,
    description="Detect SONAME changes between rebuilt and published APK packages",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "packaging",
        "pyyaml",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "soname-check=soname_check.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Build Tools",
        "Topic :: System :: Software Distribution",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="abi soname apk alpine wolfi shared-library",
)
