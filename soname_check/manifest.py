"""Build manifest reader.

The package repository CI writes one line for every ``.apk`` it has built::

    ARCH|NAME|VERSION-rEPOCH

The epoch field may keep the ``.apk`` suffix of the archive filename, e.g.
``x86_64|hello-world|0.0.2-r0.apk``.

Subpackages are built from the same recipe and share the parent's release
metadata, so the manifest is expanded with the subpackages declared in each
package's melange recipe (``{recipe_dir}/{name}.yaml``).
"""

import dataclasses
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Union

import yaml

from .errors import ManifestError, RecipeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuiltPackage:
    """A package built by CI, as listed in the build manifest."""

    name: str
    arch: str
    version: str
    epoch: str

    @property
    def filename(self) -> str:
        """Archive filename, e.g. ``hello-world-0.0.2-r0.apk``."""
        return f"{self.name}-{self.version}-r{self.epoch}.apk"

    def archive_path(self, packages_dir: Path) -> Path:
        """Location of the built archive below packages_dir."""
        return Path(packages_dir) / self.arch / self.filename

    @classmethod
    def parse(cls, line: str) -> "BuiltPackage":
        """Parse one manifest line.

        Raises:
            ValueError: If the line does not have exactly 3 pipe-separated
                fields, or the version field does not have exactly 2
                hyphen-separated parts
        """
        parts = line.split("|")
        if len(parts) != 3:
            raise ValueError(
                f"expected 3 parts but found {len(parts)} when scanning {line}"
            )
        arch, name, full_version = parts

        version_parts = full_version.split("-")
        if len(version_parts) != 2:
            raise ValueError(
                f"expected 2 version parts but found {len(version_parts)} "
                f"when scanning {line}"
            )
        version, epoch = version_parts
        epoch = epoch[1:] if epoch.startswith("r") else epoch
        epoch = epoch[:-len(".apk")] if epoch.endswith(".apk") else epoch

        return cls(name=name, arch=arch, version=version, epoch=epoch)


def parse_manifest(path: Union[str, Path]) -> Dict[str, BuiltPackage]:
    """Read the build manifest into a name -> BuiltPackage mapping.

    Raises:
        ManifestError: If the file cannot be read or any line is malformed
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"opening file {path}: {e}") from e

    packages: Dict[str, BuiltPackage] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        try:
            pkg = BuiltPackage.parse(line)
        except ValueError as e:
            raise ManifestError(f"{path}:{lineno}: {e}") from e
        packages[pkg.name] = pkg

    return packages


_VARIABLE_RE = re.compile(r"\$\{\{\s*([\w.-]+)\s*\}\}")


def recipe_substitutions(config: dict) -> Dict[str, str]:
    """Return the melange variables a recipe can reference in its names.

    Raises:
        RecipeError: If the ``package`` or ``vars`` block is not a mapping
    """
    package = config.get("package") or {}
    if not isinstance(package, dict):
        raise RecipeError("package block is not a mapping")
    variables = config.get("vars") or {}
    if not isinstance(variables, dict):
        raise RecipeError("vars block is not a mapping")

    subs = {}
    for key in ("name", "version", "epoch"):
        if package.get(key) is not None:
            subs[f"package.{key}"] = str(package[key])
    if "package.version" in subs:
        subs["package.full-version"] = (
            f"{subs['package.version']}-r{subs.get('package.epoch', '0')}"
        )
    for key, value in variables.items():
        subs[f"vars.{key}"] = str(value)
    return subs


def substitute_variables(text: str, subs: Dict[str, str]) -> str:
    """Replace ``${{name}}`` references with their values.

    Raises:
        RecipeError: If a referenced variable is not defined
    """
    def _replace(match):
        key = match.group(1)
        if key not in subs:
            raise RecipeError(f"undefined variable ${{{{{key}}}}} in {text!r}")
        return subs[key]

    return _VARIABLE_RE.sub(_replace, text)


def range_items(config: dict, name: str) -> Dict[str, str]:
    """Return the items of the ``data`` entry a subpackage ranges over.

    Raises:
        RecipeError: If the data block or the entry's items are malformed,
            or no entry has that name
    """
    data = config.get("data") or []
    if not isinstance(data, list):
        raise RecipeError("data block is not a list")
    for entry in data:
        if isinstance(entry, dict) and entry.get("name") == name:
            items = entry.get("items") or {}
            if not isinstance(items, dict):
                raise RecipeError(f"items of data {name} is not a mapping")
            return {str(k): str(v) for k, v in items.items()}
    raise RecipeError(f"undefined range {name}")


def read_subpackages(recipe_file: Union[str, Path]) -> List[str]:
    """Return the subpackage names declared in a melange recipe.

    Variables such as ``${{package.name}}`` are replaced with the values
    from the recipe's ``package`` and ``vars`` blocks. A subpackage with a
    ``range`` yields one name per item of the matching ``data`` entry.

    Raises:
        RecipeError: If the recipe is missing, not valid YAML or malformed
    """
    recipe_file = Path(recipe_file)
    try:
        with open(recipe_file, encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except OSError as e:
        raise RecipeError(f"failed to read melange config {recipe_file}: {e}") from e
    except yaml.YAMLError as e:
        raise RecipeError(f"failed to parse melange config {recipe_file}: {e}") from e

    if not isinstance(config, dict):
        raise RecipeError(f"melange config {recipe_file} is not a mapping")

    subpackages = config.get("subpackages") or []
    if not isinstance(subpackages, list):
        raise RecipeError(
            f"melange config {recipe_file}: subpackages is not a list"
        )

    try:
        subs = recipe_substitutions(config)
        names = []
        for sub in subpackages:
            if not (isinstance(sub, dict) and sub.get("name")):
                continue
            if sub.get("range"):
                for key, value in range_items(config, sub["range"]).items():
                    range_subs = dict(subs, **{"range.key": key, "range.value": value})
                    names.append(substitute_variables(str(sub["name"]), range_subs))
            else:
                names.append(substitute_variables(str(sub["name"]), subs))
    except RecipeError as e:
        raise RecipeError(f"melange config {recipe_file}: {e}") from e
    return names


def expand_subpackages(packages: Dict[str, BuiltPackage],
                       recipe_dir: Union[str, Path]) -> Dict[str, BuiltPackage]:
    """Add every declared subpackage to a copy of packages.

    Subpackages inherit arch, version and epoch from their parent. Recipes
    that cannot be read are logged and skipped.
    """
    recipe_dir = Path(recipe_dir)
    expanded = dict(packages)

    for name, pkg in packages.items():
        recipe_file = recipe_dir / f"{name}.yaml"
        try:
            subpackages = read_subpackages(recipe_file)
        except RecipeError as e:
            logger.warning("%s", e)
            continue

        if not subpackages:
            logger.debug("no subpackages found for %s", name)
        for sub in subpackages:
            expanded[sub] = dataclasses.replace(pkg, name=sub)

    return expanded


def load_built_packages(manifest: Union[str, Path],
                        recipe_dir: Union[str, Path]) -> Dict[str, BuiltPackage]:
    """Parse the build manifest and expand it with subpackages."""
    return expand_subpackages(parse_manifest(manifest), recipe_dir)
