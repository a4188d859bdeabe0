"""Manifest and pipeline file loading.

This module reads the crate manifest (Cargo.toml) of a source tree and the
optional wasm-release.yaml pipeline file, returning validated models.
Loading never modifies the source tree.
"""

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from wasm_release.errors import INVALID_SCOPE, ManifestError
from wasm_release.manifest.schema import (
    CrateManifest,
    PipelineFileSchema,
    check_scope,
)

MANIFEST_FILENAME = "Cargo.toml"
PIPELINE_FILENAME = "wasm-release.yaml"


def load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return its contents as a dict.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML content.

    Raises:
        FileNotFoundError: If the file does not exist.
        tomllib.TOMLDecodeError: If the file is not valid TOML.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def parse_cargo_manifest(data: dict[str, Any]) -> CrateManifest:
    """Extract and validate the package identity from Cargo.toml data.

    Args:
        data: Parsed Cargo.toml.

    Returns:
        Validated CrateManifest.

    Raises:
        ManifestError: If the [package] table is missing or invalid.
    """
    package = data.get("package")
    if not isinstance(package, dict):
        raise ManifestError("Cargo.toml has no [package] table")

    for key in ("name", "version"):
        value = package.get(key)
        if value is None:
            raise ManifestError(f"Cargo.toml [package] is missing '{key}'")
        # `version.workspace = true` and friends
        if isinstance(value, dict):
            raise ManifestError(
                f"Cargo.toml [package] {key} is inherited from a workspace; "
                "set it explicitly in the crate manifest"
            )

    lib = data.get("lib") or {}
    fields: dict[str, Any] = {
        "name": package["name"],
        "version": package["version"],
        "crate_types": lib.get("crate-type", []),
    }
    for key in ("description", "license", "repository"):
        value = package.get(key)
        if isinstance(value, str):
            fields[key] = value

    try:
        return CrateManifest.model_validate(fields)
    except ValidationError as e:
        raise ManifestError(f"Invalid Cargo.toml: {e}") from e


def load_crate_manifest(source_dir: Path) -> CrateManifest:
    """Load the crate manifest of a source tree.

    Args:
        source_dir: Directory containing Cargo.toml.

    Returns:
        Validated CrateManifest.

    Raises:
        ManifestError: If the manifest is missing, unreadable or invalid.
    """
    manifest_path = source_dir / MANIFEST_FILENAME
    if not manifest_path.is_file():
        raise ManifestError(f"Manifest not found: {manifest_path}")

    try:
        data = load_toml(manifest_path)
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"Cannot parse {manifest_path}: {e}") from e
    except OSError as e:
        raise ManifestError(f"Cannot read {manifest_path}: {e}") from e

    return parse_cargo_manifest(data)


def load_pipeline_file(path: Path) -> PipelineFileSchema:
    """Load and validate a wasm-release.yaml pipeline file.

    Args:
        path: Path to the YAML file.

    Returns:
        Validated PipelineFileSchema.

    Raises:
        ManifestError: If the file is unreadable or does not match the schema.
    """
    try:
        data = load_yaml(path)
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ManifestError(f"Cannot load pipeline file {path}: {e}") from e

    try:
        return PipelineFileSchema.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid pipeline file {path}: {e}") from e


def find_pipeline_file(source_dir: Path) -> PipelineFileSchema | None:
    """Load ``wasm-release.yaml`` from a source tree if it has one.

    Args:
        source_dir: Source tree root.

    Returns:
        PipelineFileSchema, or None when the tree has no pipeline file.
    """
    path = source_dir / PIPELINE_FILENAME
    if not path.is_file():
        return None
    return load_pipeline_file(path)


def normalize_scope(scope: str | None) -> str | None:
    """Validate an npm scope given on the command line.

    Applies the same rules as the pipeline file's ``scope`` field.

    Raises:
        ManifestError: If the scope is not a valid npm scope.
    """
    if scope is None:
        return None
    try:
        return check_scope(scope)
    except ValueError as e:
        raise ManifestError(str(e), code=INVALID_SCOPE) from e


__all__ = [
    "MANIFEST_FILENAME",
    "PIPELINE_FILENAME",
    "find_pipeline_file",
    "load_crate_manifest",
    "load_pipeline_file",
    "load_toml",
    "load_yaml",
    "normalize_scope",
    "parse_cargo_manifest",
]
