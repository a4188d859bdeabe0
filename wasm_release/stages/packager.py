"""Packager stage.

This module handles:
- Validating that the manifest version can appear verbatim in the archive name
- Running ``wasm-pack pack`` (npm pack) on the compiled artifact
- Verifying the tarball has the layout npm expects: a package.json whose
  entry point, type declarations and WebAssembly payload are all present

A version that cannot be used verbatim is rejected rather than
sanitized, so the published identity always equals the manifest.
"""

from __future__ import annotations

import json
import logging
import re
import tarfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from wasm_release.errors import (
    INVALID_VERSION,
    LAYOUT_ERROR,
    PACKAGING_ERROR,
    PackagingError,
)
from wasm_release.runner import ToolExecutionError, read_tool_output, run_tool
from wasm_release.types import StageName

if TYPE_CHECKING:
    from wasm_release.environment import BuildEnvironment
    from wasm_release.manifest.schema import CrateManifest

logger = logging.getLogger(__name__)

# Characters npm keeps verbatim in tarball names: no build metadata ('+')
ARCHIVE_VERSION_PATTERN = re.compile(r"\d+\.\d+\.\d+(?:-[0-9A-Za-z.\-]+)?")

# npm pack puts every file under this directory
TARBALL_ROOT = "package"


@dataclass
class PackageLayout:
    """Layout of a verified package archive.

    Attributes:
        name: Package name from the embedded package.json.
        version: Package version from the embedded package.json.
        entry_point: File referenced by ``module`` or ``main``.
        types: Type declaration file, if declared.
        wasm_files: WebAssembly payload files.
        files: Every file in the archive, relative to the package root.
    """

    name: str
    version: str
    entry_point: str
    types: str | None = None
    wasm_files: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)


@dataclass
class PackResult:
    """Result of the packager stage."""

    archive_path: Path
    layout: PackageLayout
    log_path: Path
    command: str


def validate_archive_version(version: str) -> str:
    """Fail fast on versions that would not survive archive naming verbatim.

    Args:
        version: Manifest version.

    Returns:
        The version, unchanged.

    Raises:
        PackagingError: If the version contains unsupported characters.
    """
    if not ARCHIVE_VERSION_PATTERN.fullmatch(version):
        raise PackagingError(
            f"Version {version!r} cannot be used verbatim in an archive name "
            "(expected MAJOR.MINOR.PATCH with an optional -prerelease, "
            "no +build metadata)",
            code=INVALID_VERSION,
        )
    return version


def compose_pack_command(pkg_dir: Path) -> list[str]:
    """Compose the ``wasm-pack pack`` command."""
    return ["wasm-pack", "pack", str(pkg_dir)]


def _normalize_member(name: str) -> str | None:
    """Return a member path relative to the package root, or None if outside."""
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        raise PackagingError(
            f"Archive member {name!r} escapes the package root", code=LAYOUT_ERROR
        )
    parts = path.parts
    if parts and parts[0] == ".":
        parts = parts[1:]
    if not parts or parts[0] != TARBALL_ROOT:
        return None
    return "/".join(parts[1:])


def _strip_dot_slash(path: str) -> str:
    return path[2:] if path.startswith("./") else path


def verify_archive_layout(
    archive_path: Path,
    expected_name: str,
    expected_version: str,
) -> PackageLayout:
    """Check that a package tarball is installable without extra configuration.

    Args:
        archive_path: Package archive.
        expected_name: npm package name it must declare.
        expected_version: Version it must declare.

    Returns:
        PackageLayout describing the archive.

    Raises:
        PackagingError: If the archive is unreadable or its layout is incomplete.
    """
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            files: list[str] = []
            package_json: dict[str, Any] | None = None
            for member in tar.getmembers():
                if not member.isfile():
                    continue
                relative = _normalize_member(member.name)
                if relative is None:
                    raise PackagingError(
                        f"Archive member {member.name!r} is outside "
                        f"'{TARBALL_ROOT}/'",
                        code=LAYOUT_ERROR,
                    )
                files.append(relative)
                if relative == "package.json":
                    handle = tar.extractfile(member)
                    if handle is not None:
                        with handle:
                            package_json = json.loads(handle.read().decode("utf-8"))
    except (tarfile.TarError, OSError) as e:
        raise PackagingError(
            f"Cannot read archive {archive_path}: {e}", code=LAYOUT_ERROR
        ) from e
    except ValueError as e:
        raise PackagingError(
            f"Invalid package.json in {archive_path}: {e}", code=LAYOUT_ERROR
        ) from e

    if not isinstance(package_json, dict):
        raise PackagingError(
            f"{archive_path.name} has no {TARBALL_ROOT}/package.json",
            code=LAYOUT_ERROR,
        )

    name = package_json.get("name")
    version = package_json.get("version")
    if name != expected_name or version != expected_version:
        raise PackagingError(
            f"{archive_path.name} declares {name}@{version}, "
            f"expected {expected_name}@{expected_version}",
            code=LAYOUT_ERROR,
        )

    file_set = set(files)
    entry_point = package_json.get("module") or package_json.get("main")
    if not isinstance(entry_point, str) or not entry_point:
        raise PackagingError(
            f"{archive_path.name} package.json declares no module/main entry point",
            code=LAYOUT_ERROR,
        )
    entry_point = _strip_dot_slash(entry_point)
    if entry_point not in file_set:
        raise PackagingError(
            f"Entry point {entry_point} is missing from {archive_path.name}",
            code=LAYOUT_ERROR,
        )

    types = package_json.get("types") or package_json.get("typings")
    if isinstance(types, str) and types:
        types = _strip_dot_slash(types)
        if types not in file_set:
            raise PackagingError(
                f"Type declarations {types} are missing from {archive_path.name}",
                code=LAYOUT_ERROR,
            )
    else:
        types = None

    wasm_files = sorted(f for f in files if f.endswith(".wasm"))
    if not wasm_files:
        raise PackagingError(
            f"{archive_path.name} contains no WebAssembly payload",
            code=LAYOUT_ERROR,
        )

    return PackageLayout(
        name=name,
        version=version,
        entry_point=entry_point,
        types=types,
        wasm_files=wasm_files,
        files=sorted(files),
    )


def pack_artifact(
    environment: BuildEnvironment,
    manifest: CrateManifest,
    scope: str | None = None,
    timeout: int | None = None,
) -> PackResult:
    """Pack the compiled artifact into ``<package>-<version>.tgz``.

    Args:
        environment: Build environment holding the compiled pkg/.
        manifest: Crate manifest.
        scope: npm scope used for the build.
        timeout: Pack timeout in seconds.

    Returns:
        PackResult with the archive path and its verified layout.

    Raises:
        PackagingError: If the version is unusable, npm pack fails, or the
            archive is missing or malformed.
    """
    validate_archive_version(manifest.version)

    log_path = environment.log_path(StageName.PACKAGING)
    pkg_dir = environment.pkg_dir
    archive_name = manifest.archive_filename(scope)
    archive_path = pkg_dir / archive_name
    cmd = compose_pack_command(pkg_dir)

    try:
        result = run_tool(
            cmd,
            cwd=environment.src_dir,
            log_path=log_path,
            timeout=timeout,
            env=environment.env(),
        )
    except ToolExecutionError as e:
        raise PackagingError(
            str(e),
            code=e.code,
            output=read_tool_output(log_path),
            log_path=str(log_path),
        ) from e

    if not result.success:
        raise PackagingError(
            result.error_message or "wasm-pack pack failed",
            code=PACKAGING_ERROR,
            output=result.output,
            log_path=str(log_path),
        )

    if not archive_path.is_file():
        found = sorted(p.name for p in pkg_dir.glob("*.tgz"))
        raise PackagingError(
            f"Expected archive {archive_path} was not produced "
            f"(found: {', '.join(found) or 'none'})",
            code=PACKAGING_ERROR,
            output=result.output,
            log_path=str(log_path),
        )

    layout = verify_archive_layout(
        archive_path, manifest.package_name(scope), manifest.version
    )
    logger.info(
        "Packed %s (%d files, entry point %s)",
        archive_name,
        len(layout.files),
        layout.entry_point,
    )

    return PackResult(
        archive_path=archive_path,
        layout=layout,
        log_path=log_path,
        command=result.command,
    )


__all__ = [
    "ARCHIVE_VERSION_PATTERN",
    "TARBALL_ROOT",
    "PackResult",
    "PackageLayout",
    "compose_pack_command",
    "pack_artifact",
    "validate_archive_version",
    "verify_archive_layout",
]
