"""Compiler stage.

This module handles:
- Composing the ``wasm-pack build`` command
- Running it inside the build environment
- Checking that pkg/ holds a WebAssembly binary and a package.json whose
  identity matches the crate manifest

Compilation failures are not transient: they are reported with the
verbatim wasm-pack/cargo output and never retried.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from wasm_release.errors import COMPILATION_ERROR, CompilationError
from wasm_release.runner import ToolExecutionError, read_tool_output, run_tool
from wasm_release.types import StageName

if TYPE_CHECKING:
    from wasm_release.environment import BuildEnvironment
    from wasm_release.manifest.schema import CrateManifest

logger = logging.getLogger(__name__)

PKG_DIR_NAME = "pkg"


@dataclass
class CompileResult:
    """Result of the compiler stage.

    Attributes:
        pkg_dir: Directory holding the compiled artifact.
        wasm_files: WebAssembly binaries found in pkg_dir.
        package_json: Parsed package.json generated by wasm-pack.
        log_path: Stage log file.
        command: The command that was executed.
    """

    pkg_dir: Path
    wasm_files: list[Path]
    package_json: dict[str, Any]
    log_path: Path
    command: str


def compose_build_command(
    bindings_target: str = "web",
    profile: str = "release",
    out_dir: str = PKG_DIR_NAME,
    scope: str | None = None,
) -> list[str]:
    """Compose the ``wasm-pack build`` command.

    Args:
        bindings_target: wasm-pack --target (web, bundler, nodejs, ...).
        profile: release, dev or profiling.
        out_dir: Output directory relative to the crate root.
        scope: Optional npm scope.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = ["wasm-pack", "build", "--target", bindings_target, f"--{profile}"]
    cmd.extend(["--out-dir", out_dir])
    if scope:
        cmd.extend(["--scope", scope])
    return cmd


def read_package_json(pkg_dir: Path) -> dict[str, Any]:
    """Read the package.json wasm-pack generated.

    Args:
        pkg_dir: Compiled artifact directory.

    Returns:
        Parsed package.json.

    Raises:
        CompilationError: If the file is missing or not a JSON object.
    """
    path = pkg_dir / "package.json"
    if not path.is_file():
        raise CompilationError(
            f"wasm-pack did not produce {path}", code="missing_output"
        )
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise CompilationError(f"Cannot read {path}: {e}", code="missing_output") from e
    if not isinstance(data, dict):
        raise CompilationError(f"{path} is not a JSON object", code="missing_output")
    return data


def verify_compiled_artifact(
    pkg_dir: Path,
    manifest: CrateManifest,
    scope: str | None = None,
) -> tuple[list[Path], dict[str, Any]]:
    """Check the compiled artifact against the crate manifest.

    Args:
        pkg_dir: Compiled artifact directory.
        manifest: Crate manifest.
        scope: npm scope used for the build.

    Returns:
        Tuple of (wasm files, package.json).

    Raises:
        CompilationError: If outputs are missing or identity does not match.
    """
    if not pkg_dir.is_dir():
        raise CompilationError(
            f"wasm-pack did not produce {pkg_dir}", code="missing_output"
        )

    wasm_files = sorted(pkg_dir.glob("*.wasm"))
    if not wasm_files:
        raise CompilationError(
            f"No .wasm binary in {pkg_dir}", code="missing_output"
        )

    package_json = read_package_json(pkg_dir)
    expected_name = manifest.package_name(scope)
    if package_json.get("name") != expected_name:
        raise CompilationError(
            f"Generated package name {package_json.get('name')!r} does not match "
            f"manifest name {expected_name!r}",
            code="artifact_mismatch",
        )
    if package_json.get("version") != manifest.version:
        raise CompilationError(
            f"Generated package version {package_json.get('version')!r} does not "
            f"match manifest version {manifest.version!r}",
            code="artifact_mismatch",
        )

    return wasm_files, package_json


def compile_crate(
    environment: BuildEnvironment,
    manifest: CrateManifest,
    bindings_target: str = "web",
    profile: str = "release",
    scope: str | None = None,
    timeout: int | None = None,
) -> CompileResult:
    """Compile the staged source tree to a WebAssembly package directory.

    Args:
        environment: Build environment with the source staged and tools provisioned.
        manifest: Crate manifest of the staged source.
        bindings_target: wasm-pack --target.
        profile: Build profile.
        scope: Optional npm scope.
        timeout: Build timeout in seconds.

    Returns:
        CompileResult describing pkg/.

    Raises:
        CompilationError: If the build fails, times out or produces bad output.
    """
    log_path = environment.log_path(StageName.COMPILING)
    pkg_dir = environment.pkg_dir
    cmd = compose_build_command(bindings_target, profile, PKG_DIR_NAME, scope)

    logger.info(
        "Compiling %s %s (%s, %s)",
        manifest.name,
        manifest.version,
        bindings_target,
        profile,
    )

    try:
        result = run_tool(
            cmd,
            cwd=environment.src_dir,
            log_path=log_path,
            timeout=timeout,
            env=environment.env(),
        )
    except ToolExecutionError as e:
        raise CompilationError(
            str(e),
            code=e.code,
            output=read_tool_output(log_path),
            log_path=str(log_path),
        ) from e

    if not result.success:
        raise CompilationError(
            result.error_message or "wasm-pack build failed",
            code=COMPILATION_ERROR,
            output=result.output,
            log_path=str(log_path),
        )

    wasm_files, package_json = verify_compiled_artifact(pkg_dir, manifest, scope)
    logger.info("Compiled %d WebAssembly binaries into %s", len(wasm_files), pkg_dir)

    return CompileResult(
        pkg_dir=pkg_dir,
        wasm_files=wasm_files,
        package_json=package_json,
        log_path=log_path,
        command=result.command,
    )


__all__ = [
    "PKG_DIR_NAME",
    "CompileResult",
    "compile_crate",
    "compose_build_command",
    "read_package_json",
    "verify_compiled_artifact",
]
