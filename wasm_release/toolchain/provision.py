"""Toolchain provisioning service.

This module provides the high-level provisioning API:
- provision_toolchain(): main entry point, run before any compilation
- add_rust_target(): install the compilation target with rustup
- ensure_wasm_pack(): reuse or install the packaging tool

Provisioning failures are fatal and never retried; the pipeline discards
the build environment instead of reusing a partially provisioned one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from wasm_release.errors import PROVISIONING_ERROR, ProvisioningError
from wasm_release.runner import ToolExecutionError, run_tool, tool_version
from wasm_release.toolchain.fetch import (
    DOWNLOAD_TIMEOUT,
    GITHUB_API_BASE,
    GITHUB_DOWNLOAD_BASE,
    download_wasm_pack,
    normalize_version,
)
from wasm_release.types import StageName

if TYPE_CHECKING:
    from wasm_release.config import Settings
    from wasm_release.environment import BuildEnvironment

logger = logging.getLogger(__name__)

WASM_PACK_VERSION_PATTERN = re.compile(r"wasm-pack\s+v?(\S+)")


@dataclass
class ProvisionResult:
    """Result of toolchain provisioning.

    Attributes:
        target: Installed compilation target triple.
        wasm_pack_version: Version of the wasm-pack that will be used.
        wasm_pack_installed: True if wasm-pack was installed in this run,
            False if an existing one was reused.
        log_path: Provisioning log file.
    """

    target: str
    wasm_pack_version: str
    wasm_pack_installed: bool
    log_path: Path


def parse_wasm_pack_version(output: str | None) -> str | None:
    """Extract the version from ``wasm-pack --version`` output."""
    if not output:
        return None
    match = WASM_PACK_VERSION_PATTERN.search(output)
    return match.group(1) if match else None


def version_satisfies(found: str | None, constraint: str) -> bool:
    """Check an installed version against a 'latest' or exact constraint.

    'latest' accepts any installed version; the pipeline does not go online
    just to compare against the newest release.
    """
    if found is None:
        return False
    if constraint == "latest":
        return True
    return normalize_version(found) == normalize_version(constraint)


def _tool_failure(
    description: str, log_path: Path, output: str
) -> ProvisioningError:
    return ProvisioningError(
        f"{description} failed",
        code=PROVISIONING_ERROR,
        output=output,
        log_path=str(log_path),
    )


def add_rust_target(
    environment: BuildEnvironment,
    target: str,
    timeout: int | None = None,
) -> None:
    """Install a compilation target with ``rustup target add``.

    Args:
        environment: Build environment.
        target: Target triple, e.g. wasm32-unknown-unknown.
        timeout: Command timeout in seconds.

    Raises:
        ProvisioningError: If rustup is missing, fails or times out.
    """
    log_path = environment.log_path(StageName.PROVISIONING)
    try:
        result = run_tool(
            ["rustup", "target", "add", target],
            cwd=environment.src_dir,
            log_path=log_path,
            timeout=timeout,
            env=environment.env(),
        )
    except ToolExecutionError as e:
        raise ProvisioningError(
            str(e), code=e.code, log_path=str(log_path)
        ) from e

    if not result.success:
        raise _tool_failure(f"rustup target add {target}", log_path, result.output)
    logger.info("Rust target %s is installed", target)


def install_wasm_pack_cargo(
    environment: BuildEnvironment,
    version: str,
    timeout: int | None = None,
) -> str:
    """Build wasm-pack from crates.io into the environment's tools directory.

    Args:
        environment: Build environment.
        version: 'latest' or a concrete version.
        timeout: Command timeout in seconds.

    Returns:
        The installed version.

    Raises:
        ProvisioningError: If cargo install fails.
    """
    log_path = environment.log_path(StageName.PROVISIONING)
    cmd = [
        "cargo",
        "install",
        "wasm-pack",
        "--locked",
        "--root",
        str(environment.tools_dir),
    ]
    if version != "latest":
        cmd.extend(["--version", normalize_version(version)])

    try:
        result = run_tool(
            cmd,
            cwd=environment.root,
            log_path=log_path,
            timeout=timeout,
            env=environment.env(),
        )
    except ToolExecutionError as e:
        raise ProvisioningError(
            str(e), code=e.code, log_path=str(log_path)
        ) from e

    if not result.success:
        raise _tool_failure("cargo install wasm-pack", log_path, result.output)

    installed = parse_wasm_pack_version(
        tool_version(["wasm-pack", "--version"], env=environment.env())
    )
    if installed is None:
        raise ProvisioningError(
            "wasm-pack was installed but cannot be executed",
            log_path=str(log_path),
        )
    return installed


def ensure_wasm_pack(
    environment: BuildEnvironment,
    version: str = "latest",
    method: str = "download",
    client: httpx.Client | None = None,
    download_base: str = GITHUB_DOWNLOAD_BASE,
    api_url: str = GITHUB_API_BASE,
    timeout: int | None = None,
) -> tuple[str, bool]:
    """Make a wasm-pack satisfying ``version`` available on the environment PATH.

    Args:
        environment: Build environment.
        version: 'latest' or a concrete version.
        method: 'download' (prebuilt binary) or 'cargo' (cargo install).
        client: HTTPX client for the download method.
        download_base: Download server base URL.
        api_url: GitHub API base URL.
        timeout: Timeout in seconds for the install.

    Returns:
        Tuple of (version, installed_in_this_run).

    Raises:
        ProvisioningError: If wasm-pack cannot be provided.
    """
    existing = parse_wasm_pack_version(
        tool_version(["wasm-pack", "--version"], env=environment.env())
    )
    if existing is not None and version_satisfies(existing, version):
        logger.info("Using existing wasm-pack %s", existing)
        return existing, False

    if existing:
        logger.info("Found wasm-pack %s, need %s", existing, version)

    if method == "cargo":
        return install_wasm_pack_cargo(environment, version, timeout=timeout), True

    if method != "download":
        raise ProvisioningError(f"Unknown wasm-pack install method: {method}")

    own_client = client is None
    http_client = client or httpx.Client()
    try:
        download = download_wasm_pack(
            http_client,
            version,
            environment.bin_dir,
            download_base=download_base,
            api_url=api_url,
            timeout=timeout or DOWNLOAD_TIMEOUT,
        )
    finally:
        if own_client:
            http_client.close()

    return download.version, True


def provision_toolchain(
    environment: BuildEnvironment,
    settings: Settings,
    target: str | None = None,
    wasm_pack_version: str | None = None,
    client: httpx.Client | None = None,
) -> ProvisionResult:
    """Provision the compilation target and wasm-pack.

    Args:
        environment: Build environment.
        settings: Settings (defaults, timeouts, install method).
        target: Target triple override.
        wasm_pack_version: wasm-pack version override.
        client: Optional HTTPX client for downloads.

    Returns:
        ProvisionResult.

    Raises:
        ProvisioningError: If either tool cannot be provided.
    """
    target = target or settings.target
    version = wasm_pack_version or settings.wasm_pack_version

    logger.info("Provisioning target %s and wasm-pack %s", target, version)
    add_rust_target(environment, target, timeout=settings.provision_timeout)

    wasm_pack_version_found, installed = ensure_wasm_pack(
        environment,
        version=version,
        method=settings.wasm_pack_install,
        client=client,
        timeout=settings.provision_timeout,
    )

    return ProvisionResult(
        target=target,
        wasm_pack_version=wasm_pack_version_found,
        wasm_pack_installed=installed,
        log_path=environment.log_path(StageName.PROVISIONING),
    )


__all__ = [
    "ProvisionResult",
    "add_rust_target",
    "ensure_wasm_pack",
    "install_wasm_pack_cargo",
    "parse_wasm_pack_version",
    "provision_toolchain",
    "version_satisfies",
]
