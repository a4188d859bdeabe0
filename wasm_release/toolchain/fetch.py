"""wasm-pack fetch module.

This module handles:
- Host platform detection for prebuilt wasm-pack binaries
- Resolving "latest" to a concrete wasm-pack release
- Download of the release tarball
- Safe extraction of the wasm-pack binary into the build environment
"""

from __future__ import annotations

import logging
import platform
import stat
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import httpx

from wasm_release.errors import (
    TOOL_TIMEOUT,
    UNSUPPORTED_PLATFORM,
    ProvisioningError,
)

logger = logging.getLogger(__name__)

WASM_PACK_REPOSITORY = "rustwasm/wasm-pack"
GITHUB_DOWNLOAD_BASE = "https://github.com"
GITHUB_API_BASE = "https://api.github.com"

# Timeout for API requests (seconds)
API_TIMEOUT = 30

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# (system, machine) -> release asset triple
HOST_TRIPLES = {
    ("linux", "x86_64"): "x86_64-unknown-linux-musl",
    ("linux", "amd64"): "x86_64-unknown-linux-musl",
    ("linux", "aarch64"): "aarch64-unknown-linux-musl",
    ("linux", "arm64"): "aarch64-unknown-linux-musl",
    ("darwin", "x86_64"): "x86_64-apple-darwin",
    ("darwin", "arm64"): "aarch64-apple-darwin",
    ("windows", "amd64"): "x86_64-pc-windows-msvc",
    ("windows", "x86_64"): "x86_64-pc-windows-msvc",
}


@dataclass
class WasmPackDownload:
    """Result of a wasm-pack download."""

    binary_path: Path
    version: str
    url: str
    size_bytes: int


def normalize_version(version: str) -> str:
    """Strip a leading 'v' from a version string."""
    version = version.strip()
    return version[1:] if version.startswith("v") else version


def host_triple(system: str | None = None, machine: str | None = None) -> str:
    """Return the wasm-pack release triple for a host platform.

    Args:
        system: OS name (defaults to platform.system()).
        machine: CPU architecture (defaults to platform.machine()).

    Returns:
        Triple used in wasm-pack release asset names.

    Raises:
        ProvisioningError: If no prebuilt binary exists for the platform.
    """
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()

    triple = HOST_TRIPLES.get((system, machine))
    if triple is None:
        raise ProvisioningError(
            f"No prebuilt wasm-pack for platform {system}/{machine}",
            code=UNSUPPORTED_PLATFORM,
        )
    return triple


def build_wasm_pack_url(
    version: str,
    triple: str,
    base_url: str = GITHUB_DOWNLOAD_BASE,
) -> str:
    """Build the download URL of a wasm-pack release tarball.

    Args:
        version: Concrete wasm-pack version (with or without 'v').
        triple: Host triple from host_triple().
        base_url: Download server base URL.

    Returns:
        Tarball URL.
    """
    version = normalize_version(version)
    return (
        f"{base_url}/{WASM_PACK_REPOSITORY}/releases/download/"
        f"v{version}/wasm-pack-v{version}-{triple}.tar.gz"
    )


def resolve_latest_version(
    client: httpx.Client,
    api_url: str = GITHUB_API_BASE,
    timeout: float = API_TIMEOUT,
) -> str:
    """Resolve the latest published wasm-pack version.

    Args:
        client: HTTPX client instance.
        api_url: GitHub API base URL.
        timeout: Request timeout in seconds.

    Returns:
        Version without leading 'v'.

    Raises:
        ProvisioningError: If the release cannot be looked up.
    """
    url = f"{api_url}/repos/{WASM_PACK_REPOSITORY}/releases/latest"
    logger.debug("Resolving latest wasm-pack release from %s", url)

    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
        tag = response.json().get("tag_name")
    except httpx.HTTPStatusError as e:
        raise ProvisioningError(
            f"HTTP error resolving latest wasm-pack: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise ProvisioningError(
            f"Timeout resolving latest wasm-pack from {url}",
            code=TOOL_TIMEOUT,
        ) from e
    except httpx.RequestError as e:
        raise ProvisioningError(
            f"Network error resolving latest wasm-pack: {e}",
            code="network_error",
        ) from e
    except ValueError as e:
        raise ProvisioningError(
            f"Unexpected response resolving latest wasm-pack: {e}",
            code="http_error",
        ) from e

    if not isinstance(tag, str) or not tag:
        raise ProvisioningError(
            "Latest wasm-pack release has no tag_name", code="http_error"
        )
    return normalize_version(tag)


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> int:
    """Download a file.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        Number of bytes written.

    Raises:
        ProvisioningError: If download fails.
    """
    logger.info("Downloading %s", url)

    try:
        with client.stream(
            "GET", url, timeout=timeout, follow_redirects=True
        ) as response:
            response.raise_for_status()

            total_bytes = 0
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    total_bytes += len(chunk)

    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise ProvisioningError(
            f"HTTP error downloading {url}: "
            f"{e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise ProvisioningError(
            f"Timeout downloading {url}",
            code=TOOL_TIMEOUT,
        ) from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise ProvisioningError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e

    logger.debug("Downloaded %s (%d bytes)", dest_path.name, total_bytes)
    return total_bytes


def extract_wasm_pack(archive_path: Path, bin_dir: Path) -> Path:
    """Extract the wasm-pack binary from a release tarball.

    Only the executable is extracted; the rest of the tarball (license,
    readme) is ignored.

    Args:
        archive_path: Path to the downloaded .tar.gz.
        bin_dir: Directory to place the binary in.

    Returns:
        Path to the extracted, executable binary.

    Raises:
        ProvisioningError: If the archive is unreadable, unsafe or lacks the binary.
    """
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            member: tarfile.TarInfo | None = None
            for candidate in tar.getmembers():
                # Security: prevent path traversal
                member_path = PurePosixPath(candidate.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ProvisioningError(
                        f"Refusing to extract {candidate.name}: "
                        "path traversal detected",
                        code="path_traversal",
                    )
                if candidate.isfile() and member_path.name in (
                    "wasm-pack",
                    "wasm-pack.exe",
                ):
                    member = candidate

            if member is None:
                raise ProvisioningError(
                    f"Archive {archive_path.name} does not contain wasm-pack",
                    code="extraction_error",
                )

            source = tar.extractfile(member)
            if source is None:
                raise ProvisioningError(
                    f"Cannot read {member.name} from {archive_path.name}",
                    code="extraction_error",
                )

            bin_dir.mkdir(parents=True, exist_ok=True)
            binary_path = bin_dir / PurePosixPath(member.name).name
            with source, binary_path.open("wb") as out:
                while chunk := source.read(DOWNLOAD_CHUNK_SIZE):
                    out.write(chunk)

    except tarfile.TarError as e:
        raise ProvisioningError(
            f"Failed to extract {archive_path}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise ProvisioningError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e

    mode = binary_path.stat().st_mode
    binary_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info("Installed wasm-pack to %s", binary_path)
    return binary_path


def download_wasm_pack(
    client: httpx.Client,
    version: str,
    bin_dir: Path,
    triple: str | None = None,
    download_base: str = GITHUB_DOWNLOAD_BASE,
    api_url: str = GITHUB_API_BASE,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> WasmPackDownload:
    """Download and install a prebuilt wasm-pack.

    Args:
        client: HTTPX client instance.
        version: 'latest' or a concrete version.
        bin_dir: Directory to install the binary into.
        triple: Host triple (detected if None).
        download_base: Download server base URL.
        api_url: GitHub API base URL, for resolving 'latest'.
        timeout: Download timeout in seconds.

    Returns:
        WasmPackDownload describing the installed binary.

    Raises:
        ProvisioningError: If any step fails.
    """
    if triple is None:
        triple = host_triple()

    if version == "latest":
        version = resolve_latest_version(client, api_url)
    version = normalize_version(version)

    url = build_wasm_pack_url(version, triple, download_base)

    with tempfile.TemporaryDirectory(dir=bin_dir.parent) as tmp:
        archive_path = Path(tmp) / url.rsplit("/", 1)[-1]
        size_bytes = download_file(client, url, archive_path, timeout=timeout)
        binary_path = extract_wasm_pack(archive_path, bin_dir)

    return WasmPackDownload(
        binary_path=binary_path,
        version=version,
        url=url,
        size_bytes=size_bytes,
    )


__all__ = [
    "DOWNLOAD_TIMEOUT",
    "GITHUB_API_BASE",
    "GITHUB_DOWNLOAD_BASE",
    "HOST_TRIPLES",
    "WASM_PACK_REPOSITORY",
    "WasmPackDownload",
    "build_wasm_pack_url",
    "download_file",
    "download_wasm_pack",
    "extract_wasm_pack",
    "host_triple",
    "normalize_version",
    "resolve_latest_version",
]
