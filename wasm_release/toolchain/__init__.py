"""Toolchain provisioning module.

This module handles:
- Installing the Rust compilation target with rustup
- Reusing an installed wasm-pack or installing one into the build environment
- Downloading prebuilt wasm-pack releases
"""

from wasm_release.toolchain.fetch import (
    WasmPackDownload,
    build_wasm_pack_url,
    download_wasm_pack,
    host_triple,
)
from wasm_release.toolchain.provision import (
    ProvisionResult,
    add_rust_target,
    ensure_wasm_pack,
    provision_toolchain,
)

__all__ = [
    "ProvisionResult",
    "WasmPackDownload",
    "add_rust_target",
    "build_wasm_pack_url",
    "download_wasm_pack",
    "ensure_wasm_pack",
    "host_triple",
    "provision_toolchain",
]
