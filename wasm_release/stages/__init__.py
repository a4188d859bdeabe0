"""Pipeline stages.

This module handles:
- Compiling the crate with wasm-pack build
- Packing the compiled artifact into an npm tarball
- Extracting the tarball into the final artifact layer
"""

from wasm_release.stages.compiler import CompileResult, compile_crate
from wasm_release.stages.extractor import extract_to_layer, verify_final_layer
from wasm_release.stages.packager import (
    PackageLayout,
    PackResult,
    pack_artifact,
    validate_archive_version,
)

__all__ = [
    "CompileResult",
    "PackResult",
    "PackageLayout",
    "compile_crate",
    "extract_to_layer",
    "pack_artifact",
    "validate_archive_version",
    "verify_final_layer",
]
