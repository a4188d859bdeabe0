"""Manifest handling module.

This module handles:
- Reading the package identity from Cargo.toml
- Archive naming derived from that identity
- The optional wasm-release.yaml pipeline file
"""

from wasm_release.manifest.io import (
    find_pipeline_file,
    load_crate_manifest,
    load_pipeline_file,
    normalize_scope,
)
from wasm_release.manifest.schema import CrateManifest, PipelineFileSchema

__all__ = [
    "CrateManifest",
    "PipelineFileSchema",
    "find_pipeline_file",
    "load_crate_manifest",
    "load_pipeline_file",
    "normalize_scope",
]
