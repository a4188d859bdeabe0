"""Artifact extractor stage.

This module handles:
- Copying the package archive out of the build environment
- Keeping the final layer minimal: it holds the archive and nothing else
- Recording size and SHA-256 of the extracted archive
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from pathlib import Path

from wasm_release.errors import ARTIFACT_MISSING, EXTRACTION_ERROR, ExtractionError
from wasm_release.types import ArtifactInfo

logger = logging.getLogger(__name__)

# Chunk size for computing hashes (bytes)
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB

PARTIAL_SUFFIX = ".partial"


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def describe_artifact(path: Path) -> ArtifactInfo:
    """Build ArtifactInfo for an archive on disk."""
    return ArtifactInfo(
        filename=path.name,
        path=str(path),
        size_bytes=path.stat().st_size,
        sha256=compute_file_hash(path),
    )


def list_layer(output_dir: Path) -> list[str]:
    """Return the sorted entry names of a final layer directory."""
    if not output_dir.is_dir():
        return []
    return sorted(entry.name for entry in output_dir.iterdir())


def verify_final_layer(output_dir: Path, expected_name: str) -> None:
    """Check that the final layer holds exactly the expected archive.

    Args:
        output_dir: Final layer directory.
        expected_name: Archive filename.

    Raises:
        ExtractionError: If anything else is present or the archive is absent.
    """
    entries = list_layer(output_dir)
    if entries != [expected_name] or not (output_dir / expected_name).is_file():
        raise ExtractionError(
            f"Final layer {output_dir} must contain exactly {expected_name}, "
            f"found: {', '.join(entries) or 'nothing'}",
            code=EXTRACTION_ERROR,
        )


def extract_to_layer(archive_path: Path, output_dir: Path) -> ArtifactInfo:
    """Copy the package archive into the final layer directory.

    The directory may be missing, empty, or hold an earlier copy of the same
    archive name (which is replaced). Any other entry fails the stage.

    Args:
        archive_path: Archive inside the build environment.
        output_dir: Final layer directory.

    Returns:
        ArtifactInfo of the extracted archive.

    Raises:
        ExtractionError: If the archive is missing, the layer holds other
            files, or the copy fails.
    """
    if not archive_path.is_file():
        raise ExtractionError(
            f"Package archive not found: {archive_path}",
            code=ARTIFACT_MISSING,
        )

    name = archive_path.name
    foreign = [entry for entry in list_layer(output_dir) if entry != name]
    if foreign:
        raise ExtractionError(
            f"Final layer {output_dir} already contains other files: "
            f"{', '.join(foreign)}",
            code=EXTRACTION_ERROR,
        )

    destination = output_dir / name
    partial = output_dir / f"{name}{PARTIAL_SUFFIX}"
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(archive_path, partial)
        os.replace(partial, destination)
    except OSError as e:
        partial.unlink(missing_ok=True)
        raise ExtractionError(
            f"Failed to copy {archive_path} to {output_dir}: {e}",
            code=EXTRACTION_ERROR,
        ) from e

    verify_final_layer(output_dir, name)
    artifact = describe_artifact(destination)
    logger.info(
        "Extracted %s (%d bytes, sha256 %s)",
        artifact.filename,
        artifact.size_bytes,
        artifact.sha256[:12],
    )
    return artifact


__all__ = [
    "HASH_CHUNK_SIZE",
    "compute_file_hash",
    "describe_artifact",
    "extract_to_layer",
    "list_layer",
    "verify_final_layer",
]
