"""Tests for the artifact extractor stage."""

import hashlib

import pytest

from wasm_release.errors import ExtractionError
from wasm_release.stages.extractor import (
    compute_file_hash,
    extract_to_layer,
    list_layer,
    verify_final_layer,
)


@pytest.fixture
def archive(tmp_path):
    """A package archive inside a fake build environment."""
    path = tmp_path / "env" / "src" / "pkg" / "fazer-0.1.0.tgz"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"fake tarball content")
    return path


class TestComputeFileHash:
    """Tests for compute_file_hash function."""

    def test_sha256(self, tmp_path):
        """Should match hashlib over the whole file."""
        path = tmp_path / "data.bin"
        content = b"x" * 200_000
        path.write_bytes(content)

        assert compute_file_hash(path, chunk_size=1024) == (
            hashlib.sha256(content).hexdigest()
        )


class TestExtractToLayer:
    """Tests for extract_to_layer function."""

    def test_creates_layer(self, tmp_path, archive):
        """Should create the output directory holding only the archive."""
        output_dir = tmp_path / "dist"

        artifact = extract_to_layer(archive, output_dir)

        assert list_layer(output_dir) == ["fazer-0.1.0.tgz"]
        assert artifact.filename == "fazer-0.1.0.tgz"
        assert artifact.path == str(output_dir / "fazer-0.1.0.tgz")
        assert artifact.size_bytes == len(b"fake tarball content")
        assert artifact.sha256 == hashlib.sha256(b"fake tarball content").hexdigest()

    def test_overwrites_previous_copy(self, tmp_path, archive):
        """Re-extracting should replace the earlier archive."""
        output_dir = tmp_path / "dist"
        output_dir.mkdir()
        (output_dir / "fazer-0.1.0.tgz").write_bytes(b"stale")

        extract_to_layer(archive, output_dir)

        assert (output_dir / "fazer-0.1.0.tgz").read_bytes() == (
            b"fake tarball content"
        )
        assert list_layer(output_dir) == ["fazer-0.1.0.tgz"]

    def test_missing_archive(self, tmp_path):
        """A missing archive should name the expected path."""
        missing = tmp_path / "pkg" / "fazer-0.1.0.tgz"

        with pytest.raises(ExtractionError) as exc_info:
            extract_to_layer(missing, tmp_path / "dist")

        assert exc_info.value.code == "artifact_missing"
        assert str(missing) in str(exc_info.value)
        assert not (tmp_path / "dist").exists()

    def test_foreign_files_fail(self, tmp_path, archive):
        """Other files in the layer should fail the stage untouched."""
        output_dir = tmp_path / "dist"
        output_dir.mkdir()
        (output_dir / "fazer-0.0.9.tgz").write_bytes(b"old")

        with pytest.raises(ExtractionError, match="fazer-0.0.9.tgz"):
            extract_to_layer(archive, output_dir)

        assert list_layer(output_dir) == ["fazer-0.0.9.tgz"]

    def test_no_partial_left_behind(self, tmp_path, archive):
        """The temporary copy should be renamed into place."""
        output_dir = tmp_path / "dist"

        extract_to_layer(archive, output_dir)

        assert not (output_dir / "fazer-0.1.0.tgz.partial").exists()


class TestVerifyFinalLayer:
    """Tests for verify_final_layer function."""

    def test_exact_content(self, tmp_path):
        """A layer with only the archive should pass."""
        (tmp_path / "fazer-0.1.0.tgz").write_bytes(b"x")
        verify_final_layer(tmp_path, "fazer-0.1.0.tgz")

    def test_empty_layer(self, tmp_path):
        """A layer without the archive should fail."""
        with pytest.raises(ExtractionError, match="found: nothing"):
            verify_final_layer(tmp_path, "fazer-0.1.0.tgz")

    def test_directory_named_like_archive(self, tmp_path):
        """The archive entry must be a regular file."""
        (tmp_path / "fazer-0.1.0.tgz").mkdir()
        with pytest.raises(ExtractionError):
            verify_final_layer(tmp_path, "fazer-0.1.0.tgz")
