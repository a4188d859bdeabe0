"""Error types for the release pipeline.

Every stage raises a subclass of PipelineError carrying a stable ``code``
for programmatic handling and, where a tool ran, its verbatim output.
"""

from __future__ import annotations

from typing import Any

# Error code constants
MANIFEST_ERROR = "manifest_error"
PROVISIONING_ERROR = "provisioning_error"
UNSUPPORTED_PLATFORM = "unsupported_platform"
COMPILATION_ERROR = "compilation_error"
PACKAGING_ERROR = "packaging_error"
INVALID_VERSION = "invalid_version"
LAYOUT_ERROR = "layout_error"
EXTRACTION_ERROR = "extraction_error"
ARTIFACT_MISSING = "artifact_missing"
PUBLISH_ERROR = "publish_error"
PUBLISH_TRANSIENT = "publish_transient"
PUBLISH_AUTH = "publish_auth"
VERSION_MISMATCH = "version_mismatch"
MALFORMED_TAG = "malformed_tag"
ASSET_CONFLICT = "asset_conflict"
NO_ARCHIVES = "no_archives"
INVALID_SCOPE = "invalid_scope"
ENVIRONMENT_ERROR = "environment_error"
TOOL_TIMEOUT = "timeout"


class PipelineError(Exception):
    """Base error for all pipeline failures."""

    def __init__(
        self,
        message: str,
        code: str = "pipeline_error",
        output: str | None = None,
        log_path: str | None = None,
        retryable: bool = False,
    ) -> None:
        """Initialize PipelineError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
            output: Raw output of the tool that failed, if any.
            log_path: Path of the stage log file, if any.
            retryable: Whether the surrounding automation may retry.
        """
        super().__init__(message)
        self.code = code
        self.output = output
        self.log_path = log_path
        self.retryable = retryable


class ManifestError(PipelineError):
    """Raised when the crate manifest or pipeline file is invalid."""

    def __init__(self, message: str, code: str = MANIFEST_ERROR) -> None:
        super().__init__(message, code=code)


class ProvisioningError(PipelineError):
    """Raised when the toolchain cannot be installed. Never retried."""

    def __init__(
        self, message: str, code: str = PROVISIONING_ERROR, **kwargs: Any
    ) -> None:
        super().__init__(message, code=code, **kwargs)


class CompilationError(PipelineError):
    """Raised when wasm-pack build fails."""

    def __init__(
        self, message: str, code: str = COMPILATION_ERROR, **kwargs: Any
    ) -> None:
        super().__init__(message, code=code, **kwargs)


class PackagingError(PipelineError):
    """Raised when the archive cannot be produced or has the wrong layout."""

    def __init__(
        self, message: str, code: str = PACKAGING_ERROR, **kwargs: Any
    ) -> None:
        super().__init__(message, code=code, **kwargs)


class ExtractionError(PipelineError):
    """Raised when the archive cannot be copied into the final layer."""

    def __init__(
        self, message: str, code: str = EXTRACTION_ERROR, **kwargs: Any
    ) -> None:
        super().__init__(message, code=code, **kwargs)


class PublishError(PipelineError):
    """Raised when a release cannot be created or an asset uploaded."""

    def __init__(
        self, message: str, code: str = PUBLISH_ERROR, **kwargs: Any
    ) -> None:
        super().__init__(message, code=code, **kwargs)


class PublishTransientError(PublishError):
    """Network failure while talking to the release endpoint."""

    def __init__(self, message: str, code: str = PUBLISH_TRANSIENT) -> None:
        super().__init__(message, code=code, retryable=True)


class PublishAuthError(PublishError):
    """The release endpoint rejected the credentials."""

    def __init__(self, message: str, code: str = PUBLISH_AUTH) -> None:
        super().__init__(message, code=code)


class VersionMismatchError(PublishError):
    """The pushed tag does not match the manifest version."""

    def __init__(self, tag_version: str, manifest_version: str) -> None:
        super().__init__(
            f"Tag version {tag_version} does not match manifest version "
            f"{manifest_version}",
            code=VERSION_MISMATCH,
        )
        self.tag_version = tag_version
        self.manifest_version = manifest_version


class ReleaseAssetConflictError(PublishError):
    """An asset with the same name but different content is already attached."""

    def __init__(self, asset_name: str, tag: str) -> None:
        super().__init__(
            f"Release {tag} already has a different asset named {asset_name}",
            code=ASSET_CONFLICT,
        )
        self.asset_name = asset_name
        self.tag = tag


__all__ = [
    "ARTIFACT_MISSING",
    "ASSET_CONFLICT",
    "COMPILATION_ERROR",
    "ENVIRONMENT_ERROR",
    "EXTRACTION_ERROR",
    "INVALID_SCOPE",
    "INVALID_VERSION",
    "LAYOUT_ERROR",
    "MALFORMED_TAG",
    "MANIFEST_ERROR",
    "NO_ARCHIVES",
    "PACKAGING_ERROR",
    "PROVISIONING_ERROR",
    "PUBLISH_AUTH",
    "PUBLISH_ERROR",
    "PUBLISH_TRANSIENT",
    "TOOL_TIMEOUT",
    "UNSUPPORTED_PLATFORM",
    "VERSION_MISMATCH",
    "CompilationError",
    "ExtractionError",
    "ManifestError",
    "PackagingError",
    "PipelineError",
    "ProvisioningError",
    "PublishAuthError",
    "PublishError",
    "PublishTransientError",
    "ReleaseAssetConflictError",
    "VersionMismatchError",
]
