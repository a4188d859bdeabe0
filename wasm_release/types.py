"""Shared type definitions for wasm_release.

This module contains dataclasses, enums and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class StageName(str, Enum):
    """Pipeline stages in execution order."""

    PROVISIONING = "provisioning"
    COMPILING = "compiling"
    PACKAGING = "packaging"
    EXTRACTING = "extracting"
    PUBLISHING = "publishing"


class StageStatus(str, Enum):
    """Outcome of a single stage."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineState(str, Enum):
    """State of a pipeline run.

    Transitions: IDLE -> PROVISIONING -> COMPILING -> PACKAGING ->
    EXTRACTING -> (PUBLISHING) -> DONE, with FAILED reachable from any
    stage. DONE and FAILED are terminal.
    """

    IDLE = "idle"
    PROVISIONING = "provisioning"
    COMPILING = "compiling"
    PACKAGING = "packaging"
    EXTRACTING = "extracting"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED)


@dataclass
class ArtifactInfo:
    """Information about a package archive."""

    filename: str
    path: str
    size_bytes: int
    sha256: str


@dataclass
class StageResult:
    """Tagged result of one pipeline stage.

    Attributes:
        stage: Which stage produced this result.
        status: Succeeded, failed or skipped.
        message: Short human-readable summary.
        code: Stable error code when the stage failed.
        output: Raw tool output for failed stages.
        log_path: Stage log file, when the stage ran a tool.
        duration_seconds: Wall-clock time spent in the stage.
        retryable: Whether the failure is transient.
        details: Stage-specific extra data.
    """

    stage: StageName
    status: StageStatus
    message: str
    code: str | None = None
    output: str | None = None
    log_path: str | None = None
    duration_seconds: float = 0.0
    retryable: bool = False
    details: dict[str, object] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status is StageStatus.FAILED


__all__ = [
    "ArtifactInfo",
    "PipelineState",
    "StageName",
    "StageResult",
    "StageStatus",
]
