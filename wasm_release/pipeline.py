"""Release pipeline.

This module provides the high-level pipeline API:
- run_pipeline(): main entry point, runs every stage in order
- PipelineRun: the run record with its explicit state machine
- resolve_options(): merges CLI options, the pipeline file and settings

States move strictly forward::

    IDLE -> PROVISIONING -> COMPILING -> PACKAGING -> EXTRACTING
         -> PUBLISHING -> DONE          (release tag pushed)
         -> IDLE -> DONE                (any other trigger)

Any stage failure moves the run to FAILED and no later stage runs. Stage
failures are recorded in the run rather than raised, so callers always get
the full list of stage results back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from wasm_release.config import get_settings
from wasm_release.environment import BuildEnvironment, build_environment
from wasm_release.errors import ENVIRONMENT_ERROR, PipelineError, ProvisioningError
from wasm_release.manifest import (
    find_pipeline_file,
    load_crate_manifest,
    normalize_scope,
)
from wasm_release.release import (
    PublishResult,
    ReleaseTrigger,
    check_version_match,
    parse_trigger,
    publish_tagged_archives,
)
from wasm_release.stages import compile_crate, extract_to_layer, pack_artifact
from wasm_release.toolchain import provision_toolchain
from wasm_release.types import (
    ArtifactInfo,
    PipelineState,
    StageName,
    StageResult,
    StageStatus,
)

if TYPE_CHECKING:
    from wasm_release.config import Settings
    from wasm_release.manifest.schema import CrateManifest, PipelineFileSchema

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_OUTPUT_DIR = Path("dist")

ALLOWED_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset(
        {PipelineState.PROVISIONING, PipelineState.DONE, PipelineState.FAILED}
    ),
    PipelineState.PROVISIONING: frozenset(
        {PipelineState.COMPILING, PipelineState.FAILED}
    ),
    PipelineState.COMPILING: frozenset({PipelineState.PACKAGING, PipelineState.FAILED}),
    PipelineState.PACKAGING: frozenset(
        {PipelineState.EXTRACTING, PipelineState.FAILED}
    ),
    PipelineState.EXTRACTING: frozenset(
        {PipelineState.PUBLISHING, PipelineState.IDLE, PipelineState.FAILED}
    ),
    PipelineState.PUBLISHING: frozenset({PipelineState.DONE, PipelineState.FAILED}),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED: frozenset(),
}


@dataclass
class PipelineOptions:
    """Per-run options, typically from CLI flags.

    Unset fields fall back to the pipeline file, then to settings.

    Attributes:
        source_dir: Source tree containing Cargo.toml.
        output_dir: Final artifact layer directory.
        ref: Git ref that triggered the run (``GITHUB_REF``).
        publish: Set False to never publish, even for a release tag.
    """

    source_dir: Path
    output_dir: Path | None = None
    ref: str | None = None
    target: str | None = None
    bindings_target: str | None = None
    profile: str | None = None
    scope: str | None = None
    wasm_pack_version: str | None = None
    selector: str | None = None
    publish: bool = True


@dataclass
class ResolvedOptions:
    """Effective options after applying precedence."""

    source_dir: Path
    output_dir: Path
    target: str
    bindings_target: str
    profile: str
    wasm_pack_version: str
    scope: str | None = None
    selector: str | None = None


@dataclass
class PipelineRun:
    """Record of one pipeline run.

    Attributes:
        state: Current state.
        results: Stage results in execution order.
        manifest: Crate manifest, once loaded.
        trigger: Release trigger, or None for plain builds.
        archive: Archive in the final layer, once extracted.
        publish: Publish result, when published.
        error_code: Code of the error that failed the run.
        error_message: Message of the error that failed the run.
        retryable: Whether the failure is transient.
    """

    state: PipelineState = PipelineState.IDLE
    results: list[StageResult] = field(default_factory=list)
    manifest: CrateManifest | None = None
    trigger: ReleaseTrigger | None = None
    archive: ArtifactInfo | None = None
    publish: PublishResult | None = None
    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False

    def transition(self, new_state: PipelineState) -> None:
        """Move to a new state.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal pipeline transition {self.state.value} -> {new_state.value}"
            )
        logger.debug("Pipeline state %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def fail(self, error: PipelineError) -> None:
        """Record a fatal error and move to FAILED."""
        self.error_code = error.code
        self.error_message = str(error)
        self.retryable = error.retryable
        self.transition(PipelineState.FAILED)

    @property
    def success(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def failed_stage(self) -> StageName | None:
        """Stage that failed the run, or None (success or failed before any stage)."""
        for result in self.results:
            if result.failed:
                return result.stage
        return None

    def result_for(self, stage: StageName) -> StageResult | None:
        for result in self.results:
            if result.stage is stage:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable summary."""
        return {
            "state": self.state.value,
            "success": self.success,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "retryable": self.retryable,
            "manifest": (
                {"name": self.manifest.name, "version": self.manifest.version}
                if self.manifest
                else None
            ),
            "tag": self.trigger.tag if self.trigger else None,
            "archive": asdict(self.archive) if self.archive else None,
            "publish": asdict(self.publish) if self.publish else None,
            "stages": [
                {
                    "stage": r.stage.value,
                    "status": r.status.value,
                    "message": r.message,
                    "code": r.code,
                    "duration_seconds": round(r.duration_seconds, 3),
                    "output": r.output,
                    "details": r.details,
                }
                for r in self.results
            ],
        }


def resolve_options(
    options: PipelineOptions,
    pipeline_file: PipelineFileSchema | None,
    settings: Settings,
) -> ResolvedOptions:
    """Merge options with precedence CLI > pipeline file > settings.

    A relative ``output_dir`` from the pipeline file is resolved against
    the source tree. A scope given as an option is validated the same
    way as one from the pipeline file.

    Raises:
        ManifestError: If the scope option is not a valid npm scope.
    """

    def pick(name: str) -> Any:
        value = getattr(options, name)
        if value is None and pipeline_file is not None:
            value = getattr(pipeline_file, name)
        if value is None:
            value = getattr(settings, name, None)
        return value

    output_dir = options.output_dir
    if output_dir is None and pipeline_file and pipeline_file.output_dir:
        output_dir = options.source_dir / pipeline_file.output_dir
    if output_dir is None:
        output_dir = DEFAULT_OUTPUT_DIR

    scope = normalize_scope(pick("scope"))
    return ResolvedOptions(
        source_dir=options.source_dir,
        output_dir=output_dir,
        target=pick("target"),
        bindings_target=pick("bindings_target"),
        profile=pick("profile"),
        wasm_pack_version=pick("wasm_pack_version"),
        scope=scope,
        selector=pick("selector"),
    )


def _execute_stage(
    run: PipelineRun,
    stage: StageName,
    action: Callable[[], tuple[T, str, dict[str, Any]]],
) -> T | None:
    """Run one stage, recording a StageResult either way.

    Filesystem errors raised inside a stage fail that stage like any
    PipelineError. Returns the action's value, or None after recording a
    failure (the run is then in FAILED).
    """
    run.transition(PipelineState(stage.value))
    started = time.monotonic()
    try:
        value, message, details = action()
    except PipelineError as e:
        error = e
    except OSError as e:
        error = PipelineError(
            f"Stage {stage.value} failed: {e}", code=ENVIRONMENT_ERROR
        )
    else:
        run.results.append(
            StageResult(
                stage=stage,
                status=StageStatus.SUCCEEDED,
                message=message,
                duration_seconds=time.monotonic() - started,
                details=details,
            )
        )
        return value

    logger.error("Stage %s failed: %s", stage.value, error)
    run.results.append(
        StageResult(
            stage=stage,
            status=StageStatus.FAILED,
            message=str(error),
            code=error.code,
            output=error.output,
            log_path=error.log_path,
            duration_seconds=time.monotonic() - started,
            retryable=error.retryable,
        )
    )
    run.fail(error)
    return None


def _skip_publishing(run: PipelineRun, reason: str) -> None:
    logger.info("Publishing skipped: %s", reason)
    run.results.append(
        StageResult(
            stage=StageName.PUBLISHING,
            status=StageStatus.SKIPPED,
            message=reason,
        )
    )
    run.transition(PipelineState.IDLE)
    run.transition(PipelineState.DONE)


def _stage_source(environment: BuildEnvironment, source_dir: Path) -> None:
    try:
        environment.stage_source(source_dir)
    except OSError as e:
        raise ProvisioningError(
            f"Cannot stage source tree {source_dir}: {e}",
            code=ENVIRONMENT_ERROR,
        ) from e


def _run_stages(
    run: PipelineRun,
    manifest: CrateManifest,
    environment: BuildEnvironment,
    resolved: ResolvedOptions,
    settings: Settings,
    publish: bool,
    http_client: httpx.Client | None,
) -> None:
    def provision() -> tuple[Any, str, dict[str, Any]]:
        _stage_source(environment, resolved.source_dir)
        result = provision_toolchain(
            environment,
            settings,
            target=resolved.target,
            wasm_pack_version=resolved.wasm_pack_version,
            client=http_client,
        )
        return (
            result,
            f"{result.target} and wasm-pack {result.wasm_pack_version} ready",
            {
                "target": result.target,
                "wasm_pack_version": result.wasm_pack_version,
                "wasm_pack_installed": result.wasm_pack_installed,
            },
        )

    if _execute_stage(run, StageName.PROVISIONING, provision) is None:
        return

    def compile_() -> tuple[Any, str, dict[str, Any]]:
        result = compile_crate(
            environment,
            manifest,
            bindings_target=resolved.bindings_target,
            profile=resolved.profile,
            scope=resolved.scope,
            timeout=settings.compile_timeout,
        )
        return (
            result,
            f"Compiled {manifest.name} {manifest.version}",
            {"wasm_files": [p.name for p in result.wasm_files]},
        )

    if _execute_stage(run, StageName.COMPILING, compile_) is None:
        return

    def pack() -> tuple[Any, str, dict[str, Any]]:
        result = pack_artifact(
            environment,
            manifest,
            scope=resolved.scope,
            timeout=settings.pack_timeout,
        )
        return (
            result,
            f"Packed {result.archive_path.name}",
            {
                "archive": result.archive_path.name,
                "entry_point": result.layout.entry_point,
                "files": result.layout.files,
            },
        )

    packed = _execute_stage(run, StageName.PACKAGING, pack)
    if packed is None:
        return

    def extract() -> tuple[ArtifactInfo, str, dict[str, Any]]:
        artifact = extract_to_layer(packed.archive_path, resolved.output_dir)
        return (
            artifact,
            f"Extracted {artifact.filename} to {resolved.output_dir}",
            {"path": artifact.path, "sha256": artifact.sha256},
        )

    artifact = _execute_stage(run, StageName.EXTRACTING, extract)
    if artifact is None:
        return
    run.archive = artifact

    if run.trigger is None:
        _skip_publishing(run, "not a release tag push")
        return
    if not publish:
        _skip_publishing(run, "publishing disabled")
        return

    trigger = run.trigger

    def release() -> tuple[PublishResult, str, dict[str, Any]]:
        result = publish_tagged_archives(
            trigger,
            manifest,
            resolved.output_dir,
            settings,
            selector=resolved.selector,
            scope=resolved.scope,
            client=http_client,
        )
        return (
            result,
            f"Published {len(result.uploaded)} asset(s) to release {result.tag}",
            {
                "release_id": result.release_id,
                "created": result.created,
                "uploaded": result.uploaded,
                "skipped": result.skipped,
            },
        )

    published = _execute_stage(run, StageName.PUBLISHING, release)
    if published is None:
        return
    run.publish = published
    run.transition(PipelineState.DONE)


def run_pipeline(
    options: PipelineOptions,
    settings: Settings | None = None,
    http_client: httpx.Client | None = None,
) -> PipelineRun:
    """Run the release pipeline.

    Preflight checks (manifest, pipeline file, tag/version agreement) run
    before anything is provisioned, so a mismatched tag fails without
    building or touching the network.

    Args:
        options: Per-run options.
        settings: Settings (loaded from the environment if None).
        http_client: Optional HTTPX client for downloads and publishing.

    Returns:
        PipelineRun in state DONE or FAILED.
    """
    if settings is None:
        settings = get_settings()

    run = PipelineRun()

    try:
        manifest = load_crate_manifest(options.source_dir)
        run.manifest = manifest
        pipeline_file = find_pipeline_file(options.source_dir)
        resolved = resolve_options(options, pipeline_file, settings)
        run.trigger = parse_trigger(options.ref)
        if run.trigger is not None:
            check_version_match(run.trigger, manifest.version)
    except PipelineError as e:
        logger.error("Preflight failed: %s", e)
        run.fail(e)
        return run

    logger.info(
        "Releasing %s %s (%s)",
        manifest.name,
        manifest.version,
        f"tag {run.trigger.tag}" if run.trigger else "no release tag",
    )

    try:
        with build_environment(settings) as environment:
            _run_stages(
                run,
                manifest,
                environment,
                resolved,
                settings,
                options.publish,
                http_client,
            )
    except OSError as e:
        if run.state.is_terminal:
            raise
        logger.error("Build environment error: %s", e)
        run.fail(
            PipelineError(f"Build environment error: {e}", code=ENVIRONMENT_ERROR)
        )

    return run


__all__ = [
    "ALLOWED_TRANSITIONS",
    "DEFAULT_OUTPUT_DIR",
    "PipelineOptions",
    "PipelineRun",
    "ResolvedOptions",
    "resolve_options",
    "run_pipeline",
]
