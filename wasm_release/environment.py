"""Ephemeral build environments.

Each pipeline run gets its own temporary directory holding a copy of the
source tree, the provisioned tools, cargo state and stage logs. The
environment is created on entry to build_environment() and removed on
exit, whatever the outcome, so no state leaks from one run to the next
and concurrent runs never share files.

Layout::

    <root>/
        src/          copy of the source tree; wasm-pack writes pkg/ here
        tools/bin/    wasm-pack installed by the provisioner
        cargo-home/   CARGO_HOME (when isolated)
        target/       CARGO_TARGET_DIR
        logs/         one log file per stage
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from wasm_release.types import StageName

if TYPE_CHECKING:
    from wasm_release.config import Settings

logger = logging.getLogger(__name__)

# Never copied into the environment (top level of the source tree only)
SOURCE_IGNORE_NAMES = frozenset({"target", "pkg", ".git", "node_modules"})

# Stable stand-ins for the per-run paths in compiler output
REMAPPED_ROOT = "/build"
REMAPPED_CARGO_HOME = "/cargo"


def _ignore_build_outputs(
    source_dir: Path,
) -> Callable[[str, list[str]], set[str]]:
    """Return a copytree ignore callback skipping build outputs at the top level."""
    top = str(source_dir)

    def ignore(directory: str, names: list[str]) -> set[str]:
        if directory != top:
            return set()
        return {
            name
            for name in names
            if name in SOURCE_IGNORE_NAMES or name.endswith(".tgz")
        }

    return ignore


class BuildEnvironment:
    """Paths and process environment of one pipeline run."""

    def __init__(
        self,
        root: Path,
        scrub_env_vars: list[str] | None = None,
        isolate_cargo_home: bool = True,
    ) -> None:
        self.root = root
        self.src_dir = root / "src"
        self.tools_dir = root / "tools"
        self.bin_dir = self.tools_dir / "bin"
        self.cargo_home = root / "cargo-home"
        self.target_dir = root / "target"
        self.logs_dir = root / "logs"
        self.scrub_env_vars = list(scrub_env_vars or [])
        self.isolate_cargo_home = isolate_cargo_home

    @property
    def pkg_dir(self) -> Path:
        """Well-known output directory of the compiler stage."""
        return self.src_dir / "pkg"

    def create(self) -> None:
        """Create the directory layout."""
        for path in (self.src_dir, self.bin_dir, self.target_dir, self.logs_dir):
            path.mkdir(parents=True, exist_ok=True)
        if self.isolate_cargo_home:
            self.cargo_home.mkdir(parents=True, exist_ok=True)

    def log_path(self, stage: StageName) -> Path:
        """Return the log file for a stage."""
        return self.logs_dir / f"{stage.value}.log"

    def stage_source(self, source_dir: Path) -> Path:
        """Copy a source tree into the environment.

        Build outputs, VCS metadata and stray archives are left behind so
        a stale pkg/ from a previous local build can never be packed.

        Args:
            source_dir: Source tree root (containing Cargo.toml).

        Returns:
            The environment's source directory.
        """
        logger.info("Staging source tree %s into %s", source_dir, self.src_dir)
        shutil.copytree(
            source_dir,
            self.src_dir,
            ignore=_ignore_build_outputs(source_dir),
            dirs_exist_ok=True,
        )
        return self.src_dir

    def env(self, base: dict[str, str] | None = None) -> dict[str, str]:
        """Return the process environment for toolchain subprocesses.

        Args:
            base: Environment to start from (defaults to os.environ).

        Returns:
            Environment with tools/bin first on PATH, cargo pointed into the
            build environment, the environment's paths remapped in compiler
            output and credential variables removed.
        """
        env = dict(os.environ if base is None else base)

        for name in self.scrub_env_vars:
            env.pop(name, None)

        path = env.get("PATH", "")
        env["PATH"] = (
            f"{self.bin_dir}{os.pathsep}{path}" if path else str(self.bin_dir)
        )
        env["CARGO_TARGET_DIR"] = str(self.target_dir)
        if self.isolate_cargo_home:
            env["CARGO_HOME"] = str(self.cargo_home)
        rustflags = env.get("RUSTFLAGS", "").split()
        env["RUSTFLAGS"] = " ".join(rustflags + self.remap_flags())
        return env

    def remap_flags(self) -> list[str]:
        """Return rustc flags hiding the per-run root from build output.

        rustc embeds absolute source paths in panic locations and debug
        info. Later flags win, so the cargo home goes last.
        """
        flags = [f"--remap-path-prefix={self.root}={REMAPPED_ROOT}"]
        if self.isolate_cargo_home:
            flags.append(
                f"--remap-path-prefix={self.cargo_home}={REMAPPED_CARGO_HOME}"
            )
        return flags


@contextmanager
def build_environment(
    settings: Settings,
    source_dir: Path | None = None,
) -> Iterator[BuildEnvironment]:
    """Create a fresh build environment and discard it afterwards.

    Args:
        settings: Settings (work_dir, keep_build_env, env scrubbing).
        source_dir: Optional source tree to stage into the environment.

    Yields:
        BuildEnvironment rooted in a new temporary directory.
    """
    if settings.work_dir is not None:
        settings.work_dir.mkdir(parents=True, exist_ok=True)

    root = Path(tempfile.mkdtemp(prefix="wasm-release-", dir=settings.work_dir))
    environment = BuildEnvironment(
        root,
        scrub_env_vars=settings.scrub_env_vars,
        isolate_cargo_home=settings.isolate_cargo_home,
    )
    logger.debug("Created build environment %s", root)

    try:
        environment.create()
        if source_dir is not None:
            environment.stage_source(source_dir)
        yield environment
    finally:
        if settings.keep_build_env:
            logger.info("Keeping build environment at %s", root)
        else:
            shutil.rmtree(root, ignore_errors=True)
            logger.debug("Removed build environment %s", root)


__all__ = [
    "REMAPPED_CARGO_HOME",
    "REMAPPED_ROOT",
    "SOURCE_IGNORE_NAMES",
    "BuildEnvironment",
    "build_environment",
]
