"""Tool runner for executing toolchain commands.

This module handles:
- Executing rustup, cargo and wasm-pack with subprocess
- Capturing stdout/stderr to a per-stage log file
- Enforcing command timeouts

Every stage runs its tools through run_tool() so that the raw output of a
failing command can be surfaced verbatim.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from wasm_release.errors import TOOL_TIMEOUT

logger = logging.getLogger(__name__)

LOG_HEADER_END = "# " + "=" * 70


class ToolExecutionError(Exception):
    """Raised when a tool cannot be started or does not finish in time."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "execution_error",
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code
        self.log_path = log_path


@dataclass
class ToolResult:
    """Result of a tool execution.

    Attributes:
        success: Whether the tool exited with status 0.
        exit_code: Process exit code.
        log_path: Path to the log file holding the tool output.
        started_at: Start time.
        finished_at: Finish time.
        command: The command that was executed.
        error_message: Error message if the tool failed.
    """

    success: bool
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None

    @property
    def output(self) -> str:
        """Raw tool output recorded in the log file."""
        return read_tool_output(self.log_path)


def read_tool_output(log_path: Path) -> str:
    """Return the output of the last command recorded in a log file.

    Args:
        log_path: Log file written by run_tool().

    Returns:
        The captured stdout/stderr text, or an empty string if the log is missing.
    """
    if not log_path.exists():
        return ""

    text = log_path.read_text(encoding="utf-8", errors="replace")
    body = text.rsplit(LOG_HEADER_END, 1)[-1]

    # Cut off the footer written after the process exits
    for marker in ("\n# Finished: ", "\n# TIMEOUT "):
        idx = body.find(marker)
        if idx != -1:
            body = body[:idx]

    return body.strip("\n")


def run_tool(
    cmd: list[str],
    cwd: Path,
    log_path: Path,
    timeout: int | None = None,
    env: dict[str, str] | None = None,
) -> ToolResult:
    """Execute a toolchain command, appending its output to a log file.

    Args:
        cmd: Command as list of strings.
        cwd: Working directory.
        log_path: Log file; created if missing, appended to otherwise.
        timeout: Timeout in seconds (None = no timeout).
        env: Full environment for the process (None = inherit).

    Returns:
        ToolResult with execution details.

    Raises:
        ToolExecutionError: If the tool cannot be started or times out.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)

    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s", cmd_str)
    logger.debug("Working directory: %s", cwd)

    started_at = datetime.now(timezone.utc)
    error_message: str | None = None

    try:
        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {cwd}\n")
            log_file.write(LOG_HEADER_END + "\n\n")
            log_file.flush()

            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=env,
                check=False,
            )

            exit_code = result.returncode
            success = exit_code == 0

            if not success:
                error_message = f"{cmd[0]} failed with exit code {exit_code}"
                logger.error("%s. See log: %s", error_message, log_path)

    except subprocess.TimeoutExpired as e:
        error_message = f"{cmd[0]} timed out after {timeout} seconds"
        logger.error("%s. See log: %s", error_message, log_path)

        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")

        raise ToolExecutionError(
            error_message,
            exit_code=-1,
            code=TOOL_TIMEOUT,
            log_path=log_path,
        ) from e

    except OSError as e:
        error_message = f"Failed to execute {cmd[0]}: {e}"
        logger.error(error_message)
        raise ToolExecutionError(
            error_message,
            exit_code=None,
            code="execution_error",
            log_path=log_path,
        ) from e

    finished_at = datetime.now(timezone.utc)

    with log_path.open("a", encoding="utf-8") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    return ToolResult(
        success=success,
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
        error_message=error_message,
    )


def tool_version(
    cmd: list[str],
    env: dict[str, str] | None = None,
    timeout: int = 30,
) -> str | None:
    """Run ``<tool> --version`` style commands and return stdout.

    Args:
        cmd: Command to run.
        env: Environment for the process.
        timeout: Timeout in seconds.

    Returns:
        Stripped stdout, or None if the tool is missing or failed.
    """
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            check=True,
        )
    except (OSError, subprocess.SubprocessError):
        logger.debug("Version query failed: %s", shlex.join(cmd))
        return None
    return result.stdout.strip()


__all__ = [
    "ToolExecutionError",
    "ToolResult",
    "read_tool_output",
    "run_tool",
    "tool_version",
]
