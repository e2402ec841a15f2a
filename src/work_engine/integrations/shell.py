"""Subprocess execution that always returns a result instead of raising."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

SPAWN_ERROR_EXIT = 127
TIMEOUT_EXIT = 124


@dataclass
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, trimmed."""
        return (self.stdout + self.stderr).strip()


def run_command(
    args: list[str],
    cwd: str | Path | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run ``args`` in ``cwd`` and capture its output.

    A command that cannot be spawned resolves with exit code 127 and the OS
    error as stderr; a timeout resolves with exit code 124.
    """
    logger.debug("Running %s in %s", args, cwd)
    try:
        result = subprocess.run(
            args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        stdout = e.stdout.decode(errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
        return CommandResult(TIMEOUT_EXIT, stdout, f"Timed out after {timeout}s: {' '.join(args)}")
    except OSError as e:
        return CommandResult(SPAWN_ERROR_EXIT, "", str(e))
    return CommandResult(result.returncode, result.stdout, result.stderr)
