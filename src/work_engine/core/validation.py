"""Post-session validation: dependency install, static check, tests."""

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path

from work_engine.config import Config
from work_engine.db.models import Project
from work_engine.integrations.shell import CommandResult, run_command

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationCommands:
    """Command lines split with ``shlex`` and run without a shell."""

    install: str
    install_fallback: str
    check: str
    test: str

    @classmethod
    def for_project(cls, project: Project | None, config: Config) -> "ValidationCommands":
        """Project overrides win over the configured defaults."""
        return cls(
            install=(project and project.install_command) or config.install_command,
            install_fallback=config.install_fallback_command,
            check=(project and project.check_command) or config.check_command,
            test=(project and project.test_command) or config.test_command,
        )


@dataclass
class ValidationResult:
    passed: bool
    diagnostic: str = ""


def _run(command: str, cwd: str | Path) -> CommandResult:
    try:
        args = shlex.split(command)
    except ValueError as e:
        return CommandResult(2, "", f"Cannot parse command {command!r}: {e}")
    if not args:
        return CommandResult(0)
    return run_command(args, cwd=cwd)


def cap(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters of ``text``."""
    if len(text) <= limit:
        return text
    return f"... (truncated {len(text) - limit} chars)\n" + text[-limit:]


def install_dependencies(workdir: str | Path, commands: ValidationCommands) -> None:
    """Best-effort install: strict first, then a relaxed retry.

    Never raises. The retry's exit code is not inspected; the static check
    and tests report real breakage.
    """
    result = _run(commands.install, workdir)
    if result.ok:
        return
    logger.warning(
        "Dependency install failed in %s (exit %s), retrying relaxed: %s",
        workdir, result.exit_code, result.stderr.strip()[:500],
    )
    if commands.install_fallback:
        _run(commands.install_fallback, workdir)


def run_validation(
    workdir: str | Path,
    commands: ValidationCommands,
    section_limit: int = 4000,
) -> ValidationResult:
    """Install, then run the static check and the tests in ``workdir``.

    Passes only if both the check and the tests exit 0. The diagnostic holds a
    labeled section per failed step, each capped to ``section_limit``.
    """
    install_dependencies(workdir, commands)

    sections: list[str] = []

    check = _run(commands.check, workdir)
    if not check.ok:
        sections.append(
            f"=== Static Check Failed (exit {check.exit_code}) ===\n"
            f"$ {commands.check}\n{cap(check.output, section_limit)}"
        )

    tests = _run(commands.test, workdir)
    if not tests.ok:
        sections.append(
            f"=== Tests Failed (exit {tests.exit_code}) ===\n"
            f"$ {commands.test}\n{cap(tests.output, section_limit)}"
        )

    passed = check.ok and tests.ok
    logger.info(
        "Validation in %s: check exit %s, tests exit %s",
        workdir, check.exit_code, tests.exit_code,
    )
    return ValidationResult(passed=passed, diagnostic="\n\n".join(sections))
