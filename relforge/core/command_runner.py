"""Execution of build and test commands in a controlled environment."""
from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Last *lines* of combined output, for error messages."""
        combined = (self.stdout + self.stderr).strip().splitlines()
        return "\n".join(combined[-lines:])


class CommandRunner:
    """Abstract command runner interface.

    Unlike a shell, ``run`` never inherits the caller's environment: the
    process sees exactly *env* and nothing else.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout: float | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout: float | None = None,
    ) -> CommandResult:
        logger.info("Running %s (cwd=%s)", self.format_command(command), cwd)
        try:
            process = subprocess.run(
                list(command),
                cwd=str(cwd),
                env=dict(env),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            return CommandResult(command=command, returncode=127, stdout="", stderr=str(exc))
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                command=command,
                returncode=124,
                stdout=str(exc.stdout or ""),
                stderr=f"timed out after {timeout}s",
            )
        return CommandResult(
            command=command,
            returncode=process.returncode,
            stdout=process.stdout,
            stderr=process.stderr,
        )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str
    env: Dict[str, str] = field(default_factory=dict)


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them.

    ``returncodes`` maps the first argument of a command to the exit code
    to report; anything unlisted succeeds.
    """

    def __init__(self, returncodes: Mapping[str, int] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self._returncodes = dict(returncodes or {})

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout: float | None = None,
    ) -> CommandResult:
        self.commands.append(RecordedCommand(command=list(command), cwd=str(cwd), env=dict(env)))
        code = self._returncodes.get(command[0], 0) if command else 0
        return CommandResult(command=command, returncode=code, stdout="", stderr="")
