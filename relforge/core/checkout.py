"""Per-job source checkout.

Each matrix job checks out its own copy of the tagged source tree into its
workspace; jobs never share a working tree.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from relforge.core.command_runner import CommandRunner, SubprocessCommandRunner
from relforge.errors import CheckoutError

logger = logging.getLogger(__name__)


@runtime_checkable
class SourceCheckout(Protocol):
    """Materializes the source tree for *tag* at *dest*."""

    def checkout(self, tag: str, dest: Path) -> Path:
        ...


class GitCheckout:
    """Shallow-clones a repository at a tag.

    Parameters
    ----------
    repository:
        Clone URL or local path of the repository.
    runner:
        Runs ``git``; defaults to a subprocess runner.
    """

    def __init__(self, repository: str, runner: CommandRunner | None = None) -> None:
        self._repository = repository
        self._runner = runner or SubprocessCommandRunner()

    def checkout(self, tag: str, dest: Path) -> Path:
        dest = Path(dest)
        if dest.exists():
            shutil.rmtree(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        command = [
            "git", "clone", "--quiet", "--depth", "1",
            "--branch", tag, self._repository, str(dest),
        ]
        env = {
            "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
            "HOME": str(dest.parent),
            "GIT_TERMINAL_PROMPT": "0",
        }
        result = self._runner.run(command, cwd=dest.parent, env=env)
        if not result.ok:
            raise CheckoutError(
                f"git clone of {self._repository} at {tag} failed "
                f"(exit {result.returncode}): {result.tail(5)}"
            )
        logger.info("Checked out %s at %s into %s", self._repository, tag, dest)
        return dest


class DirectoryCheckout:
    """Copies a local source directory; the tag is only recorded.

    Used for local releases and tests where the tree is already at the
    tagged revision.
    """

    def __init__(self, source: Path) -> None:
        self._source = Path(source)

    def checkout(self, tag: str, dest: Path) -> Path:
        if not self._source.is_dir():
            raise CheckoutError(f"Source directory not found: {self._source}")
        dest = Path(dest)
        if dest.exists():
            shutil.rmtree(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        target = dest.resolve()

        def _skip_workspace(directory: str, names: list[str]) -> list[str]:
            # The workspace may live inside the source tree (.relforge/work).
            skipped = []
            for name in names:
                path = (Path(directory) / name).resolve()
                if path == target or path in target.parents:
                    skipped.append(name)
            return skipped

        shutil.copytree(self._source, dest, symlinks=True, ignore=_skip_workspace)
        logger.debug("Copied %s into %s for tag %s", self._source, dest, tag)
        return dest
