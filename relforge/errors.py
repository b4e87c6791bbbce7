"""Error taxonomy for the build-and-release pipeline.

Every pipeline failure is a ``RelforgeError`` subclass tagged with the job
stage it normally belongs to.  Steps that can raise errors of several kinds
re-tag them with ``at_stage`` so the report names the step that failed.
Only ``UploadError`` is retryable: fetch and integrity failures are never
retried, because a retry would mask drift in a pinned input.
"""

from __future__ import annotations

from typing import ClassVar


class RelforgeError(RuntimeError):
    """Base class for all pipeline errors."""

    stage: str = "unknown"
    retryable: ClassVar[bool] = False

    def at_stage(self, stage: str) -> RelforgeError:
        """Attribute this error to *stage* on this instance only."""
        self.stage = stage
        return self


class ProjectConfigError(RelforgeError):
    """Raised when relforge.toml, pins.json or the lockfile cannot be parsed."""

    stage = "checkout"


class CheckoutError(RelforgeError):
    """Raised when the source tree for a tag cannot be checked out."""

    stage = "checkout"


class PinResolutionError(RelforgeError):
    """Raised when a pinned source is unreachable, unknown or malformed."""

    stage = "resolve"


class IntegrityError(RelforgeError):
    """Raised when fetched or cached content does not match its pinned hash."""

    stage = "vendor"

    def __init__(self, message: str, *, subject: str = "") -> None:
        super().__init__(message)
        self.subject = subject


class MissingDependencyError(RelforgeError):
    """Raised when a lock entry has no resolvable package.

    ``entry`` carries the ``name version`` of the offending lock entry.
    """

    stage = "vendor"

    def __init__(self, message: str, *, entry: str = "") -> None:
        super().__init__(message)
        self.entry = entry


class CompilationError(RelforgeError):
    """Raised when the build command fails or produces no artifact."""

    stage = "build"


class TestFailure(RelforgeError):
    """Raised when the verification test command exits non-zero."""

    __test__ = False  # not a pytest test class

    stage = "test"


class UploadError(RelforgeError):
    """Raised when the release host rejects or drops an asset upload."""

    stage = "upload"
    retryable = True
