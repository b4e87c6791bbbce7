"""relforge data models — all Pydantic v2, all frozen (immutable)."""

from relforge.models.build import BuildArtifact, ToolchainHandle, VendoredPackageSet
from relforge.models.lock import DependencyLock, DependencyLockEntry
from relforge.models.pins import PinKind, PinManifest, PinRecord
from relforge.models.project import BuildSettings, ProjectConfig, ReleaseSettings
from relforge.models.release import (
    JobResult,
    JobStage,
    JobStatus,
    PlatformFailure,
    ReleaseAsset,
    ReleaseMatrixEntry,
    ReleaseReport,
    ReleaseState,
)

__all__ = [
    # pins
    "PinKind",
    "PinRecord",
    "PinManifest",
    # lock
    "DependencyLock",
    "DependencyLockEntry",
    # build
    "ToolchainHandle",
    "VendoredPackageSet",
    "BuildArtifact",
    # project
    "BuildSettings",
    "ReleaseSettings",
    "ProjectConfig",
    # release
    "ReleaseMatrixEntry",
    "JobStage",
    "JobStatus",
    "JobResult",
    "PlatformFailure",
    "ReleaseAsset",
    "ReleaseReport",
    "ReleaseState",
]
