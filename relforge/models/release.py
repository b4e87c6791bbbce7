"""Release models — matrix entries, job results and the folded release report."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relforge.models.build import BuildArtifact

# Runner label prefix -> platform identifier.
RUNNER_PLATFORMS: dict[str, str] = {
    "ubuntu": "linux",
    "linux": "linux",
    "macos": "macos",
}


def platform_for_runner(os_label: str) -> str | None:
    """Map a runner label such as ``ubuntu-latest`` to ``linux``."""
    for prefix, platform in RUNNER_PLATFORMS.items():
        if os_label == prefix or os_label.startswith(f"{prefix}-"):
            return platform
    return None


class ReleaseMatrixEntry(BaseModel):
    """One build target: where it runs, what it builds, what it is called."""

    model_config = ConfigDict(frozen=True)

    os: str
    artifact_name: str
    asset_name: str

    @field_validator("os")
    @classmethod
    def _known_runner(cls, value: str) -> str:
        if platform_for_runner(value) is None:
            raise ValueError(
                f"unknown runner {value!r}; expected one of "
                f"{sorted(RUNNER_PLATFORMS)} (optionally suffixed, e.g. ubuntu-latest)"
            )
        return value

    @property
    def platform(self) -> str:
        return platform_for_runner(self.os) or ""

    def asset_for(self, tag: str) -> str:
        """Asset name for *tag* (``{tag}`` is substituted when present)."""
        return self.asset_name.format(tag=tag)


class JobStage(str, Enum):
    """Stages of a single matrix job, in execution order."""

    CHECKOUT = "checkout"
    RESOLVE = "resolve"
    VENDOR = "vendor"
    BUILD = "build"
    TEST = "test"
    UPLOAD = "upload"


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ReleaseState(str, Enum):
    """Release lifecycle: idle until a tag arrives, then fan-out, then terminal."""

    IDLE = "idle"
    FAN_OUT = "fan_out"
    RELEASED = "released"
    PARTIALLY_FAILED = "partially_failed"


class ReleaseAsset(BaseModel):
    """A named file attached to a release."""

    model_config = ConfigDict(frozen=True)

    name: str
    sha256: str
    size_bytes: int


class JobResult(BaseModel):
    """Outcome of one matrix job."""

    model_config = ConfigDict(frozen=True)

    entry: ReleaseMatrixEntry
    status: JobStatus
    asset_name: str
    failed_stage: JobStage | None = None
    error: str = ""
    artifact: BuildArtifact | None = None
    upload_attempts: int = 0
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED


class PlatformFailure(BaseModel):
    """A failed platform, the stage it failed at, and why."""

    model_config = ConfigDict(frozen=True)

    platform: str
    asset_name: str
    stage: JobStage
    reason: str


class ReleaseReport(BaseModel):
    """Per-job results folded into a release status."""

    model_config = ConfigDict(frozen=True)

    tag: str
    state: ReleaseState
    jobs: list[JobResult] = Field(default_factory=list)
    assets: list[ReleaseAsset] = Field(default_factory=list)
    missing_assets: list[str] = Field(default_factory=list)

    @property
    def released(self) -> bool:
        return self.state == ReleaseState.RELEASED

    @property
    def failures(self) -> list[PlatformFailure]:
        out: list[PlatformFailure] = []
        for job in self.jobs:
            if job.succeeded:
                continue
            out.append(PlatformFailure(
                platform=job.entry.platform,
                asset_name=job.asset_name,
                stage=job.failed_stage or JobStage.CHECKOUT,
                reason=job.error,
            ))
        for name in self.missing_assets:
            job = next((j for j in self.jobs if j.asset_name == name), None)
            if job is not None and job.succeeded:
                out.append(PlatformFailure(
                    platform=job.entry.platform,
                    asset_name=name,
                    stage=JobStage.UPLOAD,
                    reason="asset not present on the release after upload",
                ))
        return out

    def summary(self) -> str:
        if self.released:
            return f"Release {self.tag}: released ({len(self.jobs)} assets)"
        parts = [f"{f.platform} ({f.asset_name}) at {f.stage.value}: {f.reason}" for f in self.failures]
        return f"Release {self.tag}: partially failed: " + "; ".join(parts)
