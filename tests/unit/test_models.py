"""Tests for pin, lock, release and project models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from relforge.models.lock import DependencyLock, DependencyLockEntry
from relforge.models.pins import PinKind, PinManifest, PinRecord
from relforge.models.project import BuildSettings, ProjectConfig
from relforge.models.release import (
    JobResult,
    JobStage,
    JobStatus,
    ReleaseMatrixEntry,
    ReleaseReport,
    ReleaseState,
    platform_for_runner,
)

SHA = "a" * 64


class TestPinRecord:
    def test_toolchain_requires_hash(self):
        with pytest.raises(ValidationError):
            PinRecord(name="rust", kind=PinKind.TOOLCHAIN, version="1.75.0", url="file:///x")

    def test_registry_hash_optional(self):
        pin = PinRecord(name="crates", kind=PinKind.REGISTRY, version="index", url="file:///{name}")
        assert pin.sha256 is None

    def test_malformed_hash_rejected(self):
        with pytest.raises(ValidationError):
            PinRecord(name="rust", kind=PinKind.TOOL, version="1", url="u", sha256="abc")

    def test_frozen(self):
        pin = PinRecord(name="rust", kind=PinKind.TOOLCHAIN, version="1", url="u", sha256=SHA)
        with pytest.raises(ValidationError):
            pin.version = "2"

    def test_resolved_url(self):
        pin = PinRecord(
            name="rust",
            kind=PinKind.TOOLCHAIN,
            version="1",
            url="https://example.invalid/rust-{platform}.tar.gz",
            sha256=SHA,
        )
        assert pin.resolved_url("macos") == "https://example.invalid/rust-macos.tar.gz"


class TestPinManifest:
    def _pin(self, platform=None, version="1"):
        return PinRecord(
            name="rust", kind=PinKind.TOOLCHAIN, version=version, url="u",
            sha256=SHA, platform=platform,
        )

    def test_find_prefers_exact_platform(self):
        manifest = PinManifest(pins=[self._pin(None, "generic"), self._pin("linux", "linux")])
        assert manifest.find("rust", "linux").version == "linux"
        assert manifest.find("rust", "macos").version == "generic"

    def test_find_missing(self):
        assert PinManifest().find("rust", "linux") is None

    def test_find_kind(self):
        manifest = PinManifest(pins=[self._pin("macos")])
        assert manifest.find_kind(PinKind.TOOLCHAIN, "macos") is not None
        assert manifest.find_kind(PinKind.TOOLCHAIN, "linux") is None

    def test_with_pin_replaces_same_key(self):
        manifest = PinManifest().with_pin(self._pin(version="1")).with_pin(self._pin(version="2"))
        assert [p.version for p in manifest.pins] == ["2"]


class TestDependencyLock:
    def _lock(self):
        return DependencyLock(entries=[
            DependencyLockEntry(name="itoa", version="1.0.9", source="registry+x", checksum=SHA),
            DependencyLockEntry(name="itoa", version="0.4.8", source="registry+x", checksum=SHA),
            DependencyLockEntry(name="serde", version="1.0.188", source="registry+x", checksum=SHA),
            DependencyLockEntry(name="tool", version="0.1.0", dependencies=["serde"]),
        ])

    def test_bare_name_must_be_unique(self):
        lock = self._lock()
        assert lock.resolve_reference("serde").version == "1.0.188"
        assert lock.resolve_reference("itoa") is None

    def test_versioned_reference(self):
        assert self._lock().resolve_reference("itoa 0.4.8").version == "0.4.8"

    def test_sourced_reference(self):
        assert self._lock().resolve_reference("itoa 1.0.9 (registry+x)") is not None
        assert self._lock().resolve_reference("itoa 1.0.9 (registry+y)") is None

    def test_vendorable_excludes_workspace_and_sorts(self):
        labels = [e.label for e in self._lock().vendorable]
        assert labels == ["itoa 0.4.8", "itoa 1.0.9", "serde 1.0.188"]


class TestReleaseMatrixEntry:
    def test_platform_mapping(self):
        assert platform_for_runner("ubuntu-latest") == "linux"
        assert platform_for_runner("macos-13") == "macos"
        assert platform_for_runner("windows-latest") is None

    def test_unknown_runner_rejected(self):
        with pytest.raises(ValidationError):
            ReleaseMatrixEntry(os="windows-latest", artifact_name="t", asset_name="t")

    def test_asset_for_tag(self):
        entry = ReleaseMatrixEntry(os="ubuntu-latest", artifact_name="t", asset_name="t-{tag}-linux")
        assert entry.asset_for("v1.0.0") == "t-v1.0.0-linux"
        assert entry.platform == "linux"


class TestReleaseReport:
    def _job(self, asset, ok, stage=None):
        return JobResult(
            entry=ReleaseMatrixEntry(os="ubuntu-latest", artifact_name="t", asset_name=asset),
            status=JobStatus.SUCCEEDED if ok else JobStatus.FAILED,
            asset_name=asset,
            failed_stage=stage,
            error="" if ok else "boom",
        )

    def test_failures_enumerate_platform_and_stage(self):
        report = ReleaseReport(
            tag="v1",
            state=ReleaseState.PARTIALLY_FAILED,
            jobs=[self._job("a", True), self._job("b", False, JobStage.VENDOR)],
        )
        [failure] = report.failures
        assert (failure.platform, failure.asset_name, failure.stage) == ("linux", "b", JobStage.VENDOR)
        assert "linux (b) at vendor" in report.summary()

    def test_missing_asset_is_upload_failure(self):
        report = ReleaseReport(
            tag="v1",
            state=ReleaseState.PARTIALLY_FAILED,
            jobs=[self._job("a", True)],
            missing_assets=["a"],
        )
        assert [f.stage for f in report.failures] == [JobStage.UPLOAD]


class TestProjectConfig:
    def test_defaults(self):
        config = ProjectConfig(name="tool")
        assert config.pins == "pins.json"
        assert config.build.command[:2] == ["cargo", "build"]
        assert "target" in config.build.output_dirs
        assert config.release.tag_pattern == "*"

    def test_build_overrides(self):
        build = BuildSettings(command=["make"], verify=False)
        assert build.command == ["make"]
        assert build.verify is False
