"""Tests for BuildDerivation — hermetic environment, stripping, determinism."""

from __future__ import annotations

import sys

import pytest

from relforge.core.command_runner import RecordingCommandRunner, SubprocessCommandRunner
from relforge.core.derivation import BuildDerivation, host_platform, strip_path_references
from relforge.core.hasher import sha256_hex
from relforge.core.store import MemoryStore
from relforge.core.toolchain import ToolchainResolver
from relforge.core.vendoring import Vendorer
from relforge.errors import CompilationError, TestFailure
from relforge.project import load_project


@pytest.fixture
def project_root(make_project):
    return make_project()


@pytest.fixture
def build_settings(project_root):
    return load_project(project_root).build


@pytest.fixture
def toolchain(fetcher, memory_store, toolchain_pin, platform, tmp_path):
    return ToolchainResolver(fetcher, memory_store, tmp_path / "toolchains").resolve(
        toolchain_pin, platform
    )


@pytest.fixture
def vendored(fetcher, memory_store, registry_pin, lock, tmp_path):
    return Vendorer(fetcher, memory_store, registry_pin).vendor(
        lock, tmp_path / "deps" / "vendor", tmp_path / "deps" / "config.toml"
    )


class TestStripPathReferences:
    def test_same_length_replacement(self):
        data = b"panic at /work/abc/src/main.rs:3"
        stripped = strip_path_references(data, ["/work/abc"])
        assert len(stripped) == len(data)
        assert b"/work/abc" not in stripped
        assert stripped.startswith(b"panic at /eeeeeeee/src")

    def test_longest_prefix_first(self):
        data = b"/w/build/src|/w/x"
        stripped = strip_path_references(data, ["/w", "/w/build"])
        assert stripped == b"/eeeeeee/src|/e/x"

    def test_root_and_empty_ignored(self):
        assert strip_path_references(b"/usr/bin", ["/", ""]) == b"/usr/bin"


class TestBuildDerivation:
    def test_builds_and_stores_artifact(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        artifacts = MemoryStore()
        derivation = BuildDerivation(SubprocessCommandRunner(), artifacts, build_settings)
        artifact = derivation.derive(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool",
        )
        data = artifact.path.read_bytes()
        assert artifacts.get(artifact.sha256) == data
        assert artifact.sha256 == sha256_hex(data)
        assert artifact.size_bytes == len(data)
        assert b"vendored=itoa-1.0.9,serde-1.0.188" in data
        assert b"epoch=0" in data

    def test_build_paths_are_stripped(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        derivation = BuildDerivation(SubprocessCommandRunner(), MemoryStore(), build_settings)
        artifact = derivation.derive(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool",
        )
        data = artifact.path.read_bytes()
        assert str((tmp_path / "w1").resolve()).encode() not in data
        assert str(toolchain.root).encode() not in data
        assert b"/usr/bin:/bin" in data

    def test_identical_inputs_are_byte_identical(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        derivation = BuildDerivation(SubprocessCommandRunner(), MemoryStore(), build_settings)
        first = derivation.derive(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool",
        )
        second = derivation.derive(
            toolchain, vendored, project_root, tmp_path / "w2",
            platform=platform, artifact_name="tool",
        )
        assert first.sha256 == second.sha256
        assert first.derivation_key == second.derivation_key

    def test_source_change_changes_key(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        derivation = BuildDerivation(SubprocessCommandRunner(), MemoryStore(), build_settings)
        before = derivation.derive(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool",
        )
        (project_root / "src" / "main.rs").write_text('fn main() { println!("bye"); }\n')
        after = derivation.derive(
            toolchain, vendored, project_root, tmp_path / "w2",
            platform=platform, artifact_name="tool",
        )
        assert before.derivation_key != after.derivation_key
        assert before.sha256 != after.sha256

    def test_stale_output_dir_not_staged(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        (project_root / "target" / "release").mkdir(parents=True)
        (project_root / "target" / "release" / "tool").write_text("stale")
        derivation = BuildDerivation(SubprocessCommandRunner(), MemoryStore(), build_settings)
        prepared = derivation.prepare(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool",
        )
        assert not any(p.startswith("target") for p in prepared.listing)
        assert not (prepared.source_dir / "target").exists()

    def test_hermetic_environment(self, project_root, build_settings, toolchain, vendored, platform, tmp_path, monkeypatch):
        monkeypatch.setenv("RELFORGE_LEAK_CHECK", "leaked")
        runner = RecordingCommandRunner()
        derivation = BuildDerivation(runner, MemoryStore(), build_settings)
        prepared = derivation.prepare(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool",
        )
        env = prepared.env
        assert env["PATH"].split(":")[0] == str(toolchain.bin_dir)
        assert env["HOME"].startswith(str(prepared.work_dir))
        assert env["CARGO_HOME"].startswith(str(prepared.work_dir))
        assert env["TZ"] == "UTC"
        assert env["LC_ALL"] == "C"
        assert env["RUSTFLAGS"] == f"--remap-path-prefix={prepared.source_dir}=/build"
        assert "RELFORGE_LEAK_CHECK" not in env

    def test_vendor_set_linked_into_source(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        derivation = BuildDerivation(RecordingCommandRunner(), MemoryStore(), build_settings)
        prepared = derivation.prepare(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool",
        )
        assert (prepared.source_dir / "vendor").resolve() == vendored.root.resolve()
        config = (prepared.source_dir / ".cargo" / "config.toml").read_text()
        assert "offline = true" in config

    def test_build_failure_is_compilation_error(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        runner = RecordingCommandRunner(returncodes={sys.executable: 1})
        derivation = BuildDerivation(runner, MemoryStore(), build_settings)
        with pytest.raises(CompilationError, match="exited 1"):
            derivation.derive(
                toolchain, vendored, project_root, tmp_path / "w1",
                platform=platform, artifact_name="tool",
            )
        assert len(runner.commands) == 1

    def test_missing_artifact_is_compilation_error(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        derivation = BuildDerivation(SubprocessCommandRunner(), MemoryStore(), build_settings)
        with pytest.raises(CompilationError, match="no artifact"):
            derivation.derive(
                toolchain, vendored, project_root, tmp_path / "w1",
                platform=platform, artifact_name="ghost",
            )

    def test_test_failure_withholds_artifact(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        (project_root / "FAIL_TESTS").write_text("")
        artifacts = MemoryStore()
        derivation = BuildDerivation(SubprocessCommandRunner(), artifacts, build_settings)
        with pytest.raises(TestFailure, match="withheld"):
            derivation.derive(
                toolchain, vendored, project_root, tmp_path / "w1",
                platform=platform, artifact_name="tool",
            )
        assert artifacts.puts == 0
        assert not (tmp_path / "w1" / "out").exists()

    def test_verify_can_be_disabled(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        (project_root / "FAIL_TESTS").write_text("")
        derivation = BuildDerivation(SubprocessCommandRunner(), MemoryStore(), build_settings)
        artifact = derivation.derive(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool", verify=False,
        )
        assert artifact.size_bytes > 0

    def test_other_platform_refused(self, project_root, build_settings, toolchain, vendored, tmp_path):
        other = "macos" if host_platform() == "linux" else "linux"
        derivation = BuildDerivation(RecordingCommandRunner(), MemoryStore(), build_settings)
        with pytest.raises(CompilationError, match="Cannot build"):
            derivation.derive(
                toolchain, vendored, project_root, tmp_path / "w1",
                platform=other, artifact_name="tool",
            )

    def test_work_dir_is_fresh(self, project_root, build_settings, toolchain, vendored, platform, tmp_path):
        (tmp_path / "w1").mkdir()
        (tmp_path / "w1" / "leftover").write_text("old")
        derivation = BuildDerivation(RecordingCommandRunner(), MemoryStore(), build_settings)
        derivation.prepare(
            toolchain, vendored, project_root, tmp_path / "w1",
            platform=platform, artifact_name="tool",
        )
        assert not (tmp_path / "w1" / "leftover").exists()
