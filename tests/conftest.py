"""Shared test fixtures for relforge.

Everything the pipeline fetches is served from a local ``file://`` mirror
in ``tmp_path``; build and test commands are small Python scripts run with
``sys.executable`` so they work under the hermetic build environment.
"""

from __future__ import annotations

import io
import json
import sys
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest

from relforge.config import RelforgeSettings
from relforge.core.derivation import host_platform
from relforge.core.fetcher import SourceFetcher
from relforge.core.hasher import sha256_hex
from relforge.core.store import MemoryStore
from relforge.models.pins import PinKind, PinManifest, PinRecord
from relforge.project import parse_lockfile, save_manifest

REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"

BUILD_SCRIPT = '''\
import os
import pathlib
import sys

name = sys.argv[1]
out = pathlib.Path("target") / "release"
out.mkdir(parents=True, exist_ok=True)
body = "\\n".join([
    "tool-binary",
    "built-in=" + os.getcwd(),
    "path=" + os.environ["PATH"],
    "home=" + os.environ["HOME"],
    "epoch=" + os.environ["SOURCE_DATE_EPOCH"],
    "vendored=" + ",".join(sorted(os.listdir("vendor"))),
    "main=" + pathlib.Path("src/main.rs").read_text(),
])
(out / name).write_bytes(body.encode("utf-8"))
'''

CHECK_SCRIPT = '''\
import os
import sys

sys.exit(1 if os.path.exists("FAIL_TESTS") else 0)
'''


# ---------------------------------------------------------------------------
# Archive and mirror helpers
# ---------------------------------------------------------------------------


def build_tarball(files: dict[str, bytes | str], executable: tuple[str, ...] = ()) -> bytes:
    """Deterministic tar.gz of *files* (relative path -> content)."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for rel in sorted(files):
            content = files[rel]
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(rel)
            info.size = len(data)
            info.mtime = 0
            info.mode = 0o755 if rel in executable else 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class Mirror:
    """A directory served through ``file://`` URLs."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def url(self, rel: str) -> str:
        return (self.root / rel).as_uri()

    def template(self, rel: str) -> str:
        """URL for *rel*, which may contain ``{placeholders}``."""
        return f"file://{self.root.as_posix()}/{rel}"

    def publish(self, rel: str, data: bytes) -> str:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return self.url(rel)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_tarball() -> Callable[..., bytes]:
    """Factory fixture: build a deterministic tar.gz."""
    return build_tarball


@pytest.fixture
def platform() -> str:
    """The host platform; derivations only build for it."""
    return host_platform()


@pytest.fixture
def runner_label(platform: str) -> str:
    return "macos-latest" if platform == "macos" else "ubuntu-latest"


@pytest.fixture
def mirror(tmp_path: Path) -> Mirror:
    return Mirror(tmp_path / "mirror")


@pytest.fixture
def fetcher() -> SourceFetcher:
    return SourceFetcher(timeout=5.0)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def toolchain_archive() -> bytes:
    return build_tarball(
        {
            "rust-1.75.0/bin/cargo": "#!/bin/sh\necho cargo 1.75.0\n",
            "rust-1.75.0/bin/rustc": "#!/bin/sh\necho rustc 1.75.0\n",
            "rust-1.75.0/lib/rustlib/components": "rustc\ncargo\n",
        },
        executable=("rust-1.75.0/bin/cargo", "rust-1.75.0/bin/rustc"),
    )


@pytest.fixture
def toolchain_pin(mirror: Mirror, toolchain_archive: bytes, platform: str) -> PinRecord:
    mirror.publish(f"dist/rust-1.75.0-{platform}.tar.gz", toolchain_archive)
    return PinRecord(
        name="rust",
        kind=PinKind.TOOLCHAIN,
        version="1.75.0",
        url=mirror.template("dist/rust-1.75.0-{platform}.tar.gz"),
        sha256=sha256_hex(toolchain_archive),
    )


@pytest.fixture
def registry_pin(mirror: Mirror) -> PinRecord:
    return PinRecord(
        name="crates-io",
        kind=PinKind.REGISTRY,
        version="index",
        url=mirror.template("crates/{name}/{name}-{version}.crate"),
    )


@pytest.fixture
def crates(mirror: Mirror) -> dict[str, bytes]:
    """Two published registry packages, keyed by ``name-version``."""
    packages = {
        "itoa-1.0.9": build_tarball({
            "itoa-1.0.9/Cargo.toml": '[package]\nname = "itoa"\nversion = "1.0.9"\n',
            "itoa-1.0.9/src/lib.rs": "pub fn fmt() {}\n",
        }),
        "serde-1.0.188": build_tarball({
            "serde-1.0.188/Cargo.toml": '[package]\nname = "serde"\nversion = "1.0.188"\n',
            "serde-1.0.188/src/lib.rs": "pub trait Serialize {}\n",
        }),
    }
    for dir_name, data in packages.items():
        name, version = dir_name.rsplit("-", 1)
        mirror.publish(f"crates/{name}/{name}-{version}.crate", data)
    return packages


def render_lockfile(crates: dict[str, bytes], *, extra: str = "") -> str:
    return (
        "version = 3\n\n"
        "[[package]]\n"
        'name = "itoa"\n'
        'version = "1.0.9"\n'
        f'source = "{REGISTRY}"\n'
        f'checksum = "{sha256_hex(crates["itoa-1.0.9"])}"\n\n'
        "[[package]]\n"
        'name = "serde"\n'
        'version = "1.0.188"\n'
        f'source = "{REGISTRY}"\n'
        f'checksum = "{sha256_hex(crates["serde-1.0.188"])}"\n'
        'dependencies = ["itoa"]\n\n'
        "[[package]]\n"
        'name = "tool"\n'
        'version = "0.1.0"\n'
        'dependencies = ["itoa 1.0.9", "serde"]\n'
        + extra
    )


@pytest.fixture
def make_lockfile(crates: dict[str, bytes]) -> Callable[..., str]:
    """Factory fixture: lockfile text for the published crates, plus *extra*."""

    def _factory(extra: str = "") -> str:
        return render_lockfile(crates, extra=extra)

    return _factory


@pytest.fixture
def lockfile_text(crates: dict[str, bytes]) -> str:
    return render_lockfile(crates)


@pytest.fixture
def lock(lockfile_text: str):
    return parse_lockfile(lockfile_text)


@pytest.fixture
def make_project(
    tmp_path: Path,
    toolchain_pin: PinRecord,
    registry_pin: PinRecord,
    lockfile_text: str,
    runner_label: str,
) -> Callable[..., Path]:
    """Factory fixture: write a buildable project tree and return its root."""

    def _factory(
        name: str = "project",
        *,
        matrix: list[dict[str, str]] | None = None,
        tag_pattern: str = "v*",
        lockfile: str | None = None,
        verify: bool = True,
    ) -> Path:
        root = tmp_path / name
        (root / "src").mkdir(parents=True)
        (root / "src" / "main.rs").write_text('fn main() { println!("hi"); }\n')
        (root / "build.py").write_text(BUILD_SCRIPT)
        (root / "check.py").write_text(CHECK_SCRIPT)
        (root / "Cargo.lock").write_text(lockfile or lockfile_text)
        save_manifest(PinManifest(pins=[toolchain_pin, registry_pin]), root / "pins.json")

        entries = matrix if matrix is not None else [
            {"os": runner_label, "artifact_name": "tool", "asset_name": "tool-{tag}"},
        ]
        lines = [
            "[project]",
            f'name = "{name}"',
            "",
            "[build]",
            f"command = {json.dumps([sys.executable, 'build.py', 'tool'])}",
            f"test_command = {json.dumps([sys.executable, 'check.py'])}",
            f"verify = {'true' if verify else 'false'}",
            "",
            "[release]",
            f'tag_pattern = "{tag_pattern}"',
        ]
        for entry in entries:
            lines += [
                "",
                "[[release.matrix]]",
                f'os = "{entry["os"]}"',
                f'artifact_name = "{entry["artifact_name"]}"',
                f'asset_name = "{entry["asset_name"]}"',
            ]
        (root / "relforge.toml").write_text("\n".join(lines) + "\n")
        return root

    return _factory


@pytest.fixture
def settings(tmp_path: Path) -> RelforgeSettings:
    """Settings rooted in tmp_path, with no upload backoff delay."""
    return RelforgeSettings(
        cache_dir=tmp_path / "cache",
        work_root=tmp_path / "work",
        artifact_store_path=tmp_path / "artifacts",
        release_dir=tmp_path / "releases",
        upload_backoff_seconds=0.0,
        max_parallel_jobs=2,
        github_token="",
        github_repository="",
    )
