"""Build derivation — one deterministic build step producing one binary.

A derivation combines a toolchain handle, a vendored package set and the
filtered source tree.  It runs in a fresh work directory with an
environment built from scratch (nothing is inherited from the caller), and
its output has every work-directory, toolchain and vendor path replaced by
a same-length placeholder so the binary does not depend on where it was
built.

Lifecycle::

    prepare  -> stage filtered source, link vendor set, build environment
    realize  -> build, read the artifact, [test], strip paths, store

A test failure withholds the artifact: nothing is stored and no
``BuildArtifact`` is returned.
"""

from __future__ import annotations

import logging
import os
import platform as _platform
from dataclasses import dataclass
from pathlib import Path

from relforge.core.archive import reset_dir
from relforge.core.command_runner import CommandRunner, CommandResult
from relforge.core.hasher import compute_derivation_key, hash_tree
from relforge.core.source_filter import SourceFilter, stage_source
from relforge.core.store import BlobStore
from relforge.errors import CompilationError, TestFailure
from relforge.models.build import BuildArtifact, ToolchainHandle, VendoredPackageSet
from relforge.models.project import BuildSettings

logger = logging.getLogger(__name__)

SYSTEM_PATH = "/usr/bin:/bin"
_HOST_PLATFORMS = {"Linux": "linux", "Darwin": "macos"}


def host_platform() -> str:
    """Platform identifier of the machine running the build."""
    system = _platform.system()
    return _HOST_PLATFORMS.get(system, system.lower())


def strip_path_references(data: bytes, prefixes: list[str]) -> bytes:
    """Replace each prefix in *data* with a same-length placeholder.

    The placeholder keeps the leading ``/`` and fills the rest with ``e``,
    so string lengths and offsets inside the binary are unchanged.
    Longer prefixes are replaced first so nested paths disappear whole.
    """
    seen: set[str] = set()
    for prefix in sorted(prefixes, key=len, reverse=True):
        if not prefix or prefix in seen or prefix == "/":
            continue
        seen.add(prefix)
        raw = prefix.encode("utf-8")
        placeholder = b"/" + b"e" * (len(raw) - 1)
        data = data.replace(raw, placeholder)
    return data


@dataclass(frozen=True)
class PreparedDerivation:
    """Everything a derivation consumes, materialized in its work directory."""

    work_dir: Path
    source_dir: Path
    listing: list[str]
    source_hash: str
    env: dict[str, str]
    toolchain: ToolchainHandle
    vendored: VendoredPackageSet
    platform: str
    artifact_name: str


class BuildDerivation:
    """Produces a ``BuildArtifact`` from pinned inputs.

    Parameters
    ----------
    runner:
        Executes the build and test commands.
    artifact_store:
        Blob store the artifact bytes are written to.
    build:
        The project's build settings.
    command_timeout:
        Optional per-command timeout in seconds.
    """

    def __init__(
        self,
        runner: CommandRunner,
        artifact_store: BlobStore,
        build: BuildSettings,
        *,
        command_timeout: float | None = None,
    ) -> None:
        self._runner = runner
        self._store = artifact_store
        self._build = build
        self._filter = SourceFilter.from_settings(build)
        self._timeout = command_timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def derive(
        self,
        toolchain: ToolchainHandle,
        vendored: VendoredPackageSet,
        source_root: Path,
        work_dir: Path,
        *,
        platform: str,
        artifact_name: str,
        verify: bool | None = None,
    ) -> BuildArtifact:
        """Prepare and realize in one step."""
        prepared = self.prepare(
            toolchain, vendored, source_root, work_dir,
            platform=platform, artifact_name=artifact_name,
        )
        return self.realize(prepared, verify=verify)

    def prepare(
        self,
        toolchain: ToolchainHandle,
        vendored: VendoredPackageSet,
        source_root: Path,
        work_dir: Path,
        *,
        platform: str,
        artifact_name: str,
    ) -> PreparedDerivation:
        """Stage inputs into a fresh *work_dir*."""
        host = host_platform()
        if platform != host:
            raise CompilationError(
                f"Cannot build {artifact_name} for {platform!r} on a {host!r} host"
            )
        if toolchain.platform != platform:
            raise CompilationError(
                f"Toolchain {toolchain.name} {toolchain.version} targets "
                f"{toolchain.platform!r}, not {platform!r}"
            )

        work_dir = reset_dir(Path(work_dir).resolve())
        source_dir = work_dir / "src"
        listing = stage_source(source_root, source_dir, self._filter)
        source_hash = hash_tree(source_dir, listing)

        self._link_vendored(source_dir, vendored)
        env = self._environment(work_dir, source_dir, toolchain)

        logger.info(
            "Prepared derivation for %s/%s: %d source entries, source=%s",
            platform, artifact_name, len(listing), source_hash[:12],
        )
        return PreparedDerivation(
            work_dir=work_dir,
            source_dir=source_dir,
            listing=listing,
            source_hash=source_hash,
            env=env,
            toolchain=toolchain,
            vendored=vendored,
            platform=platform,
            artifact_name=artifact_name,
        )

    def realize(self, prepared: PreparedDerivation, *, verify: bool | None = None) -> BuildArtifact:
        """Run the build (and tests), then store the stripped artifact."""
        verify = self._build.verify if verify is None else verify

        result = self._run(self._build.command, prepared)
        if not result.ok:
            raise CompilationError(
                f"Build command exited {result.returncode}: "
                f"{self._runner.format_command(self._build.command)}\n{result.tail()}"
            )

        rel = self._build.artifact_path.format(artifact_name=prepared.artifact_name)
        produced = prepared.source_dir / rel
        if not produced.is_file():
            raise CompilationError(f"Build succeeded but produced no artifact at {rel}")
        raw = produced.read_bytes()

        if verify:
            tests = self._run(self._build.test_command, prepared)
            if not tests.ok:
                raise TestFailure(
                    f"Test command exited {tests.returncode}; artifact withheld\n{tests.tail()}"
                )

        data = strip_path_references(raw, self._path_prefixes(prepared))
        digest = self._store.put(data)

        out_dir = prepared.work_dir / "out"
        out_dir.mkdir(exist_ok=True)
        out_path = out_dir / prepared.artifact_name
        out_path.write_bytes(data)
        out_path.chmod(0o755)

        artifact = BuildArtifact(
            platform=prepared.platform,
            artifact_name=prepared.artifact_name,
            path=out_path,
            sha256=digest,
            size_bytes=len(data),
            derivation_key=compute_derivation_key(
                toolchain_sha256=prepared.toolchain.sha256,
                lock_hash=prepared.vendored.lock_hash,
                source_hash=prepared.source_hash,
                platform=prepared.platform,
                artifact_name=prepared.artifact_name,
            ),
        )
        logger.info(
            "Built %s for %s: sha256=%s (%d bytes)",
            artifact.artifact_name, artifact.platform, digest, len(data),
        )
        return artifact

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self, command: list[str], prepared: PreparedDerivation) -> CommandResult:
        return self._runner.run(
            command,
            cwd=prepared.source_dir,
            env=prepared.env,
            timeout=self._timeout,
        )

    def _link_vendored(self, source_dir: Path, vendored: VendoredPackageSet) -> None:
        vendor_link = source_dir / self._build.vendor_dir
        config_link = source_dir / self._build.config_path
        for link, target in ((vendor_link, vendored.root), (config_link, vendored.config_path)):
            link.parent.mkdir(parents=True, exist_ok=True)
            if link.is_symlink() or link.exists():
                link.unlink()
            os.symlink(Path(target).resolve(), link)

    def _environment(
        self, work_dir: Path, source_dir: Path, toolchain: ToolchainHandle
    ) -> dict[str, str]:
        home = work_dir / "home"
        tmp = work_dir / "tmp"
        tool_home = work_dir / "tool-home"
        for d in (home, tmp, tool_home):
            d.mkdir(exist_ok=True)

        env = {
            "PATH": f"{toolchain.bin_dir}:{SYSTEM_PATH}",
            "HOME": str(home),
            "TMPDIR": str(tmp),
            "CARGO_HOME": str(tool_home),
            "CARGO_NET_OFFLINE": "true",
            "SOURCE_DATE_EPOCH": str(self._build.source_date_epoch),
            "TZ": "UTC",
            "LC_ALL": "C",
        }
        for key, value in self._build.env.items():
            env[key] = value.format(workdir=source_dir)
        return env

    @staticmethod
    def _path_prefixes(prepared: PreparedDerivation) -> list[str]:
        paths = [
            prepared.source_dir,
            prepared.work_dir,
            prepared.toolchain.root,
            prepared.vendored.root,
        ]
        prefixes: list[str] = []
        for p in paths:
            prefixes.append(str(p))
            prefixes.append(str(Path(p).resolve()))
        return prefixes
