"""Build-side models: toolchain handles, vendored sets and build outputs.

All artifacts are immutable once produced.  A ``BuildArtifact``'s bytes
live in the artifact store under ``sha256``; the model is the metadata.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class ToolchainHandle(BaseModel):
    """A materialized, pinned toolchain usable by the build derivation."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    platform: str
    sha256: str
    root: Path
    bin_dir: Path


class VendoredPackageSet(BaseModel):
    """An offline mirror of every vendorable lock entry.

    ``packages`` maps ``"name-version"`` to the unpacked package directory.
    ``config_path`` is the fetcher-redirect file that points the build tool
    at ``root`` and forbids network access.
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    config_path: Path
    packages: dict[str, Path] = Field(default_factory=dict)
    lock_hash: str = ""


class BuildArtifact(BaseModel):
    """One compiled binary for a (platform, architecture) pair."""

    model_config = ConfigDict(frozen=True)

    platform: str
    artifact_name: str
    path: Path
    sha256: str
    size_bytes: int
    derivation_key: str
    built_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def content_address(self) -> str:
        return f"sha256:{self.sha256}"
