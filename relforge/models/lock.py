"""Dependency lock models — the resolved, closed dependency graph."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

REGISTRY_SOURCE_PREFIX = "registry+"


class DependencyLockEntry(BaseModel):
    """One resolved (name, version, checksum) package from the lockfile.

    ``source`` is ``None`` for members of the project's own workspace; those
    are built from the source tree and never vendored.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    source: str | None = None
    checksum: str | None = None
    dependencies: list[str] = Field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.name} {self.version}"

    @property
    def dir_name(self) -> str:
        return f"{self.name}-{self.version}"

    @property
    def is_workspace_member(self) -> bool:
        return self.source is None

    @property
    def is_registry(self) -> bool:
        return self.source is not None and self.source.startswith(REGISTRY_SOURCE_PREFIX)


class DependencyLock(BaseModel):
    """All lock entries plus the hash of the lockfile they came from."""

    model_config = ConfigDict(frozen=True)

    entries: list[DependencyLockEntry] = Field(default_factory=list)
    content_hash: str = ""

    @property
    def vendorable(self) -> list[DependencyLockEntry]:
        """Non-workspace entries in deterministic (name, version) order."""
        return sorted(
            (e for e in self.entries if not e.is_workspace_member),
            key=lambda e: (e.name, e.version),
        )

    def resolve_reference(self, reference: str) -> DependencyLockEntry | None:
        """Resolve a ``name``, ``name version`` or ``name version (source)`` reference.

        A bare name only resolves when exactly one entry carries it.
        """
        parts = reference.split(" ", 2)
        name = parts[0]
        version = parts[1] if len(parts) > 1 else None
        source = parts[2].strip("()") if len(parts) > 2 else None

        matches = [e for e in self.entries if e.name == name]
        if version is not None:
            matches = [e for e in matches if e.version == version]
        if source is not None:
            matches = [e for e in matches if e.source == source]
        if len(matches) != 1:
            return None
        return matches[0]
