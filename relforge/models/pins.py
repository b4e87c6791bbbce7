"""Pin records — fixed, reproducible references to external sources."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PinKind(str, Enum):
    """What a pinned source provides to the build."""

    TOOLCHAIN = "toolchain"
    REGISTRY = "registry"
    TOOL = "tool"


class PinRecord(BaseModel):
    """One pinned external source.

    ``url`` may contain ``{platform}``, and for registry pins ``{name}`` and
    ``{version}``.  ``sha256`` is the hash of the bytes the URL returns; a
    registry pin may omit it because every package it serves is addressed
    individually by the dependency lock.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    kind: PinKind
    version: str
    url: str
    sha256: str | None = None
    rev: str | None = None
    platform: str | None = None

    @model_validator(mode="after")
    def _hash_required(self) -> PinRecord:
        if self.kind != PinKind.REGISTRY and not self.sha256:
            raise ValueError(f"pin {self.name!r} ({self.kind.value}) must carry a sha256")
        if self.sha256 is not None and len(self.sha256) != 64:
            raise ValueError(f"pin {self.name!r} has a malformed sha256 {self.sha256!r}")
        return self

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.name, self.platform)

    @property
    def label(self) -> str:
        suffix = f"@{self.platform}" if self.platform else ""
        return f"{self.name}{suffix} {self.version}"

    def resolved_url(self, platform: str | None = None, **fields: str) -> str:
        """Fill the URL template with the platform and any extra fields."""
        return self.url.format(platform=platform or self.platform or "", **fields)


class PinManifest(BaseModel):
    """The full set of pins for a project (``pins.json``)."""

    model_config = ConfigDict(frozen=True)

    version: int = 1
    pins: list[PinRecord] = Field(default_factory=list)

    def find(self, name: str, platform: str | None = None) -> PinRecord | None:
        """Return the pin for *name*, preferring an exact platform match."""
        generic: PinRecord | None = None
        for pin in self.pins:
            if pin.name != name:
                continue
            if pin.platform == platform and platform is not None:
                return pin
            if pin.platform is None:
                generic = pin
        return generic

    def find_kind(self, kind: PinKind, platform: str | None = None) -> PinRecord | None:
        """Return the first pin of *kind* applicable to *platform*."""
        candidates = [p for p in self.pins if p.kind == kind]
        for pin in candidates:
            if platform is not None and pin.platform == platform:
                return pin
        for pin in candidates:
            if pin.platform is None:
                return pin
        return None

    def with_pin(self, record: PinRecord) -> PinManifest:
        """Return a new manifest with *record* added or replacing its key."""
        kept = [p for p in self.pins if p.key != record.key]
        kept.append(record)
        kept.sort(key=lambda p: (p.name, p.platform or ""))
        return self.model_copy(update={"pins": kept})
