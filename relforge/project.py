"""Loaders for the files a project keeps under version control.

- ``relforge.toml``: build command, matrix and trigger pattern.
- ``pins.json``: the pin manifest (toolchain, registry, tools).
- ``Cargo.lock``-style TOML lockfile: the resolved dependency graph.

Parse failures become ``ProjectConfigError`` with the offending path.
"""

from __future__ import annotations

import json
import logging
import tomllib
from pathlib import Path

from pydantic import ValidationError

from relforge.core.hasher import sha256_hex
from relforge.errors import ProjectConfigError
from relforge.models.lock import DependencyLock, DependencyLockEntry
from relforge.models.pins import PinManifest
from relforge.models.project import ProjectConfig

logger = logging.getLogger(__name__)

PROJECT_FILE = "relforge.toml"


def load_project(root: Path) -> ProjectConfig:
    """Read ``relforge.toml`` from the source root."""
    path = Path(root) / PROJECT_FILE
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ProjectConfigError(f"No {PROJECT_FILE} found in {root}") from None
    except tomllib.TOMLDecodeError as exc:
        raise ProjectConfigError(f"Invalid TOML in {path}: {exc}") from exc

    data = dict(raw.get("project", {}))
    if "build" in raw:
        data["build"] = raw["build"]
    if "release" in raw:
        data["release"] = raw["release"]
    try:
        config = ProjectConfig.model_validate(data)
    except ValidationError as exc:
        raise ProjectConfigError(f"Invalid project configuration in {path}: {exc}") from exc

    logger.debug(
        "Loaded project %s (%d matrix entries)", config.name, len(config.release.matrix)
    )
    return config


def load_manifest(path: Path) -> PinManifest:
    """Read a pin manifest from JSON."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ProjectConfigError(f"Pin manifest not found: {path}") from None
    except json.JSONDecodeError as exc:
        raise ProjectConfigError(f"Invalid JSON in {path}: {exc}") from exc
    try:
        return PinManifest.model_validate(raw)
    except ValidationError as exc:
        raise ProjectConfigError(f"Invalid pin manifest {path}: {exc}") from exc


def dump_manifest(manifest: PinManifest) -> str:
    """Serialize a manifest with stable ordering and formatting."""
    data = manifest.model_dump(mode="json", exclude_none=True)
    data["pins"] = sorted(data["pins"], key=lambda p: (p["name"], p.get("platform", "")))
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def save_manifest(manifest: PinManifest, path: Path) -> None:
    """Write a manifest; re-saving an unchanged manifest is byte-identical."""
    Path(path).write_text(dump_manifest(manifest), encoding="utf-8")


def parse_lockfile(text: str) -> DependencyLock:
    """Parse Cargo-style lockfile text (``[[package]]`` tables)."""
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ProjectConfigError(f"Invalid lockfile: {exc}") from exc

    entries: list[DependencyLockEntry] = []
    for table in raw.get("package", []):
        try:
            entries.append(DependencyLockEntry.model_validate(table))
        except ValidationError as exc:
            raise ProjectConfigError(f"Invalid lock entry {table!r}: {exc}") from exc
    return DependencyLock(
        entries=entries,
        content_hash=sha256_hex(text.encode("utf-8")),
    )


def load_lockfile(path: Path) -> DependencyLock:
    """Read and parse the dependency lockfile."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ProjectConfigError(f"Lockfile not found: {path}") from None
    return parse_lockfile(text)
