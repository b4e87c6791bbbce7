"""Canonical hashing helpers for pins, lockfiles, source trees and derivations.

All hashes are SHA-256 hex digests.  JSON payloads are serialized canonically
(sorted keys, compact separators, ASCII) so the same logical input always
hashes the same way regardless of dict ordering.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

_CHUNK_SIZE = 1 << 20


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def hash_tree(root: Path, relative_paths: Iterable[str]) -> str:
    """Hash a listing of files under *root*.

    The digest covers each relative path, its type, its executable bit and
    its contents (or link target for symlinks).  Modification times and
    ownership are deliberately excluded.
    """
    records: list[dict[str, Any]] = []
    for rel in sorted(relative_paths):
        path = root / rel
        if path.is_symlink():
            records.append({"path": rel, "type": "symlink", "target": str(path.readlink())})
        elif path.is_dir():
            records.append({"path": rel, "type": "directory"})
        else:
            records.append({
                "path": rel,
                "type": "file",
                "executable": bool(path.stat().st_mode & 0o111),
                "sha256": sha256_file(path),
            })
    return sha256_hex(canonical_json_bytes(records))


def compute_derivation_key(
    *,
    toolchain_sha256: str,
    lock_hash: str,
    source_hash: str,
    platform: str,
    artifact_name: str,
) -> str:
    """SHA-256 of every input that determines a build's output bytes."""
    payload = {
        "toolchain": toolchain_sha256,
        "lock": lock_hash,
        "source": source_hash,
        "platform": platform,
        "artifact_name": artifact_name,
    }
    return sha256_hex(canonical_json_bytes(payload))
