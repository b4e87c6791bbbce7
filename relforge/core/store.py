"""Keyed, content-addressed blob stores (toolchain archives, packages, artifacts).

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
No delete method — blobs are immutable once stored.

Stores are passed explicitly into every component that caches, so tests can
swap in a ``MemoryStore`` to exercise cold-cache and warm-cache paths.  Writes
are serialized per key: concurrent jobs fetching the same package hash never
observe a partially written blob.
"""

from __future__ import annotations

import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

from relforge.core.hasher import sha256_hex
from relforge.errors import IntegrityError


class KeyedLocks:
    """One re-entrant lock per key, created on first use.

    Locks are never evicted: the map grows by one entry per distinct key for
    the life of the store.  Keys are the digests of one run's toolchains and
    packages, so the map stays as small as the lockfile.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
        with lock:
            yield


@runtime_checkable
class BlobStore(Protocol):
    """Protocol for SHA-256 keyed blob storage."""

    def exists(self, digest: str) -> bool:
        ...

    def get(self, digest: str) -> bytes | None:
        """Return verified bytes for *digest*, or ``None`` on a cache miss."""
        ...

    def put(self, data: bytes, *, expected: str | None = None) -> str:
        """Store *data* and return its digest."""
        ...

    def lock(self, key: str) -> AbstractContextManager[None]:
        """Serialize writers of *key* for the duration of the block."""
        ...


def _normalize(digest: str) -> str:
    return digest.removeprefix("sha256:").lower()


class ContentAddressedStore:
    """SHA-256 keyed, immutable filesystem blob store.

    Every blob is stored under its SHA-256 digest.  Storing the same content
    twice is a no-op (idempotent).  There is no update or delete.

    Parameters
    ----------
    base_path:
        Root directory for blob storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        self._locks = KeyedLocks()

    @property
    def base_path(self) -> Path:
        return self._base

    def _blob_path(self, digest: str) -> Path:
        """Layout: {base}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat"""
        return self._base / digest[:2] / digest[2:4] / f"{digest}.dat"

    def lock(self, key: str) -> AbstractContextManager[None]:
        return self._locks.hold(_normalize(key))

    def exists(self, digest: str) -> bool:
        return self._blob_path(_normalize(digest)).exists()

    def get(self, digest: str) -> bytes | None:
        """Return the blob for *digest*, re-hashing it first.

        A blob whose bytes no longer match its address is reported as an
        IntegrityError rather than treated as a miss.
        """
        digest = _normalize(digest)
        path = self._blob_path(digest)
        if not path.exists():
            return None
        data = path.read_bytes()
        if sha256_hex(data) != digest:
            raise IntegrityError(
                f"Cached blob {digest} at {path} failed integrity check",
                subject=digest,
            )
        return data

    def put(self, data: bytes, *, expected: str | None = None) -> str:
        """Store *data* under its digest.

        If *expected* is given and differs from the actual digest, nothing is
        written and IntegrityError is raised.
        """
        digest = sha256_hex(data)
        if expected is not None and _normalize(expected) != digest:
            raise IntegrityError(
                f"Refusing to store blob: expected sha256 {_normalize(expected)}, "
                f"got {digest}",
                subject=_normalize(expected),
            )
        path = self._blob_path(digest)
        with self._locks.hold(digest):
            if path.exists():
                return digest
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{digest[:12]}-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        return digest


class MemoryStore:
    """In-memory ``BlobStore`` for tests and throwaway runs."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._locks = KeyedLocks()
        self.puts = 0

    def lock(self, key: str) -> AbstractContextManager[None]:
        return self._locks.hold(_normalize(key))

    def exists(self, digest: str) -> bool:
        return _normalize(digest) in self._blobs

    def get(self, digest: str) -> bytes | None:
        digest = _normalize(digest)
        data = self._blobs.get(digest)
        if data is not None and sha256_hex(data) != digest:
            raise IntegrityError(f"Cached blob {digest} failed integrity check", subject=digest)
        return data

    def put(self, data: bytes, *, expected: str | None = None) -> str:
        digest = sha256_hex(data)
        if expected is not None and _normalize(expected) != digest:
            raise IntegrityError(
                f"Refusing to store blob: expected sha256 {_normalize(expected)}, "
                f"got {digest}",
                subject=_normalize(expected),
            )
        with self._locks.hold(digest):
            if digest not in self._blobs:
                self._blobs[digest] = data
                self.puts += 1
        return digest

