"""Toolchain resolution — materialize the pinned compiler, never the host's.

Given a toolchain pin, the resolver returns a ``ToolchainHandle`` whose
``bin_dir`` is the only compiler location the build derivation puts on
PATH.  Archive bytes are cached in a blob store under the pin hash and the
unpacked tree under ``{install_root}/{sha256}``; both are written under a
per-key lock so concurrent jobs resolving the same pin do not race.

Failures are raised immediately.  A missing or unreachable pin is never
retried and never substituted with a different version.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from relforge.core.archive import ArchiveError, unpack_tarball
from relforge.core.fetcher import FetchError, Fetcher
from relforge.core.hasher import sha256_hex
from relforge.core.store import BlobStore
from relforge.errors import IntegrityError, PinResolutionError
from relforge.models.build import ToolchainHandle
from relforge.models.pins import PinKind, PinManifest, PinRecord

logger = logging.getLogger(__name__)

_COMPLETE_MARKER = ".relforge-complete"


class ToolchainResolver:
    """Resolves toolchain pins into installed toolchain handles.

    Parameters
    ----------
    fetcher:
        Used on a cold cache to download the toolchain archive.
    store:
        Blob store caching archive bytes by sha256.
    install_root:
        Directory holding one unpacked toolchain per pin hash.
    """

    def __init__(self, fetcher: Fetcher, store: BlobStore, install_root: Path) -> None:
        self._fetcher = fetcher
        self._store = store
        self._install_root = Path(install_root).resolve()

    def resolve_from_manifest(
        self, manifest: PinManifest, platform: str, name: str | None = None
    ) -> ToolchainHandle:
        """Look up the toolchain pin for *platform* and resolve it."""
        if name is not None:
            pin = manifest.find(name, platform)
        else:
            pin = manifest.find_kind(PinKind.TOOLCHAIN, platform)
        if pin is None or pin.kind != PinKind.TOOLCHAIN:
            wanted = name or "any toolchain"
            raise PinResolutionError(
                f"Toolchain not found: no pin for {wanted} on platform {platform!r}"
            )
        return self.resolve(pin, platform)

    def resolve(self, pin: PinRecord, platform: str) -> ToolchainHandle:
        """Materialize *pin* and return a handle to it."""
        if pin.kind != PinKind.TOOLCHAIN or pin.sha256 is None:
            raise PinResolutionError(f"{pin.label} is not a toolchain pin")

        target = self._install_root / pin.sha256
        with self._store.lock(pin.sha256):
            if not (target / _COMPLETE_MARKER).exists():
                data = self._archive_bytes(pin, pin.sha256, platform)
                self._install(pin, data, target)
            else:
                logger.debug("Toolchain %s already installed at %s", pin.label, target)

        bin_dir = target / "bin"
        if not bin_dir.is_dir():
            raise PinResolutionError(
                f"Toolchain {pin.label} has no bin/ directory under {target}"
            )
        return ToolchainHandle(
            name=pin.name,
            version=pin.version,
            platform=platform,
            sha256=pin.sha256,
            root=target,
            bin_dir=bin_dir,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _archive_bytes(self, pin: PinRecord, sha256: str, platform: str) -> bytes:
        cached = self._store.get(sha256)
        if cached is not None:
            logger.info("Toolchain %s found in cache", pin.label)
            return cached

        url = pin.resolved_url(platform)
        logger.info("Fetching toolchain %s from %s", pin.label, url)
        try:
            data = self._fetcher.fetch(url)
        except FetchError as exc:
            if exc.not_found:
                raise PinResolutionError(
                    f"Toolchain not found: {pin.label} is not available at {url}"
                ) from exc
            raise PinResolutionError(f"Cannot fetch toolchain {pin.label}: {exc}") from exc

        actual = sha256_hex(data)
        if actual != sha256:
            raise IntegrityError(
                f"Toolchain {pin.label} hash mismatch: pinned {sha256}, fetched {actual}",
                subject=pin.label,
            )
        self._store.put(data, expected=sha256)
        return data

    def _install(self, pin: PinRecord, data: bytes, target: Path) -> None:
        staging = target.with_name(f".{target.name}.partial")
        if staging.exists():
            shutil.rmtree(staging)
        try:
            unpack_tarball(data, staging)
        except ArchiveError as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise PinResolutionError(f"Toolchain {pin.label}: {exc}") from exc

        (staging / _COMPLETE_MARKER).write_text(pin.sha256 or "", encoding="utf-8")
        if target.exists():
            shutil.rmtree(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        staging.rename(target)
        logger.info("Installed toolchain %s at %s", pin.label, target)
