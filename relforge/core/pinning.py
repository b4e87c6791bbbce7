"""Source pinning — records pins and detects drift against them.

Pins are created or updated only by an explicit pinning action
(``SourcePinner.pin``); builds read them and never write them.  Drift
checking re-fetches every hashed pin and compares the bytes against the
recorded hash.
"""

from __future__ import annotations

import logging

from relforge.core.fetcher import FetchError, Fetcher
from relforge.core.hasher import sha256_hex
from relforge.errors import PinResolutionError
from relforge.models.pins import PinKind, PinManifest, PinRecord

logger = logging.getLogger(__name__)


class SourcePinner:
    """Creates pin records and checks existing ones for drift.

    Parameters
    ----------
    fetcher:
        Used to download the content being pinned or re-verified.
    """

    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher

    def pin(
        self,
        manifest: PinManifest,
        *,
        name: str,
        url: str,
        kind: PinKind,
        version: str,
        platform: str | None = None,
        rev: str | None = None,
    ) -> PinManifest:
        """Fetch *url*, hash it, and return *manifest* with the new record.

        Registry pins are URL templates and are recorded without a hash.
        """
        sha256: str | None = None
        if kind != PinKind.REGISTRY:
            concrete = url.format(platform=platform or "")
            try:
                data = self._fetcher.fetch(concrete)
            except FetchError as exc:
                raise PinResolutionError(f"Cannot pin {name}: {exc}") from exc
            sha256 = sha256_hex(data)

        record = PinRecord(
            name=name,
            kind=kind,
            version=version,
            url=url,
            sha256=sha256,
            rev=rev,
            platform=platform,
        )
        logger.info("Pinned %s -> %s", record.label, sha256 or "(registry template)")
        return manifest.with_pin(record)

    def check_drift(
        self,
        manifest: PinManifest,
        *,
        strict: bool = True,
    ) -> list[str]:
        """Re-fetch every hashed pin and compare against the recorded hash.

        Returns a list of drift descriptions.  Empty list means no drift.
        Raises PinResolutionError if strict=True and drift is detected.
        """
        drifts: list[str] = []
        for record in manifest.pins:
            if record.sha256 is None:
                continue
            url = record.resolved_url()
            try:
                current = sha256_hex(self._fetcher.fetch(url))
            except FetchError as exc:
                drifts.append(f"{record.label}: unreachable ({exc.reason})")
                continue
            if current != record.sha256:
                drifts.append(
                    f"{record.label}: recorded={record.sha256}, current={current}"
                )

        if strict and drifts:
            raise PinResolutionError(f"Pin drift detected: {'; '.join(drifts)}")

        return drifts
