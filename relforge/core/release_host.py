"""Release hosts — where built binaries are attached under a tag-named release.

Uploading an asset whose name already exists on the release replaces it,
so re-running the pipeline for the same tag never duplicates assets.

Two hosts are provided:

- ``DirectoryReleaseHost`` writes ``{root}/{tag}/{asset}`` with an atomic
  replace; used for local runs and tests.
- ``GitHubReleaseHost`` talks to the GitHub releases API over httpx.

``upload_with_retry`` wraps any host: ``UploadError`` is retried with a
bounded exponential backoff; every other error propagates immediately.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

import httpx

from relforge.core.hasher import sha256_file, sha256_hex
from relforge.errors import UploadError
from relforge.models.release import ReleaseAsset

logger = logging.getLogger(__name__)


@runtime_checkable
class ReleaseHost(Protocol):
    """Protocol for asset hosting backends."""

    def ensure_release(self, tag: str) -> None:
        """Create the tag-named release if it does not exist yet."""
        ...

    def upload_asset(self, tag: str, name: str, data: bytes) -> ReleaseAsset:
        """Attach *data* as *name*, replacing any same-named asset."""
        ...

    def list_assets(self, tag: str) -> list[ReleaseAsset]:
        ...


# ---------------------------------------------------------------------------
# Local directory host
# ---------------------------------------------------------------------------


class DirectoryReleaseHost:
    """Releases as directories: ``{root}/{tag}/{asset_name}``."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def ensure_release(self, tag: str) -> None:
        (self._root / tag).mkdir(parents=True, exist_ok=True)

    def upload_asset(self, tag: str, name: str, data: bytes) -> ReleaseAsset:
        release_dir = self._root / tag
        release_dir.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp = tempfile.mkstemp(dir=release_dir, prefix=f".{name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp, release_dir / name)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise UploadError(f"Cannot write asset {name} for {tag}: {exc}") from exc
        logger.info("Uploaded %s to %s", name, release_dir)
        return ReleaseAsset(name=name, sha256=sha256_hex(data), size_bytes=len(data))

    def list_assets(self, tag: str) -> list[ReleaseAsset]:
        release_dir = self._root / tag
        if not release_dir.is_dir():
            return []
        return [
            ReleaseAsset(name=p.name, sha256=sha256_file(p), size_bytes=p.stat().st_size)
            for p in sorted(release_dir.iterdir())
            if p.is_file() and not p.name.startswith(".")
        ]


# ---------------------------------------------------------------------------
# GitHub host
# ---------------------------------------------------------------------------


class GitHubReleaseHost:
    """GitHub releases over the REST API.

    Parameters
    ----------
    repository:
        ``owner/repo``.
    token:
        Token with permission to write releases.
    api_url, upload_url:
        API and upload base URLs (overridable for GitHub Enterprise).
    timeout:
        Per-request timeout in seconds.
    client:
        Optional pre-built ``httpx.Client`` (tests pass one with a
        ``MockTransport``).
    """

    def __init__(
        self,
        repository: str,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        upload_url: str = "https://uploads.github.com",
        timeout: float = 300.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._repository = repository
        self._api_url = api_url.rstrip("/")
        self._upload_url = upload_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        self._release_ids: dict[str, int] = {}

    def ensure_release(self, tag: str) -> None:
        self._release_id(tag)

    def upload_asset(self, tag: str, name: str, data: bytes) -> ReleaseAsset:
        release_id = self._release_id(tag)
        for asset in self._assets_json(release_id):
            if asset.get("name") == name:
                logger.info("Replacing existing asset %s on %s", name, tag)
                self._request(
                    "DELETE",
                    f"{self._api_url}/repos/{self._repository}/releases/assets/{asset['id']}",
                    expect=(204, 404),
                )

        self._request(
            "POST",
            f"{self._upload_url}/repos/{self._repository}/releases/{release_id}/assets",
            params={"name": name},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
            expect=(201,),
        )
        logger.info("Uploaded %s (%d bytes) to release %s", name, len(data), tag)
        return ReleaseAsset(name=name, sha256=sha256_hex(data), size_bytes=len(data))

    def list_assets(self, tag: str) -> list[ReleaseAsset]:
        release_id = self._release_id(tag)
        return [
            ReleaseAsset(
                name=asset["name"],
                sha256=str(asset.get("digest") or "").removeprefix("sha256:"),
                size_bytes=int(asset.get("size", 0)),
            )
            for asset in self._assets_json(release_id)
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _release_id(self, tag: str) -> int:
        if tag in self._release_ids:
            return self._release_ids[tag]

        base = f"{self._api_url}/repos/{self._repository}/releases"
        response = self._request("GET", f"{base}/tags/{tag}", expect=(200, 404))
        if response.status_code == 404:
            logger.info("Creating release %s in %s", tag, self._repository)
            response = self._request(
                "POST", base, json={"tag_name": tag, "name": tag}, expect=(201,)
            )
        release_id = int(response.json()["id"])
        self._release_ids[tag] = release_id
        return release_id

    def _assets_json(self, release_id: int) -> list[dict]:
        response = self._request(
            "GET",
            f"{self._api_url}/repos/{self._repository}/releases/{release_id}/assets",
            params={"per_page": 100},
            expect=(200,),
        )
        return list(response.json())

    def _request(
        self,
        method: str,
        url: str,
        *,
        expect: tuple[int, ...],
        headers: dict[str, str] | None = None,
        **kwargs,
    ) -> httpx.Response:
        try:
            response = self._client.request(
                method, url, headers={**self._headers, **(headers or {})}, **kwargs
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"{method} {url} failed: {exc}") from exc
        if response.status_code not in expect:
            raise UploadError(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        return response


# ---------------------------------------------------------------------------
# Retry wrapper
# ---------------------------------------------------------------------------


def upload_with_retry(
    host: ReleaseHost,
    tag: str,
    name: str,
    data: bytes,
    *,
    attempts: int = 4,
    backoff_seconds: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[ReleaseAsset, int]:
    """Upload with bounded exponential backoff.

    Returns the uploaded asset and the number of attempts it took.  Only
    ``UploadError`` is retried; after *attempts* failures the last one is
    re-raised.
    """
    attempts = max(1, attempts)
    delay = backoff_seconds
    for attempt in range(1, attempts + 1):
        try:
            host.ensure_release(tag)
            return host.upload_asset(tag, name, data), attempt
        except UploadError as exc:
            if attempt == attempts:
                raise UploadError(
                    f"Upload of {name} failed after {attempts} attempts: {exc}"
                ) from exc
            logger.warning(
                "Upload of %s failed, retrying in %.1f seconds (attempt %d/%d): %s",
                name, delay, attempt, attempts, exc,
            )
            sleep(delay)
            delay *= 2
    raise AssertionError("unreachable")
