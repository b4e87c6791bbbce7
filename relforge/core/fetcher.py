"""The single fetch boundary for pinned content.

Every byte the pipeline pulls from outside the source tree (toolchain
archives, registry packages, pin refreshes) goes through ``SourceFetcher``.
Fetches carry an explicit timeout and are never retried: a pinned URL that
stops answering must fail the build loudly.

Supported URL schemes: ``http``, ``https`` (via httpx) and ``file`` (or a
bare filesystem path) for local mirrors.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

import httpx

logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """Raised when a URL cannot be fetched.

    ``not_found`` distinguishes "the upstream does not have this" (HTTP 404
    or a missing file) from transport failures.
    """

    def __init__(self, url: str, reason: str, *, not_found: bool = False) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
        self.not_found = not_found


@runtime_checkable
class Fetcher(Protocol):
    """Anything that turns a URL into bytes."""

    def fetch(self, url: str) -> bytes:
        ...


class SourceFetcher:
    """Fetch URLs over HTTP(S) or from the local filesystem.

    Parameters
    ----------
    timeout:
        Seconds allowed for each request (connect and read).
    client:
        Optional pre-built ``httpx.Client``; tests pass one with a
        ``MockTransport``.
    """

    def __init__(self, timeout: float = 60.0, client: httpx.Client | None = None) -> None:
        self._timeout = timeout
        self._client = client
        self.requests: list[str] = []

    def fetch(self, url: str) -> bytes:
        self.requests.append(url)
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            return self._fetch_http(url)
        if parsed.scheme == "file":
            return self._fetch_file(url, Path(unquote(parsed.path)))
        if parsed.scheme == "":
            return self._fetch_file(url, Path(url))
        raise FetchError(url, f"unsupported URL scheme {parsed.scheme!r}")

    def _fetch_file(self, url: str, path: Path) -> bytes:
        logger.debug("Reading %s", path)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise FetchError(url, "no such file", not_found=True) from None
        except OSError as exc:
            raise FetchError(url, str(exc)) from exc

    def _fetch_http(self, url: str) -> bytes:
        logger.debug("GET %s (timeout=%.0fs)", url, self._timeout)
        try:
            if self._client is not None:
                response = self._client.get(url, timeout=self._timeout, follow_redirects=True)
            else:
                with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
                    response = client.get(url)
        except httpx.HTTPError as exc:
            raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code == 404:
            raise FetchError(url, "HTTP 404", not_found=True)
        if response.is_error:
            raise FetchError(url, f"HTTP {response.status_code}")
        return response.content
