"""Runtime configuration — env-driven.

Centralized settings using pydantic-settings.  Reads from a .env file and
RELFORGE_* environment variables.  Project-level build configuration lives
in relforge.toml (see ``relforge.project``); this module only covers where
the pipeline keeps its caches and how it talks to the network.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class RelforgeSettings(BaseSettings):
    """Pipeline settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export RELFORGE_LOG_LEVEL=DEBUG
        export RELFORGE_CACHE_DIR=/var/cache/relforge
        export RELFORGE_GITHUB_TOKEN=ghp_...

    Or via .env file::

        RELFORGE_UPLOAD_ATTEMPTS=6
        RELFORGE_MAX_PARALLEL_JOBS=2
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RELFORGE_",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"

    # Storage paths
    cache_dir: Path = Path(".relforge/cache")
    work_root: Path = Path(".relforge/work")
    artifact_store_path: Path = Path(".relforge/artifacts")
    release_dir: Path = Path(".relforge/releases")

    # Fetching: explicit timeout, never retried
    fetch_timeout_seconds: float = 60.0

    # Uploading: bounded retries with exponential backoff
    upload_timeout_seconds: float = 300.0
    upload_attempts: int = 4
    upload_backoff_seconds: float = 2.0

    # Fan-out
    max_parallel_jobs: int = 4

    # Release hosting. Without a token, releases go to release_dir.
    github_token: str = ""
    github_repository: str = ""  # "owner/repo"
    github_api_url: str = "https://api.github.com"
    github_upload_url: str = "https://uploads.github.com"

    @property
    def blob_cache_dir(self) -> Path:
        """Content-addressed cache for fetched toolchains and packages."""
        return self.cache_dir / "blobs"

    @property
    def toolchain_dir(self) -> Path:
        """Root under which unpacked toolchains live, one dir per pin hash."""
        return self.cache_dir / "toolchains"

    @property
    def uses_github(self) -> bool:
        """Whether uploads should go to GitHub rather than a local directory."""
        return bool(self.github_token and self.github_repository)
