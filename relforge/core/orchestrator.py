"""Release orchestrator — fans a tag out into one build job per matrix entry.

Lifecycle::

    Idle --tag push--> FanOut --all jobs joined--> Released | PartiallyFailed

Each job runs in its own workspace ``{work_root}/{tag}/{asset_name}/``::

    Checkout -> (Resolve || Vendor) -> Build [-> Test] -> Upload

Jobs are independent futures; a failing job records its stage and reason
in a ``JobResult`` and never cancels its siblings.  The only state shared
between jobs is the keyed blob store and the toolchain install root, both
of which serialize writes per key.
"""

from __future__ import annotations

import fnmatch
import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import TypeVar

from relforge.config import RelforgeSettings
from relforge.core.checkout import SourceCheckout
from relforge.core.command_runner import CommandRunner, SubprocessCommandRunner
from relforge.core.derivation import BuildDerivation
from relforge.core.fetcher import Fetcher, SourceFetcher
from relforge.core.release_host import (
    DirectoryReleaseHost,
    GitHubReleaseHost,
    ReleaseHost,
    upload_with_retry,
)
from relforge.core.store import BlobStore, ContentAddressedStore
from relforge.core.toolchain import ToolchainResolver
from relforge.core.vendoring import Vendorer
from relforge.errors import ProjectConfigError, RelforgeError, UploadError
from relforge.models.build import ToolchainHandle, VendoredPackageSet
from relforge.models.lock import DependencyLock
from relforge.models.pins import PinKind, PinManifest
from relforge.models.project import ProjectConfig, ReleaseSettings
from relforge.models.release import (
    JobResult,
    JobStage,
    JobStatus,
    ReleaseAsset,
    ReleaseMatrixEntry,
    ReleaseReport,
    ReleaseState,
)
from relforge.project import load_lockfile, load_manifest, load_project

logger = logging.getLogger(__name__)

T = TypeVar("T")

TAG_REF_PREFIX = "refs/tags/"


def tag_from_ref(ref: str) -> str:
    """``refs/tags/v1.2.0`` -> ``v1.2.0``; a bare tag is returned as-is."""
    return ref.removeprefix(TAG_REF_PREFIX)


def build_release_host(settings: RelforgeSettings) -> ReleaseHost:
    """GitHub when a token and repository are configured, else a local directory."""
    if settings.uses_github:
        return GitHubReleaseHost(
            settings.github_repository,
            settings.github_token,
            api_url=settings.github_api_url,
            upload_url=settings.github_upload_url,
            timeout=settings.upload_timeout_seconds,
        )
    return DirectoryReleaseHost(settings.release_dir)


def resolve_inputs(
    resolver: ToolchainResolver,
    vendorer: Vendorer,
    manifest: PinManifest,
    lock: DependencyLock,
    platform: str,
    workspace: Path,
) -> tuple[ToolchainHandle, VendoredPackageSet]:
    """Resolve the toolchain and vendor dependencies concurrently.

    Both run to completion; a resolve failure is reported ahead of a
    vendor failure.  Errors are tagged with the side that raised them
    (``resolve`` for the toolchain, ``vendor`` for dependencies) whatever
    their class.  The vendored set lands in ``{workspace}/vendor``.
    """
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="relforge-inputs") as pool:
        toolchain = pool.submit(resolver.resolve_from_manifest, manifest, platform)
        vendored = pool.submit(
            vendorer.vendor, lock, workspace / "vendor", workspace / "vendor-config.toml"
        )
    return (
        _result_at_stage(toolchain, JobStage.RESOLVE),
        _result_at_stage(vendored, JobStage.VENDOR),
    )


def _result_at_stage(future: Future[T], stage: JobStage) -> T:
    try:
        return future.result()
    except RelforgeError as exc:
        raise exc.at_stage(stage.value)


class ReleaseOrchestrator:
    """Turns a tag push into a folded ``ReleaseReport``.

    Parameters
    ----------
    settings:
        Runtime settings (work root, parallelism, upload retry policy).
    release:
        Tag pattern and matrix, normally from the project's relforge.toml.
    checkout:
        Produces each job's private copy of the tagged source.
    host:
        Where assets are uploaded.
    fetcher, blob_store, artifact_store, runner:
        Collaborators shared by every job.  Defaults are built from
        *settings*; tests substitute in-memory stores and recording runners.
    sleep:
        Used between upload retries.
    """

    def __init__(
        self,
        settings: RelforgeSettings,
        release: ReleaseSettings,
        checkout: SourceCheckout,
        host: ReleaseHost,
        *,
        fetcher: Fetcher | None = None,
        blob_store: BlobStore | None = None,
        artifact_store: BlobStore | None = None,
        runner: CommandRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._release = release
        self._checkout = checkout
        self._host = host
        self._fetcher = fetcher or SourceFetcher(timeout=settings.fetch_timeout_seconds)
        self._blob_store = blob_store or ContentAddressedStore(settings.blob_cache_dir)
        self._artifact_store = artifact_store or ContentAddressedStore(
            settings.artifact_store_path
        )
        self._runner = runner or SubprocessCommandRunner()
        self._sleep = sleep
        self._resolver = ToolchainResolver(
            self._fetcher, self._blob_store, settings.toolchain_dir
        )
        self._state = ReleaseState.IDLE
        self.last_report: ReleaseReport | None = None

    @property
    def state(self) -> ReleaseState:
        return self._state

    @property
    def matrix(self) -> list[ReleaseMatrixEntry]:
        return list(self._release.matrix)

    # ------------------------------------------------------------------
    # Trigger
    # ------------------------------------------------------------------

    def matches(self, tag: str) -> bool:
        return fnmatch.fnmatchcase(tag, self._release.tag_pattern)

    def on_tag_push(self, ref: str, only: Iterable[str] | None = None) -> ReleaseReport | None:
        """Handle a tag push event.

        Returns ``None`` and stays Idle when the tag does not match the
        configured pattern.
        """
        tag = tag_from_ref(ref)
        if not tag or not self.matches(tag):
            logger.info(
                "Ignoring ref %s: does not match tag pattern %r",
                ref, self._release.tag_pattern,
            )
            return None
        return self.run(tag, only=only)

    # ------------------------------------------------------------------
    # Fan-out and fold
    # ------------------------------------------------------------------

    def select(self, tag: str, only: Iterable[str] | None = None) -> list[ReleaseMatrixEntry]:
        """Matrix entries to run; *only* filters by asset name (raw or formatted)."""
        entries = self.matrix
        if not entries:
            raise ProjectConfigError("The release matrix is empty")
        if only is None:
            return entries
        wanted = set(only)
        selected = [e for e in entries if e.asset_name in wanted or e.asset_for(tag) in wanted]
        unknown = wanted - {e.asset_name for e in selected} - {e.asset_for(tag) for e in selected}
        if unknown:
            raise ProjectConfigError(
                f"Unknown asset name(s) for --only: {', '.join(sorted(unknown))}"
            )
        return selected

    def run(self, tag: str, only: Iterable[str] | None = None) -> ReleaseReport:
        """Run every selected matrix job for *tag* and fold the results."""
        entries = self.select(tag, only)
        self._state = ReleaseState.FAN_OUT
        logger.info("Releasing %s: %d job(s)", tag, len(entries))

        workers = max(1, min(self._settings.max_parallel_jobs, len(entries)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="relforge-job") as pool:
            futures = [pool.submit(self._run_job, tag, entry) for entry in entries]
            jobs = [future.result() for future in futures]

        report = self._fold(tag, jobs)
        self._state = report.state
        self.last_report = report
        logger.info(report.summary())
        return report

    def _fold(self, tag: str, jobs: list[JobResult]) -> ReleaseReport:
        expected = [job.asset_name for job in jobs if job.succeeded]
        try:
            listed = {asset.name: asset for asset in self._host.list_assets(tag)}
        except UploadError as exc:
            logger.error("Cannot list assets of release %s: %s", tag, exc)
            listed = {}

        assets: list[ReleaseAsset] = [listed[n] for n in expected if n in listed]
        missing = [n for n in expected if n not in listed]
        all_ok = all(job.succeeded for job in jobs) and not missing
        return ReleaseReport(
            tag=tag,
            state=ReleaseState.RELEASED if all_ok else ReleaseState.PARTIALLY_FAILED,
            jobs=jobs,
            assets=assets,
            missing_assets=missing,
        )

    # ------------------------------------------------------------------
    # One matrix job
    # ------------------------------------------------------------------

    def _run_job(self, tag: str, entry: ReleaseMatrixEntry) -> JobResult:
        started = time.monotonic()
        asset_name = entry.asset_for(tag)
        workspace = Path(self._settings.work_root) / tag / asset_name
        stage = JobStage.CHECKOUT
        attempts = 0

        def _result(status: JobStatus, **fields) -> JobResult:
            return JobResult(
                entry=entry,
                status=status,
                asset_name=asset_name,
                upload_attempts=attempts,
                duration_ms=int((time.monotonic() - started) * 1000),
                **fields,
            )

        logger.info("[%s] job started on %s", asset_name, entry.os)
        try:
            source = self._checkout.checkout(tag, workspace / "source")
            project = load_project(source)
            manifest = load_manifest(source / project.pins)
            lock = load_lockfile(source / project.lockfile)

            stage = JobStage.RESOLVE
            toolchain, vendored = self._resolve_and_vendor(
                project, manifest, lock, entry.platform, workspace
            )

            stage = JobStage.BUILD
            derivation = BuildDerivation(self._runner, self._artifact_store, project.build)
            artifact = derivation.derive(
                toolchain, vendored, source, workspace / "build",
                platform=entry.platform, artifact_name=entry.artifact_name,
            )

            stage = JobStage.UPLOAD
            _, attempts = upload_with_retry(
                self._host, tag, asset_name, artifact.path.read_bytes(),
                attempts=self._settings.upload_attempts,
                backoff_seconds=self._settings.upload_backoff_seconds,
                sleep=self._sleep,
            )
        except RelforgeError as exc:
            failed = self._failed_stage(exc, stage)
            if isinstance(exc, UploadError):
                attempts = self._settings.upload_attempts
            logger.error("[%s] failed at %s: %s", asset_name, failed.value, exc)
            return _result(JobStatus.FAILED, failed_stage=failed, error=str(exc))
        except Exception as exc:
            logger.exception("[%s] unexpected error at %s", asset_name, stage.value)
            return _result(
                JobStatus.FAILED, failed_stage=stage, error=f"{type(exc).__name__}: {exc}"
            )

        logger.info("[%s] uploaded after %d attempt(s)", asset_name, attempts)
        return _result(JobStatus.SUCCEEDED, artifact=artifact)

    def _resolve_and_vendor(
        self,
        project: ProjectConfig,
        manifest: PinManifest,
        lock: DependencyLock,
        platform: str,
        workspace: Path,
    ) -> tuple[ToolchainHandle, VendoredPackageSet]:
        vendorer = Vendorer(
            self._fetcher,
            self._blob_store,
            manifest.find_kind(PinKind.REGISTRY, platform),
            config_template=project.build.config_template,
        )
        return resolve_inputs(self._resolver, vendorer, manifest, lock, platform, workspace)

    @staticmethod
    def _failed_stage(exc: RelforgeError, step: JobStage) -> JobStage:
        # The concurrent inputs step reports whichever side failed; otherwise
        # the step is authoritative except that a test failure is its own stage.
        if step == JobStage.RESOLVE or exc.stage == JobStage.TEST.value:
            try:
                return JobStage(exc.stage)
            except ValueError:
                return step
        return step
