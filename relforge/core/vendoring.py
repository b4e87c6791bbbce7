"""Dependency vendoring — turn the lockfile into an offline package mirror.

For each vendorable lock entry the package is taken from the blob store by
checksum or fetched from the pinned registry, verified against the lock
checksum, and unpacked into ``{dest}/{name}-{version}/``.  A fetcher-redirect
config then points the build tool at that directory with network access
disabled, so any drift in the dependency graph fails the build instead of
being papered over by an implicit download.

Failure classes:
- MissingDependencyError: the lock graph is not closed, or the upstream has
  no package for an entry.  Raised before anything is compiled.
- IntegrityError: a package's bytes differ from the lock checksum, or the
  vendored directory is not in one-to-one correspondence with the lock.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from relforge.core.archive import ArchiveError, reset_dir, unpack_tarball
from relforge.core.fetcher import FetchError, Fetcher
from relforge.core.hasher import sha256_hex
from relforge.core.store import BlobStore
from relforge.errors import IntegrityError, MissingDependencyError, PinResolutionError
from relforge.models.build import VendoredPackageSet
from relforge.models.lock import DependencyLock, DependencyLockEntry
from relforge.models.pins import PinKind, PinRecord
from relforge.models.project import DEFAULT_CARGO_CONFIG_TEMPLATE

logger = logging.getLogger(__name__)

CHECKSUM_FILE = ".cargo-checksum.json"


def check_closure(lock: DependencyLock) -> None:
    """Ensure every dependency reference resolves to exactly one entry."""
    for entry in lock.entries:
        for reference in entry.dependencies:
            if lock.resolve_reference(reference) is None:
                raise MissingDependencyError(
                    f"Lock entry {entry.label} depends on {reference!r}, "
                    "which is not in the lockfile",
                    entry=entry.label,
                )


def render_redirect_config(vendor_dir: Path, template: str = DEFAULT_CARGO_CONFIG_TEMPLATE) -> str:
    """Render the fetcher-redirect config for *vendor_dir*."""
    return template.format(vendor_dir=Path(vendor_dir).as_posix())


class Vendorer:
    """Builds a ``VendoredPackageSet`` from a ``DependencyLock``.

    Parameters
    ----------
    fetcher:
        Used on a cache miss to download packages from the registry.
    store:
        Blob store caching package bytes by checksum.
    registry:
        Registry pin whose URL template takes ``{name}`` and ``{version}``.
        May be ``None`` when the lock has no registry entries.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        store: BlobStore,
        registry: PinRecord | None,
        *,
        config_template: str = DEFAULT_CARGO_CONFIG_TEMPLATE,
    ) -> None:
        if registry is not None and registry.kind != PinKind.REGISTRY:
            raise PinResolutionError(f"{registry.label} is not a registry pin")
        self._fetcher = fetcher
        self._store = store
        self._registry = registry
        self._config_template = config_template

    def vendor(
        self,
        lock: DependencyLock,
        dest: Path,
        config_path: Path,
    ) -> VendoredPackageSet:
        """Vendor every entry of *lock* into *dest* and write *config_path*.

        *dest* is recreated from scratch so packages from a previous lock
        never survive into this set.
        """
        check_closure(lock)
        entries = lock.vendorable
        for entry in entries:
            self._check_entry(entry)

        # Fetch and verify everything before touching the destination.
        payloads = {entry.dir_name: self._package_bytes(entry) for entry in entries}

        dest = reset_dir(Path(dest).resolve())
        packages: dict[str, Path] = {}
        for entry in entries:
            package_dir = dest / entry.dir_name
            try:
                unpack_tarball(payloads[entry.dir_name], package_dir)
            except ArchiveError as exc:
                raise IntegrityError(
                    f"Package {entry.label} is not a valid archive: {exc}",
                    subject=entry.label,
                ) from exc
            (package_dir / CHECKSUM_FILE).write_text(
                json.dumps({"files": {}, "package": entry.checksum}, sort_keys=True),
                encoding="utf-8",
            )
            packages[entry.dir_name] = package_dir

        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(
            render_redirect_config(dest, self._config_template), encoding="utf-8"
        )

        vendored = VendoredPackageSet(
            root=dest,
            config_path=config_path,
            packages=packages,
            lock_hash=lock.content_hash,
        )
        verify_vendored(vendored, lock)
        logger.info("Vendored %d packages into %s", len(packages), dest)
        return vendored

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_entry(self, entry: DependencyLockEntry) -> None:
        if not entry.is_registry:
            raise MissingDependencyError(
                f"Lock entry {entry.label} comes from unsupported source "
                f"{entry.source!r}; only registry packages can be vendored",
                entry=entry.label,
            )
        if not entry.checksum:
            raise IntegrityError(
                f"Lock entry {entry.label} has no checksum", subject=entry.label
            )
        if self._registry is None:
            raise PinResolutionError(
                f"Lock entry {entry.label} needs a registry, but no registry pin is configured"
            )

    def _package_bytes(self, entry: DependencyLockEntry) -> bytes:
        checksum = entry.checksum or ""
        with self._store.lock(checksum):
            cached = self._store.get(checksum)
            if cached is not None:
                logger.debug("Package %s found in cache", entry.label)
                return cached

            registry = self._registry
            if registry is None:
                raise PinResolutionError(f"No registry pin to fetch {entry.label} from")
            url = registry.resolved_url(name=entry.name, version=entry.version)
            logger.info("Fetching package %s from %s", entry.label, url)
            try:
                data = self._fetcher.fetch(url)
            except FetchError as exc:
                if exc.not_found:
                    raise MissingDependencyError(
                        f"No upstream package for lock entry {entry.label} at {url}",
                        entry=entry.label,
                    ) from exc
                raise PinResolutionError(
                    f"Cannot fetch package {entry.label}: {exc}"
                ) from exc

            actual = sha256_hex(data)
            if actual != checksum:
                raise IntegrityError(
                    f"Package {entry.label} hash mismatch: lock has {checksum}, "
                    f"fetched {actual}",
                    subject=entry.label,
                )
            self._store.put(data, expected=checksum)
            return data


def verify_vendored(vendored: VendoredPackageSet, lock: DependencyLock) -> None:
    """Check the one-to-one mapping between lock entries and vendored packages.

    Every vendorable entry must have its directory with a matching checksum
    record, and the vendor root must hold nothing else.
    """
    expected = {entry.dir_name: entry for entry in lock.vendorable}
    present = {
        p.name for p in vendored.root.iterdir() if not p.name.startswith(".")
    } if vendored.root.exists() else set()

    missing = sorted(set(expected) - present)
    extra = sorted(present - set(expected))
    if missing:
        raise IntegrityError(
            f"Vendored set is missing packages: {', '.join(missing)}",
            subject=missing[0],
        )
    if extra:
        raise IntegrityError(
            f"Vendored set has packages not in the lockfile: {', '.join(extra)}",
            subject=extra[0],
        )

    for dir_name, entry in expected.items():
        record_path = vendored.root / dir_name / CHECKSUM_FILE
        try:
            recorded = json.loads(record_path.read_text(encoding="utf-8")).get("package")
        except (OSError, json.JSONDecodeError):
            recorded = None
        if recorded != entry.checksum:
            raise IntegrityError(
                f"Vendored package {entry.label} does not match the lock checksum",
                subject=entry.label,
            )
