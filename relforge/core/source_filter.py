"""Source filtering — decide which paths of a checkout feed the build.

``SourceFilter`` is a pure predicate over ``(relative path, entry type)``.
It never looks at the filesystem itself; walking is done separately by
``filtered_tree`` so the exact listing a build consumes can be printed and
tested.  Excluding a directory excludes everything beneath it.
"""

from __future__ import annotations

import fnmatch
import os
import shutil
from collections.abc import Iterable, Iterator
from enum import Enum
from pathlib import Path, PurePosixPath

from relforge.models.project import BuildSettings


class EntryType(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


class SourceFilter:
    """Excludes build outputs, VCS metadata and pipeline-generated paths.

    Parameters
    ----------
    output_dirs:
        Build-output directory names (e.g. ``target``).  Excluded at any
        depth, along with a same-named symlink (e.g. a ``result`` link).
    exclude:
        Extra names or glob patterns, matched against both the entry name
        and its full relative path.
    generated:
        Relative paths the pipeline writes itself (vendor dir, redirect
        config); a stale copy from a local run must not leak in.
    """

    def __init__(
        self,
        output_dirs: Iterable[str] = (),
        exclude: Iterable[str] = (),
        generated: Iterable[str] = (),
    ) -> None:
        self._output_dirs = frozenset(output_dirs)
        self._patterns = tuple(exclude)
        self._generated = frozenset(PurePosixPath(p).as_posix() for p in generated)

    @classmethod
    def from_settings(cls, build: BuildSettings) -> SourceFilter:
        return cls(
            output_dirs=build.output_dirs,
            exclude=build.exclude,
            generated=[build.vendor_dir, build.config_path],
        )

    def accepts(self, rel_path: str, entry_type: EntryType) -> bool:
        """Return ``True`` if *rel_path* belongs in the build input."""
        path = PurePosixPath(rel_path)
        name = path.name
        if path.as_posix() in self._generated:
            return False
        if name in self._output_dirs and entry_type in (EntryType.DIRECTORY, EntryType.SYMLINK):
            return False
        for pattern in self._patterns:
            if fnmatch.fnmatchcase(name, pattern) or fnmatch.fnmatchcase(path.as_posix(), pattern):
                return False
        return True


def _entry_type(path: Path) -> EntryType:
    if path.is_symlink():
        return EntryType.SYMLINK
    if path.is_dir():
        return EntryType.DIRECTORY
    return EntryType.FILE


def iter_filtered(root: Path, source_filter: SourceFilter) -> Iterator[tuple[str, EntryType]]:
    """Walk *root* top-down, pruning rejected directories, in sorted order."""
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        base = Path(dirpath)
        dirnames.sort()
        kept_dirs: list[str] = []
        for name in dirnames:
            full = base / name
            rel = full.relative_to(root).as_posix()
            kind = _entry_type(full)
            if source_filter.accepts(rel, kind):
                yield rel, kind
                if kind == EntryType.DIRECTORY:
                    kept_dirs.append(name)
        dirnames[:] = kept_dirs
        for name in sorted(filenames):
            full = base / name
            rel = full.relative_to(root).as_posix()
            kind = _entry_type(full)
            if source_filter.accepts(rel, kind):
                yield rel, kind


def filtered_tree(root: Path, source_filter: SourceFilter) -> list[str]:
    """Sorted relative paths of every entry the build will consume."""
    return sorted(rel for rel, _ in iter_filtered(root, source_filter))


def stage_source(root: Path, dest: Path, source_filter: SourceFilter) -> list[str]:
    """Copy the filtered tree of *root* into *dest* and return its listing."""
    root = Path(root)
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    listing: list[str] = []
    for rel, kind in iter_filtered(root, source_filter):
        src = root / rel
        target = dest / rel
        if kind == EntryType.DIRECTORY:
            target.mkdir(parents=True, exist_ok=True)
        elif kind == EntryType.SYMLINK:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(os.readlink(src), target)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, target)
        listing.append(rel)
    return sorted(listing)
