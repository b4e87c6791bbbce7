"""Unpacking of fetched tarballs (toolchain distributions, registry packages)."""

from __future__ import annotations

import io
import shutil
import tarfile
from pathlib import Path


class ArchiveError(RuntimeError):
    """Raised when fetched bytes are not a readable tar archive."""


def unpack_tarball(data: bytes, dest: Path, *, strip_single_root: bool = True) -> Path:
    """Unpack *data* (tar, optionally gz/bz2/xz compressed) into *dest*.

    Members are extracted with the ``data`` filter, which rejects absolute
    paths, ``..`` traversal and device files.  When the archive holds
    exactly one top-level directory and *strip_single_root* is set, that
    directory's contents are moved up into *dest*.

    Returns *dest*.
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            tar.extractall(path=dest, filter="data")
    except (tarfile.TarError, EOFError) as exc:
        raise ArchiveError(f"Not a readable tar archive: {exc}") from exc

    if strip_single_root:
        children = list(dest.iterdir())
        if len(children) == 1 and children[0].is_dir() and not children[0].is_symlink():
            root = children[0]
            staging = dest.with_name(f".{dest.name}.strip")
            root.rename(staging)
            dest.rmdir()
            staging.rename(dest)
    return dest


def reset_dir(path: Path) -> Path:
    """Remove *path* if present and recreate it empty."""
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path
