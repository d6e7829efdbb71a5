"""Directory walking shared by backup, replacement and cleanup."""

from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from liveupdate.constants import VOLATILE_NAMES
from liveupdate.logging import get_logger

log = get_logger("liveupdate.tree")


@dataclass(frozen=True)
class TreeEntry:
    """A source path paired with where it lands under the destination root."""

    source: Path
    destination: Path
    relative: PurePosixPath
    is_dir: bool


def is_volatile(name: str) -> bool:
    """Return True for dependency caches, scratch, backup and VCS folders."""
    return name.lower() in VOLATILE_NAMES


def is_nested(path: Path, parent: Path) -> bool:
    """Return True if ``path`` is ``parent`` or lies beneath it."""
    child = Path(os.path.normcase(os.path.abspath(path)))
    root = Path(os.path.normcase(os.path.abspath(parent)))
    return child == root or child.is_relative_to(root)


def walk_tree(
    source_root: Path,
    destination_root: Path,
    exclude: Callable[[str], bool] = is_volatile,
) -> Iterator[TreeEntry]:
    """Yield every entry under ``source_root`` mapped onto ``destination_root``.

    Directories are yielded before their contents, siblings in name order.
    Directory symlinks are reported as files and never followed. Excluded
    names and branches whose destination would nest inside their own source
    are skipped together with everything below them.
    """
    yield from _walk(Path(source_root), Path(destination_root), PurePosixPath(), exclude)


def _walk(
    source_dir: Path,
    destination_dir: Path,
    relative: PurePosixPath,
    exclude: Callable[[str], bool],
) -> Iterator[TreeEntry]:
    with os.scandir(source_dir) as scan:
        children = sorted(scan, key=lambda entry: entry.name)

    for child in children:
        if exclude(child.name):
            log.debug("tree_skip_excluded", path=str(relative / child.name))
            continue

        source = Path(child.path)
        destination = destination_dir / child.name
        child_relative = relative / child.name

        if is_nested(destination, source):
            log.warning(
                "tree_skip_self_containing",
                source=str(source),
                destination=str(destination),
            )
            continue

        if child.is_dir(follow_symlinks=False):
            yield TreeEntry(source, destination, child_relative, True)
            yield from _walk(source, destination, child_relative, exclude)
        else:
            yield TreeEntry(source, destination, child_relative, False)


def remove_tree(path: Path) -> None:
    """Delete a file or directory tree; a missing path is not an error."""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=False)
    else:
        path.unlink(missing_ok=True)
