"""Sanitized tree snapshots: build one per source commit and stage it.

A :class:`StagedTree` is the full set of files one mirror commit should
contain.  It is rebuilt from scratch for every source commit and written
into the destination object store with :func:`write_tree`.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, NamedTuple, Sequence

from dulwich.objects import Blob, Tree

from ._exclude import ExcludeFilter
from .exceptions import SourceReadError
from .sanitize import CompiledRule, sanitize_bytes

if TYPE_CHECKING:
    from dulwich.object_store import BaseObjectStore

    from .history import SourceCommit, SourceHistory

logger = logging.getLogger(__name__)

GIT_FILEMODE_TREE = 0o040000
GIT_FILEMODE_BLOB = 0o100644
GIT_FILEMODE_BLOB_EXECUTABLE = 0o100755
GIT_FILEMODE_LINK = 0o120000


class SnapshotEntry(NamedTuple):
    """Sanitized content and git filemode of one staged file."""

    data: bytes
    mode: int = GIT_FILEMODE_BLOB


class StagedTree(Mapping):
    """Read-only mapping of repo-relative path to :class:`SnapshotEntry`."""

    def __init__(self, entries: dict[str, SnapshotEntry] | None = None,
                 skipped: Sequence[str] = ()):
        self._entries = dict(entries or {})
        self.skipped: list[str] = list(skipped)

    def __getitem__(self, path: str) -> SnapshotEntry:
        return self._entries[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"StagedTree({len(self)} files, {len(self.skipped)} skipped)"


def _normalize_mode(mode: int) -> int:
    """Collapse source filemodes to the three blob modes git writes."""
    if mode == GIT_FILEMODE_LINK:
        return GIT_FILEMODE_LINK
    if mode & 0o111:
        return GIT_FILEMODE_BLOB_EXECUTABLE
    return GIT_FILEMODE_BLOB


def build_snapshot(
    history: SourceHistory,
    commit: SourceCommit,
    *,
    exclude: ExcludeFilter,
    rules: Sequence[CompiledRule],
) -> StagedTree:
    """Reconstruct the sanitized file set of *commit*.

    Excluded paths are left out.  A file whose content cannot be read is
    logged and left out of this commit only; it is not retried.
    """
    entries: dict[str, SnapshotEntry] = {}
    skipped: list[str] = []
    for f in history.iter_files(commit):
        if exclude.is_excluded(f.path):
            logger.debug("ignore: %s", f.path)
            continue
        try:
            data = history.read_blob(commit, f)
        except SourceReadError as exc:
            logger.warning("%s; skipping", exc)
            skipped.append(f.path)
            continue
        entries[f.path] = SnapshotEntry(sanitize_bytes(data, rules), _normalize_mode(f.mode))
    return StagedTree(entries, skipped)


def write_tree(object_store: BaseObjectStore, files: Mapping[str, SnapshotEntry]) -> bytes:
    """Write blobs and nested trees for *files*; return the root tree SHA.

    An empty mapping produces the empty tree.
    """
    leaf: dict[str, SnapshotEntry] = {}
    sub: dict[str, dict[str, SnapshotEntry]] = defaultdict(dict)
    for path, entry in files.items():
        parts = path.split("/", 1)
        if len(parts) == 1:
            leaf[parts[0]] = entry
        else:
            sub[parts[0]][parts[1]] = entry

    tree = Tree()
    for name, entry in leaf.items():
        blob = Blob.from_string(entry.data)
        object_store.add_object(blob)
        tree.add(name.encode("utf-8", errors="surrogateescape"), entry.mode, blob.id)
    for name, children in sub.items():
        tree.add(
            name.encode("utf-8", errors="surrogateescape"),
            GIT_FILEMODE_TREE,
            write_tree(object_store, children),
        )
    object_store.add_object(tree)
    return tree.id
