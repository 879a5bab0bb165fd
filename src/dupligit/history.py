"""Read-only access to the source repository's first-parent history."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterator, NamedTuple

from dulwich.errors import NotGitRepository
from dulwich.objects import Blob, Commit
from dulwich.repo import Repo

from .exceptions import ConfigError, SourceReadError

logger = logging.getLogger(__name__)


class TreeFile(NamedTuple):
    """A non-directory entry of a commit's tree."""

    path: str
    sha: bytes
    mode: int


@dataclass(frozen=True)
class SourceCommit:
    """Immutable view of one source commit."""
    id: str
    tree: bytes
    author_name: str
    author_email: str
    author_time: int
    author_timezone: int
    message: str

    @property
    def author_date(self) -> str:
        """Author timestamp as ISO-8601 with the original UTC offset."""
        tz = timezone(timedelta(seconds=self.author_timezone))
        return datetime.fromtimestamp(self.author_time, tz).isoformat()

    @property
    def short_id(self) -> str:
        return self.id[:7]


def _split_identity(ident: bytes) -> tuple[str, str]:
    """Split ``b"Name <email>"`` into ``("Name", "email")``."""
    text = ident.decode("utf-8", errors="replace")
    name, _, email_part = text.partition(" <")
    return name, email_part.rstrip(">")


def _decode_message(commit: Commit) -> str:
    encoding = (commit.encoding or b"utf-8").decode("ascii", errors="replace")
    try:
        return commit.message.decode(encoding, errors="replace")
    except LookupError:
        return commit.message.decode("utf-8", errors="replace")


class SourceHistory:
    """The source repository, read through dulwich."""

    def __init__(self, repo: Repo):
        self._repo = repo

    def __repr__(self) -> str:
        return f"SourceHistory({self._repo.path!r})"

    @classmethod
    def open(cls, path: str | os.PathLike[str] = ".") -> SourceHistory:
        """Open the repository containing *path*.

        Raises:
            ConfigError: *path* is not inside a git repository.
        """
        try:
            return cls(Repo.discover(os.fspath(path)))
        except NotGitRepository as exc:
            raise ConfigError(f"Not a git repository: {path}") from exc

    def close(self) -> None:
        self._repo.close()

    def __enter__(self) -> SourceHistory:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def path(self) -> str:
        return self._repo.path

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def head(self) -> bytes:
        """SHA of HEAD.

        Raises:
            ConfigError: The repository has no commits yet.
        """
        try:
            return self._repo.head()
        except KeyError as exc:
            raise ConfigError(f"Source repository has no commits: {self.path}") from exc

    def get_commit(self, sha: bytes | str) -> SourceCommit:
        if isinstance(sha, str):
            sha = sha.encode("ascii")
        obj = self._repo[sha]
        if not isinstance(obj, Commit):
            raise ValueError(f"{sha.decode()} is not a commit")
        name, email = _split_identity(obj.author)
        return SourceCommit(
            id=obj.id.decode("ascii"),
            tree=obj.tree,
            author_name=name,
            author_email=email,
            author_time=obj.author_time,
            author_timezone=obj.author_timezone,
            message=_decode_message(obj),
        )

    def first_parent_commits(self, head: bytes | None = None) -> list[SourceCommit]:
        """Return the first-parent chain ending at *head*, oldest first.

        Side branches brought in by merges are not visited.  In a shallow
        clone the walk stops at the first missing parent.
        """
        sha = head if head is not None else self.head()
        chain: list[SourceCommit] = []
        while True:
            commit = self.get_commit(sha)
            chain.append(commit)
            parents = self._repo[sha].parents
            if not parents:
                break
            sha = parents[0]
            if sha not in self._repo.object_store:
                logger.warning(
                    "history truncated at %s: parent %s is missing",
                    commit.short_id, sha.decode()[:7],
                )
                break
        chain.reverse()
        return chain

    # ------------------------------------------------------------------
    # Trees and blobs
    # ------------------------------------------------------------------

    def iter_files(self, commit: SourceCommit) -> Iterator[TreeFile]:
        """Yield every non-directory entry of *commit*'s tree, depth first."""
        yield from self._walk(commit, commit.tree, "")

    def _walk(self, commit: SourceCommit, tree_id: bytes, prefix: str) -> Iterator[TreeFile]:
        try:
            tree = self._repo.object_store[tree_id]
        except KeyError:
            logger.warning(
                "skipping unreadable directory %r at %s", prefix or "/", commit.short_id,
            )
            return
        for entry in tree.iteritems():
            name = entry.path.decode("utf-8", errors="surrogateescape")
            path = f"{prefix}/{name}" if prefix else name
            if stat.S_ISDIR(entry.mode):
                yield from self._walk(commit, entry.sha, path)
            else:
                yield TreeFile(path, entry.sha, entry.mode)

    def read_blob(self, commit: SourceCommit, entry: TreeFile) -> bytes:
        """Raw bytes of *entry* as of *commit*.

        Raises:
            SourceReadError: The blob is missing or is not a blob (for
                example a submodule commit pointer).
        """
        try:
            obj = self._repo.object_store[entry.sha]
        except KeyError:
            raise SourceReadError(commit.id, entry.path, "object not found")
        if not isinstance(obj, Blob):
            raise SourceReadError(commit.id, entry.path, f"not a blob ({obj.type_name.decode()})")
        return obj.data
