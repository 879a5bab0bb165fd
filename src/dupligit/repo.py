"""MirrorRepo: the destination working copy that mirror commits are written to."""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from pathlib import Path

from dulwich.index import build_index_from_tree
from dulwich.objects import Commit
from dulwich.repo import Repo

from .config import DEFAULT_BRANCH
from .exceptions import CommitCreationError, ConfigError
from .tree import SnapshotEntry, write_tree

BOT_NAME = "dupligit-bot"
BOT_EMAIL = "dupligit@example.com"

_USER = (b"user",)


def _identity(name: str, email: str) -> bytes:
    return f"{name} <{email}>".encode("utf-8")


class MirrorRepo:
    """A non-bare git repository owned by one mirror run.

    Holds the replayed branch, its working copy and the ``origin`` remote.
    """

    def __init__(self, repo: Repo, branch: str = DEFAULT_BRANCH):
        self._repo = repo
        self.branch = branch

    def __repr__(self) -> str:
        return f"MirrorRepo({self.path!r}, branch={self.branch!r})"

    @classmethod
    def create(
        cls,
        path: str | os.PathLike[str],
        *,
        branch: str = DEFAULT_BRANCH,
        remote_url: str | None = None,
        name: str = BOT_NAME,
        email: str = BOT_EMAIL,
    ) -> MirrorRepo:
        """Initialize a clean working copy at *path*.

        Args:
            path: Directory for the working copy.  Must be absent or empty.
            branch: Branch HEAD points at; commits are appended to it.
            remote_url: URL recorded as the ``origin`` remote.  Pass the
                URL without credentials; authenticated URLs are only used
                at push time.
            name: Committer name used when the repo has no ``user.name``.
            email: Committer email used when the repo has no ``user.email``.

        Raises:
            ConfigError: *path* exists and is not an empty directory, or it
                cannot be created.
        """
        p = Path(path)
        try:
            if p.exists():
                if not p.is_dir() or any(p.iterdir()):
                    raise ConfigError(f"Working directory is not empty: {p}")
            else:
                p.mkdir(parents=True)
            repo = Repo.init(str(p))
        except OSError as exc:
            raise ConfigError(f"Cannot create working directory {p}: {exc}") from exc

        store = cls(repo, branch)
        store._repo.refs.set_symbolic_ref(b"HEAD", store.ref)
        store.ensure_identity(name, email)
        if remote_url:
            store.add_remote("origin", remote_url)
        return store

    @classmethod
    def open(cls, path: str | os.PathLike[str], *, branch: str = DEFAULT_BRANCH) -> MirrorRepo:
        return cls(Repo(os.fspath(path)), branch)

    def close(self) -> None:
        self._repo.close()

    def __enter__(self) -> MirrorRepo:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def path(self) -> str:
        return self._repo.path

    @property
    def ref(self) -> bytes:
        return f"refs/heads/{self.branch}".encode("utf-8")

    @property
    def object_store(self):
        return self._repo.object_store

    @property
    def dulwich_repo(self) -> Repo:
        return self._repo

    def head(self) -> bytes | None:
        """Tip of the mirror branch, or None before the first commit."""
        try:
            return self._repo.refs[self.ref]
        except KeyError:
            return None

    def head_tree(self) -> bytes | None:
        head = self.head()
        if head is None:
            return None
        return self._repo[head].tree

    # ------------------------------------------------------------------
    # Local config
    # ------------------------------------------------------------------

    def get_identity(self) -> tuple[str, str] | None:
        """``(user.name, user.email)`` from the repo's local config."""
        config = self._repo.get_config()
        try:
            name = config.get(_USER, b"name").decode("utf-8")
            email = config.get(_USER, b"email").decode("utf-8")
        except KeyError:
            return None
        return name, email

    def ensure_identity(self, name: str = BOT_NAME, email: str = BOT_EMAIL) -> tuple[str, str]:
        """Set the local identity unless one is already configured."""
        existing = self.get_identity()
        if existing is not None:
            return existing
        config = self._repo.get_config()
        config.set(_USER, b"name", name.encode("utf-8"))
        config.set(_USER, b"email", email.encode("utf-8"))
        config.write_to_path()
        return name, email

    def add_remote(self, name: str, url: str) -> None:
        config = self._repo.get_config()
        section = (b"remote", name.encode("utf-8"))
        config.set(section, b"url", url.encode("utf-8"))
        config.set(section, b"fetch", f"+refs/heads/*:refs/remotes/{name}/*".encode("utf-8"))
        config.write_to_path()

    def remote_url(self, name: str = "origin") -> str | None:
        try:
            return self._repo.get_config().get((b"remote", name.encode("utf-8")), b"url").decode("utf-8")
        except KeyError:
            return None

    # ------------------------------------------------------------------
    # Working copy
    # ------------------------------------------------------------------

    def stage(self, files: Mapping[str, SnapshotEntry]) -> bytes:
        """Write *files* into the object store and return the tree SHA."""
        return write_tree(self._repo.object_store, files)

    def clear_worktree(self) -> None:
        """Delete everything in the working directory except ``.git``."""
        for entry in os.scandir(self.path):
            if entry.name == ".git":
                continue
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            else:
                os.unlink(entry.path)

    def checkout(self, tree_id: bytes) -> None:
        """Replace the working copy and index with exactly *tree_id*.

        Everything is deleted first, so paths missing from the tree do
        not survive from the previous commit.

        Raises:
            CommitCreationError: The working copy could not be rewritten.
        """
        try:
            self.clear_worktree()
            build_index_from_tree(
                self.path, self._repo.index_path(), self._repo.object_store, tree_id,
            )
        except OSError as exc:
            raise CommitCreationError(f"Cannot update working copy {self.path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def commit(
        self,
        tree_id: bytes,
        message: str,
        *,
        author_name: str,
        author_email: str,
        author_time: int,
        author_timezone: int = 0,
        commit_time: int | None = None,
        commit_timezone: int | None = None,
    ) -> bytes:
        """Append a commit of *tree_id* to the mirror branch.

        The committer is the repo's local identity.  Committer time and
        timezone default to the author's.  A tree equal to the parent's
        still produces a (empty) commit.

        Raises:
            CommitCreationError: The commit or the branch update could not
                be written.
        """
        committer = self.get_identity() or (BOT_NAME, BOT_EMAIL)
        parent = self.head()

        c = Commit()
        c.tree = tree_id
        c.parents = [parent] if parent is not None else []
        c.author = _identity(author_name, author_email)
        c.committer = _identity(*committer)
        c.author_time = author_time
        c.author_timezone = author_timezone
        c.commit_time = author_time if commit_time is None else commit_time
        c.commit_timezone = author_timezone if commit_timezone is None else commit_timezone
        if not message.endswith("\n"):
            message += "\n"
        c.message = message.encode("utf-8", errors="surrogateescape")
        c.encoding = b"UTF-8"

        summary = message.splitlines()[0] if message.strip() else ""
        reflog_msg = f"commit: {summary}".encode("utf-8", errors="replace")
        try:
            self._repo.object_store.add_object(c)
            if parent is None:
                ok = self._repo.refs.add_if_new(
                    self.ref, c.id, committer=c.committer, message=reflog_msg,
                )
            else:
                ok = self._repo.refs.set_if_equals(
                    self.ref, parent, c.id, committer=c.committer, message=reflog_msg,
                )
        except (OSError, ValueError) as exc:
            raise CommitCreationError(f"Failed to create commit on {self.branch}: {exc}") from exc
        if not ok:
            raise CommitCreationError(
                f"Branch {self.branch} moved while committing; refusing to continue"
            )
        return c.id

    def set_branch(self, sha: bytes) -> None:
        """Point the mirror branch at *sha* (used to build on a fetched tip)."""
        self._repo.refs[self.ref] = sha
