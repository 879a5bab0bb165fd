"""Shared fixtures for dupligit tests."""

import pytest
from click.testing import CliRunner
from dulwich.index import commit_tree
from dulwich.objects import Blob, Commit
from dulwich.repo import Repo

BASE_TIME = 1_700_000_000


class SourceBuilder:
    """Builds a source repository commit by commit with dulwich objects.

    ``files`` holds the current tree as ``{path: (data, mode)}``; each
    :meth:`commit` applies writes/deletes to it and commits the full tree
    on HEAD.
    """

    def __init__(self, path):
        self.path = str(path)
        self.repo = Repo.init(self.path, mkdir=True)
        self.files = {}
        self._tick = 0

    def make_commit(self, files, message, parents, *,
                    author="Alice <alice@example.com>", when=None, tz=0):
        blobs = []
        for path, (data, mode) in sorted(files.items()):
            blob = Blob.from_string(data)
            self.repo.object_store.add_object(blob)
            blobs.append((path.encode(), blob.id, mode))
        if when is None:
            self._tick += 60
            when = BASE_TIME + self._tick
        c = Commit()
        c.tree = commit_tree(self.repo.object_store, blobs)
        c.parents = list(parents)
        c.author = c.committer = author.encode()
        c.author_time = c.commit_time = when
        c.author_timezone = c.commit_timezone = tz
        c.message = message.encode()
        self.repo.object_store.add_object(c)
        return c.id

    def head(self):
        try:
            return self.repo.head()
        except KeyError:
            return None

    def commit(self, message, *, write=None, delete=(), **kwargs):
        for path, data in (write or {}).items():
            self.files[path] = data if isinstance(data, tuple) else (data, 0o100644)
        for path in delete:
            del self.files[path]
        head = self.head()
        sha = self.make_commit(self.files, message, [head] if head else [], **kwargs)
        self.repo.refs[b"HEAD"] = sha
        return sha


def read_tree(repo, tree_id):
    """Return ``{path: bytes}`` for every blob under *tree_id*."""
    store = repo.object_store
    return {
        entry.path.decode(): store[entry.sha].data
        for entry in store.iter_tree_contents(tree_id)
    }


def first_parent_log(repo, ref):
    """Commits reachable from *ref* by first parents, oldest first."""
    out = []
    sha = repo.refs[ref]
    while True:
        c = repo[sha]
        out.append(c)
        if not c.parents:
            break
        sha = c.parents[0]
    out.reverse()
    return out


@pytest.fixture
def source(tmp_path):
    """An empty source repository with a commit builder."""
    return SourceBuilder(tmp_path / "source")


@pytest.fixture
def remote_path(tmp_path):
    """Return a path to a bare remote repo (pre-created)."""
    p = str(tmp_path / "remote.git")
    Repo.init_bare(p, mkdir=True)
    return p


@pytest.fixture
def workdir(tmp_path):
    """Return a path for a not-yet-created mirror working copy."""
    return tmp_path / "work"


@pytest.fixture
def runner():
    return CliRunner()
