"""Tests for MirrorRepo: init, identity, working copy and commits."""

import os

import pytest
from dulwich.repo import Repo

from dupligit.exceptions import CommitCreationError, ConfigError
from dupligit.repo import BOT_EMAIL, BOT_NAME, MirrorRepo
from dupligit.tree import GIT_FILEMODE_BLOB_EXECUTABLE, SnapshotEntry


def _files(tmp):
    """Working-copy files (relative paths) excluding .git."""
    out = {}
    for root, dirs, names in os.walk(tmp):
        dirs[:] = [d for d in dirs if d != ".git"]
        for n in names:
            p = os.path.join(root, n)
            with open(p, "rb") as f:
                out[os.path.relpath(p, tmp).replace(os.sep, "/")] = f.read()
    return out


class TestCreate:
    def test_fresh_directory(self, workdir):
        with MirrorRepo.create(workdir, branch="release", remote_url="/srv/x.git") as m:
            assert m.head() is None
            assert m.get_identity() == (BOT_NAME, BOT_EMAIL)
            assert m.remote_url() == "/srv/x.git"
            assert Repo(str(workdir)).refs.get_symrefs()[b"HEAD"] == b"refs/heads/release"

    def test_existing_empty_directory(self, workdir):
        workdir.mkdir()
        with MirrorRepo.create(workdir) as m:
            assert m.branch == "main"

    def test_non_empty_directory_is_rejected(self, workdir):
        workdir.mkdir()
        (workdir / "stale.txt").write_text("x")
        with pytest.raises(ConfigError, match="not empty"):
            MirrorRepo.create(workdir)

    def test_uncreatable_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(ConfigError, match="Cannot create working directory"):
            MirrorRepo.create(blocker / "w")

    def test_existing_identity_is_kept(self, workdir):
        with MirrorRepo.create(workdir) as m:
            assert m.ensure_identity("someone", "someone@example.com") == (BOT_NAME, BOT_EMAIL)


class TestWorkingCopy:
    def test_checkout_replaces_contents(self, workdir):
        with MirrorRepo.create(workdir) as m:
            first = m.stage({"a.txt": SnapshotEntry(b"a"), "dir/b.txt": SnapshotEntry(b"b")})
            m.checkout(first)
            assert _files(workdir) == {"a.txt": b"a", "dir/b.txt": b"b"}

            second = m.stage({"c.txt": SnapshotEntry(b"c")})
            m.checkout(second)
            assert _files(workdir) == {"c.txt": b"c"}
            assert (workdir / ".git").is_dir()

    def test_io_failure_raises(self, workdir, monkeypatch):
        with MirrorRepo.create(workdir) as m:
            tree = m.stage({"a": SnapshotEntry(b"1")})

            def boom():
                raise PermissionError(13, "Permission denied")

            monkeypatch.setattr(m, "clear_worktree", boom)
            with pytest.raises(CommitCreationError, match="Cannot update working copy"):
                m.checkout(tree)

    def test_untracked_files_are_removed(self, workdir):
        with MirrorRepo.create(workdir) as m:
            (workdir / "junk").mkdir()
            (workdir / "junk" / "x").write_text("x")
            m.checkout(m.stage({"keep": SnapshotEntry(b"k")}))
            assert _files(workdir) == {"keep": b"k"}

    def test_executable_bit(self, workdir):
        with MirrorRepo.create(workdir) as m:
            m.checkout(m.stage({"run.sh": SnapshotEntry(b"#!/bin/sh\n", GIT_FILEMODE_BLOB_EXECUTABLE)}))
        assert os.access(workdir / "run.sh", os.X_OK)


class TestCommit:
    def test_author_and_committer(self, workdir):
        with MirrorRepo.create(workdir) as m:
            tree = m.stage({"a": SnapshotEntry(b"1")})
            sha = m.commit(
                tree, "first",
                author_name="Alice", author_email="alice@example.com",
                author_time=1_600_000_000, author_timezone=-18000,
            )
            c = m.dulwich_repo[sha]
        assert c.author == b"Alice <alice@example.com>"
        assert c.committer == f"{BOT_NAME} <{BOT_EMAIL}>".encode()
        assert c.author_time == c.commit_time == 1_600_000_000
        assert c.author_timezone == c.commit_timezone == -18000
        assert c.message == b"first\n"
        assert c.parents == []

    def test_commits_chain_on_branch(self, workdir):
        with MirrorRepo.create(workdir) as m:
            tree = m.stage({"a": SnapshotEntry(b"1")})
            kw = dict(author_name="A", author_email="a@x", author_time=1)
            first = m.commit(tree, "one", **kw)
            second = m.commit(tree, "two", **kw)
            assert m.dulwich_repo[second].parents == [first]
            assert m.head() == second
            assert m.head_tree() == tree

    def test_ref_failure_raises(self, workdir, monkeypatch):
        with MirrorRepo.create(workdir) as m:
            tree = m.stage({})
            refs = m.dulwich_repo.refs

            def boom(*args, **kwargs):
                raise OSError("disk full")

            monkeypatch.setattr(refs, "add_if_new", boom)
            with pytest.raises(CommitCreationError, match="disk full"):
                m.commit(tree, "x", author_name="A", author_email="a@x", author_time=1)
