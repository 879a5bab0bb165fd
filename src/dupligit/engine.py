"""One mirror run: validate, replay (or snapshot), then publish."""

from __future__ import annotations

import logging
import os
import tempfile
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from .config import MirrorConfig
from .exceptions import PublishError
from .history import SourceCommit, SourceHistory
from .mirror import PushResult, fetch_branch, push, redact_url, resolve_remote_url, ssh_command_for
from .repo import MirrorRepo
from .replay import ReplayResult, RuleSet, replay
from .tree import build_snapshot

logger = logging.getLogger(__name__)

SNAPSHOT_MESSAGE = "dupligit: sanitized mirror"


@dataclass
class RunResult:
    mode: str                           # "history" or "snapshot"
    workdir: str
    replay: ReplayResult | None = None
    snapshot_commit: str | None = None
    push: PushResult | None = None

    @property
    def pushed(self) -> bool:
        return self.push is not None


def run(
    config: MirrorConfig,
    *,
    source: str | os.PathLike[str] = ".",
    workdir: str | os.PathLike[str] | None = None,
    force: bool = False,
    dry_run: bool = False,
    environ: Mapping[str, str] | None = None,
    progress: Callable[[int, int, SourceCommit], None] | None = None,
    transfer_progress: Callable | None = None,
) -> RunResult:
    """Mirror the repository at *source* to ``config.target_repo``.

    Args:
        config: Resolved mirror configuration.
        source: Path inside the source repository.
        workdir: Directory for the destination working copy.  Must be
            absent or empty; defaults to a new temporary directory.  It is
            left on disk after the run.
        force: Overwrite the remote branch even if it has diverged.
        dry_run: Do everything except contacting the remote for the push.
        environ: Environment used for token lookup (default ``os.environ``).
        progress: Called with ``(index, total, commit)`` before each
            replayed commit.
        transfer_progress: dulwich progress callback for network transfers.

    Raises:
        ConfigError: Invalid rules, source is not a repository or has no
            commits, or *workdir* is not empty.  Raised before any commit
            is processed.
        CommitCreationError: A mirror commit could not be written; nothing
            is pushed.
        PublishError: The push failed; the working copy is kept.
    """
    ruleset = RuleSet.from_config(config)
    ssh_command = ssh_command_for(config.ssh_key) if config.ssh_key else None
    if ssh_command:
        logger.info("using ssh key: %s", os.path.expanduser(config.ssh_key))

    with SourceHistory.open(source) as history:
        logger.info("source repository: %s", history.path)
        head = history.head()
        if workdir is None:
            workdir = tempfile.mkdtemp(prefix="dupligit-")
        workdir = os.fspath(workdir)
        logger.info("working copy: %s", workdir)

        mode = "history" if config.preserve_history else "snapshot"
        result = RunResult(mode=mode, workdir=workdir)
        url = None
        if config.preserve_history:
            commits = history.first_parent_commits(head)
            logger.info("commits to mirror: %d", len(commits))
            mirror, result.replay = replay(
                history, commits, config, workdir, ruleset=ruleset, progress=progress,
            )
        else:
            mirror = MirrorRepo.create(
                workdir, branch=config.target_branch, remote_url=config.target_repo,
            )

        with mirror:
            if not config.preserve_history:
                url = resolve_remote_url(config, environ)
                sha = _commit_snapshot(
                    history, history.get_commit(head), mirror, url,
                    ruleset=ruleset,
                    ssh_command=ssh_command, transfer_progress=transfer_progress,
                )
                if sha is None:
                    logger.warning("No changes to publish.")
                    return result
                result.snapshot_commit = sha.decode("ascii")

            if dry_run:
                logger.info("dry run: not pushing to %s", redact_url(config.target_repo))
                return result

            if url is None:
                url = resolve_remote_url(config, environ)
            result.push = push(
                mirror, url, force=force, ssh_command=ssh_command, progress=transfer_progress,
            )
            logger.info(
                "Pushed %s to %s (%s)",
                mode, redact_url(config.target_repo), config.target_branch,
            )
    return result


def _commit_snapshot(
    history: SourceHistory,
    head: SourceCommit,
    mirror: MirrorRepo,
    url: str,
    *,
    ruleset: RuleSet,
    ssh_command: str | None,
    transfer_progress: Callable | None,
) -> bytes | None:
    """Commit the sanitized HEAD tree on top of the remote branch.

    Returns the new commit, or None when the remote already has that tree.
    """
    try:
        tip = fetch_branch(mirror, url, ssh_command=ssh_command, progress=transfer_progress)
    except PublishError as exc:
        logger.info("%s; starting %s from scratch", exc, mirror.branch)
        tip = None
    if tip is not None:
        mirror.set_branch(tip)

    staged = build_snapshot(history, head, exclude=ruleset.exclude, rules=ruleset.rules)
    tree_id = mirror.stage(staged)
    mirror.checkout(tree_id)
    if tree_id == mirror.head_tree():
        return None

    name, email = mirror.ensure_identity()
    return mirror.commit(
        tree_id,
        SNAPSHOT_MESSAGE,
        author_name=name,
        author_email=email,
        author_time=int(time.time()),
    )
