"""Commit replayer: rebuild the source's first-parent history, sanitized.

Each source commit becomes exactly one mirror commit, appended in source
order.  Commits whose sanitized tree is unchanged are still recorded as
empty commits so the two histories correspond one to one.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from ._exclude import ExcludeFilter
from .config import MirrorConfig
from .history import SourceCommit, SourceHistory
from .repo import MirrorRepo
from .sanitize import CompiledRule, apply_rules, compile_rules
from .tree import build_snapshot

logger = logging.getLogger(__name__)


@dataclass
class ReplayResult:
    """Outcome of a replay.

    *commits* pairs each source commit id with the mirror commit id
    written for it, in replay order.
    """
    commits: list[tuple[str, str]] = field(default_factory=list)
    empty: int = 0
    skipped: list[tuple[str, str]] = field(default_factory=list)  # (source id, path)

    @property
    def head(self) -> str | None:
        return self.commits[-1][1] if self.commits else None

    def __len__(self) -> int:
        return len(self.commits)


@dataclass(frozen=True)
class RuleSet:
    """Compiled form of a config's ``ignore``, ``rules`` and ``messageRules``."""
    exclude: ExcludeFilter
    rules: list[CompiledRule]
    message_rules: list[CompiledRule]

    @classmethod
    def from_config(cls, config: MirrorConfig) -> RuleSet:
        """Compile every pattern up front.

        Raises:
            ConfigError: A content or message rule is invalid.
        """
        return cls(
            exclude=ExcludeFilter(config.ignore),
            rules=compile_rules(config.rules),
            message_rules=compile_rules(config.effective_message_rules, label="messageRules"),
        )


class Replayer:
    """Drives the per-commit loop against one :class:`MirrorRepo`."""

    def __init__(
        self,
        history: SourceHistory,
        mirror: MirrorRepo,
        *,
        exclude: ExcludeFilter,
        rules: Sequence[CompiledRule],
        message_rules: Sequence[CompiledRule],
        progress: Callable[[int, int, SourceCommit], None] | None = None,
    ):
        self.history = history
        self.mirror = mirror
        self.exclude = exclude
        self.rules = list(rules)
        self.message_rules = list(message_rules)
        self.progress = progress

    def replay_one(self, commit: SourceCommit, result: ReplayResult) -> bytes:
        """Snapshot, stage, check out and commit a single source commit."""
        staged = build_snapshot(self.history, commit, exclude=self.exclude, rules=self.rules)
        result.skipped.extend((commit.id, p) for p in staged.skipped)

        tree_id = self.mirror.stage(staged)
        parent_tree = self.mirror.head_tree()
        self.mirror.checkout(tree_id)
        if tree_id == parent_tree:
            result.empty += 1
            logger.debug("%s: no visible changes, recording empty commit", commit.short_id)

        return self.mirror.commit(
            tree_id,
            apply_rules(commit.message, self.message_rules),
            author_name=commit.author_name,
            author_email=commit.author_email,
            author_time=commit.author_time,
            author_timezone=commit.author_timezone,
        )

    def replay(self, commits: Sequence[SourceCommit]) -> ReplayResult:
        """Replay *commits* in the given order.

        Raises:
            CommitCreationError: A mirror commit could not be written.  The
                run stops at that commit.
        """
        result = ReplayResult()
        total = len(commits)
        for i, commit in enumerate(commits, 1):
            if self.progress is not None:
                self.progress(i, total, commit)
            mirror_id = self.replay_one(commit, result)
            result.commits.append((commit.id, mirror_id.decode("ascii")))
            logger.info("[%d/%d] %s -> %s", i, total, commit.short_id, mirror_id.decode()[:7])
        return result


def replay(
    history: SourceHistory,
    commits: Sequence[SourceCommit],
    config: MirrorConfig,
    workdir: str | os.PathLike[str],
    *,
    remote_url: str | None = None,
    ruleset: RuleSet | None = None,
    progress: Callable[[int, int, SourceCommit], None] | None = None,
) -> tuple[MirrorRepo, ReplayResult]:
    """Create a working copy at *workdir* and replay *commits* into it.

    Args:
        history: Open source repository.
        commits: Source commits, oldest first.
        config: Mirror configuration.
        workdir: Absent or empty directory for the working copy.
        remote_url: URL recorded as ``origin`` (default ``config.target_repo``).
        ruleset: Already compiled rules; compiled from *config* when omitted.
        progress: Called with ``(index, total, commit)`` before each commit.

    Returns:
        The open :class:`MirrorRepo` (the caller closes it) and the result.

    Raises:
        ConfigError: Invalid rules or an unusable *workdir*.  Nothing is
            created on disk for invalid rules.
        CommitCreationError: A mirror commit could not be written.
    """
    if ruleset is None:
        ruleset = RuleSet.from_config(config)

    mirror = MirrorRepo.create(
        workdir,
        branch=config.target_branch,
        remote_url=remote_url if remote_url is not None else config.target_repo,
    )
    replayer = Replayer(
        history, mirror,
        exclude=ruleset.exclude, rules=ruleset.rules, message_rules=ruleset.message_rules,
        progress=progress,
    )
    try:
        return mirror, replayer.replay(commits)
    except BaseException:
        mirror.close()
        raise
