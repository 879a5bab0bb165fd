from .config import MirrorConfig, Rule, load_config
from .engine import RunResult, run
from .exceptions import (
    CommitCreationError,
    ConfigError,
    DupligitError,
    PublishError,
    SourceReadError,
)
from ._exclude import ExcludeFilter, is_excluded
from .history import SourceCommit, SourceHistory
from .mirror import PushResult, push, resolve_remote_url, resolve_token
from .replay import Replayer, ReplayResult, RuleSet, replay
from .repo import MirrorRepo
from .sanitize import ContentKind, apply_rules, classify, compile_rules, sanitize_bytes
from .tree import SnapshotEntry, StagedTree, build_snapshot

__all__ = [
    "MirrorConfig", "Rule", "load_config", "RunResult", "run",
    "DupligitError", "ConfigError", "SourceReadError", "CommitCreationError", "PublishError",
    "ExcludeFilter", "is_excluded",
    "SourceCommit", "SourceHistory",
    "PushResult", "push", "resolve_remote_url", "resolve_token",
    "Replayer", "ReplayResult", "RuleSet", "replay", "MirrorRepo",
    "ContentKind", "apply_rules", "classify", "compile_rules", "sanitize_bytes",
    "SnapshotEntry", "StagedTree", "build_snapshot",
]
