"""Mirror configuration: loading, normalization and validation."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dulwich.refs import check_ref_format

from .exceptions import ConfigError

DEFAULT_BRANCH = "main"
DEFAULT_CONFIG_FILE = "dupligit.config.json"
CONFIG_ENV_VAR = "DUPLIGIT_CONFIG"


@dataclass(frozen=True)
class Rule:
    """One ordered substitution: *pattern* is replaced by *replacement*.

    *flags* uses the config file's regex flag letters (``g``, ``i``, ``m``,
    ``s``, ``u``). ``None`` means ``"g"``: replace every occurrence.
    """
    pattern: str
    replacement: str = ""
    flags: str | None = None


@dataclass
class MirrorConfig:
    """Resolved configuration for one mirror destination."""
    target_repo: str
    target_branch: str = DEFAULT_BRANCH
    rules: list[Rule] = field(default_factory=list)
    message_rules: list[Rule] | None = None
    ignore: list[str] = field(default_factory=list)
    ssh_key: str | None = None
    token_command: str | None = None
    preserve_history: bool = False

    def __post_init__(self):
        if not isinstance(self.target_repo, str) or not self.target_repo.strip():
            raise ConfigError("Missing 'targetRepo' in config")
        self.target_repo = self.target_repo.strip()
        if not self.target_branch:
            self.target_branch = DEFAULT_BRANCH
        _validate_branch(self.target_branch)

    @property
    def effective_message_rules(self) -> list[Rule]:
        """Message rules, falling back to the content rules when unset."""
        if self.message_rules is None:
            return self.rules
        return self.message_rules

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MirrorConfig:
        """Build a config from the parsed JSON object (camelCase keys)."""
        if not isinstance(data, dict):
            raise ConfigError("Config must be a JSON object")

        message_rules = data.get("messageRules")
        return cls(
            target_repo=_get_str(data, "targetRepo", required=True),
            target_branch=_get_str(data, "targetBranch") or DEFAULT_BRANCH,
            rules=_parse_rules(data.get("rules"), "rules"),
            message_rules=(
                None if message_rules is None
                else _parse_rules(message_rules, "messageRules")
            ),
            ignore=_parse_str_list(data.get("ignore"), "ignore"),
            ssh_key=_get_str(data, "sshKey"),
            token_command=_get_str(data, "tokenCommand"),
            preserve_history=bool(data.get("preserveHistory", False)),
        )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def default_config_path(environ: dict[str, str] | None = None) -> str:
    """Return ``$DUPLIGIT_CONFIG`` or ``dupligit.config.json``."""
    env = os.environ if environ is None else environ
    return env.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE


def load_config(path: str | os.PathLike[str]) -> MirrorConfig:
    """Read and validate a JSON config file.

    Raises:
        ConfigError: The file is missing, is not valid JSON, or holds
            invalid fields.
    """
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {p}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {p}: {exc}") from exc
    return MirrorConfig.from_dict(data)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _validate_branch(name: str) -> None:
    if not isinstance(name, str):
        raise ConfigError(f"'targetBranch' must be a string, got {type(name).__name__}")
    if not check_ref_format(b"refs/heads/" + name.encode("utf-8")):
        raise ConfigError(f"Invalid target branch name: {name!r}")


def _get_str(data: dict, key: str, *, required: bool = False) -> str | None:
    value = data.get(key)
    if value is None:
        if required:
            raise ConfigError(f"Missing {key!r} in config")
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key!r} must be a string, got {type(value).__name__}")
    return value


def _parse_str_list(value, key: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{key!r} must be a list of strings")
    return list(value)


def _parse_rules(value, key: str) -> list[Rule]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{key!r} must be a list of rules")
    rules = []
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ConfigError(f"{key}[{i}] must be an object")
        pattern = item.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            raise ConfigError(f"{key}[{i}] needs a non-empty string 'pattern'")
        replacement = item.get("replacement", "")
        if not isinstance(replacement, str):
            raise ConfigError(f"{key}[{i}].replacement must be a string")
        flags = item.get("flags")
        if flags is not None and not isinstance(flags, str):
            raise ConfigError(f"{key}[{i}].flags must be a string")
        rules.append(Rule(pattern, replacement, flags))
    return rules
