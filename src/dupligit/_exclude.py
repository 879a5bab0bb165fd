"""Path filter deciding which repository paths are never mirrored.

Combines the implicit patterns (version-control metadata and dependency
caches) with the configured ``ignore`` globs into a single predicate used
by the snapshot builder.

Pattern syntax follows gitignore rules (implemented by
``dulwich.ignore.IgnoreFilter``): a pattern without a slash matches the
basename at any depth, ``**`` crosses directories, and excluding a
directory excludes everything beneath it.  Shell-style ``{a,b}``
alternation is expanded into one pattern per alternative first.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Sequence

from dulwich.ignore import IgnoreFilter

logger = logging.getLogger(__name__)

IMPLICIT_PATTERNS: tuple[str, ...] = (".git/**", "node_modules/**")


def _split_alternatives(body: str) -> list[str]:
    """Split a brace body on commas that are not nested or escaped."""
    parts = []
    depth = 0
    current = ""
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            current += body[i:i + 2]
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(current)
            current = ""
            i += 1
            continue
        current += ch
        i += 1
    parts.append(current)
    return parts


def expand_braces(pattern: str) -> list[str]:
    """Expand shell-style ``{a,b}`` alternation into separate patterns.

    Groups nest (``{a,{b,c}}``).  A group without a comma, an unclosed
    ``{`` and an escaped ``\\{`` are left as literal text.
    """
    depth = 0
    start = 0
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth:
            depth -= 1
            if depth == 0:
                alternatives = _split_alternatives(pattern[start + 1:i])
                if len(alternatives) > 1:
                    head, tail = pattern[:start], pattern[i + 1:]
                    out: list[str] = []
                    for alt in alternatives:
                        out.extend(expand_braces(head + alt + tail))
                    return list(dict.fromkeys(out))
        i += 1
    return [pattern]


def _build_filter(patterns: Iterable[str]) -> IgnoreFilter | None:
    filt = IgnoreFilter([])
    count = 0
    for pattern in patterns:
        for p in expand_braces(pattern):
            try:
                filt.append_pattern(p.encode("utf-8"))
            except re.error as exc:
                # An untranslatable pattern matches nothing.
                logger.debug("ignoring unusable pattern %r: %s", p, exc)
                continue
            count += 1
    return filt if count else None


class ExcludeFilter:
    """Combines the implicit patterns with user ``ignore`` globs."""

    def __init__(self, patterns: Sequence[str] | None = None) -> None:
        self.patterns: tuple[str, ...] = tuple(patterns or ())
        self._implicit = _build_filter(IMPLICIT_PATTERNS)
        self._base = _build_filter(self.patterns)

    def __repr__(self) -> str:
        return f"ExcludeFilter({list(self.patterns)!r})"

    # ------------------------------------------------------------------
    def _check(self, check: str) -> bool:
        if self._implicit is not None and self._implicit.is_ignored(check) is True:
            return True
        if self._base is None:
            return False
        return self._base.is_ignored(check) is True

    # ------------------------------------------------------------------
    def is_excluded(self, rel_path: str) -> bool:
        """True if *rel_path* (or any directory containing it) is excluded."""
        parts = rel_path.strip("/").split("/")
        # Ancestor directories first: git cannot re-include a file whose
        # parent directory is excluded.
        for depth in range(1, len(parts)):
            if self._check("/".join(parts[:depth]) + "/"):
                return True
        return self._check("/".join(parts))


def is_excluded(path: str, patterns: Sequence[str]) -> bool:
    """Return True if *path* is excluded by *patterns* or the implicit patterns."""
    return ExcludeFilter(patterns).is_excluded(path)
