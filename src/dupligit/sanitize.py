"""Content sanitizer: ordered regex substitution over text blobs and messages.

Rules are applied in list order, each rule's output feeding the next.
Binary content (a zero byte within the first :data:`BINARY_SNIFF_BYTES`)
is passed through untouched.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from .config import Rule
from .exceptions import ConfigError

BINARY_SNIFF_BYTES = 8192

_FLAG_BITS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
}

# ``(?<name>...)`` is accepted as an alias for ``(?P<name>...)``.
_NAMED_GROUP = re.compile(r"(?<!\\)\(\?<([A-Za-z_][A-Za-z0-9_]*)>")

_REPL_TOKEN = re.compile(r"\$(?:(\$)|(&)|(`)|(')|(\d{1,2})|<([^>]*)>)")


class ContentKind(enum.Enum):
    BINARY = "binary"
    TEXT = "text"


def classify(data: bytes) -> ContentKind:
    """Classify *data* as binary if its first 8 KiB contain a zero byte."""
    if b"\x00" in data[:BINARY_SNIFF_BYTES]:
        return ContentKind.BINARY
    return ContentKind.TEXT


# ---------------------------------------------------------------------------
# Replacement templates
# ---------------------------------------------------------------------------

def _parse_template(template: str, regex: re.Pattern) -> list:
    """Split a ``$``-style replacement into literal strings and references.

    References are tuples: ``("group", n)``, ``("name", s)``,
    ``("before",)`` or ``("after",)``.
    """
    parts: list = []
    pos = 0
    for m in _REPL_TOKEN.finditer(template):
        literal = template[pos:m.start()]
        dollar, whole, before, after, digits, name = m.groups()
        ref = None
        trailing = ""
        if dollar:
            literal += "$"
        elif whole:
            ref = ("group", 0)
        elif before:
            ref = ("before",)
        elif after:
            ref = ("after",)
        elif digits is not None:
            # "$12" means group 12 only if it exists, else group 1 then "2".
            if len(digits) == 2 and 1 <= int(digits) <= regex.groups:
                ref = ("group", int(digits))
            elif 1 <= int(digits[0]) <= regex.groups:
                ref = ("group", int(digits[0]))
                trailing = digits[1:]
            else:
                literal += m.group(0)
        elif regex.groupindex:
            ref = ("name", name)
        else:
            literal += m.group(0)
        if literal:
            parts.append(literal)
        if ref is not None:
            parts.append(ref)
        if trailing:
            parts.append(trailing)
        pos = m.end()
    if pos < len(template):
        parts.append(template[pos:])
    return parts


def _expand(parts: list, m: re.Match) -> str:
    out = []
    for part in parts:
        if isinstance(part, str):
            out.append(part)
        elif part[0] == "group":
            out.append(m.group(part[1]) or "")
        elif part[0] == "name":
            out.append(m.groupdict().get(part[1]) or "")
        elif part[0] == "before":
            out.append(m.string[:m.start()])
        else:
            out.append(m.string[m.end():])
    return "".join(out)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompiledRule:
    """A :class:`~dupligit.config.Rule` ready to apply."""
    rule: Rule
    regex: re.Pattern
    count: int
    template: tuple

    def apply(self, text: str) -> str:
        parts = self.template
        if all(isinstance(p, str) for p in parts):
            literal = "".join(parts)
            return self.regex.sub(lambda m: literal, text, count=self.count)
        return self.regex.sub(lambda m: _expand(parts, m), text, count=self.count)


def _parse_flags(flags: str | None) -> tuple[int, int]:
    """Return ``(re flags, sub count)`` for a rule's flag letters."""
    if flags is None:
        return 0, 0
    bits = 0
    seen = set()
    for ch in flags:
        if ch in seen:
            raise ValueError(f"repeated flag {ch!r}")
        seen.add(ch)
        if ch == "g":
            continue
        if ch not in _FLAG_BITS:
            raise ValueError(f"unsupported flag {ch!r}")
        bits |= _FLAG_BITS[ch]
    return bits, 0 if "g" in seen else 1


def compile_rule(rule: Rule) -> CompiledRule:
    """Compile one rule, raising ``ValueError`` or ``re.error`` on bad input."""
    bits, count = _parse_flags(rule.flags)
    regex = re.compile(_NAMED_GROUP.sub(r"(?P<\1>", rule.pattern), bits)
    template = tuple(_parse_template(rule.replacement, regex))
    return CompiledRule(rule, regex, count, template)


def compile_rules(rules: Iterable[Rule], *, label: str = "rules") -> list[CompiledRule]:
    """Compile every rule up front.

    Raises:
        ConfigError: A pattern or its flags are invalid.
    """
    compiled = []
    for i, rule in enumerate(rules):
        try:
            compiled.append(compile_rule(rule))
        except (re.error, ValueError) as exc:
            raise ConfigError(
                f"Invalid pattern in {label}[{i}] ({rule.pattern!r}): {exc}"
            ) from exc
    return compiled


def apply_rules(text: str, rules: Sequence[CompiledRule]) -> str:
    """Fold *rules* over *text* in order."""
    out = text
    for rule in rules:
        out = rule.apply(out)
    return out


def sanitize_bytes(data: bytes, rules: Sequence[CompiledRule]) -> bytes:
    """Sanitize file content, passing binary data through unchanged.

    Text is decoded as UTF-8 with ``surrogateescape`` so bytes that are not
    valid UTF-8 survive the round trip.
    """
    if not rules or classify(data) is ContentKind.BINARY:
        return data
    text = data.decode("utf-8", errors="surrogateescape")
    return apply_rules(text, rules).encode("utf-8", errors="surrogateescape")
