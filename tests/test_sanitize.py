"""Tests for the content sanitizer."""

import pytest

from dupligit.config import Rule
from dupligit.exceptions import ConfigError
from dupligit.sanitize import (
    BINARY_SNIFF_BYTES,
    ContentKind,
    apply_rules,
    classify,
    compile_rules,
    sanitize_bytes,
)


def _apply(text, *rules):
    return apply_rules(text, compile_rules(rules))


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------

class TestClassify:
    def test_plain_text(self):
        assert classify(b"hello\nworld\n") is ContentKind.TEXT

    def test_empty_is_text(self):
        assert classify(b"") is ContentKind.TEXT

    def test_zero_byte_is_binary(self):
        assert classify(b"PNG\x00\x01\x02") is ContentKind.BINARY

    def test_zero_byte_at_last_sniffed_offset(self):
        data = b"a" * (BINARY_SNIFF_BYTES - 1) + b"\x00" + b"b" * 100
        assert classify(data) is ContentKind.BINARY

    def test_zero_byte_beyond_sniff_window_is_text(self):
        data = b"a" * BINARY_SNIFF_BYTES + b"\x00"
        assert classify(data) is ContentKind.TEXT

    def test_high_bytes_without_zero_are_text(self):
        assert classify(bytes(range(1, 256))) is ContentKind.TEXT


# ---------------------------------------------------------------------------
# apply_rules
# ---------------------------------------------------------------------------

class TestApplyRules:
    def test_replaces_all_occurrences_by_default(self):
        assert _apply("a1 a2 a3", Rule("a", "b")) == "b1 b2 b3"

    def test_rules_apply_in_order(self):
        rules = (Rule("foo", "bar"), Rule("bar", "baz"))
        assert _apply("foo", *rules) == "baz"
        assert _apply("foo", *reversed(rules)) == "bar"

    def test_no_rules_is_identity(self):
        assert apply_rules("unchanged", []) == "unchanged"

    def test_deterministic(self):
        rules = compile_rules([Rule(r"\d+", "N"), Rule("N N", "pair")])
        text = "1 2 3"
        assert apply_rules(text, rules) == apply_rules(text, rules) == "pair N"

    def test_idempotent_when_replacement_does_not_rematch(self):
        rules = compile_rules([Rule("ABC123", "<redacted>")])
        once = apply_rules("secret=ABC123", rules)
        assert apply_rules(once, rules) == once == "secret=<redacted>"

    def test_not_idempotent_when_replacement_rematches(self):
        rules = compile_rules([Rule("a", "aa")])
        once = apply_rules("a", rules)
        assert once == "aa"
        assert apply_rules(once, rules) == "aaaa"

    def test_flag_without_g_replaces_first_only(self):
        assert _apply("x x x", Rule("x", "y", flags="")) == "y x x"
        assert _apply("X x", Rule("x", "y", flags="i")) == "y x"

    def test_ignorecase_global(self):
        assert _apply("Token TOKEN token", Rule("token", "T", flags="gi")) == "T T T"

    def test_multiline_flag(self):
        text = "key: 1\nkey: 2\n"
        assert _apply(text, Rule("^key", "k", flags="gm")) == "k: 1\nk: 2\n"
        assert _apply(text, Rule("^key", "k")) == "k: 1\nkey: 2\n"

    def test_dotall_flag(self):
        text = "BEGIN\nsecret\nEND"
        assert _apply(text, Rule("BEGIN.*END", "[cut]", flags="gs")) == "[cut]"
        assert _apply(text, Rule("BEGIN.*END", "[cut]")) == text


class TestReplacementTemplates:
    def test_numbered_groups(self):
        assert _apply("user=alice", Rule(r"(\w+)=(\w+)", "$2=$1")) == "alice=user"

    def test_whole_match(self):
        assert _apply("abc", Rule("b", "[$&]")) == "a[b]c"

    def test_named_group(self):
        rule = Rule(r"(?<host>[a-z]+)\.internal", "$<host>.example.com")
        assert _apply("db.internal", rule) == "db.example.com"

    def test_python_named_group_syntax_also_works(self):
        assert _apply("db.internal", Rule(r"(?P<h>\w+)\.internal", "$<h>.x")) == "db.x"

    def test_escaped_dollar(self):
        assert _apply("price", Rule("price", "$$5")) == "$5"

    def test_missing_group_stays_literal(self):
        assert _apply("abc", Rule("b", "$1")) == "a$1c"

    def test_two_digit_reference_falls_back_to_one_digit(self):
        assert _apply("ab", Rule("(a)", "$10")) == "a0b"

    def test_unmatched_optional_group_is_empty(self):
        assert _apply("a", Rule("(a)(b)?", "[$2]")) == "[]"

    def test_before_and_after(self):
        assert _apply("abc", Rule("b", "<$`|$'>")) == "a<a|c>c"

    def test_backslashes_are_literal(self):
        assert _apply("a", Rule("a", r"\1\n")) == r"\1\n"


class TestCompileRules:
    def test_invalid_pattern_is_config_error(self):
        with pytest.raises(ConfigError, match=r"rules\[1\]"):
            compile_rules([Rule("ok", "x"), Rule("(unclosed", "x")])

    def test_unknown_flag_is_config_error(self):
        with pytest.raises(ConfigError, match="unsupported flag"):
            compile_rules([Rule("a", "b", flags="gy")])

    def test_repeated_flag_is_config_error(self):
        with pytest.raises(ConfigError, match="repeated flag"):
            compile_rules([Rule("a", "b", flags="gg")])

    def test_label_appears_in_error(self):
        with pytest.raises(ConfigError, match=r"messageRules\[0\]"):
            compile_rules([Rule("[", "")], label="messageRules")


# ---------------------------------------------------------------------------
# sanitize_bytes
# ---------------------------------------------------------------------------

class TestSanitizeBytes:
    def test_text_is_rewritten(self):
        rules = compile_rules([Rule("ABC123", "<redacted>")])
        assert sanitize_bytes(b"secret=ABC123\n", rules) == b"secret=<redacted>\n"

    def test_binary_is_untouched(self):
        rules = compile_rules([Rule("ABC123", "<redacted>")])
        data = b"\x00\x01ABC123\xff"
        assert sanitize_bytes(data, rules) == data

    def test_invalid_utf8_round_trips(self):
        rules = compile_rules([Rule("key", "KEY")])
        assert sanitize_bytes(b"key=\xff\xfe\n", rules) == b"KEY=\xff\xfe\n"

    def test_unicode_text(self):
        rules = compile_rules([Rule("café", "bar")])
        assert sanitize_bytes("le café ☕".encode(), rules) == "le bar ☕".encode()
