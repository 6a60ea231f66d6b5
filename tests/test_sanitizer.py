from __future__ import annotations

import hypothesis.strategies as st
import pytest
from hypothesis import given, settings

from tracegate.inspection.sanitizer import InputSanitizer, sanitize_text

SAMPLES = [
    "",
    "plain text",
    "O'Brien's Pharmacy",
    "  lots   of\twhite\nspace  ",
    "<b>bold</b> and <i>italic</i>",
    "<script>alert(1)</script>Hello",
    "<scr<script>ipt>alert(1)</script>",
    "<style>body{}</style>styled",
    "a\x00b\x07c\u200bd",
    "＜script＞alert(1)＜/script＞",
    "1 < 2 > 0",
    "<<>>",
    "unterminated <tag",
    "café naïve",
    "AT&T & Sons",
    "&lt;b&gt;bold&lt;/b&gt;",
    "&amp;lt;script&amp;gt;x",
    "&amp;amp;amp;amp;amp;amp;amp;amp;amp;amp;lt;i&gt;deep",
]


@pytest.mark.parametrize("value", SAMPLES)
def test_sanitize_is_idempotent(value: str) -> None:
    once = sanitize_text(value)
    assert sanitize_text(once) == once


@given(st.text())
@settings(max_examples=300, deadline=None)
def test_sanitize_is_idempotent_for_any_text(value: str) -> None:
    once = sanitize_text(value)
    assert sanitize_text(once) == once
    assert "<" not in once and ">" not in once


def test_benign_text_with_quotes_is_unchanged() -> None:
    assert sanitize_text("O'Brien's Pharmacy") == "O'Brien's Pharmacy"


def test_ampersands_stay_plain_text() -> None:
    assert sanitize_text("AT&T & Sons") == "AT&T & Sons"
    assert sanitize_text("Tom &amp; Jerry") == "Tom & Jerry"


def test_entity_encoded_markup_is_decoded_and_stripped() -> None:
    assert sanitize_text("&lt;b&gt;bold&lt;/b&gt; text") == "bold text"
    assert sanitize_text("1 &lt; 2") == "1 2"


def test_script_blocks_are_removed_with_their_content() -> None:
    assert sanitize_text("<script>alert(1)</script>Hello") == "Hello"
    assert sanitize_text("<b>bold</b> text") == "bold text"


def test_fullwidth_angle_brackets_are_normalized_before_tag_removal() -> None:
    assert sanitize_text("＜script＞alert(1)＜/script＞") == ""


def test_control_characters_and_whitespace() -> None:
    assert sanitize_text("a\x00b\tc\n d") == "ab c d"
    assert sanitize_text("  padded  ") == "padded"


def test_nested_surfaces_report_changed_paths() -> None:
    cleaned, report = InputSanitizer().sanitize_surfaces(
        {
            "query": {"q": "widgets"},
            "body": {"name": "<b>x</b>", "n": 5, "ok": True, "tags": ["a\x00b", "fine"]},
        }
    )
    assert cleaned == {
        "query": {"q": "widgets"},
        "body": {"name": "x", "n": 5, "ok": True, "tags": ["ab", "fine"]},
    }
    assert report.changed == ["body.name", "body.tags[0]"]


def test_unsanitizable_values_become_empty() -> None:
    sanitizer = InputSanitizer()
    cleaned, report = sanitizer.sanitize_surfaces({"body": {"blob": object(), "raw": b"\xff\xfe"}})
    assert cleaned == {"body": {"blob": "", "raw": ""}}
    assert sorted(report.changed) == ["body.blob", "body.raw"]


def test_depth_limit_drops_deep_values() -> None:
    deep: dict = {}
    node = deep
    for _ in range(10):
        node["k"] = {}
        node = node["k"]
    cleaned = InputSanitizer(max_depth=3).sanitize(deep)
    assert cleaned == {"k": {"k": {"k": {"k": ""}}}}
