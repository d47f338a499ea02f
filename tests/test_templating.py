from __future__ import annotations

from shiftboard.templating import render_template


def test_missing_keys_render_empty() -> None:
    assert render_template("Hi {name}, {missing}!", {"name": "An"}) == "Hi An, !"


def test_text_without_tokens_is_unchanged() -> None:
    assert render_template("no tokens", {"name": "An"}) == "no tokens"


def test_none_values_render_empty() -> None:
    assert render_template("[{name}]", {"name": None}) == "[]"


def test_non_string_values_are_stringified() -> None:
    assert render_template("{count} shifts on {date}", {"count": 3, "date": "2025-06-09"}) == "3 shifts on 2025-06-09"


def test_substituted_text_is_not_rescanned() -> None:
    assert render_template("{a}", {"a": "{b}", "b": "nope"}) == "{b}"


def test_empty_template_and_context() -> None:
    assert render_template(None, {"name": "An"}) == ""
    assert render_template("", None) == ""
    assert render_template("Hi {name}", None) == "Hi "


def test_non_identifier_braces_are_left_alone() -> None:
    assert render_template("{not a token} {ok}", {"ok": "yes"}) == "{not a token} yes"
