from __future__ import annotations

import pytest
from rich.console import Console

from scanvault import cli
from scanvault.output import format_cache_source, format_suggestion


def test_parse_boolean_accepts_common_tokens():
    assert cli._parse_boolean(" Yes ") is True  # type: ignore[attr-defined]
    assert cli._parse_boolean("off") is False  # type: ignore[attr-defined]
    with pytest.raises(ValueError):
        cli._parse_boolean("sometimes")  # type: ignore[attr-defined]


def test_plural_suffix():
    assert cli._plural(1) == "y"  # type: ignore[attr-defined]
    assert cli._plural(0) == "ies"  # type: ignore[attr-defined]
    assert cli._plural(3) == "ies"  # type: ignore[attr-defined]


def test_format_preview_collapses_and_truncates():
    assert cli._format_preview(None) == "-"  # type: ignore[attr-defined]
    assert cli._format_preview("a\n  b") == "a b"  # type: ignore[attr-defined]
    preview = cli._format_preview("word " * 40, limit=20)  # type: ignore[attr-defined]
    assert len(preview) <= 20
    assert preview.endswith("…")


def test_format_cache_source_labels():
    console = Console(file=None, force_terminal=False)
    assert "cache" in format_cache_source(True, console)
    assert format_cache_source(False, console) == "[yellow]engine[/yellow]"


def test_format_suggestion_falls_back_to_ascii(monkeypatch):
    monkeypatch.setattr("scanvault.output.supports_unicode_output", lambda console=None: False)

    assert format_suggestion("utilize", "use") == "utilize -> use"
    assert format_suggestion("paradigm", None) == "-"


def test_span_text_quotes_only_matching_text():
    span = cli._span_text  # type: ignore[attr-defined]

    assert span("we leverage it", 3, 11, 14) == "leverage"
    assert span("we  leverage it", 3, 11, 14) == ""
    assert span("short", 2, 40, None) == "ort"
    assert span("short", 9, 12, None) == ""


def test_format_suggestion_without_quoted_span():
    assert format_suggestion("", "use") == "use"
