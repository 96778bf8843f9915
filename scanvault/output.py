"""Helpers for formatting CLI output safely across terminals."""

from __future__ import annotations

import sys

from rich.console import Console

from .text import Messages


def _encoding_supports(text: str, encoding: str | None) -> bool:
    if not encoding:
        return False
    try:
        text.encode(encoding)
    except (LookupError, UnicodeEncodeError):
        return False
    return True


def supports_unicode_output(console: Console | None = None) -> bool:
    sample = "✓→"
    if console is not None and _encoding_supports(sample, console.encoding):
        return True
    return _encoding_supports(sample, sys.stdout.encoding)


def format_cache_source(served_from_cache: bool, console: Console | None = None) -> str:
    """Label whether a result came from the cache or a fresh rule-engine run."""
    if served_from_cache:
        label = Messages.SOURCE_CACHE
        icon = "✓ " if supports_unicode_output(console) else ""
        return f"[green]{icon}{label}[/green]"
    return f"[yellow]{Messages.SOURCE_ENGINE}[/yellow]"


def format_suggestion(original: str, suggestion: str | None, console: Console | None = None) -> str:
    if not suggestion:
        return "-"
    if not original:
        return suggestion
    arrow = "→" if supports_unicode_output(console) else "->"
    return f"{original} {arrow} {suggestion}"
