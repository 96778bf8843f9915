"""Command line interface for scanvault."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Sequence

import typer
from rich.console import Console
from rich.table import Table

from . import __version__, config as config_module
from .api import ScanVaultClient
from .config import (
    config_as_dict,
    load_config,
    set_cache_capacity,
    set_cache_shards,
    set_durable_enabled,
    set_durable_read_through,
    set_fill_timeout_ms,
    set_log_level,
    set_ttl_seconds,
)
from .durable import SQLiteDurableStore
from .errors import DurableStoreError, ScanVaultConfigError, ScanVaultError
from .logging_utils import log_error, setup_logger
from .models import ScanResult
from .output import format_cache_source, format_suggestion
from .rules import DEFAULT_RULES
from .text import Messages, Styles

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"scanvault v{__version__}")
        raise typer.Exit()


def _parse_boolean(value: str) -> bool:
    token = value.strip().lower()
    if token in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if token in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(Messages.ERROR_BOOLEAN_INVALID.format(value=value))


def _plural(count: int) -> str:
    return "y" if count == 1 else "ies"


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    )
) -> None:
    """Global Typer callback for shared options."""
    return None


@app.command(help=Messages.HELP_SCAN)
def scan(
    texts: list[str] = typer.Argument(None, help=Messages.HELP_SCAN_TEXT),
    files: list[Path] = typer.Option(
        None,
        "--file",
        "-f",
        help=Messages.HELP_SCAN_FILE,
    ),
    as_json: bool = typer.Option(False, "--json", help=Messages.HELP_SCAN_JSON),
    read_through: bool = typer.Option(
        False,
        "--read-through",
        help=Messages.HELP_SCAN_READ_THROUGH,
    ),
    show_stats: bool = typer.Option(False, "--stats", help=Messages.HELP_SCAN_STATS),
) -> None:
    inputs = list(texts or [])
    for path in files or []:
        try:
            inputs.append(path.read_text(encoding="utf-8"))
        except OSError as exc:
            console.print(
                _styled(Messages.ERROR_FILE_READ.format(path=path, reason=exc), Styles.ERROR)
            )
            raise typer.Exit(code=1)
    if not inputs:
        console.print(_styled(Messages.ERROR_NO_INPUT, Styles.ERROR))
        raise typer.Exit(code=1)

    config = load_config()
    if read_through:
        config.durable_read_through = True
    setup_logger(config)
    with ScanVaultClient(config=config) as client:
        try:
            results = client.scan_many(inputs)
        except ScanVaultError as exc:
            log_error("Scan failed", exc)
            console.print(_styled(str(exc), Styles.ERROR))
            raise typer.Exit(code=1)
        client.flush(timeout=5.0)
        stats = client.stats()

    if as_json:
        payload = [result.to_dict() for result in results]
        if show_stats:
            typer.echo(json.dumps({"results": payload, "stats": stats}, ensure_ascii=False))
        else:
            typer.echo(json.dumps(payload, ensure_ascii=False))
        return
    for text, result in zip(inputs, results):
        _render_result(text, result)
    if show_stats:
        console.print(_styled(Messages.INFO_STATS_SUMMARY.format(**stats), Styles.INFO))


@app.command(help=Messages.HELP_RELOAD)
def reload(
    version: str = typer.Argument(..., help=Messages.HELP_RELOAD_VERSION),
    force: bool = typer.Option(False, "--force", help=Messages.HELP_RELOAD_FORCE),
) -> None:
    config = load_config()
    setup_logger(config)
    with ScanVaultClient(config=config) as client:
        try:
            previous = client.reload_ruleset(version, force=force, persist=True)
        except ScanVaultError as exc:
            console.print(_styled(str(exc), Styles.ERROR))
            raise typer.Exit(code=1)
        current = client.current_version()
    console.print(
        _styled(Messages.INFO_RELOADED.format(old=previous, new=current), Styles.SUCCESS)
    )


@app.command(help=Messages.HELP_RULES)
def rules() -> None:
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_RULE)
    table.add_column(Messages.TABLE_HEADER_LABEL)
    table.add_column(Messages.TABLE_HEADER_SEVERITY)
    table.add_column(Messages.TABLE_HEADER_SUGGESTION)
    table.add_column(Messages.TABLE_HEADER_PATTERN, overflow="fold")
    for rule in DEFAULT_RULES:
        table.add_row(
            rule.rule_id,
            rule.label,
            rule.severity,
            rule.suggestion or "-",
            rule.pattern,
        )
    console.print(_styled(Messages.TABLE_RULES_TITLE, Styles.TITLE))
    console.print(table)


@app.command(help=Messages.HELP_CACHE)
def cache(
    list_entries: bool = typer.Option(False, "--list", help=Messages.HELP_CACHE_LIST),
    limit: int = typer.Option(20, "--limit", min=1, help=Messages.HELP_CACHE_LIMIT),
    clear: bool = typer.Option(False, "--clear", help=Messages.HELP_CACHE_CLEAR),
    prune: bool = typer.Option(False, "--prune", help=Messages.HELP_CACHE_PRUNE),
) -> None:
    config = load_config()
    store = SQLiteDurableStore(
        config_module.durable_db_path(),
        max_entries=config.durable_max_entries,
    )
    try:
        if clear:
            removed = store.clear()
            console.print(
                _styled(
                    Messages.INFO_CACHE_CLEARED.format(count=removed, plural=_plural(removed)),
                    Styles.SUCCESS,
                )
            )
            return
        if prune:
            removed = store.prune()
            console.print(
                _styled(
                    Messages.INFO_CACHE_PRUNED.format(count=removed, plural=_plural(removed)),
                    Styles.SUCCESS,
                )
            )
            return
        entries = store.list_entries(limit=limit)
    except DurableStoreError as exc:
        console.print(_styled(str(exc), Styles.ERROR))
        raise typer.Exit(code=1)
    if not entries:
        console.print(_styled(Messages.INFO_CACHE_EMPTY, Styles.INFO))
        return
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_KEY)
    table.add_column(Messages.TABLE_HEADER_VERSION)
    table.add_column(Messages.TABLE_HEADER_HIGHLIGHTS, justify="right")
    table.add_column(Messages.TABLE_HEADER_SCANNED)
    for entry in entries:
        table.add_row(
            str(entry["key"])[:12],
            str(entry["ruleset_version"]),
            str(entry["highlight_count"]),
            str(entry["scanned_at"]),
        )
    console.print(_styled(Messages.TABLE_CACHE_TITLE, Styles.TITLE))
    console.print(table)


@app.command(help=Messages.HELP_FEEDBACK)
def feedback(
    key: str | None = typer.Argument(None, help=Messages.HELP_FEEDBACK_KEY),
    verdict: str | None = typer.Argument(None, help=Messages.HELP_FEEDBACK_VERDICT),
    rule_id: str | None = typer.Option(None, "--rule", help=Messages.HELP_FEEDBACK_RULE),
    note: str | None = typer.Option(None, "--note", help=Messages.HELP_FEEDBACK_NOTE),
    ruleset_version: str | None = typer.Option(
        None, "--ruleset", help=Messages.HELP_FEEDBACK_RULESET
    ),
    list_feedback: bool = typer.Option(False, "--list", help=Messages.HELP_FEEDBACK_LIST),
    limit: int = typer.Option(20, "--limit", min=1, help=Messages.HELP_CACHE_LIMIT),
) -> None:
    config = load_config()
    setup_logger(config)
    client = ScanVaultClient(config=config)
    if key is None or list_feedback:
        try:
            rows = client.list_feedback(limit, key=key)
        except DurableStoreError as exc:
            console.print(_styled(str(exc), Styles.ERROR))
            raise typer.Exit(code=1)
        _render_feedback(rows)
        return
    if verdict is None:
        console.print(_styled(Messages.ERROR_FEEDBACK_MISSING_VERDICT, Styles.ERROR))
        raise typer.Exit(code=1)
    version = ruleset_version or config.ruleset_version
    try:
        feedback_id = client.record_feedback(
            key,
            verdict,
            rule_id=rule_id,
            note=note,
            ruleset_version=version,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except DurableStoreError as exc:
        log_error("Feedback not recorded", exc)
        console.print(_styled(str(exc), Styles.ERROR))
        raise typer.Exit(code=1)
    console.print(
        _styled(
            Messages.INFO_FEEDBACK_RECORDED.format(
                verdict=verdict.strip().lower(),
                feedback_id=feedback_id,
                key=key.strip().lower()[:12],
                version=version,
            ),
            Styles.SUCCESS,
        )
    )


def _render_feedback(rows: list[dict[str, object]]) -> None:
    if not rows:
        console.print(_styled(Messages.INFO_FEEDBACK_EMPTY, Styles.INFO))
        return
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_KEY)
    table.add_column(Messages.TABLE_HEADER_VERSION)
    table.add_column(Messages.TABLE_HEADER_RULE)
    table.add_column(Messages.TABLE_HEADER_VERDICT)
    table.add_column(Messages.TABLE_HEADER_NOTE, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_RECORDED)
    for row in rows:
        table.add_row(
            str(row["key"])[:12],
            str(row["ruleset_version"]),
            str(row["rule_id"] or "-"),
            str(row["verdict"]),
            str(row["note"] or "-"),
            str(row["created_at"]),
        )
    console.print(_styled(Messages.TABLE_FEEDBACK_TITLE, Styles.TITLE))
    console.print(table)


@app.command(help=Messages.HELP_CONFIG)
def config(
    show: bool = typer.Option(False, "--show", help=Messages.HELP_SHOW_CONFIG),
    set_capacity_option: int | None = typer.Option(
        None, "--set-capacity", help=Messages.HELP_SET_CAPACITY
    ),
    set_ttl_option: int | None = typer.Option(None, "--set-ttl", help=Messages.HELP_SET_TTL),
    set_fill_timeout_option: int | None = typer.Option(
        None, "--set-fill-timeout", help=Messages.HELP_SET_FILL_TIMEOUT
    ),
    set_shards_option: int | None = typer.Option(
        None, "--set-shards", help=Messages.HELP_SET_SHARDS
    ),
    set_durable_option: str | None = typer.Option(
        None, "--set-durable", help=Messages.HELP_SET_DURABLE
    ),
    set_read_through_option: str | None = typer.Option(
        None, "--set-read-through", help=Messages.HELP_SET_READ_THROUGH
    ),
    set_log_level_option: str | None = typer.Option(
        None, "--set-log-level", help=Messages.HELP_SET_LOG_LEVEL
    ),
) -> None:
    changed = False
    try:
        if set_capacity_option is not None:
            set_cache_capacity(set_capacity_option)
            changed = True
        if set_ttl_option is not None:
            set_ttl_seconds(set_ttl_option)
            changed = True
        if set_fill_timeout_option is not None:
            set_fill_timeout_ms(set_fill_timeout_option)
            changed = True
        if set_shards_option is not None:
            set_cache_shards(set_shards_option)
            changed = True
        if set_durable_option is not None:
            set_durable_enabled(_parse_boolean(set_durable_option))
            changed = True
        if set_read_through_option is not None:
            set_durable_read_through(_parse_boolean(set_read_through_option))
            changed = True
        if set_log_level_option is not None:
            set_log_level(set_log_level_option)
            changed = True
    except (ScanVaultConfigError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    if changed:
        console.print(_styled(Messages.INFO_CONFIG_UPDATED, Styles.SUCCESS))
    if show or not changed:
        _render_config()


def _render_config() -> None:
    values = config_as_dict(load_config())
    console.print(
        _styled(
            Messages.INFO_CONFIG_SUMMARY.format(
                capacity=values["cache_capacity"],
                ttl=values["ttl_seconds"],
                timeout=values["fill_timeout_ms"],
                shards=values["cache_shards"],
                workers=values["max_fill_workers"],
                version=values["ruleset_version"],
                durable="yes" if values["durable_enabled"] else "no",
                read_through="yes" if values["durable_read_through"] else "no",
                durable_max=values["durable_max_entries"],
                log_level=values["log_level"],
                data_dir=config_module.data_dir(),
            ),
            Styles.INFO,
        )
    )


def _render_result(text: str, result: ScanResult) -> None:
    """Print *result* as a table, quoting spans out of *text*.

    Offsets refer to the text the entry was first scanned from. A cache hit
    for a whitespace variant of that text may not line up with *text*, so
    spans are only quoted when the lengths agree and always clamped to it.
    """
    source = format_cache_source(result.served_from_cache, console)
    console.print(
        _styled(
            Messages.TABLE_TITLE.format(source=source, version=result.ruleset_version),
            Styles.TITLE,
        )
    )
    if not result.highlights:
        console.print(_styled(Messages.INFO_NO_HIGHLIGHTS, Styles.INFO))
        return
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_SPAN, justify="right")
    table.add_column(Messages.TABLE_HEADER_TEXT, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_RULE)
    table.add_column(Messages.TABLE_HEADER_LABEL)
    table.add_column(Messages.TABLE_HEADER_SEVERITY)
    table.add_column(Messages.TABLE_HEADER_SUGGESTION, overflow="fold")
    for item in result.highlights:
        original = _span_text(text, item.start_offset, item.end_offset, result.text_length)
        table.add_row(
            f"{item.start_offset}-{item.end_offset}",
            _format_preview(original),
            item.rule_id,
            item.label,
            item.severity,
            format_suggestion(original, item.suggested_rewrite, console),
        )
    console.print(table)


def _span_text(text: str, start: int, end: int, scanned_length: int | None) -> str:
    if scanned_length is not None and scanned_length != len(text):
        return ""
    end = min(end, len(text))
    if start >= end:
        return ""
    return text[start:end]


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def _format_preview(text: str | None, limit: int = 60) -> str:
    if not text:
        return "-"
    snippet = " ".join(text.split())
    if len(snippet) <= limit:
        return snippet
    return snippet[: limit - 1].rstrip() + "…"


def run(argv: Sequence[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    app(args=args)
