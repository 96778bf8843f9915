"""Durable write-through targets for scan entries, backed by SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import DurableStoreError
from .keys import CompositeKey
from .models import Highlight, ScanEntry
from .text import Messages

logger = logging.getLogger(__name__)

DB_FILENAME = "scans.db"
DURABLE_MAX_ENTRIES = 50_000
FEEDBACK_VERDICTS = ("accepted", "rejected")


@runtime_checkable
class DurableStore(Protocol):
    def persist(self, entry: ScanEntry) -> bool:
        ...  # pragma: no cover - protocol


class NullDurableStore:
    """Accepts every write and keeps nothing."""

    def persist(self, entry: ScanEntry) -> bool:
        return True

    def load(self, composite: CompositeKey) -> ScanEntry | None:
        return None


def _connect(db_path: Path, *, readonly: bool = False) -> sqlite3.Connection:
    if readonly:
        conn = sqlite3.connect(f"file:{db_path.as_posix()}?mode=ro", uri=True)
    else:
        conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.OperationalError as exc:
        if "readonly" not in str(exc).lower():
            raise
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    if readonly:
        conn.execute("PRAGMA query_only = ON;")
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS scan_entry (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            cache_key TEXT NOT NULL,
            ruleset_version TEXT NOT NULL,
            highlights TEXT NOT NULL,
            text_length INTEGER NOT NULL DEFAULT 0,
            scanned_at TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            UNIQUE(cache_key, ruleset_version)
        );

        CREATE INDEX IF NOT EXISTS idx_scan_entry_scanned
            ON scan_entry(scanned_at);

        CREATE TABLE IF NOT EXISTS scan_feedback (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            cache_key TEXT NOT NULL,
            ruleset_version TEXT NOT NULL,
            rule_id TEXT,
            verdict TEXT NOT NULL,
            note TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_scan_feedback_key
            ON scan_feedback(cache_key, ruleset_version);
        """
    )


def _table_exists(conn: sqlite3.Connection, name: str = "scan_entry") -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def _serialize_highlights(highlights: tuple[Highlight, ...]) -> str:
    return json.dumps([item.to_dict() for item in highlights], ensure_ascii=False)


def _deserialize_highlights(raw: str | None) -> tuple[Highlight, ...]:
    if not raw:
        return ()
    return tuple(Highlight.from_dict(item) for item in json.loads(raw))


def _row_to_entry(row: sqlite3.Row) -> ScanEntry:
    return ScanEntry(
        key=row["cache_key"],
        ruleset_version=row["ruleset_version"],
        highlights=_deserialize_highlights(row["highlights"]),
        scanned_at=datetime.fromisoformat(row["scanned_at"]),
        expires_at=datetime.fromisoformat(row["expires_at"]),
        text_length=int(row["text_length"] or 0),
    )


class SQLiteDurableStore:
    """Audit/recovery copy of every filled scan entry.

    ``persist`` reports failure by returning False; it never raises. The
    other operations raise :class:`DurableStoreError` when the file cannot be
    opened or read as a database.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        max_entries: int = DURABLE_MAX_ENTRIES,
    ) -> None:
        self.db_path = Path(db_path).expanduser()
        self.max_entries = max_entries

    def persist(self, entry: ScanEntry) -> bool:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = _connect(self.db_path)
        except (OSError, sqlite3.Error) as exc:
            logger.warning("Cannot open durable store %s: %s", self.db_path, exc)
            return False
        try:
            _ensure_schema(conn)
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO scan_entry (
                        cache_key,
                        ruleset_version,
                        highlights,
                        text_length,
                        scanned_at,
                        expires_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.key,
                        entry.ruleset_version,
                        _serialize_highlights(entry.highlights),
                        int(entry.text_length),
                        entry.scanned_at.isoformat(),
                        entry.expires_at.isoformat(),
                    ),
                )
                if self.max_entries > 0:
                    self._prune_overflow(conn, self.max_entries)
            return True
        except sqlite3.Error as exc:
            logger.warning("Durable write failed for %s: %s", entry.key, exc)
            return False
        finally:
            conn.close()

    def load(self, composite: CompositeKey) -> ScanEntry | None:
        if not self.db_path.exists():
            return None
        try:
            conn = _connect(self.db_path, readonly=True)
            try:
                if not _table_exists(conn):
                    return None
                row = conn.execute(
                    """
                    SELECT cache_key, ruleset_version, highlights, text_length,
                           scanned_at, expires_at
                    FROM scan_entry
                    WHERE cache_key = ? AND ruleset_version = ?
                    """,
                    (composite.key, composite.ruleset_version),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise self._unusable(exc) from exc
        if row is None:
            return None
        return _row_to_entry(row)

    def list_entries(self, limit: int = 50) -> list[dict[str, object]]:
        """Return the most recently scanned entries as plain dicts."""

        if not self.db_path.exists():
            return []
        try:
            conn = _connect(self.db_path, readonly=True)
            try:
                if not _table_exists(conn):
                    return []
                rows = conn.execute(
                    """
                    SELECT cache_key, ruleset_version, highlights, text_length,
                           scanned_at, expires_at
                    FROM scan_entry
                    ORDER BY scanned_at DESC, id DESC
                    LIMIT ?
                    """,
                    (int(limit),),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise self._unusable(exc) from exc
        entries: list[dict[str, object]] = []
        for row in rows:
            entries.append(
                {
                    "key": row["cache_key"],
                    "ruleset_version": row["ruleset_version"],
                    "highlight_count": len(json.loads(row["highlights"] or "[]")),
                    "text_length": int(row["text_length"] or 0),
                    "scanned_at": row["scanned_at"],
                    "expires_at": row["expires_at"],
                }
            )
        return entries

    def count(self) -> int:
        if not self.db_path.exists():
            return 0
        try:
            conn = _connect(self.db_path, readonly=True)
            try:
                if not _table_exists(conn):
                    return 0
                row = conn.execute("SELECT COUNT(*) AS total FROM scan_entry").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise self._unusable(exc) from exc
        return int(row["total"] if row is not None else 0)

    def prune(self, *, now: datetime | None = None, max_entries: int | None = None) -> int:
        """Delete expired rows and trim to *max_entries*; return rows removed."""

        if not self.db_path.exists():
            return 0
        cutoff = (now or datetime.now(timezone.utc)).isoformat()
        limit = self.max_entries if max_entries is None else max_entries
        try:
            conn = _connect(self.db_path)
            try:
                _ensure_schema(conn)
                with conn:
                    cursor = conn.execute(
                        "DELETE FROM scan_entry WHERE expires_at <= ?",
                        (cutoff,),
                    )
                    removed = max(cursor.rowcount, 0)
                    if limit > 0:
                        removed += self._prune_overflow(conn, limit)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise self._unusable(exc) from exc
        return removed

    def clear(self) -> int:
        """Remove the database file, returning the number of scan rows it held.

        A file SQLite cannot read is still removed; it reports zero rows.
        Feedback rows live in the same file and go with it.
        """

        if not self.db_path.exists():
            return 0
        try:
            total = self.count()
        except DurableStoreError as exc:
            logger.warning("Clearing unreadable durable store: %s", exc)
            total = 0
        try:
            self.db_path.unlink()
            for suffix in ("-wal", "-shm"):
                sidecar = Path(f"{self.db_path}{suffix}")
                if sidecar.exists():
                    sidecar.unlink()
        except OSError as exc:
            raise self._unusable(exc) from exc
        return total

    def record_feedback(
        self,
        key: str,
        ruleset_version: str,
        verdict: str,
        *,
        rule_id: str | None = None,
        note: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Store a user verdict on a scan result and return the new row id.

        Feedback is keyed the same way as scan entries, so a verdict always
        refers to one text under one ruleset version.
        """

        clean_verdict = (verdict or "").strip().lower()
        if clean_verdict not in FEEDBACK_VERDICTS:
            raise ValueError(
                Messages.ERROR_FEEDBACK_VERDICT.format(
                    verdict=verdict, choices=", ".join(FEEDBACK_VERDICTS)
                )
            )
        created_at = (now or datetime.now(timezone.utc)).isoformat()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = _connect(self.db_path)
            try:
                _ensure_schema(conn)
                with conn:
                    cursor = conn.execute(
                        """
                        INSERT INTO scan_feedback (
                            cache_key,
                            ruleset_version,
                            rule_id,
                            verdict,
                            note,
                            created_at
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            key,
                            ruleset_version,
                            rule_id or None,
                            clean_verdict,
                            note or None,
                            created_at,
                        ),
                    )
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as exc:
            raise self._unusable(exc) from exc
        logger.debug("Recorded %s feedback for %s@%s", clean_verdict, key, ruleset_version)
        return int(cursor.lastrowid)

    def list_feedback(
        self,
        limit: int = 50,
        *,
        key: str | None = None,
    ) -> list[dict[str, object]]:
        """Return recorded feedback, newest first, optionally for one key."""

        if not self.db_path.exists():
            return []
        query = """
            SELECT id, cache_key, ruleset_version, rule_id, verdict, note, created_at
            FROM scan_feedback
        """
        params: list[object] = []
        if key:
            query += " WHERE cache_key = ?"
            params.append(key)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(int(limit))
        try:
            conn = _connect(self.db_path, readonly=True)
            try:
                if not _table_exists(conn, "scan_feedback"):
                    return []
                rows = conn.execute(query, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise self._unusable(exc) from exc
        return [
            {
                "id": int(row["id"]),
                "key": row["cache_key"],
                "ruleset_version": row["ruleset_version"],
                "rule_id": row["rule_id"],
                "verdict": row["verdict"],
                "note": row["note"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def _unusable(self, exc: Exception) -> DurableStoreError:
        return DurableStoreError(
            Messages.ERROR_DURABLE_UNREADABLE.format(path=self.db_path, reason=exc)
        )

    @staticmethod
    def _prune_overflow(conn: sqlite3.Connection, max_entries: int) -> int:
        row = conn.execute("SELECT COUNT(*) AS total FROM scan_entry").fetchone()
        total = int(row["total"] if row is not None else 0)
        overflow = total - max_entries
        if overflow <= 0:
            return 0
        conn.execute(
            """
            DELETE FROM scan_entry
            WHERE id IN (
                SELECT id FROM scan_entry
                ORDER BY scanned_at ASC, id ASC
                LIMIT ?
            )
            """,
            (overflow,),
        )
        return overflow
