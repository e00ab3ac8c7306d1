"""Database connection, DDL, and timestamp helpers for lexicon-sync."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from lexicon_sync.exceptions import DatabaseError

SCHEMA_VERSION = "1.0"

# ---------------------------------------------------------------------------
# META type adapter/converter
# ---------------------------------------------------------------------------

def encode_json(obj: Any) -> str:
    """Serialize a JSON column value with a stable key order."""
    return json.dumps(obj, sort_keys=True, ensure_ascii=False)


def _adapt_metadata(obj: dict) -> str:
    return encode_json(obj)


def _convert_metadata(data: bytes) -> Any:
    if data is None or data == b"":
        return None
    return json.loads(data)


sqlite3.register_adapter(dict, _adapt_metadata)
sqlite3.register_converter("META", _convert_metadata)


# ---------------------------------------------------------------------------
# DDL statements
# ---------------------------------------------------------------------------

_DDL = """
-- Meta table
CREATE TABLE IF NOT EXISTS meta (
    key TEXT NOT NULL,
    value TEXT,
    UNIQUE (key)
);

-- Persisted sync markers
CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT NOT NULL
);

-- Legacy flat word table (one row per lemma + source POS)
CREATE TABLE IF NOT EXISTS words (
    rowid INTEGER PRIMARY KEY,
    lemma TEXT NOT NULL,
    pos TEXT NOT NULL,
    level TEXT,
    english TEXT,
    example_de TEXT,
    example_en TEXT,
    gender TEXT,
    plural TEXT,
    separable BOOLEAN,
    aux TEXT,
    praesens_ich TEXT,
    praesens_er TEXT,
    praeteritum TEXT,
    partizip_ii TEXT,
    perfekt TEXT,
    comparative TEXT,
    superlative TEXT,
    approved BOOLEAN CHECK( approved IN (0, 1) ) DEFAULT 0 NOT NULL,
    canonical BOOLEAN CHECK( canonical IN (0, 1) ) DEFAULT 0 NOT NULL,
    complete BOOLEAN CHECK( complete IN (0, 1) ) DEFAULT 0 NOT NULL,
    translations META,
    examples META,
    pos_attributes META,
    sources_csv TEXT,
    source_notes TEXT,
    enrichment_applied_at TEXT,
    enrichment_method TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (lemma, pos)
);
CREATE INDEX IF NOT EXISTS word_pos_index ON words (pos);

-- Canonical lexemes
CREATE TABLE IF NOT EXISTS lexemes (
    id TEXT PRIMARY KEY,
    lemma TEXT NOT NULL,
    language TEXT NOT NULL,
    pos TEXT NOT NULL,
    gender TEXT,
    metadata META NOT NULL,
    frequency_rank INTEGER,
    source_ids META NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS lexeme_pos_index ON lexemes (pos);
CREATE INDEX IF NOT EXISTS lexeme_updated_at_index ON lexemes (updated_at);

CREATE TABLE IF NOT EXISTS inflections (
    id TEXT PRIMARY KEY,
    lexeme_id TEXT NOT NULL REFERENCES lexemes (id) ON DELETE CASCADE,
    form TEXT NOT NULL,
    features META NOT NULL,
    audio_asset TEXT,
    source_revision TEXT,
    checksum TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS inflection_lexeme_index ON inflections (lexeme_id);
CREATE INDEX IF NOT EXISTS inflection_updated_at_index ON inflections (updated_at);

-- Generated practice tasks
CREATE TABLE IF NOT EXISTS task_specs (
    id TEXT PRIMARY KEY,
    lexeme_id TEXT NOT NULL REFERENCES lexemes (id) ON DELETE CASCADE,
    pos TEXT NOT NULL,
    task_type TEXT NOT NULL,
    renderer TEXT NOT NULL,
    prompt META NOT NULL,
    solution META NOT NULL,
    hints META,
    metadata META,
    revision INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS task_spec_lexeme_index ON task_specs (lexeme_id);
CREATE INDEX IF NOT EXISTS task_spec_type_index ON task_specs (pos, task_type);

-- Content packs
CREATE TABLE IF NOT EXISTS content_packs (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    language TEXT NOT NULL,
    pos_scope TEXT NOT NULL,
    license TEXT NOT NULL,
    license_notes TEXT,
    version INTEGER NOT NULL,
    checksum TEXT,
    metadata META,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (slug, version)
);

CREATE TABLE IF NOT EXISTS pack_lexeme_map (
    pack_id TEXT NOT NULL REFERENCES content_packs (id) ON DELETE CASCADE,
    lexeme_id TEXT NOT NULL REFERENCES lexemes (id) ON DELETE CASCADE,
    primary_task_id TEXT REFERENCES task_specs (id) ON DELETE SET NULL,
    position INTEGER NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (pack_id, lexeme_id)
);
CREATE INDEX IF NOT EXISTS pack_lexeme_lexeme_index ON pack_lexeme_map (lexeme_id);
"""


def connect(db_path: str | Path = ":memory:") -> sqlite3.Connection:
    """Open a database connection with foreign keys enforced."""
    db_path_str = str(db_path)
    conn = sqlite3.connect(
        db_path_str,
        detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        check_same_thread=False,
    )
    conn.execute("PRAGMA foreign_keys = ON")
    if db_path_str != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize all tables if they don't exist. Set schema version."""
    check_schema_version(conn)
    conn.executescript(_DDL)
    conn.execute(
        "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
        (SCHEMA_VERSION,),
    )
    conn.execute(
        "INSERT OR IGNORE INTO meta (key, value) VALUES ('created_at', ?)",
        (utc_timestamp(),),
    )
    conn.commit()


def check_schema_version(conn: sqlite3.Connection) -> None:
    """Verify the database schema version is compatible."""
    try:
        row = conn.execute(
            "SELECT value FROM meta WHERE key = 'schema_version'"
        ).fetchone()
    except sqlite3.OperationalError:
        # meta table doesn't exist - uninitialized DB
        return
    if row is None:
        return
    version = row[0]
    if version != SCHEMA_VERSION:
        raise DatabaseError(
            f"Incompatible schema version: {version} "
            f"(expected {SCHEMA_VERSION})"
        )


def open_database(db_path: str | Path) -> sqlite3.Connection:
    """Connect and make sure the schema exists."""
    try:
        conn = connect(db_path)
    except sqlite3.Error as e:
        raise DatabaseError(f"Cannot open database {db_path}: {e}") from e
    init_db(conn)
    return conn


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

Clock = Callable[[], str]

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def utc_timestamp() -> str:
    """Current UTC time as a sortable ISO-8601 string with microseconds."""
    return format_timestamp(datetime.now(timezone.utc))


class MonotonicClock:
    """Clock whose successive readings are strictly increasing.

    ``updated_at`` comparisons drive delta syncs, so two writes in the same
    microsecond must still be ordered.
    """

    def __init__(self, now: Callable[[], datetime] | None = None):
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._last: datetime | None = None

    def __call__(self) -> str:
        current = self._now()
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return format_timestamp(current)
