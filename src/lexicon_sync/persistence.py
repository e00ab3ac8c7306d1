"""Reconcile durable tables with one run's seed sets, in bounded batches.

Every chunk commits in its own transaction.  Upserts only rewrite a row
(and its ``updated_at``) when a mutable column actually differs, so
replaying the same input is a no-op.  A :class:`CancellationToken` is
checked before each chunk; cancelling leaves storage at a chunk boundary.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Sequence, TypeVar

from lexicon_sync.db import Clock, encode_json, utc_timestamp
from lexicon_sync.exceptions import SyncCancelled
from lexicon_sync.models import (
    AggregatedWord,
    InflectionSeed,
    LexemeInventory,
    LexemeSeed,
    PackBundle,
    PartOfSpeech,
    TaskSpecSeed,
)

logger = logging.getLogger(__name__)

WORDS_BATCH_SIZE = 500
LEXEME_BATCH_SIZE = 500
INFLECTION_DELETE_CHUNK_SIZE = 500
TASK_DELETE_CHUNK_SIZE = 1000
TASK_INSERT_CHUNK_SIZE = 500

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag shared with batch operations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled("Operation cancelled between batches")


@dataclass(slots=True)
class ReconcileStats:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    def __iadd__(self, other: ReconcileStats) -> ReconcileStats:
        self.inserted += other.inserted
        self.updated += other.updated
        self.deleted += other.deleted
        return self


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _check(token: CancellationToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


# ---------------------------------------------------------------------------
# Generic upsert / delete
# ---------------------------------------------------------------------------

def _upsert_sql(
    table: str,
    columns: Sequence[str],
    key_columns: Sequence[str],
    mutable: Sequence[str],
    *,
    force_touch: bool = False,
) -> str:
    all_columns = list(columns) + ["created_at", "updated_at"]
    assignments = [f"{c} = excluded.{c}" for c in mutable] + ["updated_at = excluded.updated_at"]
    sql = (
        f"INSERT INTO {table} ({', '.join(all_columns)}) "
        f"VALUES ({_placeholders(len(all_columns))}) "
        f"ON CONFLICT ({', '.join(key_columns)}) DO UPDATE SET {', '.join(assignments)}"
    )
    if not force_touch:
        changed = " OR ".join(f"{table}.{c} IS NOT excluded.{c}" for c in mutable)
        sql += f" WHERE {changed}"
    return sql


def _existing_keys(
    conn: sqlite3.Connection, table: str, key_column: str, keys: Sequence[Any]
) -> set[Any]:
    if not keys:
        return set()
    rows = conn.execute(
        f"SELECT {key_column} FROM {table} WHERE {key_column} IN ({_placeholders(len(keys))})",
        list(keys),
    ).fetchall()
    return {row[0] for row in rows}


def _upsert_rows(
    conn: sqlite3.Connection,
    table: str,
    columns: Sequence[str],
    mutable: Sequence[str],
    rows: Sequence[tuple],
    *,
    clock: Clock,
    batch_size: int,
    token: CancellationToken | None,
    force_touch: bool = False,
) -> ReconcileStats:
    """Upsert rows keyed by their first column."""
    stats = ReconcileStats()
    sql = _upsert_sql(table, columns, (columns[0],), mutable, force_touch=force_touch)
    for chunk in chunked(rows, batch_size):
        _check(token)
        now = clock()
        with conn:
            existing = _existing_keys(conn, table, columns[0], [r[0] for r in chunk])
            cursor = conn.executemany(sql, [tuple(r) + (now, now) for r in chunk])
            inserted = len(chunk) - len(existing)
            stats.inserted += inserted
            stats.updated += max(cursor.rowcount - inserted, 0)
    return stats


def _delete_ids(
    conn: sqlite3.Connection,
    table: str,
    key_column: str,
    ids: Sequence[Any],
    *,
    chunk_size: int,
    token: CancellationToken | None,
) -> int:
    deleted = 0
    for chunk in chunked(list(ids), chunk_size):
        _check(token)
        with conn:
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE {key_column} IN ({_placeholders(len(chunk))})",
                list(chunk),
            )
            deleted += cursor.rowcount
    return deleted


# ---------------------------------------------------------------------------
# Legacy words
# ---------------------------------------------------------------------------

_WORD_COLUMNS = (
    "lemma", "pos", "level", "english", "example_de", "example_en", "gender",
    "plural", "separable", "aux", "praesens_ich", "praesens_er", "praeteritum",
    "partizip_ii", "perfekt", "comparative", "superlative", "approved",
    "canonical", "complete", "translations", "examples", "pos_attributes",
    "sources_csv", "source_notes", "enrichment_applied_at", "enrichment_method",
)


def _word_values(word: AggregatedWord) -> tuple:
    pos = word.pos.value if isinstance(word.pos, PartOfSpeech) else word.pos
    translations = None
    if word.translations:
        translations = encode_json([
            {"value": t.value, "source": t.source, "language": t.language,
             "confidence": t.confidence}
            for t in word.translations
        ])
    examples = None
    if word.examples:
        examples = encode_json([
            {"sentence": e.sentence, "translations": e.translations}
            for e in word.examples
        ])
    attrs = word.pos_attributes.to_dict() if word.pos_attributes else None
    return (
        word.lemma, pos, word.level, word.english, word.example_de,
        word.example_en, word.gender, word.plural, word.separable, word.aux,
        word.praesens_ich, word.praesens_er, word.praeteritum, word.partizip_ii,
        word.perfekt, word.comparative, word.superlative, word.approved,
        word.canonical, word.complete, translations, examples, attrs or None,
        ";".join(word.sources) or None, word.source_notes,
        word.enrichment_applied_at, word.enrichment_method,
    )


def sync_legacy_words(
    conn: sqlite3.Connection,
    words: Iterable[AggregatedWord],
    *,
    clock: Clock = utc_timestamp,
    batch_size: int = WORDS_BATCH_SIZE,
    token: CancellationToken | None = None,
) -> ReconcileStats:
    """Mirror aggregated words into the flat ``words`` table."""
    word_list = list(words)
    desired = {(w.lemma, w.pos.value if isinstance(w.pos, PartOfSpeech) else w.pos)
               for w in word_list}
    existing = conn.execute("SELECT rowid, lemma, pos FROM words").fetchall()
    stale = [row["rowid"] for row in existing if (row["lemma"], row["pos"]) not in desired]

    stats = ReconcileStats()
    stats.deleted = _delete_ids(
        conn, "words", "rowid", stale, chunk_size=batch_size, token=token,
    )

    sql = _upsert_sql("words", _WORD_COLUMNS, ("lemma", "pos"), _WORD_COLUMNS[2:])
    existing_keys = {(row["lemma"], row["pos"]) for row in existing}
    for chunk in chunked(word_list, batch_size):
        _check(token)
        now = clock()
        values = [_word_values(w) for w in chunk]
        with conn:
            cursor = conn.executemany(sql, [v + (now, now) for v in values])
        inserted = sum(1 for v in values if (v[0], v[1]) not in existing_keys)
        stats.inserted += inserted
        stats.updated += max(cursor.rowcount - inserted, 0)
    logger.info(
        "words: %d inserted, %d updated, %d deleted",
        stats.inserted, stats.updated, stats.deleted,
    )
    return stats


# ---------------------------------------------------------------------------
# Lexemes and inflections
# ---------------------------------------------------------------------------

_LEXEME_COLUMNS = (
    "id", "lemma", "language", "pos", "gender", "metadata", "frequency_rank", "source_ids",
)
_INFLECTION_COLUMNS = (
    "id", "lexeme_id", "form", "features", "audio_asset", "source_revision", "checksum",
)


def _lexeme_values(lexeme: LexemeSeed) -> tuple:
    return (
        lexeme.id, lexeme.lemma, lexeme.language, lexeme.pos, lexeme.gender,
        encode_json(lexeme.metadata), lexeme.frequency_rank,
        encode_json(list(lexeme.source_ids)),
    )


def _inflection_values(inflection: InflectionSeed) -> tuple:
    return (
        inflection.id, inflection.lexeme_id, inflection.form,
        encode_json(inflection.features), inflection.audio_asset,
        inflection.source_revision, inflection.checksum,
    )


def upsert_lexemes(
    conn: sqlite3.Connection,
    lexemes: Sequence[LexemeSeed],
    *,
    clock: Clock = utc_timestamp,
    batch_size: int = LEXEME_BATCH_SIZE,
    token: CancellationToken | None = None,
) -> ReconcileStats:
    """Delete lexemes absent from *lexemes*, then upsert the rest.

    Deleting a lexeme cascades to its inflections, task specs and pack
    memberships.
    """
    incoming = {lexeme.id for lexeme in lexemes}
    existing = [row[0] for row in conn.execute("SELECT id FROM lexemes")]
    stale = [lexeme_id for lexeme_id in existing if lexeme_id not in incoming]

    stats = ReconcileStats()
    stats.deleted = _delete_ids(
        conn, "lexemes", "id", stale, chunk_size=batch_size, token=token,
    )
    stats += _upsert_rows(
        conn, "lexemes", _LEXEME_COLUMNS, _LEXEME_COLUMNS[1:],
        [_lexeme_values(l) for l in lexemes],
        clock=clock, batch_size=batch_size, token=token,
    )
    return stats


def upsert_inflections(
    conn: sqlite3.Connection,
    inflections: Sequence[InflectionSeed],
    *,
    clock: Clock = utc_timestamp,
    batch_size: int = LEXEME_BATCH_SIZE,
    token: CancellationToken | None = None,
) -> ReconcileStats:
    """Replace the inflection set of every lexeme that *inflections* covers.

    Lexemes that lose an inflection get their ``updated_at`` bumped so a
    delta sync regenerates their tasks.
    """
    incoming = {inflection.id for inflection in inflections}
    lexeme_ids = sorted({inflection.lexeme_id for inflection in inflections})

    stale: list[str] = []
    touched: set[str] = set()
    for chunk in chunked(lexeme_ids, INFLECTION_DELETE_CHUNK_SIZE):
        rows = conn.execute(
            f"SELECT id, lexeme_id FROM inflections "
            f"WHERE lexeme_id IN ({_placeholders(len(chunk))})",
            list(chunk),
        ).fetchall()
        for row in rows:
            if row["id"] not in incoming:
                stale.append(row["id"])
                touched.add(row["lexeme_id"])

    stats = ReconcileStats()
    stats.deleted = _delete_ids(
        conn, "inflections", "id", stale,
        chunk_size=INFLECTION_DELETE_CHUNK_SIZE, token=token,
    )
    touch_lexemes(conn, sorted(touched), clock=clock, token=token)
    stats += _upsert_rows(
        conn, "inflections", _INFLECTION_COLUMNS, _INFLECTION_COLUMNS[1:],
        [_inflection_values(i) for i in inflections],
        clock=clock, batch_size=batch_size, token=token,
    )
    return stats


def touch_lexemes(
    conn: sqlite3.Connection,
    lexeme_ids: Sequence[str],
    *,
    clock: Clock = utc_timestamp,
    token: CancellationToken | None = None,
) -> None:
    for chunk in chunked(list(lexeme_ids), LEXEME_BATCH_SIZE):
        _check(token)
        with conn:
            conn.execute(
                f"UPDATE lexemes SET updated_at = ? WHERE id IN ({_placeholders(len(chunk))})",
                [clock(), *chunk],
            )


def upsert_lexeme_inventory(
    conn: sqlite3.Connection,
    inventory: LexemeInventory,
    *,
    clock: Clock = utc_timestamp,
    batch_size: int = LEXEME_BATCH_SIZE,
    token: CancellationToken | None = None,
) -> dict[str, ReconcileStats]:
    """Reconcile lexemes then inflections against *inventory*."""
    lexeme_stats = upsert_lexemes(
        conn, inventory.lexemes, clock=clock, batch_size=batch_size, token=token,
    )
    inflection_stats = upsert_inflections(
        conn, inventory.inflections, clock=clock, batch_size=batch_size, token=token,
    )
    # Lexemes that now have no inflections at all are not covered above.
    covered = {i.lexeme_id for i in inventory.inflections}
    orphaned = [l.id for l in inventory.lexemes if l.id not in covered]
    for chunk in chunked(orphaned, INFLECTION_DELETE_CHUNK_SIZE):
        _check(token)
        with conn:
            cursor = conn.execute(
                f"DELETE FROM inflections WHERE lexeme_id IN ({_placeholders(len(chunk))})",
                list(chunk),
            )
            inflection_stats.deleted += cursor.rowcount
    logger.info(
        "lexemes: %d inserted, %d updated, %d deleted; "
        "inflections: %d inserted, %d updated, %d deleted",
        lexeme_stats.inserted, lexeme_stats.updated, lexeme_stats.deleted,
        inflection_stats.inserted, inflection_stats.updated, inflection_stats.deleted,
    )
    return {"lexemes": lexeme_stats, "inflections": inflection_stats}


# ---------------------------------------------------------------------------
# Task specs
# ---------------------------------------------------------------------------

_TASK_COLUMNS = (
    "id", "lexeme_id", "pos", "task_type", "renderer", "prompt", "solution",
    "hints", "metadata", "revision",
)


def _task_values(task: TaskSpecSeed) -> tuple:
    return (
        task.id, task.lexeme_id, task.pos, task.task_type, task.renderer,
        encode_json(task.prompt), encode_json(task.solution),
        encode_json(task.hints) if task.hints is not None else None,
        encode_json(task.metadata) if task.metadata is not None else None,
        task.revision,
    )


def upsert_task_specs(
    conn: sqlite3.Connection,
    tasks: Sequence[TaskSpecSeed],
    *,
    clock: Clock = utc_timestamp,
    batch_size: int = TASK_INSERT_CHUNK_SIZE,
    token: CancellationToken | None = None,
    force_touch: bool = False,
) -> ReconcileStats:
    """Upsert *tasks*; with *force_touch* every row's ``updated_at`` advances."""
    return _upsert_rows(
        conn, "task_specs", _TASK_COLUMNS, _TASK_COLUMNS[2:],
        [_task_values(t) for t in tasks],
        clock=clock, batch_size=batch_size, token=token, force_touch=force_touch,
    )


def delete_task_specs(
    conn: sqlite3.Connection,
    task_ids: Sequence[str],
    *,
    token: CancellationToken | None = None,
) -> int:
    return _delete_ids(
        conn, "task_specs", "id", task_ids,
        chunk_size=TASK_DELETE_CHUNK_SIZE, token=token,
    )


def upsert_task_inventory(
    conn: sqlite3.Connection,
    tasks: Sequence[TaskSpecSeed],
    *,
    clock: Clock = utc_timestamp,
    token: CancellationToken | None = None,
) -> ReconcileStats:
    """Make ``task_specs`` equal to *tasks*: stale rows go, the rest upsert."""
    incoming = {task.id for task in tasks}
    existing = [row[0] for row in conn.execute("SELECT id FROM task_specs")]
    stale = [task_id for task_id in existing if task_id not in incoming]
    stats = ReconcileStats()
    stats.deleted = delete_task_specs(conn, stale, token=token)
    stats += upsert_task_specs(conn, tasks, clock=clock, token=token)
    logger.info(
        "task_specs: %d inserted, %d updated, %d deleted",
        stats.inserted, stats.updated, stats.deleted,
    )
    return stats


# ---------------------------------------------------------------------------
# Content packs
# ---------------------------------------------------------------------------

_PACK_COLUMNS = (
    "id", "slug", "name", "description", "language", "pos_scope", "license",
    "license_notes", "version", "checksum", "metadata",
)
_PACK_LEXEME_COLUMNS = ("pack_id", "lexeme_id", "primary_task_id", "position", "notes")


def upsert_pack_bundles(
    conn: sqlite3.Connection,
    bundles: Sequence[PackBundle],
    *,
    clock: Clock = utc_timestamp,
    token: CancellationToken | None = None,
) -> ReconcileStats:
    """Persist pack descriptors and their lexeme ordering.

    Lexemes, inflections and tasks referenced by a bundle must already be
    stored; a pack's membership is replaced wholesale.  Stored packs absent
    from *bundles* are deleted along with their membership, and count
    towards ``deleted``.
    """
    stats = ReconcileStats()
    incoming = {bundle.pack.id for bundle in bundles}
    stale = [
        row[0] for row in conn.execute("SELECT id FROM content_packs ORDER BY id")
        if row[0] not in incoming
    ]
    stats.deleted += _delete_ids(
        conn, "content_packs", "id", stale,
        chunk_size=TASK_DELETE_CHUNK_SIZE, token=token,
    )
    if stale:
        logger.info("Removed %d stale content packs", len(stale))

    pack_sql = _upsert_sql("content_packs", _PACK_COLUMNS, ("id",), _PACK_COLUMNS[1:])
    member_sql = _upsert_sql(
        "pack_lexeme_map", _PACK_LEXEME_COLUMNS, ("pack_id", "lexeme_id"),
        _PACK_LEXEME_COLUMNS[2:],
    )
    for bundle in bundles:
        _check(token)
        pack = bundle.pack
        now = clock()
        with conn:
            existing = _existing_keys(conn, "content_packs", "id", [pack.id])
            cursor = conn.execute(pack_sql, (
                pack.id, pack.slug, pack.name, pack.description, pack.language,
                pack.pos_scope, pack.license, pack.license_notes, pack.version,
                pack.checksum,
                encode_json(pack.metadata) if pack.metadata is not None else None,
                now, now,
            ))
            if not existing:
                stats.inserted += 1
            elif cursor.rowcount:
                stats.updated += 1
            keep = [m.lexeme_id for m in bundle.pack_lexemes]
            if keep:
                cursor = conn.execute(
                    f"DELETE FROM pack_lexeme_map WHERE pack_id = ? "
                    f"AND lexeme_id NOT IN ({_placeholders(len(keep))})",
                    [pack.id, *keep],
                )
            else:
                cursor = conn.execute(
                    "DELETE FROM pack_lexeme_map WHERE pack_id = ?", (pack.id,)
                )
            stats.deleted += cursor.rowcount
            conn.executemany(member_sql, [
                (m.pack_id, m.lexeme_id, m.primary_task_id, m.position, m.notes, now, now)
                for m in bundle.pack_lexemes
            ])
    return stats


def reset_seeded_content(conn: sqlite3.Connection) -> None:
    """Remove every seeded row, markers included."""
    with conn:
        for table in ("pack_lexeme_map", "content_packs", "task_specs",
                      "inflections", "lexemes", "words", "sync_state"):
            conn.execute(f"DELETE FROM {table}")
    logger.info("Cleared seeded content")
