"""Regenerate task specs from persisted lexemes, fully or since a marker.

A full sync walks every lexeme of a category that has templates and makes
``task_specs`` match what the templates produce.  A delta sync only looks
at lexemes whose row, or one of whose inflections, changed after the
marker; tasks of other lexemes are never written.
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from lexicon_sync.db import Clock, utc_timestamp
from lexicon_sync.exceptions import TaskValidationError
from lexicon_sync.models import (
    POS_TO_LEXEME_POS,
    LexemePos,
    SyncState,
    TaskFailure,
    TaskSpecSeed,
)
from lexicon_sync.normalize import normalise_boolean, normalise_gender, normalise_string
from lexicon_sync.persistence import (
    TASK_DELETE_CHUNK_SIZE,
    CancellationToken,
    chunked,
    delete_task_specs,
    upsert_task_specs,
)
from lexicon_sync.sync_state import MarkerStore
from lexicon_sync.templates import TEMPLATE_POS, TaskTemplateSource, generate_task_specs

logger = logging.getLogger(__name__)

LEXEME_POS_TO_WORD_POS: dict[str, str] = {
    lexeme_pos.value: word_pos.value for word_pos, lexeme_pos in POS_TO_LEXEME_POS.items()
}

# ---------------------------------------------------------------------------
# Inflection lookup
# ---------------------------------------------------------------------------

FEATURE_KEY_ORDER: tuple[str, ...] = (
    "tense", "mood", "person", "number", "aspect", "case", "degree",
)

SUPPORTED_FEATURE_COMBINATIONS: tuple[tuple[str, ...], ...] = (
    ("tense", "mood", "person", "number"),
    ("tense", "aspect"),
    ("tense",),
    ("case", "number"),
    ("degree",),
)

InflectionFinder = Callable[..., Optional[str]]


def _feature_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def _feature_values(features: dict[str, Any], key: str) -> list[str]:
    raw = features.get(key)
    if isinstance(raw, list):
        values = [v for v in (_feature_value(item) for item in raw) if v]
        return list(dict.fromkeys(values))
    value = _feature_value(raw)
    return [value] if value else []


def _ordered_keys(keys: Iterable[str]) -> tuple[str, ...]:
    return tuple(sorted(set(keys), key=FEATURE_KEY_ORDER.index))


def create_inflection_finder(rows: Iterable[tuple[str, dict[str, Any]]]) -> InflectionFinder:
    """Build a lookup ``finder(tense="past", person=3, ...) -> form``.

    Forms are indexed under every supported feature combination they carry;
    the first form registered for a combination wins.  Queries with an
    unindexed combination fall back to a linear scan.
    """
    entries = [(form, features or {}) for form, features in rows if normalise_string(form)]
    index: dict[tuple[str, ...], dict[tuple[str, ...], str]] = {}
    for form, features in entries:
        for combination in SUPPORTED_FEATURE_COMBINATIONS:
            keys = _ordered_keys(combination)
            matrix = [_feature_values(features, key) for key in keys]
            if any(not values for values in matrix):
                continue
            bucket = index.setdefault(keys, {})
            for values in itertools.product(*matrix):
                bucket.setdefault(values, form)

    def finder(**query: Any) -> Optional[str]:
        if not query:
            return None
        keys = _ordered_keys(query)
        values = tuple(_feature_value(query[key]) for key in keys)
        if any(v is None for v in values):
            return None
        hit = index.get(keys, {}).get(values)
        if hit:
            return hit
        for form, features in entries:
            if all(values[i] in _feature_values(features, key) for i, key in enumerate(keys)):
                return form
        return None

    return finder


# ---------------------------------------------------------------------------
# Task sources from persisted rows
# ---------------------------------------------------------------------------

def _example_text(example: Any, *keys: str) -> str | None:
    if not isinstance(example, dict):
        return None
    for key in keys:
        value = normalise_string(example.get(key))
        if value:
            return value
    return None


def build_task_source(
    lexeme: sqlite3.Row | dict[str, Any],
    inflections: Iterable[tuple[str, dict[str, Any]]],
) -> TaskTemplateSource | None:
    """Rebuild a template source from a stored lexeme and its inflections.

    Returns None for categories without templates.
    """
    try:
        pos = LexemePos(lexeme["pos"])
    except ValueError:
        return None
    if pos not in TEMPLATE_POS:
        return None

    metadata = lexeme["metadata"] or {}
    example = metadata.get("example")
    fallback_de = normalise_string(lexeme["fallback_example_de"])
    fallback_en = normalise_string(lexeme["fallback_example_en"])
    example_de = _example_text(example, "de", "exampleDe") or fallback_de
    example_en = _example_text(example, "en", "exampleEn") or fallback_en
    # An English example that merely repeats the German one is not a translation.
    if fallback_en and example_de and example_en == example_de:
        example_en = fallback_en

    source = TaskTemplateSource(
        lexeme_id=lexeme["id"],
        lemma=lexeme["lemma"],
        pos=pos,
        level=normalise_string(metadata.get("level")),
        english=normalise_string(metadata.get("english")),
        example_de=example_de,
        example_en=example_en,
        gender=normalise_gender(lexeme["gender"]),
        separable=normalise_boolean(metadata.get("separable")),
        aux=normalise_string(metadata.get("auxiliary")),
        perfekt=normalise_string(metadata.get("perfekt")),
    )

    find = create_inflection_finder(inflections)
    if pos is LexemePos.VERB:
        source.praesens_ich = find(tense="present", mood="indicative", person=1, number="singular")
        source.praesens_er = find(tense="present", mood="indicative", person=3, number="singular")
        source.praeteritum = find(tense="past", mood="indicative", person=3, number="singular")
        source.partizip_ii = find(tense="participle", aspect="perfect")
        source.perfekt = source.perfekt or find(tense="perfect")
    elif pos is LexemePos.NOUN:
        source.plural = find(case="nominative", number="plural")
    elif pos is LexemePos.ADJECTIVE:
        source.comparative = find(degree="comparative")
        source.superlative = find(degree="superlative")
    return source


# ---------------------------------------------------------------------------
# Synchronizer
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class SyncResult:
    """Outcome of one synchronizer pass."""

    latest_touched_at: Optional[str]
    lexemes: int = 0
    upserted: int = 0
    deleted: int = 0


class TaskSpecSynchronizer:
    """Keeps ``task_specs`` in line with persisted lexemes and inflections.

    The synchronizer remembers the latest ``updated_at`` it observed;
    :meth:`reset` forgets it so the next :meth:`run` performs a full pass.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        clock: Clock | None = None,
        *,
        token: CancellationToken | None = None,
    ):
        self._conn = conn
        self._clock = clock or utc_timestamp
        self._token = token
        self._state = SyncState.IDLE
        self._latest_touched_at: Optional[str] = None
        self.failures: list[TaskFailure] = []

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def latest_touched_at(self) -> Optional[str]:
        return self._latest_touched_at

    def reset(self) -> None:
        self._state = SyncState.IDLE
        self._latest_touched_at = None
        self.failures = []

    def full_sync(self) -> SyncResult:
        """Regenerate tasks for every lexeme and drop everything else."""
        return self._sync(None)

    def delta_sync(self, since: str) -> SyncResult:
        """Regenerate tasks for lexemes touched after *since*.

        ``latest_touched_at`` is None on the result when nothing changed.
        """
        return self._sync(since)

    def run(self, store: MarkerStore, *, force_full: bool = False) -> SyncResult:
        """Choose full or delta from *store*, then advance the marker."""
        since = None if force_full else store.get()
        if since is None:
            logger.info("Running full task sync")
            result = self.full_sync()
        else:
            logger.info("Running delta task sync since %s", since)
            result = self.delta_sync(since)
        if result.latest_touched_at is not None:
            store.set(result.latest_touched_at)
        return result

    # -- internals --------------------------------------------------------

    def _touched_lexeme_ids(self, since: str) -> tuple[set[str], Optional[str]]:
        ids: set[str] = set()
        latest: Optional[str] = None
        rows = self._conn.execute(
            "SELECT id, updated_at FROM lexemes WHERE updated_at > ?", (since,)
        ).fetchall()
        placeholders = ", ".join("?" for _ in TEMPLATE_POS)
        rows += self._conn.execute(
            "SELECT i.lexeme_id AS id, i.updated_at FROM inflections i "
            "JOIN lexemes l ON l.id = i.lexeme_id "
            f"WHERE l.pos IN ({placeholders}) AND i.updated_at > ?",
            [p.value for p in TEMPLATE_POS] + [since],
        ).fetchall()
        for row in rows:
            ids.add(row["id"])
            if latest is None or row["updated_at"] > latest:
                latest = row["updated_at"]
        return ids, latest

    def _fetch_lexemes(self, lexeme_ids: Optional[set[str]]) -> list[sqlite3.Row]:
        sql = (
            "SELECT l.id, l.lemma, l.pos, l.gender, l.metadata, l.updated_at, "
            "(SELECT w.example_de FROM words w WHERE lower(w.lemma) = lower(l.lemma) "
            " AND w.pos = {pos_case}) AS fallback_example_de, "
            "(SELECT w.example_en FROM words w WHERE lower(w.lemma) = lower(l.lemma) "
            " AND w.pos = {pos_case}) AS fallback_example_en "
            "FROM lexemes l "
        )
        pos_case = "CASE l.pos " + " ".join(
            f"WHEN '{lexeme_pos}' THEN '{word_pos}'"
            for lexeme_pos, word_pos in LEXEME_POS_TO_WORD_POS.items()
        ) + " END"
        sql = sql.format(pos_case=pos_case)
        if lexeme_ids is None:
            placeholders = ", ".join("?" for _ in TEMPLATE_POS)
            return self._conn.execute(
                sql + f"WHERE l.pos IN ({placeholders}) ORDER BY l.id",
                [p.value for p in TEMPLATE_POS],
            ).fetchall()
        rows: list[sqlite3.Row] = []
        for chunk in chunked(sorted(lexeme_ids), TASK_DELETE_CHUNK_SIZE):
            rows += self._conn.execute(
                sql + f"WHERE l.id IN ({', '.join('?' for _ in chunk)}) ORDER BY l.id",
                list(chunk),
            ).fetchall()
        return rows

    def _fetch_inflections(
        self, lexeme_ids: list[str]
    ) -> tuple[dict[str, list[tuple[str, dict]]], Optional[str]]:
        grouped: dict[str, list[tuple[str, dict]]] = {}
        latest: Optional[str] = None
        for chunk in chunked(lexeme_ids, TASK_DELETE_CHUNK_SIZE):
            rows = self._conn.execute(
                "SELECT lexeme_id, form, features, updated_at FROM inflections "
                f"WHERE lexeme_id IN ({', '.join('?' for _ in chunk)}) ORDER BY id",
                list(chunk),
            ).fetchall()
            for row in rows:
                grouped.setdefault(row["lexeme_id"], []).append((row["form"], row["features"] or {}))
                if latest is None or row["updated_at"] > latest:
                    latest = row["updated_at"]
        return grouped, latest

    def _sync(self, since: Optional[str]) -> SyncResult:
        self.failures = []
        latest: Optional[str] = None

        def observe(value: Optional[str]) -> None:
            nonlocal latest
            if value and (latest is None or value > latest):
                latest = value

        selected: Optional[set[str]] = None
        if since is not None:
            selected, touched_latest = self._touched_lexeme_ids(since)
            if not selected:
                logger.info("No lexemes changed since %s", since)
                return SyncResult(latest_touched_at=None)
            observe(touched_latest)

        lexemes = self._fetch_lexemes(selected)
        if not lexemes:
            self._remember(latest)
            return SyncResult(latest_touched_at=latest)
        lexeme_ids = [row["id"] for row in lexemes]
        for row in lexemes:
            observe(row["updated_at"])
        inflections, inflection_latest = self._fetch_inflections(lexeme_ids)
        observe(inflection_latest)

        tasks: list[TaskSpecSeed] = []
        expected: dict[str, set[str]] = {lexeme_id: set() for lexeme_id in lexeme_ids}
        for row in lexemes:
            metadata = row["metadata"] or {}
            if metadata.get("complete") is False:
                continue
            source = build_task_source(row, inflections.get(row["id"], []))
            if source is None:
                continue
            try:
                generated = generate_task_specs(source)
            except TaskValidationError as e:
                logger.warning("Skipping tasks for %s (%s): %s", row["lemma"], row["pos"], e)
                self.failures.append(TaskFailure(
                    lemma=row["lemma"], pos=row["pos"], lexeme_id=row["id"], reason=str(e),
                ))
                continue
            tasks.extend(generated)
            expected[row["id"]].update(task.id for task in generated)

        stats = upsert_task_specs(
            self._conn, tasks, clock=self._clock, token=self._token, force_touch=True,
        )

        if since is None:
            existing = self._conn.execute("SELECT id, lexeme_id FROM task_specs").fetchall()
        else:
            existing = []
            for chunk in chunked(lexeme_ids, TASK_DELETE_CHUNK_SIZE):
                existing += self._conn.execute(
                    "SELECT id, lexeme_id FROM task_specs "
                    f"WHERE lexeme_id IN ({', '.join('?' for _ in chunk)})",
                    list(chunk),
                ).fetchall()
        stale = [
            row["id"] for row in existing
            if row["id"] not in expected.get(row["lexeme_id"], ())
        ]
        deleted = delete_task_specs(self._conn, stale, token=self._token)

        logger.info(
            "Task sync processed %d lexemes: %d tasks upserted, %d stale removed",
            len(lexemes), stats.inserted + stats.updated, deleted,
        )
        self._remember(latest)
        return SyncResult(
            latest_touched_at=latest,
            lexemes=len(lexemes),
            upserted=stats.inserted + stats.updated,
            deleted=deleted,
        )

    def _remember(self, latest: Optional[str]) -> None:
        self._state = SyncState.SYNCED
        self._latest_touched_at = latest
