"""Tests for storage reconciliation."""

import dataclasses

import pytest

from lexicon_sync.db import check_schema_version, connect, init_db, MonotonicClock
from lexicon_sync.exceptions import DatabaseError, SyncCancelled
from lexicon_sync.inventory import build_lexeme_inventory
from lexicon_sync.models import PartOfSpeech
from lexicon_sync.packs import build_golden_bundles
from lexicon_sync.persistence import (
    CancellationToken,
    chunked,
    reset_seeded_content,
    sync_legacy_words,
    upsert_lexeme_inventory,
    upsert_pack_bundles,
    upsert_task_inventory,
)
from lexicon_sync.templates import build_task_inventory


def _snapshot(conn, table, key="id"):
    return {
        row[0]: row[1]
        for row in conn.execute(f"SELECT {key}, updated_at FROM {table}")
    }


def _seed(conn, words, clock):
    sync_legacy_words(conn, words, clock=clock)
    upsert_lexeme_inventory(conn, build_lexeme_inventory(words), clock=clock)
    upsert_task_inventory(conn, build_task_inventory(words).tasks, clock=clock)


class TestSchema:
    """Tests for database setup."""

    def test_init_is_idempotent(self, conn):
        init_db(conn)
        row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
        assert row[0] == "1.0"

    def test_version_mismatch(self, conn):
        conn.execute("UPDATE meta SET value = '0.1' WHERE key = 'schema_version'")
        with pytest.raises(DatabaseError, match="Incompatible schema version"):
            check_schema_version(conn)

    def test_monotonic_clock(self):
        from datetime import datetime, timezone

        fixed = datetime(2025, 1, 1, tzinfo=timezone.utc)
        clock = MonotonicClock(now=lambda: fixed)
        first, second = clock(), clock()
        assert second > first


class TestChunked:
    def test_sizes(self):
        assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))


class TestLegacyWords:
    """Tests for the flat words table."""

    def test_insert_and_json_columns(self, conn, clock, sample_words):
        stats = sync_legacy_words(conn, sample_words, clock=clock)
        assert stats.inserted == len(sample_words)
        row = conn.execute("SELECT * FROM words WHERE lemma = 'gehen'").fetchone()
        assert row["aux"] == "sein"
        assert row["complete"] == 1

    def test_idempotent(self, conn, clock, sample_words):
        sync_legacy_words(conn, sample_words, clock=clock)
        before = _snapshot(conn, "words", key="lemma")
        stats = sync_legacy_words(conn, sample_words, clock=clock)
        assert (stats.inserted, stats.updated, stats.deleted) == (0, 0, 0)
        assert _snapshot(conn, "words", key="lemma") == before

    def test_changed_and_removed(self, conn, clock, sample_words):
        sync_legacy_words(conn, sample_words, clock=clock)
        changed = [dataclasses.replace(sample_words[0], english="to walk")] + sample_words[1:3]
        stats = sync_legacy_words(conn, changed, clock=clock)
        assert stats.updated == 1
        assert stats.deleted == 2
        lemmas = {row[0] for row in conn.execute("SELECT lemma FROM words")}
        assert lemmas == {"gehen", "machen", "Haus"}


class TestLexemeInventory:
    """Tests for lexeme and inflection reconciliation."""

    def test_idempotent(self, conn, clock, sample_words):
        _seed(conn, sample_words, clock)
        lexemes = _snapshot(conn, "lexemes")
        inflections = _snapshot(conn, "inflections")
        tasks = _snapshot(conn, "task_specs")

        stats = upsert_lexeme_inventory(conn, build_lexeme_inventory(sample_words), clock=clock)
        task_stats = upsert_task_inventory(conn, build_task_inventory(sample_words).tasks, clock=clock)

        assert stats["lexemes"].updated == 0
        assert stats["inflections"].inserted == 0
        assert task_stats.updated == 0
        assert _snapshot(conn, "lexemes") == lexemes
        assert _snapshot(conn, "inflections") == inflections
        assert _snapshot(conn, "task_specs") == tasks

    def test_no_duplicates_on_replay(self, conn, clock, sample_words):
        _seed(conn, sample_words, clock)
        _seed(conn, sample_words, clock)
        count = conn.execute("SELECT COUNT(*) FROM lexemes").fetchone()[0]
        assert count == len(sample_words)

    def test_removed_lexeme_cascades(self, conn, clock, sample_words):
        _seed(conn, sample_words, clock)
        gehen_id = build_lexeme_inventory(sample_words[:1]).lexemes[0].id

        remaining = sample_words[1:]
        stats = upsert_lexeme_inventory(conn, build_lexeme_inventory(remaining), clock=clock)

        assert stats["lexemes"].deleted == 1
        for table, column in (("lexemes", "id"), ("inflections", "lexeme_id"), ("task_specs", "lexeme_id")):
            count = conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE {column} = ?", (gehen_id,)
            ).fetchone()[0]
            assert count == 0

    def test_dropped_inflection_touches_lexeme(self, conn, clock, sample_words):
        _seed(conn, sample_words, clock)
        haus_id = next(l.id for l in build_lexeme_inventory(sample_words).lexemes if l.lemma == "Haus")
        before = _snapshot(conn, "lexemes")[haus_id]

        words = [
            dataclasses.replace(w, plural=None) if w.lemma == "Haus" else w
            for w in sample_words
        ]
        stats = upsert_lexeme_inventory(conn, build_lexeme_inventory(words), clock=clock)

        assert stats["inflections"].deleted == 1
        assert _snapshot(conn, "lexemes")[haus_id] > before

    def test_cancellation_leaves_prefix(self, conn, clock, sample_words):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(SyncCancelled):
            upsert_lexeme_inventory(
                conn, build_lexeme_inventory(sample_words), clock=clock, token=token,
            )
        assert conn.execute("SELECT COUNT(*) FROM lexemes").fetchone()[0] == 0

    def test_cancellation_between_batches(self, conn, clock, sample_words):
        token = CancellationToken()
        ticks = {"n": 0}

        def cancelling_clock():
            ticks["n"] += 1
            if ticks["n"] == 2:
                token.cancel()
            return clock()

        with pytest.raises(SyncCancelled):
            sync_legacy_words(
                conn, sample_words, clock=cancelling_clock, batch_size=2, token=token,
            )
        assert conn.execute("SELECT COUNT(*) FROM words").fetchone()[0] == 4


class TestPacks:
    """Tests for pack persistence."""

    def test_upsert_pack_bundles(self, conn, clock, sample_words):
        _seed(conn, sample_words, clock)
        bundles = build_golden_bundles(sample_words)
        stats = upsert_pack_bundles(conn, bundles, clock=clock)
        assert stats.inserted == len(bundles)

        rows = conn.execute(
            "SELECT lexeme_id, position, primary_task_id FROM pack_lexeme_map "
            "WHERE pack_id = 'pack:verbs-foundation:1' ORDER BY position"
        ).fetchall()
        assert [r["position"] for r in rows] == [1, 2]
        assert all(r["primary_task_id"] for r in rows)

        again = upsert_pack_bundles(conn, bundles, clock=clock)
        assert (again.inserted, again.updated, again.deleted) == (0, 0, 0)

    def test_missing_pack_is_deleted(self, conn, clock, sample_words):
        _seed(conn, sample_words, clock)
        upsert_pack_bundles(conn, build_golden_bundles(sample_words), clock=clock)

        remaining = [w for w in sample_words if w.lemma != "schnell"]
        _seed(conn, remaining, clock)
        stats = upsert_pack_bundles(conn, build_golden_bundles(remaining), clock=clock)

        assert stats.deleted == 1
        packs = [row[0] for row in conn.execute("SELECT id FROM content_packs ORDER BY id")]
        assert packs == ["pack:nouns-foundation:1", "pack:verbs-foundation:1"]
        orphans = conn.execute(
            "SELECT COUNT(*) FROM pack_lexeme_map WHERE pack_id = 'pack:adjectives-foundation:1'"
        ).fetchone()[0]
        assert orphans == 0

    def test_no_bundles_clears_packs(self, conn, clock, sample_words):
        _seed(conn, sample_words, clock)
        upsert_pack_bundles(conn, build_golden_bundles(sample_words), clock=clock)
        stats = upsert_pack_bundles(conn, [], clock=clock)
        assert stats.deleted == 3
        assert conn.execute("SELECT COUNT(*) FROM content_packs").fetchone()[0] == 0


class TestReset:
    def test_reset_clears_everything(self, conn, clock, sample_words):
        _seed(conn, sample_words, clock)
        reset_seeded_content(conn)
        for table in ("words", "lexemes", "inflections", "task_specs"):
            assert conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0


def test_file_database_uses_wal(tmp_path):
    connection = connect(tmp_path / "lexicon.db")
    try:
        mode = connection.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"
    finally:
        connection.close()
