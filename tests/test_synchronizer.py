"""Tests for the task-spec synchronizer and marker stores."""

import dataclasses

import pytest

from lexicon_sync.exceptions import SyncCancelled
from lexicon_sync.inventory import build_lexeme_inventory
from lexicon_sync.models import SyncState
from lexicon_sync.persistence import (
    CancellationToken,
    sync_legacy_words,
    upsert_lexeme_inventory,
)
from lexicon_sync.sync_state import InMemoryMarkerStore, SqliteMarkerStore
from lexicon_sync.synchronizer import (
    TaskSpecSynchronizer,
    build_task_source,
    create_inflection_finder,
)


def _lexeme_id(words, lemma):
    return next(l.id for l in build_lexeme_inventory(words).lexemes if l.lemma == lemma)


def _task_times(conn, lexeme_id):
    rows = conn.execute(
        "SELECT id, updated_at FROM task_specs WHERE lexeme_id = ? ORDER BY id", (lexeme_id,)
    ).fetchall()
    return [(r["id"], r["updated_at"]) for r in rows]


@pytest.fixture
def seeded(conn, clock, sample_words):
    sync_legacy_words(conn, sample_words, clock=clock)
    upsert_lexeme_inventory(conn, build_lexeme_inventory(sample_words), clock=clock)
    return conn


class TestInflectionFinder:
    """Tests for feature-based inflection lookup."""

    def test_indexed_lookup(self):
        find = create_inflection_finder([
            ("ging", {"tense": "past", "mood": "indicative", "person": 3, "number": "singular"}),
            ("gegangen", {"tense": "participle", "aspect": "perfect"}),
        ])
        assert find(tense="past", mood="indicative", person=3, number="singular") == "ging"
        assert find(tense="participle", aspect="perfect") == "gegangen"
        assert find(tense="participle") == "gegangen"
        assert find(tense="future") is None

    def test_list_values(self):
        find = create_inflection_finder([("Häuser", {"case": ["nominative", "accusative"], "number": "plural"})])
        assert find(case="accusative", number="plural") == "Häuser"

    def test_first_form_wins(self):
        find = create_inflection_finder([
            ("schneller", {"degree": "comparative"}),
            ("schnellere", {"degree": "comparative"}),
        ])
        assert find(degree="comparative") == "schneller"

    def test_linear_fallback(self):
        find = create_inflection_finder([("gehen", {"tense": "infinitive", "voice": "active"})])
        assert find(voice="active") == "gehen"

    def test_empty_query(self):
        assert create_inflection_finder([])() is None


class TestTaskSource:
    """Tests for rebuilding template sources from stored rows."""

    def test_noun_source(self):
        source = build_task_source(
            {
                "id": "de:noun:haus:00000000", "lemma": "Haus", "pos": "noun",
                "gender": "neut.", "metadata": {"level": "A1"},
                "fallback_example_de": "Das Haus ist groß.", "fallback_example_en": None,
            },
            [("Häuser", {"case": "nominative", "number": "plural"})],
        )
        assert source.plural == "Häuser"
        assert source.gender == "das"
        assert source.example_de == "Das Haus ist groß."

    def test_unsupported_category(self):
        row = {
            "id": "x", "lemma": "mit", "pos": "preposition", "gender": None, "metadata": {},
            "fallback_example_de": None, "fallback_example_en": None,
        }
        assert build_task_source(row, []) is None


class TestSynchronizer:
    """Tests for full and delta synchronization."""

    def test_initial_state(self, conn):
        sync = TaskSpecSynchronizer(conn)
        assert sync.state is SyncState.IDLE
        assert sync.latest_touched_at is None

    def test_full_sync(self, seeded, clock, sample_words):
        sync = TaskSpecSynchronizer(seeded, clock)
        result = sync.full_sync()
        assert sync.state is SyncState.SYNCED
        assert result.latest_touched_at == sync.latest_touched_at
        assert result.latest_touched_at is not None
        gehen_tasks = _task_times(seeded, _lexeme_id(sample_words, "gehen"))
        assert len(gehen_tasks) == 4
        assert _task_times(seeded, _lexeme_id(sample_words, "mit")) == []

    def test_full_sync_removes_orphans(self, seeded, clock, sample_words):
        sync = TaskSpecSynchronizer(seeded, clock)
        sync.full_sync()
        haus_id = _lexeme_id(sample_words, "Haus")
        seeded.execute("DELETE FROM inflections WHERE lexeme_id = ? AND form = 'Häuser'", (haus_id,))
        seeded.commit()
        result = sync.full_sync()
        assert result.deleted == 1
        assert _task_times(seeded, haus_id) == []

    def test_delta_without_changes(self, seeded, clock):
        sync = TaskSpecSynchronizer(seeded, clock)
        marker = sync.full_sync().latest_touched_at
        result = sync.delta_sync(marker)
        assert result.latest_touched_at is None
        assert result.lexemes == 0

    def test_delta_only_touches_changed_lexeme(self, seeded, clock, sample_words):
        sync = TaskSpecSynchronizer(seeded, clock)
        marker = sync.full_sync().latest_touched_at
        gehen_id = _lexeme_id(sample_words, "gehen")
        machen_id = _lexeme_id(sample_words, "machen")
        gehen_before = _task_times(seeded, gehen_id)
        machen_before = _task_times(seeded, machen_id)

        changed = [
            dataclasses.replace(w, english="to walk") if w.lemma == "gehen" else w
            for w in sample_words
        ]
        upsert_lexeme_inventory(seeded, build_lexeme_inventory(changed), clock=clock)

        result = sync.delta_sync(marker)

        assert result.lexemes == 1
        assert result.latest_touched_at > marker
        assert _task_times(seeded, machen_id) == machen_before
        gehen_after = _task_times(seeded, gehen_id)
        assert [i for i, _ in gehen_after] == [i for i, _ in gehen_before]
        assert all(after > before for (_, before), (_, after) in zip(gehen_before, gehen_after))

    def test_delta_picks_up_inflection_change(self, seeded, clock, sample_words):
        sync = TaskSpecSynchronizer(seeded, clock)
        marker = sync.full_sync().latest_touched_at
        changed = [
            dataclasses.replace(w, praeteritum="machte!") if w.lemma == "machen" else w
            for w in sample_words
        ]
        upsert_lexeme_inventory(seeded, build_lexeme_inventory(changed), clock=clock)

        result = sync.delta_sync(marker)

        assert result.lexemes == 1
        machen_id = _lexeme_id(sample_words, "machen")
        forms = {
            row[0] for row in seeded.execute(
                "SELECT json_extract(solution, '$.form') FROM task_specs WHERE lexeme_id = ?",
                (machen_id,),
            )
        }
        assert "machte!" in forms
        assert "machte" not in forms

    def test_incomplete_lexeme_has_no_tasks(self, conn, clock, word_factory):
        from lexicon_sync.models import PartOfSpeech

        words = [word_factory("Milch", PartOfSpeech.NOUN, plural="Milche")]
        upsert_lexeme_inventory(conn, build_lexeme_inventory(words), clock=clock)
        TaskSpecSynchronizer(conn, clock).full_sync()
        assert conn.execute("SELECT COUNT(*) FROM task_specs").fetchone()[0] == 0

    def test_reset(self, seeded, clock):
        sync = TaskSpecSynchronizer(seeded, clock)
        sync.full_sync()
        sync.reset()
        assert sync.state is SyncState.IDLE
        assert sync.latest_touched_at is None

    def test_cancelled(self, seeded, clock):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(SyncCancelled):
            TaskSpecSynchronizer(seeded, clock, token=token).full_sync()
        assert seeded.execute("SELECT COUNT(*) FROM task_specs").fetchone()[0] == 0


class TestRun:
    """Tests for marker-driven runs."""

    def test_run_advances_marker(self, seeded, clock):
        store = InMemoryMarkerStore()
        sync = TaskSpecSynchronizer(seeded, clock)
        first = sync.run(store)
        assert store.get() == first.latest_touched_at

        second = sync.run(store)
        assert second.lexemes == 0
        assert store.get() == first.latest_touched_at

    def test_force_full(self, seeded, clock):
        store = InMemoryMarkerStore()
        sync = TaskSpecSynchronizer(seeded, clock)
        sync.run(store)
        result = sync.run(store, force_full=True)
        assert result.lexemes == 4

    def test_sqlite_marker_store(self, conn, clock):
        store = SqliteMarkerStore(conn, key="task_specs", clock=clock)
        assert store.get() is None
        store.set("2025-01-01T00:00:00.000000Z")
        assert store.get() == "2025-01-01T00:00:00.000000Z"
        store.set("2025-01-02T00:00:00.000000Z")
        assert store.get() == "2025-01-02T00:00:00.000000Z"
        store.clear()
        assert store.get() is None

    def test_stores_are_independent(self, conn):
        a = SqliteMarkerStore(conn, key="a")
        b = SqliteMarkerStore(conn, key="b")
        a.set("x")
        assert b.get() is None
        assert InMemoryMarkerStore().get() is None
