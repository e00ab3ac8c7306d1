"""Tests for end-to-end seed runs."""

import pytest

from lexicon_sync.exceptions import SyncCancelled
from lexicon_sync.persistence import CancellationToken
from lexicon_sync.pipeline import SeedOptions, collect_words, seed_database


def _updated_at(conn, table):
    return dict(conn.execute(f"SELECT id, updated_at FROM {table}").fetchall())


class TestCollectWords:
    def test_sorted_and_merged(self, data_root):
        words = collect_words(data_root)
        assert [w.key for w in words] == sorted(w.key for w in words)
        assert len(words) == 6

    def test_loader_subset(self, data_root):
        words = collect_words(data_root, ["manual_csv"])
        assert {w.lemma for w in words} == {"Tisch", "sehen"}

    def test_canonical_list_flags(self, data_root):
        (data_root / "data" / "canonical_words.csv").write_text(
            "lemma,pos\ngehen,V\n", encoding="utf-8"
        )
        words = {w.lemma: w for w in collect_words(data_root)}
        assert words["gehen"].canonical is True
        assert words["Haus"].canonical is False


class TestSeedDatabase:
    """Tests for the full pipeline."""

    def test_counts(self, data_root, conn, clock):
        result = seed_database(data_root, conn, SeedOptions(clock=clock))
        assert result.aggregated_words == 6
        assert result.lexemes == 6
        assert result.task_specs == 10
        assert result.failures == []
        assert conn.execute("SELECT COUNT(*) FROM words").fetchone()[0] == 6
        assert conn.execute("SELECT COUNT(*) FROM task_specs").fetchone()[0] == 10
        assert {e.id for e in result.attribution} >= {"manual_words.csv", "enrichment:wiktextract"}

    def test_second_run_is_noop(self, data_root, conn, clock):
        seed_database(data_root, conn, SeedOptions(clock=clock))
        before = {t: _updated_at(conn, t) for t in ("lexemes", "inflections", "task_specs")}
        seed_database(data_root, conn, SeedOptions(clock=clock))
        after = {t: _updated_at(conn, t) for t in ("lexemes", "inflections", "task_specs")}
        assert after == before

    def test_reset(self, data_root, conn, clock):
        seed_database(data_root, conn, SeedOptions(clock=clock))
        (data_root / "data" / "manual_words.csv").write_text(
            "lemma,pos\n", encoding="utf-8"
        )
        result = seed_database(data_root, conn, SeedOptions(reset=True, clock=clock))
        assert result.aggregated_words == 5
        lemmas = {row[0] for row in conn.execute("SELECT lemma FROM lexemes")}
        assert "Tisch" not in lemmas

    def test_packs(self, data_root, conn, clock):
        result = seed_database(data_root, conn, SeedOptions(packs=True, clock=clock))
        names = sorted(p.name for p in result.pack_files)
        assert names == [
            "adjectives-foundation.v1.json",
            "nouns-foundation.v1.json",
            "verbs-foundation.v1.json",
        ]
        members = conn.execute(
            "SELECT COUNT(*) FROM pack_lexeme_map WHERE pack_id = 'pack:nouns-foundation:1'"
        ).fetchone()[0]
        assert members == 2

    def test_cancelled(self, data_root, conn, clock):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(SyncCancelled):
            seed_database(data_root, conn, SeedOptions(clock=clock, token=token))
        assert conn.execute("SELECT COUNT(*) FROM lexemes").fetchone()[0] == 0
