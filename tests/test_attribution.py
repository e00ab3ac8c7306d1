"""Tests for the attribution summary."""

import logging

from lexicon_sync.attribution import (
    PENDING_LICENSE,
    build_attribution_summary,
    resolve_source_metadata,
)
from lexicon_sync.models import AggregatedWord, PartOfSpeech


class TestResolve:
    """Tests for source metadata lookup."""

    def test_catalog_entry(self):
        meta = resolve_source_metadata("dwds-goethe-A1.csv")
        assert meta.license == "CC BY-SA 4.0"
        assert meta.url == "https://www.dwds.de/"

    def test_manual_table_is_cataloged(self, caplog):
        with caplog.at_level(logging.WARNING):
            meta = resolve_source_metadata("manual_words.csv")
        assert meta.license != PENDING_LICENSE
        assert "manual_words.csv" not in caplog.text

    def test_prefixed_ids(self):
        assert resolve_source_metadata("pos_jsonl:verbs").label == "POS seed (verbs.jsonl)"
        assert resolve_source_metadata("enrichment:kaikki").label == "Enrichment applied (kaikki)"

    def test_unknown_id_pending(self, caplog):
        with caplog.at_level(logging.WARNING):
            meta = resolve_source_metadata("mystery.csv")
        assert meta.label == "mystery.csv"
        assert meta.license == PENDING_LICENSE
        assert "mystery.csv" in caplog.text


class TestSummary:
    """Tests for per-source rollups."""

    def test_counts_and_pos(self):
        words = [
            AggregatedWord(lemma="gehen", pos=PartOfSpeech.VERB, sources=("pos_jsonl:verbs", "manual_words.csv")),
            AggregatedWord(lemma="Haus", pos=PartOfSpeech.NOUN, sources=("manual_words.csv",)),
        ]
        entries = {e.id: e for e in build_attribution_summary(words)}
        assert entries["manual_words.csv"].count == 2
        assert entries["manual_words.csv"].pos == ("N", "V")
        assert entries["pos_jsonl:verbs"].count == 1

    def test_sorted_by_label(self):
        words = [
            AggregatedWord(lemma="a", pos=PartOfSpeech.NOUN, sources=("enrichment:openai",)),
            AggregatedWord(lemma="b", pos=PartOfSpeech.NOUN, sources=("dwds-goethe-A1.csv",)),
        ]
        labels = [e.label for e in build_attribution_summary(words)]
        assert labels == sorted(labels, key=str.lower)

    def test_word_without_sources(self):
        (entry,) = build_attribution_summary([AggregatedWord(lemma="a", pos=PartOfSpeech.NOUN)])
        assert entry.id == "words_all_sources"
        assert entry.license != PENDING_LICENSE
