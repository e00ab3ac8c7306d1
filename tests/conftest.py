"""Shared test fixtures for lexicon-sync."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from lexicon_sync.db import connect, format_timestamp, init_db
from lexicon_sync.models import AggregatedWord, PartOfSpeech


class FakeClock:
    """Clock that advances one second per reading."""

    def __init__(self, start=datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        self.current = self.current + timedelta(seconds=1)
        return format_timestamp(self.current)


@pytest.fixture
def conn():
    """Create an initialized in-memory database."""
    connection = connect(":memory:")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture
def clock():
    return FakeClock()


def make_word(lemma, pos, **fields):
    """Build an AggregatedWord with ``complete`` derived from validation."""
    from lexicon_sync.validator import validate_word

    word = AggregatedWord(lemma=lemma, pos=pos, **fields)
    word.complete = not validate_word(word).errors
    return word


@pytest.fixture
def word_factory():
    return make_word


@pytest.fixture
def gehen():
    return make_word(
        "gehen", PartOfSpeech.VERB,
        level="A1", english="to go",
        praesens_ich="gehe", praesens_er="geht",
        praeteritum="ging", partizip_ii="gegangen",
        perfekt="ist gegangen", aux="sein",
        approved=True,
    )


@pytest.fixture
def sample_words(gehen):
    """A small mixed corpus: two verbs, a noun, an adjective, a preposition."""
    return [
        gehen,
        make_word(
            "machen", PartOfSpeech.VERB,
            level="A1", english="to do",
            praesens_ich="mache", praesens_er="macht",
            praeteritum="machte", partizip_ii="gemacht",
            perfekt="hat gemacht", aux="haben",
            approved=True,
        ),
        make_word(
            "Haus", PartOfSpeech.NOUN,
            level="A1", english="house", gender="das", plural="Häuser",
            approved=True,
        ),
        make_word(
            "schnell", PartOfSpeech.ADJECTIVE,
            level="A2", english="fast",
            comparative="schneller", superlative="am schnellsten",
            approved=True,
        ),
        make_word("mit", PartOfSpeech.PREPOSITION, level="A1", english="with"),
    ]


def _write_jsonl(path, records):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "\n".join(json.dumps(r, ensure_ascii=False) for r in records) + "\n",
        encoding="utf-8",
    )


@pytest.fixture
def data_root(tmp_path):
    """A project root with per-POS JSONL, a manual CSV, and enrichment data."""
    pos_dir = tmp_path / "data" / "pos"
    _write_jsonl(pos_dir / "verbs.jsonl", [
        {
            "lemma": "gehen", "level": "A1", "english": "to go",
            "example": {"de": "Ich gehe nach Hause.", "en": "I am going home."},
            "approved": True,
            "verb": {
                "aux": "sein", "praesens": {"ich": "gehe", "er": "geht"},
                "praeteritum": "ging", "partizipIi": "gegangen",
                "perfekt": "ist gegangen",
            },
        },
        {
            "lemma": "sehen", "level": "A1", "english": "to see",
            "verb": {"aux": "haben", "praeteritum": "sah"},
        },
    ])
    _write_jsonl(pos_dir / "nouns.jsonl", [
        {
            "lemma": "Haus", "level": "A1", "english": "house", "approved": True,
            "noun": {"gender": "das", "plural": "Häuser"},
        },
    ])
    _write_jsonl(pos_dir / "adjectives.jsonl", [
        {
            "lemma": "schnell", "level": "A2", "english": "fast", "approved": True,
            "adjective": {"comparative": "schneller", "superlative": "am schnellsten"},
        },
    ])
    _write_jsonl(pos_dir / "prepositions.jsonl", [
        {
            "lemma": "mit", "level": "A1", "english": "with",
            "preposition": {"cases": ["Dativ"], "notes": ["always dative"]},
        },
    ])

    (tmp_path / "data" / "manual_words.csv").write_text(
        "lemma,pos,level,english,gender,plural,sources_csv\n"
        "Tisch,N,B1,table,der,Tische,manual_words.csv\n"
        "sehen,V,A2,to look,,,manual_words.csv\n",
        encoding="utf-8",
    )

    enrichment_dir = tmp_path / "data" / "enrichment"
    enrichment_dir.mkdir(parents=True)
    (enrichment_dir / "wiktextract.json").write_text(json.dumps({
        "providerId": "wiktextract",
        "entries": {
            "sehen": {
                "lemma": "sehen", "pos": "V", "collectedAt": "2025-02-01T10:00:00Z",
                "translations": [{"value": "to see", "language": "en"}],
                "verbForms": [{"partizipIi": "gesehen", "perfekt": "hat gesehen"}],
            },
        },
    }), encoding="utf-8")
    return tmp_path
