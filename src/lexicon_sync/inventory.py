"""Deterministic lexeme and inflection derivation from aggregated words."""

from __future__ import annotations

import json
import logging
import re
import unicodedata
from typing import Any, Iterable

from lexicon_sync.attribution import DEFAULT_SOURCE_ID, build_attribution_summary, collect_sources
from lexicon_sync.exceptions import UnsupportedPosError
from lexicon_sync.models import (
    POS_TO_LEXEME_POS,
    AggregatedWord,
    InflectionSeed,
    LexemeInventory,
    LexemePos,
    LexemeSeed,
    PartOfSpeech,
)
from lexicon_sync.normalize import prune_none, sha1_hex, stable_json

logger = logging.getLogger(__name__)

LANGUAGE = "de"

_NON_SLUG_CHARS = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")


def normalise_lemma(lemma: str) -> str:
    """Slug a lemma: NFKD, drop punctuation, hyphenate whitespace, lowercase."""
    decomposed = unicodedata.normalize("NFKD", lemma)
    ascii_safe = decomposed.encode("ascii", "ignore").decode("ascii")
    stripped = _NON_SLUG_CHARS.sub("", ascii_safe)
    return _WHITESPACE.sub("-", stripped).lower()


def map_pos(pos: PartOfSpeech | str) -> LexemePos:
    """Map a source part of speech to its lexeme category."""
    try:
        member = pos if isinstance(pos, PartOfSpeech) else PartOfSpeech(pos)
    except ValueError:
        raise UnsupportedPosError(f"Unsupported part of speech: {pos!r}") from None
    return POS_TO_LEXEME_POS[member]


def primary_source_id(word: AggregatedWord) -> str:
    """Source id folded into lexeme identity.

    Always the merged word table, so adding a loader never re-keys a lexeme.
    """
    return DEFAULT_SOURCE_ID


def create_lexeme_id(pos: LexemePos | str, lemma: str, primary_source: str = DEFAULT_SOURCE_ID) -> str:
    pos_value = pos.value if isinstance(pos, LexemePos) else pos
    slug = normalise_lemma(lemma)
    digest = sha1_hex(f"{pos_value}:{slug}:{primary_source}")[:8]
    return f"{LANGUAGE}:{pos_value}:{slug}:{digest}"


def create_inflection_id(lexeme_id: str, features: dict[str, Any], form: str) -> str:
    digest = sha1_hex(stable_json({"lexemeId": lexeme_id, "features": features, "form": form}))
    return f"inf:{lexeme_id}:{digest[:10]}"


def inflection_checksum(form: str, features: dict[str, Any]) -> str:
    return sha1_hex(stable_json({"form": form, "features": features}))[:16]


def derive_source_revision(word: AggregatedWord) -> str:
    """Tag inflections with a digest of the word content that produced them."""
    pos = word.pos.value if isinstance(word.pos, PartOfSpeech) else word.pos
    payload = json.dumps({
        "lemma": word.lemma,
        "pos": pos,
        "level": word.level,
        "english": word.english,
        "exampleDe": word.example_de,
        "exampleEn": word.example_en,
        "gender": word.gender,
        "plural": word.plural,
        "separable": word.separable,
        "aux": word.aux,
        "praesensIch": word.praesens_ich,
        "praesensEr": word.praesens_er,
        "praeteritum": word.praeteritum,
        "partizipIi": word.partizip_ii,
        "perfekt": word.perfekt,
        "comparative": word.comparative,
        "superlative": word.superlative,
        "approved": word.approved,
        "complete": word.complete,
    }, ensure_ascii=False, separators=(",", ":"))
    return f"{primary_source_id(word)}:{sha1_hex(payload)[:10]}"


def example_payload(example_de: str | None, example_en: str | None) -> dict[str, str] | None:
    payload = {}
    if example_de:
        payload["de"] = example_de
    if example_en:
        payload["en"] = example_en
    return payload or None


def build_lexeme_seed(word: AggregatedWord) -> LexemeSeed:
    pos = map_pos(word.pos)
    metadata = prune_none({
        "level": word.level,
        "english": word.english,
        "example": example_payload(word.example_de, word.example_en),
        "separable": word.separable,
        "auxiliary": word.aux,
        "perfekt": word.perfekt,
        "notes": word.source_notes,
        "complete": word.complete,
    })
    return LexemeSeed(
        id=create_lexeme_id(pos, word.lemma, primary_source_id(word)),
        lemma=word.lemma,
        language=LANGUAGE,
        pos=pos.value,
        gender=word.gender if pos is LexemePos.NOUN else None,
        metadata=metadata,
        frequency_rank=None,
        source_ids=collect_sources(word),
    )


def _inflection_forms(word: AggregatedWord, pos: LexemePos) -> list[tuple[str | None, dict[str, Any]]]:
    if pos is LexemePos.VERB:
        return [
            (word.lemma, {"tense": "infinitive", "mood": "indicative"}),
            (word.praesens_ich, {"tense": "present", "mood": "indicative", "person": 1, "number": "singular"}),
            (word.praesens_er, {"tense": "present", "mood": "indicative", "person": 3, "number": "singular"}),
            (word.praeteritum, {"tense": "past", "mood": "indicative", "person": 3, "number": "singular"}),
            (word.partizip_ii, {"tense": "participle", "aspect": "perfect"}),
            (word.perfekt, {"tense": "perfect", "auxiliary": word.aux}),
        ]
    if pos is LexemePos.NOUN:
        return [
            (word.lemma, {"case": "nominative", "number": "singular", "gender": word.gender}),
            (word.plural, {"case": "nominative", "number": "plural"}),
        ]
    if pos in (LexemePos.ADJECTIVE, LexemePos.ADVERB):
        return [
            (word.lemma, {"degree": "positive"}),
            (word.comparative, {"degree": "comparative"}),
            (word.superlative, {"degree": "superlative"}),
        ]
    if pos is LexemePos.PREPOSITION:
        cases = list(word.governed_cases) or None
        return [(word.lemma, {"slot": "lemma", "governedCases": cases})]
    return [(word.lemma, {"slot": "lemma"})]


def build_inflections(word: AggregatedWord, lexeme_id: str) -> list[InflectionSeed]:
    """Category-specific surface forms of *word*, deduplicated by id."""
    pos = map_pos(word.pos)
    revision = derive_source_revision(word)
    seeds: dict[str, InflectionSeed] = {}
    for form, features in _inflection_forms(word, pos):
        if not form:
            continue
        features = prune_none(features)
        inflection_id = create_inflection_id(lexeme_id, features, form)
        if inflection_id in seeds:
            continue
        seeds[inflection_id] = InflectionSeed(
            id=inflection_id,
            lexeme_id=lexeme_id,
            form=form,
            features=features,
            audio_asset=None,
            source_revision=revision,
            checksum=inflection_checksum(form, features),
        )
    return list(seeds.values())


def build_lexeme_inventory(words: Iterable[AggregatedWord]) -> LexemeInventory:
    """Build lexemes, inflections and attribution for one run's words.

    Raises:
        UnsupportedPosError: if any word carries an unmappable part of speech.
    """
    word_list = list(words)
    lexemes: dict[str, LexemeSeed] = {}
    inflections: dict[str, InflectionSeed] = {}
    for word in word_list:
        lexeme = build_lexeme_seed(word)
        if lexeme.id in lexemes:
            logger.warning("Lexeme id collision for %r; keeping first", lexeme.id)
            continue
        lexemes[lexeme.id] = lexeme
        for inflection in build_inflections(word, lexeme.id):
            inflections.setdefault(inflection.id, inflection)

    return LexemeInventory(
        lexemes=sorted(lexemes.values(), key=lambda l: (l.lemma, l.id)),
        inflections=sorted(inflections.values(), key=lambda i: (i.lexeme_id, i.form, i.id)),
        attribution=build_attribution_summary(word_list),
    )
