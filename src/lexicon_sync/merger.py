"""Merge raw rows from every loader into one AggregatedWord per lemma + POS."""

from __future__ import annotations

import dataclasses
import json
import logging
from enum import Enum
from typing import Iterable, Sequence

from lexicon_sync.loaders import LoadedSource, key_for
from lexicon_sync.models import (
    LEVEL_ORDER,
    AggregatedWord,
    PosAttributes,
    RawWordRow,
    WordExample,
    WordTranslation,
)
from lexicon_sync.normalize import normalise_string_list, pick_latest_timestamp
from lexicon_sync.validator import validate_word

logger = logging.getLogger(__name__)


class MergePolicy(str, Enum):
    """How a field combines an existing value with an incoming one."""

    FIRST_NON_NULL = "first_non_null"
    INCOMING_OVERRIDES = "incoming_overrides"
    EASIEST_LEVEL = "easiest_level"
    LATEST_TIMESTAMP = "latest_timestamp"
    UNION = "union"


# Precedence for every RawWordRow field.  Loaders run in declared order, so
# "existing" is always the value from an earlier (more authoritative) loader.
FIELD_POLICIES: dict[str, MergePolicy] = {
    "level": MergePolicy.EASIEST_LEVEL,
    "english": MergePolicy.FIRST_NON_NULL,
    "example_de": MergePolicy.FIRST_NON_NULL,
    "example_en": MergePolicy.FIRST_NON_NULL,
    "gender": MergePolicy.FIRST_NON_NULL,
    "plural": MergePolicy.FIRST_NON_NULL,
    "separable": MergePolicy.INCOMING_OVERRIDES,
    "aux": MergePolicy.FIRST_NON_NULL,
    "praesens_ich": MergePolicy.FIRST_NON_NULL,
    "praesens_er": MergePolicy.FIRST_NON_NULL,
    "praeteritum": MergePolicy.FIRST_NON_NULL,
    "partizip_ii": MergePolicy.FIRST_NON_NULL,
    "perfekt": MergePolicy.FIRST_NON_NULL,
    "comparative": MergePolicy.FIRST_NON_NULL,
    "superlative": MergePolicy.FIRST_NON_NULL,
    "translations": MergePolicy.UNION,
    "examples": MergePolicy.UNION,
    "pos_attributes": MergePolicy.UNION,
    "enrichment_applied_at": MergePolicy.LATEST_TIMESTAMP,
    "enrichment_method": MergePolicy.FIRST_NON_NULL,
    "approved": MergePolicy.INCOMING_OVERRIDES,
    "sources": MergePolicy.UNION,
    "source_notes": MergePolicy.UNION,
}


def pick_preferred_level(existing: str | None, incoming: str | None) -> str | None:
    """Prefer the easier of two CEFR levels.

    A recognized level always beats an unrecognized one, whichever side it
    arrives on.  Between two unrecognized labels the existing one stays.
    """
    if not existing:
        return incoming or None
    if not incoming:
        return existing
    existing_known = existing in LEVEL_ORDER
    incoming_known = incoming in LEVEL_ORDER
    if existing_known and incoming_known:
        if LEVEL_ORDER.index(incoming) < LEVEL_ORDER.index(existing):
            return incoming
        return existing
    if incoming_known:
        return incoming
    return existing


def merge_translations(
    existing: Sequence[WordTranslation] | None,
    incoming: Sequence[WordTranslation] | None,
) -> tuple[WordTranslation, ...] | None:
    seen: set[tuple] = set()
    merged: list[WordTranslation] = []
    for entry in list(existing or ()) + list(incoming or ()):
        value = entry.value.strip()
        if not value:
            continue
        key = (value.lower(), entry.source or "", entry.language or "", entry.confidence)
        if key in seen:
            continue
        seen.add(key)
        merged.append(dataclasses.replace(entry, value=value))
    return tuple(merged) or None


def _example_key(example: WordExample) -> str:
    sentence = (example.sentence or "").strip().lower()
    translations = sorted(
        (lang.strip().lower(), text.strip().lower())
        for lang, text in (example.translations or {}).items()
        if lang.strip() and text.strip()
    )
    return json.dumps([sentence, translations], ensure_ascii=False)


def merge_examples(
    existing: Sequence[WordExample] | None,
    incoming: Sequence[WordExample] | None,
) -> tuple[WordExample, ...] | None:
    seen: set[str] = set()
    merged: list[WordExample] = []
    for example in list(existing or ()) + list(incoming or ()):
        if not example.sentence and not example.translations:
            continue
        key = _example_key(example)
        if key in seen:
            continue
        seen.add(key)
        merged.append(example)
    return tuple(merged) or None


def merge_pos_attributes(
    existing: PosAttributes | None, incoming: PosAttributes | None
) -> PosAttributes | None:
    if existing is None and incoming is None:
        return None
    parts = [p for p in (existing, incoming) if p is not None]
    pos = next((p.pos.strip() for p in parts if p.pos and p.pos.strip()), None)
    cases = sorted({c.strip() for p in parts for c in p.preposition_cases if c.strip()})
    prep_notes = sorted({n.strip() for p in parts for n in p.preposition_notes if n.strip()})
    tags = sorted(normalise_string_list(t for p in parts for t in p.tags))
    notes = sorted(normalise_string_list(n for p in parts for n in p.notes))
    merged = PosAttributes(
        pos=pos,
        preposition_cases=tuple(cases),
        preposition_notes=tuple(prep_notes),
        tags=tuple(tags),
        notes=tuple(notes),
    )
    return None if merged.is_empty() else merged


def _union_ordered(*groups: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for group in groups:
        for item in group:
            if item and item not in seen:
                seen[item] = None
    return tuple(seen)


def _merge_notes(existing: str | None, incoming: str | None) -> str | None:
    parts = _union_ordered(
        (existing or "").split("; ") if existing else (),
        (incoming or "").split("; ") if incoming else (),
    )
    return "; ".join(parts) or None


def merge_rows(existing: RawWordRow | None, incoming: RawWordRow) -> RawWordRow:
    """Combine two views of the same word according to :data:`FIELD_POLICIES`."""
    if existing is None:
        return dataclasses.replace(incoming)

    values = {}
    for name, policy in FIELD_POLICIES.items():
        old = getattr(existing, name)
        new = getattr(incoming, name)
        if policy is MergePolicy.FIRST_NON_NULL:
            values[name] = old if old is not None else new
        elif policy is MergePolicy.INCOMING_OVERRIDES:
            values[name] = new if new is not None else old
        elif policy is MergePolicy.EASIEST_LEVEL:
            values[name] = pick_preferred_level(old, new)
        elif policy is MergePolicy.LATEST_TIMESTAMP:
            values[name] = pick_latest_timestamp(old, new)
        elif name == "translations":
            values[name] = merge_translations(old, new)
        elif name == "examples":
            values[name] = merge_examples(old, new)
        elif name == "pos_attributes":
            values[name] = merge_pos_attributes(old, new)
        elif name == "sources":
            values[name] = _union_ordered(old, new)
        elif name == "source_notes":
            values[name] = _merge_notes(old, new)
        else:
            raise AssertionError(f"No merge rule for {name}")
    return dataclasses.replace(existing, **values)


def _finalise(key: str, row: RawWordRow, canonical: set[str] | None) -> AggregatedWord:
    word = AggregatedWord(
        lemma=row.lemma,
        pos=row.pos,
        level=row.level,
        english=row.english,
        example_de=row.example_de,
        example_en=row.example_en,
        gender=row.gender,
        plural=row.plural,
        separable=row.separable,
        aux=row.aux,
        praesens_ich=row.praesens_ich,
        praesens_er=row.praesens_er,
        praeteritum=row.praeteritum,
        partizip_ii=row.partizip_ii,
        perfekt=row.perfekt,
        comparative=row.comparative,
        superlative=row.superlative,
        translations=row.translations,
        examples=row.examples,
        pos_attributes=row.pos_attributes,
        enrichment_applied_at=row.enrichment_applied_at,
        enrichment_method=row.enrichment_method,
        approved=bool(row.approved),
        canonical=canonical is not None and key in canonical,
        sources=row.sources,
        source_notes=row.source_notes,
    )
    word.complete = not validate_word(word).errors
    return word


def aggregate_rows(
    rows: Iterable[RawWordRow], canonical: set[str] | None = None
) -> dict[str, AggregatedWord]:
    """Merge *rows* in iteration order; earlier rows win scalar conflicts."""
    merged: dict[str, RawWordRow] = {}
    for row in rows:
        key = key_for(row.lemma, row.pos)
        merged[key] = merge_rows(merged.get(key), row)
    return {key: _finalise(key, row, canonical) for key, row in merged.items()}


def aggregate_words(
    sources: Sequence[LoadedSource], canonical: set[str] | None = None
) -> dict[str, AggregatedWord]:
    """Merge every loader's rows, in loader order, keyed by ``lemma::pos``."""
    rows = (row for source in sources for row in source.rows)
    words = aggregate_rows(rows, canonical)
    logger.info(
        "Aggregated %d words from %d sources",
        len(words), len(sources),
    )
    return words
