"""Value normalizers shared by the source loaders and the merger."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Iterable

from lexicon_sync.models import LEVEL_ORDER, PartOfSpeech, WordExample

POS_MAP: dict[str, PartOfSpeech] = {
    "verb": PartOfSpeech.VERB,
    "v": PartOfSpeech.VERB,
    "v.": PartOfSpeech.VERB,
    "nomen": PartOfSpeech.NOUN,
    "substantiv": PartOfSpeech.NOUN,
    "noun": PartOfSpeech.NOUN,
    "n": PartOfSpeech.NOUN,
    "adj": PartOfSpeech.ADJECTIVE,
    "adjektiv": PartOfSpeech.ADJECTIVE,
    "adjective": PartOfSpeech.ADJECTIVE,
    "adv": PartOfSpeech.ADVERB,
    "adverb": PartOfSpeech.ADVERB,
    "pron": PartOfSpeech.PRONOUN,
    "pronomen": PartOfSpeech.PRONOUN,
    "det": PartOfSpeech.DETERMINER,
    "artikel": PartOfSpeech.DETERMINER,
    "präp": PartOfSpeech.PREPOSITION,
    "praep": PartOfSpeech.PREPOSITION,
    "präposition": PartOfSpeech.PREPOSITION,
    "prep": PartOfSpeech.PREPOSITION,
    "konj": PartOfSpeech.CONJUNCTION,
    "konjunktion": PartOfSpeech.CONJUNCTION,
    "num": PartOfSpeech.NUMERAL,
    "numeral": PartOfSpeech.NUMERAL,
    "numerale": PartOfSpeech.NUMERAL,
    "part": PartOfSpeech.PARTICLE,
    "partikel": PartOfSpeech.PARTICLE,
    "interj": PartOfSpeech.INTERJECTION,
    "interjektion": PartOfSpeech.INTERJECTION,
}

GENDER_MAP: dict[str, str] = {
    "mask.": "der",
    "fem.": "die",
    "neut.": "das",
    "mask./fem.": "der/die",
    "mask./neut.": "der/das",
    "fem./neut.": "die/das",
}

_TRUE_STRINGS = frozenset({"1", "true", "yes", "y", "ja"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "n", "nein"})


def normalise_string(value: Any) -> str | None:
    """Strip *value*; empty and missing values become None."""
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def normalise_boolean(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def normalise_level(value: Any) -> str | None:
    """Upper-case recognized CEFR labels; keep anything else as given."""
    level = normalise_string(value)
    if level is None:
        return None
    upper = level.upper()
    return upper if upper in LEVEL_ORDER else level


def normalise_pos(value: Any) -> PartOfSpeech | None:
    """Map a part-of-speech label from any source vocabulary to the enum."""
    raw = normalise_string(value)
    if raw is None:
        return None
    try:
        return PartOfSpeech(raw)
    except ValueError:
        pass
    return POS_MAP.get(raw.lower())


def normalise_gender(value: Any) -> str | None:
    """Map DWDS genus markers to articles; articles pass through."""
    gender = normalise_string(value)
    if gender is None:
        return None
    mapped = GENDER_MAP.get(gender)
    if mapped:
        return mapped
    lowered = gender.lower()
    if lowered.startswith("mask"):
        return "der"
    if lowered.startswith("fem"):
        return "die"
    if lowered.startswith("neut"):
        return "das"
    return gender


def normalise_aux(values: Iterable[Any]) -> str | None:
    """Collapse auxiliary hints (``hat``, ``ist``, ``haben/sein``) to one label."""
    found: set[str] = set()
    for value in values:
        text = normalise_string(value)
        if text is None:
            continue
        lowered = text.lower()
        if "haben" in lowered and "sein" in lowered:
            found.update(("haben", "sein"))
        elif lowered.startswith("hab") or lowered.startswith("hat"):
            found.add("haben")
        elif lowered.startswith("sein") or lowered.startswith("ist"):
            found.add("sein")
    if not found:
        return None
    if len(found) > 1:
        return "haben / sein"
    return found.pop()


def normalise_string_list(values: Iterable[Any]) -> list[str]:
    """Trim, drop blanks and case-insensitive duplicates, keep first spelling."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = normalise_string(value)
        if text is None:
            continue
        key = text.lower()
        if key not in seen:
            seen.add(key)
            result.append(text)
    return result


def normalise_example(value: Any) -> WordExample | None:
    """Coerce one raw example record into a :class:`WordExample`."""
    if not isinstance(value, dict):
        return None
    sentence = (
        normalise_string(value.get("sentence"))
        or normalise_string(value.get("exampleDe"))
        or normalise_string(value.get("example_de"))
        or normalise_string(value.get("de"))
    )
    translations: dict[str, str] = {}
    raw_translations = value.get("translations")
    if isinstance(raw_translations, dict):
        for language, text in raw_translations.items():
            lang = normalise_string(language)
            trimmed = normalise_string(text)
            if lang and trimmed:
                translations[lang.lower()] = trimmed
    english = (
        normalise_string(value.get("exampleEn"))
        or normalise_string(value.get("example_en"))
        or normalise_string(value.get("en"))
    )
    if english and "en" not in translations:
        translations["en"] = english
    if sentence is None and not translations:
        return None
    return WordExample(sentence=sentence, translations=translations or None)


def normalise_examples(
    raw_examples: Any,
    example_de: Any = None,
    example_en: Any = None,
) -> tuple[str | None, str | None, tuple[WordExample, ...] | None]:
    """Return the canonical example pair plus the deduplicated example list.

    The flat ``example_de``/``example_en`` pair wins over the first list
    entry when both are present.
    """
    fallback: WordExample | None = None
    de = normalise_string(example_de)
    en = normalise_string(example_en)
    if de or en:
        fallback = WordExample(sentence=de, translations={"en": en} if en else None)

    entries: list[WordExample] = []
    if isinstance(raw_examples, list):
        for raw in raw_examples:
            example = normalise_example(raw)
            if example is not None:
                entries.append(example)

    deduped: list[WordExample] = []
    seen: set[str] = set()
    for example in ([fallback] if fallback else []) + entries:
        key = f"{example.sentence or ''}::{example.english or ''}"
        if key in seen:
            continue
        seen.add(key)
        deduped.append(example)

    canonical = fallback or (deduped[0] if deduped else None)
    if canonical is None:
        return None, None, None
    return canonical.sentence, canonical.english, tuple(deduped)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pick_latest_timestamp(a: str | None, b: str | None) -> str | None:
    """Return the later of two ISO timestamps, rendered in UTC."""
    candidates = [p for p in (parse_timestamp(a), parse_timestamp(b)) if p is not None]
    if not candidates:
        return a or b or None
    latest = max(candidates).astimezone(timezone.utc)
    return latest.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Hashing helpers
# ---------------------------------------------------------------------------

def prune_none(value: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in value.items() if v is not None}


def stable_json(value: Any) -> str:
    """Serialize with sorted keys and no whitespace, dropping None members."""
    return json.dumps(
        _strip_none(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def _strip_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_strip_none(v) for v in value]
    return value


def sha1_hex(payload: str) -> str:
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()
