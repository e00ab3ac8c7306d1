"""Per-part-of-speech validation of aggregated words."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from lexicon_sync.exceptions import WordValidationError
from lexicon_sync.models import AggregatedWord, PartOfSpeech, PosValidationResult

logger = logging.getLogger(__name__)

_Rule = Callable[[AggregatedWord, PosValidationResult], None]


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _validate_verb(word: AggregatedWord, result: PosValidationResult) -> None:
    if _blank(word.praeteritum):
        result.errors.append("praeteritum")
    if _blank(word.partizip_ii):
        result.errors.append("partizip_ii")
    if _blank(word.praesens_ich):
        result.warnings.append("praesens_ich")
    if _blank(word.praesens_er):
        result.warnings.append("praesens_er")
    if _blank(word.perfekt):
        result.warnings.append("perfekt")


def _validate_noun(word: AggregatedWord, result: PosValidationResult) -> None:
    if _blank(word.gender):
        result.errors.append("gender")
    if _blank(word.plural):
        result.warnings.append("plural")


def _validate_adjective(word: AggregatedWord, result: PosValidationResult) -> None:
    if _blank(word.comparative):
        result.errors.append("comparative")
    if _blank(word.superlative):
        result.errors.append("superlative")


def _validate_adverb(word: AggregatedWord, result: PosValidationResult) -> None:
    if _blank(word.comparative):
        result.warnings.append("comparative")
    if _blank(word.superlative):
        result.warnings.append("superlative")


def _validate_preposition(word: AggregatedWord, result: PosValidationResult) -> None:
    attrs = word.pos_attributes
    if attrs is None or not attrs.preposition_cases:
        result.warnings.append("preposition.cases")
    if attrs is None or not (attrs.notes or attrs.preposition_notes):
        result.warnings.append("pos.notes")


def _base_only(word: AggregatedWord, result: PosValidationResult) -> None:
    return None


POS_RULES: dict[PartOfSpeech, _Rule] = {
    PartOfSpeech.VERB: _validate_verb,
    PartOfSpeech.NOUN: _validate_noun,
    PartOfSpeech.ADJECTIVE: _validate_adjective,
    PartOfSpeech.ADVERB: _validate_adverb,
    PartOfSpeech.PREPOSITION: _validate_preposition,
    PartOfSpeech.PRONOUN: _base_only,
    PartOfSpeech.DETERMINER: _base_only,
    PartOfSpeech.CONJUNCTION: _base_only,
    PartOfSpeech.NUMERAL: _base_only,
    PartOfSpeech.PARTICLE: _base_only,
    PartOfSpeech.INTERJECTION: _base_only,
}

_missing_rules = set(PartOfSpeech) - set(POS_RULES)
if _missing_rules:
    raise RuntimeError(f"No validation rule for: {sorted(p.value for p in _missing_rules)}")


def _coerce_pos(pos: PartOfSpeech | str) -> PartOfSpeech | None:
    if isinstance(pos, PartOfSpeech):
        return pos
    try:
        return PartOfSpeech(pos)
    except ValueError:
        return None


def validate_word(word: AggregatedWord) -> PosValidationResult:
    """Return blocking errors and advisory warnings for *word*."""
    pos = _coerce_pos(word.pos)
    pos_label = pos.value if pos is not None else str(word.pos)
    result = PosValidationResult(lemma=word.lemma, pos=pos_label)

    if _blank(word.lemma):
        result.errors.append("lemma")
    if not word.approved:
        result.warnings.append("pending_approval")

    if pos is None:
        result.errors.append(f"unsupported_pos:{word.pos}")
        return result

    POS_RULES[pos](word, result)
    return result


def is_complete(word: AggregatedWord) -> bool:
    """A word is complete when its part-of-speech rules report no errors."""
    return not validate_word(word).errors


def assert_valid_word(word: AggregatedWord) -> PosValidationResult:
    result = validate_word(word)
    if result.errors:
        raise WordValidationError(
            f"{word.lemma} ({result.pos}) failed validation: {', '.join(result.errors)}"
        )
    return result


def collect_validation_issues(
    words: Iterable[AggregatedWord],
    *,
    log_warnings: bool = False,
) -> list[PosValidationResult]:
    """Validate every word and return the results that carry any issue.

    When *log_warnings* is set, each warning is logged at WARNING level.
    """
    issues: list[PosValidationResult] = []
    for word in words:
        result = validate_word(word)
        if not result.errors and not result.warnings:
            continue
        issues.append(result)
        if log_warnings and result.warnings:
            logger.warning(
                "%s (%s): %s", result.lemma, result.pos, ", ".join(result.warnings)
            )
        if result.errors:
            logger.debug(
                "%s (%s) errors: %s", result.lemma, result.pos, ", ".join(result.errors)
            )
    return issues
