"""Domain model dataclasses and enums for lexicon-sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PartOfSpeech(str, Enum):
    """Part-of-speech tags used by the source data and the legacy word table."""

    VERB = "V"
    NOUN = "N"
    ADJECTIVE = "Adj"
    ADVERB = "Adv"
    PRONOUN = "Pron"
    DETERMINER = "Det"
    PREPOSITION = "Präp"
    CONJUNCTION = "Konj"
    NUMERAL = "Num"
    PARTICLE = "Part"
    INTERJECTION = "Interj"


class LexemePos(str, Enum):
    """Part-of-speech categories of canonical lexemes."""

    VERB = "verb"
    NOUN = "noun"
    ADJECTIVE = "adjective"
    ADVERB = "adverb"
    PRONOUN = "pronoun"
    DETERMINER = "determiner"
    PREPOSITION = "preposition"
    CONJUNCTION = "conjunction"
    NUMERAL = "numeral"
    PARTICLE = "particle"
    INTERJECTION = "interjection"


POS_TO_LEXEME_POS: dict[PartOfSpeech, LexemePos] = {
    PartOfSpeech.VERB: LexemePos.VERB,
    PartOfSpeech.NOUN: LexemePos.NOUN,
    PartOfSpeech.ADJECTIVE: LexemePos.ADJECTIVE,
    PartOfSpeech.ADVERB: LexemePos.ADVERB,
    PartOfSpeech.PRONOUN: LexemePos.PRONOUN,
    PartOfSpeech.DETERMINER: LexemePos.DETERMINER,
    PartOfSpeech.PREPOSITION: LexemePos.PREPOSITION,
    PartOfSpeech.CONJUNCTION: LexemePos.CONJUNCTION,
    PartOfSpeech.NUMERAL: LexemePos.NUMERAL,
    PartOfSpeech.PARTICLE: LexemePos.PARTICLE,
    PartOfSpeech.INTERJECTION: LexemePos.INTERJECTION,
}


class SyncState(str, Enum):
    """State of a task-spec synchronizer."""

    IDLE = "IDLE"
    SYNCED = "SYNCED"


LEVEL_ORDER: tuple[str, ...] = ("A1", "A2", "B1", "B2", "C1", "C2")

# ---------------------------------------------------------------------------
# Source-side dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class WordTranslation:
    """A translation of a lemma contributed by one source."""

    value: str
    source: str | None = None
    language: str | None = None
    confidence: float | None = None


@dataclass(frozen=True, slots=True)
class WordExample:
    """A German example sentence with optional translations keyed by language."""

    sentence: str | None
    translations: dict[str, str] | None = None

    @property
    def english(self) -> str | None:
        if not self.translations:
            return None
        return self.translations.get("en")


@dataclass(frozen=True, slots=True)
class PosAttributes:
    """Category-specific attributes that do not fit the flat word columns."""

    pos: str | None = None
    preposition_cases: tuple[str, ...] = ()
    preposition_notes: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (
            self.pos or self.preposition_cases or self.preposition_notes
            or self.tags or self.notes
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.pos:
            payload["pos"] = self.pos
        if self.preposition_cases or self.preposition_notes:
            preposition: dict[str, Any] = {}
            if self.preposition_cases:
                preposition["cases"] = list(self.preposition_cases)
            if self.preposition_notes:
                preposition["notes"] = list(self.preposition_notes)
            payload["preposition"] = preposition
        if self.tags:
            payload["tags"] = list(self.tags)
        if self.notes:
            payload["notes"] = list(self.notes)
        return payload


@dataclass(slots=True)
class RawWordRow:
    """One source's view of a lemma + part-of-speech pair."""

    lemma: str
    pos: PartOfSpeech | str
    level: str | None = None
    english: str | None = None
    example_de: str | None = None
    example_en: str | None = None
    gender: str | None = None
    plural: str | None = None
    separable: bool | None = None
    aux: str | None = None
    praesens_ich: str | None = None
    praesens_er: str | None = None
    praeteritum: str | None = None
    partizip_ii: str | None = None
    perfekt: str | None = None
    comparative: str | None = None
    superlative: str | None = None
    translations: tuple[WordTranslation, ...] | None = None
    examples: tuple[WordExample, ...] | None = None
    pos_attributes: PosAttributes | None = None
    enrichment_applied_at: str | None = None
    enrichment_method: str | None = None
    approved: bool | None = None
    sources: tuple[str, ...] = ()
    source_notes: str | None = None


@dataclass(slots=True)
class AggregatedWord:
    """Merged canonical view of one lemma + part-of-speech pair."""

    lemma: str
    pos: PartOfSpeech | str
    level: str | None = None
    english: str | None = None
    example_de: str | None = None
    example_en: str | None = None
    gender: str | None = None
    plural: str | None = None
    separable: bool | None = None
    aux: str | None = None
    praesens_ich: str | None = None
    praesens_er: str | None = None
    praeteritum: str | None = None
    partizip_ii: str | None = None
    perfekt: str | None = None
    comparative: str | None = None
    superlative: str | None = None
    translations: tuple[WordTranslation, ...] | None = None
    examples: tuple[WordExample, ...] | None = None
    pos_attributes: PosAttributes | None = None
    enrichment_applied_at: str | None = None
    enrichment_method: str | None = None
    approved: bool = False
    canonical: bool = False
    complete: bool = False
    sources: tuple[str, ...] = ()
    source_notes: str | None = None

    @property
    def key(self) -> str:
        pos = self.pos.value if isinstance(self.pos, PartOfSpeech) else self.pos
        return f"{self.lemma.lower()}::{pos}"

    @property
    def governed_cases(self) -> tuple[str, ...]:
        if self.pos_attributes is None:
            return ()
        return self.pos_attributes.preposition_cases


@dataclass(slots=True)
class PosValidationResult:
    """Blocking errors and non-blocking warnings for one aggregated word."""

    lemma: str
    pos: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

# ---------------------------------------------------------------------------
# Seed dataclasses (durable rows)
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class LexemeSeed:
    """Canonical identity of one lemma + part of speech."""

    id: str
    lemma: str
    language: str
    pos: str
    gender: str | None
    metadata: dict[str, Any]
    frequency_rank: int | None
    source_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class InflectionSeed:
    """One surface form of a lexeme plus the features that produced it."""

    id: str
    lexeme_id: str
    form: str
    features: dict[str, Any]
    audio_asset: str | None
    source_revision: str | None
    checksum: str | None


@dataclass(frozen=True, slots=True)
class TaskSpecSeed:
    """A generated practice-task definition."""

    id: str
    lexeme_id: str
    pos: str
    task_type: str
    renderer: str
    prompt: dict[str, Any]
    solution: dict[str, Any]
    hints: list[Any] | None
    metadata: dict[str, Any] | None
    revision: int


@dataclass(frozen=True, slots=True)
class TaskFailure:
    """A word whose downstream task artifacts were skipped."""

    lemma: str
    pos: str
    lexeme_id: str | None
    reason: str


@dataclass(frozen=True, slots=True)
class AttributionEntry:
    """Per-source rollup of contributed lexemes and licensing."""

    id: str
    label: str
    license: str
    count: int
    pos: tuple[str, ...]
    url: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class LexemeInventory:
    """Lexemes and inflections derived from one run's aggregated words."""

    lexemes: list[LexemeSeed]
    inflections: list[InflectionSeed]
    attribution: list[AttributionEntry]


@dataclass(frozen=True, slots=True)
class TaskInventory:
    """Task specs derived from one run's aggregated words."""

    tasks: list[TaskSpecSeed]
    failures: list[TaskFailure] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PackSeed:
    """A versioned content pack descriptor."""

    id: str
    slug: str
    name: str
    description: str | None
    language: str
    pos_scope: str
    license: str
    license_notes: str | None
    version: int
    checksum: str | None
    metadata: dict[str, Any] | None


@dataclass(frozen=True, slots=True)
class PackLexemeSeed:
    """Position of one lexeme inside a content pack."""

    pack_id: str
    lexeme_id: str
    primary_task_id: str | None
    position: int
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class PackBundle:
    """A content pack together with everything it references."""

    pack: PackSeed
    lexemes: list[LexemeSeed]
    inflections: list[InflectionSeed]
    tasks: list[TaskSpecSeed]
    pack_lexemes: list[PackLexemeSeed]
