"""Practice-task templates per lexeme category and task-spec generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from lexicon_sync.exceptions import TaskValidationError
from lexicon_sync.inventory import build_lexeme_seed, example_payload, map_pos
from lexicon_sync.models import (
    AggregatedWord,
    LexemePos,
    TaskFailure,
    TaskInventory,
    TaskSpecSeed,
)
from lexicon_sync.normalize import prune_none, sha1_hex
from lexicon_sync.registry import TASK_TYPE_REGISTRY, validate_task_against_registry
from lexicon_sync.validator import validate_word

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskTemplateSource:
    """Everything a template may read about one lexeme."""

    lexeme_id: str
    lemma: str
    pos: LexemePos
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


_Builder = Callable[[TaskTemplateSource], dict[str, Any]]


@dataclass(frozen=True, slots=True)
class TaskTemplate:
    key: str
    task_type: str
    is_available: Callable[[TaskTemplateSource], bool]
    build_prompt: _Builder
    build_solution: _Builder
    build_metadata: Optional[_Builder] = None
    build_hints: Optional[Callable[[TaskTemplateSource], list[Any]]] = None


def _verb_metadata(source: TaskTemplateSource) -> dict[str, Any]:
    return {"aux": source.aux, "separable": source.separable}


def _conjugation_template(
    key: str, field: str, requested_form: dict[str, Any], instructions: str
) -> TaskTemplate:
    return TaskTemplate(
        key=key,
        task_type="conjugate_form",
        is_available=lambda s: bool(getattr(s, field)),
        build_prompt=lambda s: {
            "lemma": s.lemma,
            "pos": s.pos.value,
            "requestedForm": dict(requested_form),
            "cefrLevel": s.level,
            "instructions": instructions.format(lemma=s.lemma),
            "example": example_payload(s.example_de, s.example_en),
        },
        build_solution=lambda s: {"form": getattr(s, field)},
        build_metadata=_verb_metadata,
    )


def _adjective_template(key: str, field: str, instructions: str, frame: str) -> TaskTemplate:
    return TaskTemplate(
        key=key,
        task_type="adj_ending",
        is_available=lambda s: bool(getattr(s, field)),
        build_prompt=lambda s: {
            "lemma": s.lemma,
            "pos": s.pos.value,
            "degree": key,
            "cefrLevel": s.level,
            "instructions": instructions.format(lemma=s.lemma),
            "example": example_payload(s.example_de, s.example_en),
            "syntacticFrame": frame,
        },
        build_solution=lambda s: {"form": getattr(s, field)},
    )


VERB_TEMPLATES: tuple[TaskTemplate, ...] = (
    _conjugation_template(
        "praesens_ich", "praesens_ich",
        {"tense": "present", "mood": "indicative", "person": 1, "number": "singular"},
        'Konjugiere "{lemma}" in der Präsensform (ich).',
    ),
    _conjugation_template(
        "praesens_er", "praesens_er",
        {"tense": "present", "mood": "indicative", "person": 3, "number": "singular"},
        'Konjugiere "{lemma}" in der Präsensform (er/sie/es).',
    ),
    _conjugation_template(
        "praeteritum", "praeteritum",
        {"tense": "past", "mood": "indicative", "person": 3, "number": "singular"},
        'Konjugiere "{lemma}" in der Präteritumform (er/sie/es).',
    ),
    _conjugation_template(
        "partizip_ii", "partizip_ii",
        {"tense": "participle", "mood": "indicative", "voice": "active"},
        'Gib das Partizip II von "{lemma}" an.',
    ),
)

NOUN_TEMPLATES: tuple[TaskTemplate, ...] = (
    TaskTemplate(
        key="accusative_plural",
        task_type="noun_case_declension",
        is_available=lambda s: bool(s.plural),
        build_prompt=lambda s: {
            "lemma": s.lemma,
            "pos": s.pos.value,
            "gender": s.gender,
            "requestedCase": "accusative",
            "requestedNumber": "plural",
            "cefrLevel": s.level,
            "instructions": f'Bilde die Akkusativ Plural-Form von "{s.lemma}".',
            "example": example_payload(s.example_de, s.example_en),
        },
        build_solution=lambda s: {"form": s.plural, "article": s.gender},
        build_metadata=lambda s: {"article": s.gender},
    ),
)

ADJECTIVE_TEMPLATES: tuple[TaskTemplate, ...] = (
    _adjective_template(
        "comparative", "comparative",
        'Bilde den Komparativ von "{lemma}".', "Der ____ Wagen ist schneller.",
    ),
    _adjective_template(
        "superlative", "superlative",
        'Bilde den Superlativ von "{lemma}".', "Das ist der ____ Moment.",
    ),
)

TEMPLATE_REGISTRY: dict[LexemePos, tuple[TaskTemplate, ...]] = {
    LexemePos.VERB: VERB_TEMPLATES,
    LexemePos.NOUN: NOUN_TEMPLATES,
    LexemePos.ADJECTIVE: ADJECTIVE_TEMPLATES,
    LexemePos.ADVERB: (),
    LexemePos.PRONOUN: (),
    LexemePos.DETERMINER: (),
    LexemePos.PREPOSITION: (),
    LexemePos.CONJUNCTION: (),
    LexemePos.NUMERAL: (),
    LexemePos.PARTICLE: (),
    LexemePos.INTERJECTION: (),
}

_missing_templates = set(LexemePos) - set(TEMPLATE_REGISTRY)
if _missing_templates:
    raise RuntimeError(f"No template entry for: {sorted(p.value for p in _missing_templates)}")

TEMPLATE_POS: tuple[LexemePos, ...] = tuple(p for p, t in TEMPLATE_REGISTRY.items() if t)


def create_task_id(lexeme_id: str, task_type: str, revision: int, discriminator: str) -> str:
    digest = sha1_hex(f"{lexeme_id}:{task_type}:{revision}:{discriminator}")[:8]
    return f"task:{lexeme_id}:{task_type}:{revision}:{digest}"


def default_hints(source: TaskTemplateSource) -> list[dict[str, str]]:
    hints = []
    if source.example_de:
        hints.append({"type": "example_de", "value": source.example_de})
    if source.example_en:
        hints.append({"type": "example_en", "value": source.example_en})
    if source.perfekt and source.aux:
        hints.append({"type": "auxiliary", "value": source.aux})
    return hints


def generate_task_specs(source: TaskTemplateSource) -> list[TaskSpecSeed]:
    """Expand *source* through its category's templates, in template order.

    Raises:
        TaskValidationError: if a generated payload fails its registry schema.
    """
    tasks: list[TaskSpecSeed] = []
    revision = 0
    for template in TEMPLATE_REGISTRY[source.pos]:
        if not template.is_available(source):
            continue
        prompt = prune_none(template.build_prompt(source))
        solution = prune_none(template.build_solution(source))
        entry = TASK_TYPE_REGISTRY[template.task_type]
        validate_task_against_registry(
            template.task_type, source.pos.value, entry.renderer, prompt, solution,
        )

        revision += 1
        hints = template.build_hints(source) if template.build_hints else default_hints(source)
        metadata = template.build_metadata(source) if template.build_metadata else None
        metadata = prune_none(metadata) if metadata else None
        tasks.append(TaskSpecSeed(
            id=create_task_id(source.lexeme_id, template.task_type, revision, template.key),
            lexeme_id=source.lexeme_id,
            pos=source.pos.value,
            task_type=template.task_type,
            renderer=entry.renderer,
            prompt=prompt,
            solution=solution,
            hints=hints or None,
            metadata=metadata or None,
            revision=revision,
        ))
    return tasks


def task_source_from_word(word: AggregatedWord, lexeme_id: str) -> TaskTemplateSource:
    return TaskTemplateSource(
        lexeme_id=lexeme_id,
        lemma=word.lemma,
        pos=map_pos(word.pos),
        level=word.level,
        english=word.english,
        example_de=word.example_de,
        example_en=word.example_en,
        gender=word.gender,
        plural=word.plural,
        separable=word.separable,
        aux=word.aux,
        praesens_ich=word.praesens_ich,
        praesens_er=word.praesens_er,
        praeteritum=word.praeteritum,
        partizip_ii=word.partizip_ii,
        perfekt=word.perfekt,
        comparative=word.comparative,
        superlative=word.superlative,
    )


def build_task_inventory(words: Iterable[AggregatedWord]) -> TaskInventory:
    """Generate task specs for every valid word.

    A word with validation errors, or whose templates fail registry
    validation, is recorded as a failure and skipped; the batch continues.
    """
    tasks: list[TaskSpecSeed] = []
    failures: list[TaskFailure] = []
    for word in words:
        lexeme_id = build_lexeme_seed(word).id
        result = validate_word(word)
        if result.errors:
            failures.append(TaskFailure(
                lemma=word.lemma,
                pos=result.pos,
                lexeme_id=lexeme_id,
                reason="validation: " + ", ".join(result.errors),
            ))
            continue
        try:
            tasks.extend(generate_task_specs(task_source_from_word(word, lexeme_id)))
        except TaskValidationError as e:
            logger.warning("Skipping tasks for %s (%s): %s", word.lemma, result.pos, e)
            failures.append(TaskFailure(
                lemma=word.lemma, pos=result.pos, lexeme_id=lexeme_id, reason=str(e),
            ))
    tasks.sort(key=lambda t: (t.lexeme_id, t.revision))
    return TaskInventory(tasks=tasks, failures=failures)
