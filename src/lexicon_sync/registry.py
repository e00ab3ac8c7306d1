"""Task-type registry: supported POS, renderer and payload schemas per task type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from lexicon_sync.exceptions import TaskValidationError


class ExamplePayload(BaseModel):
    de: Optional[str] = None
    en: Optional[str] = None


class RequestedForm(BaseModel):
    tense: Literal["present", "past", "participle"]
    mood: Optional[Literal["indicative", "subjunctive"]] = None
    person: Optional[int] = Field(default=None, ge=1, le=3)
    number: Optional[Literal["singular", "plural"]] = None
    voice: Optional[Literal["active", "passive"]] = None


class ConjugatePrompt(BaseModel):
    lemma: str = Field(min_length=1)
    pos: Literal["verb"]
    requestedForm: RequestedForm
    cefrLevel: Optional[str] = None
    instructions: str = Field(min_length=1)
    example: Optional[ExamplePayload] = None


class ConjugateSolution(BaseModel):
    form: str = Field(min_length=1)
    alternateForms: Optional[list[str]] = None


class NounDeclensionPrompt(BaseModel):
    lemma: str = Field(min_length=1)
    pos: Literal["noun"]
    gender: Optional[Literal["der", "die", "das", "der/die", "der/das", "die/das"]] = None
    requestedCase: Literal["nominative", "accusative", "dative", "genitive"]
    requestedNumber: Literal["singular", "plural"]
    instructions: str = Field(min_length=1)
    cefrLevel: Optional[str] = None
    example: Optional[ExamplePayload] = None


class NounDeclensionSolution(BaseModel):
    form: str = Field(min_length=1)
    article: Optional[str] = None


class AdjectiveEndingPrompt(BaseModel):
    lemma: str = Field(min_length=1)
    pos: Literal["adjective"]
    degree: Literal["positive", "comparative", "superlative"]
    syntacticFrame: Optional[str] = None
    instructions: str = Field(min_length=1)
    cefrLevel: Optional[str] = None
    example: Optional[ExamplePayload] = None


class AdjectiveEndingSolution(BaseModel):
    form: str = Field(min_length=1)


@dataclass(frozen=True, slots=True)
class TaskRegistryEntry:
    task_type: str
    supported_pos: tuple[str, ...]
    renderer: str
    prompt_model: type[BaseModel]
    solution_model: type[BaseModel]
    default_queue_cap: int


TASK_TYPE_REGISTRY: dict[str, TaskRegistryEntry] = {
    "conjugate_form": TaskRegistryEntry(
        task_type="conjugate_form",
        supported_pos=("verb",),
        renderer="conjugate_form",
        prompt_model=ConjugatePrompt,
        solution_model=ConjugateSolution,
        default_queue_cap=30,
    ),
    "noun_case_declension": TaskRegistryEntry(
        task_type="noun_case_declension",
        supported_pos=("noun",),
        renderer="noun_case_declension",
        prompt_model=NounDeclensionPrompt,
        solution_model=NounDeclensionSolution,
        default_queue_cap=25,
    ),
    "adj_ending": TaskRegistryEntry(
        task_type="adj_ending",
        supported_pos=("adjective",),
        renderer="adj_ending",
        prompt_model=AdjectiveEndingPrompt,
        solution_model=AdjectiveEndingSolution,
        default_queue_cap=20,
    ),
}


def validate_task_against_registry(
    task_type: str,
    pos: str,
    renderer: str,
    prompt: dict[str, Any],
    solution: dict[str, Any],
) -> TaskRegistryEntry:
    """Check a generated task against its registry entry.

    Raises:
        TaskValidationError: unknown task type, unsupported part of speech,
            renderer mismatch, or a prompt/solution that fails its schema.
    """
    entry = TASK_TYPE_REGISTRY.get(task_type)
    if entry is None:
        raise TaskValidationError(f"Unsupported task type: {task_type}")
    if pos not in entry.supported_pos:
        raise TaskValidationError(
            f"Task type {task_type} does not support part of speech {pos}. "
            f"Supported: {', '.join(entry.supported_pos)}"
        )
    if renderer != entry.renderer:
        raise TaskValidationError(
            f"Renderer mismatch for {task_type}: expected {entry.renderer} "
            f"but received {renderer}"
        )
    try:
        entry.prompt_model.model_validate(prompt)
        entry.solution_model.model_validate(solution)
    except ValidationError as e:
        raise TaskValidationError(f"Invalid {task_type} payload: {e}") from e
    return entry
