"""Golden content packs: curated, checksummed lexeme bundles per category."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from lexicon_sync.exceptions import TaskValidationError
from lexicon_sync.inventory import LANGUAGE, build_inflections, build_lexeme_seed, normalise_lemma
from lexicon_sync.models import (
    AggregatedWord,
    LexemeSeed,
    PackBundle,
    PackLexemeSeed,
    PackSeed,
    PartOfSpeech,
    TaskSpecSeed,
)
from lexicon_sync.normalize import sha1_hex, stable_json
from lexicon_sync.templates import generate_task_specs, task_source_from_word

logger = logging.getLogger(__name__)

PACK_VERSION = 1
PACK_LICENSE = "CC-BY-SA-4.0"
PACKS_DIR = Path("data") / "packs"


@dataclass(frozen=True, slots=True)
class PackDefinition:
    slug: str
    name: str
    description: str
    pos_scope: str
    task_type: str
    limit: int
    select: Callable[[AggregatedWord], bool]
    license: str = PACK_LICENSE


GOLDEN_PACKS: tuple[PackDefinition, ...] = (
    PackDefinition(
        slug="verbs-foundation",
        name="Verbs – Foundation",
        description="Core German verbs with Präteritum and Partizip II practice prompts.",
        pos_scope="verb",
        task_type="conjugate_form",
        limit=50,
        select=lambda w: w.pos == PartOfSpeech.VERB and bool(w.praeteritum) and bool(w.partizip_ii),
    ),
    PackDefinition(
        slug="nouns-foundation",
        name="Nouns – Foundation",
        description="High-frequency nouns focusing on plural formation and case marking.",
        pos_scope="noun",
        task_type="noun_case_declension",
        limit=50,
        select=lambda w: w.pos == PartOfSpeech.NOUN and bool(w.plural) and bool(w.gender),
    ),
    PackDefinition(
        slug="adjectives-foundation",
        name="Adjectives – Foundation",
        description="Comparative and superlative tasks for common adjectives.",
        pos_scope="adjective",
        task_type="adj_ending",
        limit=40,
        select=lambda w: w.pos == PartOfSpeech.ADJECTIVE and bool(w.comparative) and bool(w.superlative),
    ),
)


def pack_id_for_slug(slug: str, version: int = PACK_VERSION) -> str:
    return f"pack:{slug}:{version}"


def _lemma_sort_key(word: AggregatedWord) -> tuple[str, str]:
    return (normalise_lemma(word.lemma), word.lemma)


def _seed_payload(seed: Any) -> Any:
    return dataclasses.asdict(seed)


def pack_checksum(
    lexemes: list[LexemeSeed], inflections: list[Any], tasks: list[TaskSpecSeed]
) -> str:
    return sha1_hex(stable_json({
        "lexemes": [_seed_payload(l) for l in lexemes],
        "inflections": [_seed_payload(i) for i in inflections],
        "tasks": [_seed_payload(t) for t in tasks],
    }))


def create_pack_bundle(definition: PackDefinition, words: list[AggregatedWord]) -> PackBundle:
    """Bundle up to ``definition.limit`` of *words*, in order, under *definition*.

    A word whose templates fail registry validation is logged and left out.
    """
    pack_id = pack_id_for_slug(definition.slug)
    lexemes: list[LexemeSeed] = []
    inflections = []
    tasks: list[TaskSpecSeed] = []
    members: list[PackLexemeSeed] = []

    for word in words:
        if len(members) >= definition.limit:
            break
        lexeme = build_lexeme_seed(word)
        try:
            generated = generate_task_specs(task_source_from_word(word, lexeme.id))
        except TaskValidationError as e:
            logger.warning(
                "Leaving %s (%s) out of pack %s: %s",
                word.lemma, lexeme.pos, definition.slug, e,
            )
            continue
        word_tasks = [task for task in generated if task.task_type == definition.task_type]
        position = len(members) + 1
        lexemes.append(lexeme)
        inflections.extend(build_inflections(word, lexeme.id))
        tasks.extend(word_tasks)
        members.append(PackLexemeSeed(
            pack_id=pack_id,
            lexeme_id=lexeme.id,
            primary_task_id=word_tasks[0].id if word_tasks else None,
            position=position,
        ))

    metadata = None
    checksum = None
    if lexemes:
        metadata = {
            "taskTypes": sorted({task.task_type for task in tasks}),
            "size": len(lexemes),
            "cefrLevels": sorted({
                l.metadata["level"] for l in lexemes if l.metadata.get("level")
            }),
        }
        checksum = pack_checksum(lexemes, inflections, tasks)

    pack = PackSeed(
        id=pack_id,
        slug=definition.slug,
        name=definition.name,
        description=definition.description,
        language=LANGUAGE,
        pos_scope=definition.pos_scope,
        license=definition.license,
        license_notes=None,
        version=PACK_VERSION,
        checksum=checksum,
        metadata=metadata,
    )
    return PackBundle(
        pack=pack, lexemes=lexemes, inflections=inflections,
        tasks=tasks, pack_lexemes=members,
    )


def build_golden_bundles(words: Iterable[AggregatedWord]) -> list[PackBundle]:
    """Select, sort and bundle words for each golden pack; empty packs are dropped.

    Only complete words are eligible, since incomplete ones have no stored tasks.
    """
    candidates = [w for w in words if w.complete]
    bundles = []
    for definition in GOLDEN_PACKS:
        selected = sorted(filter(definition.select, candidates), key=_lemma_sort_key)
        bundle = create_pack_bundle(definition, selected)
        if bundle.lexemes:
            bundles.append(bundle)
        else:
            logger.info("Skipping empty pack %s", definition.slug)
    return bundles


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _camel_record(seed: Any) -> dict[str, Any]:
    return {
        _camel(f.name): getattr(seed, f.name) for f in dataclasses.fields(seed)
    }


def bundle_to_payload(bundle: PackBundle) -> dict[str, Any]:
    """JSON-ready form of *bundle* with camelCase record keys."""
    def records(seeds: Iterable[Any]) -> list[dict[str, Any]]:
        result = []
        for seed in seeds:
            record = _camel_record(seed)
            if "sourceIds" in record:
                record["sourceIds"] = list(record["sourceIds"])
            result.append(record)
        return result

    return {
        "pack": _camel_record(bundle.pack),
        "lexemes": records(bundle.lexemes),
        "inflections": records(bundle.inflections),
        "tasks": records(bundle.tasks),
        "packLexemeMap": records(bundle.pack_lexemes),
    }


def write_bundles_to_disk(root: str | Path, bundles: Iterable[PackBundle]) -> list[Path]:
    """Write each bundle to ``data/packs/{slug}.v{version}.json`` under *root*."""
    packs_dir = Path(root) / PACKS_DIR
    written: list[Path] = []
    for bundle in bundles:
        packs_dir.mkdir(parents=True, exist_ok=True)
        path = packs_dir / f"{bundle.pack.slug}.v{bundle.pack.version}.json"
        path.write_text(
            json.dumps(bundle_to_payload(bundle), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        written.append(path)
        logger.info("Wrote %s", path)
    return written
