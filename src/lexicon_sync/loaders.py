"""Source loaders: turn raw files under a data root into RawWordRow lists.

Each loader takes the repository root and returns the rows of one source
type.  A missing optional file yields no rows; every other I/O error
propagates.  :func:`load_all_sources` runs an explicit, ordered list of
named loaders, and that order is the merge precedence.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

from lexicon_sync.exceptions import DataImportError
from lexicon_sync.models import (
    PartOfSpeech,
    PosAttributes,
    RawWordRow,
    WordTranslation,
)
from lexicon_sync.normalize import (
    normalise_aux,
    normalise_boolean,
    normalise_examples,
    normalise_gender,
    normalise_level,
    normalise_pos,
    normalise_string,
    normalise_string_list,
)

logger = logging.getLogger(__name__)

Loader = Callable[[Path], list[RawWordRow]]

POS_DIR = Path("data") / "pos"
MANUAL_CSV = Path("data") / "manual_words.csv"
CANONICAL_CSV = Path("data") / "canonical_words.csv"
EXTERNAL_DIR = Path("data") / "external"
SNAPSHOT_CSV = EXTERNAL_DIR / "snapshot.csv"
ENRICHMENT_DIR = Path("data") / "enrichment"

DWDS_FILES: tuple[tuple[str, str], ...] = (
    ("dwds-goethe-A1.csv", "A1"),
    ("dwds-goethe-A2.csv", "A2"),
    ("dwds-goethe-B1.csv", "B1"),
)
LEARN_DEUTSCH_FILE = "learn-deutsch-data.json"

WORTART_MAP: dict[str, PartOfSpeech] = {
    "Substantiv": PartOfSpeech.NOUN,
    "Verb": PartOfSpeech.VERB,
    "Adjektiv": PartOfSpeech.ADJECTIVE,
    "Adverb": PartOfSpeech.ADVERB,
    "Präposition": PartOfSpeech.PREPOSITION,
    "Konjunktion": PartOfSpeech.CONJUNCTION,
    "Artikel": PartOfSpeech.DETERMINER,
    "Pronomen": PartOfSpeech.PRONOUN,
    "Numerale": PartOfSpeech.NUMERAL,
    "Partikel": PartOfSpeech.PARTICLE,
}

PROVIDER_PRIORITY: tuple[str, ...] = (
    "wiktextract",
    "kaikki",
    "mymemory",
    "tatoeba",
    "openthesaurus",
    "openai",
)

SNAPSHOT_COLUMNS: tuple[str, ...] = (
    "lemma", "pos", "level", "english", "example_de", "example_en",
    "gender", "plural", "separable", "aux", "praesens_ich", "praesens_er",
    "praeteritum", "partizip_ii", "perfekt", "comparative", "superlative",
    "sources_csv", "source_notes",
)


@dataclass(frozen=True, slots=True)
class LoadedSource:
    """Rows produced by one named loader."""

    name: str
    rows: list[RawWordRow]


def read_optional_text(path: str | Path) -> str | None:
    """Read a UTF-8 file, returning None when it does not exist."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def key_for(lemma: str, pos: PartOfSpeech | str) -> str:
    pos_value = pos.value if isinstance(pos, PartOfSpeech) else pos
    return f"{lemma.lower()}::{pos_value}"


# ---------------------------------------------------------------------------
# Per-category JSONL
# ---------------------------------------------------------------------------

POS_FILES: tuple[tuple[str, PartOfSpeech], ...] = (
    ("verbs.jsonl", PartOfSpeech.VERB),
    ("nouns.jsonl", PartOfSpeech.NOUN),
    ("adjectives.jsonl", PartOfSpeech.ADJECTIVE),
    ("adverbs.jsonl", PartOfSpeech.ADVERB),
    ("prepositions.jsonl", PartOfSpeech.PREPOSITION),
    ("conjunctions.jsonl", PartOfSpeech.CONJUNCTION),
    ("pronouns.jsonl", PartOfSpeech.PRONOUN),
    ("particles.jsonl", PartOfSpeech.PARTICLE),
)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _map_pos_record(
    record: dict[str, Any], pos: PartOfSpeech, source_id: str
) -> RawWordRow | None:
    lemma = normalise_string(record.get("lemma"))
    if lemma is None:
        return None

    example = _as_dict(record.get("example"))
    example_de, example_en, examples = normalise_examples(
        record.get("examples"),
        record.get("example_de") or record.get("exampleDe") or example.get("de"),
        record.get("example_en") or record.get("exampleEn") or example.get("en"),
    )
    row = RawWordRow(
        lemma=lemma,
        pos=pos,
        level=normalise_level(record.get("level")),
        english=normalise_string(record.get("english")),
        example_de=example_de,
        example_en=example_en,
        examples=examples,
        approved=normalise_boolean(record.get("approved")) or False,
        sources=(source_id,),
    )

    if pos is PartOfSpeech.VERB:
        verb = _as_dict(record.get("verb"))
        praesens = _as_dict(verb.get("praesens"))
        row.separable = normalise_boolean(verb.get("separable"))
        row.aux = normalise_aux([verb.get("aux")])
        row.praesens_ich = normalise_string(praesens.get("ich"))
        row.praesens_er = normalise_string(praesens.get("er"))
        row.praeteritum = normalise_string(verb.get("praeteritum"))
        row.partizip_ii = normalise_string(verb.get("partizipIi"))
        row.perfekt = normalise_string(verb.get("perfekt"))
    elif pos is PartOfSpeech.NOUN:
        noun = _as_dict(record.get("noun"))
        row.gender = normalise_gender(noun.get("gender"))
        row.plural = normalise_string(noun.get("plural"))
    elif pos in (PartOfSpeech.ADJECTIVE, PartOfSpeech.ADVERB):
        forms = _as_dict(record.get("adjective" if pos is PartOfSpeech.ADJECTIVE else "adverb"))
        row.comparative = normalise_string(forms.get("comparative"))
        row.superlative = normalise_string(forms.get("superlative"))
    elif pos is PartOfSpeech.PREPOSITION:
        preposition = _as_dict(record.get("preposition"))
        cases = preposition.get("cases")
        notes = preposition.get("notes")
        case_list = normalise_string_list(cases) if isinstance(cases, list) else []
        note_list = normalise_string_list(notes) if isinstance(notes, list) else []
        row.pos_attributes = PosAttributes(
            pos=PartOfSpeech.PREPOSITION.value,
            preposition_cases=tuple(case_list),
            preposition_notes=tuple(note_list),
            notes=tuple(note_list),
        )
    return row


def load_pos_jsonl_rows(root: Path) -> list[RawWordRow]:
    """Load ``data/pos/*.jsonl``; malformed lines and duplicates are fatal."""
    pos_dir = Path(root) / POS_DIR
    rows: list[RawWordRow] = []
    seen: dict[str, tuple[Path, int]] = {}

    for filename, pos in POS_FILES:
        path = pos_dir / filename
        content = read_optional_text(path)
        if content is None:
            continue
        source_id = f"pos_jsonl:{path.stem}"
        for line_no, raw_line in enumerate(content.splitlines(), start=1):
            line = raw_line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise DataImportError(
                    f"Failed to parse {path}:{line_no}: {e}"
                ) from e
            if not isinstance(record, dict):
                raise DataImportError(
                    f"Failed to parse {path}:{line_no}: record must be an object"
                )
            row = _map_pos_record(record, pos, source_id)
            if row is None:
                continue
            key = key_for(row.lemma, row.pos)
            if key in seen:
                first_path, first_line = seen[key]
                raise DataImportError(
                    f"Duplicate word {row.lemma} ({pos.value}) in {path}:{line_no} "
                    f"(also defined at {first_path}:{first_line})"
                )
            seen[key] = (path, line_no)
            rows.append(row)

    logger.debug("Loaded %d rows from %s", len(rows), pos_dir)
    return rows


# ---------------------------------------------------------------------------
# Flat CSV tables
# ---------------------------------------------------------------------------

def _split_sources(value: Any) -> tuple[str, ...]:
    text = normalise_string(value)
    if text is None:
        return ()
    return tuple(s.strip() for s in text.split(";") if s.strip())


def _row_from_flat_record(
    record: dict[str, Any], default_source: str
) -> RawWordRow | None:
    lemma = normalise_string(record.get("lemma"))
    pos = normalise_pos(record.get("pos"))
    if lemma is None or pos is None:
        return None
    example_de, example_en, examples = normalise_examples(
        None, record.get("example_de"), record.get("example_en"),
    )
    return RawWordRow(
        lemma=lemma,
        pos=pos,
        level=normalise_level(record.get("level")),
        english=normalise_string(record.get("english")),
        example_de=example_de,
        example_en=example_en,
        examples=examples,
        gender=normalise_gender(record.get("gender")) if pos is PartOfSpeech.NOUN else None,
        plural=normalise_string(record.get("plural")),
        separable=normalise_boolean(record.get("separable")),
        aux=normalise_aux([record.get("aux")]),
        praesens_ich=normalise_string(record.get("praesens_ich")),
        praesens_er=normalise_string(record.get("praesens_er")),
        praeteritum=normalise_string(record.get("praeteritum")),
        partizip_ii=normalise_string(record.get("partizip_ii")),
        perfekt=normalise_string(record.get("perfekt")),
        comparative=normalise_string(record.get("comparative")),
        superlative=normalise_string(record.get("superlative")),
        approved=normalise_boolean(record.get("approved")),
        sources=_split_sources(record.get("sources_csv")) or (default_source,),
        source_notes=normalise_string(record.get("source_notes")),
    )


def load_manual_csv_rows(root: Path) -> list[RawWordRow]:
    """Load the manually curated flat word table."""
    path = Path(root) / MANUAL_CSV
    content = read_optional_text(path)
    if content is None:
        return []
    rows: list[RawWordRow] = []
    for line_no, record in enumerate(csv.DictReader(io.StringIO(content)), start=2):
        row = _row_from_flat_record(record, path.name)
        if row is None:
            logger.warning(
                "Skipping %s:%d: missing lemma or unknown part of speech %r",
                path, line_no, record.get("pos"),
            )
            continue
        rows.append(row)
    return rows


def load_canonical_keys(root: Path) -> set[str] | None:
    """Return the canonical allow-list keys, or None when there is no list.

    A row without a lemma or with an unknown part of speech is fatal.
    """
    path = Path(root) / CANONICAL_CSV
    content = read_optional_text(path)
    if content is None:
        return None
    keys: set[str] = set()
    for line_no, record in enumerate(csv.DictReader(io.StringIO(content)), start=2):
        lemma = normalise_string(record.get("lemma"))
        if lemma is None:
            raise DataImportError(f"{path}:{line_no}: canonical row has no lemma")
        pos = normalise_pos(record.get("pos"))
        if pos is None:
            raise DataImportError(
                f"{path}:{line_no}: unknown part of speech {record.get('pos')!r} "
                f"for canonical word {lemma!r}"
            )
        keys.add(key_for(lemma, pos))
    return keys


# ---------------------------------------------------------------------------
# External community datasets
# ---------------------------------------------------------------------------

def _load_dwds_rows(external_dir: Path) -> list[RawWordRow]:
    rows: list[RawWordRow] = []
    for filename, level in DWDS_FILES:
        content = read_optional_text(external_dir / filename)
        if content is None:
            continue
        for record in csv.DictReader(io.StringIO(content)):
            lemma = normalise_string(record.get("Lemma"))
            wortart = normalise_string(record.get("Wortart"))
            pos = WORTART_MAP.get(wortart) if wortart else None
            if lemma is None or pos is None:
                continue
            gender = None
            if pos is PartOfSpeech.NOUN:
                gender = normalise_string(record.get("Artikel")) or normalise_gender(
                    record.get("Genus")
                )
            rows.append(RawWordRow(
                lemma=lemma,
                pos=pos,
                level=level,
                gender=gender,
                sources=(filename,),
                source_notes=normalise_string(record.get("URL")),
            ))
    return rows


def _load_learn_deutsch_rows(external_dir: Path) -> list[RawWordRow]:
    path = external_dir / LEARN_DEUTSCH_FILE
    content = read_optional_text(path)
    if content is None:
        return []
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise DataImportError(f"Failed to parse {path}: {e}") from e
    vocabulary = _as_dict(_as_dict(data).get("vocabulary"))
    rows: list[RawWordRow] = []

    for entry in vocabulary.get("nouns") or []:
        entry = _as_dict(entry)
        lemma = normalise_string(entry.get("word"))
        if lemma is None:
            continue
        rows.append(RawWordRow(
            lemma=lemma,
            pos=PartOfSpeech.NOUN,
            level=normalise_level(entry.get("level")),
            english=normalise_string(entry.get("english")),
            gender=normalise_gender(entry.get("article")),
            plural=normalise_string(entry.get("plural")),
            sources=("learn-deutsch-data:nouns",),
            source_notes=normalise_string(entry.get("details")),
        ))

    for group, source_id in (("verbs", "learn-deutsch-data:verbs"),
                             ("modalVerbs", "learn-deutsch-data:modal")):
        for entry in vocabulary.get(group) or []:
            entry = _as_dict(entry)
            lemma = normalise_string(entry.get("infinitive"))
            if lemma is None:
                continue
            conjugation = _as_dict(entry.get("conjugation"))
            notes = entry.get("details")
            if group == "modalVerbs":
                notes = entry.get("pronunciation") or notes
            rows.append(RawWordRow(
                lemma=lemma,
                pos=PartOfSpeech.VERB,
                level=normalise_level(entry.get("level")),
                english=normalise_string(entry.get("english")),
                separable=(entry.get("type") == "separable") if group == "verbs" else None,
                praesens_ich=normalise_string(conjugation.get("ich")),
                praesens_er=normalise_string(conjugation.get("er/sie/es")),
                sources=(source_id,),
                source_notes=normalise_string(notes),
            ))
    return rows


def snapshot_external_sources(path: Path, rows: Sequence[RawWordRow]) -> None:
    """Write the combined external rows as a CSV audit snapshot."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(SNAPSHOT_COLUMNS)
    for row in rows:
        pos = row.pos.value if isinstance(row.pos, PartOfSpeech) else row.pos
        values = {
            "lemma": row.lemma,
            "pos": pos,
            "level": row.level,
            "english": row.english,
            "example_de": row.example_de,
            "example_en": row.example_en,
            "gender": row.gender,
            "plural": row.plural,
            "separable": "" if row.separable is None else str(row.separable).lower(),
            "aux": row.aux,
            "praesens_ich": row.praesens_ich,
            "praesens_er": row.praesens_er,
            "praeteritum": row.praeteritum,
            "partizip_ii": row.partizip_ii,
            "perfekt": row.perfekt,
            "comparative": row.comparative,
            "superlative": row.superlative,
            "sources_csv": ";".join(row.sources),
            "source_notes": row.source_notes,
        }
        writer.writerow(["" if values[c] is None else values[c] for c in SNAPSHOT_COLUMNS])
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(buffer.getvalue(), encoding="utf-8")


def load_external_rows(root: Path) -> list[RawWordRow]:
    """Load DWDS Goethe lists and learn-deutsch data, then snapshot them."""
    external_dir = Path(root) / EXTERNAL_DIR
    rows = _load_dwds_rows(external_dir) + _load_learn_deutsch_rows(external_dir)
    if rows:
        snapshot_external_sources(Path(root) / SNAPSHOT_CSV, rows)
    return rows


# ---------------------------------------------------------------------------
# Enrichment provider snapshots
# ---------------------------------------------------------------------------

def _provider_rank(provider_id: str) -> int:
    try:
        return PROVIDER_PRIORITY.index(provider_id.lower())
    except ValueError:
        return len(PROVIDER_PRIORITY)


def _first_string(values: Any) -> str | None:
    if not isinstance(values, list):
        return None
    for value in values:
        text = normalise_string(value)
        if text:
            return text
    return None


def _enrichment_row(
    lemma: str,
    pos: PartOfSpeech,
    entry: dict[str, Any],
    provider_id: str,
    applied_at: str | None,
) -> RawWordRow:
    translations = []
    for raw in entry.get("translations") or []:
        raw = _as_dict(raw)
        value = normalise_string(raw.get("value"))
        if value is None:
            continue
        confidence = raw.get("confidence")
        translations.append(WordTranslation(
            value=value,
            source=normalise_string(raw.get("source")) or provider_id,
            language=normalise_string(raw.get("language")),
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        ))

    example_de, example_en, examples = normalise_examples(entry.get("examples"))
    row = RawWordRow(
        lemma=lemma,
        pos=pos,
        translations=tuple(translations) or None,
        example_de=example_de,
        example_en=example_en,
        examples=examples,
        enrichment_applied_at=applied_at,
        enrichment_method=provider_id,
        sources=(f"enrichment:{provider_id}",),
    )

    for forms in entry.get("verbForms") or []:
        forms = _as_dict(forms)
        row.praeteritum = row.praeteritum or normalise_string(forms.get("praeteritum"))
        row.partizip_ii = row.partizip_ii or normalise_string(forms.get("partizipIi"))
        row.perfekt = row.perfekt or normalise_string(forms.get("perfekt"))
        aux_values = [forms.get("aux")] + list(forms.get("auxiliaries") or [])
        row.aux = row.aux or normalise_aux(aux_values)
    for forms in entry.get("nounForms") or []:
        forms = _as_dict(forms)
        row.gender = row.gender or normalise_gender(_first_string(forms.get("genders")))
        row.plural = row.plural or _first_string(forms.get("plurals"))
    for forms in entry.get("adjectiveForms") or []:
        forms = _as_dict(forms)
        row.comparative = row.comparative or _first_string(forms.get("comparatives"))
        row.superlative = row.superlative or _first_string(forms.get("superlatives"))
    cases: list[Any] = []
    notes: list[Any] = []
    for attrs in entry.get("prepositionAttributes") or []:
        attrs = _as_dict(attrs)
        cases.extend(attrs.get("cases") or [])
        notes.extend(attrs.get("notes") or [])
    if cases or notes:
        row.pos_attributes = PosAttributes(
            pos=pos.value,
            preposition_cases=tuple(normalise_string_list(cases)),
            preposition_notes=tuple(normalise_string_list(notes)),
        )
    return row


def load_enrichment_rows(root: Path) -> list[RawWordRow]:
    """Load persisted provider snapshots, highest-priority provider first."""
    base = Path(root) / ENRICHMENT_DIR
    if not base.is_dir():
        return []
    paths = sorted(base.glob("*.json")) + sorted(base.glob("*/*.json"))

    ranked: list[tuple[int, str, str, RawWordRow]] = []
    for path in paths:
        content = read_optional_text(path)
        if content is None:
            continue
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise DataImportError(f"Failed to parse {path}: {e}") from e
        payload = _as_dict(payload)
        entries = _as_dict(payload.get("entries"))
        for key, entry in entries.items():
            entry = _as_dict(entry)
            if not entry or entry.get("status") == "error":
                continue
            lemma = normalise_string(entry.get("lemma")) or normalise_string(key)
            pos = normalise_pos(entry.get("pos") or payload.get("pos"))
            provider_id = normalise_string(
                entry.get("providerId") or payload.get("providerId")
            )
            if lemma is None or pos is None or provider_id is None:
                logger.debug("Skipping enrichment entry %r in %s", key, path)
                continue
            applied_at = normalise_string(
                entry.get("collectedAt") or payload.get("updatedAt")
            )
            label = normalise_string(
                entry.get("providerLabel") or payload.get("providerLabel")
            ) or provider_id
            row = _enrichment_row(lemma, pos, entry, provider_id, applied_at)
            ranked.append((_provider_rank(provider_id), label, key_for(lemma, pos), row))

    ranked.sort(key=lambda item: (item[0], item[1], item[2]))
    return [row for _, _, _, row in ranked]


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

DEFAULT_LOADERS: tuple[tuple[str, Loader], ...] = (
    ("pos_jsonl", load_pos_jsonl_rows),
    ("manual_csv", load_manual_csv_rows),
    ("external", load_external_rows),
    ("enrichment", load_enrichment_rows),
)

LOADERS_BY_NAME: dict[str, Loader] = dict(DEFAULT_LOADERS)


def resolve_loaders(names: Sequence[str]) -> list[tuple[str, Loader]]:
    """Look up loaders by name, preserving the given precedence order."""
    resolved = []
    for name in names:
        if name not in LOADERS_BY_NAME:
            raise ValueError(
                f"Unknown loader {name!r}; expected one of {sorted(LOADERS_BY_NAME)}"
            )
        resolved.append((name, LOADERS_BY_NAME[name]))
    return resolved


def load_all_sources(
    root: str | Path,
    loaders: Sequence[tuple[str, Loader]] = DEFAULT_LOADERS,
    *,
    max_workers: int = 4,
) -> list[LoadedSource]:
    """Run *loaders* against *root* and return results in declared order.

    File reading runs on a thread pool; ``Executor.map`` keeps the output
    aligned with *loaders* whatever the completion order.
    """
    root = Path(root)
    if not loaders:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(loaders)))) as pool:
        results = list(pool.map(lambda item: item[1](root), loaders))
    loaded = [
        LoadedSource(name=name, rows=rows)
        for (name, _), rows in zip(loaders, results)
    ]
    for source in loaded:
        logger.info("Loader %s produced %d rows", source.name, len(source.rows))
    return loaded
