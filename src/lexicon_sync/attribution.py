"""Per-source attribution and licensing summary over aggregated words."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from lexicon_sync.models import AggregatedWord, AttributionEntry, PartOfSpeech

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_ID = "words_all_sources"
PENDING_LICENSE = "unspecified – pending review"


@dataclass(frozen=True, slots=True)
class SourceMetadata:
    label: str
    license: str
    url: str | None = None
    notes: str | None = None


_DWDS_URL = "https://www.dwds.de/"
_LEARN_DEUTSCH_URL = "https://github.com/savaged/learn-deutsch-data"

SOURCE_CATALOG: dict[str, SourceMetadata] = {
    DEFAULT_SOURCE_ID: SourceMetadata(
        label="Aggregated word table",
        license="CC BY-SA 4.0 (internal aggregate)",
        notes="Words merged from every configured loader",
    ),
    "manual_words.csv": SourceMetadata(
        label="Manually curated word table",
        license="CC BY-SA 4.0 (internal curation)",
        notes="Hand-maintained rows from data/manual_words.csv",
    ),
    "Goethe-Institut": SourceMetadata(
        label="Goethe-Institut curated list",
        license="CC BY-SA 4.0 (DWDS export)",
        url="https://www.goethe.de/",
    ),
    "dwds-goethe-A1.csv": SourceMetadata(
        label="DWDS Goethe-Zertifikat A1 export",
        license="CC BY-SA 4.0",
        url=_DWDS_URL,
    ),
    "dwds-goethe-A2.csv": SourceMetadata(
        label="DWDS Goethe-Zertifikat A2 export",
        license="CC BY-SA 4.0",
        url=_DWDS_URL,
    ),
    "dwds-goethe-B1.csv": SourceMetadata(
        label="DWDS Goethe-Zertifikat B1 export",
        license="CC BY-SA 4.0",
        url=_DWDS_URL,
    ),
    "learn-deutsch-data:verbs": SourceMetadata(
        label="Learn Deutsch community verbs",
        license="CC BY-SA 4.0 (community dataset)",
        url=_LEARN_DEUTSCH_URL,
    ),
    "learn-deutsch-data:nouns": SourceMetadata(
        label="Learn Deutsch community nouns",
        license="CC BY-SA 4.0 (community dataset)",
        url=_LEARN_DEUTSCH_URL,
    ),
    "learn-deutsch-data:modal": SourceMetadata(
        label="Learn Deutsch community modal verbs",
        license="CC BY-SA 4.0 (community dataset)",
        url=_LEARN_DEUTSCH_URL,
    ),
}


def resolve_source_metadata(source_id: str) -> SourceMetadata:
    """Look up *source_id* in the catalog, synthesizing prefixed ids."""
    if source_id in SOURCE_CATALOG:
        return SOURCE_CATALOG[source_id]

    prefix, _, rest = source_id.partition(":")
    if prefix == "pos_jsonl":
        slug = rest.split(":")[0] or "unknown"
        return SourceMetadata(
            label=f"POS seed ({slug}.jsonl)",
            license="CC BY-SA 4.0 (internal data/pos source)",
            notes="Deterministic per-POS JSONL inventory committed in data/pos/",
        )
    if prefix == "enrichment":
        method = rest.split(":")[0] or "unknown"
        return SourceMetadata(
            label=f"Enrichment applied ({method})",
            license="Composite – see enrichment snapshots",
            notes="Derived from stored enrichment provider payloads under data/enrichment/",
        )

    logger.warning("Unrecognized attribution source %r; marking pending review", source_id)
    return SourceMetadata(label=source_id, license=PENDING_LICENSE)


def collect_sources(word: AggregatedWord) -> tuple[str, ...]:
    return word.sources or (DEFAULT_SOURCE_ID,)


def build_attribution_summary(words: Iterable[AggregatedWord]) -> list[AttributionEntry]:
    """Count contributed words per source and attach licensing, sorted by label."""
    counts: dict[str, int] = {}
    pos_by_source: dict[str, set[str]] = {}
    for word in words:
        pos = word.pos.value if isinstance(word.pos, PartOfSpeech) else str(word.pos)
        for source_id in collect_sources(word):
            counts[source_id] = counts.get(source_id, 0) + 1
            pos_by_source.setdefault(source_id, set()).add(pos)

    entries = []
    for source_id, count in counts.items():
        meta = resolve_source_metadata(source_id)
        entries.append(AttributionEntry(
            id=source_id,
            label=meta.label,
            license=meta.license,
            count=count,
            pos=tuple(sorted(pos_by_source[source_id])),
            url=meta.url,
            notes=meta.notes,
        ))
    entries.sort(key=lambda e: (e.label.lower(), e.id))
    return entries
