"""End-to-end seed run: load, merge, validate, derive and persist."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from lexicon_sync.db import Clock, utc_timestamp
from lexicon_sync.inventory import build_lexeme_inventory
from lexicon_sync.loaders import DEFAULT_LOADERS, load_all_sources, load_canonical_keys, resolve_loaders
from lexicon_sync.merger import aggregate_words
from lexicon_sync.models import AggregatedWord, AttributionEntry, TaskFailure
from lexicon_sync.packs import build_golden_bundles, write_bundles_to_disk
from lexicon_sync.persistence import (
    WORDS_BATCH_SIZE,
    CancellationToken,
    reset_seeded_content,
    sync_legacy_words,
    upsert_lexeme_inventory,
    upsert_pack_bundles,
    upsert_task_inventory,
)
from lexicon_sync.templates import build_task_inventory
from lexicon_sync.validator import collect_validation_issues

logger = logging.getLogger(__name__)


@dataclass
class SeedOptions:
    reset: bool = False
    packs: bool = False
    loaders: Sequence[str] = tuple(name for name, _ in DEFAULT_LOADERS)
    log_validation_warnings: bool = False
    batch_size: int = WORDS_BATCH_SIZE
    clock: Clock = utc_timestamp
    token: Optional[CancellationToken] = None
    max_workers: int = 4


@dataclass
class SeedResult:
    """Counts reported after a seed run."""

    aggregated_words: int = 0
    lexemes: int = 0
    inflections: int = 0
    task_specs: int = 0
    failures: list[TaskFailure] = field(default_factory=list)
    attribution: list[AttributionEntry] = field(default_factory=list)
    pack_files: list[Path] = field(default_factory=list)


def collect_words(
    root: str | Path,
    loaders: Sequence[str] = tuple(name for name, _ in DEFAULT_LOADERS),
    *,
    max_workers: int = 4,
) -> list[AggregatedWord]:
    """Load every source under *root* and merge it, sorted by key."""
    root = Path(root)
    sources = load_all_sources(root, resolve_loaders(loaders), max_workers=max_workers)
    canonical = load_canonical_keys(root)
    words = aggregate_words(sources, canonical)
    return sorted(words.values(), key=lambda w: w.key)


def seed_database(
    root: str | Path,
    conn: sqlite3.Connection,
    options: Optional[SeedOptions] = None,
) -> SeedResult:
    """Run the full pipeline once against *conn*.

    Raises:
        DataImportError: malformed source or canonical data
        UnsupportedPosError: a word whose part of speech has no lexeme category
        SyncCancelled: the token was cancelled between two batches
    """
    options = options or SeedOptions()
    root = Path(root)

    if options.reset:
        reset_seeded_content(conn)

    words = collect_words(root, options.loaders, max_workers=options.max_workers)
    collect_validation_issues(words, log_warnings=options.log_validation_warnings)

    sync_legacy_words(
        conn, words, clock=options.clock,
        batch_size=options.batch_size, token=options.token,
    )

    inventory = build_lexeme_inventory(words)
    upsert_lexeme_inventory(
        conn, inventory, clock=options.clock,
        batch_size=options.batch_size, token=options.token,
    )

    tasks = build_task_inventory(words)
    upsert_task_inventory(conn, tasks.tasks, clock=options.clock, token=options.token)
    if tasks.failures:
        logger.warning("%d words produced no tasks", len(tasks.failures))

    result = SeedResult(
        aggregated_words=len(words),
        lexemes=len(inventory.lexemes),
        inflections=len(inventory.inflections),
        task_specs=len(tasks.tasks),
        failures=list(tasks.failures),
        attribution=list(inventory.attribution),
    )

    if options.packs:
        bundles = build_golden_bundles(words)
        upsert_pack_bundles(conn, bundles, clock=options.clock, token=options.token)
        result.pack_files = write_bundles_to_disk(root, bundles)

    logger.info(
        "Seeded %d words, %d lexemes, %d task specs",
        result.aggregated_words, result.lexemes, result.task_specs,
    )
    return result
