"""
Command-line interface for seeding and syncing the lexical database.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Optional

from lexicon_sync import __version__
from lexicon_sync.config import PipelineConfig, load_config
from lexicon_sync.db import open_database
from lexicon_sync.exceptions import ConfigError, LexiconSyncError
from lexicon_sync.inventory import build_lexeme_inventory
from lexicon_sync.pipeline import SeedOptions, collect_words, seed_database
from lexicon_sync.sync_state import SqliteMarkerStore
from lexicon_sync.synchronizer import TaskSpecSynchronizer
from lexicon_sync.validator import validate_word

logger = logging.getLogger(__name__)


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the lexicon-sync CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except ConfigError as e:
        print(f"\n  [CONFIG ERROR] {e}")
        if e.line:
            print(f"                Line: {e.line}")
        return 1
    except FileNotFoundError as e:
        print(f"\n  [ERROR] {e}")
        return 1
    except LexiconSyncError as e:
        logger.error("%s", e)
        print(f"\n  [ERROR] {e}")
        return 1
    except Exception as e:
        logger.exception("Unexpected failure in %s", args.command)
        print(f"\n  [ERROR] {e}")
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lexicon-sync",
        description="Ingest German lexical data and keep practice tasks in sync",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(title="commands", dest="command")

    # seed command
    seed_parser = subparsers.add_parser(
        "seed",
        help="Run the full ingestion pipeline once",
    )
    _add_root_argument(seed_parser)
    _add_db_argument(seed_parser)
    seed_parser.add_argument(
        "--config",
        type=Path,
        help="YAML configuration file",
    )
    seed_parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete all seeded content before seeding",
    )
    seed_parser.add_argument(
        "--packs",
        action="store_true",
        help="Also build and persist golden content packs",
    )
    seed_parser.set_defaults(func=cmd_seed)

    # sync command
    sync_parser = subparsers.add_parser(
        "sync",
        help="Regenerate task specs for lexemes changed since the last sync",
    )
    _add_root_argument(sync_parser)
    _add_db_argument(sync_parser)
    sync_parser.add_argument(
        "--full",
        action="store_true",
        help="Ignore the stored marker and regenerate every task",
    )
    sync_parser.add_argument(
        "--reset-marker",
        action="store_true",
        help="Clear the stored marker and exit",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # validate command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Report per-word validation errors and warnings",
    )
    _add_root_argument(validate_parser)
    validate_parser.set_defaults(func=cmd_validate)

    # attribution command
    attribution_parser = subparsers.add_parser(
        "attribution",
        help="Summarize contributing sources and their licenses",
    )
    _add_root_argument(attribution_parser)
    attribution_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the summary as JSON",
    )
    attribution_parser.set_defaults(func=cmd_attribution)

    return parser


def _add_root_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--root",
        type=Path,
        help="Project root holding the data/ directory (default: current directory)",
    )


def _add_db_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db",
        type=Path,
        help="SQLite database path (default: data/lexicon.db under the root)",
    )


def _resolve_config(args: argparse.Namespace) -> PipelineConfig:
    config = load_config(getattr(args, "config", None))
    if args.root:
        config = replace(config, root=args.root)
    if getattr(args, "db", None):
        config = replace(config, db_path=args.db)
    return config


def cmd_seed(args: argparse.Namespace) -> int:
    """Handle seed command."""
    config = _resolve_config(args)
    db_path = config.resolved_db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    print(f"\nSeeding {db_path} from {config.root}...")

    options = SeedOptions(
        reset=args.reset,
        packs=args.packs or config.build_packs,
        loaders=config.loaders,
        log_validation_warnings=config.log_validation_warnings,
        batch_size=config.batch_size,
        max_workers=config.max_workers,
    )
    conn = open_database(db_path)
    try:
        result = seed_database(config.root, conn, options)
    finally:
        conn.close()

    print("\nResults:")
    print(f"  Aggregated words: {result.aggregated_words}")
    print(f"  Lexemes:          {result.lexemes}")
    print(f"  Inflections:      {result.inflections}")
    print(f"  Task specs:       {result.task_specs}")
    print(f"  Skipped words:    {len(result.failures)}")
    print(f"  Sources:          {len(result.attribution)}")
    for path in result.pack_files:
        print(f"  Pack written:     {path}")
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    """Handle sync command."""
    config = _resolve_config(args)
    conn = open_database(config.resolved_db_path)
    try:
        store = SqliteMarkerStore(conn)
        if args.reset_marker:
            store.clear()
            print("Sync marker cleared.")
            return 0

        synchronizer = TaskSpecSynchronizer(conn)
        result = synchronizer.run(store, force_full=args.full)
    finally:
        conn.close()

    if result.latest_touched_at is None and result.lexemes == 0:
        print("No changes since the last sync.")
        return 0

    print("\nResults:")
    print(f"  Lexemes processed: {result.lexemes}")
    print(f"  Tasks upserted:    {result.upserted}")
    print(f"  Tasks removed:     {result.deleted}")
    print(f"  Marker:            {result.latest_touched_at}")
    if synchronizer.failures:
        print(f"  Skipped lexemes:   {len(synchronizer.failures)}")
        return 1
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Handle validate command."""
    config = _resolve_config(args)
    print(f"\nValidating words under {config.root}...")
    words = collect_words(config.root, config.loaders, max_workers=config.max_workers)

    error_count = 0
    warning_count = 0
    for word in words:
        result = validate_word(word)
        for error in result.errors:
            print(f"  [ERROR] {result.lemma} ({result.pos}): {error}")
        for warning in result.warnings:
            print(f"  [WARN]  {result.lemma} ({result.pos}): {warning}")
        error_count += len(result.errors)
        warning_count += len(result.warnings)

    print(f"\nChecked {len(words)} word(s): {error_count} error(s), {warning_count} warning(s)")
    return 1 if error_count else 0


def cmd_attribution(args: argparse.Namespace) -> int:
    """Handle attribution command."""
    config = _resolve_config(args)
    words = collect_words(config.root, config.loaders, max_workers=config.max_workers)
    entries = build_lexeme_inventory(words).attribution

    if args.json:
        print(json.dumps([asdict(e) for e in entries], indent=2, ensure_ascii=False))
        return 0

    if not entries:
        print("No sources found.")
        return 0

    print(f"\n{'Source':<40} {'Words':<7} {'License'}")
    print("-" * 80)
    for entry in entries:
        label = (entry.label[:37] + "...") if len(entry.label) > 40 else entry.label
        print(f"{label:<40} {entry.count:<7} {entry.license}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
