__version__ = "0.3.0"

from .exceptions import (
    LexiconSyncError as LexiconSyncError,
    DataImportError as DataImportError,
    UnsupportedPosError as UnsupportedPosError,
    WordValidationError as WordValidationError,
    TaskValidationError as TaskValidationError,
    ConfigError as ConfigError,
    DatabaseError as DatabaseError,
    SyncCancelled as SyncCancelled,
)

from .models import (
    PartOfSpeech as PartOfSpeech,
    LexemePos as LexemePos,
    SyncState as SyncState,
    RawWordRow as RawWordRow,
    AggregatedWord as AggregatedWord,
    LexemeSeed as LexemeSeed,
    InflectionSeed as InflectionSeed,
    TaskSpecSeed as TaskSpecSeed,
    AttributionEntry as AttributionEntry,
    PackBundle as PackBundle,
)

from .db import (
    connect as connect,
    init_db as init_db,
    open_database as open_database,
    MonotonicClock as MonotonicClock,
)

from .merger import aggregate_rows as aggregate_rows, aggregate_words as aggregate_words
from .validator import validate_word as validate_word
from .inventory import (
    build_lexeme_inventory as build_lexeme_inventory,
    create_lexeme_id as create_lexeme_id,
)
from .templates import (
    build_task_inventory as build_task_inventory,
    generate_task_specs as generate_task_specs,
)
from .attribution import build_attribution_summary as build_attribution_summary
from .persistence import CancellationToken as CancellationToken
from .sync_state import (
    InMemoryMarkerStore as InMemoryMarkerStore,
    SqliteMarkerStore as SqliteMarkerStore,
)
from .synchronizer import TaskSpecSynchronizer as TaskSpecSynchronizer
from .pipeline import (
    SeedOptions as SeedOptions,
    SeedResult as SeedResult,
    seed_database as seed_database,
)
