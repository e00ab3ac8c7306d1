"""Custom exception hierarchy for lexicon-sync."""


class LexiconSyncError(Exception):
    """Base exception for all lexicon-sync errors."""


class DataImportError(LexiconSyncError):
    """Failed to import source data (malformed JSONL, bad canonical list, etc.)."""


class UnsupportedPosError(LexiconSyncError):
    """Part of speech cannot be mapped to a lexeme category."""


class WordValidationError(LexiconSyncError):
    """Aggregated word failed its part-of-speech validation."""


class TaskValidationError(LexiconSyncError):
    """Generated task does not match the task-type registry."""


class ConfigError(LexiconSyncError):
    """Invalid pipeline configuration file or environment value."""

    def __init__(self, message: str, line: int | None = None):
        self.line = line
        super().__init__(message)


class DatabaseError(LexiconSyncError):
    """Schema version mismatch, connection failure."""


class SyncCancelled(LexiconSyncError):
    """A batch operation was cancelled between two committed chunks."""
