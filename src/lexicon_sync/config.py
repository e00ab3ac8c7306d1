"""
Pipeline configuration: optional YAML file plus environment overrides.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from lexicon_sync.exceptions import ConfigError
from lexicon_sync.loaders import DEFAULT_LOADERS, LOADERS_BY_NAME
from lexicon_sync.normalize import normalise_boolean
from lexicon_sync.persistence import WORDS_BATCH_SIZE

ENV_DB = "LEXICON_SYNC_DB"
ENV_ROOT = "LEXICON_SYNC_ROOT"
ENV_LOG_VALIDATION_WARNINGS = "LEXICON_SYNC_LOG_VALIDATION_WARNINGS"
ENV_BATCH_SIZE = "LEXICON_SYNC_BATCH_SIZE"

DEFAULT_DB_PATH = Path("data") / "lexicon.db"


@dataclass(frozen=True)
class PipelineConfig:
    """Settings for one seed or sync run."""

    root: Path = field(default_factory=Path.cwd)
    db_path: Path = DEFAULT_DB_PATH
    loaders: Tuple[str, ...] = tuple(name for name, _ in DEFAULT_LOADERS)
    log_validation_warnings: bool = False
    batch_size: int = WORDS_BATCH_SIZE
    build_packs: bool = False
    max_workers: int = 4

    @property
    def resolved_db_path(self) -> Path:
        """Database path, relative paths taken from ``root``."""
        if self.db_path.is_absolute():
            return self.db_path
        return self.root / self.db_path


def load_config(
    source: Union[str, Path, None] = None,
    env: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """Build a :class:`PipelineConfig` from *source* and *env*.

    Args:
        source: Optional path to a YAML mapping of config keys.
        env: Environment mapping; defaults to ``os.environ``.

    Raises:
        ConfigError: If the file is invalid YAML or holds bad values
        FileNotFoundError: If *source* does not exist
    """
    config = PipelineConfig()
    if source is not None:
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        config = _apply_mapping(config, _load_yaml_file(path), base=path.parent)
    return apply_env_overrides(config, os.environ if env is None else env)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line_num = mark.line + 1 if mark else None
        raise ConfigError(f"Invalid YAML: {e}", line=line_num) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("YAML root must be a mapping (dictionary)")
    return data


def _apply_mapping(
    config: PipelineConfig, data: Dict[str, Any], base: Path
) -> PipelineConfig:
    known = {
        "root", "db", "loaders", "log_validation_warnings",
        "batch_size", "packs", "max_workers",
    }
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config field(s): {', '.join(unknown)}")

    changes: Dict[str, Any] = {}
    if "root" in data:
        changes["root"] = (base / str(data["root"])).resolve()
    if "db" in data:
        changes["db_path"] = Path(str(data["db"]))
    if "loaders" in data:
        changes["loaders"] = _parse_loaders(data["loaders"])
    if "log_validation_warnings" in data:
        changes["log_validation_warnings"] = _parse_bool(
            "log_validation_warnings", data["log_validation_warnings"]
        )
    if "batch_size" in data:
        changes["batch_size"] = _parse_positive_int("batch_size", data["batch_size"])
    if "packs" in data:
        changes["build_packs"] = _parse_bool("packs", data["packs"])
    if "max_workers" in data:
        changes["max_workers"] = _parse_positive_int("max_workers", data["max_workers"])
    return replace(config, **changes)


def apply_env_overrides(config: PipelineConfig, env: Mapping[str, str]) -> PipelineConfig:
    """Overlay ``LEXICON_SYNC_*`` variables onto *config*."""
    changes: Dict[str, Any] = {}
    if env.get(ENV_ROOT):
        changes["root"] = Path(env[ENV_ROOT])
    if env.get(ENV_DB):
        changes["db_path"] = Path(env[ENV_DB])
    if env.get(ENV_LOG_VALIDATION_WARNINGS):
        changes["log_validation_warnings"] = _parse_bool(
            ENV_LOG_VALIDATION_WARNINGS, env[ENV_LOG_VALIDATION_WARNINGS]
        )
    if env.get(ENV_BATCH_SIZE):
        changes["batch_size"] = _parse_positive_int(ENV_BATCH_SIZE, env[ENV_BATCH_SIZE])
    return replace(config, **changes) if changes else config


def _parse_loaders(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list) or not value:
        raise ConfigError("Field 'loaders' must be a non-empty list")
    names = tuple(str(v) for v in value)
    for name in names:
        if name not in LOADERS_BY_NAME:
            raise ConfigError(
                f"Unknown loader '{name}'. Valid: {', '.join(sorted(LOADERS_BY_NAME))}"
            )
    return names


def _parse_bool(name: str, value: Any) -> bool:
    parsed = normalise_boolean(value)
    if parsed is None:
        raise ConfigError(f"Field '{name}' must be a boolean, got {value!r}")
    return parsed


def _parse_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Field '{name}' must be a positive integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(
            f"Field '{name}' must be a positive integer, got {value!r}"
        ) from None
    if number < 1:
        raise ConfigError(f"Field '{name}' must be a positive integer, got {value!r}")
    return number
