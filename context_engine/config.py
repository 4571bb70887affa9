"""Configuration loading utilities for the context engine."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)

CONFIG_FILENAMES: tuple[str, ...] = (".context-engine.toml", "context-engine.toml")
DEFAULT_CONFIG_PATHS = (Path.home() / ".config" / "context-engine" / "config.toml",)
ENV_PREFIX = "CTXENGINE_"


def find_config_in_parents(
    start_path: Path, config_name: str | Sequence[str] = CONFIG_FILENAMES
) -> Path | None:
    """Search parent directories starting from ``start_path`` for configuration files."""

    if isinstance(config_name, str):
        candidate_names: tuple[str, ...] = (config_name,)
    else:
        candidate_names = tuple(config_name)

    current = start_path.resolve()
    if current.is_file():
        current = current.parent

    while True:
        for name in candidate_names:
            candidate = current / name
            if candidate.is_file():
                return candidate.resolve()
        if current.parent == current:
            break
        current = current.parent
    return None


@dataclass
class EngineOptions:
    """Tuning knobs for one indexing/retrieval/compression pipeline."""

    max_context_tokens: int = 32_000
    semantic_threshold: float = 0.7
    keyword_threshold: float = 0.6
    structural_threshold: float = 0.5
    max_retrieved_nodes: int = 50
    compression_target: float = 0.3
    # Accepted and reported; cross-session memory is not implemented.
    enable_memory: bool = True
    memory_retention_days: int = 30
    closure_depth: int = 1
    max_workers: int = 1
    embedding_method: str = "hashing"


@dataclass
class ManagerOptions:
    """Policy knobs for deciding when and how to optimise a request."""

    enable_smart_retrieval: bool = True
    enable_compression: bool = True
    max_context_ratio: float = 0.7
    compression_threshold: int = 8_000
    semantic_threshold: float = 0.7
    max_retrieved_nodes: int = 30
    force_smart_retrieval: bool = False
    reindex_interval: float = 600.0

    def engine_options(self, base: EngineOptions | None = None) -> EngineOptions:
        """Derive the engine options a manager runs its pipeline with."""
        return replace(
            base or EngineOptions(compression_target=0.6),
            semantic_threshold=self.semantic_threshold,
            max_retrieved_nodes=self.max_retrieved_nodes,
        )


@dataclass
class Settings:
    """Runtime configuration for the CLI and embedding applications."""

    model: str = "gpt-4o"
    log_level: str = "INFO"
    structured_logging: bool = False
    engine: EngineOptions = field(default_factory=EngineOptions)
    manager: ManagerOptions = field(default_factory=ManagerOptions)


def _cast_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "on", "yes", "y"}
    return bool(value)


def _cast_like(template: Any, value: Any) -> Any:
    """Coerce ``value`` to the type of a dataclass field default."""
    if isinstance(template, bool):
        return _cast_bool(value)
    if isinstance(template, int):
        return int(value)
    if isinstance(template, float):
        return float(value)
    return value if not isinstance(template, str) else str(value)


def _load_from_file(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    return _normalize_keys(data)


def _normalize_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            value = _normalize_keys(value)
        normalized[key.replace("-", "_")] = value
    return normalized


def _load_from_env(prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """Read ``CTXENGINE_*`` variables; ``ENGINE_``/``MANAGER_`` select a section."""
    env: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        name = key[len(prefix) :].lower()
        for section in ("engine", "manager"):
            if name.startswith(f"{section}_"):
                env.setdefault(section, {})[name[len(section) + 1 :]] = value
                break
        else:
            env[name] = value
    return env


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _build(cls: type, data: Mapping[str, Any], section: str) -> Any:
    defaults = cls()
    init_kwargs: dict[str, Any] = {}
    known = {item.name for item in fields(cls)}
    for key, value in data.items():
        if key not in known:
            logger.debug("Ignoring unknown %s option %r", section, key)
            continue
        init_kwargs[key] = _cast_like(getattr(defaults, key), value)
    return cls(**init_kwargs)


def settings_from_mapping(data: Mapping[str, Any]) -> Settings:
    """Build :class:`Settings` from an already merged configuration mapping."""
    engine = _build(EngineOptions, data.get("engine") or {}, "engine")
    manager = _build(ManagerOptions, data.get("manager") or {}, "manager")
    top_level = {key: value for key, value in data.items() if key not in {"engine", "manager"}}
    settings = _build(Settings, top_level, "top-level")
    settings.engine = engine
    settings.manager = manager
    return settings


def load_settings(explicit_path: Path | None = None) -> Settings:
    """Load configuration, merging file and environment sources."""

    file_data: dict[str, Any] = {}
    if explicit_path:
        file_data.update(_load_from_file(explicit_path))
    else:
        search_paths: list[Path] = []
        project_config = find_config_in_parents(Path.cwd(), CONFIG_FILENAMES)
        if project_config:
            search_paths.append(project_config)
        search_paths.extend(DEFAULT_CONFIG_PATHS)
        for candidate in search_paths:
            file_data = _load_from_file(candidate)
            if file_data:
                logger.debug("Loaded configuration from %s", candidate)
                break

    merged = _merge(file_data, _load_from_env())
    return settings_from_mapping(merged)


__all__ = [
    "CONFIG_FILENAMES",
    "EngineOptions",
    "ManagerOptions",
    "Settings",
    "find_config_in_parents",
    "load_settings",
    "settings_from_mapping",
]
