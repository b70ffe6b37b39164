"""Analysis configuration loaded from defaults, YAML files and the environment."""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from .exceptions import ConfigError

PLACEHOLDER_API_KEY = "your_openai_api_key_here"

DEFAULT_RESOURCE_TYPES = ("Coin", "Pool", "Treasury", "Balance")

# env var -> (field, converter)
_ENV_OVERRIDES: dict[str, tuple[str, Any]] = {
    "OPENAI_API_KEY": ("llm_api_key", str),
    "OPENAI_BASE_URL": ("llm_base_url", str),
    "MOVESCAN_MODEL": ("llm_model", str),
    "MOVESCAN_MAX_CONCURRENCY": ("max_concurrency", int),
    "MOVESCAN_LLM_TIMEOUT": ("llm_timeout", float),
    "MOVESCAN_CHUNK_TOKENS": ("max_tokens_per_chunk", int),
    "MOVESCAN_BUCKET_WIDTH": ("dedup_bucket_width", int),
}


@dataclass
class AnalysisConfig:
    """Every tunable of one analysis request."""

    # Chunking for the semantic analyzer
    max_tokens_per_chunk: int = 1500
    tokens_per_char: float = 0.25

    # Contextual inference
    llm_api_key: str | None = None
    llm_base_url: str | None = None
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 1000
    llm_timeout: float = 60.0
    max_concurrency: int = 4

    # Aggregation
    dedup_bucket_width: int = 5
    dedup_description_words: int = 3
    merge_descriptions: bool = True

    # Taint seeds
    resource_types: tuple[str, ...] = field(default=DEFAULT_RESOURCE_TYPES)

    # Rule thresholds
    capability_threshold: int = 2
    admin_function_threshold: int = 5
    gas_repeat_threshold: int = 3

    # Rule engine fan-out
    parallel_rules: bool = True
    max_workers: int | None = None

    @property
    def llm_enabled(self) -> bool:
        """True only when a usable credential is configured."""
        key = (self.llm_api_key or "").strip()
        return bool(key) and key != PLACEHOLDER_API_KEY

    @property
    def worker_count(self) -> int:
        if self.max_workers:
            return max(1, self.max_workers)
        return max(1, int((os.cpu_count() or 1) * 0.8))

    def validate(self) -> "AnalysisConfig":
        """Raise ConfigError for values no engine can work with."""
        positive = {
            "max_tokens_per_chunk": self.max_tokens_per_chunk,
            "tokens_per_char": self.tokens_per_char,
            "llm_timeout": self.llm_timeout,
            "max_concurrency": self.max_concurrency,
            "dedup_bucket_width": self.dedup_bucket_width,
            "dedup_description_words": self.dedup_description_words,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive", {"value": str(value)})
        if self.max_workers is not None and self.max_workers <= 0:
            raise ConfigError("max_workers must be positive", {"value": str(self.max_workers)})
        if not self.resource_types:
            raise ConfigError("resource_types must not be empty")
        return self

    @classmethod
    def from_env(cls, base: "AnalysisConfig | None" = None) -> "AnalysisConfig":
        """Overlay environment variables on ``base`` (or the defaults)."""
        config = base or cls()
        updates: dict[str, Any] = {}
        for env_name, (field_name, convert) in _ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                updates[field_name] = convert(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {env_name}", {"value": raw}) from e
        if updates:
            logger.debug(f"Configuration overrides from environment: {sorted(updates)}")
        return replace(config, **updates)

    @classmethod
    def from_file(cls, path: str | Path) -> "AnalysisConfig":
        """Load a YAML mapping of field names to values."""
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigError("Configuration file not found", {"path": str(file_path)})
        try:
            data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Error parsing YAML: {e}", {"path": str(file_path)}) from e
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping", {"path": str(file_path)})
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError("Unknown configuration keys", {"keys": ", ".join(unknown)})
        values = dict(data)
        if "resource_types" in values:
            resource_types = values["resource_types"]
            if not isinstance(resource_types, (list, tuple)) or not all(isinstance(t, str) for t in resource_types):
                raise ConfigError(
                    "resource_types must be a list of type names", {"value": repr(resource_types)}
                )
            values["resource_types"] = tuple(resource_types)
        return cls(**values)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "AnalysisConfig":
        """File values (if any), then environment overrides, then validation."""
        base = cls.from_file(path) if path else cls()
        return cls.from_env(base).validate()
