"""Unified configuration loaded from .refract.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".refract.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
    Path.home() / ".config" / "refract",
]


class TimingMode(StrEnum):
    """Named timing presets."""

    PRODUCTION = "production"
    DEMO = "demo"


# cooldown_ms, char_trigger, settling_ms, rate_limit_ms
_TIMING_PRESETS: dict[TimingMode, dict[str, int]] = {
    TimingMode.PRODUCTION: {
        "cooldown_ms": 500,
        "char_trigger": 30,
        "settling_ms": 700,
        "rate_limit_ms": 75,
    },
    TimingMode.DEMO: {
        "cooldown_ms": 100,
        "char_trigger": 15,
        "settling_ms": 200,
        "rate_limit_ms": 50,
    },
}


_DEMO_SECTION_DEFAULTS: dict[str, dict[str, int | float]] = {
    "queue": {"max_parallel": 3},
    "dedup": {"display_guard_seconds": 30.0, "enqueue_guard_seconds": 60.0},
}


class TimingConfig(BaseModel):
    """[timing] section.

    ``mode`` picks a preset; any of the preset fields set explicitly
    (in TOML or by env) wins over the preset value.
    """

    mode: TimingMode = TimingMode.PRODUCTION
    cooldown_ms: int = 500
    char_trigger: int = 30
    settling_ms: int = 700
    rate_limit_ms: int = 75

    watchdog_idle_ms: int = 6000
    watchdog_interval_ms: int = 1000
    early_text_min_chars: int = 50
    early_sentence_min_chars: int = 20
    soft_punct_min_len: int = 25
    soft_punct_min_chars_since: int = 8

    @model_validator(mode="before")
    @classmethod
    def _apply_preset(cls, data: Any) -> Any:
        """Fill unset preset fields from the selected mode."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        mode = TimingMode(data.get("mode", TimingMode.PRODUCTION))
        for key, value in _TIMING_PRESETS[mode].items():
            data.setdefault(key, value)
        return data

    @classmethod
    def preset(cls, mode: TimingMode | str) -> TimingConfig:
        """Build a config holding exactly the preset values for *mode*."""
        return cls.model_validate({"mode": TimingMode(mode)})

    @property
    def is_demo(self) -> bool:
        return self.mode == TimingMode.DEMO


class QueueSectionConfig(BaseModel):
    """[queue] section."""

    max_parallel: int = 2
    throttle_ms: int = 2000
    confidence_threshold: float = 0.3
    request_timeout: float = 15.0


class DedupSectionConfig(BaseModel):
    """[dedup] section."""

    ttl_seconds: float = 300.0
    max_entries: int = 100
    display_guard_seconds: float = 10.0
    enqueue_guard_seconds: float = 15.0


class EmbeddingsSectionConfig(BaseModel):
    """[embeddings] section."""

    provider: str = "auto"
    model: str | None = None
    cost_per_token: float = 0.00002


class ThemesSectionConfig(BaseModel):
    """[themes] section."""

    max_clusters: int = 3
    min_chunk_correlation: float = 0.55
    max_context_chars: int = 4000
    texts_per_cluster: int = 6
    model: str | None = None
    claude_timeout: int = 60


class LLMSectionConfig(BaseModel):
    """[llm] section, used for prod generation."""

    model: str = "haiku"


class StorageSectionConfig(BaseModel):
    """[storage] section."""

    path: str = ".refract-store.json"


class RefractConfig(BaseModel):
    """Top-level configuration model for refract."""

    timing: TimingConfig = Field(default_factory=TimingConfig)
    queue: QueueSectionConfig = Field(default_factory=QueueSectionConfig)
    dedup: DedupSectionConfig = Field(default_factory=DedupSectionConfig)
    embeddings: EmbeddingsSectionConfig = Field(default_factory=EmbeddingsSectionConfig)
    themes: ThemesSectionConfig = Field(default_factory=ThemesSectionConfig)
    llm: LLMSectionConfig = Field(default_factory=LLMSectionConfig)
    storage: StorageSectionConfig = Field(default_factory=StorageSectionConfig)

    @model_validator(mode="before")
    @classmethod
    def _apply_demo_defaults(cls, data: Any) -> Any:
        """Demo mode raises parallelism and widens the guard windows."""
        if not isinstance(data, dict):
            return data
        timing = data.get("timing") or {}
        mode = timing.get("mode") if isinstance(timing, dict) else None
        if mode != TimingMode.DEMO:
            return data
        data = dict(data)
        for section, defaults in _DEMO_SECTION_DEFAULTS.items():
            values = dict(data.get(section) or {})
            for key, value in defaults.items():
                values.setdefault(key, value)
            data[section] = values
        return data

    def has_prod_credentials(self) -> bool:
        """True when a model credential is present and prods may be requested."""
        return bool(os.environ.get("ANTHROPIC_API_KEY", "").strip())


def load_config(path: str | Path | None = None) -> RefractConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .refract.toml in CWD
    3. ~/.config/refract/config.toml

    Then overlay environment variables.
    """
    data: dict[str, Any] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break
        global_config = Path.home() / ".config" / "refract" / "config.toml"
        if not data and global_config.exists():
            data = _load_toml(global_config)
            logger.info("Loaded config from %s", global_config)

    return _build(_apply_env_vars(data))


def merge_cli_overrides(config: RefractConfig, **cli_kwargs: object) -> RefractConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None). Switching ``mode`` re-derives the timing preset.
    """
    data = config.model_dump(exclude_unset=True)

    mapping: dict[str, tuple[str, str]] = {
        "mode": ("timing", "mode"),
        "model": ("llm", "model"),
        "embedding_provider": ("embeddings", "provider"),
        "store_path": ("storage", "path"),
    }

    mode = cli_kwargs.get("mode")
    if mode is not None and TimingMode(mode) != config.timing.mode:
        # preset-derived values are recorded as set; drop them so the new mode applies
        for key in _TIMING_PRESETS[config.timing.mode]:
            data.get("timing", {}).pop(key, None)
        for section, defaults in _DEMO_SECTION_DEFAULTS.items():
            for key in defaults:
                data.get(section, {}).pop(key, None)

    for key, value in cli_kwargs.items():
        if value is None or key not in mapping:
            continue
        section, field = mapping[key]
        data.setdefault(section, {})[field] = value

    return _build(data)


def _build(data: dict[str, Any]) -> RefractConfig:
    return RefractConfig.model_validate(data) if data else RefractConfig()


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides to raw config data."""
    data = {k: dict(v) if isinstance(v, dict) else v for k, v in data.items()}

    env_mapping: dict[str, tuple[str, str]] = {
        "REFRACT_MODE": ("timing", "mode"),
        "REFRACT_MODEL": ("llm", "model"),
        "REFRACT_THEMES_MODEL": ("themes", "model"),
        "REFRACT_EMBEDDING_PROVIDER": ("embeddings", "provider"),
        "REFRACT_EMBEDDING_MODEL": ("embeddings", "model"),
        "REFRACT_STORE_PATH": ("storage", "path"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data.setdefault(section, {})[field] = value

    return data
