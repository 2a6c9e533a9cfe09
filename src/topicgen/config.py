"""Unified configuration loaded from .topicgen.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from topicgen.errors import ValidationError
from topicgen.models import DurationType, TopicGeneratorSettings

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".topicgen.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
    Path.home() / ".config" / "topicgen",
]


class DurationRange(BaseModel):
    """Allowed and default length of one duration class, in seconds."""

    model_config = ConfigDict(frozen=True)

    min_seconds: int
    max_seconds: int
    default_seconds: int


def _default_durations() -> dict[DurationType, DurationRange]:
    return {
        DurationType.SHORT: DurationRange(min_seconds=60, max_seconds=120, default_seconds=90),
        DurationType.STANDARD: DurationRange(
            min_seconds=180, max_seconds=240, default_seconds=180
        ),
        DurationType.LONG: DurationRange(min_seconds=300, max_seconds=600, default_seconds=420),
        DurationType.CUSTOM: DurationRange(min_seconds=60, max_seconds=900, default_seconds=180),
    }


class GeneratorDefaults(BaseModel):
    """Immutable knobs handed to the orchestrator.

    Built from :class:`TopicgenConfig` so tests can vary any of them per
    case without touching process-wide state.
    """

    model_config = ConfigDict(frozen=True)

    durations: dict[DurationType, DurationRange] = Field(default_factory=_default_durations)
    items_limit: int = 50
    min_items_to_cluster: int = 2
    max_citations_per_query: int = 2
    max_citation_queries: int = 5
    duration_tolerance: float = 0.2
    firing_window_minutes: int = Field(default=30, ge=1, le=60)
    cache_ttl: timedelta = timedelta(hours=1)
    similarity_threshold: int = 50

    def duration_seconds(self, duration_type: DurationType, custom: int | None = None) -> int:
        """Resolve the target length for a duration class.

        ``custom`` only applies to :attr:`DurationType.CUSTOM` and must fall
        inside that class's range.

        Raises:
            ValidationError: ``custom`` is outside the custom range.
        """
        bounds = self.durations[duration_type]
        if duration_type != DurationType.CUSTOM or not custom:
            return bounds.default_seconds
        if not bounds.min_seconds <= custom <= bounds.max_seconds:
            raise ValidationError(
                f"Custom duration must be between {bounds.min_seconds} and "
                f"{bounds.max_seconds} seconds, got {custom}"
            )
        return custom

    def default_settings(self, project_id: str) -> TopicGeneratorSettings:
        return TopicGeneratorSettings(project_id=project_id)


class StoreSectionConfig(BaseModel):
    """[store] section."""

    path: str = "./topicgen-data/store.json"


class LLMSectionConfig(BaseModel):
    """[llm] section."""

    model: str | None = None
    timeout: int = 120
    max_tokens: int = 4096


class GeneratorSectionConfig(BaseModel):
    """[generator] section."""

    short_seconds: int = 90
    standard_seconds: int = 180
    long_seconds: int = 420
    items_limit: int = 50
    max_citations_per_query: int = 2
    duration_tolerance: float = 0.2
    similarity_threshold: int = 50


class ScheduleSectionConfig(BaseModel):
    """[schedule] section."""

    firing_window_minutes: int = 30
    cache_ttl_minutes: int = 60


class TopicgenConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreSectionConfig = Field(default_factory=StoreSectionConfig)
    llm: LLMSectionConfig = Field(default_factory=LLMSectionConfig)
    generator: GeneratorSectionConfig = Field(default_factory=GeneratorSectionConfig)
    schedule: ScheduleSectionConfig = Field(default_factory=ScheduleSectionConfig)

    def to_generator_defaults(self) -> GeneratorDefaults:
        """Convert to the frozen struct the orchestrator consumes."""
        gen = self.generator
        base = _default_durations()
        durations = {
            DurationType.SHORT: base[DurationType.SHORT].model_copy(
                update={"default_seconds": gen.short_seconds}
            ),
            DurationType.STANDARD: base[DurationType.STANDARD].model_copy(
                update={"default_seconds": gen.standard_seconds}
            ),
            DurationType.LONG: base[DurationType.LONG].model_copy(
                update={"default_seconds": gen.long_seconds}
            ),
            DurationType.CUSTOM: base[DurationType.CUSTOM],
        }
        return GeneratorDefaults(
            durations=durations,
            items_limit=gen.items_limit,
            max_citations_per_query=gen.max_citations_per_query,
            duration_tolerance=gen.duration_tolerance,
            similarity_threshold=gen.similarity_threshold,
            firing_window_minutes=self.schedule.firing_window_minutes,
            cache_ttl=timedelta(minutes=self.schedule.cache_ttl_minutes),
        )


def load_config(path: str | Path | None = None) -> TopicgenConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .topicgen.toml in CWD
    3. ~/.config/topicgen/config.toml

    Then overlay environment variables.
    """
    data: dict[str, object] = {}

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
        global_config = Path.home() / ".config" / "topicgen" / "config.toml"
        if not data and global_config.exists():
            data = _load_toml(global_config)
            logger.info("Loaded config from %s", global_config)

    config = TopicgenConfig.model_validate(data) if data else TopicgenConfig()

    return _apply_env_vars(config)


def merge_cli_overrides(config: TopicgenConfig, **cli_kwargs: object) -> TopicgenConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only values that are not None are applied.
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "store_path": ("store", "path"),
        "model": ("llm", "model"),
        "timeout": ("llm", "timeout"),
        "firing_window": ("schedule", "firing_window_minutes"),
    }

    for key, value in cli_kwargs.items():
        if value is None or key not in mapping:
            continue
        section, field = mapping[key]
        data[section][field] = value

    return TopicgenConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: TopicgenConfig) -> TopicgenConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "TOPICGEN_STORE_PATH": ("store", "path"),
        "TOPICGEN_MODEL": ("llm", "model"),
    }
    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    # Integer-valued env vars
    for env_var, (section, field) in {
        "TOPICGEN_LLM_TIMEOUT": ("llm", "timeout"),
        "TOPICGEN_FIRING_WINDOW": ("schedule", "firing_window_minutes"),
    }.items():
        raw = os.environ.get(env_var)
        if raw is None:
            continue
        try:
            data[section][field] = int(raw)
        except ValueError:
            logger.warning("Ignoring non-integer %s=%r", env_var, raw)

    return TopicgenConfig.model_validate(data)
