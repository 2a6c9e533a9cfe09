"""Tests for topicgen.config loading, env overlay, and CLI overrides."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from topicgen.config import (
    DurationRange,
    GeneratorDefaults,
    TopicgenConfig,
    load_config,
    merge_cli_overrides,
)
from topicgen.errors import ValidationError
from topicgen.models import DurationType


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "TOPICGEN_STORE_PATH",
        "TOPICGEN_MODEL",
        "TOPICGEN_LLM_TIMEOUT",
        "TOPICGEN_FIRING_WINDOW",
    ):
        monkeypatch.delenv(var, raising=False)


def test_defaults() -> None:
    config = TopicgenConfig()
    assert config.llm.timeout == 120
    assert config.schedule.firing_window_minutes == 30
    assert config.store.path.endswith("store.json")


def test_load_from_explicit_toml(tmp_path: Path) -> None:
    path = tmp_path / "topicgen.toml"
    path.write_text(
        """
[store]
path = "/data/store.json"

[llm]
model = "haiku"
timeout = 45

[generator]
short_seconds = 75

[schedule]
firing_window_minutes = 15
cache_ttl_minutes = 10
""",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.store.path == "/data/store.json"
    assert config.llm.model == "haiku"
    assert config.llm.timeout == 45

    defaults = config.to_generator_defaults()
    assert defaults.duration_seconds(DurationType.SHORT) == 75
    assert defaults.firing_window_minutes == 15
    assert defaults.cache_ttl == timedelta(minutes=10)


def test_missing_explicit_file_falls_back_to_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "nope.toml")
    assert config == TopicgenConfig()


def test_corrupt_toml_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "bad.toml"
    path.write_text("[store\npath = ", encoding="utf-8")
    assert load_config(path) == TopicgenConfig()


def test_env_vars_override_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "topicgen.toml"
    path.write_text('[llm]\nmodel = "haiku"\n', encoding="utf-8")
    monkeypatch.setenv("TOPICGEN_MODEL", "opus")
    monkeypatch.setenv("TOPICGEN_LLM_TIMEOUT", "30")
    monkeypatch.setenv("TOPICGEN_FIRING_WINDOW", "10")

    config = load_config(path)
    assert config.llm.model == "opus"
    assert config.llm.timeout == 30
    assert config.schedule.firing_window_minutes == 10


def test_non_integer_env_var_is_ignored(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TOPICGEN_LLM_TIMEOUT", "soon")
    config = load_config(tmp_path / "absent.toml")
    assert config.llm.timeout == 120


def test_merge_cli_overrides_skips_none() -> None:
    config = merge_cli_overrides(TopicgenConfig(), store_path="/tmp/s.json", model=None)
    assert config.store.path == "/tmp/s.json"
    assert config.llm.model is None


class TestGeneratorDefaults:
    def test_manual_duration_table(self) -> None:
        defaults = GeneratorDefaults()
        assert defaults.duration_seconds(DurationType.SHORT) == 90
        assert defaults.duration_seconds(DurationType.STANDARD) == 180
        assert defaults.duration_seconds(DurationType.LONG) == 420
        assert defaults.duration_seconds(DurationType.CUSTOM) == 180

    def test_custom_seconds_only_apply_to_custom(self) -> None:
        defaults = GeneratorDefaults()
        assert defaults.duration_seconds(DurationType.CUSTOM, 300) == 300
        assert defaults.duration_seconds(DurationType.SHORT, 300) == 90

    def test_is_frozen(self) -> None:
        defaults = GeneratorDefaults()
        with pytest.raises(PydanticValidationError):
            defaults.items_limit = 10  # type: ignore[misc]

    def test_default_settings(self) -> None:
        settings = GeneratorDefaults().default_settings("p1")
        assert settings.project_id == "p1"
        assert settings.time_window_days == 7
        assert settings.comparison_regions == ["Singapore", "Malaysia", "United States"]

    def test_custom_seconds_must_fit_custom_range(self) -> None:
        defaults = GeneratorDefaults()
        assert defaults.duration_seconds(DurationType.CUSTOM, 900) == 900
        with pytest.raises(ValidationError, match="between 60 and 900"):
            defaults.duration_seconds(DurationType.CUSTOM, 1200)

    def test_custom_range_comes_from_table(self) -> None:
        defaults = GeneratorDefaults(
            durations={
                **GeneratorDefaults().durations,
                DurationType.CUSTOM: DurationRange(
                    min_seconds=60, max_seconds=300, default_seconds=120
                ),
            }
        )
        assert defaults.duration_seconds(DurationType.CUSTOM) == 120
        with pytest.raises(ValidationError):
            defaults.duration_seconds(DurationType.CUSTOM, 600)
