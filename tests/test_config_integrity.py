"""Tests for JSON configuration integrity.

Tests cover:
1. config.json syntax and required sections
2. Values the pipeline relies on (thresholds, retry, providers, years)
3. Overrides merged without touching the file contents
"""

from __future__ import annotations

from brreg_reports.config import CONFIG_DIR, get_config, load_settings
from brreg_reports.extractor.figures import ExtractionRules, Figure
from brreg_reports.pipeline.retry import RetryPolicy

REQUIRED_SECTIONS = (
    "sources",
    "http",
    "retry",
    "years",
    "documents",
    "extraction",
    "ocr",
    "browser",
    "pipeline",
    "storage",
)


class TestConfigFile:
    """Tests that config.json is present and complete."""

    def test_config_json_loads(self) -> None:
        """config.json should be valid JSON and loadable."""
        assert (CONFIG_DIR / "config.json").exists()
        config = get_config()
        assert isinstance(config, dict)

    def test_required_sections(self) -> None:
        """Every section read by the pipeline is present."""
        config = get_config()
        missing = [section for section in REQUIRED_SECTIONS if section not in config]
        assert missing == []

    def test_sources_are_https(self) -> None:
        """All upstream base URLs use https."""
        sources = get_config()["sources"]
        for name in ("regnskap_api", "enhetsregisteret", "virksomhet"):
            assert sources[name]["base_url"].startswith("https://"), name


class TestConfigValues:
    """Tests for values with a fixed meaning."""

    def test_thresholds_cover_every_figure(self) -> None:
        """Each target figure has a plausibility threshold."""
        rules = ExtractionRules.from_config(get_config())
        assert set(rules.thresholds) == set(Figure)
        assert rules.thresholds[Figure.NET_RESULT] == 100
        assert rules.thresholds[Figure.SALES_REVENUE] == 1000

    def test_retry_policy(self) -> None:
        """Three attempts with a capped exponential delay."""
        policy = RetryPolicy.from_config(get_config())
        assert policy.max_attempts == 3
        assert policy.delay_for(10) == policy.max_delay

    def test_ocr_providers(self) -> None:
        """Tesseract runs before Mistral."""
        assert get_config()["ocr"]["providers"] == ["tesseract", "mistral"]

    def test_year_window(self) -> None:
        years = get_config()["years"]
        assert years["min_year"] == 1990
        assert years["default_lookback_years"] <= years["max_lookback_years"]


class TestLoadSettings:
    """Tests for load_settings overrides."""

    def test_nested_override(self) -> None:
        """Only the overridden keys change; siblings keep file values."""
        settings = load_settings({"pipeline": {"max_workers": 16}})
        assert settings["pipeline"]["max_workers"] == 16
        assert settings["pipeline"]["supplement_api_with_documents"] is True

    def test_file_values_not_mutated(self) -> None:
        """Overrides never leak into later loads."""
        load_settings({"http": {"min_request_interval_seconds": 0}})
        assert get_config()["http"]["min_request_interval_seconds"] == 0.1
