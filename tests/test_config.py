"""Tests for settings validation."""

import logging

import pytest

from mythcanon.core.config import Settings


class TestSettings:
    """Environment loading and validation."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.default_mode == "graph"
        assert settings.history_list_limit == 10
        assert settings.auto_k_min_k == 2
        assert settings.auto_k_max_k == 12
        assert settings.auto_k_reference_runs is None

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("AUTO_K_MAX_K", "6")
        monkeypatch.setenv("NORMALIZE_AGREEMENT", "true")
        monkeypatch.setenv("DEFAULT_MODE", "consensus")

        settings = Settings(_env_file=None)

        assert settings.auto_k_max_k == 6
        assert settings.normalize_agreement is True
        assert settings.default_mode == "consensus"

    def test_min_k_above_max_k_is_rejected(self, monkeypatch):
        monkeypatch.setenv("AUTO_K_MIN_K", "8")
        monkeypatch.setenv("AUTO_K_MAX_K", "4")

        with pytest.raises(ValueError, match="AUTO_K_MIN_K"):
            Settings(_env_file=None)

    def test_history_limit_must_be_positive(self):
        with pytest.raises(ValueError, match="HISTORY_LIST_LIMIT"):
            Settings(_env_file=None, history_list_limit=0)

    def test_single_value_range_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="mythcanon.core.config"):
            Settings(_env_file=None, auto_k_min_k=4, auto_k_max_k=4)

        assert "single value" in caplog.text

    def test_single_value_range_rejected_outside_development(self):
        with pytest.raises(ValueError, match="single value"):
            Settings(_env_file=None, app_env="production", auto_k_min_k=4, auto_k_max_k=4)

    def test_default_mode_must_be_a_known_mode(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_MODE", "spectral")

        with pytest.raises(ValueError):
            Settings(_env_file=None)
