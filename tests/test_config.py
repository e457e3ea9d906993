"""Tests for configuration resolution and start-up validation."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from collaborator import config
from collaborator.errors import ConfigurationError


class TestValidateEnvironment:
    def test_passes_with_test_settings(self):
        config.validate_environment()

    def test_reports_every_missing_setting(self):
        with patch.object(config, "ANTHROPIC_API_KEY", None), \
                patch.object(config, "AAD_APP_CLIENT_SECRET", ""):
            with pytest.raises(ConfigurationError) as exc_info:
                config.validate_environment()

        assert exc_info.value.missing == ["ANTHROPIC_API_KEY", "AAD_APP_CLIENT_SECRET"]
        assert "ANTHROPIC_API_KEY, AAD_APP_CLIENT_SECRET" in str(exc_info.value)


class TestResolveSecret:
    def test_env_value(self, monkeypatch):
        monkeypatch.setenv("SOME_SECRET", "s3cret")
        assert config._resolve_secret("SOME_SECRET") == "s3cret"

    def test_placeholder_counts_as_missing(self, monkeypatch):
        monkeypatch.setenv("SOME_SECRET", "your_client_secret_here")
        with patch.object(config, "_ON_AWS", False):
            assert config._resolve_secret("SOME_SECRET") is None

    def test_falls_back_to_ssm_on_aws(self, monkeypatch):
        monkeypatch.delenv("SOME_SECRET", raising=False)
        with patch.object(config, "_ON_AWS", True), \
                patch.object(config, "_get_ssm_parameter", return_value="from-ssm") as ssm:
            assert config._resolve_secret("SOME_SECRET") == "from-ssm"
        ssm.assert_called_once_with("SOME_SECRET")


class TestIntEnv:
    def test_default_and_override(self, monkeypatch):
        monkeypatch.delenv("SOME_LIMIT", raising=False)
        assert config._int_env("SOME_LIMIT", 7) == 7
        monkeypatch.setenv("SOME_LIMIT", "42")
        assert config._int_env("SOME_LIMIT", 7) == 42
