"""Tests for settings parsing and logging setup."""

import logging
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from config import LOG_FORMAT, Settings, configure_logging


class TestSettings:
    def test_adapter_lists_split(self):
        settings = Settings(OCR_PROVIDERS=" aws-textract, ,azure-read ", AI_MODELS="ollama")

        assert settings.ocr_provider_list == ["aws-textract", "azure-read"]
        assert settings.ai_model_list == ["ollama"]

    def test_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("OLLAMA_URL", "http://ollama:11434")

        settings = Settings()

        assert settings.RETRY_ATTEMPTS == 5
        assert settings.OLLAMA_URL == "http://ollama:11434"


class TestConfigureLogging:
    def test_explicit_level(self):
        with patch.object(logging, "basicConfig") as basic_config:
            configure_logging("debug")

        basic_config.assert_called_once_with(level="DEBUG", format=LOG_FORMAT)

    def test_level_from_settings(self, monkeypatch):
        monkeypatch.setattr(config.settings, "LOG_LEVEL", "warning")

        with patch.object(logging, "basicConfig") as basic_config:
            configure_logging()

        basic_config.assert_called_once_with(level="WARNING", format=LOG_FORMAT)
