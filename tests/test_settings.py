"""Tests for configuration and logging setup."""

import json
import logging

import pytest
import structlog
from pydantic import ValidationError

from py_mosaic.config import Settings
from py_mosaic.utils.logging import configure_logging


@pytest.fixture
def reset_structlog():
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


class TestSettings:
    """Test environment overrides."""

    def test_defaults(self):
        s = Settings()
        assert s.grid_type == "hexagonal"
        assert s.scaling_factor > 1
        assert not s.checkpoint_enabled

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MOSAIC_MAX_NO_IMPROVE_ITERATIONS", "7")
        monkeypatch.setenv("MOSAIC_GRID_TYPE", "square")
        s = Settings()
        assert s.max_no_improve_iterations == 7
        assert s.grid_type == "square"

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.setenv("MOSAIC_LOG_FORMAT", "xml")
        with pytest.raises(ValidationError):
            Settings()

    def test_scaling_factor_must_exceed_one(self, monkeypatch):
        monkeypatch.setenv("MOSAIC_SCALING_FACTOR", "1.0")
        with pytest.raises(ValidationError):
            Settings()


class TestConfigureLogging:
    """Test structlog configuration."""

    def test_unknown_format_raises(self):
        with pytest.raises(ValueError):
            configure_logging("INFO", "xml")

    def test_json_output(self, capsys, reset_structlog):
        configure_logging("INFO", "json")
        structlog.get_logger("mosaic.test").info("Slide pass complete", slides=3)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "Slide pass complete"
        assert event["slides"] == 3
        assert event["level"] == "info"
        assert event["logger"] == "mosaic.test"

    def test_level_filters_debug(self, capsys, reset_structlog):
        configure_logging("INFO", "json")
        structlog.get_logger("mosaic.test").debug("hidden")
        assert "hidden" not in capsys.readouterr().out

    def test_console_format(self, capsys, reset_structlog):
        configure_logging("DEBUG", "console")
        structlog.get_logger("mosaic.test").debug("visible", cells=2)
        assert "visible" in capsys.readouterr().out
