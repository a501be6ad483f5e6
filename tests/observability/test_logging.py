"""Tests for structured logging configuration."""

import structlog

from src.config.settings import Settings
from src.observability.logging import configure_logging


class TestConfigureLogging:
    def teardown_method(self) -> None:
        structlog.reset_defaults()

    def test_dev_renders_to_console(self, capsys) -> None:
        configure_logging(Settings(ENVIRONMENT="dev", LOG_LEVEL="INFO", _env_file=None))
        structlog.get_logger("test").info("project_created", project_id="p1")
        out = capsys.readouterr().out
        assert "project_created" in out
        assert "p1" in out

    def test_json_outside_dev(self, capsys) -> None:
        configure_logging(Settings(ENVIRONMENT="prod", LOG_LEVEL="INFO", _env_file=None))
        structlog.get_logger("test").info("cache_cleared", entries=2)
        out = capsys.readouterr().out
        assert '"event": "cache_cleared"' in out
        assert '"entries": 2' in out

    def test_level_filters(self, capsys) -> None:
        configure_logging(Settings(ENVIRONMENT="prod", LOG_LEVEL="WARNING", _env_file=None))
        log = structlog.get_logger("test")
        log.info("hidden")
        log.warning("shown")
        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out
