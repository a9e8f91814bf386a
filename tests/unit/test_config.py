"""
Unit tests for settings and logging configuration.
"""

from loguru import logger

from config import Settings
from question_engine.log_setup import configure_logging


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        settings = Settings(_env_file=None)

        assert settings.history_window_size == 30
        assert settings.difficulty_adjustment_window == 5
        assert settings.executor_max_retries == 5
        assert settings.generated_quality_baseline == 70.0
        assert settings.has_ai_configured() is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setenv("EXECUTOR_MIN_INTERVAL_MS", "250")

        settings = Settings(_env_file=None)

        assert settings.has_ai_configured() is True
        assert settings.get_executor_config()["min_interval_ms"] == 250


class TestConfigureLogging:
    def test_file_sink(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"

        configure_logging("INFO", str(log_file))
        logger.info("question engine started")
        logger.debug("not written at INFO")
        logger.remove()

        content = log_file.read_text(encoding="utf-8")
        assert "question engine started" in content
        assert "not written at INFO" not in content
