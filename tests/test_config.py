import logging

import pytest

from nfl_forecast.config import DataConfig, LogConfig, SourceConfig
from nfl_forecast.utils.log import configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def test_source_config_reads_retry_env(monkeypatch):
    monkeypatch.setenv("DATA_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("DATA_RETRY_BACKOFF_MS", "250")
    monkeypatch.setenv("GITHUB_TOKEN", "abc")
    cfg = SourceConfig.from_env()

    assert cfg.max_retries == 5
    assert cfg.backoff_initial == pytest.approx(0.25)
    assert cfg.github_token == "abc"


def test_source_config_ignores_bad_values(monkeypatch):
    monkeypatch.setenv("DATA_RETRY_ATTEMPTS", "many")
    monkeypatch.setenv("DATA_RETRY_BACKOFF_MS", "")
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    cfg = SourceConfig.from_env()

    assert cfg.max_retries == SourceConfig().max_retries
    assert cfg.backoff_initial == SourceConfig().backoff_initial
    assert cfg.github_token is None


def test_data_config_paths_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("NFL_FORECAST_FEEDS_DIR", str(tmp_path / "feeds"))
    monkeypatch.setenv("SEASON", "2021")
    cfg = DataConfig.from_env()

    assert cfg.feeds_dir == tmp_path / "feeds"
    assert cfg.default_season == 2021


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def test_configure_logging_writes_log_file(tmp_path, restore_root_logger):
    cfg = LogConfig(logs_dir=tmp_path / "logs", level="DEBUG", log_to_file=True)
    logger = configure_logging(cfg)
    logger.debug("hello from the runner")

    assert logger.name == "nfl_forecast"
    assert restore_root_logger.level == logging.DEBUG
    files = list((tmp_path / "logs").glob("walk_forward_*.log"))
    assert len(files) == 1
    for handler in restore_root_logger.handlers:
        handler.flush()
    assert "hello from the runner" in files[0].read_text()


def test_log_level_from_env(monkeypatch):
    monkeypatch.setenv("NFL_FORECAST_LOG_LEVEL", "warning")
    assert LogConfig.from_env().level == "WARNING"
