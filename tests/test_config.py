"""Tests for signalforge.config — environment variable loading and validation."""

import os

import pytest

from signalforge.config import Config, load_config

_VARS = [
    "LOG_LEVEL",
    "API_HOST",
    "API_PORT",
    "FRAME_URL_PATTERN",
    "TICK_HISTORY_CAP",
    "RECENT_FRAME_CAP",
    "ACTIVITY_LOG_CAP",
    "AUTO_TRADE_INTERVAL_SECONDS",
    "ACTUATOR_TIMEOUT_SECONDS",
    "SCREENER_CONCURRENCY",
    "SCREENER_MAX_RESULTS",
    "HEARTBEAT_SECONDS",
    "FINNHUB_API_KEY",
    "ALPHAVANTAGE_API_KEY",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure config env vars are cleared between tests."""
    for var in _VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def no_dotenv(tmp_path):
    """Path to a non-existent .env so load_dotenv adds nothing."""
    return str(tmp_path / "missing.env")


class TestLoadConfig:
    def test_defaults(self, no_dotenv):
        cfg = load_config(no_dotenv)
        assert isinstance(cfg, Config)
        assert cfg.log_level == "INFO"
        assert cfg.api_host == "0.0.0.0"
        assert cfg.api_port == 8080
        assert cfg.tick_history_cap == 5000
        assert cfg.recent_frame_cap == 20
        assert cfg.activity_log_cap == 100
        assert cfg.auto_trade_interval_seconds == 5
        assert cfg.actuator_timeout_seconds == 3.0
        assert cfg.screener_concurrency == 6
        assert cfg.screener_max_results == 100
        assert cfg.heartbeat_seconds == 10
        assert cfg.finnhub_api_key is None
        assert cfg.has_live_provider is False

    def test_overrides(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("API_PORT", "9000")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("ACTUATOR_TIMEOUT_SECONDS", "1.5")
        monkeypatch.setenv("FINNHUB_API_KEY", "abc")
        cfg = load_config(no_dotenv)
        assert cfg.api_port == 9000
        assert cfg.log_level == "DEBUG"
        assert cfg.actuator_timeout_seconds == 1.5
        assert cfg.has_live_provider is True

    def test_reads_dotenv_file(self, monkeypatch, tmp_path):
        # load_dotenv writes into os.environ; keep that write local to this test
        monkeypatch.setattr(os, "environ", dict(os.environ))
        env = tmp_path / ".env"
        env.write_text("TICK_HISTORY_CAP=250\n", encoding="utf-8")
        cfg = load_config(str(env))
        assert cfg.tick_history_cap == 250

    @pytest.mark.parametrize(
        "var, value",
        [
            ("API_PORT", "0"),
            ("API_PORT", "abc"),
            ("RECENT_FRAME_CAP", "51"),
            ("TICK_HISTORY_CAP", "10"),
            ("ACTUATOR_TIMEOUT_SECONDS", "0"),
            ("SCREENER_CONCURRENCY", "64"),
        ],
    )
    def test_invalid_values_name_the_variable(self, monkeypatch, no_dotenv, var, value):
        monkeypatch.setenv(var, value)
        with pytest.raises(ValueError, match=var):
            load_config(no_dotenv)

    def test_config_is_frozen(self, no_dotenv):
        cfg = load_config(no_dotenv)
        with pytest.raises(AttributeError):
            cfg.api_port = 1  # type: ignore[misc]
