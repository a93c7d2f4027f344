"""SignalForge — application configuration.

Loads .env variables into a typed config object.
Validates numeric ranges on startup.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    log_level: str
    api_host: str
    api_port: int
    frame_url_pattern: str  # regex; frames from other sockets are ignored
    tick_history_cap: int
    recent_frame_cap: int
    activity_log_cap: int
    auto_trade_interval_seconds: int
    actuator_timeout_seconds: float
    screener_concurrency: int
    screener_max_results: int
    heartbeat_seconds: int
    finnhub_api_key: Optional[str] = None
    alphavantage_api_key: Optional[str] = None

    @property
    def has_live_provider(self) -> bool:
        """Return True when an external close-series provider is configured."""
        return bool(self.finnhub_api_key or self.alphavantage_api_key)


def _int_var(name: str, default: int, low: int, high: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if not low <= value <= high:
        raise ValueError(f"{name} must be {low}–{high}, got {value}")
    return value


def _float_var(name: str, default: float, low: float, high: float) -> float:
    raw = os.environ.get(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if not low <= value <= high:
        raise ValueError(f"{name} must be {low}–{high}, got {value}")
    return value


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Every variable is optional.  Raises ``ValueError`` with a message naming
    the offending variable when a value is malformed or out of range.
    """
    load_dotenv(dotenv_path=env_path)

    return Config(
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        api_host=os.environ.get("API_HOST", "0.0.0.0"),
        api_port=_int_var("API_PORT", 8080, 1, 65535),
        frame_url_pattern=os.environ.get(
            "FRAME_URL_PATTERN", r"po\.market|pocketoption\.com"
        ),
        tick_history_cap=_int_var("TICK_HISTORY_CAP", 5000, 100, 100_000),
        recent_frame_cap=_int_var("RECENT_FRAME_CAP", 20, 1, 50),
        activity_log_cap=_int_var("ACTIVITY_LOG_CAP", 100, 10, 1000),
        auto_trade_interval_seconds=_int_var("AUTO_TRADE_INTERVAL_SECONDS", 5, 1, 300),
        actuator_timeout_seconds=_float_var("ACTUATOR_TIMEOUT_SECONDS", 3.0, 0.1, 30.0),
        screener_concurrency=_int_var("SCREENER_CONCURRENCY", 6, 1, 32),
        screener_max_results=_int_var("SCREENER_MAX_RESULTS", 100, 1, 500),
        heartbeat_seconds=_int_var("HEARTBEAT_SECONDS", 10, 1, 120),
        finnhub_api_key=os.environ.get("FINNHUB_API_KEY") or None,
        alphavantage_api_key=os.environ.get("ALPHAVANTAGE_API_KEY") or None,
    )
