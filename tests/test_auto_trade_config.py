"""Tests for signalforge.models.auto_trade_config — partial updates."""

import pytest

from signalforge.models.auto_trade_config import (
    AutoSubscribeConfig,
    AutoTradeConfig,
    MasanielloConfig,
)


class TestAutoTradeConfig:
    def test_defaults(self):
        cfg = AutoTradeConfig()
        assert cfg.enabled is False
        assert cfg.account == "demo"
        assert cfg.threshold == 75
        assert cfg.expiry == "1m"
        assert cfg.active_chart_only is True
        assert cfg.cooldown_sec == 60
        assert cfg.last_trade_at is None

    def test_partial_update_returns_new_object(self):
        cfg = AutoTradeConfig()
        updated = cfg.with_updates({"enabled": True, "threshold": 80})
        assert updated.enabled is True
        assert updated.threshold == 80
        assert cfg.enabled is False

    def test_camel_aliases(self):
        updated = AutoTradeConfig().with_updates(
            {"activeChartOnly": False, "cooldownSec": 5, "allowNavigateToTrading": True}
        )
        assert updated.active_chart_only is False
        assert updated.cooldown_sec == 5
        assert updated.allow_navigate is True

    def test_nested_masaniello(self):
        updated = AutoTradeConfig().with_updates(
            {"masaniello": {"enabled": True, "bankroll": 100, "targetWins": 3}}
        )
        assert updated.masaniello.enabled is True
        assert updated.masaniello.bankroll == 100.0
        assert updated.masaniello.target_wins == 3
        assert updated.masaniello.win_probability == MasanielloConfig().win_probability

    @pytest.mark.parametrize(
        "body, message",
        [
            ({"enabled": "yes"}, "enabled must be a boolean"),
            ({"account": "paper"}, "account"),
            ({"threshold": 101}, "threshold"),
            ({"amount": 0}, "amount must be positive"),
            ({"expiry": "7m"}, "expiry must be one of"),
            ({"cooldown_sec": -1}, "cooldown_sec"),
            ({"masaniello": {"win_probability": 2}}, "win_probability"),
            ({"masaniello": 5}, "masaniello must be an object"),
            ({"whatever": 1}, "unknown auto-trade field"),
            ({"threshold": 10**400}, "threshold must be 0–100"),
            ({"amount": 10**400}, "amount must be positive"),
            ({"cooldownSec": 10**400}, "cooldown_sec must be an integer"),
            ({"lastTradeAt": 10**400}, "last_trade_at must be epoch ms"),
            ({"masaniello": {"bankroll": 10**400}}, "masaniello.bankroll"),
        ],
    )
    def test_invalid_updates(self, body, message):
        with pytest.raises(ValueError, match=message):
            AutoTradeConfig().with_updates(body)

    def test_invalid_update_leaves_original_untouched(self):
        cfg = AutoTradeConfig()
        with pytest.raises(ValueError):
            cfg.with_updates({"enabled": True, "threshold": -5})
        assert cfg.enabled is False

    def test_last_trade_at_nullable(self):
        cfg = AutoTradeConfig().with_updates({"lastTradeAt": 1_000})
        assert cfg.last_trade_at == 1_000
        assert cfg.with_updates({"last_trade_at": None}).last_trade_at is None

    def test_non_mapping_body(self):
        with pytest.raises(ValueError, match="object"):
            AutoTradeConfig().with_updates([])  # type: ignore[arg-type]


class TestAutoSubscribeConfig:
    def test_defaults_and_interval_floor(self):
        cfg = AutoSubscribeConfig()
        assert cfg.enabled is True
        assert cfg.interval_sec == 10
        assert cfg.target_count == 30
        assert cfg.with_updates({"intervalSec": 1}).effective_interval == 2

    def test_update(self):
        cfg = AutoSubscribeConfig().with_updates({"targetCount": 12, "enabled": False})
        assert cfg.target_count == 12
        assert cfg.enabled is False

    @pytest.mark.parametrize(
        "body",
        [{"interval_sec": 0}, {"target_count": 501}, {"enabled": 1}, {"extra": True}],
    )
    def test_invalid(self, body):
        with pytest.raises(ValueError):
            AutoSubscribeConfig().with_updates(body)
