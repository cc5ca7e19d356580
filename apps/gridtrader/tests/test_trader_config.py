"""Tests for gridtrader configuration module."""

import pytest
import yaml
from pydantic import ValidationError

from gridrisk import ConfigError, GridParameters

from gridtrader.config import GridStrategyConfig, RunnerConfig, TraderConfig, load_config


def write_config(path, data):
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestGridStrategyConfig:
    """Tests for GridStrategyConfig model."""

    def test_defaults(self):
        """Defaults match the reference configuration."""
        grid = GridStrategyConfig(trading_asset="HYPE", total_capital=1000.0)
        assert grid.grid_count == 8
        assert grid.trade_amount == 80.0
        assert grid.min_grid_spacing == 0.0024
        assert grid.max_grid_spacing == 0.004
        assert grid.max_holding_time == 86400.0

    def test_to_params(self):
        grid = GridStrategyConfig(trading_asset="HYPE", total_capital=1000.0, grid_count=4)
        params = grid.to_params()

        assert isinstance(params, GridParameters)
        assert params.asset == "HYPE"
        assert params.grid_count == 4
        assert params.leverage == 3
        assert params.enforce_min_profit is False
        assert params.auto_optimize is False

    def test_tuning_and_guard_flags_passed_through(self):
        grid = GridStrategyConfig(
            trading_asset="HYPE", total_capital=1000.0, auto_optimize=True, enforce_min_profit=True,
        )
        params = grid.to_params()

        assert params.auto_optimize is True
        assert params.enforce_min_profit is True

    @pytest.mark.parametrize("overrides", [
        {"total_capital": 0},
        {"trade_amount": 2000.0},
        {"grid_count": 0},
        {"max_grid_spacing": 0.002},
        {"fee_rate": 0.2},
        {"fee_rate": 0.002},
        {"max_drawdown": 1.5},
        {"max_single_loss": 0},
        {"leverage": 101},
        {"price_precision": 9},
        {"check_interval": 0},
        {"margin_usage_threshold": 0},
    ])
    def test_invalid_values_rejected(self, overrides):
        data = {"trading_asset": "HYPE", "total_capital": 1000.0, **overrides}
        with pytest.raises(ValidationError):
            GridStrategyConfig(**data)


class TestRunnerConfig:
    """Tests for RunnerConfig model."""

    def test_defaults(self):
        runner = RunnerConfig()
        assert runner.order_batch_delay_ms == 150
        assert runner.initial_batch_size == 8
        assert runner.retry_enabled is False
        assert runner.shadow_mode is False
        assert runner.margin_check_interval == 300.0
        assert runner.tuning_file == "db/dynamic_grid_params.json"

    def test_margin_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            RunnerConfig(margin_check_interval=0)

    def test_batch_range_checked(self):
        with pytest.raises(ValidationError):
            RunnerConfig(min_batch_size=10, max_batch_size=5)


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_from_path(self, tmp_path):
        path = write_config(tmp_path / "gridtrader.yaml", {
            "grid": {"trading_asset": "HYPE", "total_capital": 1000.0},
            "runner": {"shadow_mode": True},
        })
        config = load_config(path)

        assert isinstance(config, TraderConfig)
        assert config.grid.trading_asset == "HYPE"
        assert config.runner.shadow_mode is True
        assert config.notification is None

    def test_load_from_env(self, tmp_path, monkeypatch):
        path = write_config(tmp_path / "custom.yaml", {
            "grid": {"trading_asset": "BTC", "total_capital": 5000.0},
        })
        monkeypatch.setenv("GRIDTRADER_CONFIG_PATH", path)

        assert load_config().grid.trading_asset == "BTC"

    def test_default_location(self, tmp_path, monkeypatch):
        (tmp_path / "conf").mkdir()
        write_config(tmp_path / "conf" / "gridtrader.yaml", {
            "grid": {"trading_asset": "ETH", "total_capital": 5000.0},
        })
        monkeypatch.delenv("GRIDTRADER_CONFIG_PATH", raising=False)
        monkeypatch.chdir(tmp_path)

        assert load_config().grid.trading_asset == "ETH"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_nothing_found(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GRIDTRADER_CONFIG_PATH", raising=False)
        monkeypatch.chdir(tmp_path)
        with pytest.raises(FileNotFoundError):
            load_config()

    def test_validation_error_becomes_config_error(self, tmp_path):
        path = write_config(tmp_path / "bad.yaml", {
            "grid": {"trading_asset": "HYPE", "total_capital": 100.0, "trade_amount": 500.0},
        })
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.is_config_error

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_telegram_section(self, tmp_path):
        path = write_config(tmp_path / "gridtrader.yaml", {
            "grid": {"trading_asset": "HYPE", "total_capital": 1000.0},
            "notification": {"telegram": {"bot_token": "t", "chat_id": "1"}},
        })
        config = load_config(path)
        assert config.notification.telegram.chat_id == "1"
