"""Configuration models for gridtrader.

Loads trading configuration from YAML file with Pydantic validation.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from gridrisk import ConfigError, GridParameters

# Spacing must cover at least this multiple of the fee rate
_MIN_SPACING_FEE_MULTIPLE = 2.5
_MAX_PRECISION = 8


class GridStrategyConfig(BaseModel):
    """Adaptive grid strategy configuration."""

    trading_asset: str = Field(..., description="Traded asset (e.g., HYPE)")
    total_capital: float = Field(..., gt=0, description="Capital base for loss limits")

    # Ladder
    grid_count: int = Field(default=8, gt=0, description="Levels per side")
    trade_amount: float = Field(default=80.0, gt=0, description="Notional per level")
    max_position: float = Field(default=10000.0, gt=0, description="Per-side position cap")
    price_precision: int = Field(default=4, ge=0, le=_MAX_PRECISION)
    quantity_precision: int = Field(default=1, ge=0, le=_MAX_PRECISION)
    leverage: int = Field(default=3, ge=1, le=100)
    max_active_orders: int = Field(default=20, gt=0, description="Resting orders allowed per side")

    # Spacing
    min_grid_spacing: float = Field(default=0.0024, gt=0)
    max_grid_spacing: float = Field(default=0.004, gt=0)
    grid_price_offset: float = Field(default=0.0, description="Ladder shift")
    history_length: int = Field(default=80, gt=0, description="Price samples for volatility")

    # Costs
    fee_rate: float = Field(default=0.0004, ge=0, le=0.1)
    min_profit: float = Field(default=0.002, ge=0)
    margin_usage_threshold: float = Field(
        default=0.9, gt=0, le=1, description="Margin ratio (account value / margin used) floor"
    )
    enforce_min_profit: bool = Field(default=False, description="Skip buy levels that miss min_profit after fees")

    # Tuning
    auto_optimize: bool = Field(default=False, description="Daily tuning of spacing band and trade amount")

    # Risk
    max_drawdown: float = Field(default=0.02, gt=0, le=1)
    max_single_loss: float = Field(default=0.01, gt=0, le=1)
    max_daily_loss: float = Field(default=0.02, gt=0, le=1)
    max_holding_time: float = Field(default=86400.0, gt=0, description="Seconds before forced exit")

    # Timing
    check_interval: float = Field(default=10.0, gt=0, description="Seconds between cycles")

    @model_validator(mode="after")
    def validate_consistency(self):
        """Cross-field checks that single-field bounds cannot express."""
        if self.trade_amount > self.total_capital:
            raise ValueError(
                f"trade_amount ({self.trade_amount}) must not exceed total_capital ({self.total_capital})"
            )
        if self.max_grid_spacing <= self.min_grid_spacing:
            raise ValueError(
                f"max_grid_spacing ({self.max_grid_spacing}) must exceed min_grid_spacing ({self.min_grid_spacing})"
            )
        required = self.fee_rate * _MIN_SPACING_FEE_MULTIPLE
        if self.min_grid_spacing < required:
            raise ValueError(
                f"min_grid_spacing ({self.min_grid_spacing * 100:.4f}%) does not cover fees, "
                f"use at least {required * 100:.4f}%"
            )
        return self

    def to_params(self) -> GridParameters:
        """Build the immutable engine parameters."""
        return GridParameters(
            asset=self.trading_asset,
            total_capital=self.total_capital,
            grid_count=self.grid_count,
            trade_amount=self.trade_amount,
            max_position=self.max_position,
            max_drawdown=self.max_drawdown,
            price_precision=self.price_precision,
            quantity_precision=self.quantity_precision,
            check_interval=self.check_interval,
            leverage=self.leverage,
            min_grid_spacing=self.min_grid_spacing,
            max_grid_spacing=self.max_grid_spacing,
            grid_price_offset=self.grid_price_offset,
            max_single_loss=self.max_single_loss,
            max_daily_loss=self.max_daily_loss,
            max_holding_time=self.max_holding_time,
            history_length=self.history_length,
            max_active_orders=self.max_active_orders,
            fee_rate=self.fee_rate,
            min_profit=self.min_profit,
            margin_usage_threshold=self.margin_usage_threshold,
            enforce_min_profit=self.enforce_min_profit,
            auto_optimize=self.auto_optimize,
        )


class RunnerConfig(BaseModel):
    """Execution loop settings."""

    order_batch_delay_ms: int = Field(default=150, ge=0, description="Pause between placement batches")
    initial_batch_size: int = Field(default=8, gt=0)
    min_batch_size: int = Field(default=1, gt=0)
    max_batch_size: int = Field(default=200, gt=0)
    target_batch_seconds: float = Field(default=5.0, gt=0, description="Desired wall time per batch")
    retry_enabled: bool = Field(default=False, description="Retry failed gateway calls by error kind")
    shadow_mode: bool = Field(default=False, description="Log intents without executing")
    performance_file: Optional[str] = Field(
        default="db/performance.json",
        description="JSON file for performance data (None disables persistence)",
    )
    tuning_file: Optional[str] = Field(
        default="db/dynamic_grid_params.json",
        description="JSON file for tuned grid parameters, used when auto_optimize is on",
    )
    margin_check_interval: float = Field(default=300.0, gt=0, description="Seconds between margin checks")
    max_records: int = Field(default=1000, gt=0)
    max_snapshots: int = Field(default=100, gt=0)
    risk_free_rate: float = Field(default=0.0)

    @model_validator(mode="after")
    def validate_batch_range(self):
        if self.min_batch_size > self.max_batch_size:
            raise ValueError(
                f"min_batch_size ({self.min_batch_size}) must not exceed max_batch_size ({self.max_batch_size})"
            )
        return self


class TelegramConfig(BaseModel):
    """Telegram notification configuration."""

    bot_token: str = Field(..., description="Telegram bot token")
    chat_id: str = Field(..., description="Telegram chat ID for alerts")


class NotificationConfig(BaseModel):
    """Notification configuration."""

    telegram: Optional[TelegramConfig] = None


class TraderConfig(BaseModel):
    """Root configuration for gridtrader."""

    grid: GridStrategyConfig
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    notification: Optional[NotificationConfig] = None


def load_config(config_path: Optional[str] = None) -> TraderConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, checks:
            1. GRIDTRADER_CONFIG_PATH environment variable
            2. conf/gridtrader.yaml
            3. gridtrader.yaml

    Returns:
        Validated TraderConfig

    Raises:
        FileNotFoundError: If no config file found
        ConfigError: If config validation fails
    """
    if config_path is None:
        config_path = os.environ.get("GRIDTRADER_CONFIG_PATH")

    if config_path is None:
        search_paths = [
            Path("conf/gridtrader.yaml"),
            Path("gridtrader.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    if config_path is None:
        raise FileNotFoundError(
            "No config file found. Set GRIDTRADER_CONFIG_PATH or create conf/gridtrader.yaml"
        )

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"{config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: expected a mapping at the top level")

    try:
        return TraderConfig(**data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
