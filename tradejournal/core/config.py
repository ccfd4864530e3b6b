"""Configuration management for the trade journal engine."""

from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# System Configuration
# =============================================================================


class SystemConfig(BaseSettings):
    """System-level configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", validation_alias="ENVIRONMENT"
    )
    app_name: str = Field(default="Trade Journal", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")
    timezone: str = Field(default="UTC", validation_alias="TIMEZONE")


# =============================================================================
# Paper Trading Configuration
# =============================================================================


class PaperTradingConfig(BaseSettings):
    """Simulated account and order defaults for the paper trading engine."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Starting cash, also the target of an account reset
    initial_balance: Decimal = Field(
        default=Decimal("10000"), validation_alias="PAPER_INITIAL_BALANCE"
    )

    # Quantity used by buy()/sell()
    default_order_quantity: Decimal = Field(
        default=Decimal("1"), validation_alias="PAPER_ORDER_QUANTITY"
    )

    # Optional SL/TP offsets applied to buy()/sell(), in percent of entry
    stop_loss_pct: Optional[Decimal] = Field(
        default=None, validation_alias="PAPER_STOP_LOSS_PCT"
    )
    take_profit_pct: Optional[Decimal] = Field(
        default=None, validation_alias="PAPER_TAKE_PROFIT_PCT"
    )

    # Reject a second open position on the same symbol
    single_position_per_symbol: bool = Field(
        default=True, validation_alias="PAPER_SINGLE_POSITION_PER_SYMBOL"
    )

    @field_validator("initial_balance")
    @classmethod
    def validate_initial_balance(cls, v):
        """Validate that the starting balance is positive."""
        if v <= 0:
            raise ValueError("Initial balance must be positive")
        return v

    @field_validator("default_order_quantity")
    @classmethod
    def validate_quantity(cls, v):
        """Validate that the default order quantity is positive."""
        if v <= 0:
            raise ValueError("Order quantity must be positive")
        return v

    @field_validator("stop_loss_pct", "take_profit_pct")
    @classmethod
    def validate_offset_pct(cls, v):
        """Validate that SL/TP offsets are between 0 and 100 percent."""
        if v is not None and (v <= 0 or v >= 100):
            raise ValueError("Offset percentage must be between 0 and 100")
        return v


# =============================================================================
# Position Tool Configuration
# =============================================================================


class PositionToolConfig(BaseSettings):
    """Defaults for chart position tools created from a gesture."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # 2% risk / 4% reward gives a 2:1 R:R
    default_sl_percent: Decimal = Field(
        default=Decimal("2.0"), validation_alias="TOOL_DEFAULT_SL_PERCENT"
    )
    default_tp_percent: Decimal = Field(
        default=Decimal("4.0"), validation_alias="TOOL_DEFAULT_TP_PERCENT"
    )
    default_quantity: Decimal = Field(
        default=Decimal("1"), validation_alias="TOOL_DEFAULT_QUANTITY"
    )

    # Width of a new tool in hours
    default_width_hours: int = Field(
        default=24, validation_alias="TOOL_DEFAULT_WIDTH_HOURS"
    )

    @field_validator("default_sl_percent", "default_tp_percent")
    @classmethod
    def validate_percent(cls, v):
        """Validate that percentages are between 0 and 100."""
        if v <= 0 or v >= 100:
            raise ValueError("Percentage must be between 0 and 100")
        return v

    @field_validator("default_width_hours")
    @classmethod
    def validate_width(cls, v):
        """Validate that the tool width is at least one hour."""
        if v < 1:
            raise ValueError("Tool width must be at least 1 hour")
        return v


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    database_url: str = Field(
        default="sqlite:///./data/trade_journal.db", validation_alias="DATABASE_URL"
    )
    echo_sql: bool = Field(default=False, validation_alias="DATABASE_ECHO")


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Log level
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )

    # Log settings
    log_file: str = Field(default="logs/trade_journal.log", validation_alias="LOG_FILE")
    json_logs: bool = Field(default=True, validation_alias="LOG_JSON")


# =============================================================================
# Combined Configuration
# =============================================================================


class JournalConfig:
    """
    Complete configuration for the trade journal engine.

    Aggregates all configuration sections into a single interface.
    """

    def __init__(self):
        self.system = SystemConfig()
        self.paper_trading = PaperTradingConfig()
        self.position_tool = PositionToolConfig()
        self.database = DatabaseConfig()
        self.logging = LoggingConfig()

    @property
    def has_default_stops(self) -> bool:
        """Check if buy()/sell() attach a stop loss by default."""
        return self.paper_trading.stop_loss_pct is not None

    def validate_configuration(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        paper = self.paper_trading
        if (
            paper.stop_loss_pct is not None
            and paper.take_profit_pct is not None
            and paper.take_profit_pct < paper.stop_loss_pct
        ):
            issues.append(
                f"Default take profit ({paper.take_profit_pct}%) is tighter "
                f"than stop loss ({paper.stop_loss_pct}%)"
            )

        tool = self.position_tool
        if tool.default_tp_percent < tool.default_sl_percent:
            issues.append("Position tool reward is smaller than its risk")

        if not self.database.database_url:
            issues.append("DATABASE_URL is empty")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

paper_trading_config = PaperTradingConfig()
position_tool_config = PositionToolConfig()
database_config = DatabaseConfig()
logging_config = LoggingConfig()

journal_config = JournalConfig()


__all__ = [
    "JournalConfig",
    "journal_config",
    "paper_trading_config",
    "position_tool_config",
    "database_config",
    "logging_config",
    "SystemConfig",
    "PaperTradingConfig",
    "PositionToolConfig",
    "DatabaseConfig",
    "LoggingConfig",
]
