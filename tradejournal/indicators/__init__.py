"""Technical indicator engine."""

from tradejournal.indicators.technical import (
    IndicatorConfig,
    IndicatorResult,
    IndicatorType,
    calculate,
    calculate_all,
    calculate_bollinger_bands,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
    calculate_sma,
)

__all__ = [
    "IndicatorConfig",
    "IndicatorResult",
    "IndicatorType",
    "calculate",
    "calculate_all",
    "calculate_bollinger_bands",
    "calculate_ema",
    "calculate_macd",
    "calculate_rsi",
    "calculate_sma",
]
