"""
Technical indicators computed from candle sequences.

Every function is pure: the output list has one entry per input candle,
aligned by index, with None wherever there is not enough history.
Insufficient history or a non-positive period never raises; it yields
an all-None series.

Prices arrive as Decimal on the candles and are computed here as float,
the same representation the chart layer plots.
"""

import math
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field

from tradejournal.core.models import Candle

logger = structlog.get_logger(__name__)

Series = List[Optional[float]]


# =============================================================================
# Configuration & Result Models
# =============================================================================

class IndicatorType(str, Enum):
    """Supported indicator types."""
    SMA = "sma"
    EMA = "ema"
    RSI = "rsi"
    MACD = "macd"
    BOLLINGER = "bollinger"


class IndicatorConfig(BaseModel):
    """
    Configuration for one indicator line on a chart.

    Attributes:
        id: Stable identifier (e.g. "ema_9")
        type: Indicator type
        period: Main lookback period (MACD fast period)
        period2: Secondary parameter: MACD slow period, Bollinger multiplier
        enabled: Whether the indicator is shown
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    type: IndicatorType
    period: int
    period2: Optional[int] = None
    enabled: bool = True

    @property
    def display_name(self) -> str:
        if self.type == IndicatorType.MACD:
            return f"MACD({self.period}, {self.period2 or 26})"
        if self.type == IndicatorType.BOLLINGER:
            return f"BB({self.period}, {self.period2 or 2})"
        return f"{self.type.value.upper()}({self.period})"

    @classmethod
    def default_presets(cls) -> List["IndicatorConfig"]:
        """Indicator set shown on a fresh chart."""
        return [
            cls(id="ema_9", type=IndicatorType.EMA, period=9),
            cls(id="ema_21", type=IndicatorType.EMA, period=21),
            cls(id="sma_50", type=IndicatorType.SMA, period=50),
            cls(id="sma_200", type=IndicatorType.SMA, period=200),
            cls(id="rsi_14", type=IndicatorType.RSI, period=14, enabled=False),
        ]


class IndicatorResult(BaseModel):
    """
    Output series of one indicator.

    `values` is the main line (SMA/EMA/RSI value, Bollinger middle band,
    MACD line). Multi-line indicators fill the optional series.
    """
    model_config = ConfigDict(frozen=True)

    config: IndicatorConfig
    values: Series
    upper_band: Optional[Series] = None
    lower_band: Optional[Series] = None
    signal_line: Optional[Series] = None
    histogram: Optional[Series] = None


# =============================================================================
# Indicator Functions
# =============================================================================

def _closes(candles: Sequence[Candle]) -> List[float]:
    return [float(c.close) for c in candles]


def _empty(n: int) -> Series:
    return [None] * n


def _sma_values(closes: List[float], period: int) -> Series:
    n = len(closes)
    if period <= 0 or n < period:
        return _empty(n)

    result = _empty(n)
    for i in range(period - 1, n):
        window = closes[i - period + 1:i + 1]
        result[i] = sum(window) / period
    return result


def _ema_values(closes: List[float], period: int) -> Series:
    n = len(closes)
    if period <= 0 or n < period:
        return _empty(n)

    result = _empty(n)
    k = 2 / (period + 1)
    ema = sum(closes[:period]) / period
    result[period - 1] = ema
    for i in range(period, n):
        ema = (closes[i] - ema) * k + ema
        result[i] = ema
    return result


def calculate_sma(candles: Sequence[Candle], period: int) -> Series:
    """
    Simple moving average of close.

    Value at i is the mean of the `period` closes ending at i.
    """
    return _sma_values(_closes(candles), period)


def calculate_ema(candles: Sequence[Candle], period: int) -> Series:
    """
    Exponential moving average of close.

    Seeded at index period-1 with the SMA of the first window, then
    ema[i] = (close[i] - ema[i-1]) * k + ema[i-1] with k = 2 / (period + 1).
    """
    return _ema_values(_closes(candles), period)


def calculate_rsi(candles: Sequence[Candle], period: int = 14) -> Series:
    """
    Relative Strength Index with Wilder smoothing.

    The first value is at index `period`, from the plain average gain and
    loss of the first `period` deltas. Later values smooth the averages as
    avg = (avg * (period - 1) + current) / period. An average loss of zero
    gives 100.

    Returns:
        Series with values in [0, 100]
    """
    closes = _closes(candles)
    n = len(closes)
    if period <= 0 or n <= period:
        return _empty(n)

    result = _empty(n)
    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        delta = closes[i] - closes[i - 1]
        if delta > 0:
            gains += delta
        else:
            losses -= delta

    avg_gain = gains / period
    avg_loss = losses / period
    result[period] = _rsi(avg_gain, avg_loss)

    for i in range(period + 1, n):
        delta = closes[i] - closes[i - 1]
        gain = delta if delta > 0 else 0.0
        loss = -delta if delta < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        result[i] = _rsi(avg_gain, avg_loss)

    return result


def _rsi(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def calculate_bollinger_bands(
    candles: Sequence[Candle],
    period: int = 20,
    std_dev: float = 2.0,
) -> Tuple[Series, Series, Series]:
    """
    Bollinger Bands around the SMA.

    Uses the population standard deviation of the same trailing window.

    Returns:
        (middle, upper, lower)
    """
    closes = _closes(candles)
    n = len(closes)
    middle = _sma_values(closes, period)
    upper = _empty(n)
    lower = _empty(n)
    if period <= 0 or n < period:
        return middle, upper, lower

    for i in range(period - 1, n):
        mean = middle[i]
        window = closes[i - period + 1:i + 1]
        variance = sum((x - mean) ** 2 for x in window) / period
        std = math.sqrt(variance)
        upper[i] = mean + std_dev * std
        lower[i] = mean - std_dev * std

    return middle, upper, lower


def calculate_macd(
    candles: Sequence[Candle],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> Tuple[Series, Series, Series]:
    """
    Moving Average Convergence Divergence.

    The MACD line is EMA(fast) - EMA(slow) wherever both are defined.
    The signal line is an EMA of the defined MACD values, seeded with
    the mean of the first `signal_period` of them.

    Returns:
        (macd, signal, histogram)
    """
    closes = _closes(candles)
    n = len(closes)
    fast = _ema_values(closes, fast_period)
    slow = _ema_values(closes, slow_period)

    macd = _empty(n)
    for i in range(n):
        if fast[i] is not None and slow[i] is not None:
            macd[i] = fast[i] - slow[i]

    signal = _empty(n)
    histogram = _empty(n)

    defined = [i for i in range(n) if macd[i] is not None]
    if signal_period <= 0 or len(defined) < signal_period:
        return macd, signal, histogram

    # Defined MACD values are contiguous from the first defined index
    start = defined[0]
    signal_values = _ema_values([macd[i] for i in defined], signal_period)
    for offset, value in enumerate(signal_values):
        signal[start + offset] = value

    for i in range(n):
        if macd[i] is not None and signal[i] is not None:
            histogram[i] = macd[i] - signal[i]

    return macd, signal, histogram


def calculate(candles: Sequence[Candle], config: IndicatorConfig) -> IndicatorResult:
    """
    Compute the indicator described by `config`.

    Bollinger takes its multiplier from period2 (default 2). MACD takes its
    slow period from period2 (default 26) and uses a signal period of 9.
    """
    if config.type == IndicatorType.SMA:
        return IndicatorResult(config=config, values=calculate_sma(candles, config.period))

    if config.type == IndicatorType.EMA:
        return IndicatorResult(config=config, values=calculate_ema(candles, config.period))

    if config.type == IndicatorType.RSI:
        return IndicatorResult(config=config, values=calculate_rsi(candles, config.period))

    if config.type == IndicatorType.BOLLINGER:
        middle, upper, lower = calculate_bollinger_bands(
            candles, config.period, float(config.period2 or 2)
        )
        return IndicatorResult(
            config=config, values=middle, upper_band=upper, lower_band=lower
        )

    if config.type == IndicatorType.MACD:
        macd, signal, histogram = calculate_macd(
            candles, config.period, config.period2 or 26
        )
        return IndicatorResult(
            config=config, values=macd, signal_line=signal, histogram=histogram
        )

    raise ValueError(f"Unsupported indicator type: {config.type}")


def calculate_all(
    candles: Sequence[Candle],
    configs: Sequence[IndicatorConfig],
) -> Dict[str, IndicatorResult]:
    """Compute every enabled indicator, keyed by config id."""
    results = {}
    for config in configs:
        if config.enabled:
            results[config.id] = calculate(candles, config)
    logger.debug("indicators.calculated", count=len(results), candles=len(candles))
    return results
