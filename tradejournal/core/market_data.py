"""
Market data parsing and candle manipulation.

Turns upstream market-data payloads (Finnhub REST candles, Finnhub
WebSocket trade messages, cached CSV files) into Candle and LivePrice
values, and provides the candle-series helpers the chart layer needs:
merging, timeframe aggregation and live-tick updates of the last bar.

Malformed input never raises out of this module: bad ticks are dropped
and a bad candle batch yields an empty list.
"""

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import structlog
from pydantic import ValidationError

from tradejournal.core.models import Candle, LivePrice

logger = structlog.get_logger(__name__)


class Timeframe(str, Enum):
    """Chart resolution."""
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"
    W1 = "1w"
    MN1 = "1M"

    @property
    def duration(self) -> timedelta:
        """Length of one candle (months approximated as 30 days)."""
        return _DURATIONS[self]

    @property
    def api_value(self) -> str:
        """Finnhub resolution parameter."""
        return _API_VALUES[self]

    @property
    def default_candle_count(self) -> int:
        """Number of candles to request for a typical chart view."""
        return _DEFAULT_COUNTS[self]

    def get_from_date(self, to: datetime) -> datetime:
        """Start of the window holding default_candle_count candles ending at `to`."""
        return to - self.duration * self.default_candle_count

    def bucket_start(self, ts: datetime) -> datetime:
        """Start of the candle period containing `ts`."""
        ts = _as_utc(ts)
        if self == Timeframe.MN1:
            return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if self == Timeframe.W1:
            day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
            return day - timedelta(days=day.weekday())
        if self == Timeframe.D1:
            return ts.replace(hour=0, minute=0, second=0, microsecond=0)
        seconds = int(self.duration.total_seconds())
        epoch = int(ts.timestamp())
        return datetime.fromtimestamp(epoch - epoch % seconds, tz=timezone.utc)

    @classmethod
    def quick_select(cls) -> List["Timeframe"]:
        return [cls.M1, cls.M5, cls.M15, cls.H1, cls.D1]


_DURATIONS: Dict[Timeframe, timedelta] = {
    Timeframe.M1: timedelta(minutes=1),
    Timeframe.M5: timedelta(minutes=5),
    Timeframe.M15: timedelta(minutes=15),
    Timeframe.M30: timedelta(minutes=30),
    Timeframe.H1: timedelta(hours=1),
    Timeframe.H4: timedelta(hours=4),
    Timeframe.D1: timedelta(days=1),
    Timeframe.W1: timedelta(days=7),
    Timeframe.MN1: timedelta(days=30),
}

_API_VALUES: Dict[Timeframe, str] = {
    Timeframe.M1: "1",
    Timeframe.M5: "5",
    Timeframe.M15: "15",
    Timeframe.M30: "30",
    Timeframe.H1: "60",
    Timeframe.H4: "240",
    Timeframe.D1: "D",
    Timeframe.W1: "W",
    Timeframe.MN1: "M",
}

_DEFAULT_COUNTS: Dict[Timeframe, int] = {
    Timeframe.M1: 200,
    Timeframe.M5: 200,
    Timeframe.M15: 200,
    Timeframe.M30: 150,
    Timeframe.H1: 150,
    Timeframe.H4: 120,
    Timeframe.D1: 120,
    Timeframe.W1: 104,
    Timeframe.MN1: 60,
}


def _as_utc(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _to_decimal(value: Any) -> Decimal:
    """Convert a numeric payload value to Decimal, rejecting NaN/inf."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a number: {value!r}")
    result = Decimal(str(value))
    if not result.is_finite():
        raise ValueError(f"Non-finite number: {value!r}")
    return result


# =============================================================================
# Finnhub payloads
# =============================================================================

def parse_finnhub_candles(payload: Dict[str, Any]) -> List[Candle]:
    """
    Parse a Finnhub /stock/candle response.

    The response holds parallel arrays keyed t/o/h/l/c/v with unix-second
    timestamps and a status field `s`.

    Args:
        payload: Decoded JSON response

    Returns:
        Candles in ascending time order, or [] for a no-data or malformed
        response. A batch with any bad row is rejected as a whole.
    """
    if not isinstance(payload, dict) or payload.get("s") != "ok":
        logger.debug("market_data.no_candles")
        return []

    try:
        times = payload["t"]
        opens, highs = payload["o"], payload["h"]
        lows, closes = payload["l"], payload["c"]
        volumes = payload.get("v") or [0] * len(times)

        lengths = {len(times), len(opens), len(highs), len(lows), len(closes), len(volumes)}
        if len(lengths) != 1:
            raise ValueError("Candle arrays have mismatched lengths")

        candles = [
            Candle(
                timestamp=datetime.fromtimestamp(int(times[i]), tz=timezone.utc),
                open=_to_decimal(opens[i]),
                high=_to_decimal(highs[i]),
                low=_to_decimal(lows[i]),
                close=_to_decimal(closes[i]),
                volume=_to_decimal(volumes[i]),
            )
            for i in range(len(times))
        ]
    except (KeyError, TypeError, ValueError, InvalidOperation, OverflowError, ValidationError) as e:
        logger.warning("market_data.malformed_candles", error=str(e))
        return []

    candles.sort(key=lambda c: c.timestamp)
    return candles


def parse_finnhub_trade(trade: Dict[str, Any]) -> Optional[LivePrice]:
    """Parse one entry of a Finnhub trade message; None if malformed."""
    try:
        price = _to_decimal(trade["p"])
        volume = trade.get("v")
        return LivePrice(
            symbol=trade["s"],
            price=price,
            timestamp=datetime.fromtimestamp(int(trade["t"]) / 1000, tz=timezone.utc),
            volume=_to_decimal(volume) if volume is not None else None,
        )
    except (KeyError, TypeError, ValueError, InvalidOperation, OverflowError, ValidationError) as e:
        logger.warning("market_data.malformed_tick", error=str(e))
        return None


def parse_finnhub_trades(message: Dict[str, Any]) -> List[LivePrice]:
    """
    Parse a Finnhub WebSocket message into ticks.

    Only messages of type "trade" carry prices; everything else (ping,
    subscription acks) yields []. Malformed entries are dropped.
    """
    if not isinstance(message, dict) or message.get("type") != "trade":
        return []
    data = message.get("data")
    if not isinstance(data, list):
        return []

    ticks = []
    for entry in data:
        if not isinstance(entry, dict):
            logger.warning("market_data.malformed_tick", error="entry is not an object")
            continue
        tick = parse_finnhub_trade(entry)
        if tick is not None:
            ticks.append(tick)
    return ticks


# =============================================================================
# Candle series helpers
# =============================================================================

def merge_candles(existing: Iterable[Candle], new: Iterable[Candle]) -> List[Candle]:
    """
    Merge two candle lists keyed by timestamp.

    A candle in `new` replaces one in `existing` with the same timestamp.
    The result is sorted ascending.
    """
    by_time: Dict[datetime, Candle] = {}
    for candle in existing:
        by_time[_as_utc(candle.timestamp)] = candle
    for candle in new:
        by_time[_as_utc(candle.timestamp)] = candle
    return [by_time[ts] for ts in sorted(by_time)]


def aggregate_candles(
    candles: List[Candle],
    source: Timeframe,
    target: Timeframe,
) -> List[Candle]:
    """
    Aggregate candles into a larger timeframe.

    Each output bar takes the first open, max high, min low, last close
    and summed volume of the source bars in its period. Aggregating to
    an equal or smaller timeframe returns the input unchanged.
    """
    if not candles:
        return []
    if target.duration <= source.duration:
        return list(candles)

    buckets: Dict[datetime, List[Candle]] = {}
    for candle in candles:
        buckets.setdefault(target.bucket_start(candle.timestamp), []).append(candle)

    aggregated = []
    for start in sorted(buckets):
        bucket = sorted(buckets[start], key=lambda c: c.timestamp)
        aggregated.append(
            Candle(
                timestamp=start,
                open=bucket[0].open,
                high=max(c.high for c in bucket),
                low=min(c.low for c in bucket),
                close=bucket[-1].close,
                volume=sum((c.volume for c in bucket), Decimal("0")),
            )
        )
    return aggregated


def apply_live_price(
    candles: List[Candle],
    tick: LivePrice,
    timeframe: Timeframe,
) -> List[Candle]:
    """
    Fold a live tick into a candle series.

    If the tick falls in the period of the last candle, that candle's
    high/low/close are updated. If it falls in a later period, a new
    candle is opened at the tick price. Ticks older than the last candle
    are ignored. The input list is not modified.
    """
    if not candles:
        return []

    last = candles[-1]
    tick_time = _as_utc(tick.timestamp)
    last_start = timeframe.bucket_start(last.timestamp)
    tick_start = timeframe.bucket_start(tick_time)

    if tick_start < last_start:
        return list(candles)

    if tick_start == last_start:
        updated = last.model_copy(update={
            "high": max(last.high, tick.price),
            "low": min(last.low, tick.price),
            "close": tick.price,
        })
        return list(candles[:-1]) + [updated]

    opened = Candle(
        timestamp=tick_start,
        open=tick.price,
        high=tick.price,
        low=tick.price,
        close=tick.price,
        volume=tick.volume or Decimal("0"),
    )
    return list(candles) + [opened]


def filter_until(candles: List[Candle], cursor: datetime) -> List[Candle]:
    """Candles at or before `cursor`, used for bar replay."""
    cursor = _as_utc(cursor)
    return [c for c in candles if _as_utc(c.timestamp) <= cursor]


# =============================================================================
# CSV cache
# =============================================================================

def load_candles_csv(path: str) -> List[Candle]:
    """
    Load candles from a CSV file.

    Expects columns timestamp, open, high, low, close and optionally
    volume. Timestamps may be ISO strings or unix seconds.

    Returns:
        Candles sorted by time, or [] if the file is missing or malformed
    """
    filepath = Path(path)
    if not filepath.exists():
        logger.warning("market_data.csv_missing", path=str(filepath))
        return []

    try:
        df = pd.read_csv(filepath)
        if pd.api.types.is_numeric_dtype(df["timestamp"]):
            timestamps = pd.to_datetime(df["timestamp"], unit="s", utc=True)
        else:
            timestamps = pd.to_datetime(df["timestamp"], utc=True)

        has_volume = "volume" in df.columns
        candles = []
        for ts, (_, row) in zip(timestamps, df.iterrows()):
            volume = row["volume"] if has_volume else 0
            if isinstance(volume, float) and math.isnan(volume):
                volume = 0
            candles.append(
                Candle(
                    timestamp=ts.to_pydatetime(),
                    open=_to_decimal(row["open"]),
                    high=_to_decimal(row["high"]),
                    low=_to_decimal(row["low"]),
                    close=_to_decimal(row["close"]),
                    volume=_to_decimal(volume),
                )
            )
    except (KeyError, TypeError, ValueError, InvalidOperation, ValidationError, pd.errors.ParserError) as e:
        logger.warning("market_data.malformed_csv", path=str(filepath), error=str(e))
        return []

    candles.sort(key=lambda c: c.timestamp)
    logger.info("market_data.csv_loaded", path=str(filepath), candles=len(candles))
    return candles
