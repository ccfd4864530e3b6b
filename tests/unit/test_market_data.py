"""Unit tests for market data parsing and candle helpers."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from tradejournal.core.market_data import (
    Timeframe,
    aggregate_candles,
    apply_live_price,
    filter_until,
    load_candles_csv,
    merge_candles,
    parse_finnhub_candles,
    parse_finnhub_trades,
)
from tradejournal.core.models import Candle, LivePrice

T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def hourly(n: int, start: datetime = T0):
    return [
        Candle(
            timestamp=start + timedelta(hours=i),
            open=Decimal(100 + i),
            high=Decimal(102 + i),
            low=Decimal(99 + i),
            close=Decimal(101 + i),
            volume=Decimal("10"),
        )
        for i in range(n)
    ]


class TestTimeframe:
    """Test Timeframe helpers."""

    def test_api_values(self):
        assert Timeframe.H1.api_value == "60"
        assert Timeframe.D1.api_value == "D"
        assert Timeframe.MN1.api_value == "M"

    def test_bucket_start(self):
        ts = datetime(2024, 1, 17, 14, 37, 12, tzinfo=timezone.utc)  # Wednesday

        assert Timeframe.M15.bucket_start(ts) == datetime(2024, 1, 17, 14, 30, tzinfo=timezone.utc)
        assert Timeframe.H4.bucket_start(ts) == datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)
        assert Timeframe.D1.bucket_start(ts) == datetime(2024, 1, 17, tzinfo=timezone.utc)
        assert Timeframe.W1.bucket_start(ts) == datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert Timeframe.MN1.bucket_start(ts) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_get_from_date(self):
        to = datetime(2024, 1, 17, tzinfo=timezone.utc)
        assert Timeframe.H1.get_from_date(to) == to - timedelta(hours=150)

    def test_quick_select(self):
        assert Timeframe.H1 in Timeframe.quick_select()


class TestFinnhubCandles:
    """Test REST candle parsing."""

    def test_parse_ok_payload(self):
        payload = {
            "s": "ok",
            "t": [1705327200, 1705323600],
            "o": [101, 100],
            "h": [103, 102],
            "l": [100, 99],
            "c": [102, 101],
            "v": [500, 400],
        }

        candles = parse_finnhub_candles(payload)

        assert len(candles) == 2
        assert candles[0].timestamp < candles[1].timestamp
        assert candles[0].open == Decimal("100")
        assert candles[1].volume == Decimal("500")
        assert candles[0].timestamp.tzinfo is not None

    def test_no_data(self):
        assert parse_finnhub_candles({"s": "no_data"}) == []

    def test_mismatched_arrays(self):
        payload = {"s": "ok", "t": [1, 2], "o": [1], "h": [1, 2], "l": [1, 2], "c": [1, 2]}
        assert parse_finnhub_candles(payload) == []

    def test_bad_row_rejects_batch(self):
        payload = {
            "s": "ok",
            "t": [1705323600, 1705327200],
            "o": [100, 101],
            "h": [102, 99],
            "l": [99, 100],
            "c": [101, 100],
        }
        assert parse_finnhub_candles(payload) == []

    def test_non_numeric_value(self):
        payload = {"s": "ok", "t": [1705323600], "o": ["x"], "h": [1], "l": [1], "c": [1]}
        assert parse_finnhub_candles(payload) == []


class TestFinnhubTrades:
    """Test WebSocket trade parsing."""

    def test_parse_trades_drops_malformed(self):
        message = {
            "type": "trade",
            "data": [
                {"p": 150.5, "s": "AAPL", "t": 1705327200000, "v": 10},
                {"p": -1, "s": "AAPL", "t": 1705327200000},
                {"s": "MSFT", "t": 1705327200000},
                "garbage",
            ],
        }

        ticks = parse_finnhub_trades(message)

        assert len(ticks) == 1
        assert ticks[0].symbol == "AAPL"
        assert ticks[0].price == Decimal("150.5")
        assert ticks[0].timestamp == datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)

    def test_non_trade_message(self):
        assert parse_finnhub_trades({"type": "ping"}) == []
        assert parse_finnhub_trades({"type": "trade", "data": None}) == []


class TestCandleHelpers:
    """Test merge, aggregation and live updates."""

    def test_merge_replaces_by_timestamp(self):
        existing = hourly(3)
        replacement = existing[1].model_copy(update={"close": Decimal("150"), "high": Decimal("150")})
        extra = hourly(1, T0 + timedelta(hours=5))

        merged = merge_candles(existing, [replacement] + extra)

        assert len(merged) == 4
        assert merged[1].close == Decimal("150")
        assert merged[-1].timestamp == T0 + timedelta(hours=5)

    def test_aggregate_to_h4(self):
        candles = hourly(5)

        bars = aggregate_candles(candles, Timeframe.H1, Timeframe.H4)

        assert len(bars) == 2
        first = bars[0]
        assert first.timestamp == T0
        assert first.open == Decimal("100")
        assert first.high == Decimal("105")
        assert first.low == Decimal("99")
        assert first.close == Decimal("104")
        assert first.volume == Decimal("40")
        assert bars[1].timestamp == T0 + timedelta(hours=4)

    def test_aggregate_to_smaller_is_identity(self):
        candles = hourly(3)
        assert aggregate_candles(candles, Timeframe.H1, Timeframe.M5) == candles

    def test_live_price_updates_last_candle(self):
        candles = hourly(2)
        tick = LivePrice(symbol="AAPL", price=Decimal("110"), timestamp=T0 + timedelta(hours=1, minutes=30))

        updated = apply_live_price(candles, tick, Timeframe.H1)

        assert len(updated) == 2
        assert updated[-1].close == Decimal("110")
        assert updated[-1].high == Decimal("110")
        assert updated[-1].open == candles[-1].open
        assert candles[-1].close == Decimal("102")

    def test_live_price_opens_new_candle(self):
        candles = hourly(2)
        tick = LivePrice(symbol="AAPL", price=Decimal("95"), timestamp=T0 + timedelta(hours=2, minutes=10))

        updated = apply_live_price(candles, tick, Timeframe.H1)

        assert len(updated) == 3
        assert updated[-1].timestamp == T0 + timedelta(hours=2)
        assert updated[-1].open == updated[-1].close == Decimal("95")

    def test_old_tick_ignored(self):
        candles = hourly(2)
        tick = LivePrice(symbol="AAPL", price=Decimal("1"), timestamp=T0 - timedelta(hours=3))
        assert apply_live_price(candles, tick, Timeframe.H1) == candles

    def test_filter_until(self):
        candles = hourly(5)
        assert len(filter_until(candles, T0 + timedelta(hours=2))) == 3


class TestCsvLoading:
    """Test cached CSV candles."""

    def test_iso_timestamps(self, tmp_path):
        path = tmp_path / "aapl.csv"
        path.write_text(
            "timestamp,open,high,low,close,volume\n"
            "2024-01-15T13:00:00Z,101,103,100,102,20\n"
            "2024-01-15T12:00:00Z,100,102,99,101,10\n"
        )

        candles = load_candles_csv(str(path))

        assert len(candles) == 2
        assert candles[0].timestamp == T0
        assert candles[1].close == Decimal("102")

    def test_unix_timestamps_without_volume(self, tmp_path):
        path = tmp_path / "aapl.csv"
        path.write_text("timestamp,open,high,low,close\n1705320000,100,102,99,101\n")

        candles = load_candles_csv(str(path))

        assert candles[0].timestamp == T0
        assert candles[0].volume == Decimal("0")

    def test_missing_file(self, tmp_path):
        assert load_candles_csv(str(tmp_path / "nope.csv")) == []

    def test_missing_column(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("timestamp,open,high,low\n1705320000,100,102,99\n")
        assert load_candles_csv(str(path)) == []
