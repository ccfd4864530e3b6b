"""Unit tests for journal analytics."""
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tradejournal.core.models import OrderSide, Trade
from tradejournal.services import analytics

T0 = datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)


def make_trade(pnl, hours: int, symbol: str = "AAPL") -> Trade:
    return Trade(
        position_id=f"pos-{hours}",
        symbol=symbol,
        side=OrderSide.BUY,
        quantity=Decimal("1"),
        entry_price=Decimal("100"),
        exit_price=Decimal("100") + Decimal(str(pnl)),
        entry_time=T0 + timedelta(hours=hours - 1),
        exit_time=T0 + timedelta(hours=hours),
        realized_pnl=Decimal(str(pnl)),
    )


@pytest.fixture
def trades():
    # Deliberately out of exit-time order
    return [
        make_trade(30, 3),
        make_trade(100, 1),
        make_trade(0, 4, "MSFT"),
        make_trade(-50, 2, "msft"),
    ]


class TestAggregates:
    """Test PnL aggregates."""

    def test_win_rate(self, trades):
        assert analytics.win_rate(trades) == 50.0
        assert analytics.win_rate([]) == 0.0

    def test_pnl_totals(self, trades):
        assert analytics.total_pnl(trades) == Decimal("80")
        assert analytics.average_pnl(trades) == Decimal("20")
        assert analytics.average_win(trades) == Decimal("65")
        assert analytics.average_loss(trades) == Decimal("-50")
        assert analytics.largest_win(trades) == Decimal("100")
        assert analytics.largest_loss(trades) == Decimal("-50")

    def test_profit_factor_and_ratio(self, trades):
        assert analytics.profit_factor(trades) == Decimal("2.6")
        assert analytics.risk_reward_ratio(trades) == Decimal("1.3")

    def test_profit_factor_without_losses(self):
        only_wins = [make_trade(10, 1)]
        assert analytics.profit_factor(only_wins) == Decimal("Infinity")
        assert analytics.profit_factor([]) == Decimal("0")

    def test_trade_count_stats(self, trades):
        stats = analytics.trade_count_stats(trades)
        assert (stats.total, stats.wins, stats.losses, stats.breakeven) == (4, 2, 1, 1)

    def test_by_symbol_is_case_insensitive(self, trades):
        assert analytics.pnl_by_symbol(trades) == {"AAPL": Decimal("130"), "MSFT": Decimal("-50")}
        assert analytics.trade_count_by_symbol(trades) == {"AAPL": 2, "MSFT": 2}


class TestEquityCurve:
    """Test equity curve and drawdown."""

    def test_equity_curve_sorted_by_exit(self, trades):
        curve = analytics.equity_curve(trades, Decimal("1000"))

        assert [p.equity for p in curve] == [
            Decimal("1100"), Decimal("1050"), Decimal("1080"), Decimal("1080")
        ]
        assert curve[0].timestamp == T0 + timedelta(hours=1)

    def test_max_drawdown(self, trades):
        assert analytics.max_drawdown(trades, Decimal("1000")) == Decimal("-50")

    def test_drawdown_from_starting_balance(self):
        losing = [make_trade(-20, 1), make_trade(-30, 2)]
        assert analytics.max_drawdown(losing, Decimal("1000")) == Decimal("-50")

    def test_equity_curve_frame(self, trades):
        frame = analytics.equity_curve_frame(trades, Decimal("1000"))

        assert list(frame.columns) == ["timestamp", "pnl", "equity", "peak", "drawdown", "drawdown_pct"]
        assert frame["peak"].tolist() == [1100.0, 1100.0, 1100.0, 1100.0]
        assert frame["drawdown"].min() == -50.0
        assert frame["drawdown_pct"].min() == pytest.approx(-50 / 1100 * 100)

    def test_empty_frame(self):
        frame = analytics.equity_curve_frame([])
        assert frame.empty
        assert "drawdown_pct" in frame.columns


class TestSummarize:
    """Test the combined statistics."""

    def test_summarize(self, trades):
        stats = analytics.summarize(trades, Decimal("1000"))

        assert stats.counts.total == 4
        assert stats.win_rate == 50.0
        assert stats.total_pnl == Decimal("80")
        assert stats.profit_factor == pytest.approx(2.6)
        assert stats.max_drawdown == Decimal("-50")
        assert stats.max_drawdown_pct == pytest.approx(-4.5454545)

    def test_summarize_wins_only(self):
        stats = analytics.summarize([make_trade(10, 1)], Decimal("1000"))
        assert math.isinf(stats.profit_factor)
        assert stats.max_drawdown_pct == 0.0

    def test_summarize_empty(self):
        stats = analytics.summarize([])
        assert stats.counts.total == 0
        assert stats.profit_factor == 0.0
        assert stats.max_drawdown == Decimal("0")
