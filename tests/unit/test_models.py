"""Unit tests for data models."""
from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from tradejournal.core.models import (
    Candle,
    CloseReason,
    EngineSnapshot,
    LivePrice,
    OrderSide,
    OrderStatus,
    OrderType,
    PaperAccount,
    PaperOrder,
    PaperPosition,
    Trade,
    TradeCheck,
    TradeOutcome,
    create_limit_order,
    create_market_order,
    utc_now,
)


# =============================================================================
# Enum Tests
# =============================================================================

class TestEnums:
    """Test enum values."""

    def test_order_side_values(self):
        assert OrderSide.BUY.value == "buy"
        assert OrderSide.SELL.value == "sell"

    def test_close_reason_values(self):
        assert CloseReason.MANUAL.value == "manual"
        assert CloseReason.STOP_LOSS.value == "stop_loss"
        assert CloseReason.TAKE_PROFIT.value == "take_profit"

    def test_order_status_values(self):
        assert OrderStatus.PENDING.value == "pending"
        assert OrderStatus.FILLED.value == "filled"


# =============================================================================
# Candle Tests
# =============================================================================

class TestCandle:
    """Test Candle model."""

    def test_candle_derived_properties(self):
        candle = Candle(
            timestamp=utc_now(),
            open=Decimal("100"),
            high=Decimal("110"),
            low=Decimal("95"),
            close=Decimal("105"),
        )

        assert candle.is_bullish
        assert not candle.is_bearish
        assert candle.body_size == Decimal("5")
        assert candle.range == Decimal("15")
        assert candle.upper_wick == Decimal("5")
        assert candle.lower_wick == Decimal("5")
        assert candle.volume == Decimal("0")

    def test_candle_bearish(self):
        candle = Candle(
            timestamp=utc_now(),
            open=Decimal("105"),
            high=Decimal("106"),
            low=Decimal("99"),
            close=Decimal("100"),
        )
        assert candle.is_bearish
        assert candle.upper_wick == Decimal("1")
        assert candle.lower_wick == Decimal("1")

    def test_candle_low_above_high_rejected(self):
        with pytest.raises(ValidationError):
            Candle(
                timestamp=utc_now(),
                open=Decimal("100"),
                high=Decimal("99"),
                low=Decimal("101"),
                close=Decimal("100"),
            )

    def test_candle_is_frozen(self):
        candle = Candle(
            timestamp=utc_now(),
            open=Decimal("1"),
            high=Decimal("1"),
            low=Decimal("1"),
            close=Decimal("1"),
        )
        with pytest.raises(ValidationError):
            candle.close = Decimal("2")


class TestLivePrice:
    """Test LivePrice validation."""

    def test_non_positive_price_rejected(self):
        with pytest.raises(ValidationError):
            LivePrice(symbol="AAPL", price=Decimal("0"))

    def test_empty_symbol_rejected(self):
        with pytest.raises(ValidationError):
            LivePrice(symbol="", price=Decimal("1"))


# =============================================================================
# Account & Order Tests
# =============================================================================

class TestPaperAccount:
    """Test PaperAccount model."""

    def test_apply_realized_returns_new_account(self):
        account = PaperAccount(balance=Decimal("10000"), initial_balance=Decimal("10000"))

        updated = account.apply_realized(Decimal("250"))

        assert updated.balance == Decimal("10250")
        assert updated.realized_pnl == Decimal("250")
        assert account.balance == Decimal("10000")
        assert updated.id == account.id

    def test_total_return_percent(self):
        account = PaperAccount(balance=Decimal("11000"), initial_balance=Decimal("10000"))
        assert account.total_return_percent == Decimal("10")

    def test_equity_adds_unrealized(self):
        account = PaperAccount(balance=Decimal("10000"), initial_balance=Decimal("10000"))
        assert account.equity(Decimal("-150")) == Decimal("9850")


class TestPaperOrder:
    """Test PaperOrder model."""

    def test_create_market_order_factory(self):
        order = create_market_order("AAPL", OrderSide.BUY, Decimal("2"))

        assert order.is_market
        assert order.is_buy
        assert order.is_pending
        assert order.limit_price is None

    def test_create_limit_order_factory(self):
        order = create_limit_order("AAPL", OrderSide.SELL, Decimal("1"), Decimal("150"))

        assert order.is_limit
        assert order.is_sell
        assert order.value == Decimal("150")

    def test_limit_order_requires_price(self):
        with pytest.raises(ValidationError):
            PaperOrder(
                symbol="AAPL",
                side=OrderSide.BUY,
                order_type=OrderType.LIMIT,
                quantity=Decimal("1"),
                limit_price=None,
            )

    def test_mark_filled(self):
        order = create_market_order("AAPL", OrderSide.BUY, Decimal("2"))

        filled = order.mark_filled(Decimal("150"))

        assert filled.is_filled
        assert filled.filled_price == Decimal("150")
        assert filled.filled_at is not None
        assert filled.value == Decimal("300")
        assert order.is_pending


# =============================================================================
# Position Tests
# =============================================================================

class TestPaperPosition:
    """Test PaperPosition model."""

    def _long(self, **kwargs):
        return PaperPosition(
            symbol="AAPL",
            side=OrderSide.BUY,
            quantity=Decimal("10"),
            entry_price=Decimal("100"),
            **kwargs
        )

    def _short(self, **kwargs):
        return PaperPosition(
            symbol="AAPL",
            side=OrderSide.SELL,
            quantity=Decimal("10"),
            entry_price=Decimal("100"),
            **kwargs
        )

    def test_unrealized_pnl_long_and_short(self):
        assert self._long().unrealized_pnl(Decimal("105")) == Decimal("50")
        assert self._short().unrealized_pnl(Decimal("105")) == Decimal("-50")

    def test_unrealized_pnl_symmetry(self):
        """Long and short of equal size have opposite PnL at any price."""
        long_pos, short_pos = self._long(), self._short()
        for price in ("80", "99.5", "100", "131.25"):
            p = Decimal(price)
            assert long_pos.unrealized_pnl(p) == -short_pos.unrealized_pnl(p)

    def test_unrealized_pnl_percent(self):
        assert self._long().unrealized_pnl_percent(Decimal("110")) == Decimal("10")

    def test_long_triggers(self):
        position = self._long(stop_loss=Decimal("90"), take_profit=Decimal("110"))

        assert position.should_trigger_stop_loss(Decimal("90"))
        assert position.should_trigger_stop_loss(Decimal("89"))
        assert not position.should_trigger_stop_loss(Decimal("91"))
        assert position.should_trigger_take_profit(Decimal("110"))
        assert not position.should_trigger_take_profit(Decimal("109.99"))

    def test_short_triggers(self):
        position = self._short(stop_loss=Decimal("110"), take_profit=Decimal("90"))

        assert position.should_trigger_stop_loss(Decimal("111"))
        assert not position.should_trigger_stop_loss(Decimal("109"))
        assert position.should_trigger_take_profit(Decimal("89"))
        assert not position.should_trigger_take_profit(Decimal("91"))

    def test_no_levels_never_trigger(self):
        position = self._long()
        assert not position.should_trigger_stop_loss(Decimal("1"))
        assert not position.should_trigger_take_profit(Decimal("1000"))

    def test_close_sets_exit_fields(self):
        closed = self._long().close(Decimal("95"), CloseReason.STOP_LOSS)

        assert closed.is_closed
        assert not closed.is_open
        assert closed.exit_price == Decimal("95")
        assert closed.realized_pnl == Decimal("-50")
        assert closed.close_reason == CloseReason.STOP_LOSS

    def test_close_twice_raises(self):
        closed = self._long().close(Decimal("95"))
        with pytest.raises(ValueError):
            closed.close(Decimal("96"))

    def test_invalid_quantity_rejected(self):
        with pytest.raises(ValidationError):
            PaperPosition(
                symbol="AAPL",
                side=OrderSide.BUY,
                quantity=Decimal("0"),
                entry_price=Decimal("100"),
            )


# =============================================================================
# Trade Tests
# =============================================================================

class TestTrade:
    """Test Trade model."""

    def test_from_position(self):
        position = PaperPosition(
            symbol="AAPL",
            side=OrderSide.SELL,
            quantity=Decimal("2"),
            entry_price=Decimal("200"),
            stop_loss=Decimal("210"),
            take_profit=Decimal("180"),
            linked_tool_id="tool-1",
        )
        closed = position.close(
            Decimal("180"),
            CloseReason.TAKE_PROFIT,
            closed_at=position.opened_at + timedelta(hours=2),
        )

        trade = Trade.from_position(closed)

        assert trade.position_id == position.id
        assert trade.realized_pnl == Decimal("40")
        assert trade.realized_pnl_pct == Decimal("10")
        assert trade.outcome == TradeOutcome.WIN
        assert trade.duration == 7200
        assert trade.close_reason == CloseReason.TAKE_PROFIT
        assert trade.linked_tool_id == "tool-1"
        assert trade.tags == ["paper-trade"]

    def test_from_open_position_raises(self):
        position = PaperPosition(
            symbol="AAPL",
            side=OrderSide.BUY,
            quantity=Decimal("1"),
            entry_price=Decimal("100"),
        )
        with pytest.raises(ValueError):
            Trade.from_position(position)

    def test_breakeven_outcome(self):
        now = utc_now()
        trade = Trade(
            position_id="p",
            symbol="AAPL",
            side=OrderSide.BUY,
            quantity=Decimal("1"),
            entry_price=Decimal("100"),
            exit_price=Decimal("100"),
            entry_time=now,
            exit_time=now,
            realized_pnl=Decimal("0"),
        )
        assert trade.outcome == TradeOutcome.BREAKEVEN


# =============================================================================
# Engine State Tests
# =============================================================================

class TestTradeCheck:
    """Test TradeCheck results."""

    def test_approved(self):
        check = TradeCheck.approved()
        assert check.passed
        assert not check.is_rejected

    def test_rejected(self):
        check = TradeCheck.rejected("nope")
        assert check.is_rejected
        assert check.reason == "nope"


class TestEngineSnapshot:
    """Test EngineSnapshot aggregates."""

    def test_unrealized_skips_unpriced_symbols(self):
        account = PaperAccount(balance=Decimal("1000"), initial_balance=Decimal("1000"))
        priced = PaperPosition(
            symbol="AAPL", side=OrderSide.BUY, quantity=Decimal("1"), entry_price=Decimal("100")
        )
        unpriced = PaperPosition(
            symbol="MSFT", side=OrderSide.BUY, quantity=Decimal("1"), entry_price=Decimal("300")
        )

        snapshot = EngineSnapshot(
            account=account,
            open_positions=(priced, unpriced),
            prices={"AAPL": Decimal("110")},
        )

        assert snapshot.unrealized_pnl == Decimal("10")
        assert snapshot.equity == Decimal("1010")
