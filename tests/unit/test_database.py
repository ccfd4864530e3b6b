"""Unit tests for database operations."""
from datetime import timedelta
from decimal import Decimal

import pytest

from tradejournal.core.models import (
    CloseReason,
    OrderSide,
    OrderStatus,
    PaperAccount,
    PaperPosition,
    Trade,
    create_market_order,
    utc_now,
)
from tradejournal.drawing.models import (
    ChartPoint,
    HorizontalLineDrawing,
    PositionToolDrawing,
    PositionToolStatus,
    TrendLineDrawing,
)
from tradejournal.storage.database import Database


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sample_position():
    """Create an open long position."""
    return PaperPosition(
        symbol="AAPL",
        side=OrderSide.BUY,
        quantity=Decimal("2"),
        entry_price=Decimal("150"),
        stop_loss=Decimal("145"),
        take_profit=Decimal("160"),
        linked_tool_id="tool-1",
    )


@pytest.fixture
def sample_tool():
    """Create a draft long position tool."""
    return PositionToolDrawing.create_long(
        "AAPL", ChartPoint(timestamp=utc_now(), price=Decimal("150"))
    )


def make_trade(symbol: str, pnl: str, hours_ago: int) -> Trade:
    exit_time = utc_now() - timedelta(hours=hours_ago)
    return Trade(
        position_id=f"pos-{symbol}-{hours_ago}",
        symbol=symbol,
        side=OrderSide.BUY,
        quantity=Decimal("1"),
        entry_price=Decimal("100"),
        exit_price=Decimal("100") + Decimal(pnl),
        entry_time=exit_time - timedelta(hours=1),
        exit_time=exit_time,
        realized_pnl=Decimal(pnl),
        close_reason=CloseReason.TAKE_PROFIT,
        tags=["paper-trade"],
    )


# =============================================================================
# Database Tests
# =============================================================================

class TestDatabaseInitialization:
    """Test database setup."""

    @pytest.mark.asyncio
    async def test_plain_sqlite_url_is_converted(self, tmp_path):
        db = Database(f"sqlite:///{tmp_path}/nested/journal.db")
        await db.initialize()

        assert db.url.startswith("sqlite+aiosqlite:///")
        assert (tmp_path / "nested").is_dir()
        await db.close()


class TestAccountOperations:
    """Test account persistence."""

    @pytest.mark.asyncio
    async def test_save_and_get_account(self, test_database):
        account = PaperAccount(
            balance=Decimal("10250"),
            initial_balance=Decimal("10000"),
            realized_pnl=Decimal("250"),
        )

        await test_database.save_account(account, "alice")
        loaded = await test_database.get_account("alice")

        assert loaded.id == account.id
        assert loaded.balance == Decimal("10250")
        assert loaded.realized_pnl == Decimal("250")
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_account_is_per_user(self, test_database):
        await test_database.save_account(
            PaperAccount(balance=Decimal("1"), initial_balance=Decimal("1")), "alice"
        )
        assert await test_database.get_account("bob") is None

    @pytest.mark.asyncio
    async def test_save_account_replaces(self, test_database):
        account = PaperAccount(balance=Decimal("100"), initial_balance=Decimal("100"))
        await test_database.save_account(account)
        await test_database.save_account(account.apply_realized(Decimal("-25")))

        loaded = await test_database.get_account()
        assert loaded.balance == Decimal("75")


class TestOrderOperations:
    """Test order persistence."""

    @pytest.mark.asyncio
    async def test_save_and_filter_orders(self, test_database):
        filled = create_market_order("AAPL", OrderSide.BUY, Decimal("1")).mark_filled(Decimal("150"))
        pending = create_market_order("MSFT", OrderSide.SELL, Decimal("2"))

        await test_database.save_orders([filled, pending])

        orders = await test_database.get_orders()
        assert {o.id for o in orders} == {filled.id, pending.id}

        only_filled = await test_database.get_orders(status=OrderStatus.FILLED)
        assert [o.id for o in only_filled] == [filled.id]
        assert only_filled[0].filled_price == Decimal("150")

        msft = await test_database.get_orders(symbol="MSFT")
        assert [o.side for o in msft] == [OrderSide.SELL]

    @pytest.mark.asyncio
    async def test_update_order_status(self, test_database):
        order = create_market_order("AAPL", OrderSide.BUY, Decimal("1"))
        await test_database.save_order(order)
        await test_database.save_order(order.mark_filled(Decimal("151")))

        orders = await test_database.get_orders()
        assert len(orders) == 1
        assert orders[0].is_filled


class TestPositionOperations:
    """Test position persistence."""

    @pytest.mark.asyncio
    async def test_save_and_get_position(self, test_database, sample_position):
        await test_database.save_position(sample_position)

        loaded = await test_database.get_position(sample_position.id)

        assert loaded.symbol == "AAPL"
        assert loaded.side == OrderSide.BUY
        assert loaded.stop_loss == Decimal("145")
        assert loaded.linked_tool_id == "tool-1"
        assert loaded.is_open

    @pytest.mark.asyncio
    async def test_closed_position_update(self, test_database, sample_position):
        await test_database.save_position(sample_position)
        await test_database.save_position(
            sample_position.close(Decimal("160"), CloseReason.TAKE_PROFIT)
        )

        assert await test_database.get_open_positions() == []
        loaded = await test_database.get_position(sample_position.id)
        assert loaded.is_closed
        assert loaded.realized_pnl == Decimal("20")
        assert loaded.close_reason == CloseReason.TAKE_PROFIT

    @pytest.mark.asyncio
    async def test_get_missing_position(self, test_database):
        assert await test_database.get_position("missing") is None

    @pytest.mark.asyncio
    async def test_fractional_values_reload_exactly(self, test_database):
        position = PaperPosition(
            symbol="EURUSD",
            side=OrderSide.BUY,
            quantity=Decimal("0.3"),
            entry_price=Decimal("1.1"),
            stop_loss=Decimal("1.07"),
        )
        await test_database.save_position(position)

        loaded = await test_database.get_position(position.id)

        assert loaded.entry_price == Decimal("1.1")
        assert loaded.quantity == Decimal("0.3")
        assert loaded.stop_loss == Decimal("1.07")
        assert loaded.close(Decimal("1.2")).realized_pnl == Decimal("0.03")

    @pytest.mark.asyncio
    async def test_fractional_balance_reloads_exactly(self, test_database):
        account = PaperAccount(
            balance=Decimal("10000.1"),
            initial_balance=Decimal("10000"),
            realized_pnl=Decimal("0.1"),
        )
        await test_database.save_account(account)

        loaded = await test_database.get_account()

        assert loaded.balance == Decimal("10000.1")
        assert loaded.realized_pnl == Decimal("0.1")


class TestDrawingOperations:
    """Test drawing persistence."""

    @pytest.mark.asyncio
    async def test_drawings_round_trip_by_kind(self, test_database, sample_tool):
        line = HorizontalLineDrawing(price=Decimal("155"), label="resistance")
        trend = TrendLineDrawing(
            start_point=sample_tool.entry_point,
            end_point=ChartPoint(
                timestamp=sample_tool.end_time, price=Decimal("170")
            ),
        )

        await test_database.save_drawing(sample_tool)
        await test_database.save_drawing(line)
        await test_database.save_drawing(trend)

        drawings = await test_database.get_drawings()

        assert [d.kind for d in drawings] == ["position_tool", "horizontal_line", "trend_line"]
        assert drawings[0] == sample_tool
        assert drawings[1].label == "resistance"

    @pytest.mark.asyncio
    async def test_position_tools_by_status(self, test_database, sample_tool):
        await test_database.save_drawing(sample_tool)
        await test_database.save_drawing(HorizontalLineDrawing(price=Decimal("1")))

        drafts = await test_database.get_position_tools(status=PositionToolStatus.DRAFT)
        assert [t.id for t in drafts] == [sample_tool.id]

        await test_database.save_drawing(sample_tool.activate("pos-1"))

        assert await test_database.get_position_tools(status=PositionToolStatus.DRAFT) == []
        active = await test_database.get_position_tools(status=PositionToolStatus.ACTIVE)
        assert active[0].linked_position_id == "pos-1"

    @pytest.mark.asyncio
    async def test_delete_drawing(self, test_database, sample_tool):
        await test_database.save_drawing(sample_tool)

        assert await test_database.delete_drawing(sample_tool.id)
        assert not await test_database.delete_drawing(sample_tool.id)
        assert await test_database.get_drawings() == []


class TestTradeOperations:
    """Test journal trade persistence."""

    @pytest.mark.asyncio
    async def test_trades_ordered_by_exit(self, test_database):
        await test_database.save_trade(make_trade("AAPL", "10", 1))
        await test_database.save_trade(make_trade("MSFT", "-5", 3))
        await test_database.save_trade(make_trade("AAPL", "7", 2))

        trades = await test_database.get_trades()

        assert [t.realized_pnl for t in trades] == [Decimal("-5"), Decimal("7"), Decimal("10")]
        assert trades[0].close_reason == CloseReason.TAKE_PROFIT
        assert trades[0].tags == ["paper-trade"]
        assert trades[0].exit_time.tzinfo is not None

    @pytest.mark.asyncio
    async def test_trade_filters(self, test_database):
        await test_database.save_trade(make_trade("AAPL", "10", 1))
        await test_database.save_trade(make_trade("MSFT", "-5", 3))

        assert len(await test_database.get_trades(symbol="AAPL")) == 1
        assert len(await test_database.get_trades(limit=1)) == 1
        assert await test_database.get_trades(user_id="someone-else") == []

    @pytest.mark.asyncio
    async def test_clear_trading_state_keeps_trades(self, test_database, sample_position):
        await test_database.save_position(sample_position)
        await test_database.save_order(create_market_order("AAPL", OrderSide.BUY, Decimal("1")))
        await test_database.save_trade(make_trade("AAPL", "10", 1))

        await test_database.clear_trading_state()

        assert await test_database.get_positions() == []
        assert await test_database.get_orders() == []
        assert len(await test_database.get_trades()) == 1
