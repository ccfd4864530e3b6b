"""Paper trading service - wires the engine, drawings and persistence."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Set

import structlog

from tradejournal.core.engine import PaperTradingEngine
from tradejournal.core.models import LivePrice, Trade
from tradejournal.drawing.models import (
    ChartPoint,
    Drawing,
    PositionToolDrawing,
    PositionToolStatus,
)
from tradejournal.drawing.store import DrawingStore
from tradejournal.services import analytics
from tradejournal.storage.database import DEFAULT_USER, Database

logger = structlog.get_logger(__name__)


class PaperTradingService:
    """
    Async facade over the paper trading engine.

    The engine stays synchronous and free of I/O. This service forwards
    commands to it, turns its close notifications into position tool
    transitions and journal trades, and persists the results after each
    engine call returns.

    Usage:
        service = PaperTradingService(Database("sqlite:///journal.db"))
        await service.initialize()
        tool = await service.create_position_tool("AAPL", point, is_long=True)
        await service.activate_position_tool(tool.id)
        await service.update_price(LivePrice(symbol="AAPL", price=Decimal("151")))
    """

    def __init__(
        self,
        database: Database,
        engine: Optional[PaperTradingEngine] = None,
        drawings: Optional[DrawingStore] = None,
        user_id: str = DEFAULT_USER,
    ):
        self.database = database
        self.engine = engine or PaperTradingEngine()
        self.drawings = drawings or DrawingStore()
        self.user_id = user_id

        # Callbacks already on the engine still fire, after the service handles the event
        self._next_position_closed = self.engine.on_position_closed
        self._next_tool_should_be_removed = self.engine.on_tool_should_be_removed
        self._next_trade_closed = self.engine.on_trade_closed

        self.engine.on_position_closed = self._on_position_closed
        self.engine.on_tool_should_be_removed = self._on_tool_should_be_removed
        self.engine.on_trade_closed = self._on_trade_closed

        # Work produced by engine callbacks, flushed to the database
        self._closed_position_ids: List[str] = []
        self._pending_trades: List[Trade] = []
        self._dirty_tool_ids: Set[str] = set()
        self._saved_order_ids: Set[str] = set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self, user_id: Optional[str] = None):
        """
        Create tables and load the user's persisted state.

        A user without a saved account gets the engine's fresh account.
        Active tools whose position closed while offline are marked closed.
        """
        if user_id:
            self.user_id = user_id
        await self.database.initialize()

        account = await self.database.get_account(self.user_id)
        if account is None:
            await self.database.save_account(self.engine.account, self.user_id)
        else:
            self.engine.restore_account(account)

        positions = await self.database.get_positions(self.user_id)
        self.engine.restore_positions(positions)

        orders = await self.database.get_orders(self.user_id)
        self.engine.restore_orders(orders)
        self._saved_order_ids = {o.id for o in orders}

        drawings = await self.database.get_drawings(self.user_id)
        self.drawings.load(drawings)

        for tool in self.drawings.position_tools(status=PositionToolStatus.ACTIVE):
            self._sync_tool_with_position(tool)
        await self._flush()

        logger.info(
            "service.initialized",
            user_id=self.user_id,
            balance=str(self.engine.balance),
            open_positions=len(self.engine.open_positions),
            drawings=len(self.drawings),
        )

    async def close(self):
        await self.database.close()

    # =========================================================================
    # Engine Callbacks (synchronous, lock released)
    # =========================================================================

    def _on_trade_closed(self, trade: Trade):
        self._pending_trades.append(trade)
        if self._next_trade_closed:
            self._next_trade_closed(trade)

    def _on_position_closed(self, position_id: str, linked_tool_id: Optional[str]):
        self._closed_position_ids.append(position_id)
        logger.info(
            "service.position_closed",
            position_id=position_id,
            tool_id=linked_tool_id,
        )
        if self._next_position_closed:
            self._next_position_closed(position_id, linked_tool_id)

    def _on_tool_should_be_removed(self, tool_id: str):
        tool = self.drawings.get(tool_id)
        if isinstance(tool, PositionToolDrawing):
            self._sync_tool_with_position(tool)
        else:
            logger.warning("service.linked_tool_missing", tool_id=tool_id)
        if self._next_tool_should_be_removed:
            self._next_tool_should_be_removed(tool_id)

    def _sync_tool_with_position(self, tool: PositionToolDrawing):
        """Move an active tool to closed if its linked position has closed."""
        if not tool.is_active or tool.linked_position_id is None:
            return
        result = self.engine.get_closed_position_result(tool.linked_position_id)
        if result is None:
            if self.engine.get_position_by_id(tool.linked_position_id) is None:
                logger.warning(
                    "service.linked_position_missing",
                    tool_id=tool.id,
                    position_id=tool.linked_position_id,
                )
            return

        closed = tool.mark_closed(result.exit_price, result.pnl)
        self.drawings.update(closed)
        self._dirty_tool_ids.add(closed.id)
        logger.info(
            "service.tool_closed",
            tool_id=closed.id,
            exit_price=str(result.exit_price),
            realized_pnl=str(result.pnl),
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _flush(self, save_open: bool = False):
        """Persist everything the last engine call changed."""
        snapshot = self.engine.snapshot

        positions = []
        if save_open:
            positions.extend(snapshot.open_positions)
        closed_ids = set(self._closed_position_ids)
        positions.extend(p for p in snapshot.closed_positions if p.id in closed_ids)
        if positions:
            await self.database.save_positions(positions, self.user_id)

        new_orders = [o for o in snapshot.orders if o.id not in self._saved_order_ids]
        if new_orders:
            await self.database.save_orders(new_orders, self.user_id)
            self._saved_order_ids.update(o.id for o in new_orders)

        for trade in self._pending_trades:
            await self.database.save_trade(trade, self.user_id)

        for tool_id in self._dirty_tool_ids:
            tool = self.drawings.get(tool_id)
            if tool is not None:
                await self.database.save_drawing(tool, self.user_id)

        if positions or self._pending_trades:
            await self.database.save_account(snapshot.account, self.user_id)

        self._closed_position_ids = []
        self._pending_trades = []
        self._dirty_tool_ids = set()

    # =========================================================================
    # Trading
    # =========================================================================

    async def buy(self, symbol: str, price) -> bool:
        """Open a long at `price`."""
        ok = self.engine.buy(symbol, price)
        if ok:
            await self._flush(save_open=True)
        return ok

    async def sell(self, symbol: str, price) -> bool:
        """Open a short at `price`."""
        ok = self.engine.sell(symbol, price)
        if ok:
            await self._flush(save_open=True)
        return ok

    async def close_position(self, position_id: str) -> bool:
        ok = self.engine.close_position(position_id)
        if ok:
            await self._flush()
        return ok

    async def close_all_positions(self) -> int:
        count = self.engine.close_all_positions()
        if count:
            await self._flush()
        return count

    async def update_price(self, tick: LivePrice) -> bool:
        """Feed a tick to the engine and persist any triggered closes."""
        accepted = self.engine.update_price(tick)
        if self._closed_position_ids:
            await self._flush()
        return accepted

    async def update_stop_loss(self, position_id: str, stop_loss) -> bool:
        ok = self.engine.update_stop_loss(position_id, stop_loss)
        if ok:
            await self._flush(save_open=True)
        return ok

    async def update_take_profit(self, position_id: str, take_profit) -> bool:
        ok = self.engine.update_take_profit(position_id, take_profit)
        if ok:
            await self._flush(save_open=True)
        return ok

    async def reset_account(self, new_balance=None) -> bool:
        """
        Reset the engine and drop persisted positions and orders.

        Active tools lose their positions and are deleted. Draft and closed
        tools and the trade journal are kept.
        """
        if not self.engine.reset_account(new_balance):
            return False

        for tool in self.drawings.position_tools(status=PositionToolStatus.ACTIVE):
            self.drawings.delete(tool.id)
            await self.database.delete_drawing(tool.id)

        await self.database.clear_trading_state(self.user_id)
        await self.database.save_account(self.engine.account, self.user_id)
        self._saved_order_ids = set()
        self._closed_position_ids = []
        self._pending_trades = []
        logger.info("service.account_reset", balance=str(self.engine.balance))
        return True

    # =========================================================================
    # Drawings & Position Tools
    # =========================================================================

    async def add_drawing(self, drawing: Drawing) -> Drawing:
        self.drawings.add(drawing)
        await self.database.save_drawing(drawing, self.user_id)
        return drawing

    async def delete_drawing(self, drawing_id: str) -> bool:
        """Delete any drawing. A linked position stays open."""
        if not self.drawings.delete(drawing_id):
            return False
        await self.database.delete_drawing(drawing_id)
        return True

    async def create_position_tool(
        self,
        symbol: str,
        entry_point: ChartPoint,
        is_long: bool = True,
        sl_percent: Optional[Decimal] = None,
        tp_percent: Optional[Decimal] = None,
        quantity: Optional[Decimal] = None,
    ) -> PositionToolDrawing:
        """Create a draft tool from percentage offsets and store it."""
        factory = PositionToolDrawing.create_long if is_long else PositionToolDrawing.create_short
        tool = factory(symbol, entry_point, sl_percent, tp_percent, quantity)
        await self.add_drawing(tool)
        logger.info(
            "service.tool_created",
            tool_id=tool.id,
            symbol=symbol,
            is_long=is_long,
            entry=str(tool.entry_price),
            stop_loss=str(tool.stop_loss_price),
            take_profit=str(tool.take_profit_price),
        )
        return tool

    async def update_position_tool(
        self,
        tool_id: str,
        entry_price: Optional[Decimal] = None,
        stop_loss_price: Optional[Decimal] = None,
        take_profit_price: Optional[Decimal] = None,
        entry_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        quantity: Optional[Decimal] = None,
    ) -> PositionToolDrawing:
        """
        Edit a draft tool.

        Raises:
            ValueError: If the tool does not exist or is not a draft
        """
        tool = self._get_tool(tool_id)
        edited = tool.with_levels(
            entry_price=entry_price,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            entry_time=entry_time,
            end_time=end_time,
            quantity=quantity,
        )
        self.drawings.update(edited)
        await self.database.save_drawing(edited, self.user_id)
        return edited

    async def activate_position_tool(self, tool_id: str) -> Optional[str]:
        """
        Open a paper position from a draft tool and link the two.

        Returns:
            The new position ID, or None if the engine rejected the order
            (the reason is on engine.error)

        Raises:
            ValueError: If the tool does not exist, is not a draft, or has
                invalid levels
        """
        tool = self._get_tool(tool_id)
        if not tool.is_draft:
            raise ValueError(f"Tool {tool_id} is {tool.status.value}, not draft")
        if not tool.is_valid:
            raise ValueError(f"Tool {tool_id} has invalid stop loss / take profit levels")

        position_id = self.engine.open_position_from_tool(
            symbol=tool.symbol,
            is_long=tool.is_long,
            entry_price=tool.entry_price,
            quantity=tool.quantity,
            stop_loss=tool.stop_loss_price,
            take_profit=tool.take_profit_price,
            tool_id=tool.id,
        )
        if position_id is None:
            logger.warning(
                "service.tool_activation_rejected",
                tool_id=tool_id,
                reason=self.engine.error,
            )
            return None

        active = tool.activate(position_id)
        self.drawings.update(active)
        self._dirty_tool_ids.add(active.id)
        # A tick may have closed the position before the tool was linked
        self._sync_tool_with_position(active)
        await self._flush(save_open=True)

        logger.info("service.tool_activated", tool_id=tool_id, position_id=position_id)
        return position_id

    async def delete_position_tool(self, tool_id: str) -> bool:
        """Delete a tool in any state without touching its position."""
        return await self.delete_drawing(tool_id)

    def _get_tool(self, tool_id: str) -> PositionToolDrawing:
        tool = self.drawings.get(tool_id)
        if not isinstance(tool, PositionToolDrawing):
            raise ValueError(f"Position tool {tool_id} not found")
        return tool

    # =========================================================================
    # Journal
    # =========================================================================

    async def get_trades(self, symbol: Optional[str] = None) -> List[Trade]:
        return await self.database.get_trades(self.user_id, symbol=symbol)

    async def get_statistics(self) -> analytics.TradeStatistics:
        """Journal statistics from the account's starting balance."""
        trades = await self.get_trades()
        return analytics.summarize(trades, self.engine.account.initial_balance)
