"""Paper trading engine - owns the simulated account and its positions."""
import threading
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from tradejournal.core.config import PaperTradingConfig, paper_trading_config
from tradejournal.core.models import (
    CloseReason,
    ClosedPositionResult,
    EngineSnapshot,
    LivePrice,
    OrderSide,
    PaperAccount,
    PaperOrder,
    PaperPosition,
    Trade,
    TradeCheck,
    create_market_order,
    utc_now,
)

logger = structlog.get_logger(__name__)

PositionClosedCallback = Callable[[str, Optional[str]], None]
ToolRemovalCallback = Callable[[str], None]
TradeClosedCallback = Callable[[Trade], None]

MIN_ORDER_QUANTITY = Decimal("0.01")


def _to_decimal(value) -> Optional[Decimal]:
    """Coerce a numeric input to a finite Decimal, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not result.is_finite():
        return None
    return result


class PaperTradingEngine:
    """
    Simulated trading account with immediate market fills.

    Responsibilities:
    - Opens positions at the quoted price (buy/sell or from a position tool)
    - Evaluates stop loss then take profit on every price tick
    - Closes positions exactly once and books realized PnL to the balance
    - Publishes an immutable EngineSnapshot after every mutation

    All mutating operations take a single re-entrant lock. Reads go through
    the latest snapshot and never block. Callbacks run after the lock is
    released, so a callback may call back into the engine.

    Failed operations return False/None and leave state untouched; the
    reason is kept in `error` until clear_error() is called.

    Usage:
        engine = PaperTradingEngine(on_position_closed=handle_close)
        engine.buy("AAPL", Decimal("150"))
        engine.update_price(LivePrice(symbol="AAPL", price=Decimal("147")))
    """

    def __init__(
        self,
        config: Optional[PaperTradingConfig] = None,
        on_position_closed: Optional[PositionClosedCallback] = None,
        on_tool_should_be_removed: Optional[ToolRemovalCallback] = None,
        on_trade_closed: Optional[TradeClosedCallback] = None,
    ):
        self.config = config or paper_trading_config
        self.on_position_closed = on_position_closed
        self.on_tool_should_be_removed = on_tool_should_be_removed
        self.on_trade_closed = on_trade_closed

        self._lock = threading.RLock()

        # State, replaced wholesale on each transition
        initial = self.config.initial_balance
        self._account = PaperAccount(balance=initial, initial_balance=initial)
        self._open: Dict[str, PaperPosition] = {}
        self._closed: List[PaperPosition] = []
        self._orders: List[PaperOrder] = []
        self._prices: Dict[str, Decimal] = {}

        # Order settings
        self._order_quantity = self.config.default_order_quantity
        self._stop_loss_pct = self.config.stop_loss_pct
        self._take_profit_pct = self.config.take_profit_pct

        self._error: Optional[str] = None
        self._version = 0
        self._snapshot = self._build_snapshot()

    # =========================================================================
    # Snapshot & Reads
    # =========================================================================

    def _build_snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            version=self._version,
            account=self._account,
            open_positions=tuple(self._open.values()),
            closed_positions=tuple(self._closed),
            orders=tuple(self._orders),
            prices=dict(self._prices),
        )

    def _publish(self):
        """Publish a new snapshot. Caller holds the lock."""
        self._version += 1
        self._snapshot = self._build_snapshot()

    @property
    def snapshot(self) -> EngineSnapshot:
        """Latest published state."""
        return self._snapshot

    @property
    def account(self) -> PaperAccount:
        return self._snapshot.account

    @property
    def balance(self) -> Decimal:
        return self._snapshot.account.balance

    @property
    def realized_pnl(self) -> Decimal:
        return self._snapshot.account.realized_pnl

    @property
    def open_positions(self) -> List[PaperPosition]:
        return list(self._snapshot.open_positions)

    @property
    def closed_positions(self) -> List[PaperPosition]:
        return list(self._snapshot.closed_positions)

    @property
    def order_history(self) -> List[PaperOrder]:
        return list(self._snapshot.orders)

    @property
    def order_quantity(self) -> Decimal:
        return self._order_quantity

    @property
    def stop_loss_percent(self) -> Optional[Decimal]:
        return self._stop_loss_pct

    @property
    def take_profit_percent(self) -> Optional[Decimal]:
        return self._take_profit_pct

    def get_current_price(self, symbol: str) -> Optional[Decimal]:
        """Last price seen for a symbol."""
        return self._snapshot.prices.get(symbol)

    def get_position_for_symbol(self, symbol: str) -> Optional[PaperPosition]:
        """First open position on a symbol, if any."""
        for position in self._snapshot.open_positions:
            if position.symbol == symbol:
                return position
        return None

    def get_position_by_id(self, position_id: str) -> Optional[PaperPosition]:
        """Open or closed position by ID."""
        snapshot = self._snapshot
        for position in snapshot.open_positions:
            if position.id == position_id:
                return position
        for position in snapshot.closed_positions:
            if position.id == position_id:
                return position
        return None

    def has_position_for(self, symbol: str) -> bool:
        return self.get_position_for_symbol(symbol) is not None

    def unrealized_pnl(self, prices: Optional[Mapping[str, Decimal]] = None) -> Decimal:
        """
        Total unrealized PnL of open positions.

        Args:
            prices: Prices to value at; defaults to the last seen prices.
                Positions without a price are skipped.
        """
        snapshot = self._snapshot
        if prices is None:
            return snapshot.unrealized_pnl

        total = Decimal("0")
        for position in snapshot.open_positions:
            price = prices.get(position.symbol)
            if price is not None:
                total += position.unrealized_pnl(price)
        return total

    def equity(self, prices: Optional[Mapping[str, Decimal]] = None) -> Decimal:
        """Balance plus unrealized PnL."""
        return self.balance + self.unrealized_pnl(prices)

    def get_closed_position_result(self, position_id: str) -> Optional[ClosedPositionResult]:
        """Exit price and PnL of a closed position; None if not closed."""
        for position in self._snapshot.closed_positions:
            if position.id == position_id:
                return ClosedPositionResult(
                    exit_price=position.exit_price,
                    pnl=position.realized_pnl,
                )
        return None

    # =========================================================================
    # Error Channel
    # =========================================================================

    @property
    def has_error(self) -> bool:
        return self._error is not None

    @property
    def error(self) -> Optional[str]:
        return self._error

    def clear_error(self):
        self._error = None

    def _reject(self, operation: str, check: TradeCheck, **context) -> None:
        self._error = check.reason
        logger.warning(
            "engine.rejected",
            operation=operation,
            reason=check.reason,
            **context
        )

    # =========================================================================
    # Validation
    # =========================================================================

    def _check_open(
        self,
        symbol: str,
        price: Optional[Decimal],
        quantity: Optional[Decimal],
    ) -> TradeCheck:
        if not symbol:
            return TradeCheck.rejected("Symbol is required")
        if price is None or price <= 0:
            return TradeCheck.rejected(f"Invalid price for {symbol}: must be positive")
        if quantity is None or quantity <= 0:
            return TradeCheck.rejected(f"Invalid quantity for {symbol}: must be positive")
        if self.config.single_position_per_symbol and any(
            p.symbol == symbol for p in self._open.values()
        ):
            return TradeCheck.rejected(f"Position already open for {symbol}")
        return TradeCheck.approved()

    @staticmethod
    def _check_levels(
        is_long: bool,
        reference: Decimal,
        stop_loss: Optional[Decimal],
        take_profit: Optional[Decimal],
    ) -> TradeCheck:
        """Stop loss and take profit must sit on the correct side of `reference`."""
        if stop_loss is not None:
            if stop_loss <= 0:
                return TradeCheck.rejected("Stop loss must be positive")
            if is_long and stop_loss >= reference:
                return TradeCheck.rejected(
                    f"Stop loss {stop_loss} must be below {reference} for a long"
                )
            if not is_long and stop_loss <= reference:
                return TradeCheck.rejected(
                    f"Stop loss {stop_loss} must be above {reference} for a short"
                )
        if take_profit is not None:
            if take_profit <= 0:
                return TradeCheck.rejected("Take profit must be positive")
            if is_long and take_profit <= reference:
                return TradeCheck.rejected(
                    f"Take profit {take_profit} must be above {reference} for a long"
                )
            if not is_long and take_profit >= reference:
                return TradeCheck.rejected(
                    f"Take profit {take_profit} must be below {reference} for a short"
                )
        return TradeCheck.approved()

    def _default_levels(
        self, side: OrderSide, price: Decimal
    ) -> Tuple[Optional[Decimal], Optional[Decimal]]:
        """SL/TP from the configured percentage offsets."""
        sign = 1 if side == OrderSide.BUY else -1
        stop_loss = take_profit = None
        if self._stop_loss_pct is not None:
            stop_loss = price * (1 - sign * self._stop_loss_pct / 100)
        if self._take_profit_pct is not None:
            take_profit = price * (1 + sign * self._take_profit_pct / 100)
        return stop_loss, take_profit

    # =========================================================================
    # Opening Positions
    # =========================================================================

    def buy(self, symbol: str, price) -> bool:
        """Open a long at `price` with the configured quantity and offsets."""
        return self._open_market(symbol, OrderSide.BUY, price)

    def sell(self, symbol: str, price) -> bool:
        """Open a short at `price` with the configured quantity and offsets."""
        return self._open_market(symbol, OrderSide.SELL, price)

    def _open_market(self, symbol: str, side: OrderSide, price) -> bool:
        price = _to_decimal(price)
        with self._lock:
            check = self._check_open(symbol, price, self._order_quantity)
            if check.is_rejected:
                self._reject(side.value, check, symbol=symbol)
                return False

            stop_loss, take_profit = self._default_levels(side, price)
            self._commit_open(symbol, side, price, self._order_quantity, stop_loss, take_profit)
        return True

    def open_position_from_tool(
        self,
        symbol: str,
        is_long: bool,
        entry_price,
        quantity,
        stop_loss,
        take_profit,
        tool_id: str,
    ) -> Optional[str]:
        """
        Open a position from a position tool's levels.

        Args:
            symbol: Trading symbol
            is_long: Long if True, short otherwise
            entry_price: Fill price
            quantity: Position size
            stop_loss: Stop loss level (required)
            take_profit: Take profit level (required)
            tool_id: Tool to link the position to

        Returns:
            New position ID, or None if validation failed
        """
        price = _to_decimal(entry_price)
        qty = _to_decimal(quantity)
        sl = _to_decimal(stop_loss)
        tp = _to_decimal(take_profit)
        side = OrderSide.BUY if is_long else OrderSide.SELL

        with self._lock:
            check = self._check_open(symbol, price, qty)
            if check.passed and not tool_id:
                check = TradeCheck.rejected("Tool ID is required")
            if check.passed and (sl is None or tp is None):
                check = TradeCheck.rejected("Position tool requires stop loss and take profit")
            if check.passed:
                check = self._check_levels(is_long, price, sl, tp)
            if check.passed and any(p.linked_tool_id == tool_id for p in self._open.values()):
                check = TradeCheck.rejected(f"Tool {tool_id} already has an open position")
            if check.is_rejected:
                self._reject("open_from_tool", check, symbol=symbol, tool_id=tool_id)
                return None

            position = self._commit_open(symbol, side, price, qty, sl, tp, tool_id)
        return position.id

    def _commit_open(
        self,
        symbol: str,
        side: OrderSide,
        price: Decimal,
        quantity: Decimal,
        stop_loss: Optional[Decimal],
        take_profit: Optional[Decimal],
        tool_id: Optional[str] = None,
    ) -> PaperPosition:
        """Fill a market order and open its position. Caller holds the lock."""
        now = utc_now()
        order = create_market_order(symbol, side, quantity).mark_filled(price, now)
        position = PaperPosition(
            symbol=symbol,
            side=side,
            quantity=quantity,
            entry_price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            opened_at=now,
            linked_tool_id=tool_id,
        )

        open_positions = dict(self._open)
        open_positions[position.id] = position
        prices = dict(self._prices)
        prices[symbol] = price

        self._open = open_positions
        self._orders = self._orders + [order]
        self._prices = prices
        self._publish()

        logger.info(
            "engine.position_opened",
            position_id=position.id,
            symbol=symbol,
            side=side.value,
            quantity=str(quantity),
            entry_price=str(price),
            stop_loss=str(stop_loss) if stop_loss is not None else None,
            take_profit=str(take_profit) if take_profit is not None else None,
            tool_id=tool_id,
        )
        return position

    # =========================================================================
    # Closing Positions
    # =========================================================================

    def _commit_close(
        self,
        position: PaperPosition,
        price: Decimal,
        reason: CloseReason,
    ) -> PaperPosition:
        """
        Close one open position. Caller holds the lock and publishes.

        Account, position set and order history are swapped in together.
        """
        closed = position.close(price, reason)
        close_side = OrderSide.SELL if position.is_long else OrderSide.BUY
        order = create_market_order(position.symbol, close_side, position.quantity)
        order = order.mark_filled(price, closed.closed_at)

        open_positions = dict(self._open)
        del open_positions[position.id]

        self._account = self._account.apply_realized(closed.realized_pnl)
        self._open = open_positions
        self._closed = self._closed + [closed]
        self._orders = self._orders + [order]

        logger.info(
            "engine.position_closed",
            position_id=closed.id,
            symbol=closed.symbol,
            reason=reason.value,
            exit_price=str(price),
            realized_pnl=str(closed.realized_pnl),
            balance=str(self._account.balance),
        )
        return closed

    def close_position(self, position_id: str) -> bool:
        """
        Close a position manually at the last known price.

        Closing an already-closed position is a no-op that returns False
        without setting an error.
        """
        with self._lock:
            position = self._open.get(position_id)
            if position is None:
                if any(p.id == position_id for p in self._closed):
                    logger.debug("engine.already_closed", position_id=position_id)
                    return False
                self._reject(
                    "close",
                    TradeCheck.rejected(f"Position {position_id} not found"),
                    position_id=position_id,
                )
                return False

            price = self._prices.get(position.symbol)
            if price is None:
                self._reject(
                    "close",
                    TradeCheck.rejected(f"No price available for {position.symbol}"),
                    position_id=position_id,
                )
                return False

            closed = self._commit_close(position, price, CloseReason.MANUAL)
            self._publish()

        self._notify_closed([closed])
        return True

    def close_all_positions(self) -> int:
        """
        Close every open position that has a known price.

        Returns:
            Number of positions closed
        """
        with self._lock:
            closed = []
            for position in list(self._open.values()):
                price = self._prices.get(position.symbol)
                if price is None:
                    logger.warning(
                        "engine.close_skipped_no_price",
                        position_id=position.id,
                        symbol=position.symbol,
                    )
                    continue
                closed.append(self._commit_close(position, price, CloseReason.MANUAL))
            if closed:
                self._publish()

        self._notify_closed(closed)
        return len(closed)

    # =========================================================================
    # Price Updates
    # =========================================================================

    def update_price(self, tick: LivePrice) -> bool:
        """
        Record a tick and run stop loss / take profit checks.

        Stop loss is checked before take profit. A triggered position is
        closed at the tick price, not at the level.

        Returns:
            True if the tick was accepted, False if it was malformed
        """
        symbol = getattr(tick, "symbol", None)
        price = _to_decimal(getattr(tick, "price", None))
        if not symbol or price is None or price <= 0:
            logger.warning("engine.tick_dropped", symbol=symbol, price=str(getattr(tick, "price", None)))
            return False

        with self._lock:
            closed = self._apply_price(symbol, price)
            self._publish()

        self._notify_closed(closed)
        return True

    def update_prices(self, prices: Mapping[str, object]) -> int:
        """
        Apply a batch of prices in one transition.

        Returns:
            Number of prices accepted
        """
        accepted = 0
        closed: List[PaperPosition] = []
        with self._lock:
            for symbol, raw in prices.items():
                price = _to_decimal(raw)
                if not symbol or price is None or price <= 0:
                    logger.warning("engine.tick_dropped", symbol=symbol, price=str(raw))
                    continue
                closed.extend(self._apply_price(symbol, price))
                accepted += 1
            if accepted:
                self._publish()

        self._notify_closed(closed)
        return accepted

    def _apply_price(self, symbol: str, price: Decimal) -> List[PaperPosition]:
        """Record a price and close triggered positions. Caller holds the lock."""
        prices = dict(self._prices)
        prices[symbol] = price
        self._prices = prices

        closed = []
        for position in list(self._open.values()):
            if position.symbol != symbol:
                continue
            if position.should_trigger_stop_loss(price):
                logger.info(
                    "engine.sl_triggered",
                    position_id=position.id,
                    symbol=symbol,
                    stop_loss=str(position.stop_loss),
                    price=str(price),
                )
                closed.append(self._commit_close(position, price, CloseReason.STOP_LOSS))
            elif position.should_trigger_take_profit(price):
                logger.info(
                    "engine.tp_triggered",
                    position_id=position.id,
                    symbol=symbol,
                    take_profit=str(position.take_profit),
                    price=str(price),
                )
                closed.append(self._commit_close(position, price, CloseReason.TAKE_PROFIT))
        return closed

    # =========================================================================
    # Notifications
    # =========================================================================

    def _notify_closed(self, positions: List[PaperPosition]):
        """Fire close callbacks. Called without the lock held."""
        for position in positions:
            if self.on_trade_closed is not None:
                self._safe_call("on_trade_closed", self.on_trade_closed, Trade.from_position(position))
            if self.on_position_closed is not None:
                self._safe_call(
                    "on_position_closed",
                    self.on_position_closed,
                    position.id,
                    position.linked_tool_id,
                )
            if position.linked_tool_id and self.on_tool_should_be_removed is not None:
                self._safe_call(
                    "on_tool_should_be_removed",
                    self.on_tool_should_be_removed,
                    position.linked_tool_id,
                )

    @staticmethod
    def _safe_call(name: str, callback: Callable, *args):
        try:
            callback(*args)
        except Exception as e:
            logger.error("engine.callback_failed", callback=name, error=str(e))

    # =========================================================================
    # Position Edits
    # =========================================================================

    def update_stop_loss(self, position_id: str, stop_loss) -> bool:
        """Set or clear (None) the stop loss of an open position."""
        return self._update_level(position_id, "stop_loss", stop_loss)

    def update_take_profit(self, position_id: str, take_profit) -> bool:
        """Set or clear (None) the take profit of an open position."""
        return self._update_level(position_id, "take_profit", take_profit)

    def _update_level(self, position_id: str, field: str, raw) -> bool:
        level = _to_decimal(raw)
        with self._lock:
            position = self._open.get(position_id)
            if position is None:
                self._reject(
                    f"update_{field}",
                    TradeCheck.rejected(f"Open position {position_id} not found"),
                    position_id=position_id,
                )
                return False
            if raw is not None and level is None:
                self._reject(
                    f"update_{field}",
                    TradeCheck.rejected(f"Invalid {field.replace('_', ' ')} value"),
                    position_id=position_id,
                )
                return False

            # Validate against the live price so the level cannot fire at once
            reference = self._prices.get(position.symbol, position.entry_price)
            if field == "stop_loss":
                check = self._check_levels(position.is_long, reference, level, None)
            else:
                check = self._check_levels(position.is_long, reference, None, level)
            if check.is_rejected:
                self._reject(f"update_{field}", check, position_id=position_id)
                return False

            open_positions = dict(self._open)
            open_positions[position_id] = position.model_copy(update={field: level})
            self._open = open_positions
            self._publish()

        logger.info(
            f"engine.{field}_updated",
            position_id=position_id,
            level=str(level) if level is not None else None,
        )
        return True

    # =========================================================================
    # Order Settings
    # =========================================================================

    def set_order_quantity(self, quantity) -> bool:
        """Set the quantity used by buy()/sell(), clamped to the minimum."""
        qty = _to_decimal(quantity)
        if qty is None:
            self._reject("set_order_quantity", TradeCheck.rejected("Invalid order quantity"))
            return False
        with self._lock:
            self._order_quantity = max(qty, MIN_ORDER_QUANTITY)
        return True

    def set_stop_loss_percent(self, percent) -> bool:
        """Set or clear (None) the default stop loss offset."""
        return self._set_offset("_stop_loss_pct", percent)

    def set_take_profit_percent(self, percent) -> bool:
        """Set or clear (None) the default take profit offset."""
        return self._set_offset("_take_profit_pct", percent)

    def _set_offset(self, attr: str, raw) -> bool:
        if raw is None:
            with self._lock:
                setattr(self, attr, None)
            return True
        pct = _to_decimal(raw)
        if pct is None or pct <= 0 or pct >= 100:
            self._reject(
                attr.strip("_"),
                TradeCheck.rejected("Percentage must be between 0 and 100"),
            )
            return False
        with self._lock:
            setattr(self, attr, pct)
        return True

    # =========================================================================
    # Account Management
    # =========================================================================

    def reset_account(self, new_balance=None) -> bool:
        """
        Discard all positions, orders and prices and start a new account.

        Args:
            new_balance: Starting balance; defaults to the configured one
        """
        balance = self.config.initial_balance if new_balance is None else _to_decimal(new_balance)
        if balance is None or balance <= 0:
            self._reject("reset", TradeCheck.rejected("Reset balance must be positive"))
            return False

        with self._lock:
            self._account = PaperAccount(balance=balance, initial_balance=balance)
            self._open = {}
            self._closed = []
            self._orders = []
            self._prices = {}
            self._publish()

        logger.info("engine.account_reset", balance=str(balance))
        return True

    def deposit(self, amount) -> bool:
        """Add cash to the account."""
        value = _to_decimal(amount)
        if value is None or value <= 0:
            self._reject("deposit", TradeCheck.rejected("Deposit amount must be positive"))
            return False
        with self._lock:
            self._account = self._account.model_copy(
                update={"balance": self._account.balance + value}
            )
            self._publish()
        logger.info("engine.deposit", amount=str(value), balance=str(self.balance))
        return True

    def withdraw(self, amount) -> bool:
        """Remove cash from the account; fails if it exceeds the balance."""
        value = _to_decimal(amount)
        if value is None or value <= 0:
            self._reject("withdraw", TradeCheck.rejected("Withdrawal amount must be positive"))
            return False
        with self._lock:
            if value > self._account.balance:
                self._reject(
                    "withdraw",
                    TradeCheck.rejected(
                        f"Insufficient balance: {self._account.balance} < {value}"
                    ),
                )
                return False
            self._account = self._account.model_copy(
                update={"balance": self._account.balance - value}
            )
            self._publish()
        logger.info("engine.withdraw", amount=str(value), balance=str(self.balance))
        return True

    # =========================================================================
    # Restore
    # =========================================================================

    def restore_account(self, account: PaperAccount):
        """Replace the account with a persisted one."""
        with self._lock:
            self._account = account
            self._publish()

    def restore_positions(self, positions: List[PaperPosition]):
        """Replace all positions with persisted ones, split by open/closed."""
        with self._lock:
            self._open = {p.id: p for p in positions if p.is_open}
            self._closed = [p for p in positions if p.is_closed]
            self._publish()
        logger.info(
            "engine.positions_restored",
            open=len(self._open),
            closed=len(self._closed),
        )

    def restore_orders(self, orders: List[PaperOrder]):
        """Replace the order history with persisted orders."""
        with self._lock:
            self._orders = list(orders)
            self._publish()

    # =========================================================================
    # Risk Calculations
    # =========================================================================

    @staticmethod
    def calculate_position_size(
        balance: Decimal,
        risk_percent: Decimal,
        entry_price: Decimal,
        stop_loss_price: Decimal,
    ) -> Decimal:
        """
        Position size that risks `risk_percent` of `balance` at the stop.

        Args:
            balance: Account balance
            risk_percent: Risk per trade (1 = 1%)
            entry_price: Entry price
            stop_loss_price: Stop loss price

        Returns:
            Quantity, or 0 when entry equals the stop
        """
        risk_amount = Decimal(str(balance)) * Decimal(str(risk_percent)) / 100
        distance = abs(Decimal(str(entry_price)) - Decimal(str(stop_loss_price)))
        if distance == 0:
            return Decimal("0")
        return risk_amount / distance
