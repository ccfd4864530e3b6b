"""Data models for the trade journal engine.

This module defines the value types shared by the paper trading engine,
the indicator engine and the drawing layer:
- Market data: Candle, LivePrice
- Paper trading: PaperAccount, PaperOrder, PaperPosition
- Journal: Trade (one record per closed position)
- Engine state: EngineSnapshot, TradeCheck

All monetary values use Decimal for precision.
All timestamps are timezone-aware UTC datetime objects.
Models are frozen; state changes return a new value via model_copy().
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid4())


# =============================================================================
# Enums
# =============================================================================

class OrderSide(str, Enum):
    """Order side - buy opens a long, sell opens a short."""
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type enumeration."""
    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    """Order lifecycle status."""
    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class CloseReason(str, Enum):
    """Why a position was closed."""
    MANUAL = "manual"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class TradeOutcome(str, Enum):
    """Result of a closed journal trade."""
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


# =============================================================================
# Market Data Models
# =============================================================================

class Candle(BaseModel):
    """OHLCV candlestick for one period.

    Created by parsing external market-data responses and never mutated.

    Attributes:
        timestamp: Period open time (UTC)
        open: Opening price
        high: Highest price
        low: Lowest price
        close: Closing price
        volume: Traded volume
    """
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="Period open time (UTC)")
    open: Decimal = Field(..., description="Opening price")
    high: Decimal = Field(..., description="Highest price")
    low: Decimal = Field(..., description="Lowest price")
    close: Decimal = Field(..., description="Closing price")
    volume: Decimal = Field(default=Decimal("0"), ge=0, description="Volume")

    @field_validator("low")
    @classmethod
    def low_lte_high(cls, v: Decimal, info) -> Decimal:
        """Validate low is <= high."""
        high = info.data.get("high")
        if high is not None and v > high:
            raise ValueError("Low must be <= high")
        return v

    @property
    def is_bullish(self) -> bool:
        """True if close >= open."""
        return self.close >= self.open

    @property
    def is_bearish(self) -> bool:
        """True if close < open."""
        return self.close < self.open

    @property
    def body_size(self) -> Decimal:
        """Absolute distance between open and close."""
        return abs(self.close - self.open)

    @property
    def range(self) -> Decimal:
        """Full candle range (high - low)."""
        return self.high - self.low

    @property
    def upper_wick(self) -> Decimal:
        """Shadow above the body."""
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> Decimal:
        """Shadow below the body."""
        return min(self.open, self.close) - self.low


class LivePrice(BaseModel):
    """One streamed price observation for a symbol."""
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., min_length=1, description="Trading symbol")
    price: Decimal = Field(..., gt=0, description="Last traded price")
    timestamp: datetime = Field(default_factory=utc_now, description="Tick time")
    volume: Optional[Decimal] = Field(default=None, description="Trade volume")
    change: Optional[Decimal] = Field(default=None, description="Change from previous")
    change_percent: Optional[Decimal] = Field(default=None, description="Percent change")


# =============================================================================
# Paper Trading Models
# =============================================================================

class PaperAccount(BaseModel):
    """Simulated cash account.

    Attributes:
        id: Account ID
        balance: Cash after all realized fills
        initial_balance: Balance the account was opened with
        realized_pnl: Cumulative realized profit/loss
        created_at: Creation timestamp
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id, description="Account ID")
    balance: Decimal = Field(..., description="Cash balance")
    initial_balance: Decimal = Field(..., ge=0, description="Starting balance")
    realized_pnl: Decimal = Field(default=Decimal("0"), description="Realized PnL")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")

    @property
    def total_return_percent(self) -> Decimal:
        """Return on the initial balance as a percentage."""
        if self.initial_balance == 0:
            return Decimal("0")
        return (self.balance - self.initial_balance) / self.initial_balance * 100

    def equity(self, unrealized_pnl: Decimal) -> Decimal:
        """Balance plus unrealized PnL of open positions."""
        return self.balance + unrealized_pnl

    def apply_realized(self, pnl: Decimal) -> "PaperAccount":
        """Return a copy with a realized fill booked to balance and PnL."""
        return self.model_copy(update={
            "balance": self.balance + pnl,
            "realized_pnl": self.realized_pnl + pnl,
        })


class PaperOrder(BaseModel):
    """A simulated order.

    Only market orders are filled by the engine; the remaining statuses
    exist for persisted history and future order types.
    """
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., min_length=1, description="Trading symbol")
    side: OrderSide = Field(..., description="Order side")
    order_type: OrderType = Field(default=OrderType.MARKET, description="Order type")
    quantity: Decimal = Field(..., gt=0, description="Order quantity")
    limit_price: Optional[Decimal] = Field(default=None, description="Limit price")

    id: str = Field(default_factory=new_id, description="Order ID")
    status: OrderStatus = Field(default=OrderStatus.PENDING, description="Order status")
    filled_price: Optional[Decimal] = Field(default=None, description="Fill price")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    filled_at: Optional[datetime] = Field(default=None, description="Fill time")

    @field_validator("limit_price")
    @classmethod
    def price_required_for_limit(cls, v: Optional[Decimal], info) -> Optional[Decimal]:
        """Validate limit orders carry a positive price."""
        if info.data.get("order_type") == OrderType.LIMIT:
            if v is None or v <= 0:
                raise ValueError("Limit orders require a positive limit price")
        return v

    @property
    def value(self) -> Decimal:
        """Quantity times fill (or limit) price."""
        return self.quantity * (self.filled_price or self.limit_price or Decimal("0"))

    @property
    def is_buy(self) -> bool:
        return self.side == OrderSide.BUY

    @property
    def is_sell(self) -> bool:
        return self.side == OrderSide.SELL

    @property
    def is_market(self) -> bool:
        return self.order_type == OrderType.MARKET

    @property
    def is_limit(self) -> bool:
        return self.order_type == OrderType.LIMIT

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING

    def mark_filled(self, price: Decimal, filled_at: Optional[datetime] = None) -> "PaperOrder":
        """Return a filled copy of this order."""
        return self.model_copy(update={
            "status": OrderStatus.FILLED,
            "filled_price": price,
            "filled_at": filled_at or utc_now(),
        })


class PaperPosition(BaseModel):
    """A simulated position.

    A position is either open or closed; there is no partial close.
    Once closed, exit_price, realized_pnl and closed_at are fixed.

    Attributes:
        symbol: Trading symbol
        side: BUY for long, SELL for short
        quantity: Position size
        entry_price: Fill price at open
        stop_loss: Stop loss level
        take_profit: Take profit level
        id: Position ID
        opened_at: Open timestamp
        closed_at: Close timestamp
        exit_price: Fill price at close
        realized_pnl: PnL booked at close
        close_reason: Manual, stop loss or take profit
        linked_tool_id: Position tool that opened this position
    """
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., min_length=1, description="Trading symbol")
    side: OrderSide = Field(..., description="Position side")
    quantity: Decimal = Field(..., gt=0, description="Position size")
    entry_price: Decimal = Field(..., gt=0, description="Entry price")
    stop_loss: Optional[Decimal] = Field(default=None, description="Stop loss level")
    take_profit: Optional[Decimal] = Field(default=None, description="Take profit level")

    id: str = Field(default_factory=new_id, description="Position ID")
    opened_at: datetime = Field(default_factory=utc_now, description="Open time")
    closed_at: Optional[datetime] = Field(default=None, description="Close time")
    exit_price: Optional[Decimal] = Field(default=None, description="Exit price")
    realized_pnl: Optional[Decimal] = Field(default=None, description="Realized PnL")
    close_reason: Optional[CloseReason] = Field(default=None, description="Close reason")
    linked_tool_id: Optional[str] = Field(default=None, description="Linked tool ID")

    @property
    def is_long(self) -> bool:
        return self.side == OrderSide.BUY

    @property
    def is_short(self) -> bool:
        return self.side == OrderSide.SELL

    @property
    def is_open(self) -> bool:
        """True while the position has not been closed."""
        return self.closed_at is None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    @property
    def notional_value(self) -> Decimal:
        """Position value at entry price."""
        return self.entry_price * self.quantity

    def unrealized_pnl(self, current_price: Decimal) -> Decimal:
        """Calculate unrealized PnL at the given price.

        Args:
            current_price: Current market price

        Returns:
            Profit/loss, positive when the price moved in the position's favour
        """
        multiplier = 1 if self.is_long else -1
        return (current_price - self.entry_price) * self.quantity * multiplier

    def unrealized_pnl_percent(self, current_price: Decimal) -> Decimal:
        """Unrealized PnL as a percentage of notional value."""
        if self.notional_value == 0:
            return Decimal("0")
        return self.unrealized_pnl(current_price) / self.notional_value * 100

    def should_trigger_stop_loss(self, current_price: Decimal) -> bool:
        """Long stops out at or below the level, short at or above."""
        if self.stop_loss is None:
            return False
        if self.is_long:
            return current_price <= self.stop_loss
        return current_price >= self.stop_loss

    def should_trigger_take_profit(self, current_price: Decimal) -> bool:
        """Long takes profit at or above the level, short at or below."""
        if self.take_profit is None:
            return False
        if self.is_long:
            return current_price >= self.take_profit
        return current_price <= self.take_profit

    def close(
        self,
        exit_price: Decimal,
        reason: CloseReason = CloseReason.MANUAL,
        closed_at: Optional[datetime] = None,
    ) -> "PaperPosition":
        """Return the closed copy of this position.

        Raises:
            ValueError: If the position is already closed
        """
        if self.is_closed:
            raise ValueError(f"Position {self.id} is already closed")
        return self.model_copy(update={
            "closed_at": closed_at or utc_now(),
            "exit_price": exit_price,
            "realized_pnl": self.unrealized_pnl(exit_price),
            "close_reason": reason,
        })


class ClosedPositionResult(BaseModel):
    """Exit price and PnL of a position that has closed."""
    model_config = ConfigDict(frozen=True)

    exit_price: Decimal
    pnl: Decimal


# =============================================================================
# Journal Models
# =============================================================================

class Trade(BaseModel):
    """Journal record for a closed paper position.

    Attributes:
        position_id: Position this trade was recorded from
        symbol: Trading symbol
        side: Entry side
        quantity: Trade size
        entry_price: Entry fill price
        exit_price: Exit fill price
        entry_time: Entry timestamp
        exit_time: Exit timestamp
        realized_pnl: Profit/loss
        realized_pnl_pct: Profit/loss as percent of notional
        close_reason: Why the position closed
        tags: Free-form labels
        notes: Free-form notes
    """
    model_config = ConfigDict(frozen=True)

    position_id: str = Field(..., description="Source position ID")
    symbol: str = Field(..., description="Trading symbol")
    side: OrderSide = Field(..., description="Entry side")
    quantity: Decimal = Field(..., gt=0, description="Trade size")
    entry_price: Decimal = Field(..., gt=0, description="Entry price")
    exit_price: Decimal = Field(..., description="Exit price")
    entry_time: datetime = Field(..., description="Entry time")
    exit_time: datetime = Field(..., description="Exit time")
    realized_pnl: Decimal = Field(..., description="Realized PnL")
    realized_pnl_pct: Decimal = Field(default=Decimal("0"), description="PnL percentage")

    id: str = Field(default_factory=new_id, description="Trade ID")
    stop_loss: Optional[Decimal] = Field(default=None, description="Stop loss level")
    take_profit: Optional[Decimal] = Field(default=None, description="Take profit level")
    close_reason: CloseReason = Field(default=CloseReason.MANUAL, description="Close reason")
    linked_tool_id: Optional[str] = Field(default=None, description="Linked tool ID")
    tags: List[str] = Field(default_factory=list, description="Labels")
    notes: str = Field(default="", description="Notes")

    @property
    def outcome(self) -> TradeOutcome:
        """Win, loss or breakeven by sign of realized PnL."""
        if self.realized_pnl > 0:
            return TradeOutcome.WIN
        if self.realized_pnl < 0:
            return TradeOutcome.LOSS
        return TradeOutcome.BREAKEVEN

    @property
    def duration(self) -> float:
        """Trade duration in seconds."""
        return (self.exit_time - self.entry_time).total_seconds()

    @classmethod
    def from_position(cls, position: PaperPosition) -> "Trade":
        """Build a journal record from a closed position.

        Raises:
            ValueError: If the position is still open
        """
        if position.is_open:
            raise ValueError(f"Position {position.id} is still open")
        pnl = position.realized_pnl
        pnl_pct = position.unrealized_pnl_percent(position.exit_price)
        return cls(
            position_id=position.id,
            symbol=position.symbol,
            side=position.side,
            quantity=position.quantity,
            entry_price=position.entry_price,
            exit_price=position.exit_price,
            entry_time=position.opened_at,
            exit_time=position.closed_at,
            realized_pnl=pnl,
            realized_pnl_pct=pnl_pct,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            close_reason=position.close_reason or CloseReason.MANUAL,
            linked_tool_id=position.linked_tool_id,
            tags=["paper-trade"],
            notes=f"Paper trade - {'WIN' if pnl >= 0 else 'LOSS'}",
        )


# =============================================================================
# Engine State Models
# =============================================================================

class TradeCheck(BaseModel):
    """Result of validating an engine operation before it mutates state."""
    model_config = ConfigDict(frozen=True)

    passed: bool = Field(..., description="Whether the operation may proceed")
    reason: Optional[str] = Field(default=None, description="Rejection reason")

    @property
    def is_rejected(self) -> bool:
        return not self.passed

    @classmethod
    def approved(cls) -> "TradeCheck":
        """Create an approved check result."""
        return cls(passed=True)

    @classmethod
    def rejected(cls, reason: str) -> "TradeCheck":
        """Create a rejected check result."""
        return cls(passed=False, reason=reason)


class EngineSnapshot(BaseModel):
    """Immutable view of engine state published after every mutation."""
    model_config = ConfigDict(frozen=True)

    version: int = Field(default=0, ge=0, description="Mutation counter")
    account: PaperAccount
    open_positions: Tuple[PaperPosition, ...] = Field(default_factory=tuple)
    closed_positions: Tuple[PaperPosition, ...] = Field(default_factory=tuple)
    orders: Tuple[PaperOrder, ...] = Field(default_factory=tuple)
    prices: Dict[str, Decimal] = Field(default_factory=dict)
    taken_at: datetime = Field(default_factory=utc_now)

    @property
    def unrealized_pnl(self) -> Decimal:
        """Sum of unrealized PnL over open positions with a known price."""
        total = Decimal("0")
        for position in self.open_positions:
            price = self.prices.get(position.symbol)
            if price is not None:
                total += position.unrealized_pnl(price)
        return total

    @property
    def equity(self) -> Decimal:
        """Balance plus unrealized PnL."""
        return self.account.equity(self.unrealized_pnl)


# =============================================================================
# Utility Functions
# =============================================================================

def create_market_order(
    symbol: str,
    side: OrderSide,
    quantity: Decimal,
    **kwargs
) -> PaperOrder:
    """Factory function to create a market order.

    Args:
        symbol: Trading symbol
        side: Buy or sell
        quantity: Order quantity
        **kwargs: Additional order fields

    Returns:
        Pending market order
    """
    return PaperOrder(
        symbol=symbol,
        side=side,
        order_type=OrderType.MARKET,
        quantity=quantity,
        **kwargs
    )


def create_limit_order(
    symbol: str,
    side: OrderSide,
    quantity: Decimal,
    limit_price: Decimal,
    **kwargs
) -> PaperOrder:
    """Factory function to create a limit order."""
    return PaperOrder(
        symbol=symbol,
        side=side,
        order_type=OrderType.LIMIT,
        quantity=quantity,
        limit_price=limit_price,
        **kwargs
    )
