"""Chart drawing models.

Drawings are immutable values discriminated on `kind`:
- TrendLineDrawing, HorizontalLineDrawing, VerticalLineDrawing
- FibonacciDrawing, RectangleDrawing
- PositionToolDrawing: entry/stop loss/take profit levels over a time span,
  which can be promoted into a live paper position

Every drawing implements is_near_point() for selection and exposes its
anchor_points. Selection state lives in the DrawingStore, not here.

Prices are Decimal; times are aware UTC datetimes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tradejournal.core.config import position_tool_config
from tradejournal.core.models import new_id, utc_now

DEFAULT_TIME_TOLERANCE = timedelta(hours=1)


# =============================================================================
# Enums
# =============================================================================

class PositionToolStatus(str, Enum):
    """Lifecycle of a position tool: draft -> active -> closed."""
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class PositionToolHandle(str, Enum):
    """Edit handle of a position tool under a pointer."""
    BODY = "body"
    ENTRY_LINE = "entry_line"
    ENTRY_LEFT = "entry_left"
    ENTRY_RIGHT = "entry_right"
    STOP_LOSS_LINE = "stop_loss_line"
    STOP_LOSS_LEFT = "stop_loss_left"
    STOP_LOSS_RIGHT = "stop_loss_right"
    TAKE_PROFIT_LINE = "take_profit_line"
    TAKE_PROFIT_LEFT = "take_profit_left"
    TAKE_PROFIT_RIGHT = "take_profit_right"
    RIGHT_EDGE = "right_edge"


# =============================================================================
# Base Types
# =============================================================================

class ChartPoint(BaseModel):
    """A price/time coordinate on the chart."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    price: Decimal


class DrawingBase(BaseModel, ABC):
    """Fields shared by all drawings."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    color: str = "#00E5FF"
    stroke_width: float = 1.5
    is_complete: bool = True

    @property
    @abstractmethod
    def anchor_points(self) -> List[ChartPoint]:
        """Points the chart draws drag handles on."""

    @abstractmethod
    def is_near_point(
        self,
        point: ChartPoint,
        tolerance: Decimal,
        time_tolerance: timedelta = DEFAULT_TIME_TOLERANCE,
    ) -> bool:
        """Whether `point` is within the price / time tolerance of the drawing."""


def _in_span(t: datetime, start: datetime, end: datetime, slack: timedelta) -> bool:
    lo, hi = min(start, end), max(start, end)
    return lo - slack <= t <= hi + slack


# =============================================================================
# Simple Drawings
# =============================================================================

class TrendLineDrawing(DrawingBase):
    """A line segment between two points, optionally extended."""
    kind: Literal["trend_line"] = "trend_line"
    start_point: ChartPoint
    end_point: Optional[ChartPoint] = None
    extend_left: bool = False
    extend_right: bool = False

    @property
    def anchor_points(self) -> List[ChartPoint]:
        if self.end_point is None:
            return [self.start_point]
        return [self.start_point, self.end_point]

    def price_at(self, t: datetime) -> Optional[Decimal]:
        """Price of the (infinite) line at time t; None for a vertical line."""
        if self.end_point is None:
            return None
        span = (self.end_point.timestamp - self.start_point.timestamp).total_seconds()
        if span == 0:
            return None
        elapsed = (t - self.start_point.timestamp).total_seconds()
        slope = (self.end_point.price - self.start_point.price) / Decimal(str(span))
        return self.start_point.price + slope * Decimal(str(elapsed))

    def is_near_point(self, point, tolerance, time_tolerance=DEFAULT_TIME_TOLERANCE) -> bool:
        if self.end_point is None:
            return False

        start, end = self.start_point, self.end_point
        if start.timestamp == end.timestamp:
            lo, hi = min(start.price, end.price), max(start.price, end.price)
            return (
                abs(point.timestamp - start.timestamp) <= time_tolerance
                and lo - tolerance <= point.price <= hi + tolerance
            )

        first, last = sorted((start.timestamp, end.timestamp))
        before = point.timestamp < first - time_tolerance
        after = point.timestamp > last + time_tolerance
        left_extended = self.extend_left if start.timestamp < end.timestamp else self.extend_right
        right_extended = self.extend_right if start.timestamp < end.timestamp else self.extend_left
        if (before and not left_extended) or (after and not right_extended):
            return False

        t = min(max(point.timestamp, first), last)
        if before and left_extended or after and right_extended:
            t = point.timestamp
        return abs(point.price - self.price_at(t)) <= tolerance


class HorizontalLineDrawing(DrawingBase):
    """A price level across the whole chart."""
    kind: Literal["horizontal_line"] = "horizontal_line"
    price: Decimal
    label: Optional[str] = None
    anchor_time: datetime = Field(default_factory=utc_now)

    @property
    def anchor_points(self) -> List[ChartPoint]:
        return [ChartPoint(timestamp=self.anchor_time, price=self.price)]

    def is_near_point(self, point, tolerance, time_tolerance=DEFAULT_TIME_TOLERANCE) -> bool:
        return abs(point.price - self.price) <= tolerance


class VerticalLineDrawing(DrawingBase):
    """A time marker across the whole price axis."""
    kind: Literal["vertical_line"] = "vertical_line"
    timestamp: datetime
    label: Optional[str] = None

    @property
    def anchor_points(self) -> List[ChartPoint]:
        return [ChartPoint(timestamp=self.timestamp, price=Decimal("0"))]

    def is_near_point(self, point, tolerance, time_tolerance=DEFAULT_TIME_TOLERANCE) -> bool:
        return abs(point.timestamp - self.timestamp) <= time_tolerance


class FibonacciDrawing(DrawingBase):
    """Fibonacci retracement between two points."""
    kind: Literal["fibonacci"] = "fibonacci"
    start_point: ChartPoint
    end_point: Optional[ChartPoint] = None
    color: str = "#FFD700"
    levels: Tuple[Decimal, ...] = (
        Decimal("0"),
        Decimal("0.236"),
        Decimal("0.382"),
        Decimal("0.5"),
        Decimal("0.618"),
        Decimal("0.786"),
        Decimal("1"),
    )

    @property
    def anchor_points(self) -> List[ChartPoint]:
        if self.end_point is None:
            return [self.start_point]
        return [self.start_point, self.end_point]

    def price_for_level(self, level: Decimal) -> Optional[Decimal]:
        """Price of a retracement ratio; None until the end point is set."""
        if self.end_point is None:
            return None
        move = self.end_point.price - self.start_point.price
        return self.start_point.price + move * level

    def level_prices(self) -> List[Tuple[Decimal, Decimal]]:
        """(ratio, price) for every level."""
        if self.end_point is None:
            return []
        return [(level, self.price_for_level(level)) for level in self.levels]

    def is_near_point(self, point, tolerance, time_tolerance=DEFAULT_TIME_TOLERANCE) -> bool:
        return any(
            abs(point.price - price) <= tolerance for _, price in self.level_prices()
        )


class RectangleDrawing(DrawingBase):
    """A price/time box."""
    kind: Literal["rectangle"] = "rectangle"
    start_point: ChartPoint
    end_point: Optional[ChartPoint] = None
    filled: bool = True
    fill_opacity: float = 0.1

    @property
    def anchor_points(self) -> List[ChartPoint]:
        if self.end_point is None:
            return [self.start_point]
        return [self.start_point, self.end_point]

    def is_near_point(self, point, tolerance, time_tolerance=DEFAULT_TIME_TOLERANCE) -> bool:
        if self.end_point is None:
            return False
        lo = min(self.start_point.price, self.end_point.price)
        hi = max(self.start_point.price, self.end_point.price)
        return (
            _in_span(point.timestamp, self.start_point.timestamp, self.end_point.timestamp, time_tolerance)
            and lo - tolerance <= point.price <= hi + tolerance
        )


# =============================================================================
# Position Tool
# =============================================================================

class PositionToolDrawing(DrawingBase):
    """
    Long or short position tool.

    Draws entry, stop loss and take profit levels from the entry time to
    end_time. A valid draft can be activated by linking it to a paper
    position; when that position closes the tool records the exit.

    Attributes:
        symbol: Trading symbol
        entry_point: Entry price at the tool's left edge
        end_time: Right edge (defaults to entry time plus the configured width)
        stop_loss_price: Stop loss level
        take_profit_price: Take profit level
        quantity: Position size
        is_long: Long if True, short otherwise
        status: draft, active or closed
        linked_position_id: Paper position opened from this tool
        exit_price: Exit price once closed
        realized_pnl: Realized PnL once closed
    """
    kind: Literal["position_tool"] = "position_tool"
    symbol: str = Field(..., min_length=1)
    entry_point: ChartPoint
    end_time: datetime
    stop_loss_price: Decimal
    take_profit_price: Decimal
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    is_long: bool = True
    status: PositionToolStatus = PositionToolStatus.DRAFT
    linked_position_id: Optional[str] = None
    exit_price: Optional[Decimal] = None
    realized_pnl: Optional[Decimal] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="before")
    @classmethod
    def default_end_time(cls, data: Any) -> Any:
        """Fill end_time from the entry time and the configured width."""
        if isinstance(data, dict) and data.get("end_time") is None:
            entry = data.get("entry_point")
            if isinstance(entry, ChartPoint):
                start = entry.timestamp
            elif isinstance(entry, dict):
                start = entry.get("timestamp")
            else:
                start = None
            if isinstance(start, datetime):
                data = dict(data)
                data["end_time"] = start + timedelta(
                    hours=position_tool_config.default_width_hours
                )
        return data

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------

    @property
    def entry_price(self) -> Decimal:
        return self.entry_point.price

    @property
    def start_time(self) -> datetime:
        return self.entry_point.timestamp

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def risk_per_share(self) -> Decimal:
        return abs(self.entry_price - self.stop_loss_price)

    @property
    def reward_per_share(self) -> Decimal:
        return abs(self.take_profit_price - self.entry_price)

    @property
    def risk_reward_ratio(self) -> Decimal:
        """Reward / risk; 0 when risk is 0."""
        if self.risk_per_share == 0:
            return Decimal("0")
        return self.reward_per_share / self.risk_per_share

    @property
    def total_risk(self) -> Decimal:
        return self.risk_per_share * self.quantity

    @property
    def total_reward(self) -> Decimal:
        return self.reward_per_share * self.quantity

    @property
    def is_valid(self) -> bool:
        """Long: SL < entry < TP. Short: TP < entry < SL."""
        if self.is_long:
            return self.stop_loss_price < self.entry_price < self.take_profit_price
        return self.take_profit_price < self.entry_price < self.stop_loss_price

    @property
    def profit_zone_top(self) -> Decimal:
        return self.take_profit_price if self.is_long else self.entry_price

    @property
    def profit_zone_bottom(self) -> Decimal:
        return self.entry_price if self.is_long else self.take_profit_price

    @property
    def loss_zone_top(self) -> Decimal:
        return self.entry_price if self.is_long else self.stop_loss_price

    @property
    def loss_zone_bottom(self) -> Decimal:
        return self.stop_loss_price if self.is_long else self.entry_price

    @property
    def price_envelope(self) -> Tuple[Decimal, Decimal]:
        """(min, max) over entry, stop loss and take profit."""
        levels = (self.entry_price, self.stop_loss_price, self.take_profit_price)
        return min(levels), max(levels)

    @property
    def anchor_points(self) -> List[ChartPoint]:
        points = []
        for t in (self.start_time, self.end_time):
            for price in (self.entry_price, self.stop_loss_price, self.take_profit_price):
                points.append(ChartPoint(timestamp=t, price=price))
        return points

    def unrealized_pnl(self, current_price: Decimal) -> Decimal:
        sign = 1 if self.is_long else -1
        return (current_price - self.entry_price) * self.quantity * sign

    def should_trigger_stop_loss(self, current_price: Decimal) -> bool:
        if self.status != PositionToolStatus.ACTIVE:
            return False
        if self.is_long:
            return current_price <= self.stop_loss_price
        return current_price >= self.stop_loss_price

    def should_trigger_take_profit(self, current_price: Decimal) -> bool:
        if self.status != PositionToolStatus.ACTIVE:
            return False
        if self.is_long:
            return current_price >= self.take_profit_price
        return current_price <= self.take_profit_price

    # -------------------------------------------------------------------------
    # Hit Testing
    # -------------------------------------------------------------------------

    def is_near_point(self, point, tolerance, time_tolerance=DEFAULT_TIME_TOLERANCE) -> bool:
        """
        True if the point is inside the tool's time span and near one of
        its levels or inside the price envelope (widened by tolerance).
        """
        if not self.start_time <= point.timestamp <= self.end_time:
            return False

        for level in (self.entry_price, self.stop_loss_price, self.take_profit_price):
            if abs(point.price - level) <= tolerance:
                return True

        low, high = self.price_envelope
        return low - tolerance <= point.price <= high + tolerance

    def get_handle_at(
        self,
        point: ChartPoint,
        price_tolerance: Decimal,
        time_tolerance: timedelta,
    ) -> Optional[PositionToolHandle]:
        """
        Resolve the edit handle under a point.

        Priority is stop loss, take profit, entry line; for each line a
        point near the left or right edge selects the corner sub-handle.
        Otherwise a point inside the price envelope is the body, or the
        right edge when near end_time.
        """
        near_start = abs(point.timestamp - self.start_time) <= time_tolerance
        near_end = abs(point.timestamp - self.end_time) <= time_tolerance

        lines = (
            (
                self.stop_loss_price,
                PositionToolHandle.STOP_LOSS_LEFT,
                PositionToolHandle.STOP_LOSS_RIGHT,
                PositionToolHandle.STOP_LOSS_LINE,
            ),
            (
                self.take_profit_price,
                PositionToolHandle.TAKE_PROFIT_LEFT,
                PositionToolHandle.TAKE_PROFIT_RIGHT,
                PositionToolHandle.TAKE_PROFIT_LINE,
            ),
            (
                self.entry_price,
                PositionToolHandle.ENTRY_LEFT,
                PositionToolHandle.ENTRY_RIGHT,
                PositionToolHandle.ENTRY_LINE,
            ),
        )
        for level, left, right, line in lines:
            if abs(point.price - level) <= price_tolerance:
                if near_start:
                    return left
                if near_end:
                    return right
                return line

        low, high = self.price_envelope
        if low <= point.price <= high:
            if near_end:
                return PositionToolHandle.RIGHT_EDGE
            return PositionToolHandle.BODY
        return None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_draft(self) -> bool:
        return self.status == PositionToolStatus.DRAFT

    @property
    def is_active(self) -> bool:
        return self.status == PositionToolStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status == PositionToolStatus.CLOSED

    def activate(self, position_id: str) -> "PositionToolDrawing":
        """
        Link to a live position and move to active.

        Raises:
            ValueError: If not a draft, already linked, invalid, or the
                position ID is empty
        """
        if not self.is_draft:
            raise ValueError(f"Tool {self.id} is {self.status.value}, not draft")
        if self.linked_position_id is not None:
            raise ValueError(f"Tool {self.id} is already linked")
        if not position_id:
            raise ValueError("Position ID is required")
        if not self.is_valid:
            raise ValueError(f"Tool {self.id} has invalid stop loss / take profit levels")
        return self.model_copy(update={
            "status": PositionToolStatus.ACTIVE,
            "linked_position_id": position_id,
            "updated_at": utc_now(),
        })

    def mark_closed(self, exit_price: Decimal, realized_pnl: Decimal) -> "PositionToolDrawing":
        """
        Record the linked position's exit.

        Raises:
            ValueError: If the tool is not active
        """
        if not self.is_active:
            raise ValueError(f"Tool {self.id} is {self.status.value}, not active")
        return self.model_copy(update={
            "status": PositionToolStatus.CLOSED,
            "exit_price": exit_price,
            "realized_pnl": realized_pnl,
            "updated_at": utc_now(),
        })

    def with_levels(
        self,
        entry_price: Optional[Decimal] = None,
        stop_loss_price: Optional[Decimal] = None,
        take_profit_price: Optional[Decimal] = None,
        entry_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        quantity: Optional[Decimal] = None,
    ) -> "PositionToolDrawing":
        """
        Return a copy with edited levels, times or quantity.

        Raises:
            ValueError: If the tool is not a draft or the new span is empty
        """
        if not self.is_draft:
            raise ValueError(f"Tool {self.id} is {self.status.value}; only drafts can be edited")

        entry_point = self.entry_point
        if entry_price is not None or entry_time is not None:
            entry_point = ChartPoint(
                timestamp=entry_time if entry_time is not None else entry_point.timestamp,
                price=entry_price if entry_price is not None else entry_point.price,
            )
        new_end = end_time if end_time is not None else self.end_time
        if new_end <= entry_point.timestamp:
            raise ValueError("End time must be after the entry time")
        if quantity is not None and quantity <= 0:
            raise ValueError("Quantity must be positive")

        return self.model_copy(update={
            "entry_point": entry_point,
            "end_time": new_end,
            "stop_loss_price": stop_loss_price if stop_loss_price is not None else self.stop_loss_price,
            "take_profit_price": take_profit_price if take_profit_price is not None else self.take_profit_price,
            "quantity": quantity if quantity is not None else self.quantity,
            "updated_at": utc_now(),
        })

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def create_long(
        cls,
        symbol: str,
        entry_point: ChartPoint,
        sl_percent: Optional[Decimal] = None,
        tp_percent: Optional[Decimal] = None,
        quantity: Optional[Decimal] = None,
    ) -> "PositionToolDrawing":
        """Long tool with SL below and TP above entry by percentage."""
        return cls._from_percent(symbol, entry_point, True, sl_percent, tp_percent, quantity)

    @classmethod
    def create_short(
        cls,
        symbol: str,
        entry_point: ChartPoint,
        sl_percent: Optional[Decimal] = None,
        tp_percent: Optional[Decimal] = None,
        quantity: Optional[Decimal] = None,
    ) -> "PositionToolDrawing":
        """Short tool with SL above and TP below entry by percentage."""
        return cls._from_percent(symbol, entry_point, False, sl_percent, tp_percent, quantity)

    @classmethod
    def _from_percent(cls, symbol, entry_point, is_long, sl_percent, tp_percent, quantity):
        sl_pct = Decimal(str(sl_percent if sl_percent is not None else position_tool_config.default_sl_percent))
        tp_pct = Decimal(str(tp_percent if tp_percent is not None else position_tool_config.default_tp_percent))
        entry = entry_point.price
        sign = 1 if is_long else -1
        return cls(
            symbol=symbol,
            entry_point=entry_point,
            stop_loss_price=entry * (1 - sign * sl_pct / 100),
            take_profit_price=entry * (1 + sign * tp_pct / 100),
            quantity=quantity if quantity is not None else position_tool_config.default_quantity,
            is_long=is_long,
            color="#26A69A" if is_long else "#EF5350",
        )


Drawing = Annotated[
    Union[
        TrendLineDrawing,
        HorizontalLineDrawing,
        VerticalLineDrawing,
        FibonacciDrawing,
        RectangleDrawing,
        PositionToolDrawing,
    ],
    Field(discriminator="kind"),
]
