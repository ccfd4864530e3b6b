"""Chart drawings and the position tool."""

from tradejournal.drawing.models import (
    ChartPoint,
    Drawing,
    FibonacciDrawing,
    HorizontalLineDrawing,
    PositionToolDrawing,
    PositionToolHandle,
    PositionToolStatus,
    RectangleDrawing,
    TrendLineDrawing,
    VerticalLineDrawing,
)
from tradejournal.drawing.store import DrawingStore

__all__ = [
    "ChartPoint",
    "Drawing",
    "DrawingStore",
    "FibonacciDrawing",
    "HorizontalLineDrawing",
    "PositionToolDrawing",
    "PositionToolHandle",
    "PositionToolStatus",
    "RectangleDrawing",
    "TrendLineDrawing",
    "VerticalLineDrawing",
]
