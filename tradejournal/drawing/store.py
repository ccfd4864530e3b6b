"""In-memory collection of chart drawings."""
import threading
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from tradejournal.drawing.models import (
    DEFAULT_TIME_TOLERANCE,
    ChartPoint,
    Drawing,
    PositionToolDrawing,
    PositionToolStatus,
)

logger = structlog.get_logger(__name__)


class DrawingStore:
    """
    Id-keyed drawing collection with a single selection.

    Drawings are immutable; updates replace the stored value. Insertion
    order is the z-order, so the last added drawing is on top. Removing a
    drawing never touches the paper account: a tool and its linked position
    are only connected by ID.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._drawings: Dict[str, Drawing] = {}
        self._selected_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self._drawings)

    def __contains__(self, drawing_id: str) -> bool:
        return drawing_id in self._drawings

    @property
    def drawings(self) -> List[Drawing]:
        """All drawings, bottom to top."""
        return list(self._drawings.values())

    def get(self, drawing_id: str) -> Optional[Drawing]:
        return self._drawings.get(drawing_id)

    def add(self, drawing: Drawing) -> Drawing:
        """
        Add a drawing on top.

        Raises:
            ValueError: If a drawing with the same ID exists
        """
        with self._lock:
            if drawing.id in self._drawings:
                raise ValueError(f"Drawing {drawing.id} already exists")
            self._drawings[drawing.id] = drawing
        logger.debug("drawings.added", drawing_id=drawing.id, kind=drawing.kind)
        return drawing

    def update(self, drawing: Drawing) -> bool:
        """Replace a stored drawing with a new value of the same ID."""
        with self._lock:
            if drawing.id not in self._drawings:
                return False
            self._drawings[drawing.id] = drawing
        return True

    def delete(self, drawing_id: str) -> bool:
        """Remove a drawing in any state."""
        with self._lock:
            drawing = self._drawings.pop(drawing_id, None)
            if drawing is None:
                return False
            if self._selected_id == drawing_id:
                self._selected_id = None
        logger.debug("drawings.deleted", drawing_id=drawing_id, kind=drawing.kind)
        return True

    def clear_all(self):
        with self._lock:
            self._drawings = {}
            self._selected_id = None

    def load(self, drawings: List[Drawing]):
        """Replace the contents, keeping the given order."""
        with self._lock:
            self._drawings = {d.id: d for d in drawings}
            self._selected_id = None

    # =========================================================================
    # Selection
    # =========================================================================

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def selected(self) -> Optional[Drawing]:
        if self._selected_id is None:
            return None
        return self._drawings.get(self._selected_id)

    def select(self, drawing_id: Optional[str]) -> bool:
        """Select a drawing, or clear the selection with None."""
        with self._lock:
            if drawing_id is not None and drawing_id not in self._drawings:
                return False
            self._selected_id = drawing_id
        return True

    def is_selected(self, drawing_id: str) -> bool:
        return self._selected_id == drawing_id

    def find_drawing_at(
        self,
        point: ChartPoint,
        tolerance: Decimal,
        time_tolerance: timedelta = DEFAULT_TIME_TOLERANCE,
    ) -> Optional[Drawing]:
        """Topmost drawing near the point."""
        for drawing in reversed(self.drawings):
            if drawing.is_near_point(point, tolerance, time_tolerance):
                return drawing
        return None

    # =========================================================================
    # Position Tools
    # =========================================================================

    def position_tools(
        self,
        symbol: Optional[str] = None,
        status: Optional[PositionToolStatus] = None,
    ) -> List[PositionToolDrawing]:
        """Position tools, optionally filtered by symbol and status."""
        return [
            d for d in self.drawings
            if isinstance(d, PositionToolDrawing)
            and (symbol is None or d.symbol == symbol)
            and (status is None or d.status == status)
        ]

    def find_tool_by_position(self, position_id: str) -> Optional[PositionToolDrawing]:
        """The tool linked to a paper position."""
        for tool in self.position_tools():
            if tool.linked_position_id == position_id:
                return tool
        return None
