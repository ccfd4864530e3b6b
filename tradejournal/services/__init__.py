"""Service layer: persistence-backed paper trading and journal analytics."""

from tradejournal.services import analytics
from tradejournal.services.paper_trading import PaperTradingService

__all__ = [
    "PaperTradingService",
    "analytics",
]
