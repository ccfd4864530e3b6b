"""Pytest fixtures and utilities for the trade journal test suite."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List

import pytest
import pytest_asyncio

from tradejournal.core.config import PaperTradingConfig, PositionToolConfig
from tradejournal.core.engine import PaperTradingEngine
from tradejournal.core.models import Candle, LivePrice
from tradejournal.drawing.models import ChartPoint
from tradejournal.services.paper_trading import PaperTradingService
from tradejournal.storage.database import Database


BASE_TIME = datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def test_paper_config():
    """Create a paper trading configuration without default stops."""
    return PaperTradingConfig(
        initial_balance=Decimal("10000"),
        default_order_quantity=Decimal("1"),
        stop_loss_pct=None,
        take_profit_pct=None,
        single_position_per_symbol=True,
    )


@pytest.fixture
def test_paper_config_with_stops():
    """Create a paper trading configuration with 10% SL / 10% TP offsets."""
    return PaperTradingConfig(
        initial_balance=Decimal("10000"),
        default_order_quantity=Decimal("1"),
        stop_loss_pct=Decimal("10"),
        take_profit_pct=Decimal("10"),
    )


@pytest.fixture
def test_tool_config():
    """Create a position tool configuration."""
    return PositionToolConfig(
        default_sl_percent=Decimal("2"),
        default_tp_percent=Decimal("4"),
        default_quantity=Decimal("1"),
        default_width_hours=24,
    )


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def engine(test_paper_config):
    """Create an engine with a 10000 balance and no default stops."""
    return PaperTradingEngine(config=test_paper_config)


@pytest.fixture
def engine_with_stops(test_paper_config_with_stops):
    """Create an engine whose buy()/sell() attach 10% SL and TP."""
    return PaperTradingEngine(config=test_paper_config_with_stops)


# =============================================================================
# Database & Service Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def test_database():
    """Create an in-memory test database."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.initialize()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def service(test_paper_config):
    """Create an initialized service over an in-memory database."""
    db = Database("sqlite+aiosqlite:///:memory:")
    svc = PaperTradingService(db, engine=PaperTradingEngine(config=test_paper_config))
    await svc.initialize()
    yield svc
    await svc.close()


# =============================================================================
# Market Data Fixtures
# =============================================================================

def make_candles(closes: List[float], start: datetime = BASE_TIME) -> List[Candle]:
    """Build hourly candles whose open/high/low hug the given closes."""
    candles = []
    previous = closes[0]
    for i, close in enumerate(closes):
        open_ = Decimal(str(previous))
        close_ = Decimal(str(close))
        candles.append(
            Candle(
                timestamp=start + timedelta(hours=i),
                open=open_,
                high=max(open_, close_) + Decimal("0.5"),
                low=min(open_, close_) - Decimal("0.5"),
                close=close_,
                volume=Decimal("100"),
            )
        )
        previous = close
    return candles


@pytest.fixture
def sample_candles():
    """Thirty hourly candles with a gentle up/down wave."""
    closes = [100 + (i % 7) - (i % 3) * 0.5 + i * 0.2 for i in range(30)]
    return make_candles(closes)


@pytest.fixture
def entry_point():
    """Chart point at 100 on the base time."""
    return ChartPoint(timestamp=BASE_TIME, price=Decimal("100"))


def tick(symbol: str, price) -> LivePrice:
    """Build a price tick."""
    return LivePrice(symbol=symbol, price=Decimal(str(price)), timestamp=BASE_TIME)


@pytest.fixture
def candle_factory():
    """Expose make_candles to tests."""
    return make_candles


@pytest.fixture
def make_tick():
    """Expose tick() to tests."""
    return tick
