"""Database storage for paper trading and journal data."""
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import TypeAdapter
from sqlalchemy import JSON, Column, DateTime, String, delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from tradejournal.core.config import database_config
from tradejournal.core.models import (
    CloseReason,
    OrderSide,
    OrderStatus,
    OrderType,
    PaperAccount,
    PaperOrder,
    PaperPosition,
    Trade,
)
from tradejournal.drawing.models import Drawing, PositionToolDrawing, PositionToolStatus

logger = structlog.get_logger(__name__)

Base = declarative_base()

DEFAULT_USER = "default"

_drawing_adapter = TypeAdapter(Drawing)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ExactDecimal(TypeDecorator):
    """Decimal stored as its string form, so prices and sizes reload exactly.

    SQLite keeps Numeric columns as floating point.
    """
    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class AccountModel(Base):
    """SQLAlchemy model for paper accounts, one per user."""
    __tablename__ = 'accounts'

    user_id = Column(String, primary_key=True)
    id = Column(String, nullable=False)
    balance = Column(ExactDecimal, nullable=False)
    initial_balance = Column(ExactDecimal, nullable=False)
    realized_pnl = Column(ExactDecimal, default=0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)


class OrderModel(Base):
    """SQLAlchemy model for paper orders."""
    __tablename__ = 'orders'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=False)
    side = Column(String, nullable=False)
    order_type = Column(String, nullable=False)
    quantity = Column(ExactDecimal, nullable=False)
    limit_price = Column(ExactDecimal, nullable=True)
    status = Column(String, nullable=False)
    filled_price = Column(ExactDecimal, nullable=True)
    created_at = Column(DateTime, nullable=False)
    filled_at = Column(DateTime, nullable=True)


class PositionModel(Base):
    """SQLAlchemy model for paper positions."""
    __tablename__ = 'positions'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=False)
    side = Column(String, nullable=False)
    quantity = Column(ExactDecimal, nullable=False)
    entry_price = Column(ExactDecimal, nullable=False)
    stop_loss = Column(ExactDecimal, nullable=True)
    take_profit = Column(ExactDecimal, nullable=True)
    opened_at = Column(DateTime, nullable=False)
    closed_at = Column(DateTime, nullable=True)
    exit_price = Column(ExactDecimal, nullable=True)
    realized_pnl = Column(ExactDecimal, nullable=True)
    close_reason = Column(String, nullable=True)
    linked_tool_id = Column(String, nullable=True)


class DrawingModel(Base):
    """SQLAlchemy model for chart drawings, stored as JSON payloads."""
    __tablename__ = 'drawings'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)
    symbol = Column(String, nullable=True)
    status = Column(String, nullable=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)


class TradeModel(Base):
    """SQLAlchemy model for journal trades."""
    __tablename__ = 'trades'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    position_id = Column(String, nullable=False)
    symbol = Column(String, nullable=False)
    side = Column(String, nullable=False)
    quantity = Column(ExactDecimal, nullable=False)
    entry_price = Column(ExactDecimal, nullable=False)
    exit_price = Column(ExactDecimal, nullable=False)
    entry_time = Column(DateTime, nullable=False)
    exit_time = Column(DateTime, nullable=False)
    realized_pnl = Column(ExactDecimal, nullable=False)
    realized_pnl_pct = Column(ExactDecimal, nullable=False)
    stop_loss = Column(ExactDecimal, nullable=True)
    take_profit = Column(ExactDecimal, nullable=True)
    close_reason = Column(String, nullable=True)
    linked_tool_id = Column(String, nullable=True)
    tags = Column(JSON, default=list)
    notes = Column(String, default="")


class Database:
    """
    Async database interface.

    Every record is scoped by a user key so several journals can share
    one database file.
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        # Convert SQLite URL to async version if needed
        db_url = url or database_config.database_url
        if db_url.startswith('sqlite:///') and not db_url.startswith('sqlite+aiosqlite:///'):
            db_url = db_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        self.url = db_url

        engine_kwargs: Dict[str, Any] = {
            "echo": database_config.echo_sql if echo is None else echo,
        }
        if db_url.endswith(':memory:') or db_url.endswith('://'):
            # One shared connection keeps the in-memory database alive
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self.engine: AsyncEngine = create_async_engine(db_url, **engine_kwargs)
        self.session_maker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def initialize(self):
        """Create tables (and the SQLite file's directory)."""
        prefix = 'sqlite+aiosqlite:///'
        if self.url.startswith(prefix) and not self.url.endswith(':memory:'):
            path = self.url[len(prefix):]
            if path:
                Path(path).parent.mkdir(parents=True, exist_ok=True)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.initialized", url=self.url)

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    # Account operations
    async def save_account(self, account: PaperAccount, user_id: str = DEFAULT_USER):
        """Save or replace the user's account."""
        async with self.session_maker() as session:
            db_account = await session.get(AccountModel, user_id)

            if db_account is None:
                db_account = AccountModel(user_id=user_id)
                session.add(db_account)

            db_account.id = account.id
            db_account.balance = account.balance
            db_account.initial_balance = account.initial_balance
            db_account.realized_pnl = account.realized_pnl
            db_account.created_at = account.created_at
            db_account.updated_at = datetime.now(timezone.utc)

            await session.commit()

    async def get_account(self, user_id: str = DEFAULT_USER) -> Optional[PaperAccount]:
        """Get the user's account, if one was saved."""
        async with self.session_maker() as session:
            db_account = await session.get(AccountModel, user_id)

            if db_account is None:
                return None

            return PaperAccount(
                id=db_account.id,
                balance=db_account.balance,
                initial_balance=db_account.initial_balance,
                realized_pnl=db_account.realized_pnl or 0,
                created_at=_as_utc(db_account.created_at),
            )

    # Order operations
    async def save_order(self, order: PaperOrder, user_id: str = DEFAULT_USER):
        """Save or update an order."""
        await self.save_orders([order], user_id)

    async def save_orders(self, orders: List[PaperOrder], user_id: str = DEFAULT_USER):
        """Save or update several orders in one transaction."""
        async with self.session_maker() as session:
            for order in orders:
                db_order = await session.get(OrderModel, order.id)

                if db_order is None:
                    db_order = OrderModel(
                        id=order.id,
                        user_id=user_id,
                        symbol=order.symbol,
                        side=order.side.value,
                        order_type=order.order_type.value,
                        quantity=order.quantity,
                        limit_price=order.limit_price,
                        created_at=order.created_at,
                    )
                    session.add(db_order)

                db_order.status = order.status.value
                db_order.filled_price = order.filled_price
                db_order.filled_at = order.filled_at

            await session.commit()

    async def get_orders(
        self,
        user_id: str = DEFAULT_USER,
        symbol: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        limit: Optional[int] = None,
    ) -> List[PaperOrder]:
        """Get orders oldest first, with optional filters."""
        async with self.session_maker() as session:
            query = (
                select(OrderModel)
                .where(OrderModel.user_id == user_id)
                .order_by(OrderModel.created_at)
            )

            if symbol:
                query = query.where(OrderModel.symbol == symbol)
            if status:
                query = query.where(OrderModel.status == status.value)
            if limit:
                query = query.limit(limit)

            result = await session.execute(query)
            return [self._order_from_model(o) for o in result.scalars().all()]

    # Position operations
    async def save_position(self, position: PaperPosition, user_id: str = DEFAULT_USER):
        """Save or update a position."""
        await self.save_positions([position], user_id)

    async def save_positions(self, positions: List[PaperPosition], user_id: str = DEFAULT_USER):
        """Save or update several positions in one transaction."""
        async with self.session_maker() as session:
            for position in positions:
                db_position = await session.get(PositionModel, position.id)

                if db_position is None:
                    db_position = PositionModel(
                        id=position.id,
                        user_id=user_id,
                        symbol=position.symbol,
                        side=position.side.value,
                        quantity=position.quantity,
                        entry_price=position.entry_price,
                        opened_at=position.opened_at,
                        linked_tool_id=position.linked_tool_id,
                    )
                    session.add(db_position)

                db_position.stop_loss = position.stop_loss
                db_position.take_profit = position.take_profit
                db_position.closed_at = position.closed_at
                db_position.exit_price = position.exit_price
                db_position.realized_pnl = position.realized_pnl
                db_position.close_reason = (
                    position.close_reason.value if position.close_reason else None
                )

            await session.commit()

    async def get_position(self, position_id: str) -> Optional[PaperPosition]:
        """Get a position by ID."""
        async with self.session_maker() as session:
            db_position = await session.get(PositionModel, position_id)

            if db_position is None:
                return None

            return self._position_from_model(db_position)

    async def get_positions(
        self,
        user_id: str = DEFAULT_USER,
        open_only: bool = False,
    ) -> List[PaperPosition]:
        """Get the user's positions, oldest first."""
        async with self.session_maker() as session:
            query = (
                select(PositionModel)
                .where(PositionModel.user_id == user_id)
                .order_by(PositionModel.opened_at)
            )
            if open_only:
                query = query.where(PositionModel.closed_at.is_(None))

            result = await session.execute(query)
            return [self._position_from_model(p) for p in result.scalars().all()]

    async def get_open_positions(self, user_id: str = DEFAULT_USER) -> List[PaperPosition]:
        """Get all open positions."""
        return await self.get_positions(user_id, open_only=True)

    # Drawing operations
    async def save_drawing(self, drawing: Drawing, user_id: str = DEFAULT_USER):
        """Save or replace a drawing."""
        async with self.session_maker() as session:
            db_drawing = await session.get(DrawingModel, drawing.id)

            if db_drawing is None:
                db_drawing = DrawingModel(
                    id=drawing.id,
                    user_id=user_id,
                    kind=drawing.kind,
                    created_at=datetime.now(timezone.utc),
                )
                session.add(db_drawing)

            is_tool = isinstance(drawing, PositionToolDrawing)
            db_drawing.symbol = drawing.symbol if is_tool else None
            db_drawing.status = drawing.status.value if is_tool else None
            db_drawing.payload = drawing.model_dump(mode="json")
            db_drawing.updated_at = datetime.now(timezone.utc)

            await session.commit()

    async def get_drawings(self, user_id: str = DEFAULT_USER) -> List[Drawing]:
        """Get the user's drawings in the order they were saved."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(DrawingModel)
                .where(DrawingModel.user_id == user_id)
                .order_by(DrawingModel.created_at)
            )
            return [
                _drawing_adapter.validate_python(d.payload) for d in result.scalars().all()
            ]

    async def get_position_tools(
        self,
        user_id: str = DEFAULT_USER,
        status: Optional[PositionToolStatus] = None,
    ) -> List[PositionToolDrawing]:
        """Get the user's position tools, optionally by status."""
        async with self.session_maker() as session:
            query = select(DrawingModel).where(
                DrawingModel.user_id == user_id,
                DrawingModel.kind == "position_tool",
            )
            if status:
                query = query.where(DrawingModel.status == status.value)

            result = await session.execute(query)
            return [
                PositionToolDrawing.model_validate(d.payload) for d in result.scalars().all()
            ]

    async def delete_drawing(self, drawing_id: str) -> bool:
        """Delete a drawing."""
        async with self.session_maker() as session:
            db_drawing = await session.get(DrawingModel, drawing_id)

            if db_drawing is None:
                return False

            await session.delete(db_drawing)
            await session.commit()
            return True

    # Trade operations
    async def save_trade(self, trade: Trade, user_id: str = DEFAULT_USER):
        """Save a journal trade."""
        async with self.session_maker() as session:
            db_trade = await session.get(TradeModel, trade.id)

            if db_trade is None:
                db_trade = TradeModel(id=trade.id, user_id=user_id)
                session.add(db_trade)

            db_trade.position_id = trade.position_id
            db_trade.symbol = trade.symbol
            db_trade.side = trade.side.value
            db_trade.quantity = trade.quantity
            db_trade.entry_price = trade.entry_price
            db_trade.exit_price = trade.exit_price
            db_trade.entry_time = trade.entry_time
            db_trade.exit_time = trade.exit_time
            db_trade.realized_pnl = trade.realized_pnl
            db_trade.realized_pnl_pct = trade.realized_pnl_pct
            db_trade.stop_loss = trade.stop_loss
            db_trade.take_profit = trade.take_profit
            db_trade.close_reason = trade.close_reason.value
            db_trade.linked_tool_id = trade.linked_tool_id
            db_trade.tags = list(trade.tags)
            db_trade.notes = trade.notes

            await session.commit()

    async def get_trades(
        self,
        user_id: str = DEFAULT_USER,
        symbol: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Trade]:
        """Get journal trades ordered by exit time."""
        async with self.session_maker() as session:
            query = (
                select(TradeModel)
                .where(TradeModel.user_id == user_id)
                .order_by(TradeModel.exit_time)
            )
            if symbol:
                query = query.where(TradeModel.symbol == symbol)
            if limit:
                query = query.limit(limit)

            result = await session.execute(query)
            return [self._trade_from_model(t) for t in result.scalars().all()]

    async def clear_trading_state(self, user_id: str = DEFAULT_USER):
        """Delete the user's positions and orders. Journal trades are kept."""
        async with self.session_maker() as session:
            await session.execute(delete(PositionModel).where(PositionModel.user_id == user_id))
            await session.execute(delete(OrderModel).where(OrderModel.user_id == user_id))
            await session.commit()
        logger.info("database.trading_state_cleared", user_id=user_id)

    # Helpers
    def _order_from_model(self, model: OrderModel) -> PaperOrder:
        """Convert DB model to PaperOrder object."""
        return PaperOrder(
            id=model.id,
            symbol=model.symbol,
            side=OrderSide(model.side),
            order_type=OrderType(model.order_type),
            quantity=model.quantity,
            limit_price=model.limit_price,
            status=OrderStatus(model.status),
            filled_price=model.filled_price,
            created_at=_as_utc(model.created_at),
            filled_at=_as_utc(model.filled_at),
        )

    def _position_from_model(self, model: PositionModel) -> PaperPosition:
        """Convert DB model to PaperPosition object."""
        return PaperPosition(
            id=model.id,
            symbol=model.symbol,
            side=OrderSide(model.side),
            quantity=model.quantity,
            entry_price=model.entry_price,
            stop_loss=model.stop_loss,
            take_profit=model.take_profit,
            opened_at=_as_utc(model.opened_at),
            closed_at=_as_utc(model.closed_at),
            exit_price=model.exit_price,
            realized_pnl=model.realized_pnl,
            close_reason=CloseReason(model.close_reason) if model.close_reason else None,
            linked_tool_id=model.linked_tool_id,
        )

    def _trade_from_model(self, model: TradeModel) -> Trade:
        """Convert DB model to Trade object."""
        return Trade(
            id=model.id,
            position_id=model.position_id,
            symbol=model.symbol,
            side=OrderSide(model.side),
            quantity=model.quantity,
            entry_price=model.entry_price,
            exit_price=model.exit_price,
            entry_time=_as_utc(model.entry_time),
            exit_time=_as_utc(model.exit_time),
            realized_pnl=model.realized_pnl,
            realized_pnl_pct=model.realized_pnl_pct,
            stop_loss=model.stop_loss,
            take_profit=model.take_profit,
            close_reason=CloseReason(model.close_reason) if model.close_reason else CloseReason.MANUAL,
            linked_tool_id=model.linked_tool_id,
            tags=model.tags or [],
            notes=model.notes or "",
        )
