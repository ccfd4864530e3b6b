"""
Trade Journal - Main Entry Point

Paper trading engine, technical indicators and chart position tools.

Usage:
    # Check configuration
    python main.py --check

    # Initialize database
    python main.py --init-db

    # Show account status
    python main.py --status

    # Reset the paper account (optionally to a new balance)
    python main.py --reset --balance 25000

    # Print indicator values for a candle CSV
    python main.py --indicators data/AAPL_1h.csv

    # Replay a candle CSV through the engine, opening a long tool at the first bar
    python main.py --replay data/AAPL_1h.csv --symbol AAPL --long
"""

import argparse
import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

import structlog

from tradejournal.core.config import database_config, journal_config
from tradejournal.core.market_data import load_candles_csv
from tradejournal.core.models import LivePrice
from tradejournal.drawing.models import ChartPoint
from tradejournal.indicators.technical import IndicatorConfig, IndicatorType, calculate_all
from tradejournal.services.paper_trading import PaperTradingService
from tradejournal.storage.database import DEFAULT_USER, Database
from tradejournal.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


class TradeJournalApp:
    """
    Command-line application around the paper trading service.

    Owns the database connection and the service for one user.
    """

    def __init__(self, user_id: str = DEFAULT_USER, database_url: Optional[str] = None):
        self.user_id = user_id
        self.database_url = database_url or database_config.database_url
        self.database: Optional[Database] = None
        self.service: Optional[PaperTradingService] = None

    async def initialize(self):
        """Open the database and load the user's paper account."""
        logger.info("app.initializing", user_id=self.user_id)
        self.database = Database(self.database_url)
        self.service = PaperTradingService(self.database, user_id=self.user_id)
        await self.service.initialize()
        logger.info("app.initialized")

    async def shutdown(self):
        if self.service:
            await self.service.close()
        logger.info("app.shutdown_complete")

    async def get_status(self) -> Dict:
        """
        Get account, position and journal status.

        Returns:
            Dictionary containing status information
        """
        engine = self.service.engine
        stats = await self.service.get_statistics()
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": self.user_id,
            "account": {
                "balance": str(engine.balance),
                "initial_balance": str(engine.account.initial_balance),
                "realized_pnl": str(engine.realized_pnl),
                "total_return_pct": f"{engine.account.total_return_percent:.2f}",
            },
            "open_positions": [
                {
                    "id": p.id,
                    "symbol": p.symbol,
                    "side": p.side.value,
                    "quantity": str(p.quantity),
                    "entry_price": str(p.entry_price),
                    "stop_loss": str(p.stop_loss) if p.stop_loss is not None else None,
                    "take_profit": str(p.take_profit) if p.take_profit is not None else None,
                }
                for p in engine.open_positions
            ],
            "position_tools": len(self.service.drawings.position_tools()),
            "journal": {
                "trades": stats.counts.total,
                "win_rate": f"{stats.win_rate:.1f}",
                "total_pnl": str(stats.total_pnl),
                "profit_factor": stats.profit_factor,
            },
        }

    async def replay(self, path: str, symbol: str, is_long: Optional[bool]) -> Dict:
        """
        Feed a candle file's closes to the engine as ticks.

        With is_long set, a position tool is created and activated at the
        first candle's close using the configured default offsets.
        """
        candles = load_candles_csv(path)
        if not candles:
            return {"candles": 0}

        first = candles[0]
        if is_long is not None:
            tool = await self.service.create_position_tool(
                symbol,
                ChartPoint(timestamp=first.timestamp, price=first.close),
                is_long=is_long,
            )
            await self.service.activate_position_tool(tool.id)

        for candle in candles[1:]:
            await self.service.update_price(
                LivePrice(symbol=symbol, price=candle.close, timestamp=candle.timestamp)
            )

        engine = self.service.engine
        return {
            "candles": len(candles),
            "open_positions": len(engine.open_positions),
            "closed_positions": len(engine.closed_positions),
            "balance": str(engine.balance),
            "equity": str(engine.equity()),
        }


def check_configuration() -> Dict:
    """
    Check if configuration is valid.

    Returns:
        Dictionary with validation results
    """
    validation = journal_config.validate_configuration()
    paper = journal_config.paper_trading
    tool = journal_config.position_tool
    return {
        "valid": validation["valid"],
        "issues": validation["issues"],
        "initial_balance": str(paper.initial_balance),
        "order_quantity": str(paper.default_order_quantity),
        "default_stops": journal_config.has_default_stops,
        "tool_risk_reward": f"{tool.default_sl_percent}% / {tool.default_tp_percent}%",
        "database_url": journal_config.database.database_url,
    }


def print_status(status: Dict):
    """Print formatted status output."""
    print("\n" + "=" * 60)
    print("           TRADE JOURNAL - ACCOUNT STATUS")
    print("=" * 60)

    print(f"\nUser: {status['user_id']}")
    print(f"Timestamp: {status['timestamp']}")

    account = status["account"]
    print("\nAccount:")
    print(f"   Balance: {account['balance']}")
    print(f"   Initial: {account['initial_balance']}")
    print(f"   Realized PnL: {account['realized_pnl']}")
    print(f"   Return: {account['total_return_pct']}%")

    positions = status["open_positions"]
    print(f"\nOpen Positions ({len(positions)}):")
    if positions:
        for pos in positions:
            print(
                f"   - {pos['symbol']} {pos['side']} {pos['quantity']} @ {pos['entry_price']}"
                f" (SL {pos['stop_loss']}, TP {pos['take_profit']})"
            )
    else:
        print("   No open positions")

    print(f"\nPosition Tools: {status['position_tools']}")

    journal = status["journal"]
    print("\nJournal:")
    print(f"   Trades: {journal['trades']}")
    print(f"   Win Rate: {journal['win_rate']}%")
    print(f"   Total PnL: {journal['total_pnl']}")
    print(f"   Profit Factor: {journal['profit_factor']:.2f}")

    print("\n" + "=" * 60)


def print_indicators(path: str):
    """Print the last value of each default indicator plus Bollinger and MACD."""
    candles = load_candles_csv(path)
    if not candles:
        print(f"\n✗ No candles loaded from {path}")
        return

    configs = [c.model_copy(update={"enabled": True}) for c in IndicatorConfig.default_presets()]
    configs.append(IndicatorConfig(id="bb_20", type=IndicatorType.BOLLINGER, period=20, period2=2))
    configs.append(IndicatorConfig(id="macd", type=IndicatorType.MACD, period=12, period2=26))

    results = calculate_all(candles, configs)
    print(f"\n{len(candles)} candles, last close {candles[-1].close}")
    for result in results.values():
        value = result.values[-1] if result.values else None
        text = f"{value:.4f}" if value is not None else "n/a"
        print(f"   {result.config.display_name:<14} {text}")


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Trade Journal - paper trading engine and chart position tools"
    )

    parser.add_argument("--user", default=DEFAULT_USER, help="Journal user key")
    parser.add_argument("--database-url", help="Override DATABASE_URL")

    # Actions
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--init-db", action="store_true", help="Initialize database and exit"
    )
    parser.add_argument(
        "--status", action="store_true", help="Show account status and exit"
    )
    parser.add_argument(
        "--reset", action="store_true", help="Reset the paper account (irreversible)"
    )
    parser.add_argument("--balance", type=Decimal, help="Balance for --reset")
    parser.add_argument("--indicators", metavar="CSV", help="Print indicators for a candle CSV")
    parser.add_argument("--replay", metavar="CSV", help="Replay a candle CSV as price ticks")
    parser.add_argument("--symbol", default="AAPL", help="Symbol for --replay")
    side = parser.add_mutually_exclusive_group()
    side.add_argument("--long", action="store_true", help="Open a long tool at the first bar")
    side.add_argument("--short", action="store_true", help="Open a short tool at the first bar")

    args = parser.parse_args()

    # Setup logging
    setup_logging()

    # Handle --check
    if args.check:
        config_check = check_configuration()
        print("\n" + "=" * 60)
        print("           CONFIGURATION CHECK")
        print("=" * 60)

        if config_check["valid"]:
            print("\n✓ Configuration is valid")
        else:
            print("\n✗ Configuration issues:")
            for issue in config_check["issues"]:
                print(f"   - {issue}")

        print(f"\nInitial Balance: {config_check['initial_balance']}")
        print(f"Order Quantity: {config_check['order_quantity']}")
        print(f"Default SL/TP on buy/sell: {config_check['default_stops']}")
        print(f"Position Tool SL/TP: {config_check['tool_risk_reward']}")
        print(f"Database: {config_check['database_url']}")
        print("\n" + "=" * 60)
        return

    # Handle --indicators (no database needed)
    if args.indicators:
        print_indicators(args.indicators)
        return

    # Handle --init-db
    if args.init_db:
        print("\nInitializing database...")
        db = Database(args.database_url)
        await db.initialize()
        print("✓ Database initialized successfully")
        await db.close()
        return

    app = TradeJournalApp(user_id=args.user, database_url=args.database_url)

    try:
        await app.initialize()

        if args.reset:
            confirm = input("\nType 'RESET' to discard all positions and orders: ")
            if confirm != "RESET":
                print("Aborted.")
                return
            if await app.service.reset_account(args.balance):
                print(f"✓ Account reset to {app.service.engine.balance}")
            else:
                print(f"✗ Reset failed: {app.service.engine.error}")
            return

        if args.replay:
            is_long = True if args.long else False if args.short else None
            summary = await app.replay(args.replay, args.symbol, is_long)
            print(f"\nReplayed {summary['candles']} candles")
            for key, value in summary.items():
                if key != "candles":
                    print(f"   {key}: {value}")

        status = await app.get_status()
        print_status(status)

    except KeyboardInterrupt:
        print("\n\nShutdown requested by user...")
    except Exception as e:
        logger.error("main.error", error=str(e), exc_info=True)
        print(f"\n✗ Fatal error: {e}")
        raise
    finally:
        await app.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
