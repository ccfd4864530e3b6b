"""
Trade journal analytics.

Pure functions over journal trades: win rate, PnL aggregates, profit
factor, equity curve and drawdown, per-symbol breakdowns. Money values
stay Decimal; the equity-curve DataFrame and percentages are float.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict

from tradejournal.core.models import Trade, TradeOutcome

INFINITY = Decimal("Infinity")


class TradeCountStats(BaseModel):
    """Trade counts by outcome."""
    model_config = ConfigDict(frozen=True)

    total: int = 0
    wins: int = 0
    losses: int = 0
    breakeven: int = 0


class EquityPoint(BaseModel):
    """Cumulative PnL after one trade closes."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    equity: Decimal
    pnl: Decimal


class TradeStatistics(BaseModel):
    """Summary of a set of journal trades."""
    model_config = ConfigDict(frozen=True)

    counts: TradeCountStats
    win_rate: float
    total_pnl: Decimal
    average_pnl: Decimal
    average_win: Decimal
    average_loss: Decimal
    largest_win: Decimal
    largest_loss: Decimal
    profit_factor: float
    risk_reward_ratio: float
    max_drawdown: Decimal
    max_drawdown_pct: float


def _wins(trades: Sequence[Trade]) -> List[Trade]:
    return [t for t in trades if t.outcome == TradeOutcome.WIN]


def _losses(trades: Sequence[Trade]) -> List[Trade]:
    return [t for t in trades if t.outcome == TradeOutcome.LOSS]


def _mean(values: List[Decimal]) -> Decimal:
    if not values:
        return Decimal("0")
    return sum(values, Decimal("0")) / len(values)


def win_rate(trades: Sequence[Trade]) -> float:
    """Percentage (0-100) of trades that won."""
    if not trades:
        return 0.0
    return len(_wins(trades)) / len(trades) * 100


def total_pnl(trades: Sequence[Trade]) -> Decimal:
    return sum((t.realized_pnl for t in trades), Decimal("0"))


def average_pnl(trades: Sequence[Trade]) -> Decimal:
    return _mean([t.realized_pnl for t in trades])


def average_win(trades: Sequence[Trade]) -> Decimal:
    return _mean([t.realized_pnl for t in _wins(trades)])


def average_loss(trades: Sequence[Trade]) -> Decimal:
    """Mean losing PnL (a negative number, or 0 without losses)."""
    return _mean([t.realized_pnl for t in _losses(trades)])


def profit_factor(trades: Sequence[Trade]) -> Decimal:
    """
    Gross profit / gross loss.

    Infinity when there are wins but no losses, 0 with no wins.
    """
    gross_profit = sum((t.realized_pnl for t in _wins(trades)), Decimal("0"))
    gross_loss = sum((abs(t.realized_pnl) for t in _losses(trades)), Decimal("0"))
    if gross_loss == 0:
        return INFINITY if gross_profit > 0 else Decimal("0")
    return gross_profit / gross_loss


def risk_reward_ratio(trades: Sequence[Trade]) -> Decimal:
    """Average win / |average loss|, with the same edge cases as profit_factor."""
    avg_win = average_win(trades)
    avg_loss = abs(average_loss(trades))
    if avg_loss == 0:
        return INFINITY if avg_win > 0 else Decimal("0")
    return avg_win / avg_loss


def largest_win(trades: Sequence[Trade]) -> Decimal:
    wins = _wins(trades)
    return max(t.realized_pnl for t in wins) if wins else Decimal("0")


def largest_loss(trades: Sequence[Trade]) -> Decimal:
    losses = _losses(trades)
    return min(t.realized_pnl for t in losses) if losses else Decimal("0")


def trade_count_stats(trades: Sequence[Trade]) -> TradeCountStats:
    return TradeCountStats(
        total=len(trades),
        wins=len(_wins(trades)),
        losses=len(_losses(trades)),
        breakeven=sum(1 for t in trades if t.outcome == TradeOutcome.BREAKEVEN),
    )


def equity_curve(
    trades: Sequence[Trade],
    starting_balance: Decimal = Decimal("0"),
) -> List[EquityPoint]:
    """Cumulative PnL ordered by exit time."""
    points = []
    equity = starting_balance
    for trade in sorted(trades, key=lambda t: t.exit_time):
        equity += trade.realized_pnl
        points.append(
            EquityPoint(timestamp=trade.exit_time, equity=equity, pnl=trade.realized_pnl)
        )
    return points


def equity_curve_frame(
    trades: Sequence[Trade],
    starting_balance: Decimal = Decimal("0"),
) -> pd.DataFrame:
    """
    Equity curve as a DataFrame with running peak and drawdown.

    Columns: timestamp, pnl, equity, peak, drawdown, drawdown_pct.
    The peak starts at the starting balance. drawdown is equity - peak
    (<= 0); drawdown_pct is relative to the peak and 0 while the peak is
    not positive.
    """
    columns = ["timestamp", "pnl", "equity", "peak", "drawdown", "drawdown_pct"]
    points = equity_curve(trades, starting_balance)
    if not points:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(
        [
            {"timestamp": p.timestamp, "pnl": float(p.pnl), "equity": float(p.equity)}
            for p in points
        ]
    )
    df["peak"] = df["equity"].cummax().clip(lower=float(starting_balance))
    df["drawdown"] = df["equity"] - df["peak"]
    df["drawdown_pct"] = np.where(
        df["peak"] > 0, df["drawdown"] / df["peak"].where(df["peak"] > 0, 1) * 100, 0.0
    )
    return df[columns]


def max_drawdown(
    trades: Sequence[Trade],
    starting_balance: Decimal = Decimal("0"),
) -> Decimal:
    """Largest peak-to-trough fall of the equity curve (<= 0)."""
    peak = starting_balance
    worst = Decimal("0")
    for point in equity_curve(trades, starting_balance):
        peak = max(peak, point.equity)
        worst = min(worst, point.equity - peak)
    return worst


def pnl_by_symbol(trades: Sequence[Trade]) -> Dict[str, Decimal]:
    """Total PnL per upper-cased symbol."""
    result: Dict[str, Decimal] = {}
    for trade in trades:
        symbol = trade.symbol.upper()
        result[symbol] = result.get(symbol, Decimal("0")) + trade.realized_pnl
    return result


def trade_count_by_symbol(trades: Sequence[Trade]) -> Dict[str, int]:
    """Number of trades per upper-cased symbol."""
    result: Dict[str, int] = {}
    for trade in trades:
        symbol = trade.symbol.upper()
        result[symbol] = result.get(symbol, 0) + 1
    return result


def summarize(
    trades: Sequence[Trade],
    starting_balance: Decimal = Decimal("0"),
) -> TradeStatistics:
    """All statistics for a set of trades."""
    frame = equity_curve_frame(trades, starting_balance)
    dd_pct = float(frame["drawdown_pct"].min()) if not frame.empty else 0.0
    return TradeStatistics(
        counts=trade_count_stats(trades),
        win_rate=win_rate(trades),
        total_pnl=total_pnl(trades),
        average_pnl=average_pnl(trades),
        average_win=average_win(trades),
        average_loss=average_loss(trades),
        largest_win=largest_win(trades),
        largest_loss=largest_loss(trades),
        profit_factor=float(profit_factor(trades)),
        risk_reward_ratio=float(risk_reward_ratio(trades)),
        max_drawdown=max_drawdown(trades, starting_balance),
        max_drawdown_pct=dd_pct,
    )
