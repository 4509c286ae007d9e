"""
Ledger query helpers: trade classification and aggregates.
"""

from typing import Any, Iterable

from config.constants import TradeType, Verdict
from core.domain.ledger import LedgerEntry

_SCALP_TIMEFRAMES = frozenset({"3", "5"})
_DAY_TIMEFRAMES = frozenset({"15", "30", "60"})


def classify_trade_type(timeframe: str) -> TradeType:
    """3/5 minute signals are scalps, 15-60 minute day trades, the rest swings."""
    tf = str(timeframe)
    if tf in _SCALP_TIMEFRAMES:
        return TradeType.SCALP
    if tf in _DAY_TIMEFRAMES:
        return TradeType.DAY
    return TradeType.SWING


def calculate_aggregates(entries: Iterable[LedgerEntry]) -> dict[str, Any]:
    """
    Summary statistics over a set of ledger entries.

    Win rate counts closed trades only; a trade with pnl_net > 0 is a win
    and anything else is a loss.
    """
    total = 0
    by_decision = {verdict.value: 0 for verdict in Verdict}
    with_exit = 0
    with_hypothetical = 0
    confluence_sum = 0.0
    total_pnl = 0.0
    wins = 0
    losses = 0

    for entry in entries:
        total += 1
        by_decision[entry.decision.value] += 1
        confluence_sum += entry.confluence_score
        if entry.hypothetical is not None:
            with_hypothetical += 1
        if entry.exit is not None:
            with_exit += 1
            total_pnl += entry.exit.pnl_net
            if entry.exit.pnl_net > 0:
                wins += 1
            else:
                losses += 1

    return {
        "total": total,
        "by_decision": by_decision,
        "with_exit": with_exit,
        "with_hypothetical": with_hypothetical,
        "avg_confluence": confluence_sum / total if total else 0.0,
        "total_pnl": round(total_pnl, 2),
        "wins": wins,
        "losses": losses,
        "win_rate": wins / with_exit if with_exit else 0.0,
    }
