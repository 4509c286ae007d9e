"""
Tests for ledger trade classification and aggregates.
"""

import pytest

from config.constants import TradeType
from execution.ledger import calculate_aggregates, classify_trade_type
from factories import executed_entry, exit_for, unexecuted_entry


@pytest.mark.parametrize(
    "timeframe,expected",
    [
        ("3", TradeType.SCALP),
        ("5", TradeType.SCALP),
        ("15", TradeType.DAY),
        ("30", TradeType.DAY),
        ("60", TradeType.DAY),
        ("240", TradeType.SWING),
        (240, TradeType.SWING),
    ],
)
def test_classify_trade_type(timeframe, expected):
    assert classify_trade_type(timeframe) == expected


class TestAggregates:
    def test_empty(self):
        stats = calculate_aggregates([])
        assert stats["total"] == 0
        assert stats["avg_confluence"] == 0.0
        assert stats["win_rate"] == 0.0
        assert stats["by_decision"] == {"EXECUTE": 0, "WAIT": 0, "SKIP": 0}

    def test_mixed_entries(self, ledger):
        winner = ledger.append(executed_entry())
        loser = ledger.append(executed_entry(ticker="QQQ"))
        ledger.append(unexecuted_entry())

        win_exit = exit_for(winner.execution, exit_price=winner.execution.entry_price + 5.0)
        loss_exit = exit_for(loser.execution, exit_price=loser.execution.entry_price / 2)
        ledger.update_exit(winner.id, win_exit)
        ledger.update_exit(loser.id, loss_exit)

        entries = ledger.query()
        stats = calculate_aggregates(entries)

        assert stats["total"] == 3
        assert stats["by_decision"] == {"EXECUTE": 2, "WAIT": 1, "SKIP": 0}
        assert stats["with_exit"] == 2
        assert stats["with_hypothetical"] == 1
        assert stats["wins"] == 1
        assert stats["losses"] == 1
        assert stats["win_rate"] == 0.5
        assert stats["total_pnl"] == pytest.approx(win_exit.pnl_net + loss_exit.pnl_net, abs=0.01)
        expected_avg = sum(e.confluence_score for e in entries) / 3
        assert stats["avg_confluence"] == pytest.approx(expected_avg)

    def test_breakeven_counts_as_loss(self, ledger):
        entry = ledger.append(executed_entry())
        # Gross gain exactly covers the round-trip costs
        execution = entry.execution
        scale = execution.filled_contracts * 100
        costs = 2 * execution.commission + execution.spread_cost + execution.slippage
        exit_data = exit_for(execution, exit_price=execution.entry_price + costs / scale)
        ledger.update_exit(entry.id, exit_data)

        stats = calculate_aggregates(ledger.query())
        assert stats["wins"] + stats["losses"] == 1
        assert stats["wins"] == (1 if exit_data.pnl_net > 0 else 0)
