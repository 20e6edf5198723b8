"""Tests for dry-run simulation and mark-to-market PnL."""

import asyncio
import pytest
from decimal import Decimal

from polycopy.config import SimulationConfig
from polycopy.errors import MarketDataError
from polycopy.models import Market, RiskConfig, Trade
from polycopy.simulation import (
    SimulationContext,
    SimulationRunner,
    VirtualPosition,
    mark_to_market,
    resolve_mark_price,
)
from polycopy.sizing import SkipReason, size_shares
from tests.mocks.mock_clob_client import MockMarketData


def run_async(coro):
    """Run async coroutine in sync test."""
    return asyncio.run(coro)


def make_trade(tx, timestamp, side="BUY", size="50", price="0.50", asset="token-yes", condition="cond-1", outcome_index=0):
    return Trade.model_validate({
        "asset": asset,
        "conditionId": condition,
        "outcomeIndex": outcome_index,
        "side": side,
        "size": size,
        "price": price,
        "timestamp": timestamp,
        "transactionHash": tx,
    })


def full_copy_config(budget="100"):
    """Copy 100% with a cap high enough to never bind."""
    return SimulationConfig(
        budget=Decimal(budget),
        copy_percentage=Decimal("1"),
        max_trade_size=Decimal("1000"),
    )


class TestMarkPrice:
    """Mark price fallback precedence."""

    def test_best_bid_wins(self):
        market = Market.model_validate({
            "conditionId": "c", "bestBid": "0.61", "lastTradePrice": "0.62",
            "outcomePrices": '["0.63", "0.37"]',
        })
        assert resolve_mark_price(market, 0) == (Decimal("0.61"), "best_bid")

    def test_falls_back_to_last_trade(self):
        market = Market.model_validate({
            "conditionId": "c", "bestBid": None, "lastTradePrice": 0.62,
            "outcomePrices": '["0.63", "0.37"]',
        })
        assert resolve_mark_price(market, 0) == (Decimal("0.62"), "last_trade_price")

    def test_falls_back_to_outcome_price(self):
        market = Market.model_validate({
            "conditionId": "c", "bestBid": "NaN", "outcomePrices": '["0.63", "0.37"]',
        })
        assert resolve_mark_price(market, 1) == (Decimal("0.37"), "outcome_price")

    def test_unpriced(self):
        market = Market.model_validate({"conditionId": "c", "outcomePrices": "not json"})
        assert resolve_mark_price(market, 0) == (None, None)
        assert resolve_mark_price(None, 0) == (None, None)

    def test_outcome_index_out_of_range(self):
        market = Market.model_validate({"conditionId": "c", "outcomePrices": '["0.5"]'})
        assert resolve_mark_price(market, 3) == (None, None)


class TestMarkToMarket:
    """PnL aggregation."""

    def test_pnl_from_mark(self):
        """50 shares bought for 25, marked at 0.70 -> PnL 10."""
        position = VirtualPosition("token-yes", "cond-1", 0, Decimal("50"), Decimal("25"))
        market = Market.model_validate({"conditionId": "cond-1", "bestBid": "0.70"})

        report = mark_to_market([position], [market])

        assert report.total_cost == Decimal("25")
        assert report.total_value == Decimal("35")
        assert report.unrealized_pnl == Decimal("10")

    def test_mark_at_entry_price_is_zero_pnl(self):
        positions = [
            VirtualPosition("t1", "c1", 0, Decimal("40"), Decimal("12")),
            VirtualPosition("t2", "c2", 1, Decimal("8"), Decimal("6")),
        ]
        markets = [
            Market.model_validate({"conditionId": "c1", "bestBid": str(positions[0].avg_entry_price)}),
            Market.model_validate({"conditionId": "c2", "outcomePrices": ["0.25", str(positions[1].avg_entry_price)]}),
        ]

        report = mark_to_market(positions, markets)

        assert report.unrealized_pnl == Decimal("0")

    def test_capped_fill_marked_at_entry_price_is_zero_pnl(self):
        """Capped share count 10 / 0.3 is inexact; its PnL at entry is still 0."""
        trade = make_trade("0x1", 100, size="100", price="0.3")
        sizing = size_shares(trade, RiskConfig(Decimal("1"), Decimal("10")), Decimal("100"))
        position = VirtualPosition("token-yes", "cond-1", 0)
        position.add_fill(sizing.copied_shares, sizing.cost)
        market = Market.model_validate({"conditionId": "cond-1", "bestBid": str(position.avg_entry_price)})

        report = mark_to_market([position], [market])

        assert sizing.cost == Decimal("10")
        assert report.unrealized_pnl == Decimal("0")
        assert report.to_dict()["unrealizedPnL"] == 0.0
        assert report.to_dict()["positions"][0]["pnl"] == 0.0

    def test_capped_dry_run_at_trade_price_reports_zero_pnl(self):
        market_data = MockMarketData(
            trades=[make_trade("0x1", 100, size="100", price="0.3")],
            markets=[Market.model_validate({"conditionId": "cond-1", "bestBid": "0.3"})],
        )
        config = SimulationConfig(budget=Decimal("100"), copy_percentage=Decimal("1"), max_trade_size=Decimal("10"))

        report = run_async(SimulationRunner(market_data, config).run("0xtrader")).to_dict()

        assert report["summary"]["simulatedSpend"] == 10.0
        assert report["pnl"]["unrealizedPnL"] == 0.0

    def test_unpriced_position_excluded_from_totals(self):
        priced = VirtualPosition("t1", "c1", 0, Decimal("10"), Decimal("5"))
        unpriced = VirtualPosition("t2", "c2", 0, Decimal("10"), Decimal("3"))
        market = Market.model_validate({"conditionId": "c1", "lastTradePrice": "0.6"})

        report = mark_to_market([priced, unpriced], [market])

        assert report.total_cost == Decimal("5")
        assert report.total_value == Decimal("6")
        assert report.unpriced_cost == Decimal("3")

        data = report.to_dict()
        assert data["unpricedPositions"] == 1
        unpriced_row = [p for p in data["positions"] if p["tokenId"] == "t2"][0]
        assert unpriced_row["costBasis"] == 3.0
        assert unpriced_row["markPrice"] is None


class TestSimulationRunner:
    """Replay and end-to-end dry run."""

    def test_replay_sorts_by_timestamp_and_spends_budget(self):
        runner = SimulationRunner(MockMarketData(), full_copy_config(budget="30"))
        trades = [
            make_trade("0x2", 200, size="20", price="0.50"),
            make_trade("0x1", 100, size="40", price="0.50"),
        ]

        ctx = runner.replay(trades)

        assert [e.trade.transaction_hash for e in ctx.entries] == ["0x1", "0x2"]
        assert ctx.entries[0].sizing.cost == Decimal("20")
        assert ctx.entries[1].sizing.cost == Decimal("10")   # Only 10 left
        assert ctx.budget_remaining == Decimal("0")
        assert ctx.total_spend == Decimal("30")

    def test_replay_is_stable_for_equal_timestamps(self):
        runner = SimulationRunner(MockMarketData(), full_copy_config())
        trades = [make_trade(f"0x{i}", 100, size="1") for i in range(5)]

        ctx = runner.replay(trades)

        assert [e.trade.transaction_hash for e in ctx.entries] == [f"0x{i}" for i in range(5)]

    def test_sells_and_exhausted_budget_are_ledger_skips(self):
        runner = SimulationRunner(MockMarketData(), full_copy_config(budget="5"))
        trades = [
            make_trade("0x1", 100, side="SELL"),
            make_trade("0x2", 200, size="10", price="0.50"),
            make_trade("0x3", 300, size="10", price="0.50"),
        ]

        ctx = runner.replay(trades)
        rows = [e.to_dict() for e in ctx.entries]

        assert rows[0]["skipped"] == SkipReason.NOT_BUY.value
        assert "skipped" not in rows[1]
        assert rows[2]["skipped"] == SkipReason.BUDGET_EXHAUSTED.value
        assert rows[2]["budgetBefore"] == rows[2]["budgetAfter"] == 0.0

    def test_positions_aggregate_per_token(self):
        runner = SimulationRunner(MockMarketData(), full_copy_config())
        trades = [
            make_trade("0x1", 100, size="10", price="0.40"),
            make_trade("0x2", 200, size="10", price="0.60"),
        ]

        ctx = runner.replay(trades)
        position = ctx.positions["token-yes"]

        assert position.shares == Decimal("20")
        assert position.cost_basis == Decimal("10")
        assert position.avg_entry_price == Decimal("0.5")

    def test_run_reports_pnl(self):
        """One 50 @ 0.50 fill marked at 0.70 reports PnL 10."""
        market_data = MockMarketData(
            trades=[make_trade("0x1", 100)],
            markets=[Market.model_validate({"conditionId": "cond-1", "bestBid": "0.70", "question": "Will it?"})],
        )
        runner = SimulationRunner(market_data, full_copy_config())

        report = run_async(runner.run("0xtrader")).to_dict()

        assert report["summary"]["initialBudget"] == 100.0
        assert report["summary"]["simulatedSpend"] == 25.0
        assert report["summary"]["budgetRemaining"] == 75.0
        assert report["summary"]["tradesEvaluated"] == 1
        assert report["pnl"]["unrealizedPnL"] == pytest.approx(10.0)
        assert report["pnl"]["positions"][0]["question"] == "Will it?"
        assert market_data.market_fetches == [["cond-1"]]

    def test_run_without_positions_skips_market_fetch(self):
        market_data = MockMarketData(trades=[make_trade("0x1", 100, side="SELL")])
        runner = SimulationRunner(market_data, full_copy_config())

        report = run_async(runner.run("0xtrader")).to_dict()

        assert market_data.market_fetches == []
        assert report["pnl"]["totalCost"] == 0.0

    def test_run_propagates_fetch_failure(self):
        runner = SimulationRunner(MockMarketData(should_fail=True), full_copy_config())

        with pytest.raises(MarketDataError):
            run_async(runner.run("0xtrader"))

    def test_each_run_gets_a_fresh_context(self):
        market_data = MockMarketData(trades=[make_trade("0x1", 100)])
        runner = SimulationRunner(market_data, full_copy_config())

        first = run_async(runner.run("0xtrader"))
        second = run_async(runner.run("0xtrader"))

        assert first.context is not second.context
        assert second.context.budget_remaining == Decimal("75")


class TestSimulationContext:

    def test_skipped_entry_leaves_state_untouched(self):
        ctx = SimulationContext.start(Decimal("10"))
        risk = RiskConfig(copy_percentage=Decimal("1"), max_trade_size=Decimal("10"))
        trade = make_trade("0x1", 1, side="SELL")

        entry = ctx.apply(trade, size_shares(trade, risk, ctx.budget_remaining))

        assert entry.budget_before == entry.budget_after == Decimal("10")
        assert ctx.total_spend == Decimal("0")
        assert ctx.positions == {}
        assert len(ctx.entries) == 1
