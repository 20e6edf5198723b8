"""
Dry-run simulation.

Replays the observed trader's recent fills against one virtual budget using
the share-based sizing engine, then marks the resulting virtual positions to
market:

    mark  = best bid -> last trade price -> outcome_prices[outcome_index]
    value = shares * mark
    pnl   = value - cost_basis

Nothing here touches durable storage. All state lives in a SimulationContext
owned by one run.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from polycopy.config import SimulationConfig
from polycopy.market_data import MarketDataClient
from polycopy.models import Market, RiskConfig, Trade
from polycopy.sizing import ShareSizingResult, size_shares

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Valuation precision in USDC
VALUE_PRECISION = Decimal("1e-12")


@dataclass
class VirtualPosition:
    """Aggregated simulated holding of one outcome token."""

    token_id: str
    condition_id: str
    outcome_index: int
    shares: Decimal = ZERO
    cost_basis: Decimal = ZERO

    @property
    def avg_entry_price(self) -> Decimal:
        if self.shares == ZERO:
            return ZERO
        return self.cost_basis / self.shares

    def add_fill(self, shares: Decimal, cost: Decimal) -> None:
        self.shares += shares
        self.cost_basis += cost


@dataclass(frozen=True)
class LedgerEntry:
    """One evaluated trade in the simulation report."""

    trade: Trade
    sizing: ShareSizingResult
    budget_before: Decimal
    budget_after: Decimal

    def to_dict(self) -> Dict[str, Any]:
        entry = {
            "txHash": self.trade.transaction_hash,
            "conditionId": self.trade.condition_id,
            "outcome": self.trade.outcome,
            "side": self.trade.side.value,
            "price": float(self.trade.price),
            "size": float(self.trade.size),
            "originalNotional": float(self.sizing.original_notional),
            "desiredNotional": float(self.sizing.desired_notional),
            "copiedNotional": float(self.sizing.cost),
            "desiredShares": float(self.sizing.desired_shares),
            "copiedShares": float(self.sizing.copied_shares),
            "budgetBefore": float(self.budget_before),
            "budgetAfter": float(self.budget_after),
        }
        if self.sizing.skip_reason is not None:
            entry["skipped"] = self.sizing.skip_reason.value
        return entry


@dataclass
class SimulationContext:
    """
    Mutable state of one simulation run.

    Created per run and never shared.
    """

    initial_budget: Decimal
    budget_remaining: Decimal
    total_spend: Decimal = ZERO
    entries: List[LedgerEntry] = field(default_factory=list)
    positions: Dict[str, VirtualPosition] = field(default_factory=dict)

    @classmethod
    def start(cls, budget: Decimal) -> "SimulationContext":
        return cls(initial_budget=budget, budget_remaining=budget)

    def apply(self, trade: Trade, sizing: ShareSizingResult) -> LedgerEntry:
        """Record one sizing decision; spend and open a position if copied."""
        budget_before = self.budget_remaining

        if not sizing.skipped:
            self.budget_remaining -= sizing.cost
            self.total_spend += sizing.cost

            position = self.positions.get(trade.asset_id)
            if position is None:
                position = VirtualPosition(
                    token_id=trade.asset_id,
                    condition_id=trade.condition_id,
                    outcome_index=trade.outcome_index,
                )
                self.positions[trade.asset_id] = position
            position.add_fill(sizing.copied_shares, sizing.cost)

        entry = LedgerEntry(
            trade=trade,
            sizing=sizing,
            budget_before=budget_before,
            budget_after=self.budget_remaining,
        )
        self.entries.append(entry)
        return entry


@dataclass(frozen=True)
class PositionMark:
    """A virtual position valued at a mark price (None when unpriced)."""

    position: VirtualPosition
    mark_price: Optional[Decimal]
    price_source: Optional[str]
    question: Optional[str] = None

    @property
    def priced(self) -> bool:
        return self.mark_price is not None

    @property
    def value(self) -> Optional[Decimal]:
        if self.mark_price is None:
            return None
        # Capped fills hold notional / price shares, an inexact quotient
        return (self.position.shares * self.mark_price).quantize(VALUE_PRECISION)

    @property
    def pnl(self) -> Optional[Decimal]:
        value = self.value
        if value is None:
            return None
        return value - self.position.cost_basis

    def to_dict(self) -> Dict[str, Any]:
        p = self.position
        return {
            "tokenId": p.token_id,
            "conditionId": p.condition_id,
            "outcomeIndex": p.outcome_index,
            "question": self.question,
            "shares": float(p.shares),
            "costBasis": float(p.cost_basis),
            "avgEntryPrice": float(p.avg_entry_price),
            "markPrice": float(self.mark_price) if self.mark_price is not None else None,
            "priceSource": self.price_source,
            "value": float(self.value) if self.value is not None else None,
            "pnl": float(self.pnl) if self.pnl is not None else None,
        }


@dataclass(frozen=True)
class PnLReport:
    """Mark-to-market breakdown. Totals cover priced positions only."""

    marks: List[PositionMark]
    total_cost: Decimal
    total_value: Decimal
    unpriced_cost: Decimal

    @property
    def unrealized_pnl(self) -> Decimal:
        return self.total_value - self.total_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positions": [m.to_dict() for m in self.marks],
            "totalCost": float(self.total_cost),
            "totalValue": float(self.total_value),
            "unrealizedPnL": float(self.unrealized_pnl),
            "unpricedPositions": sum(1 for m in self.marks if not m.priced),
            "unpricedCost": float(self.unpriced_cost),
        }


def resolve_mark_price(
    market: Optional[Market], outcome_index: int
) -> Tuple[Optional[Decimal], Optional[str]]:
    """
    Mark price for an outcome with fallback precedence.

    Returns:
        (price, source) where source is "best_bid", "last_trade_price" or
        "outcome_price"; (None, None) when nothing finite is available
    """
    if market is None:
        return None, None

    candidates = [
        ("best_bid", market.best_bid),
        ("last_trade_price", market.last_trade_price),
    ]
    if 0 <= outcome_index < len(market.outcome_prices):
        candidates.append(("outcome_price", market.outcome_prices[outcome_index]))

    for source, price in candidates:
        if price is not None and price.is_finite():
            return price, source
    return None, None


def mark_to_market(
    positions: Iterable[VirtualPosition], markets: Iterable[Market]
) -> PnLReport:
    """Value `positions` against `markets`. Pure."""
    by_condition = {m.condition_id: m for m in markets}

    marks = []
    total_cost = ZERO
    total_value = ZERO
    unpriced_cost = ZERO

    for position in positions:
        market = by_condition.get(position.condition_id)
        price, source = resolve_mark_price(market, position.outcome_index)
        mark = PositionMark(
            position=position,
            mark_price=price,
            price_source=source,
            question=market.question if market else None,
        )
        marks.append(mark)

        if mark.priced:
            total_cost += position.cost_basis
            total_value += mark.value
        else:
            unpriced_cost += position.cost_basis
            logger.warning(
                f"No finite mark price for {position.token_id} ({position.condition_id}); excluded from PnL"
            )

    return PnLReport(
        marks=marks,
        total_cost=total_cost,
        total_value=total_value,
        unpriced_cost=unpriced_cost,
    )


@dataclass(frozen=True)
class SimulationReport:
    """Final dry-run output."""

    context: SimulationContext
    pnl: PnLReport

    def to_dict(self) -> Dict[str, Any]:
        ctx = self.context
        return {
            "summary": {
                "initialBudget": float(ctx.initial_budget),
                "simulatedSpend": float(ctx.total_spend),
                "budgetRemaining": float(ctx.budget_remaining),
                "tradesEvaluated": len(ctx.entries),
                "tradesCopied": sum(1 for e in ctx.entries if not e.sizing.skipped),
            },
            "trades": [e.to_dict() for e in ctx.entries],
            "pnl": self.pnl.to_dict(),
        }


class SimulationRunner:
    """
    Offline evaluation of copying one trader with one virtual budget.
    """

    def __init__(self, market_data: MarketDataClient, config: SimulationConfig):
        """
        Args:
            market_data: Trade and market snapshot source
            config: Budget and risk parameters applied to every trade
        """
        self.market_data = market_data
        self.config = config
        self.risk = RiskConfig(
            copy_percentage=config.copy_percentage,
            max_trade_size=config.max_trade_size,
        )

    def replay(self, trades: Iterable[Trade]) -> SimulationContext:
        """
        Fold trades (oldest first, stable for equal timestamps) into a new context.
        """
        ctx = SimulationContext.start(self.config.budget)

        for trade in sorted(trades, key=lambda t: t.timestamp):
            sizing = size_shares(trade, self.risk, ctx.budget_remaining)
            entry = ctx.apply(trade, sizing)

            if sizing.skipped:
                logger.info(
                    f"SKIP {trade.transaction_hash[:10]} {trade.side.value} "
                    f"reason={sizing.skip_reason.value}"
                )
            else:
                logger.info(
                    f"SIM {trade.transaction_hash[:10]} BUY {sizing.copied_shares:.4f} "
                    f"@ {trade.price} = ${sizing.cost:.2f} | budget ${entry.budget_after:.2f}"
                )

        return ctx

    async def run(self, trader_address: str) -> SimulationReport:
        """
        Fetch, replay and mark to market.

        Raises:
            MarketDataError: trade or market fetch failed
        """
        logger.info(f"Simulating copy of {trader_address} with budget ${self.config.budget}")

        trades = await self.market_data.fetch_trades(trader_address)
        ctx = self.replay(trades)

        positions = list(ctx.positions.values())
        markets = []
        if positions:
            markets = await self.market_data.fetch_markets(
                p.condition_id for p in positions
            )

        pnl = mark_to_market(positions, markets)
        logger.info(
            f"Simulation done: {len(ctx.entries)} trades, spend ${ctx.total_spend:.2f}, "
            f"unrealized PnL ${pnl.unrealized_pnl:.2f}"
        )
        return SimulationReport(context=ctx, pnl=pnl)
