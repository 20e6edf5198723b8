"""
Copy sizing engine.

Maps an observed trade + account risk limits + remaining budget to a copy
notional, or a skip reason. Shared by the simulation and live runners, so it
must stay pure: no I/O, no global state.

    original = size * price
    desired  = original * copy_percentage
    notional = min(desired, max_trade_size, budget_remaining)
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from polycopy.models import RiskConfig, Side, Trade

ZERO = Decimal("0")


class SkipReason(Enum):
    """Reasons a trade is not copied. Not errors."""

    NOT_BUY = "not_buy"
    BUDGET_EXHAUSTED = "budget_exhausted"
    ALREADY_COPIED = "already_copied"


@dataclass(frozen=True, slots=True)
class SizingResult:
    """Notional sizing outcome."""

    original_notional: Decimal
    desired_notional: Decimal
    notional: Decimal
    skip_reason: Optional[SkipReason] = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None


@dataclass(frozen=True, slots=True)
class ShareSizingResult:
    """Share-based sizing outcome, used by the simulation for PnL tracking."""

    original_notional: Decimal
    desired_notional: Decimal
    desired_shares: Decimal
    copied_shares: Decimal
    cost: Decimal
    skip_reason: Optional[SkipReason] = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None


def size(trade: Trade, risk: RiskConfig, budget_remaining: Decimal) -> SizingResult:
    """
    Size a copy of `trade` in USDC notional.

    Sells are observed but never mirrored (there is no position to unwind).

    Returns:
        SizingResult; notional is 0 whenever skip_reason is set
    """
    original = trade.size * trade.price
    desired = original * risk.copy_percentage

    if trade.side != Side.BUY:
        return SizingResult(original, desired, ZERO, SkipReason.NOT_BUY)

    notional = min(desired, risk.max_trade_size, budget_remaining)
    if notional <= ZERO:
        return SizingResult(original, desired, ZERO, SkipReason.BUDGET_EXHAUSTED)

    return SizingResult(original, desired, notional)


def size_shares(
    trade: Trade, risk: RiskConfig, budget_remaining: Decimal
) -> ShareSizingResult:
    """
    Size a copy of `trade` in shares.

    copied_shares = min(desired_shares, max_trade_size / price, budget / price).
    The cap is applied on the notional side and converted back, so cost always
    equals size(...).notional exactly.
    """
    result = size(trade, risk, budget_remaining)
    desired_shares = trade.size * risk.copy_percentage

    if result.skipped:
        return ShareSizingResult(
            original_notional=result.original_notional,
            desired_notional=result.desired_notional,
            desired_shares=desired_shares,
            copied_shares=ZERO,
            cost=ZERO,
            skip_reason=result.skip_reason,
        )

    return ShareSizingResult(
        original_notional=result.original_notional,
        desired_notional=result.desired_notional,
        desired_shares=desired_shares,
        copied_shares=result.notional / trade.price,
        cost=result.notional,
    )
