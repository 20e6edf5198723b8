"""
Trade, Market and account schemas.

Trade and Market are parsed from the Polymarket Data / Gamma APIs and are
immutable once observed. ManagedAccount rows come from the account store.
"""

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Side(str, Enum):
    """Trade side: BUY or SELL"""

    BUY = "BUY"
    SELL = "SELL"


class Trade(BaseModel):
    """
    Executed fill of the observed trader.

    Identity is transaction_hash. Field aliases match the Data API payload.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    asset_id: str = Field(..., alias="asset", description="CLOB token id")
    condition_id: str = Field(..., alias="conditionId")
    outcome_index: int = Field(0, alias="outcomeIndex", ge=0)
    side: Side
    price: Decimal = Field(..., gt=0)
    size: Decimal = Field(..., gt=0)
    timestamp: int = Field(..., description="Unix seconds")
    transaction_hash: str = Field(..., alias="transactionHash", min_length=1)
    outcome: Optional[str] = None
    title: Optional[str] = None

    @field_validator("side", mode="before")
    @classmethod
    def normalize_side(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("price", "size", mode="before")
    @classmethod
    def parse_decimal(cls, v):
        # Floats go through str() so 0.4 stays 0.4
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @property
    def notional(self) -> Decimal:
        """USDC value of the fill (size * price)."""
        return self.size * self.price


def _finite_decimal(v) -> Optional[Decimal]:
    """Parse a price; anything missing, unparseable or non-finite becomes None."""
    if v is None or v == "":
        return None
    try:
        d = Decimal(str(v))
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


class Market(BaseModel):
    """
    Gamma market snapshot used for mark-to-market.

    Prices the API leaves blank or garbled are kept as None so the
    mark-price fallback can move on to the next source.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    condition_id: str = Field(..., alias="conditionId")
    question: Optional[str] = None
    best_bid: Optional[Decimal] = Field(None, alias="bestBid")
    last_trade_price: Optional[Decimal] = Field(None, alias="lastTradePrice")
    outcome_prices: List[Optional[Decimal]] = Field(default_factory=list, alias="outcomePrices")

    @field_validator("best_bid", "last_trade_price", mode="before")
    @classmethod
    def parse_optional_decimal(cls, v):
        return _finite_decimal(v)

    @field_validator("outcome_prices", mode="before")
    @classmethod
    def parse_outcome_prices(cls, v):
        # Gamma encodes the vector as a JSON string: '["0.65", "0.35"]'
        if v is None or v == "":
            return []
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except ValueError:
                return []
        if not isinstance(v, list):
            return []
        return [_finite_decimal(p) for p in v]


@dataclass(frozen=True, slots=True)
class RiskConfig:
    """Per-account copy limits."""

    copy_percentage: Decimal
    max_trade_size: Decimal

    def __post_init__(self) -> None:
        if not (Decimal("0") < self.copy_percentage <= Decimal("1")):
            raise ValueError(f"copy_percentage must be in (0, 1]: {self.copy_percentage}")
        if self.max_trade_size <= Decimal("0"):
            raise ValueError(f"max_trade_size must be positive: {self.max_trade_size}")


@dataclass(frozen=True, slots=True)
class ManagedAccount:
    """A wallet the engine trades for, joined with its copy configuration."""

    account_id: int
    address: str
    encrypted_private_key: str
    copy_percentage: Decimal
    max_trade_size: Decimal
    budget_remaining: Decimal

    @property
    def risk(self) -> RiskConfig:
        return RiskConfig(
            copy_percentage=self.copy_percentage,
            max_trade_size=self.max_trade_size,
        )
