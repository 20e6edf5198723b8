"""
Order submission adapter.

Abstracts the exchange behind OrderSubmitter so the live runner can be tested
with a mock. ClobOrderSubmitter talks to the Polymarket CLOB through
py-clob-client, which is imported lazily: importing this module never pulls
in the web3 stack.

Failures are classified:
- SubmissionRejected: the exchange definitely did not take the order
- SubmissionOutcomeUnknown: the result could not be observed (timeout,
  connection dropped after sending, gateway errors)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from polycopy.config import ApiEndpoints
from polycopy.errors import SubmissionOutcomeUnknown, SubmissionRejected
from polycopy.models import Side

logger = logging.getLogger(__name__)

# HTTP statuses where the order may have reached the matching engine
_INDETERMINATE_STATUSES = {502, 503, 504}


@dataclass(frozen=True, slots=True)
class OrderConfirmation:
    """Exchange acknowledgement of a submitted order."""

    order_id: str
    status: Optional[str] = None


class OrderSubmitter(ABC):
    """
    Abstract order submitter.

    One instance is bound to one authenticated account session.
    """

    @abstractmethod
    async def submit_market_order(
        self, token_id: str, side: Side, amount: Decimal
    ) -> OrderConfirmation:
        """
        Submit a market order for `amount` USDC notional.

        Raises:
            SubmissionRejected: order definitely not placed
            SubmissionOutcomeUnknown: order may or may not have been placed
        """
        pass

    @abstractmethod
    async def find_fill_since(self, token_id: str, since: int) -> Optional[str]:
        """
        Look for a fill of ours on `token_id` at or after unix time `since`.

        Used to reconcile unknown outcomes.

        Returns:
            Order ID of the fill, or None
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return submitter name for logging."""
        pass


def classify_post_error(exc: Exception) -> Exception:
    """Map a post_order failure onto the submission taxonomy."""
    from py_clob_client.exceptions import PolyApiException

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return SubmissionOutcomeUnknown(f"Order post interrupted: {exc}")

    # status_code is None when no HTTP response arrived
    if isinstance(exc, PolyApiException):
        status = getattr(exc, "status_code", None)
        if status is None or status in _INDETERMINATE_STATUSES:
            return SubmissionOutcomeUnknown(f"Order post indeterminate (status={status}): {exc}")
        return SubmissionRejected(f"Order rejected (status={status}): {exc}")

    return SubmissionRejected(f"Order post failed: {exc}")


def create_clob_client(private_key: str, api: ApiEndpoints) -> Any:
    """
    Authenticated ClobClient for `private_key`, with API creds created or derived.

    Blocking (network). Call through asyncio.to_thread from async code.
    """
    from py_clob_client.client import ClobClient

    client = ClobClient(
        api.clob_host,
        key=private_key,
        chain_id=api.chain_id,
        signature_type=api.signature_type,
    )
    client.set_api_creds(client.create_or_derive_api_creds())
    return client


class ClobOrderSubmitter(OrderSubmitter):
    """
    Live submitter for one account on the Polymarket CLOB.

    py-clob-client is synchronous; calls run in a worker thread and are
    bounded by timeout_seconds. A timed-out post is an unknown outcome.
    """

    def __init__(self, client: Any, timeout_seconds: float = 30.0):
        """
        Args:
            client: Authenticated py_clob_client ClobClient
            timeout_seconds: Upper bound for one submission
        """
        self.client = client
        self.timeout_seconds = timeout_seconds

    @classmethod
    def connect(
        cls, private_key: str, api: ApiEndpoints, timeout_seconds: float = 30.0
    ) -> "ClobOrderSubmitter":
        """
        Build a client for `private_key` and create or derive its API creds.

        Blocking (network). Call through asyncio.to_thread from async code.
        """
        client = create_clob_client(private_key, api)
        logger.info(f"CLOB session ready for {client.get_address()}")
        return cls(client, timeout_seconds)

    async def submit_market_order(
        self, token_id: str, side: Side, amount: Decimal
    ) -> OrderConfirmation:
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._post_market_order, token_id, side, amount),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise SubmissionOutcomeUnknown(
                f"Order post timed out after {self.timeout_seconds}s"
            ) from e

        if not isinstance(response, dict):
            raise SubmissionRejected(f"Unexpected response: {response}")

        if response.get("success") is False or response.get("errorMsg"):
            raise SubmissionRejected(
                f"Order rejected: {response.get('errorMsg') or response}"
            )

        order_id = response.get("orderID") or response.get("order_id")
        if not order_id:
            raise SubmissionRejected(f"No order ID in response: {response}")

        return OrderConfirmation(order_id=order_id, status=response.get("status"))

    def _post_market_order(self, token_id: str, side: Side, amount: Decimal) -> Any:
        from py_clob_client.clob_types import MarketOrderArgs, OrderType

        order_args = MarketOrderArgs(
            token_id=token_id,
            amount=float(amount),
            side=side.value,
        )

        # Signing failures (no liquidity to price against, bad token) never reach the exchange
        try:
            signed_order = self.client.create_market_order(order_args)
        except Exception as e:
            raise SubmissionRejected(f"Could not build order: {e}") from e

        try:
            return self.client.post_order(signed_order, OrderType.FOK)
        except Exception as e:
            raise classify_post_error(e) from e

    async def find_fill_since(self, token_id: str, since: int) -> Optional[str]:
        from py_clob_client.clob_types import TradeParams

        trades = await asyncio.wait_for(
            asyncio.to_thread(
                self.client.get_trades, TradeParams(asset_id=token_id, after=since)
            ),
            timeout=self.timeout_seconds,
        )
        for trade in trades or []:
            if trade.get("side", "").upper() == Side.BUY.value:
                return trade.get("taker_order_id") or trade.get("id")
        return None

    def get_name(self) -> str:
        return "ClobOrderSubmitter"
