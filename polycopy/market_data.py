"""
Polymarket market data client.

Data API (trades):   https://data-api.polymarket.com/trades
Gamma API (markets): https://gamma-api.polymarket.com/markets

Fetch failures raise MarketDataError; callers decide whether that ends a
simulation or just a live tick. No retries here: only order submission is
retried.
"""

import logging
from typing import Iterable, List, Optional

import httpx
from pydantic import ValidationError

from polycopy.config import ApiEndpoints
from polycopy.errors import MarketDataError
from polycopy.models import Market, Trade

logger = logging.getLogger(__name__)


class MarketDataClient:
    """Async client for trader fills and market snapshots."""

    def __init__(
        self,
        api: Optional[ApiEndpoints] = None,
        page_limit: int = 50,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api: Endpoint configuration
            page_limit: Number of most-recent fills per fetch
            client: Injected httpx client (tests); owned otherwise
        """
        self.api = api or ApiEndpoints()
        self.page_limit = page_limit
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self.api.request_timeout_seconds,
            headers={"User-Agent": "polycopy/1.0"},
        )

    async def __aenter__(self) -> "MarketDataClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, url: str, params) -> list:
        try:
            resp = await self._client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise MarketDataError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise MarketDataError(f"GET {url} returned invalid JSON: {e}") from e

        if not isinstance(data, list):
            raise MarketDataError(f"GET {url} returned {type(data).__name__}, expected list")
        return data

    async def fetch_trades(self, address: str) -> List[Trade]:
        """
        Most recent taker fills of `address`.

        Endpoint: GET /trades?user=&limit=&takerOnly=true
        Rows that fail validation are logged and dropped.
        """
        url = f"{self.api.data_api}/trades"
        params = {"user": address, "limit": self.page_limit, "takerOnly": "true"}
        rows = await self._get_json(url, params)

        trades = []
        for row in rows:
            try:
                trades.append(Trade.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    f"Dropping malformed trade {row.get('transactionHash', '?') if isinstance(row, dict) else row}: {e}"
                )

        logger.debug(f"Fetched {len(trades)} trades for {address}")
        return trades

    async def fetch_markets(self, condition_ids: Iterable[str]) -> List[Market]:
        """
        Market snapshots for exactly `condition_ids`, in one batched call.

        Endpoint: GET /markets?condition_ids=..&condition_ids=..
        """
        ids = list(dict.fromkeys(condition_ids))
        if not ids:
            return []

        url = f"{self.api.gamma_api}/markets"
        params = [("condition_ids", cid) for cid in ids]
        params.append(("limit", str(len(ids))))
        rows = await self._get_json(url, params)

        markets = []
        for row in rows:
            try:
                markets.append(Market.model_validate(row))
            except (ValidationError, ValueError) as e:
                logger.warning(f"Dropping malformed market snapshot: {e}")
        return markets
