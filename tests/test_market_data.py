"""Tests for the market data client (HTTP mocked with httpx.MockTransport)."""

import asyncio
import json
import pytest
from decimal import Decimal

import httpx

from polycopy.config import ApiEndpoints
from polycopy.errors import MarketDataError
from polycopy.market_data import MarketDataClient
from polycopy.models import Side

API = ApiEndpoints(data_api="http://data.test", gamma_api="http://gamma.test")

TRADE_ROW = {
    "proxyWallet": "0xtrader",
    "side": "BUY",
    "asset": "token-1",
    "conditionId": "cond-1",
    "size": 100,
    "price": 0.4,
    "timestamp": 1700000010,
    "title": "Will it rain?",
    "outcome": "Yes",
    "outcomeIndex": 0,
    "transactionHash": "0x1",
}


def fetch(handler, method, *args, page_limit=50):
    """Run one client call against `handler`."""
    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with MarketDataClient(API, page_limit=page_limit, client=client) as market_data:
            result = await getattr(market_data, method)(*args)
        await client.aclose()
        return result

    return asyncio.run(scenario())


class TestFetchTrades:

    def test_query_and_parse(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[TRADE_ROW])

        trades = fetch(handler, "fetch_trades", "0xtrader", page_limit=25)

        request = seen[0]
        assert request.url.path == "/trades"
        assert request.url.params["user"] == "0xtrader"
        assert request.url.params["limit"] == "25"
        assert request.url.params["takerOnly"] == "true"

        trade = trades[0]
        assert trade.asset_id == "token-1"
        assert trade.side == Side.BUY
        assert trade.price == Decimal("0.4")
        assert trade.size == Decimal("100")
        assert trade.notional == Decimal("40.0")
        assert trade.transaction_hash == "0x1"

    def test_malformed_rows_dropped(self):
        bad_price = dict(TRADE_ROW, transactionHash="0x2", price=0)
        no_hash = {k: v for k, v in TRADE_ROW.items() if k != "transactionHash"}

        trades = fetch(lambda r: httpx.Response(200, json=[TRADE_ROW, bad_price, no_hash]), "fetch_trades", "0xtrader")

        assert [t.transaction_hash for t in trades] == ["0x1"]

    def test_http_error(self):
        with pytest.raises(MarketDataError):
            fetch(lambda r: httpx.Response(500, text="boom"), "fetch_trades", "0xtrader")

    def test_invalid_json(self):
        with pytest.raises(MarketDataError):
            fetch(lambda r: httpx.Response(200, text="<html>"), "fetch_trades", "0xtrader")

    def test_non_list_payload(self):
        with pytest.raises(MarketDataError):
            fetch(lambda r: httpx.Response(200, json={"error": "nope"}), "fetch_trades", "0xtrader")

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(MarketDataError):
            fetch(handler, "fetch_trades", "0xtrader")


class TestFetchMarkets:

    def test_one_batched_call(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[
                {"conditionId": "c1", "question": "Q1", "bestBid": "0.55", "outcomePrices": '["0.56", "0.44"]'},
                {"conditionId": "c2", "question": "Q2", "lastTradePrice": 0.3},
            ])

        markets = fetch(handler, "fetch_markets", ["c1", "c2", "c1"])

        assert len(seen) == 1
        assert seen[0].url.path == "/markets"
        assert seen[0].url.params.get_list("condition_ids") == ["c1", "c2"]
        assert markets[0].best_bid == Decimal("0.55")
        assert markets[0].outcome_prices == [Decimal("0.56"), Decimal("0.44")]
        assert markets[1].last_trade_price == Decimal("0.3")

    def test_empty_ids_make_no_request(self):
        def handler(request):
            raise AssertionError("unexpected request")

        assert fetch(handler, "fetch_markets", []) == []

    def test_garbled_prices_become_none(self):
        body = json.dumps([{"conditionId": "c1", "bestBid": "abc", "outcomePrices": "[oops"}])
        markets = fetch(lambda r: httpx.Response(200, text=body), "fetch_markets", ["c1"])

        assert markets[0].best_bid is None
        assert markets[0].outcome_prices == []
