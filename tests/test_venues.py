"""
Venue adapters against httpx.MockTransport: request shape, signing,
result mapping and error classification.
"""
import json
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from errors import TransientIOError, VenueError
from models import Filled, PartiallyFilled, Rejected
from venues.base import fmt_decimal, hmac_sha256_hex
from venues.binance import BinanceMarginAdapter
from venues.bybit import BybitLinearAdapter
from venues.cme import CMEFuturesAdapter


def _client(base_url, handler):
    return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))


def test_fmt_decimal():
    assert fmt_decimal(Decimal("0.04560000")) == "0.0456"
    assert fmt_decimal(Decimal("1E+3")) == "1000"
    assert fmt_decimal(Decimal("0")) == "0"


# ── Binance ──────────────────────────────────────────────────────────────────

EXCHANGE_INFO = {"symbols": [{"symbol": "ETHUSDT", "filters": [
    {"filterType": "PRICE_FILTER", "tickSize": "0.01"},
    {"filterType": "LOT_SIZE", "stepSize": "0.00010000", "minQty": "0.00010000"},
]}]}


class TestBinance:

    @pytest.mark.asyncio
    async def test_open_short_signs_and_maps_fill(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v3/exchangeInfo":
                return httpx.Response(200, json=EXCHANGE_INFO)
            query = request.url.query.decode()
            unsigned, signature = query.rsplit("&signature=", 1)
            seen["valid_signature"] = signature == hmac_sha256_hex("secret", unsigned)
            seen["api_key"] = request.headers["X-MBX-APIKEY"]
            seen["params"] = {k: v[0] for k, v in parse_qs(unsigned).items()}
            return httpx.Response(200, json={"orderId": 123, "status": "FILLED",
                                             "executedQty": "0.0456", "cummulativeQuoteQty": "136.8"})

        adapter = BinanceMarginAdapter("key", "secret", session=_client("https://api.binance.com", handler))
        result = await adapter.open_short("ETHUSDT", Decimal("0.04567"))

        assert result == Filled(order_id="123", instrument="ETHUSDT",
                                filled_size=Decimal("0.0456"), fill_price=Decimal("3000"))
        assert seen["valid_signature"]
        assert seen["api_key"] == "key"
        assert seen["params"]["side"] == "SELL"
        assert seen["params"]["sideEffectType"] == "MARGIN_BUY"
        assert seen["params"]["quantity"] == "0.0456"

    @pytest.mark.asyncio
    async def test_unfilled_status_maps_to_rejected(self):
        def handler(request):
            if request.url.path == "/api/v3/exchangeInfo":
                return httpx.Response(200, json=EXCHANGE_INFO)
            return httpx.Response(200, json={"orderId": 9, "status": "EXPIRED",
                                             "executedQty": "0", "cummulativeQuoteQty": "0"})

        adapter = BinanceMarginAdapter("key", "secret", session=_client("https://api.binance.com", handler))
        result = await adapter.open_short("ETHUSDT", Decimal("1"))
        assert isinstance(result, Rejected)
        assert result.requested_size == Decimal("1.0000")

    @pytest.mark.asyncio
    async def test_client_error_is_venue_error(self):
        def handler(request):
            if request.url.path == "/api/v3/exchangeInfo":
                return httpx.Response(200, json=EXCHANGE_INFO)
            return httpx.Response(400, json={"code": -2010, "msg": "Account has insufficient balance"})

        adapter = BinanceMarginAdapter("key", "secret", session=_client("https://api.binance.com", handler))
        with pytest.raises(VenueError, match="insufficient balance"):
            await adapter.open_short("ETHUSDT", Decimal("1"))
        assert await adapter.close("ETHUSDT", Decimal("1")) is False

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        adapter = BinanceMarginAdapter(
            "key", "secret", session=_client("https://api.binance.com", lambda r: httpx.Response(503)))
        with pytest.raises(TransientIOError):
            await adapter.current_price("ETHUSDT")

    @pytest.mark.asyncio
    async def test_close_uses_auto_repay(self):
        seen = {}

        def handler(request):
            seen.update({k: v[0] for k, v in parse_qs(request.url.query.decode()).items()})
            return httpx.Response(200, json={"orderId": 5, "status": "FILLED"})

        adapter = BinanceMarginAdapter("key", "secret", session=_client("https://api.binance.com", handler))
        assert await adapter.close("ETHUSDT", Decimal("0.5")) is True
        assert seen["side"] == "BUY"
        assert seen["sideEffectType"] == "AUTO_REPAY"

    @pytest.mark.asyncio
    async def test_unknown_symbol(self):
        adapter = BinanceMarginAdapter("key", "secret", session=_client(
            "https://api.binance.com", lambda r: httpx.Response(200, json={"symbols": []})))
        with pytest.raises(VenueError):
            await adapter.lot_size("NOPE")


# ── Bybit ────────────────────────────────────────────────────────────────────

def _bybit_ok(result):
    return httpx.Response(200, json={"retCode": 0, "retMsg": "OK", "result": result})


class TestBybit:

    @pytest.mark.asyncio
    async def test_open_short_signs_body_and_polls_status(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/v5/market/instruments-info":
                return _bybit_ok({"list": [{"lotSizeFilter": {"qtyStep": "0.01", "minOrderQty": "0.01"}}]})
            if path == "/v5/order/create":
                body = request.content.decode()
                h = request.headers
                expected = hmac_sha256_hex(
                    "secret", h["X-BAPI-TIMESTAMP"] + "key" + h["X-BAPI-RECV-WINDOW"] + body)
                seen["valid_signature"] = h["X-BAPI-SIGN"] == expected
                seen["order"] = json.loads(body)
                return _bybit_ok({"orderId": "by-1"})
            if path == "/v5/order/realtime":
                seen["status_query"] = dict(request.url.params)
                return _bybit_ok({"list": [{"orderStatus": "Filled", "cumExecQty": "1.23",
                                            "avgPrice": "3001.5"}]})
            return httpx.Response(404, json={"retMsg": "not found"})

        adapter = BybitLinearAdapter("key", "secret", fill_check_delay_sec=0,
                                     session=_client("https://api.bybit.com", handler))
        result = await adapter.open_short("ETHUSDT", Decimal("1.2345"))

        assert result == Filled(order_id="by-1", instrument="ETHUSDT",
                                filled_size=Decimal("1.23"), fill_price=Decimal("3001.5"))
        assert seen["valid_signature"]
        assert seen["order"]["side"] == "Sell"
        assert seen["order"]["orderType"] == "Market"
        assert seen["order"]["qty"] == "1.23"
        assert seen["order"]["timeInForce"] == "IOC"
        assert "reduceOnly" not in seen["order"]
        assert seen["status_query"]["orderId"] == "by-1"

    @pytest.mark.asyncio
    async def test_accepted_but_unfilled_is_partial(self):
        def handler(request):
            if request.url.path == "/v5/market/instruments-info":
                return _bybit_ok({"list": [{"lotSizeFilter": {"qtyStep": "0.01", "minOrderQty": "0.01"}}]})
            if request.url.path == "/v5/order/create":
                return _bybit_ok({"orderId": "by-2"})
            return _bybit_ok({"list": [{"orderStatus": "PartiallyFilled", "cumExecQty": "0.5",
                                        "avgPrice": "3000"}]})

        adapter = BybitLinearAdapter("key", "secret", fill_check_delay_sec=0,
                                     session=_client("https://api.bybit.com", handler))
        result = await adapter.open_short("ETHUSDT", Decimal("1"))
        assert isinstance(result, PartiallyFilled)
        assert result.filled_size == Decimal("0.5")

    @pytest.mark.asyncio
    async def test_nonzero_ret_code_is_venue_error(self):
        adapter = BybitLinearAdapter("key", "secret", fill_check_delay_sec=0, session=_client(
            "https://api.bybit.com",
            lambda r: httpx.Response(200, json={"retCode": 10001, "retMsg": "params error"})))
        with pytest.raises(VenueError, match="10001"):
            await adapter.current_price("ETHUSDT")

    @pytest.mark.asyncio
    async def test_close_is_reduce_only(self):
        seen = {}

        def handler(request):
            if request.url.path == "/v5/order/create":
                seen.update(json.loads(request.content))
                return _bybit_ok({"orderId": "by-3"})
            return _bybit_ok({"list": [{"orderStatus": "Filled"}]})

        adapter = BybitLinearAdapter("key", "secret", fill_check_delay_sec=0,
                                     session=_client("https://api.bybit.com", handler))
        assert await adapter.close("ETHUSDT", Decimal("1.23")) is True
        assert seen["side"] == "Buy"
        assert seen["reduceOnly"] is True


# ── CME ──────────────────────────────────────────────────────────────────────

class TestCME:

    @pytest.mark.asyncio
    async def test_price_and_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/market-data/KRW-USD":
                return httpx.Response(200, json={"lastPrice": "0.00075"})
            body = request.content.decode()
            h = request.headers
            seen["valid_signature"] = h["X-CME-SIGNATURE"] == hmac_sha256_hex(
                "secret", h["X-CME-TIMESTAMP"] + "POST" + "/v1/orders" + body)
            seen["order"] = json.loads(body)
            return httpx.Response(200, json={"orderId": "c-1", "status": "FILLED", "price": "0.00075"})

        adapter = CMEFuturesAdapter("key", "secret", session=_client("https://api.cmegroup.com", handler))
        assert await adapter.current_price("KRW/USD") == Decimal("0.00075")
        result = await adapter.open_short("KRW/USD", Decimal("3"))

        assert result == Filled(order_id="c-1", instrument="KRW/USD",
                                filled_size=Decimal("3"), fill_price=Decimal("0.00075"))
        assert seen["valid_signature"]
        assert seen["order"] == {"symbol": "KRW/USD", "side": "SELL", "orderType": "MARKET",
                                 "quantity": 3, "timeInForce": "IOC"}

    @pytest.mark.asyncio
    async def test_zero_contracts_rejected_before_sending(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        adapter = CMEFuturesAdapter("key", "secret", session=_client("https://api.cmegroup.com", handler))
        with pytest.raises(VenueError):
            await adapter.open_short("KRW/USD", Decimal("0"))
        assert calls == []

    @pytest.mark.asyncio
    async def test_status_mapping(self):
        statuses = iter(["REJECTED", "WORKING"])
        adapter = CMEFuturesAdapter("key", "secret", session=_client(
            "https://api.cmegroup.com",
            lambda r: httpx.Response(200, json={"orderId": "c-2", "status": next(statuses)})))
        assert isinstance(await adapter.open_short("KRW/USD", Decimal("1")), Rejected)
        assert isinstance(await adapter.open_short("KRW/USD", Decimal("1")), PartiallyFilled)

    @pytest.mark.asyncio
    async def test_not_connected_is_transient(self):
        adapter = CMEFuturesAdapter("key", "secret")
        with pytest.raises(TransientIOError):
            await adapter.current_price("KRW/USD")
