"""
CME KRW/USD futures adapter.

Sizes are whole contracts (the KRW leg converts notional before calling).
Requests are signed with X-CME-SIGNATURE = HMAC_SHA256(ts + METHOD + path + body).
"""
from __future__ import annotations

import json
import time
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from errors import VenueError
from models import Filled, OrderResult, PartiallyFilled, Rejected
from venues.base import HttpVenueAdapter, hmac_sha256_hex

PRODUCTION_URL = "https://api.cmegroup.com"
TEST_URL = "https://api-test.cmegroup.com"


def _market_data_symbol(instrument: str) -> str:
    return instrument.replace("/", "-")


class CMEFuturesAdapter(HttpVenueAdapter):
    """Currency-futures venue (KRW/USD)."""

    name = "cme"

    def __init__(self, api_key: str, secret_key: str, environment: str = "production",
                 session: Optional[httpx.AsyncClient] = None):
        super().__init__(PRODUCTION_URL if environment == "production" else TEST_URL,
                         session=session)
        self.api_key = api_key
        self.secret_key = secret_key
        self.environment = environment

    def _auth_headers(self, method: str, path: str, body: str) -> Dict[str, str]:
        ts = str(int(time.time() * 1000))
        return {
            "Content-Type": "application/json",
            "X-CME-API-KEY": self.api_key,
            "X-CME-TIMESTAMP": ts,
            "X-CME-SIGNATURE": hmac_sha256_hex(self.secret_key, f"{ts}{method}{path}{body}"),
        }

    async def _call(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        payload = json.dumps(body, separators=(",", ":")) if body is not None else ""
        return await self._request(method, path, content=payload or None,
                                   headers=self._auth_headers(method, path, payload))

    async def current_price(self, instrument: str) -> Decimal:
        data = await self._call("GET", f"/v1/market-data/{_market_data_symbol(instrument)}")
        price = Decimal(str(data["lastPrice"]))
        if price <= 0:
            raise VenueError(self.name, f"invalid {instrument} price {price}")
        return price

    async def open_short(self, instrument: str, size: Decimal) -> OrderResult:
        contracts = int(size)
        if contracts <= 0:
            raise VenueError(self.name, f"contract count must be positive, got {size}")
        logger.info(f"Creating {instrument} short position on CME: {contracts} contracts")
        order = await self._call("POST", "/v1/orders", {
            "symbol": instrument,
            "side": "SELL",
            "orderType": "MARKET",
            "quantity": contracts,
            "timeInForce": "IOC",
        })
        order_id = str(order.get("orderId"))
        status = order.get("status")
        price = Decimal(str(order.get("price") or "0"))
        if status == "FILLED":
            return Filled(order_id=order_id, instrument=instrument,
                          filled_size=Decimal(contracts), fill_price=price)
        if status in ("REJECTED", "CANCELLED", "EXPIRED"):
            return Rejected(instrument=instrument, requested_size=Decimal(contracts),
                            reason=f"order {order_id} {status}")
        return PartiallyFilled(order_id=order_id, instrument=instrument,
                               requested_size=Decimal(contracts),
                               filled_size=Decimal(str(order.get("filledQuantity") or "0")),
                               fill_price=price)

    async def close(self, instrument: str, size: Decimal) -> bool:
        logger.info(f"Closing CME position: {instrument} {size} contracts")
        try:
            order = await self._call("POST", "/v1/orders", {
                "symbol": instrument,
                "side": "BUY",
                "orderType": "MARKET",
                "quantity": int(size),
                "timeInForce": "IOC",
            })
        except VenueError as e:
            logger.error(f"Failed to close CME position: {e}")
            return False
        success = order.get("status") == "FILLED"
        logger.info(f"CME position {'closed' if success else 'failed to close'}: {order.get('orderId')}")
        return success
