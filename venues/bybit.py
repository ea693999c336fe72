"""
Bybit v5 linear-perpetual adapter.

Auth: X-BAPI-SIGN = HMAC_SHA256(timestamp + api_key + recv_window + payload)
where payload is the query string for GET and the JSON body for POST.
"""
from __future__ import annotations

import asyncio
import json
import time
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from loguru import logger

from errors import VenueError
from execution.sizing import round_order_size
from models import Filled, OrderResult, PartiallyFilled, Rejected
from venues.base import HttpVenueAdapter, fmt_decimal, hmac_sha256_hex

MAINNET_URL = "https://api.bybit.com"
TESTNET_URL = "https://api-testnet.bybit.com"
CATEGORY = "linear"


class BybitLinearAdapter(HttpVenueAdapter):
    """Shorts USDT-margined perpetuals with IOC market orders."""

    name = "bybit"

    def __init__(self, api_key: str, secret_key: str, testnet: bool = False,
                 session: Optional[httpx.AsyncClient] = None,
                 recv_window: int = 5000, fill_check_delay_sec: float = 0.5):
        super().__init__(TESTNET_URL if testnet else MAINNET_URL, session=session)
        self.api_key = api_key
        self.secret_key = secret_key
        self.recv_window = str(recv_window)
        self.fill_check_delay_sec = fill_check_delay_sec

    def _auth_headers(self, payload: str) -> Dict[str, str]:
        ts = str(int(time.time() * 1000))
        sign = hmac_sha256_hex(self.secret_key, ts + self.api_key + self.recv_window + payload)
        return {
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-TIMESTAMP": ts,
            "X-BAPI-SIGN": sign,
            "X-BAPI-RECV-WINDOW": self.recv_window,
            "Content-Type": "application/json",
        }

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        query = urlencode(params)
        return self._check(await self._request(
            "GET", f"{path}?{query}", headers=self._auth_headers(query)))

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        payload = json.dumps(body, separators=(",", ":"))
        return self._check(await self._request(
            "POST", path, content=payload, headers=self._auth_headers(payload)))

    def _check(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("retCode") != 0:
            raise VenueError(self.name, f"retCode {data.get('retCode')}: {data.get('retMsg')}")
        return data.get("result") or {}

    async def _first(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        rows = (await self._get(path, params)).get("list") or []
        if not rows:
            raise VenueError(self.name, f"empty result for {path} {params}")
        return rows[0]

    # ── Market data ──────────────────────────────────────────────────────

    async def current_price(self, instrument: str) -> Decimal:
        ticker = await self._first("/v5/market/tickers", {"category": CATEGORY, "symbol": instrument})
        return Decimal(ticker["lastPrice"])

    async def lot_size(self, instrument: str) -> Tuple[Decimal, Decimal]:
        info = await self._first("/v5/market/instruments-info",
                                 {"category": CATEGORY, "symbol": instrument})
        lot = info["lotSizeFilter"]
        return Decimal(lot["qtyStep"]), Decimal(lot["minOrderQty"])

    async def order_status(self, instrument: str, order_id: str) -> Dict[str, Any]:
        return await self._first("/v5/order/realtime",
                                 {"category": CATEGORY, "symbol": instrument, "orderId": order_id})

    # ── Orders ───────────────────────────────────────────────────────────

    async def _market_order(self, instrument: str, side: str, qty: Decimal,
                            reduce_only: bool = False) -> str:
        body = {
            "category": CATEGORY,
            "symbol": instrument,
            "side": side,
            "orderType": "Market",
            "qty": fmt_decimal(qty),
            "timeInForce": "IOC",
        }
        if reduce_only:
            body["reduceOnly"] = True
        result = await self._post("/v5/order/create", body)
        return str(result["orderId"])

    async def open_short(self, instrument: str, size: Decimal) -> OrderResult:
        step, min_qty = await self.lot_size(instrument)
        qty = round_order_size(size, step, min_qty)
        logger.info(f"Creating short position on Bybit: {instrument}, amount: {qty}")
        order_id = await self._market_order(instrument, "Sell", qty)

        if self.fill_check_delay_sec:
            await asyncio.sleep(self.fill_check_delay_sec)
        status = await self.order_status(instrument, order_id)
        order_status = status.get("orderStatus")
        filled = Decimal(status.get("cumExecQty") or "0")
        avg_price = Decimal(status.get("avgPrice") or "0")
        if order_status == "Filled":
            return Filled(order_id=order_id, instrument=instrument,
                          filled_size=filled, fill_price=avg_price)
        if order_status in ("Rejected", "Cancelled") and filled == 0:
            return Rejected(instrument=instrument, requested_size=qty,
                            reason=f"order {order_id} {order_status}: {status.get('rejectReason', '')}")
        return PartiallyFilled(order_id=order_id, instrument=instrument, requested_size=qty,
                               filled_size=filled, fill_price=avg_price)

    async def close(self, instrument: str, size: Decimal) -> bool:
        logger.info(f"Closing Bybit position: {instrument}, size: {size}")
        try:
            order_id = await self._market_order(instrument, "Buy", size, reduce_only=True)
            if self.fill_check_delay_sec:
                await asyncio.sleep(self.fill_check_delay_sec)
            status = await self.order_status(instrument, order_id)
        except VenueError as e:
            logger.error(f"Bybit close order failed: {e}")
            return False
        success = status.get("orderStatus") == "Filled"
        logger.info(f"Bybit position {'closed' if success else 'close pending'}")
        return success
