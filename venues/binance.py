"""
Binance cross-margin adapter: shorts ETHUSDT by borrowing and selling.

Orders go to /sapi/v1/margin/order with sideEffectType=MARGIN_BUY on open
and AUTO_REPAY on close. Quantities follow the symbol's LOT_SIZE filter.
"""
from __future__ import annotations

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

MAINNET_URL = "https://api.binance.com"
TESTNET_URL = "https://testnet.binance.vision"
DEFAULT_STEP = Decimal("0.001")


class BinanceMarginAdapter(HttpVenueAdapter):
    """Binance margin short/close via the signed REST API."""

    name = "binance"

    def __init__(self, api_key: str, secret_key: str, testnet: bool = False,
                 session: Optional[httpx.AsyncClient] = None, recv_window: int = 5000):
        super().__init__(TESTNET_URL if testnet else MAINNET_URL, session=session)
        self.api_key = api_key
        self.secret_key = secret_key
        self.recv_window = recv_window
        self._lot_sizes: Dict[str, Tuple[Decimal, Decimal]] = {}

    def _signed_url(self, path: str, params: Dict[str, Any]) -> str:
        params = {**params, "timestamp": int(time.time() * 1000), "recvWindow": self.recv_window}
        query = urlencode(params)
        return f"{path}?{query}&signature={hmac_sha256_hex(self.secret_key, query)}"

    async def _signed(self, method: str, path: str, params: Dict[str, Any]) -> Any:
        return await self._request(method, self._signed_url(path, params),
                                   headers={"X-MBX-APIKEY": self.api_key})

    # ── Market data ──────────────────────────────────────────────────────

    async def current_price(self, instrument: str) -> Decimal:
        data = await self._request("GET", f"/api/v3/ticker/price?{urlencode({'symbol': instrument})}")
        return Decimal(str(data["price"]))

    async def lot_size(self, instrument: str) -> Tuple[Decimal, Decimal]:
        """(step_size, min_qty) from the LOT_SIZE filter, cached per symbol."""
        if instrument not in self._lot_sizes:
            data = await self._request(
                "GET", f"/api/v3/exchangeInfo?{urlencode({'symbol': instrument})}")
            symbols = [s for s in data.get("symbols", []) if s.get("symbol") == instrument]
            if not symbols:
                raise VenueError(self.name, f"Symbol {instrument} not found on Binance")
            lot = next((f for f in symbols[0].get("filters", [])
                        if f.get("filterType") == "LOT_SIZE"), None)
            if lot:
                self._lot_sizes[instrument] = (Decimal(lot["stepSize"]), Decimal(lot["minQty"]))
            else:
                self._lot_sizes[instrument] = (DEFAULT_STEP, DEFAULT_STEP)
        return self._lot_sizes[instrument]

    # ── Orders ───────────────────────────────────────────────────────────

    async def open_short(self, instrument: str, size: Decimal) -> OrderResult:
        step, min_qty = await self.lot_size(instrument)
        quantity = round_order_size(size, step, min_qty)
        logger.info(f"Creating short position on Binance: {instrument}, amount: {quantity}")
        order = await self._signed("POST", "/sapi/v1/margin/order", {
            "symbol": instrument,
            "side": "SELL",
            "type": "MARKET",
            "quantity": fmt_decimal(quantity),
            "sideEffectType": "MARGIN_BUY",
            "newOrderRespType": "FULL",
        })
        return self._to_result(instrument, quantity, order)

    @staticmethod
    def _to_result(instrument: str, quantity: Decimal, order: Dict[str, Any]) -> OrderResult:
        status = order.get("status")
        executed = Decimal(str(order.get("executedQty", "0")))
        quote = Decimal(str(order.get("cummulativeQuoteQty", "0")))
        avg_price = quote / executed if executed > 0 else Decimal("0")
        order_id = str(order.get("orderId"))
        if status == "FILLED":
            return Filled(order_id=order_id, instrument=instrument,
                          filled_size=executed, fill_price=avg_price)
        if status in ("NEW", "PARTIALLY_FILLED"):
            return PartiallyFilled(order_id=order_id, instrument=instrument, requested_size=quantity,
                                   filled_size=executed, fill_price=avg_price)
        return Rejected(instrument=instrument, requested_size=quantity,
                        reason=f"order {order_id} status {status}")

    async def close(self, instrument: str, size: Decimal) -> bool:
        logger.info(f"Closing Binance position: {instrument} {size}")
        try:
            order = await self._signed("POST", "/sapi/v1/margin/order", {
                "symbol": instrument,
                "side": "BUY",
                "type": "MARKET",
                "quantity": fmt_decimal(size),
                "sideEffectType": "AUTO_REPAY",
            })
        except VenueError as e:
            logger.error(f"Failed to close Binance position: {e}")
            return False
        logger.info(f"Binance close order {order.get('orderId')}: {order.get('status')}")
        return order.get("status") == "FILLED"
