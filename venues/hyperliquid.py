"""
Hyperliquid perpetuals adapter.

Orders are L1 actions signed with the EIP-712 "phantom agent" scheme:
the msgpack-encoded action plus nonce is hashed, wrapped in an Agent
struct and signed under the Exchange domain (chainId 1337).
"""
from __future__ import annotations

import json
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx
import msgpack
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_hex
from loguru import logger

from errors import ConfigurationError, VenueError
from execution.sizing import round_order_size
from models import Filled, OrderResult, PartiallyFilled
from venues.base import HttpVenueAdapter, fmt_decimal

MAINNET_URL = "https://api.hyperliquid.xyz"
TESTNET_URL = "https://api.hyperliquid-testnet.xyz"
SLIPPAGE = Decimal("0.005")
MAX_PRICE_DECIMALS = 6

AGENT_TYPES = {
    "Agent": [
        {"name": "source", "type": "string"},
        {"name": "connectionId", "type": "bytes32"},
    ],
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
}
EXCHANGE_DOMAIN = {
    "chainId": 1337,
    "name": "Exchange",
    "verifyingContract": "0x0000000000000000000000000000000000000000",
    "version": "1",
}


def _dumps(body: Dict[str, Any]) -> str:
    return json.dumps(body, separators=(",", ":"))


# ── Signing ──────────────────────────────────────────────────────────────────

def action_hash(action: Dict[str, Any], nonce: int, vault_address: Optional[str] = None) -> bytes:
    data = msgpack.packb(action)
    data += nonce.to_bytes(8, "big")
    if vault_address is None:
        data += b"\x00"
    else:
        data += b"\x01" + bytes.fromhex(vault_address[2:] if vault_address.startswith("0x")
                                        else vault_address)
    return keccak(data)


def phantom_agent_payload(connection_id: bytes, is_mainnet: bool) -> Dict[str, Any]:
    """Full EIP-712 message for an L1 action."""
    return {
        "domain": EXCHANGE_DOMAIN,
        "types": AGENT_TYPES,
        "primaryType": "Agent",
        "message": {"source": "a" if is_mainnet else "b", "connectionId": connection_id},
    }


def sign_l1_action(account, action: Dict[str, Any], nonce: int, is_mainnet: bool) -> Dict[str, Any]:
    payload = phantom_agent_payload(action_hash(action, nonce), is_mainnet)
    signed = account.sign_message(encode_typed_data(full_message=payload))
    return {"r": to_hex(signed.r), "s": to_hex(signed.s), "v": signed.v}


# ── Wire formatting ──────────────────────────────────────────────────────────

def round_price(price: Decimal, sz_decimals: int) -> Decimal:
    """Five significant figures, at most (6 - szDecimals) decimals."""
    significant = Decimal(format(price, ".5g"))
    places = Decimal(1).scaleb(-(MAX_PRICE_DECIMALS - sz_decimals))
    return significant.quantize(places, rounding=ROUND_HALF_UP)


def round_size(size: Decimal, sz_decimals: int) -> Decimal:
    """Round down to szDecimals, never below one increment."""
    step = Decimal(1).scaleb(-sz_decimals)
    return round_order_size(size, step, step)


def order_wire(asset: int, is_buy: bool, price: Decimal, size: Decimal,
               reduce_only: bool = False) -> Dict[str, Any]:
    return {
        "a": asset,
        "b": is_buy,
        "p": fmt_decimal(price),
        "s": fmt_decimal(size),
        "r": reduce_only,
        "t": {"limit": {"tif": "Ioc"}},
    }


class HyperliquidAdapter(HttpVenueAdapter):
    """Shorts perps with aggressive IOC limit orders signed by a local key."""

    name = "hyperliquid"

    def __init__(self, private_key: str, wallet_address: str = "", testnet: bool = False,
                 session: Optional[httpx.AsyncClient] = None):
        super().__init__(TESTNET_URL if testnet else MAINNET_URL, session=session)
        if not private_key:
            raise ConfigurationError("Hyperliquid private key is required")
        self.account = Account.from_key(private_key)
        self.wallet_address = wallet_address or self.account.address
        self.is_mainnet = not testnet
        self._assets: Dict[str, Dict[str, int]] = {}
        self._last_nonce = 0

    def _next_nonce(self) -> int:
        self._last_nonce = max(int(time.time() * 1000), self._last_nonce + 1)
        return self._last_nonce

    async def _info(self, body: Dict[str, Any]) -> Any:
        return await self._request("POST", "/info", content=_dumps(body),
                                   headers={"Content-Type": "application/json"})

    # ── Market data ──────────────────────────────────────────────────────

    async def asset_info(self, coin: str) -> Dict[str, int]:
        """{"asset": index, "szDecimals": n} from the perp universe."""
        if not self._assets:
            meta = await self._info({"type": "meta"})
            for index, asset in enumerate(meta.get("universe", [])):
                self._assets[asset["name"]] = {"asset": index,
                                               "szDecimals": int(asset.get("szDecimals", 0))}
        if coin not in self._assets:
            raise VenueError(self.name, f"Unknown asset {coin}")
        return self._assets[coin]

    async def current_price(self, instrument: str) -> Decimal:
        book = await self._info({"type": "l2Book", "coin": instrument})
        levels: List[List[Dict[str, Any]]] = book.get("levels") or []
        if len(levels) < 2 or not levels[0] or not levels[1]:
            raise VenueError(self.name, f"Empty order book for {instrument}")
        best_bid = Decimal(str(levels[0][0]["px"]))
        best_ask = Decimal(str(levels[1][0]["px"]))
        return (best_bid + best_ask) / 2

    # ── Orders ───────────────────────────────────────────────────────────

    async def _place(self, instrument: str, is_buy: bool, size: Decimal,
                     reduce_only: bool) -> Tuple[Dict[str, Any], Decimal]:
        info = await self.asset_info(instrument)
        mid = await self.current_price(instrument)
        limit = mid * (1 + SLIPPAGE) if is_buy else mid * (1 - SLIPPAGE)
        wire = order_wire(info["asset"], is_buy,
                          round_price(limit, info["szDecimals"]),
                          round_size(size, info["szDecimals"]),
                          reduce_only)
        action = {"type": "order", "orders": [wire], "grouping": "na"}
        nonce = self._next_nonce()
        payload = {
            "action": action,
            "nonce": nonce,
            "signature": sign_l1_action(self.account, action, nonce, self.is_mainnet),
            "vaultAddress": None,
        }
        resp = await self._request("POST", "/exchange", content=_dumps(payload),
                                   headers={"Content-Type": "application/json"})
        if resp.get("status") != "ok":
            raise VenueError(self.name, f"order rejected: {resp.get('response')}")
        statuses = resp.get("response", {}).get("data", {}).get("statuses") or []
        if not statuses:
            raise VenueError(self.name, "order response carried no status")
        status = statuses[0]
        if "error" in status:
            raise VenueError(self.name, status["error"])
        return status, Decimal(wire["s"])

    async def open_short(self, instrument: str, size: Decimal) -> OrderResult:
        logger.info(f"Creating short position on Hyperliquid: {instrument}, amount: {size}")
        status, requested = await self._place(instrument, False, size, reduce_only=False)
        if "filled" in status:
            fill = status["filled"]
            return Filled(order_id=str(fill["oid"]), instrument=instrument,
                          filled_size=Decimal(str(fill["totalSz"])),
                          fill_price=Decimal(str(fill["avgPx"])))
        resting = status.get("resting", {})
        return PartiallyFilled(order_id=str(resting.get("oid")), instrument=instrument,
                               requested_size=requested, filled_size=Decimal("0"),
                               fill_price=Decimal("0"))

    async def close(self, instrument: str, size: Decimal) -> bool:
        logger.info(f"Closing Hyperliquid position: {instrument} {size}")
        try:
            status, _ = await self._place(instrument, True, size, reduce_only=True)
        except VenueError as e:
            logger.error(f"Failed to close Hyperliquid position: {e}")
            return False
        return "filled" in status
