"""
Shared plumbing for HTTP venue adapters: session lifecycle, HMAC helpers,
error translation (5xx/network → TransientIOError, 4xx → VenueError).
"""
from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from errors import TransientIOError, VenueError

REQUEST_TIMEOUT_SEC = 30.0


def hmac_sha256_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def fmt_decimal(value: Decimal) -> str:
    """Plain (non-exponent) string without trailing zeros."""
    text = format(value.normalize(), "f")
    return "0" if text in ("-0", "") else text


class HttpVenueAdapter:
    """Base for venues reached over a JSON HTTP API."""

    name = "venue"

    def __init__(self, base_url: str, session: Optional[httpx.AsyncClient] = None,
                 timeout: float = REQUEST_TIMEOUT_SEC):
        """
        Args:
            base_url: venue API root
            session: pre-built client (tests inject a MockTransport client)
            timeout: per-request timeout enforced by the adapter
        """
        self.base_url = base_url
        self.timeout = timeout
        self.session = session

    async def connect(self) -> None:
        if self.session is None:
            self.session = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"User-Agent": "krww-hedge/1.0", "Accept": "application/json"},
            )
        logger.info(f"Initialized {self.name} adapter ({self.base_url})")

    async def disconnect(self) -> None:
        if self.session:
            await self.session.aclose()
            self.session = None
            logger.info(f"Disconnected from {self.name}")

    async def _request(self, method: str, url: str, *,
                       content: Optional[str] = None,
                       headers: Optional[Dict[str, str]] = None) -> Any:
        """Send one request and return the decoded JSON body."""
        if self.session is None:
            raise TransientIOError(f"{self.name} adapter is not connected")
        try:
            resp = await self.session.request(method, url, content=content, headers=headers)
        except httpx.HTTPError as e:
            raise TransientIOError(f"{self.name} {method} {url} failed: {e}") from e
        if resp.status_code >= 500:
            raise TransientIOError(f"{self.name} {method} {url}: HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as e:
            raise TransientIOError(f"{self.name} returned non-JSON body ({resp.status_code})") from e
        if resp.status_code >= 400:
            raise VenueError(self.name, self._error_message(body, resp.status_code))
        return body

    @staticmethod
    def _error_message(body: Any, status: int) -> str:
        if isinstance(body, dict):
            for key in ("msg", "retMsg", "message", "error"):
                if body.get(key):
                    return f"HTTP {status}: {body[key]}"
        return f"HTTP {status}: {body}"
