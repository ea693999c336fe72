"""
Protocol interfaces for dependency injection (dependency inversion).

The deposit monitor and hedge orchestrator depend on these abstractions,
not on concrete venue, chain or Redis implementations. This allows swapping
live ↔ testnet ↔ mock without touching pipeline logic.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Protocol, runtime_checkable

from models import DecodedDeposit, OrderResult


DepositHandler = Callable[[DecodedDeposit], Awaitable[bool]]


# ── Trading Venues ───────────────────────────────────────────────────────────

@runtime_checkable
class IVenueAdapter(Protocol):
    """One trading venue. Each failure is local to the adapter."""

    name: str

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def open_short(self, instrument: str, size: Decimal) -> OrderResult: ...

    async def close(self, instrument: str, size: Decimal) -> bool: ...

    async def current_price(self, instrument: str) -> Decimal: ...


# ── Chain ────────────────────────────────────────────────────────────────────

@runtime_checkable
class IChainClient(Protocol):
    """Yields decoded deposit events and answers historical log queries."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def subscribe(self, handler: DepositHandler) -> None: ...

    async def unsubscribe(self) -> None: ...

    async def query_logs(self, from_block: int, to_block: int) -> List[DecodedDeposit]: ...

    async def current_block_height(self) -> int: ...


# ── Durable Store ────────────────────────────────────────────────────────────

@runtime_checkable
class IDurableStore(Protocol):
    """Key/value + queue + set abstraction over atomic single commands."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def ping(self) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def set_with_expiry(self, key: str, ttl_sec: int, value: str) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_sec: int) -> bool: ...

    async def delete(self, key: str) -> None: ...

    async def push(self, queue: str, value: str) -> None: ...

    async def blocking_pop(self, queue: str, timeout_sec: int) -> Optional[str]: ...

    async def set_add(self, key: str, member: str) -> None: ...

    async def set_members(self, key: str) -> List[str]: ...

    async def sorted_set_add(self, key: str, score: float, member: str) -> None: ...

    async def sorted_set_range_desc(self, key: str, limit: int) -> List[str]: ...


# ── Metrics Exporter ─────────────────────────────────────────────────────────

@runtime_checkable
class IMetricsExporter(Protocol):
    """Exports pipeline counters (e.g. to Prometheus/Grafana)."""

    def deposit_detected(self) -> None: ...

    def hedge_request_queued(self) -> None: ...

    def hedge_executed(self, outcome: str) -> None: ...

    def venue_order(self, venue: str, status: str) -> None: ...

    def position_close(self, venue: str, success: bool) -> None: ...

    def set_last_processed_block(self, block: int) -> None: ...
