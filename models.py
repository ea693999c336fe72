"""
Data model for the deposit-to-hedge pipeline.

Records are stored in Redis as JSON; Decimals travel as strings so that
amounts survive a round trip without float drift.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from errors import DecodeError


def now_ms() -> int:
    return int(time.time() * 1000)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dec(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as e:
        raise DecodeError(f"invalid decimal for {name}: {value!r}") from e


class PositionStatus(Enum):
    """Lifecycle state of a hedge position."""
    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"


class HedgeOutcome(Enum):
    """Classification of one execution (log/metric signal, never stored)."""
    FULLY_HEDGED = "fully_hedged"
    PARTIALLY_HEDGED = "partially_hedged"
    UNHEDGED = "unhedged"

    @classmethod
    def classify(cls, success_count: int, total: int) -> "HedgeOutcome":
        if success_count == 0:
            return cls.UNHEDGED
        if success_count >= total:
            return cls.FULLY_HEDGED
        return cls.PARTIALLY_HEDGED


# ── Chain-side records ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class DecodedDeposit:
    """A decoded ETHDeposited log, amounts still in raw wei."""
    user: str
    amount_wei: int
    krww_minted_wei: int
    block_number: int
    transaction_hash: str
    log_index: int = 0


@dataclass(frozen=True)
class DepositEvent:
    """A stored deposit. Immutable once written."""
    user: str
    amount: Decimal
    krww_minted: Decimal
    block_number: int
    transaction_hash: str
    timestamp: int  # detection time, ms since epoch

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user,
            "amount": str(self.amount),
            "krwwMinted": str(self.krww_minted),
            "blockNumber": self.block_number,
            "transactionHash": self.transaction_hash,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "DepositEvent":
        try:
            d = json.loads(raw)
            return cls(
                user=d["user"],
                amount=_dec(d["amount"], "amount"),
                krww_minted=_dec(d["krwwMinted"], "krwwMinted"),
                block_number=int(d["blockNumber"]),
                transaction_hash=d["transactionHash"],
                timestamp=int(d["timestamp"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError(f"malformed deposit record: {e}") from e


@dataclass(frozen=True)
class HedgeRequest:
    """Queue payload derived 1:1 from a DepositEvent."""
    deposit_tx_hash: str
    eth_amount: Decimal
    krww_amount: Decimal
    user_address: str

    @classmethod
    def from_deposit(cls, deposit: DepositEvent) -> "HedgeRequest":
        return cls(
            deposit_tx_hash=deposit.transaction_hash,
            eth_amount=deposit.amount,
            krww_amount=deposit.krww_minted,
            user_address=deposit.user,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depositTxHash": self.deposit_tx_hash,
            "ethAmount": str(self.eth_amount),
            "krwwAmount": str(self.krww_amount),
            "userAddress": self.user_address,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "HedgeRequest":
        try:
            d = json.loads(raw)
            tx = d["depositTxHash"]
            if not isinstance(tx, str) or not tx:
                raise ValueError("empty depositTxHash")
            return cls(
                deposit_tx_hash=tx,
                eth_amount=_dec(d["ethAmount"], "ethAmount"),
                krww_amount=_dec(d["krwwAmount"], "krwwAmount"),
                user_address=d["userAddress"],
            )
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError(f"malformed hedge request: {e}") from e


# ── Venue order results ──────────────────────────────────────────────────────
# Every adapter translates its native response into one of these.

@dataclass(frozen=True)
class Filled:
    order_id: str
    instrument: str
    filled_size: Decimal
    fill_price: Decimal


@dataclass(frozen=True)
class PartiallyFilled:
    """Accepted but not (fully) filled yet; filled_size may be zero."""
    order_id: str
    instrument: str
    requested_size: Decimal
    filled_size: Decimal
    fill_price: Decimal


@dataclass(frozen=True)
class Rejected:
    instrument: str
    requested_size: Decimal
    reason: str


OrderResult = Union[Filled, PartiallyFilled, Rejected]


# ── Hedge records ────────────────────────────────────────────────────────────

@dataclass
class HedgePosition:
    """One venue's leg of a hedge. Identity: (deposit tx, venue)."""
    id: str
    venue: str
    symbol: str
    amount: Decimal
    price: Decimal
    status: PositionStatus
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    side: str = "short"
    error: Optional[str] = None

    @property
    def is_failed(self) -> bool:
        return self.status == PositionStatus.FAILED

    @classmethod
    def from_result(cls, venue: str, result: OrderResult) -> "HedgePosition":
        if isinstance(result, Filled):
            return cls(id=f"{venue}_{result.order_id}", venue=venue, symbol=result.instrument,
                       amount=result.filled_size, price=result.fill_price,
                       status=PositionStatus.OPEN)
        if isinstance(result, PartiallyFilled):
            return cls(id=f"{venue}_{result.order_id}", venue=venue, symbol=result.instrument,
                       amount=result.requested_size, price=result.fill_price,
                       status=PositionStatus.PENDING)
        return cls.failed(venue, result.instrument, result.requested_size, result.reason)

    @classmethod
    def failed(cls, venue: str, symbol: str, requested: Decimal,
               reason: str) -> "HedgePosition":
        return cls(id=f"{venue}_failed_{now_ms()}", venue=venue, symbol=symbol,
                   amount=requested, price=Decimal("0"),
                   status=PositionStatus.FAILED, error=reason)

    def mark_closed(self) -> None:
        self.status = PositionStatus.CLOSED
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "type": self.venue,
            "symbol": self.symbol,
            "side": self.side,
            "amount": str(self.amount),
            "price": str(self.price),
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.error:
            d["error"] = self.error
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HedgePosition":
        try:
            return cls(
                id=d["id"], venue=d["type"], symbol=d["symbol"], side=d.get("side", "short"),
                amount=_dec(d["amount"], "amount"), price=_dec(d["price"], "price"),
                status=PositionStatus(d["status"]),
                created_at=datetime.fromisoformat(d["createdAt"]),
                updated_at=datetime.fromisoformat(d["updatedAt"]),
                error=d.get("error"),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError(f"malformed hedge position: {e}") from e

    @classmethod
    def from_json(cls, raw: str) -> "HedgePosition":
        try:
            return cls.from_dict(json.loads(raw))
        except ValueError as e:
            raise DecodeError(f"malformed hedge position: {e}") from e


@dataclass
class ExecutionLog:
    """Write-once summary of one hedge execution."""
    request: HedgeRequest
    positions: List[HedgePosition]
    total_hedges: int
    timestamp: int = field(default_factory=now_ms)

    @property
    def success_count(self) -> int:
        return sum(1 for p in self.positions if not p.is_failed)

    @property
    def outcome(self) -> HedgeOutcome:
        return HedgeOutcome.classify(self.success_count, self.total_hedges)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txHash": self.request.deposit_tx_hash,
            "ethAmount": str(self.request.eth_amount),
            "krwwAmount": str(self.request.krww_amount),
            "userAddress": self.request.user_address,
            "positions": [p.to_dict() for p in self.positions],
            "successCount": self.success_count,
            "totalHedges": self.total_hedges,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "ExecutionLog":
        try:
            d = json.loads(raw)
            request = HedgeRequest(
                deposit_tx_hash=d["txHash"],
                eth_amount=_dec(d["ethAmount"], "ethAmount"),
                krww_amount=_dec(d["krwwAmount"], "krwwAmount"),
                user_address=d["userAddress"],
            )
            return cls(
                request=request,
                positions=[HedgePosition.from_dict(p) for p in d["positions"]],
                total_hedges=int(d["totalHedges"]),
                timestamp=int(d["timestamp"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError(f"malformed execution log: {e}") from e
