"""Deterministic stand-ins for venues and the chain, shared across tests."""
from decimal import Decimal
from typing import List, Optional

from models import DecodedDeposit, Filled, OrderResult

TX = "0x" + "ab" * 32
USER = "0x1111111111111111111111111111111111111111"
ONE_ETH_WEI = 10 ** 18


def make_event(tx: str = TX, block: int = 100, eth: str = "1", krww: str = "3000000",
               log_index: int = 0) -> DecodedDeposit:
    return DecodedDeposit(
        user=USER,
        amount_wei=int(Decimal(eth) * ONE_ETH_WEI),
        krww_minted_wei=int(Decimal(krww) * ONE_ETH_WEI),
        block_number=block,
        transaction_hash=tx,
        log_index=log_index,
    )


class FakeVenue:
    """Deterministic venue: fills every order unless told otherwise."""

    def __init__(self, name: str, price: Decimal = Decimal("3000"),
                 fail_with: Optional[Exception] = None, close_ok: bool = True):
        self.name = name
        self.price = price
        self.fail_with = fail_with
        self.close_ok = close_ok
        self.orders: List[tuple] = []
        self.closes: List[tuple] = []
        self._seq = 0

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def current_price(self, instrument: str) -> Decimal:
        return self.price

    async def open_short(self, instrument: str, size: Decimal) -> OrderResult:
        self.orders.append((instrument, size))
        if self.fail_with is not None:
            raise self.fail_with
        self._seq += 1
        return Filled(order_id=str(self._seq), instrument=instrument,
                      filled_size=size, fill_price=self.price)

    async def close(self, instrument: str, size: Decimal) -> bool:
        self.closes.append((instrument, size))
        if isinstance(self.close_ok, Exception):
            raise self.close_ok
        return self.close_ok


class FakeChain:
    """In-memory chain: a list of logs plus a movable head."""

    def __init__(self, head: int = 1000, logs: Optional[List[DecodedDeposit]] = None):
        self.head = head
        self.logs = list(logs or [])
        self.handler = None
        self.queries: List[tuple] = []

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def subscribe(self, handler) -> None:
        self.handler = handler

    async def unsubscribe(self) -> None:
        self.handler = None

    async def query_logs(self, from_block: int, to_block: int) -> List[DecodedDeposit]:
        self.queries.append((from_block, to_block))
        return [e for e in self.logs if from_block <= e.block_number <= to_block]

    async def current_block_height(self) -> int:
        return self.head
