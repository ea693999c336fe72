"""
Deposit Monitor: turns the deposit contract's log stream into durable,
deduplicated DepositEvents and queued HedgeRequests.

Two activities run while the monitor is started:
  live subscription  : latency path, events handled as they are mined
  reconciliation task: every interval, replays [last_processed_block+1, head]
                       in windows of at most max_log_range blocks

Reconciliation is the source of truth; the subscription can silently miss
events across restarts or provider disconnects. Both feed the same handler,
which tolerates repeats: the deposit write is an upsert keyed by tx hash and
duplicate queue entries are dropped by the orchestrator's claim.
"""
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import List, Optional

from loguru import logger

import store_keys as keys
from errors import DecodeError, HedgeError
from interfaces import IChainClient, IDurableStore, IMetricsExporter
from models import DecodedDeposit, DepositEvent, HedgeRequest, now_ms

WEI_DECIMALS = 18


def from_wei(value: int) -> Decimal:
    """Raw on-chain integer → decimal units (18 decimals)."""
    d = Decimal(value).scaleb(-WEI_DECIMALS)
    return d.quantize(Decimal(1)) if d == d.to_integral_value() else d.normalize()


class DepositMonitor:
    """Watches the deposit contract and feeds the hedge queue."""

    def __init__(
        self,
        chain: IChainClient,
        store: IDurableStore,
        metrics: Optional[IMetricsExporter] = None,
        reconcile_interval_sec: float = 30.0,
        backfill_blocks: int = 100,
        retention_days: int = 7,
        max_log_range: int = 2000,
    ):
        self._chain = chain
        self._store = store
        self._metrics = metrics
        self.reconcile_interval_sec = reconcile_interval_sec
        self.backfill_blocks = backfill_blocks
        self._retention_sec = retention_days * keys.DAY_SEC
        self.max_log_range = max_log_range
        self.last_processed_block = 0
        # lowest block holding an event that failed; progress stays below it
        self._held_block: Optional[int] = None
        self._running = False
        self._reconcile_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            logger.warning("Deposit monitor is already running")
            return
        self._running = True
        try:
            self.last_processed_block = await self._load_last_block()
            logger.info(f"Starting deposit monitor from block {self.last_processed_block}")
            await self._chain.subscribe(self.handle_deposit)
            self._reconcile_task = asyncio.create_task(
                self._reconcile_loop(), name="deposit-reconcile")
        except Exception:
            logger.exception("Failed to start deposit monitor")
            self._running = False
            raise

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        task, self._reconcile_task = self._reconcile_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._chain.unsubscribe()
        logger.info("Deposit monitor stopped")

    async def _load_last_block(self) -> int:
        stored = await self._store.get(keys.LAST_PROCESSED_BLOCK)
        if stored:
            return int(stored)
        head = await self._chain.current_block_height()
        return max(head - self.backfill_blocks, 0)

    # ── Event handling ───────────────────────────────────────────────────

    async def handle_deposit(self, event: DecodedDeposit) -> bool:
        """
        Common handler for live and replayed events. Never raises.

        Returns False when the event could not be stored or queued. The
        last processed block is then held below that event's block until a
        reconciliation pass handles it.
        """
        try:
            deposit = await self._store_deposit(event)
            await self._queue_hedge_request(HedgeRequest.from_deposit(deposit))
            await self._update_last_processed_block(event.block_number)
            return True
        except HedgeError as e:
            logger.error(f"Failed to handle deposit event {event.transaction_hash}: {e}")
        except Exception:
            logger.exception(f"Unexpected error handling deposit {event.transaction_hash}")
        self._hold_at(event.block_number)
        return False

    def _hold_at(self, block_number: int) -> None:
        if self._held_block is None or block_number < self._held_block:
            self._held_block = block_number
            logger.warning(f"Holding last processed block below {block_number} until it is replayed")

    async def _store_deposit(self, event: DecodedDeposit) -> DepositEvent:
        existing = await self._existing_deposit(event.transaction_hash)
        if existing is not None:
            logger.debug(f"Deposit {event.transaction_hash} already stored, replaying request")
            return existing

        deposit = DepositEvent(
            user=event.user,
            amount=from_wei(event.amount_wei),
            krww_minted=from_wei(event.krww_minted_wei),
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
            timestamp=now_ms(),
        )
        logger.info(f"New ETH deposit detected: {deposit.amount} ETH from {deposit.user}")
        await self._store.set_with_expiry(
            keys.deposit_key(deposit.transaction_hash), self._retention_sec, deposit.to_json())
        await self._store.sorted_set_add(
            keys.DEPOSIT_INDEX, deposit.timestamp, deposit.transaction_hash)
        if self._metrics:
            self._metrics.deposit_detected()
        return deposit

    async def _existing_deposit(self, tx_hash: str) -> Optional[DepositEvent]:
        raw = await self._store.get(keys.deposit_key(tx_hash))
        if raw is None:
            return None
        try:
            return DepositEvent.from_json(raw)
        except DecodeError as e:
            logger.warning(f"Unreadable deposit record {tx_hash}: {e}")
            return None

    async def _queue_hedge_request(self, request: HedgeRequest) -> None:
        await self._store.push(keys.HEDGE_QUEUE, request.to_json())
        logger.info(f"Hedge request queued for tx: {request.deposit_tx_hash}")
        if self._metrics:
            self._metrics.hedge_request_queued()

    async def _update_last_processed_block(self, block_number: int) -> None:
        if self._held_block is not None:
            block_number = min(block_number, self._held_block - 1)
        if block_number <= self.last_processed_block:
            return
        await self._store.set(keys.LAST_PROCESSED_BLOCK, str(block_number))
        self.last_processed_block = block_number
        if self._metrics:
            self._metrics.set_last_processed_block(block_number)

    # ── Reconciliation ───────────────────────────────────────────────────

    async def reconcile_once(self) -> int:
        """
        Replay logs after the last processed block, at most max_log_range
        blocks per pass. Returns the number of events handled.

        Stops at the first event that fails so the stored block stays below
        it. A window handled in full moves the last processed block to the
        window's end, empty or not.
        """
        head = await self._chain.current_block_height()
        from_block = self.last_processed_block + 1
        if from_block > head:
            return 0
        to_block = min(head, from_block + self.max_log_range - 1)

        logger.debug(f"Checking for missed events from block {from_block} to {to_block}")
        events = await self._chain.query_logs(from_block, to_block)
        handled = 0
        for event in sorted(events, key=lambda e: (e.block_number, e.log_index)):
            if not await self.handle_deposit(event):
                logger.warning(f"Reconciliation stopped at block {event.block_number}, retrying next pass")
                break
            handled += 1

        if handled == len(events):
            if self._held_block is not None and self._held_block <= to_block:
                self._held_block = None
            await self._update_last_processed_block(to_block)
        if handled:
            logger.info(f"Processed {handled} missed deposit events")
        return handled

    async def _reconcile_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.reconcile_interval_sec)
            try:
                await self.reconcile_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error during periodic check: {e}")

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_deposit_history(self, limit: int = 100) -> List[DepositEvent]:
        """Most recent deposits first."""
        tx_hashes = await self._store.sorted_set_range_desc(keys.DEPOSIT_INDEX, limit)
        deposits: List[DepositEvent] = []
        for tx_hash in tx_hashes:
            deposit = await self._existing_deposit(tx_hash)
            if deposit is not None:
                deposits.append(deposit)
        return deposits

    async def get_deposit_by_tx_hash(self, tx_hash: str) -> Optional[DepositEvent]:
        return await self._existing_deposit(tx_hash)
