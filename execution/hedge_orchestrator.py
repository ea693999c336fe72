"""
Hedge Orchestrator: executes each HedgeRequest as concurrent short
positions across every configured venue, exactly once in effect.

Workflow per request:
1. Skip if positions already exist, then claim the deposit (SET NX EX)
2. Fan out to all hedge legs concurrently; wait for every outcome
3. Turn each outcome into exactly one HedgePosition (failures included)
4. Persist positions + index, then the write-once ExecutionLog
5. Classify: fully hedged / partially hedged / unhedged

Close-out is a separate, repeatable operation that buys back every open
short for a deposit.
"""
from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from loguru import logger

import store_keys as keys
from errors import DecodeError, HedgeError, TransientIOError
from execution.hedge_legs import HedgeLeg
from interfaces import IDurableStore, IMetricsExporter, IVenueAdapter
from models import ExecutionLog, HedgeOutcome, HedgePosition, HedgeRequest, PositionStatus


class HedgeOrchestrator:
    """Consumes the hedge queue and manages hedge positions per deposit."""

    def __init__(
        self,
        store: IDurableStore,
        legs: Sequence[HedgeLeg],
        metrics: Optional[IMetricsExporter] = None,
        queue_timeout_sec: int = 5,
        error_backoff_sec: float = 1.0,
        claim_ttl_sec: int = 300,
        retention_days: int = 30,
    ):
        self._store = store
        self.legs = list(legs)
        self._venues: Dict[str, IVenueAdapter] = {leg.venue_name: leg.venue for leg in self.legs}
        self._metrics = metrics
        self.queue_timeout_sec = queue_timeout_sec
        self.error_backoff_sec = error_backoff_sec
        self.claim_ttl_sec = claim_ttl_sec
        self._retention_sec = retention_days * keys.DAY_SEC
        self._processing = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._processing

    # ── Consumer loop ────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._processing:
            logger.warning("Hedge orchestrator is already running")
            return
        self._processing = True
        logger.info(f"Starting hedge processor ({len(self.legs)} legs: {self.legs})")
        self._task = asyncio.create_task(self._process_hedge_requests(), name="hedge-consumer")

    async def stop(self) -> None:
        """Stop after the current pop times out; in-flight executions finish."""
        self._processing = False
        task, self._task = self._task, None
        if task is not None:
            await task
        logger.info("Hedge orchestrator stopped")

    async def _process_hedge_requests(self) -> None:
        while self._processing:
            try:
                raw = await self._store.blocking_pop(keys.HEDGE_QUEUE, self.queue_timeout_sec)
                if raw is None:
                    continue
                try:
                    request = HedgeRequest.from_json(raw)
                except DecodeError as e:
                    logger.error(f"Discarding malformed hedge request: {e}")
                    continue
                await self.execute_hedge(request)
            except asyncio.CancelledError:
                raise
            except TransientIOError as e:
                logger.error(f"Error processing hedge requests: {e}")
                await asyncio.sleep(self.error_backoff_sec)
            except Exception:
                logger.exception("Unexpected error processing hedge requests")
                await asyncio.sleep(self.error_backoff_sec)

    # ── Execution ────────────────────────────────────────────────────────

    async def execute_hedge(self, request: HedgeRequest) -> Optional[ExecutionLog]:
        """Execute one request. Returns the ExecutionLog, or None if skipped."""
        tx = request.deposit_tx_hash
        logger.info(f"Executing hedge for deposit: {tx}")

        if await self.get_hedge_by_tx_hash(tx):
            logger.warning(f"Hedge already exists for deposit: {tx}")
            return None
        if not await self._store.set_if_absent(
                keys.claim_key(tx), uuid.uuid4().hex, self.claim_ttl_sec):
            logger.warning(f"Hedge for deposit {tx} is already claimed")
            return None

        positions: Optional[List[HedgePosition]] = None
        try:
            positions = await self._fan_out(request)
            for position in positions:
                await self._store_position(tx, position)
            execution_log = ExecutionLog(request=request, positions=positions,
                                         total_hedges=len(self.legs))
            await self._store.set_with_expiry(
                keys.execution_log_key(tx), self._retention_sec, execution_log.to_json())
        except BaseException:
            # Keep the claim once any venue holds a position: a retry would double the hedge.
            if positions is None or all(p.is_failed for p in positions):
                await self._release_claim(tx)
            else:
                logger.critical(f"Hedge for {tx} opened positions but was not fully recorded; "
                                f"claim kept, manual reconciliation required")
            raise

        self._report(execution_log)
        return execution_log

    async def _release_claim(self, tx: str) -> None:
        try:
            await self._store.delete(keys.claim_key(tx))
        except TransientIOError as e:
            logger.error(f"Could not release hedge claim for {tx}: {e}")

    async def _fan_out(self, request: HedgeRequest) -> List[HedgePosition]:
        results = await asyncio.gather(
            *(self._execute_leg(leg, request) for leg in self.legs),
            return_exceptions=True)
        positions = []
        for leg, result in zip(self.legs, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                result = HedgePosition.failed(leg.venue_name, leg.instrument,
                                              request.eth_amount, str(result))
            positions.append(result)
        return positions

    async def _execute_leg(self, leg: HedgeLeg, request: HedgeRequest) -> HedgePosition:
        """One venue call; every failure becomes a failed position."""
        size: Decimal = request.eth_amount
        try:
            size = await leg.order_size(request)
            result = await leg.venue.open_short(leg.instrument, size)
            position = HedgePosition.from_result(leg.venue_name, result)
        except HedgeError as e:
            logger.error(f"{leg.venue_name} hedge failed: {e}")
            position = HedgePosition.failed(leg.venue_name, leg.instrument, size, str(e))
        except Exception as e:
            logger.exception(f"{leg.venue_name} hedge raised unexpectedly")
            position = HedgePosition.failed(
                leg.venue_name, leg.instrument, size, f"{type(e).__name__}: {e}")

        if position.is_failed:
            logger.error(f"{leg.venue_name} short {leg.instrument} failed: {position.error}")
        else:
            logger.info(f"{leg.venue_name} short position created: {position.id} "
                        f"{position.amount} {leg.instrument} ({position.status.value})")
        if self._metrics:
            self._metrics.venue_order(leg.venue_name, position.status.value)
        return position

    def _report(self, execution_log: ExecutionLog) -> None:
        tx = execution_log.request.deposit_tx_hash
        outcome = execution_log.outcome
        summary = f"{execution_log.success_count}/{execution_log.total_hedges}"
        if outcome == HedgeOutcome.UNHEDGED:
            logger.error(f"All hedges failed for deposit: {tx} ({summary})")
        elif outcome == HedgeOutcome.PARTIALLY_HEDGED:
            logger.warning(f"Partial hedge success for deposit: {tx} ({summary})")
        else:
            logger.info(f"Full hedge success for deposit: {tx} ({summary})")
        if self._metrics:
            self._metrics.hedge_executed(outcome.value)

    async def _store_position(self, tx: str, position: HedgePosition) -> None:
        await self._store.set_with_expiry(
            keys.position_key(tx, position.venue), self._retention_sec, position.to_json())
        await self._store.set_add(keys.position_index_key(tx), position.id)

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_hedge_by_tx_hash(self, tx: str) -> List[HedgePosition]:
        position_ids = await self._store.set_members(keys.position_index_key(tx))
        venues = list(dict.fromkeys(pid.split("_", 1)[0] for pid in position_ids))
        positions = []
        for venue in venues:
            raw = await self._store.get(keys.position_key(tx, venue))
            if raw is None:
                continue
            try:
                positions.append(HedgePosition.from_json(raw))
            except DecodeError as e:
                logger.warning(f"Unreadable hedge position {tx}/{venue}: {e}")
        return positions

    async def get_hedge_log(self, tx: str) -> Optional[ExecutionLog]:
        raw = await self._store.get(keys.execution_log_key(tx))
        if raw is None:
            return None
        try:
            return ExecutionLog.from_json(raw)
        except DecodeError as e:
            logger.warning(f"Unreadable hedge log {tx}: {e}")
            return None

    # ── Close-out ────────────────────────────────────────────────────────

    async def close_hedge_positions(self, tx: str) -> bool:
        """Buy back every open short for a deposit. True only if all closed."""
        positions = await self.get_hedge_by_tx_hash(tx)
        if not positions:
            logger.warning(f"No hedge positions found for deposit: {tx}")
            return False

        all_closed = True
        for position in positions:
            if position.status in (PositionStatus.CLOSED, PositionStatus.FAILED):
                logger.debug(f"Skipping {position.status.value} position {position.id}")
                continue
            if not await self._close_position(tx, position):
                all_closed = False
        return all_closed

    async def _close_position(self, tx: str, position: HedgePosition) -> bool:
        venue = self._venues.get(position.venue)
        if venue is None:
            logger.error(f"No adapter configured for venue {position.venue} ({position.id})")
            return False
        try:
            success = await venue.close(position.symbol, position.amount)
        except Exception as e:
            logger.error(f"Error closing position {position.id}: {e}")
            success = False
        if self._metrics:
            self._metrics.position_close(position.venue, success)
        if not success:
            logger.error(f"Failed to close {position.venue} position: {position.id}")
            return False

        position.mark_closed()
        try:
            await self._store_position(tx, position)
        except TransientIOError as e:
            logger.error(f"Closed {position.id} but could not persist state: {e}")
            return False
        logger.info(f"Closed {position.venue} position: {position.id}")
        return True
