"""
Service Container: wires and owns all shared service instances.

SRP:  This module's only job is construction + lifecycle of shared services.
DIP:  The monitor and orchestrator receive interfaces, not concrete classes.

Usage:
    container = ServiceContainer(cfg)       # build once at startup
    await container.connect()
    await container.deposit_monitor.start()
    await container.hedge_orchestrator.start()
    ...
    await container.shutdown()
"""
from __future__ import annotations

from typing import Dict, List, Optional

from loguru import logger

from config import AppConfig, get_config
from deposit_monitor import DepositMonitor
from execution.hedge_legs import HedgeLeg, KRWFuturesLeg
from execution.hedge_orchestrator import HedgeOrchestrator
from interfaces import IChainClient, IDurableStore, IVenueAdapter
from monitoring.metrics import HedgeMetricsExporter

ETH_SPOT_SYMBOL = "ETHUSDT"
ETH_PERP_COIN = "ETH"
KRW_FUTURES_SYMBOL = "KRW/USD"


class ServiceContainer:
    """
    Owns and lazily constructs all shared service instances.

    Every property returns a Protocol-typed reference so consumers
    never depend on concrete implementations.
    """

    def __init__(self, cfg: Optional[AppConfig] = None):
        self.cfg = cfg or get_config()
        self._store: Optional[IDurableStore] = None
        self._chain_client: Optional[IChainClient] = None
        self._venues: Optional[Dict[str, IVenueAdapter]] = None
        self._legs: Optional[List[HedgeLeg]] = None
        self._metrics: Optional[HedgeMetricsExporter] = None
        self._deposit_monitor: Optional[DepositMonitor] = None
        self._hedge_orchestrator: Optional[HedgeOrchestrator] = None
        logger.info("ServiceContainer initialised")

    # ── Lazy constructors ────────────────────────────────────────────────

    @property
    def store(self) -> IDurableStore:
        if self._store is None:
            from redis_store import RedisStore
            self._store = RedisStore(self.cfg.redis.url)
        return self._store

    @property
    def chain_client(self) -> IChainClient:
        if self._chain_client is None:
            from data_sources.ethereum.rpc import EthereumRPCClient
            eth = self.cfg.ethereum
            self._chain_client = EthereumRPCClient(
                eth.rpc_url, eth.deposit_contract_address, poll_interval_sec=eth.poll_interval_sec)
        return self._chain_client

    @property
    def venues(self) -> Dict[str, IVenueAdapter]:
        if self._venues is None:
            from venues import (BinanceMarginAdapter, BybitLinearAdapter,
                                CMEFuturesAdapter, HyperliquidAdapter)
            c = self.cfg
            adapters: List[IVenueAdapter] = [
                BinanceMarginAdapter(c.binance.api_key, c.binance.secret_key, testnet=c.binance.testnet),
                CMEFuturesAdapter(c.cme.api_key, c.cme.secret_key, environment=c.cme.environment),
                HyperliquidAdapter(c.hyperliquid.private_key, c.hyperliquid.wallet_address,
                                   testnet=c.hyperliquid.testnet),
                BybitLinearAdapter(c.bybit.api_key, c.bybit.secret_key, testnet=c.bybit.testnet),
            ]
            self._venues = {a.name: a for a in adapters}
        return self._venues

    @property
    def legs(self) -> List[HedgeLeg]:
        if self._legs is None:
            v = self.venues
            self._legs = [
                HedgeLeg(v["binance"], ETH_SPOT_SYMBOL),
                KRWFuturesLeg(v["cme"], KRW_FUTURES_SYMBOL,
                              price_venue=v["binance"], price_instrument=ETH_SPOT_SYMBOL),
                HedgeLeg(v["hyperliquid"], ETH_PERP_COIN),
                HedgeLeg(v["bybit"], ETH_SPOT_SYMBOL),
            ]
        return self._legs

    @property
    def metrics(self) -> HedgeMetricsExporter:
        if self._metrics is None:
            self._metrics = HedgeMetricsExporter()
        return self._metrics

    @property
    def deposit_monitor(self) -> DepositMonitor:
        if self._deposit_monitor is None:
            eth = self.cfg.ethereum
            self._deposit_monitor = DepositMonitor(
                self.chain_client, self.store, self.metrics,
                reconcile_interval_sec=eth.reconcile_interval_sec,
                backfill_blocks=eth.backfill_blocks,
                max_log_range=eth.max_log_range,
                retention_days=self.cfg.hedge.deposit_retention_days,
            )
        return self._deposit_monitor

    @property
    def hedge_orchestrator(self) -> HedgeOrchestrator:
        if self._hedge_orchestrator is None:
            h = self.cfg.hedge
            self._hedge_orchestrator = HedgeOrchestrator(
                self.store, self.legs, self.metrics,
                queue_timeout_sec=h.queue_pop_timeout_sec,
                error_backoff_sec=h.error_backoff_sec,
                claim_ttl_sec=h.claim_ttl_sec,
                retention_days=h.position_retention_days,
            )
        return self._hedge_orchestrator

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def connect_store(self) -> None:
        await self.store.connect()

    async def connect(self) -> None:
        """Connect the store, the chain client and every venue adapter."""
        await self.connect_store()
        await self.chain_client.connect()
        for venue in self.venues.values():
            await venue.connect()

    async def shutdown(self) -> None:
        """Stop the pipeline, then release connections. Errors are logged, not raised."""
        if self._hedge_orchestrator is not None:
            await self._hedge_orchestrator.stop()
        if self._deposit_monitor is not None:
            await self._deposit_monitor.stop()
        closables = []
        if self._chain_client is not None:
            closables.append(("chain", self._chain_client))
        closables.extend((name, venue) for name, venue in (self._venues or {}).items())
        if self._store is not None:
            closables.append(("store", self._store))
        for name, service in closables:
            try:
                await service.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting {name}: {e}")
        logger.info("ServiceContainer shut down")

    # ── Inject overrides (for testing) ───────────────────────────────────

    def override(self, **kwargs):
        """
        Override any service with a mock/stub.

        Example:
            container.override(store=RedisStore(client=FakeAsyncRedis()))
        """
        for key, value in kwargs.items():
            attr = f"_{key}"
            if hasattr(self, attr):
                setattr(self, attr, value)
                logger.debug(f"ServiceContainer: overrode {key}")
            else:
                raise KeyError(f"Unknown service: {key}")
