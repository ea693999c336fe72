"""
Prometheus metrics for the deposit-to-hedge pipeline.
Exposed by the HTTP app at /metrics for Grafana to scrape.
"""
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    REGISTRY,
    generate_latest,
    CONTENT_TYPE_LATEST,
)
from loguru import logger


class HedgeMetricsExporter:
    """
    Counters and gauges for deposits, hedge outcomes and venue orders.

    Pass a fresh CollectorRegistry in tests; the default registry only
    accepts each metric name once per process.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY
        self._setup_counters()
        self.last_processed_block = Gauge(
            'hedge_last_processed_block', 'Highest chain block handled by the deposit monitor',
            registry=self.registry)
        logger.debug("Hedge metrics registered")

    def _setup_counters(self):
        """Setup all Counter metrics."""
        counter_defs = [
            ('deposits_detected', 'hedge_deposits_detected', 'Deposit events handled', ()),
            ('requests_queued', 'hedge_requests_queued', 'Hedge requests pushed to the queue', ()),
            ('executions', 'hedge_executions', 'Hedge executions by outcome', ('outcome',)),
            ('venue_orders', 'hedge_venue_orders', 'Venue short orders by status', ('venue', 'status')),
            ('position_closes', 'hedge_position_closes', 'Position close attempts', ('venue', 'result')),
        ]
        for attr, name, desc, labels in counter_defs:
            setattr(self, attr, Counter(name, desc, labels, registry=self.registry))

    def deposit_detected(self) -> None:
        self.deposits_detected.inc()

    def hedge_request_queued(self) -> None:
        self.requests_queued.inc()

    def hedge_executed(self, outcome: str) -> None:
        self.executions.labels(outcome=outcome).inc()

    def venue_order(self, venue: str, status: str) -> None:
        self.venue_orders.labels(venue=venue, status=status).inc()

    def position_close(self, venue: str, success: bool) -> None:
        self.position_closes.labels(venue=venue, result="closed" if success else "failed").inc()

    def set_last_processed_block(self, block: int) -> None:
        self.last_processed_block.set(block)

    def render(self) -> bytes:
        """Serialize the registry in Prometheus text format."""
        return generate_latest(self.registry)
