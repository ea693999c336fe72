"""
Pytest configuration and shared fixtures.

The store fixture is the real RedisStore over a fakeredis client, so tests
exercise the same Redis commands production issues.
"""
from decimal import Decimal
from typing import Dict

import fakeredis
import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from errors import VenueError
from monitoring.metrics import HedgeMetricsExporter
from redis_store import RedisStore
from tests.fakes import FakeVenue


@pytest_asyncio.fixture
async def store():
    s = RedisStore(client=fakeredis.FakeAsyncRedis(decode_responses=True))
    await s.connect()
    yield s
    await s.disconnect()


@pytest.fixture
def metrics():
    return HedgeMetricsExporter(registry=CollectorRegistry())


@pytest.fixture
def venues() -> Dict[str, FakeVenue]:
    return {
        "binance": FakeVenue("binance"),
        "cme": FakeVenue("cme", price=Decimal("0.00075")),
        "hyperliquid": FakeVenue("hyperliquid"),
        "bybit": FakeVenue("bybit"),
    }


@pytest.fixture
def failing_venue():
    return FakeVenue("hyperliquid", fail_with=VenueError("hyperliquid", "insufficient margin"))
