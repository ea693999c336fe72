"""HTTP surface via aiohttp's test client."""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from api import create_app
from deposit_monitor import DepositMonitor
from execution.hedge_legs import HedgeLeg
from execution.hedge_orchestrator import HedgeOrchestrator
from models import HedgeRequest
from tests.fakes import FakeChain, TX, USER, make_event


def _app(store, venues, metrics):
    monitor = DepositMonitor(FakeChain(), store, metrics)
    orchestrator = HedgeOrchestrator(store, [HedgeLeg(v, "ETH") for v in venues.values()], metrics)
    return create_app(monitor, orchestrator, store, metrics), monitor, orchestrator


@pytest.mark.asyncio
async def test_health_and_metrics(store, venues, metrics):
    app, monitor, _ = _app(store, venues, metrics)
    await monitor.handle_deposit(make_event())
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/health")
        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "healthy"
        assert body["redis"] is True

        resp = await client.get("/metrics")
        assert resp.status == 200
        assert "hedge_deposits_detected_total 1.0" in await resp.text()


@pytest.mark.asyncio
async def test_health_reports_store_outage(store, venues, metrics):
    app, _, _ = _app(store, venues, metrics)
    store.ping = AsyncMock(return_value=False)
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/health")
        assert resp.status == 503


@pytest.mark.asyncio
async def test_deposit_endpoints(store, venues, metrics):
    app, monitor, _ = _app(store, venues, metrics)
    await monitor.handle_deposit(make_event(eth="2", block=55))
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/api/deposits?limit=10")
        deposits = await resp.json()
        assert [d["transactionHash"] for d in deposits] == [TX]
        assert deposits[0]["amount"] == "2"

        resp = await client.get(f"/api/deposits/{TX}")
        assert resp.status == 200
        assert (await resp.json())["user"] == USER

        resp = await client.get("/api/deposits/0xmissing")
        assert resp.status == 404

        resp = await client.get("/api/deposits?limit=abc")
        assert resp.status == 400


@pytest.mark.asyncio
async def test_hedge_endpoints(store, venues, metrics):
    app, _, orchestrator = _app(store, venues, metrics)
    await orchestrator.execute_hedge(HedgeRequest(
        deposit_tx_hash=TX, eth_amount=Decimal("1"), krww_amount=Decimal("3000000"), user_address=USER))
    async with TestClient(TestServer(app)) as client:
        resp = await client.get(f"/api/hedges/{TX}")
        assert resp.status == 200
        body = await resp.json()
        assert len(body["positions"]) == 4
        assert body["log"]["successCount"] == 4
        assert body["log"]["totalHedges"] == 4

        resp = await client.get("/api/hedges/0xmissing")
        assert resp.status == 404

        resp = await client.post(f"/api/hedges/{TX}/close")
        assert await resp.json() == {"success": True, "message": "Positions closed successfully"}

        resp = await client.post("/api/hedges/0xmissing/close")
        assert (await resp.json())["success"] is False


@pytest.mark.asyncio
async def test_internal_errors_do_not_leak(store, venues, metrics):
    app, monitor, _ = _app(store, venues, metrics)
    monitor.get_deposit_history = AsyncMock(side_effect=RuntimeError("secret connection string"))
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/api/deposits")
        assert resp.status == 500
        assert await resp.json() == {"error": "Internal server error"}
