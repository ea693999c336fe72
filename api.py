"""
HTTP surface for operators and Grafana.

Routes:
  GET  /health                   store ping
  GET  /metrics                  Prometheus text format
  GET  /api/deposits?limit=N     recent deposits, newest first
  GET  /api/deposits/{tx}        one deposit (404 when unknown)
  GET  /api/hedges/{tx}          positions + execution log (404 when neither exists)
  POST /api/hedges/{tx}/close    buy back every open short for the deposit

Handlers never leak exception detail; failures are logged and answered
with a generic 500.
"""
from __future__ import annotations

from typing import Optional

from aiohttp import web
from loguru import logger

from deposit_monitor import DepositMonitor
from execution.hedge_orchestrator import HedgeOrchestrator
from interfaces import IDurableStore
from monitoring.metrics import HedgeMetricsExporter

MONITOR = web.AppKey("monitor", DepositMonitor)
ORCHESTRATOR = web.AppKey("orchestrator", HedgeOrchestrator)
STORE = web.AppKey("store", object)
METRICS = web.AppKey("metrics", object)

DEFAULT_HISTORY_LIMIT = 100
MAX_HISTORY_LIMIT = 1000


def _internal_error(context: str) -> web.Response:
    logger.exception(f"Error {context}")
    return web.json_response({"error": "Internal server error"}, status=500)


async def health(request: web.Request) -> web.Response:
    store: IDurableStore = request.app[STORE]
    try:
        redis_ok = await store.ping()
    except Exception as e:
        logger.warning(f"Health check failed: {e}")
        redis_ok = False
    body = {
        "status": "healthy" if redis_ok else "unhealthy",
        "redis": redis_ok,
        "monitor": request.app[MONITOR].is_running,
        "orchestrator": request.app[ORCHESTRATOR].is_running,
    }
    return web.json_response(body, status=200 if redis_ok else 503)


async def metrics(request: web.Request) -> web.Response:
    exporter: Optional[HedgeMetricsExporter] = request.app[METRICS]
    if exporter is None:
        raise web.HTTPNotFound()
    resp = web.Response(body=exporter.render())
    resp.headers["Content-Type"] = exporter.content_type
    return resp


async def list_deposits(request: web.Request) -> web.Response:
    try:
        limit = int(request.query.get("limit", DEFAULT_HISTORY_LIMIT))
    except ValueError:
        return web.json_response({"error": "limit must be an integer"}, status=400)
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    try:
        deposits = await request.app[MONITOR].get_deposit_history(limit)
    except Exception:
        return _internal_error("fetching deposits")
    return web.json_response([d.to_dict() for d in deposits])


async def get_deposit(request: web.Request) -> web.Response:
    tx = request.match_info["tx"]
    try:
        deposit = await request.app[MONITOR].get_deposit_by_tx_hash(tx)
    except Exception:
        return _internal_error(f"fetching deposit {tx}")
    if deposit is None:
        return web.json_response({"error": "Deposit not found"}, status=404)
    return web.json_response(deposit.to_dict())


async def get_hedges(request: web.Request) -> web.Response:
    tx = request.match_info["tx"]
    orchestrator: HedgeOrchestrator = request.app[ORCHESTRATOR]
    try:
        positions = await orchestrator.get_hedge_by_tx_hash(tx)
        execution_log = await orchestrator.get_hedge_log(tx)
    except Exception:
        return _internal_error(f"fetching hedges for {tx}")
    if not positions and execution_log is None:
        return web.json_response({"error": "Hedge not found"}, status=404)
    return web.json_response({
        "positions": [p.to_dict() for p in positions],
        "log": execution_log.to_dict() if execution_log else None,
    })


async def close_hedges(request: web.Request) -> web.Response:
    tx = request.match_info["tx"]
    try:
        success = await request.app[ORCHESTRATOR].close_hedge_positions(tx)
    except Exception:
        return _internal_error(f"closing hedges for {tx}")
    message = "Positions closed successfully" if success else "Failed to close some positions"
    return web.json_response({"success": success, "message": message})


def create_app(
    monitor: DepositMonitor,
    orchestrator: HedgeOrchestrator,
    store: IDurableStore,
    metrics_exporter: Optional[HedgeMetricsExporter] = None,
) -> web.Application:
    app = web.Application()
    app[MONITOR] = monitor
    app[ORCHESTRATOR] = orchestrator
    app[STORE] = store
    app[METRICS] = metrics_exporter
    app.router.add_get("/health", health)
    app.router.add_get("/metrics", metrics)
    app.router.add_get("/api/deposits", list_deposits)
    app.router.add_get("/api/deposits/{tx}", get_deposit)
    app.router.add_get("/api/hedges/{tx}", get_hedges)
    app.router.add_post("/api/hedges/{tx}/close", close_hedges)
    return app
