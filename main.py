"""
KRWW hedge manager: command line entry point.

    python main.py run                 # monitor + orchestrator + HTTP API
    python main.py deposits -n 20      # recent deposits
    python main.py hedges 0xabc...     # positions + execution log for a deposit
    python main.py close 0xabc...      # buy back a deposit's open shorts
"""
import asyncio
import signal
import sys

import typer
from aiohttp import web
from loguru import logger
from rich.console import Console
from rich.table import Table

from api import create_app
from config import get_config, validate_config
from container import ServiceContainer
from errors import ConfigurationError
from models import PositionStatus

app = typer.Typer(help="Deposit-to-hedge pipeline for the KRWW token program")
console = Console()

STATUS_COLOURS = {
    PositionStatus.OPEN: "green",
    PositionStatus.PENDING: "yellow",
    PositionStatus.CLOSED: "dim",
    PositionStatus.FAILED: "red",
}


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


# ── run ──────────────────────────────────────────────────────────────────────

async def _serve(container: ServiceContainer) -> None:
    cfg = container.cfg
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    runner = None
    try:
        await container.connect()
        await container.deposit_monitor.start()
        await container.hedge_orchestrator.start()

        http_app = create_app(container.deposit_monitor, container.hedge_orchestrator,
                              container.store, container.metrics)
        runner = web.AppRunner(http_app)
        await runner.setup()
        await web.TCPSite(runner, cfg.server.host, cfg.server.port).start()
        logger.info(f"Hedge manager listening on {cfg.server.host}:{cfg.server.port}")

        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        if runner is not None:
            await runner.cleanup()
        await container.shutdown()


@app.command()
def run():
    """Start the deposit monitor, hedge orchestrator and HTTP API."""
    cfg = get_config()
    configure_logging(cfg.logging.level)
    try:
        validate_config(cfg)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    asyncio.run(_serve(ServiceContainer(cfg)))


# ── inspection / operator commands ───────────────────────────────────────────

async def _with_store(container: ServiceContainer, coro_fn):
    await container.connect_store()
    try:
        return await coro_fn()
    finally:
        await container.store.disconnect()


@app.command()
def deposits(limit: int = typer.Option(20, "--limit", "-n", help="Number of deposits to show")):
    """Show the most recent deposits."""
    cfg = get_config()
    configure_logging("WARNING")
    container = ServiceContainer(cfg)
    rows = asyncio.run(_with_store(
        container, lambda: container.deposit_monitor.get_deposit_history(limit)))

    table = Table(title=f"Recent deposits ({len(rows)})")
    for col in ("Tx hash", "User", "ETH", "KRWW", "Block"):
        table.add_column(col, justify="right" if col in ("ETH", "KRWW", "Block") else "left")
    for d in rows:
        table.add_row(d.transaction_hash, d.user, str(d.amount), str(d.krww_minted), str(d.block_number))
    console.print(table)


@app.command()
def hedges(tx: str = typer.Argument(..., help="Deposit transaction hash")):
    """Show hedge positions and the execution log for a deposit."""
    cfg = get_config()
    configure_logging("WARNING")
    container = ServiceContainer(cfg)
    orchestrator = container.hedge_orchestrator

    async def _load():
        return await orchestrator.get_hedge_by_tx_hash(tx), await orchestrator.get_hedge_log(tx)

    positions, execution_log = asyncio.run(_with_store(container, _load))
    if not positions and execution_log is None:
        console.print(f"[red]No hedge found for {tx}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Hedge positions for {tx}")
    for col in ("Venue", "Symbol", "Amount", "Price", "Status", "Error"):
        table.add_column(col)
    for p in positions:
        colour = STATUS_COLOURS[p.status]
        table.add_row(p.venue, p.symbol, str(p.amount), str(p.price),
                      f"[{colour}]{p.status.value}[/{colour}]", p.error or "")
    console.print(table)
    if execution_log is not None:
        console.print(f"Outcome: [bold]{execution_log.outcome.value}[/bold] "
                      f"({execution_log.success_count}/{execution_log.total_hedges})")


@app.command()
def close(tx: str = typer.Argument(..., help="Deposit transaction hash")):
    """Close every open hedge position for a deposit."""
    cfg = get_config()
    configure_logging(cfg.logging.level)
    container = ServiceContainer(cfg)

    async def _close():
        try:
            await container.connect_store()
            for venue in container.venues.values():
                await venue.connect()
            return await container.hedge_orchestrator.close_hedge_positions(tx)
        finally:
            await container.shutdown()

    success = asyncio.run(_close())
    if success:
        console.print("[green]✓ Positions closed successfully[/green]")
    else:
        console.print("[red]✗ Failed to close some positions[/red]")
    raise typer.Exit(0 if success else 1)


if __name__ == "__main__":
    app()
