"""
Execution layer: turning hedge requests into venue positions.

  sizing.py              lot-size rounding and KRW contract conversion
  hedge_legs.py          per-venue order sizing (ETH legs, KRW futures leg)
  hedge_orchestrator.py  queue consumer, claim, fan-out, aggregation, close-out
"""
