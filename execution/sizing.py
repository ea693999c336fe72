"""
Order sizing: translate a hedge notional into venue order units.

All arithmetic is Decimal; floats never touch an order size.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_DOWN

# CME KRW/USD futures: one contract is 125,000,000 KRW.
KRW_CONTRACT_SIZE = Decimal("125000000")


def round_order_size(size: Decimal, step: Decimal, minimum: Decimal) -> Decimal:
    """
    Round down to the venue's increment, then up to its minimum order size.

    >>> round_order_size(Decimal("0.0456"), Decimal("0.001"), Decimal("0.01"))
    Decimal('0.045')
    """
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    steps = (size / step).to_integral_value(rounding=ROUND_DOWN)
    rounded = (steps * step).quantize(step)
    return max(rounded, minimum)


def usd_notional(eth_amount: Decimal, eth_price: Decimal) -> Decimal:
    return eth_amount * eth_price


def krw_contract_count(usd_value: Decimal, krw_usd_price: Decimal,
                       contract_size: Decimal = KRW_CONTRACT_SIZE) -> Decimal:
    """Whole KRW/USD contracts covering usd_value (price quoted in USD per KRW)."""
    if krw_usd_price <= 0:
        raise ValueError(f"invalid KRW/USD price {krw_usd_price}")
    contract_usd = contract_size * krw_usd_price
    return (usd_value / contract_usd).to_integral_value(rounding=ROUND_DOWN)
