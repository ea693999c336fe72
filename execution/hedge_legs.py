"""
Hedge legs: one per venue, each knows which instrument it shorts and how
to translate a HedgeRequest's ETH notional into that venue's order size.
"""
from __future__ import annotations

from decimal import Decimal

from loguru import logger

from errors import VenueError
from execution.sizing import KRW_CONTRACT_SIZE, krw_contract_count, usd_notional
from interfaces import IVenueAdapter
from models import HedgeRequest


class HedgeLeg:
    """Short the hedged asset 1:1 (venue rounds to its own increments)."""

    def __init__(self, venue: IVenueAdapter, instrument: str):
        self.venue = venue
        self.instrument = instrument

    @property
    def venue_name(self) -> str:
        return self.venue.name

    async def order_size(self, request: HedgeRequest) -> Decimal:
        return request.eth_amount

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.venue_name}:{self.instrument})"


class KRWFuturesLeg(HedgeLeg):
    """
    Short KRW/USD futures sized to the deposit's USD value.

    ETH is priced on a reference venue, then converted to whole contracts
    at the futures venue's quoted KRW/USD rate.
    """

    def __init__(self, venue: IVenueAdapter, instrument: str,
                 price_venue: IVenueAdapter, price_instrument: str,
                 contract_size: Decimal = KRW_CONTRACT_SIZE):
        super().__init__(venue, instrument)
        self.price_venue = price_venue
        self.price_instrument = price_instrument
        self.contract_size = contract_size

    async def order_size(self, request: HedgeRequest) -> Decimal:
        eth_price = await self.price_venue.current_price(self.price_instrument)
        usd_value = usd_notional(request.eth_amount, eth_price)
        krw_price = await self.venue.current_price(self.instrument)
        contracts = krw_contract_count(usd_value, krw_price, self.contract_size)
        logger.debug(f"{self.venue_name}: ${usd_value:,.2f} → {contracts} contracts @ {krw_price}")
        if contracts == 0:
            raise VenueError(self.venue_name,
                             f"USD value {usd_value:.2f} too small for {self.instrument} futures contract")
        return contracts
