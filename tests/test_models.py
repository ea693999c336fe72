"""Record encoding and outcome classification."""
from decimal import Decimal

import pytest

from errors import DecodeError
from models import (
    ExecutionLog,
    Filled,
    HedgeOutcome,
    HedgePosition,
    HedgeRequest,
    PositionStatus,
    Rejected,
)


@pytest.mark.parametrize("success, total, outcome", [
    (4, 4, HedgeOutcome.FULLY_HEDGED),
    (2, 4, HedgeOutcome.PARTIALLY_HEDGED),
    (0, 4, HedgeOutcome.UNHEDGED),
])
def test_classify(success, total, outcome):
    assert HedgeOutcome.classify(success, total) == outcome


def test_position_from_fill_uses_venue_prefixed_id():
    position = HedgePosition.from_result(
        "binance", Filled(order_id="991", instrument="ETHUSDT",
                          filled_size=Decimal("0.5"), fill_price=Decimal("3000")))
    assert position.id == "binance_991"
    assert position.status == PositionStatus.OPEN
    stored = position.to_dict()
    assert stored["type"] == "binance"
    assert stored["side"] == "short"
    assert "error" not in stored


def test_rejected_result_is_failed_position():
    position = HedgePosition.from_result(
        "bybit", Rejected(instrument="ETHUSDT", requested_size=Decimal("2"), reason="margin"))
    assert position.is_failed
    assert position.price == Decimal("0")
    assert position.amount == Decimal("2")
    assert HedgePosition.from_json(position.to_json()).error == "margin"


def test_mark_closed_bumps_updated_at():
    position = HedgePosition.failed("cme", "KRW/USD", Decimal("1"), "x")
    position.status = PositionStatus.OPEN
    before = position.updated_at
    position.mark_closed()
    assert position.status == PositionStatus.CLOSED
    assert position.updated_at >= before
    assert position.created_at <= position.updated_at


def test_execution_log_counts_non_failed_positions():
    request = HedgeRequest(deposit_tx_hash="0x01", eth_amount=Decimal("1"),
                           krww_amount=Decimal("3000000"), user_address="0xuser")
    ok = HedgePosition.from_result("binance", Filled("1", "ETHUSDT", Decimal("1"), Decimal("3000")))
    bad = HedgePosition.failed("cme", "KRW/USD", Decimal("1"), "down")
    execution_log = ExecutionLog(request=request, positions=[ok, bad], total_hedges=4)
    d = execution_log.to_dict()
    assert d["successCount"] == 1
    assert d["totalHedges"] == 4
    assert d["txHash"] == "0x01"
    assert ExecutionLog.from_json(execution_log.to_json()).success_count == 1


@pytest.mark.parametrize("raw", [
    "not json",
    '{"ethAmount": "1", "krwwAmount": "1", "userAddress": "0x"}',
    '{"depositTxHash": "", "ethAmount": "1", "krwwAmount": "1", "userAddress": "0x"}',
    '{"depositTxHash": "0x01", "ethAmount": "abc", "krwwAmount": "1", "userAddress": "0x"}',
])
def test_malformed_hedge_request(raw):
    with pytest.raises(DecodeError):
        HedgeRequest.from_json(raw)
