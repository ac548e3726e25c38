from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal

from portfolio_engine import compute_performance
from portfolio_engine.types import Position, Transaction

D1 = dt.date(2024, 1, 1)
D2 = dt.date(2024, 1, 2)


def test_single_day_gain():
    positions = [
        Position(account_id="A1", date=D1, market_value=1000),
        Position(account_id="A1", date=D2, market_value=1100),
    ]
    report = compute_performance("A1", D1, D2, positions, [])
    day2 = report.twr.daily_returns[1]
    assert day2.daily_return == Decimal("0.1")
    assert report.twr.summary.total_twr == Decimal("0.1")


def test_deposit_is_not_counted_as_return():
    positions = [
        Position(account_id="A1", date=D1, market_value=1000),
        Position(account_id="A1", date=D2, market_value=1600),
    ]
    txs = [Transaction(account_id="A1", date=D2, amount=500, type="DEPOSIT")]
    report = compute_performance("A1", D1, D2, positions, txs)
    day2 = report.twr.daily_returns[1]
    assert day2.net_flows == Decimal("500.00")
    # Flow-adjusted, not the naive 0.60.
    assert day2.daily_return == Decimal("0.1")
    assert report.aum.summary.contributions == Decimal("500.00")


def test_no_data_is_not_an_error():
    report = compute_performance("A1", D1, D2, [], [])
    assert report.data_available is False
    assert report.aum.summary.end_value == 0
    assert report.twr.daily_returns == []
    assert report.twr.summary.total_twr == 0
    assert report.qc[0].status.value == "PASS"


def test_report_to_dict_is_json_serializable():
    positions = [
        Position(account_id="A1", date=dt.date(2023, 12, 31), market_value=1000, security_id="AAA"),
        Position(account_id="A1", date=D2, market_value=1020, security_id="AAA"),
    ]
    report = compute_performance("A1", D1, D2, positions, [], risk_free_rate=0.01)
    payload = report.to_dict()
    text = json.dumps(payload)
    assert '"qc"' in text
    assert payload["data_available"] is True
    assert payload["qc"]["status"] == "PASS"
    assert payload["summary"]["start_value"] == 1000.0
    assert payload["performance"]["risk_free_rate"] == 0.01
    assert payload["daily_returns"][1]["date"] == "2024-01-02"
