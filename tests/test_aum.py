from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal

import pytest

from portfolio_engine.aum import compute_aggregate_aum, compute_aum, compute_multiple_aum
from portfolio_engine.exceptions import AccountMismatch, InvalidDateRange
from portfolio_engine.settings import EngineSettings
from portfolio_engine.types import Position, Transaction

D1 = dt.date(2024, 1, 1)
D2 = dt.date(2024, 1, 2)


def _pos(d, mv, sec=None, acct="A1", **kw) -> Position:
    return Position(account_id=acct, date=d, market_value=mv, security_id=sec, **kw)


def _tx(d, amount, type_, acct="A1", **kw) -> Transaction:
    return Transaction(account_id=acct, date=d, amount=amount, type=type_, **kw)


def test_daily_values_forward_fill_and_continuity():
    positions = [
        _pos(dt.date(2023, 12, 29), 1000, "AAA"),
        _pos(dt.date(2024, 1, 3), 1050, "AAA"),
        _pos(dt.date(2024, 1, 2), 500, "BBB"),
    ]
    res = compute_aum("A1", D1, dt.date(2024, 1, 4), positions, [])
    assert [r.date for r in res.daily_values] == [D1, D2, dt.date(2024, 1, 3), dt.date(2024, 1, 4)]
    assert [r.ending_value for r in res.daily_values] == [
        Decimal("1000.00"),
        Decimal("1500.00"),
        Decimal("1550.00"),
        Decimal("1550.00"),
    ]
    # Each day begins where the prior one ended.
    for prev, cur in zip(res.daily_values, res.daily_values[1:]):
        assert cur.beginning_value == prev.ending_value
    assert res.summary.start_value == Decimal("1000.00")
    assert res.summary.start_value_known is True


def test_same_day_flows_are_summed_and_trades_ignored():
    positions = [_pos(D1, 1000, "AAA"), _pos(D2, 1600, "AAA")]
    txs = [
        _tx(D2, 300, "DEPOSIT"),
        _tx(D2, 200, "CONTRIBUTION"),
        _tx(D2, -250, "BUY", security_id="AAA", quantity=5),
        _tx(D2, 12, "DIVIDEND", security_id="AAA"),
    ]
    res = compute_aum("A1", D1, D2, positions, txs)
    day2 = res.daily_values[1]
    assert day2.net_flows == Decimal("500.00")
    assert day2.market_value_change == Decimal("100.00")
    assert res.summary.contributions == Decimal("500.00")
    assert res.summary.withdrawals == Decimal("0.00")


def test_summary_identity_holds():
    positions = [_pos(dt.date(2023, 12, 31), 1000), _pos(D2, 900), _pos(dt.date(2024, 1, 5), 1300)]
    txs = [_tx(D2, 200, "WITHDRAWAL"), _tx(dt.date(2024, 1, 4), 350, "TRANSFER_IN")]
    res = compute_aum("A1", D1, dt.date(2024, 1, 5), positions, txs)
    s = res.summary
    assert s.net_contribution == Decimal("150.00")
    assert s.withdrawals == Decimal("200.00")
    assert s.end_value - s.start_value == s.net_contribution + s.total_growth


def test_empty_history_returns_no_data():
    res = compute_aum("A1", D1, D2, [], [])
    assert res.summary.data_available is False
    assert res.summary.start_value == 0
    assert res.summary.end_value == 0
    assert res.daily_values == []
    assert any("No position history" in w for w in res.warnings)


def test_gap_before_first_position_is_valued_at_zero_with_warning():
    res = compute_aum("A1", D1, dt.date(2024, 1, 3), [_pos(dt.date(2024, 1, 3), 700)], [])
    assert [r.ending_value for r in res.daily_values] == [Decimal("0.00"), Decimal("0.00"), Decimal("700.00")]
    assert res.summary.start_value_known is False
    assert any("2 day(s)" in w for w in res.warnings)


def test_non_chronological_transactions_are_sorted_with_warning():
    positions = [_pos(D1, 100), _pos(D2, 300)]
    txs = [_tx(D2, 50, "DEPOSIT"), _tx(D1, 100, "DEPOSIT")]
    res = compute_aum("A1", D1, D2, positions, txs)
    assert [r.net_flows for r in res.daily_values] == [Decimal("100.00"), Decimal("50.00")]
    assert any("chronological" in w for w in res.warnings)


def test_fees_become_flows_when_configured():
    positions = [_pos(D1, 1000), _pos(D2, 990)]
    txs = [_tx(D2, 10, "FEE")]
    default = compute_aum("A1", D1, D2, positions, txs)
    gross = compute_aum("A1", D1, D2, positions, txs, settings=EngineSettings(fees_as_flows=True))
    assert default.daily_values[1].net_flows == 0
    assert gross.daily_values[1].net_flows == Decimal("-10.00")
    assert gross.daily_values[1].market_value_change == Decimal("0.00")


def test_duplicate_positions_last_one_wins():
    positions = [_pos(D1, 100, "AAA"), _pos(D1, 150, "AAA")]
    res = compute_aum("A1", D1, D1, positions, [])
    assert res.daily_values[0].ending_value == Decimal("150.00")
    assert any("Duplicate" in w for w in res.warnings)


def test_inverted_range_raises():
    with pytest.raises(InvalidDateRange):
        compute_aum("A1", D2, D1, [], [])


def test_foreign_account_record_raises():
    with pytest.raises(AccountMismatch):
        compute_aum("A1", D1, D2, [_pos(D1, 100, acct="B2")], [])
    with pytest.raises(AccountMismatch):
        compute_aum("A1", D1, D2, [_pos(D1, 100)], [_tx(D1, 10, "DEPOSIT", acct="B2")])


def test_idempotent():
    positions = [_pos(D1, 1000, "AAA"), _pos(D2, 1100, "AAA")]
    txs = [_tx(D2, 50, "DEPOSIT")]
    first = json.dumps(compute_aum("A1", D1, D2, positions, txs).to_dict())
    assert json.dumps(compute_aum("A1", D1, D2, positions, txs).to_dict()) == first


def test_sub_cent_flows_round_consistently():
    # Each 0.005 deposit rounds to 0.01 once; summary split and daily rows agree.
    positions = [_pos(dt.date(2023, 12, 31), 100)]
    txs = [_tx(D1, "0.005", "DEPOSIT"), _tx(D2, "0.005", "DEPOSIT"), _tx(dt.date(2024, 1, 3), "0.005", "DEPOSIT")]
    res = compute_aum("A1", D1, dt.date(2024, 1, 3), positions, txs)
    s = res.summary
    assert s.contributions == Decimal("0.03")
    assert s.contributions - s.withdrawals == s.net_contribution
    assert sum(r.net_flows for r in res.daily_values) == s.net_contribution


def test_multiple_and_aggregate():
    positions = [
        _pos(D1, 1000, acct="A1"),
        _pos(D2, 1100, acct="A1"),
        _pos(D1, 500, acct="B2"),
        _pos(D2, 600, acct="B2"),
        _pos(D1, 999, acct="IGNORED"),
    ]
    txs = [_tx(D2, 50, "DEPOSIT", acct="B2")]
    per = compute_multiple_aum(["A1", "B2", "EMPTY"], D1, D2, positions, txs)
    assert set(per) == {"A1", "B2", "EMPTY"}
    assert per["EMPTY"].summary.data_available is False

    agg = compute_aggregate_aum(["A1", "B2", "EMPTY"], D1, D2, positions, txs)
    assert agg.account_count == 3
    assert agg.data_available is True
    assert agg.end_value == Decimal("1700.00")
    assert agg.net_contribution == Decimal("50.00")
    assert agg.daily_values[1].ending_value == Decimal("1700.00")
    assert agg.daily_values[1].net_flows == Decimal("50.00")
    assert any(w.startswith("EMPTY: ") for w in agg.warnings)
