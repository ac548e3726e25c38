from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal

import pytest

from portfolio_engine.exceptions import AccountMismatch, ContractViolation
from portfolio_engine.holdings import (
    compute_holdings,
    concentration,
    performance_attribution,
    reconstruct_cost_basis,
)
from portfolio_engine.types import Position, Transaction

ASOF = dt.date(2024, 3, 31)


def _pos(sec, mv, d=ASOF, **kw) -> Position:
    return Position(account_id="A1", date=d, market_value=mv, security_id=sec, **kw)


def _trade(sec, type_, amount, qty=None, d=dt.date(2024, 1, 15)) -> Transaction:
    return Transaction(account_id="A1", date=d, amount=amount, type=type_, security_id=sec, quantity=qty)


def test_allocation_without_cash():
    positions = [
        Position(account_id="A1", date=ASOF, market_value=600, symbol="A"),
        Position(account_id="A1", date=ASOF, market_value=400, symbol="B"),
    ]
    snap = compute_holdings("A1", ASOF, positions, [], cash_balance=0)
    assert snap.total_market_value == Decimal("1000.00")
    assert [h.security_id for h in snap.holdings] == ["A", "B"]
    assert [h.allocation_percent for h in snap.holdings] == [Decimal("0.6"), Decimal("0.4")]
    assert sum(a.market_value for a in snap.asset_classes) == snap.total_market_value
    assert all(h.cost_basis is None for h in snap.holdings)
    assert any("zero-basis" in w for w in snap.warnings)


def test_allocations_with_cash_close_to_one():
    positions = [
        _pos("AAA", 333.33, asset_class="equity"),
        _pos("BBB", 333.33, asset_class="bond"),
        _pos("CASH", 333.34, asset_class="cash"),
    ]
    snap = compute_holdings("A1", ASOF, positions, [])
    assert snap.cash_balance == Decimal("333.34")
    assert len(snap.holdings) == 2
    total = sum(h.allocation_percent for h in snap.holdings) + snap.cash_allocation_percent
    assert abs(total - 1) < Decimal("1e-6")
    classes = {a.asset_class: a for a in snap.asset_classes}
    assert set(classes) == {"EQUITY", "BOND", "CASH"}
    assert abs(sum(a.allocation_percent for a in snap.asset_classes) - 1) < Decimal("1e-6")


def test_cash_override():
    snap = compute_holdings("A1", ASOF, [_pos("AAA", 900), _pos("CASH", 50, asset_class="CASH")], [], cash_balance="100")
    assert snap.cash_balance == Decimal("100.00")
    assert snap.total_market_value == Decimal("1000.00")
    assert snap.holdings[0].allocation_percent == Decimal("0.9")


def test_latest_position_on_or_before_asof_and_closed_positions_excluded():
    positions = [
        _pos("AAA", 100, d=dt.date(2024, 3, 1), quantity=10),
        _pos("AAA", 120, d=dt.date(2024, 3, 29), quantity=10),
        _pos("AAA", 999, d=dt.date(2024, 4, 5), quantity=10),
        _pos("BBB", 0, quantity=0),
    ]
    snap = compute_holdings("A1", ASOF, positions, [])
    assert [h.security_id for h in snap.holdings] == ["AAA"]
    assert snap.holdings[0].market_value == Decimal("120.00")
    assert snap.holdings[0].position_date == dt.date(2024, 3, 29)


def test_average_cost_basis_from_trades():
    txs = [
        _trade("AAA", "BUY", -1000, 10),
        _trade("AAA", "BUY", -2000, 10, d=dt.date(2024, 2, 1)),
        _trade("AAA", "SELL", 1800, 5, d=dt.date(2024, 3, 1)),
    ]
    basis = reconstruct_cost_basis(txs, as_of_date=ASOF)
    # 20 shares at 150 average; selling 5 removes 750.
    assert basis["AAA"] == Decimal("2250")

    snap = compute_holdings("A1", ASOF, [_pos("AAA", 2400, quantity=15)], txs)
    h = snap.holdings[0]
    assert h.cost_basis == Decimal("2250.00")
    assert h.unrealized_pnl == Decimal("150.00")
    assert h.unrealized_pnl_percent == Decimal("0.0666666667")


def test_cost_basis_falls_back_to_net_amounts_without_quantities():
    txs = [_trade("AAA", "BUY", -1000), _trade("AAA", "SELL", 400, d=dt.date(2024, 2, 1))]
    assert reconstruct_cost_basis(txs, as_of_date=ASOF)["AAA"] == Decimal("600")


def test_negative_net_basis_is_floored():
    warnings: list[str] = []
    txs = [_trade("AAA", "BUY", -100), _trade("AAA", "SELL", 400, d=dt.date(2024, 2, 1))]
    assert reconstruct_cost_basis(txs, as_of_date=ASOF, warnings=warnings)["AAA"] == 0
    assert any("floored at 0" in w for w in warnings)


def test_cost_basis_fallback_chain():
    positions = [
        _pos("AAA", 500, cost_basis=400),
        _pos("BBB", 500, unrealized_pnl=-50),
        _pos("CCC", 500, cost_basis=0),
    ]
    snap = compute_holdings("A1", ASOF, positions, [])
    by_id = {h.security_id: h for h in snap.holdings}
    assert by_id["AAA"].cost_basis == Decimal("400.00")
    assert by_id["BBB"].cost_basis == Decimal("550.00")
    assert by_id["CCC"].unrealized_pnl == Decimal("500.00")
    assert by_id["CCC"].unrealized_pnl_percent is None
    assert any("CCC: zero cost basis" in w for w in snap.warnings)
    assert snap.total_cost_basis == Decimal("950.00")


def test_negative_total_sets_allocations_to_zero():
    snap = compute_holdings("A1", ASOF, [_pos("AAA", 100)], [], cash_balance=-500)
    assert snap.holdings[0].allocation_percent == 0
    assert any("negative" in w for w in snap.warnings)


def test_contract_violations():
    with pytest.raises(ContractViolation):
        compute_holdings("A1", "2024-03-31", [], [])
    with pytest.raises(ContractViolation):
        compute_holdings("A1", ASOF, [], [], cash_balance="n/a")
    with pytest.raises(AccountMismatch):
        compute_holdings("A1", ASOF, [Position(account_id="B2", date=ASOF, market_value=1, security_id="X")], [])


def test_concentration():
    positions = [_pos("AAA", 500, symbol="AAA"), _pos("BBB", 300), _pos("CCC", 200)]
    snap = compute_holdings("A1", ASOF, positions, [])
    c = concentration(snap)
    assert c.holding_count == 3
    assert c.largest_holding_symbol == "AAA"
    assert c.largest_holding_weight == Decimal("0.5")
    assert c.top5_weight == Decimal("1")
    # 0.25 + 0.09 + 0.04
    assert c.herfindahl_index == Decimal("0.38")
    assert abs(c.effective_holdings - Decimal("2.6315789474")) < Decimal("1e-9")


def test_idempotent():
    positions = [_pos("AAA", 500), _pos("BBB", 300)]
    first = json.dumps(compute_holdings("A1", ASOF, positions, []).to_dict())
    assert json.dumps(compute_holdings("A1", ASOF, positions, []).to_dict()) == first


def test_performance_attribution():
    prev_date = dt.date(2024, 2, 29)
    previous = compute_holdings(
        "A1",
        prev_date,
        [
            _pos("AAA", 600, d=prev_date, quantity=6),
            _pos("BBB", 400, d=prev_date, quantity=4),
        ],
        [],
    )
    current = compute_holdings(
        "A1",
        ASOF,
        [
            # AAA up 10%, BBB sold, CCC bought.
            _pos("AAA", 660, quantity=6),
            _pos("BBB", 0, quantity=0),
            _pos("CCC", 340, quantity=2),
        ],
        [],
    )
    rows = performance_attribution(current, previous)
    by_id = {r.security_id: r for r in rows}
    assert set(by_id) == {"AAA", "BBB", "CCC"}

    aaa = by_id["AAA"]
    assert aaa.previous_price == Decimal("100")
    assert aaa.current_price == Decimal("110")
    assert aaa.price_return == Decimal("0.1")
    assert aaa.previous_weight == Decimal("0.6")
    assert aaa.current_weight == Decimal("0.66")
    assert aaa.weight_change == Decimal("0.06")
    assert aaa.contribution == Decimal("0.06")

    assert by_id["BBB"].price_return is None
    assert by_id["BBB"].contribution == 0
    assert by_id["BBB"].weight_change == Decimal("-0.4")
    assert by_id["CCC"].previous_weight == 0
    assert rows[0].security_id == "AAA"


def test_performance_attribution_contract():
    snap = compute_holdings("A1", ASOF, [_pos("AAA", 100)], [])
    earlier = compute_holdings("A1", dt.date(2024, 1, 31), [_pos("AAA", 90, d=dt.date(2024, 1, 31))], [])
    with pytest.raises(ContractViolation):
        performance_attribution(earlier, snap)
    other = compute_holdings("B2", ASOF, [Position(account_id="B2", date=ASOF, market_value=1, security_id="X")], [])
    with pytest.raises(AccountMismatch):
        performance_attribution(other, snap)
