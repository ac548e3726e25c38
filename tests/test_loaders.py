from __future__ import annotations

import datetime as dt
from decimal import Decimal
from pathlib import Path

from portfolio_engine.loaders import load_positions, load_transactions, parse_date, parse_money
from portfolio_engine.types import TransactionType


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_parse_helpers():
    assert parse_date("01/02/2024") == dt.date(2024, 1, 2)
    assert parse_date("2024-01-02T10:00:00") == dt.date(2024, 1, 2)
    assert parse_date("soon") is None
    assert parse_money("$(1,250.50)") == Decimal("-1250.50")
    assert parse_money("1,000") == Decimal("1000")
    assert parse_money("--") is None


def test_load_positions(tmp_path: Path):
    p = _write(
        tmp_path / "positions.csv",
        "Date,Symbol,Quantity,Market Value,Asset Class,Cost Basis\n"
        "2024-01-02,aaa,10,\"1,100.00\",Equity,1000\n"
        "2024-01-01,aaa,10,1000,Equity,1000\n"
        ",bbb,1,5,Equity,\n",
    )
    positions, warnings = load_positions(p, account_id="A1")
    assert [x.date for x in positions] == [dt.date(2024, 1, 1), dt.date(2024, 1, 2)]
    assert positions[1].symbol == "AAA"
    assert positions[1].market_value == Decimal("1100.00")
    assert positions[1].asset_class == "EQUITY"
    assert positions[1].account_id == "A1"
    assert any("Skipped 1 position row" in w for w in warnings)


def test_load_positions_semicolon_and_account_column(tmp_path: Path):
    p = _write(
        tmp_path / "positions.csv",
        "account;date;security_id;value\n"
        "X1;2024-01-01;CUSIP1;10\n"
        "X2;2024-01-01;CUSIP2;20\n",
    )
    positions, warnings = load_positions(p)
    assert warnings == []
    assert [x.account_id for x in positions] == ["X1", "X2"]


def test_load_positions_empty(tmp_path: Path):
    p = _write(tmp_path / "positions.csv", "foo,bar\n1,2\n")
    positions, warnings = load_positions(p, account_id="A1")
    assert positions == []
    assert any("No positions parsed" in w for w in warnings)


def test_load_transactions(tmp_path: Path):
    p = _write(
        tmp_path / "transactions.csv",
        "Date,Action,Symbol,Quantity,Amount\n"
        "2024-01-03,Bought,aaa,10,-1000\n"
        "2024-01-02,Deposit,,,500\n"
        "2024-01-04,Journal,,,1\n",
    )
    txs, warnings = load_transactions(p, account_id="A1")
    # Order is preserved; the engine sorts and warns.
    assert [t.type for t in txs] == [TransactionType.BUY, TransactionType.DEPOSIT, TransactionType.OTHER]
    assert txs[0].security_id == "AAA"
    assert txs[0].quantity == Decimal("10")
    assert txs[1].security_id is None
    assert any("Journal" in w for w in warnings)


def test_date_formats_are_configurable(tmp_path: Path):
    p = _write(
        tmp_path / "positions.csv",
        "Date,Symbol,Value\n"
        "31/01/2024,AAA,100\n",
    )
    positions, warnings = load_positions(p, account_id="A1")
    assert positions == []
    assert any("Skipped 1" in w for w in warnings)

    positions, warnings = load_positions(p, account_id="A1", date_formats=("%d/%m/%Y",))
    assert [x.date for x in positions] == [dt.date(2024, 1, 31)]
    assert warnings == []
    assert parse_date("31.01.2024", ("%d.%m.%Y",)) == dt.date(2024, 1, 31)
