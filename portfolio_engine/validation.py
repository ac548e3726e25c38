from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, Iterator, Sequence

from portfolio_engine.exceptions import AccountMismatch, InvalidDateRange
from portfolio_engine.types import Position, Transaction


def require_date_range(start_date: dt.date, end_date: dt.date) -> None:
    if not isinstance(start_date, dt.date) or not isinstance(end_date, dt.date):
        raise InvalidDateRange(f"start_date and end_date must be dates, got {start_date!r} and {end_date!r}")
    if start_date > end_date:
        raise InvalidDateRange(f"start_date {start_date.isoformat()} is after end_date {end_date.isoformat()}")


def require_account(account_id: str, records: Iterable[Any]) -> None:
    for r in records:
        if r.account_id != account_id:
            kind = type(r).__name__.lower()
            raise AccountMismatch(f"{kind} for account {r.account_id!r} passed to a calculation for account {account_id!r}")


def calendar_days(start_date: dt.date, end_date: dt.date) -> Iterator[dt.date]:
    cur = start_date
    one = dt.timedelta(days=1)
    while cur <= end_date:
        yield cur
        cur += one


def is_chronological(dates: Sequence[dt.date | None]) -> bool:
    known = [d for d in dates if d is not None]
    return all(a <= b for a, b in zip(known, known[1:]))


def split_undated(records: Sequence[Position | Transaction]) -> tuple[list, int]:
    dated = [r for r in records if r.date is not None]
    return dated, len(records) - len(dated)
