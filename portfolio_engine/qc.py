from __future__ import annotations

import datetime as dt
import enum
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Sequence

from portfolio_engine.aum import AUMResult
from portfolio_engine.holdings import reconstruct_cost_basis
from portfolio_engine.money import ONE, ZERO, quantize, to_decimal
from portfolio_engine.settings import DEFAULT_SETTINGS, EngineSettings
from portfolio_engine.types import TRADE_TYPES, DailyValue, Position, Price, Transaction, TransactionType
from portfolio_engine.validation import calendar_days, require_account, require_date_range


class QCStatus(str, enum.Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class QCIssue:
    code: str
    severity: str
    message: str
    date: str | None = None


@dataclass(frozen=True)
class QCResult:
    check: str
    status: QCStatus
    messages: list[str]
    issues: list[QCIssue] = field(default_factory=list)


def _status(issues: Sequence[QCIssue]) -> QCStatus:
    if any(i.severity == "HIGH" for i in issues):
        return QCStatus.FAIL
    if issues:
        return QCStatus.WARN
    return QCStatus.PASS


def check_aum_identity(result: AUMResult, *, settings: EngineSettings | None = None) -> QCResult:
    """
    end - start == net_contribution + total_growth, and each day begins where the prior day ended.

    A difference within tolerance passes; up to 1000x tolerance warns; beyond that fails.
    """
    settings = settings or DEFAULT_SETTINGS
    tol = to_decimal(settings.qc.aum_tolerance)
    s = result.summary
    issues: list[QCIssue] = []

    diff = abs((s.end_value - s.start_value) - (s.net_contribution + s.total_growth))
    if diff > tol:
        issues.append(
            QCIssue(
                code="AUM_IDENTITY",
                severity="HIGH" if diff > tol * 1000 else "MEDIUM",
                message=f"AUM identity difference of {diff} exceeds tolerance {tol}",
            )
        )

    prev: DailyValue | None = None
    for row in result.daily_values:
        gap = row.ending_value - (row.beginning_value + row.net_flows + row.market_value_change)
        if abs(gap) > tol:
            issues.append(
                QCIssue(
                    code="DAILY_IDENTITY",
                    severity="HIGH",
                    message=f"ending value differs from beginning + flows + change by {gap}",
                    date=row.date.isoformat() if row.date else None,
                )
            )
        if prev is not None and abs(row.beginning_value - prev.ending_value) > tol:
            issues.append(
                QCIssue(
                    code="CONTINUITY",
                    severity="HIGH",
                    message=f"beginning value {row.beginning_value} != prior ending value {prev.ending_value}",
                    date=row.date.isoformat() if row.date else None,
                )
            )
        prev = row

    status = _status(issues)
    messages = [i.message for i in issues] or ["AUM identity check passed"]
    return QCResult(check="AUM_IDENTITY", status=status, messages=messages, issues=issues)


def validate_returns(daily_returns: Sequence[DailyValue], *, settings: EngineSettings | None = None) -> QCResult:
    """Flag extreme daily returns and out-of-sequence dates."""
    settings = settings or DEFAULT_SETTINGS
    hi: Decimal = to_decimal(settings.qc.max_daily_return)
    lo: Decimal = to_decimal(settings.qc.min_daily_return)
    issues: list[QCIssue] = []
    prev_date = None
    for row in daily_returns:
        d = row.date.isoformat() if row.date else None
        r = row.daily_return
        if r is None:
            issues.append(QCIssue(code="INVALID_RETURN_VALUE", severity="HIGH", message="missing daily return", date=d))
        elif r > hi:
            issues.append(
                QCIssue(
                    code="EXTREME_POSITIVE_RETURN",
                    severity="HIGH" if r > ONE else "MEDIUM",
                    message=f"daily return {r} above {hi}",
                    date=d,
                )
            )
        elif r < lo:
            issues.append(
                QCIssue(
                    code="EXTREME_NEGATIVE_RETURN",
                    severity="HIGH" if r < -ONE else "MEDIUM",
                    message=f"daily return {r} below {lo}",
                    date=d,
                )
            )
        if row.date is not None:
            if prev_date is not None and row.date <= prev_date:
                issues.append(
                    QCIssue(
                        code="DATE_SEQUENCE_ERROR",
                        severity="HIGH",
                        message=f"{d} does not follow {prev_date.isoformat()}",
                        date=d,
                    )
                )
            prev_date = row.date

    status = _status(issues)
    if status == QCStatus.PASS:
        messages = ["Return validation passed"]
    else:
        high = sum(1 for i in issues if i.severity == "HIGH")
        messages = [f"{len(issues)} return validation issue(s) found ({high} high severity)"]
    return QCResult(check="RETURN_VALIDATION", status=status, messages=messages, issues=issues)


def summarize_qc(results: Sequence[QCResult]) -> dict[str, Any]:
    worst = QCStatus.PASS
    for r in results:
        if r.status == QCStatus.FAIL:
            worst = QCStatus.FAIL
        elif r.status == QCStatus.WARN and worst == QCStatus.PASS:
            worst = QCStatus.WARN
    return {"status": worst.value, "checks": {r.check: r.status.value for r in results}}


def _latest_on_or_before(positions: Sequence[Position], day: dt.date) -> dict[str, Position]:
    latest: dict[str, Position] = {}
    for p in sorted(positions, key=lambda p: p.date):
        if p.date > day:
            break
        latest[p.security_key] = p
    return latest


def reconcile_positions(
    account_id: str,
    positions: Iterable[Position],
    transactions: Iterable[Transaction],
    *,
    as_of_date: dt.date | None = None,
    settings: EngineSettings | None = None,
) -> QCResult:
    """
    Compare share counts implied by BUY/SELL history with the reported positions.

    Trades are assumed to cover the security from inception. Each security's latest record on
    or before `as_of_date` (default: the latest position date) is the reported side; a security
    with trades but no record counts as 0 shares. Where the position carries a cost basis the
    average cost is compared too.
    """
    settings = settings or DEFAULT_SETTINGS
    positions = list(positions)
    transactions = list(transactions)
    require_account(account_id, positions)
    require_account(account_id, transactions)
    qty_tol = to_decimal(settings.qc.quantity_tolerance)
    cost_tol = to_decimal(settings.qc.cost_tolerance)

    dated = [p for p in positions if p.date is not None and p.security_key is not None]
    if as_of_date is None:
        as_of_date = max((p.date for p in dated), default=None)
    if as_of_date is None:
        return QCResult(check="POSITION_RECONCILIATION", status=QCStatus.PASS, messages=["No positions to reconcile"])
    reported = _latest_on_or_before(dated, as_of_date)

    trades: dict[str, list[Transaction]] = defaultdict(list)
    for t in transactions:
        if t.type in TRADE_TYPES and t.security_id and t.date is not None and t.date <= as_of_date:
            trades[t.security_id].append(t)
    bases = reconstruct_cost_basis(transactions, as_of_date=as_of_date)

    issues: list[QCIssue] = []
    for sec in sorted(trades):
        txs = trades[sec]
        if any(t.quantity is None for t in txs):
            issues.append(
                QCIssue(code="MISSING_TRADE_QUANTITY", severity="LOW", message=f"{sec}: trades without a quantity")
            )
            continue
        expected = sum((abs(t.quantity) if t.type == TransactionType.BUY else -abs(t.quantity) for t in txs), ZERO)
        pos = reported.get(sec)
        if pos is not None and pos.quantity is None:
            issues.append(
                QCIssue(code="MISSING_POSITION_QUANTITY", severity="LOW", message=f"{sec}: position has no quantity")
            )
            continue
        actual = pos.quantity if pos is not None else ZERO
        diff = expected - actual
        if abs(diff) > qty_tol:
            issues.append(
                QCIssue(
                    code="QUANTITY_MISMATCH",
                    severity="HIGH" if abs(diff) > ONE else "LOW",
                    message=f"{sec}: trades imply {expected} shares, position reports {actual}",
                    date=pos.date.isoformat() if pos is not None else None,
                )
            )
            continue
        if pos is None or pos.cost_basis is None or not expected or not actual:
            continue
        expected_avg = bases.get(sec, ZERO) / expected
        actual_avg = pos.cost_basis / actual
        if abs(expected_avg - actual_avg) > cost_tol:
            issues.append(
                QCIssue(
                    code="COST_MISMATCH",
                    severity="MEDIUM",
                    message=f"{sec}: trades imply average cost {quantize(expected_avg, 4)}, "
                    f"position reports {quantize(actual_avg, 4)}",
                    date=pos.date.isoformat(),
                )
            )

    status = _status(issues)
    messages = [i.message for i in issues] or ["Position reconciliation passed"]
    return QCResult(check="POSITION_RECONCILIATION", status=status, messages=messages, issues=issues)


def find_missing_prices(
    account_id: str,
    start_date: dt.date,
    end_date: dt.date,
    positions: Iterable[Position],
    transactions: Iterable[Transaction],
    prices: Iterable[Price],
) -> QCResult:
    """
    Weekdays in the range on which a security was held or traded but has no price.

    A security is held on a day when its latest record on or before that day has a positive quantity.
    """
    require_date_range(start_date, end_date)
    positions = list(positions)
    transactions = list(transactions)
    require_account(account_id, positions)
    require_account(account_id, transactions)

    priced = {(p.security_id, p.date) for p in prices if p.security_id and p.date is not None}
    dated = [p for p in positions if p.date is not None and p.security_key is not None and not p.is_cash]
    traded: dict[dt.date, set[str]] = defaultdict(set)
    for t in transactions:
        if t.security_id and t.date is not None and start_date <= t.date <= end_date:
            traded[t.date].add(t.security_id)
    relevant = {p.security_key for p in dated if start_date <= p.date <= end_date}
    relevant.update(*traded.values())

    issues: list[QCIssue] = []
    missing_secs: set[str] = set()
    for day in calendar_days(start_date, end_date):
        if day.weekday() >= 5:
            continue
        held = _latest_on_or_before(dated, day)
        for sec in sorted(relevant):
            if (sec, day) in priced:
                continue
            pos = held.get(sec)
            if (pos is not None and pos.quantity is not None and pos.quantity > 0) or sec in traded.get(day, ()):
                missing_secs.add(sec)
                issues.append(
                    QCIssue(
                        code="MISSING_PRICE",
                        severity="MEDIUM",
                        message=f"{sec}: no price on {day.isoformat()}",
                        date=day.isoformat(),
                    )
                )

    status = _status(issues)
    if status == QCStatus.PASS:
        messages = ["No missing prices"]
    else:
        messages = [f"{len(issues)} missing price(s) across {len(missing_secs)} security(ies)"]
    return QCResult(check="MISSING_PRICES", status=status, messages=messages, issues=issues)
