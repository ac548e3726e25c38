from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Sequence

from portfolio_engine.money import ZERO, jsonable, quantize
from portfolio_engine.settings import DEFAULT_SETTINGS, EngineSettings
from portfolio_engine.types import DailyValue, Position, Transaction, external_flow
from portfolio_engine.validation import (
    calendar_days,
    is_chronological,
    require_account,
    require_date_range,
    split_undated,
)

log = logging.getLogger(__name__)

# Stand-in key for valuation lines that carry no security identifier.
_ACCOUNT_LINE = "__account__"


@dataclass(frozen=True)
class AUMSummary:
    start_value: Decimal
    end_value: Decimal
    contributions: Decimal
    withdrawals: Decimal
    net_contribution: Decimal
    total_growth: Decimal
    data_available: bool
    start_value_known: bool


@dataclass(frozen=True)
class AUMResult:
    account_id: str
    start_date: dt.date
    end_date: dt.date
    summary: AUMSummary
    daily_values: list[DailyValue]
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return jsonable(asdict(self))


@dataclass(frozen=True)
class AggregateAUM:
    account_ids: list[str]
    start_date: dt.date
    end_date: dt.date
    start_value: Decimal
    end_value: Decimal
    contributions: Decimal
    withdrawals: Decimal
    net_contribution: Decimal
    total_growth: Decimal
    account_count: int
    data_available: bool
    daily_values: list[DailyValue]
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return jsonable(asdict(self))


def _empty_summary() -> AUMSummary:
    return AUMSummary(
        start_value=ZERO,
        end_value=ZERO,
        contributions=ZERO,
        withdrawals=ZERO,
        net_contribution=ZERO,
        total_growth=ZERO,
        data_available=False,
        start_value_known=False,
    )


def _usable_positions(positions: Sequence[Position], warnings: list[str]) -> list[Position]:
    dated, undated = split_undated(positions)
    if undated:
        warnings.append(f"Ignored {undated} position record(s) without a date.")
    usable = [p for p in dated if p.market_value is not None]
    if len(usable) != len(dated):
        warnings.append(f"Ignored {len(dated) - len(usable)} position record(s) without a market value.")
    seen: set[tuple[str, dt.date]] = set()
    dupes: set[tuple[str, dt.date]] = set()
    for p in usable:
        k = (p.security_key or _ACCOUNT_LINE, p.date)
        if k in seen:
            dupes.add(k)
        seen.add(k)
    for key, d in sorted(dupes):
        label = "account-level line" if key == _ACCOUNT_LINE else key
        warnings.append(f"Duplicate position records for {label} on {d.isoformat()}; the last one supplied was used.")
    # Stable sort: for duplicates the later input record wins when applied in order.
    return sorted(usable, key=lambda p: p.date)


def _flows_by_day(
    transactions: Sequence[Transaction],
    *,
    start_date: dt.date,
    end_date: dt.date,
    settings: EngineSettings,
    warnings: list[str],
) -> tuple[dict[dt.date, Decimal], Decimal, Decimal]:
    dated, undated = split_undated(transactions)
    if undated:
        warnings.append(f"Ignored {undated} transaction(s) without a date.")
    if not is_chronological([t.date for t in dated]):
        warnings.append("Transactions were not in chronological order; they were sorted by date.")
    flows: dict[dt.date, Decimal] = defaultdict(lambda: ZERO)
    contributions = ZERO
    withdrawals = ZERO
    for t in sorted(dated, key=lambda t: t.date):
        if t.date < start_date or t.date > end_date:
            continue
        amt = external_flow(t, fees_as_flows=settings.fees_as_flows, income_as_flows=settings.income_as_flows)
        # contributions - withdrawals == sum of the daily net_flows.
        amt = quantize(amt, settings.currency_places)
        if amt == 0:
            continue
        flows[t.date] += amt
        if amt > 0:
            contributions += amt
        else:
            withdrawals += -amt
    return dict(flows), contributions, withdrawals


def compute_aum(
    account_id: str,
    start_date: dt.date,
    end_date: dt.date,
    positions: Iterable[Position],
    transactions: Iterable[Transaction],
    *,
    settings: EngineSettings | None = None,
) -> AUMResult:
    """
    Daily market-value series for one account over `[start_date, end_date]`.

    Each calendar day is valued as the sum, over every security (plus the account-level line),
    of the latest position record dated on or before that day. Same-day external flows are
    summed into `net_flows`; trades are not flows.
    """
    require_date_range(start_date, end_date)
    settings = settings or DEFAULT_SETTINGS
    positions = list(positions)
    transactions = list(transactions)
    require_account(account_id, positions)
    require_account(account_id, transactions)

    places = settings.currency_places
    warnings: list[str] = []
    history = [p for p in _usable_positions(positions, warnings) if p.date <= end_date]
    flows, contributions, withdrawals = _flows_by_day(
        transactions, start_date=start_date, end_date=end_date, settings=settings, warnings=warnings
    )

    if not history:
        warnings.append(f"No position history for account {account_id} on or before {end_date.isoformat()}.")
        log.debug("AUM %s %s..%s: no data", account_id, start_date, end_date)
        return AUMResult(
            account_id=account_id,
            start_date=start_date,
            end_date=end_date,
            summary=_empty_summary(),
            daily_values=[],
            warnings=warnings,
        )

    latest: dict[str, Decimal] = {}
    idx = 0
    while idx < len(history) and history[idx].date < start_date:
        p = history[idx]
        latest[p.security_key or _ACCOUNT_LINE] = p.market_value
        idx += 1
    start_value_known = bool(latest)
    if not start_value_known:
        warnings.append(
            f"No position value before {start_date.isoformat()}; beginning value of the period was set to 0."
        )

    begin = quantize(sum(latest.values(), ZERO), places)
    rows: list[DailyValue] = []
    unvalued: list[dt.date] = []
    for day in calendar_days(start_date, end_date):
        while idx < len(history) and history[idx].date <= day:
            p = history[idx]
            latest[p.security_key or _ACCOUNT_LINE] = p.market_value
            idx += 1
        if not latest:
            unvalued.append(day)
        ending = quantize(sum(latest.values(), ZERO), places)
        net = quantize(flows.get(day, ZERO), places)
        rows.append(
            DailyValue(
                date=day,
                beginning_value=begin,
                ending_value=ending,
                net_flows=net,
                market_value_change=ending - begin - net,
            )
        )
        begin = ending

    if unvalued:
        warnings.append(
            f"No position value on or before {unvalued[0].isoformat()}; "
            f"{len(unvalued)} day(s) through {unvalued[-1].isoformat()} valued at 0."
        )

    start_value = rows[0].beginning_value
    end_value = rows[-1].ending_value
    net_contribution = sum((r.net_flows for r in rows), ZERO)
    summary = AUMSummary(
        start_value=start_value,
        end_value=end_value,
        contributions=contributions,
        withdrawals=withdrawals,
        net_contribution=net_contribution,
        total_growth=end_value - start_value - net_contribution,
        data_available=True,
        start_value_known=start_value_known,
    )
    log.debug(
        "AUM %s %s..%s: start=%s end=%s net=%s (%d day(s), %d warning(s))",
        account_id,
        start_date,
        end_date,
        start_value,
        end_value,
        net_contribution,
        len(rows),
        len(warnings),
    )
    return AUMResult(
        account_id=account_id,
        start_date=start_date,
        end_date=end_date,
        summary=summary,
        daily_values=rows,
        warnings=warnings,
    )


def compute_multiple_aum(
    account_ids: Iterable[str],
    start_date: dt.date,
    end_date: dt.date,
    positions: Iterable[Position],
    transactions: Iterable[Transaction],
    *,
    settings: EngineSettings | None = None,
) -> dict[str, AUMResult]:
    """Per-account AUM for multi-account inputs; records of unrequested accounts are ignored."""
    ids = list(dict.fromkeys(account_ids))
    pos_by_acct: dict[str, list[Position]] = defaultdict(list)
    tx_by_acct: dict[str, list[Transaction]] = defaultdict(list)
    for p in positions:
        pos_by_acct[p.account_id].append(p)
    for t in transactions:
        tx_by_acct[t.account_id].append(t)
    return {
        a: compute_aum(a, start_date, end_date, pos_by_acct.get(a, []), tx_by_acct.get(a, []), settings=settings)
        for a in ids
    }


def compute_aggregate_aum(
    account_ids: Iterable[str],
    start_date: dt.date,
    end_date: dt.date,
    positions: Iterable[Position],
    transactions: Iterable[Transaction],
    *,
    settings: EngineSettings | None = None,
) -> AggregateAUM:
    """
    Household view: per-account AUM summed day by day.

    Accounts without data contribute nothing; the combined daily series keeps the
    continuity of its members, so it can be fed straight into `compute_twr`.
    """
    results = compute_multiple_aum(account_ids, start_date, end_date, positions, transactions, settings=settings)
    warnings: list[str] = []
    begin: dict[dt.date, Decimal] = defaultdict(lambda: ZERO)
    ending: dict[dt.date, Decimal] = defaultdict(lambda: ZERO)
    flows: dict[dt.date, Decimal] = defaultdict(lambda: ZERO)
    totals = defaultdict(lambda: ZERO)
    for acct, res in results.items():
        warnings.extend(f"{acct}: {w}" for w in res.warnings)
        if not res.summary.data_available:
            continue
        s = res.summary
        totals["start_value"] += s.start_value
        totals["end_value"] += s.end_value
        totals["contributions"] += s.contributions
        totals["withdrawals"] += s.withdrawals
        totals["net_contribution"] += s.net_contribution
        for r in res.daily_values:
            begin[r.date] += r.beginning_value
            ending[r.date] += r.ending_value
            flows[r.date] += r.net_flows

    daily = [
        DailyValue(date=d, beginning_value=begin[d], ending_value=ending[d], net_flows=flows[d])
        for d in sorted(ending.keys())
    ]
    return AggregateAUM(
        account_ids=list(results.keys()),
        start_date=start_date,
        end_date=end_date,
        start_value=totals["start_value"],
        end_value=totals["end_value"],
        contributions=totals["contributions"],
        withdrawals=totals["withdrawals"],
        net_contribution=totals["net_contribution"],
        total_growth=totals["end_value"] - totals["start_value"] - totals["net_contribution"],
        account_count=len(results),
        data_available=any(r.summary.data_available for r in results.values()),
        daily_values=daily,
        warnings=warnings,
    )
