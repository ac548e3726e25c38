from __future__ import annotations

import datetime as dt
import enum
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from portfolio_engine.aum import AUMResult
from portfolio_engine.exceptions import ContractViolation
from portfolio_engine.money import ZERO, jsonable, quantize, to_decimal
from portfolio_engine.settings import DEFAULT_SETTINGS, EngineSettings
from portfolio_engine.types import DailyValue, coerce_date
from portfolio_engine.validation import require_account

log = logging.getLogger(__name__)


class FeeBasis(str, enum.Enum):
    AVERAGE = "average"
    BEGINNING = "beginning"
    ENDING = "ending"


class Crystallization(str, enum.Enum):
    ANNUAL = "annual"
    QUARTERLY = "quarterly"
    MONTHLY = "monthly"
    NEVER = "never"


class FeeTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    minimum: float = Field(ge=0, description="AUM at which this tier's rate starts to apply")
    rate: float = Field(ge=0, description="Annual rate on the AUM inside the tier")


class FeeSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    management_fee_rate: float = Field(default=0.01, ge=0, description="Flat annual rate (ignored when tiers are set)")
    basis: FeeBasis = FeeBasis.AVERAGE
    tiers: list[FeeTier] = Field(default_factory=list)
    performance_fee_rate: float = Field(default=0.20, ge=0)
    use_high_water_mark: bool = True
    crystallization: Crystallization = Crystallization.ANNUAL


DEFAULT_FEE_SCHEDULE = FeeSchedule()


@dataclass(frozen=True)
class FeeAdjustment:
    account_id: str
    date: dt.date | None
    amount: Decimal | None

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", coerce_date(self.date))
        object.__setattr__(self, "amount", to_decimal(self.amount))


@dataclass(frozen=True)
class TierCharge:
    tier_number: int
    minimum: Decimal
    maximum: Decimal | None
    rate: Decimal
    applicable_aum: Decimal
    fee: Decimal


@dataclass(frozen=True)
class TieredFee:
    aum: Decimal
    total_fee: Decimal
    effective_rate: Decimal
    tiers: list[TierCharge]


@dataclass(frozen=True)
class DailyFee:
    date: dt.date
    aum_for_fee: Decimal
    management_fee: Decimal
    manual_adjustment: Decimal
    total_fee: Decimal
    cumulative_fee: Decimal


@dataclass(frozen=True)
class FeeAccrual:
    account_id: str
    start_date: dt.date
    end_date: dt.date
    total_days: int
    total_management_fees: Decimal
    total_manual_adjustments: Decimal
    total_fees: Decimal
    average_aum: Decimal
    effective_annual_rate: Decimal
    nominal_annual_rate: Decimal
    daily_fees: list[DailyFee]
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return jsonable(asdict(self))


@dataclass(frozen=True)
class PerformanceFee:
    account_id: str
    start_date: dt.date
    end_date: dt.date
    performance_fee_rate: Decimal
    start_value: Decimal
    end_value: Decimal
    net_flows: Decimal
    high_water_mark: Decimal
    new_high_water_mark: Decimal
    outperformance: Decimal
    performance_fee: Decimal
    crystallized: bool


@dataclass(frozen=True)
class MultiAccountFees:
    accounts: dict[str, FeeAccrual]
    total_management_fees: Decimal
    total_manual_adjustments: Decimal
    total_fees: Decimal
    total_average_aum: Decimal
    weighted_average_rate: Decimal
    account_count: int

    def to_dict(self) -> dict[str, Any]:
        return jsonable(asdict(self))


def tiered_fee(aum: Any, tiers: Iterable[FeeTier], *, settings: EngineSettings | None = None) -> TieredFee:
    """
    Annual fee on `aum` under a breakpoint schedule.

    Each tier charges its rate on the slice of AUM between its minimum and the next tier's
    minimum; AUM below the lowest minimum is not charged.
    """
    settings = settings or DEFAULT_SETTINGS
    value = to_decimal(aum)
    if value is None:
        raise ContractViolation(f"aum must be numeric, got {aum!r}")
    ordered = sorted(tiers, key=lambda t: t.minimum)
    charges: list[TierCharge] = []
    total = ZERO
    for i, tier in enumerate(ordered):
        lo = to_decimal(tier.minimum)
        hi = to_decimal(ordered[i + 1].minimum) if i + 1 < len(ordered) else None
        rate = to_decimal(tier.rate)
        if value < lo:
            break
        top = value if hi is None or value <= hi else hi
        fee = (top - lo) * rate
        total += fee
        charges.append(
            TierCharge(
                tier_number=i + 1,
                minimum=lo,
                maximum=hi,
                rate=rate,
                applicable_aum=top - lo,
                fee=quantize(fee, settings.return_places),
            )
        )
        if hi is None or value <= hi:
            break
    rate = quantize(total / value, settings.return_places) if value > 0 else ZERO
    return TieredFee(aum=value, total_fee=quantize(total, settings.return_places), effective_rate=rate, tiers=charges)


def _aum_for_fee(row: DailyValue, basis: FeeBasis) -> Decimal:
    if basis == FeeBasis.BEGINNING:
        return row.beginning_value
    if basis == FeeBasis.ENDING:
        return row.ending_value
    return (row.beginning_value + row.ending_value) / 2


def _annual_fee(value: Decimal, schedule: FeeSchedule, settings: EngineSettings) -> Decimal:
    if value <= 0:
        return ZERO
    if schedule.tiers:
        return tiered_fee(value, schedule.tiers, settings=settings).total_fee
    return value * to_decimal(schedule.management_fee_rate)


def accrue_fees(
    aum: AUMResult,
    schedule: FeeSchedule | None = None,
    *,
    adjustments: Iterable[FeeAdjustment] = (),
    settings: EngineSettings | None = None,
) -> FeeAccrual:
    """
    Daily management-fee accrual over an AUM series.

    Each day accrues `annual_fee(aum_for_fee) / calendar_days_per_year`, where `aum_for_fee`
    follows `schedule.basis` and the annual fee is flat or tiered. Manual adjustments are added on
    their date. Daily rows keep `return_places` digits; the period totals are rounded to currency.
    """
    schedule = schedule or DEFAULT_FEE_SCHEDULE
    settings = settings or DEFAULT_SETTINGS
    adjustments = list(adjustments)
    require_account(aum.account_id, adjustments)
    places = settings.return_places
    money = settings.currency_places
    days_per_year = Decimal(settings.calendar_days_per_year)
    warnings: list[str] = []

    by_day: dict[dt.date, Decimal] = defaultdict(lambda: ZERO)
    for a in adjustments:
        if a.date is None or a.amount is None:
            warnings.append("Ignored a fee adjustment without a date or amount.")
            continue
        by_day[a.date] += a.amount

    rows: list[DailyFee] = []
    cumulative = ZERO
    for row in aum.daily_values:
        base = _aum_for_fee(row, schedule.basis)
        mgmt = quantize(_annual_fee(base, schedule, settings) / days_per_year, places)
        adj = by_day.get(row.date, ZERO)
        cumulative += mgmt + adj
        rows.append(
            DailyFee(
                date=row.date,
                aum_for_fee=base,
                management_fee=mgmt,
                manual_adjustment=adj,
                total_fee=mgmt + adj,
                cumulative_fee=cumulative,
            )
        )
    if not rows:
        warnings.append(f"No AUM series for account {aum.account_id}; no fees accrued.")

    total_mgmt = quantize(sum((r.management_fee for r in rows), ZERO), money)
    total_adj = quantize(sum((r.manual_adjustment for r in rows), ZERO), money)
    total = total_mgmt + total_adj
    avg = quantize(sum((r.aum_for_fee for r in rows), ZERO) / len(rows), money) if rows else ZERO
    effective = ZERO
    if avg > 0:
        effective = quantize(total / avg * days_per_year / Decimal(len(rows)), places)
    log.debug("Fees %s %s..%s: total=%s over %d day(s)", aum.account_id, aum.start_date, aum.end_date, total, len(rows))
    return FeeAccrual(
        account_id=aum.account_id,
        start_date=aum.start_date,
        end_date=aum.end_date,
        total_days=len(rows),
        total_management_fees=total_mgmt,
        total_manual_adjustments=total_adj,
        total_fees=total,
        average_aum=avg,
        effective_annual_rate=effective,
        nominal_annual_rate=to_decimal(schedule.management_fee_rate),
        daily_fees=rows,
        warnings=warnings,
    )


def _crystallizes(day: dt.date, frequency: Crystallization) -> bool:
    month_end = (day + dt.timedelta(days=1)).month != day.month
    if frequency == Crystallization.ANNUAL:
        return day.month == 12 and month_end
    if frequency == Crystallization.QUARTERLY:
        return day.month in (3, 6, 9, 12) and month_end
    if frequency == Crystallization.MONTHLY:
        return month_end
    return False


def performance_fee(
    aum: AUMResult,
    schedule: FeeSchedule | None = None,
    *,
    high_water_mark: Any = 0,
    settings: EngineSettings | None = None,
) -> PerformanceFee:
    """
    Incentive fee on the period's flow-adjusted gain above the high-water mark.

        outperformance = end - max(start, high_water_mark) - net_contribution

    The fee is only charged on positive outperformance. It crystallizes when the period ends on
    the schedule's crystallization date.
    """
    schedule = schedule or DEFAULT_FEE_SCHEDULE
    settings = settings or DEFAULT_SETTINGS
    hwm = to_decimal(high_water_mark)
    if hwm is None:
        raise ContractViolation(f"high_water_mark must be numeric, got {high_water_mark!r}")
    rate = to_decimal(schedule.performance_fee_rate)
    s = aum.summary

    if not s.data_available:
        return PerformanceFee(
            account_id=aum.account_id,
            start_date=aum.start_date,
            end_date=aum.end_date,
            performance_fee_rate=rate,
            start_value=ZERO,
            end_value=ZERO,
            net_flows=ZERO,
            high_water_mark=hwm,
            new_high_water_mark=hwm,
            outperformance=ZERO,
            performance_fee=ZERO,
            crystallized=False,
        )

    hurdle = max(s.start_value, hwm) if schedule.use_high_water_mark else s.start_value
    outperformance = s.end_value - hurdle - s.net_contribution
    fee = quantize(outperformance * rate, settings.currency_places) if outperformance > 0 else ZERO
    return PerformanceFee(
        account_id=aum.account_id,
        start_date=aum.start_date,
        end_date=aum.end_date,
        performance_fee_rate=rate,
        start_value=s.start_value,
        end_value=s.end_value,
        net_flows=s.net_contribution,
        high_water_mark=hwm,
        new_high_water_mark=max(hwm, s.end_value) if schedule.use_high_water_mark else s.end_value,
        outperformance=outperformance,
        performance_fee=fee,
        crystallized=_crystallizes(aum.end_date, schedule.crystallization),
    )


def accrue_multiple_fees(
    results: Mapping[str, AUMResult],
    schedule: FeeSchedule | None = None,
    *,
    adjustments: Iterable[FeeAdjustment] = (),
    settings: EngineSettings | None = None,
) -> MultiAccountFees:
    """Fee accrual for every account of a `compute_multiple_aum` result, plus household totals."""
    settings = settings or DEFAULT_SETTINGS
    adj_by_acct: dict[str, list[FeeAdjustment]] = defaultdict(list)
    for a in adjustments:
        adj_by_acct[a.account_id].append(a)
    accounts = {
        acct: accrue_fees(res, schedule, adjustments=adj_by_acct.get(acct, []), settings=settings)
        for acct, res in results.items()
    }
    total_mgmt = sum((f.total_management_fees for f in accounts.values()), ZERO)
    total_adj = sum((f.total_manual_adjustments for f in accounts.values()), ZERO)
    total = total_mgmt + total_adj
    total_aum = sum((f.average_aum for f in accounts.values()), ZERO)
    days = max((f.total_days for f in accounts.values()), default=0)
    rate = ZERO
    if total_aum > 0 and days:
        rate = quantize(
            total / total_aum * Decimal(settings.calendar_days_per_year) / Decimal(days), settings.return_places
        )
    return MultiAccountFees(
        accounts=accounts,
        total_management_fees=total_mgmt,
        total_manual_adjustments=total_adj,
        total_fees=total,
        total_average_aum=total_aum,
        weighted_average_rate=rate,
        account_count=len(accounts),
    )
