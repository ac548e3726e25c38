from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Sequence

from portfolio_engine.exceptions import ContractViolation
from portfolio_engine.money import ONE, ZERO, jsonable, quantize, to_decimal
from portfolio_engine.settings import DEFAULT_SETTINGS, EngineSettings
from portfolio_engine.types import DailyReturn, DailyValue
from portfolio_engine.validation import is_chronological

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PerformanceSummary:
    total_twr: Decimal
    annualized_twr: Decimal
    period_days: int
    best_day: Decimal
    best_day_date: dt.date | None
    worst_day: Decimal
    worst_day_date: dt.date | None
    mean_daily_return: Decimal
    volatility: Decimal
    sharpe_ratio: Decimal | None
    max_drawdown: Decimal
    risk_free_rate: Decimal


@dataclass(frozen=True)
class TWRResult:
    daily_returns: list[DailyReturn]
    summary: PerformanceSummary
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return jsonable(asdict(self))


@dataclass(frozen=True)
class RollingReturn:
    start_date: dt.date | None
    end_date: dt.date | None
    period_days: int
    total_return: Decimal
    annualized_return: Decimal


@dataclass(frozen=True)
class FeeAdjustedTWR:
    gross: TWRResult
    net: TWRResult
    annual_fee_rate: Decimal
    daily_fee_rate: Decimal
    total_fee_drag: Decimal
    annualized_fee_drag: Decimal

    def to_dict(self) -> dict[str, Any]:
        return jsonable(asdict(self))


def flow_adjusted_return(*, beginning_value: Decimal, ending_value: Decimal, net_flows: Decimal) -> Decimal:
    """
    Single-day return with same-day external flows removed:

        (ending - net_flows - beginning) / beginning

    A zero base has no defined return; by convention it is 0.
    """
    if beginning_value == 0:
        return ZERO
    return (ending_value - net_flows - beginning_value) / beginning_value


def chain_link(returns: Iterable[Decimal]) -> Decimal:
    growth = ONE
    for r in returns:
        growth *= ONE + r
    return growth - ONE


def annualize(total_return: Decimal, period_days: int, *, settings: EngineSettings | None = None) -> Decimal | None:
    """
    (1 + total) ** (calendar_days_per_year / period_days) - 1.

    Periods shorter than `min_annualization_days` are returned unchanged. None when the
    growth factor is not positive (a total loss cannot be annualized).
    """
    settings = settings or DEFAULT_SETTINGS
    if period_days < max(1, settings.min_annualization_days):
        return total_return
    base = ONE + total_return
    if base <= 0:
        return None
    exponent = Decimal(settings.calendar_days_per_year) / Decimal(period_days)
    return base**exponent - ONE


def _mean(xs: Sequence[Decimal]) -> Decimal | None:
    if not xs:
        return None
    return sum(xs, ZERO) / Decimal(len(xs))


def _sample_std(xs: Sequence[Decimal]) -> Decimal | None:
    if len(xs) < 2:
        return None
    m = _mean(xs)
    assert m is not None
    var = sum(((x - m) ** 2 for x in xs), ZERO) / Decimal(len(xs) - 1)
    return var.sqrt()


def max_drawdown_from_returns(returns: Iterable[Decimal]) -> Decimal:
    peak = ONE
    eq = ONE
    mdd = ZERO
    for r in returns:
        eq *= ONE + r
        if eq > peak:
            peak = eq
        if peak <= 0:
            continue
        dd = (eq / peak) - ONE
        if dd < mdd:
            mdd = dd
    return mdd


def _row_return(
    row: DailyValue,
    index: int,
    prev: DailyValue | None,
    *,
    places: int,
    warnings: list[str],
) -> Decimal:
    label = row.date.isoformat() if row.date is not None else f"row {index}"
    if prev is not None and row.date is not None and prev.ending_value != row.beginning_value:
        warnings.append(
            f"{label}: beginning value {row.beginning_value} does not match prior ending value {prev.ending_value}."
        )
    if row.date is None:
        warnings.append(f"{label}: missing date; daily return set to 0.")
        return ZERO
    if row.beginning_value < 0:
        warnings.append(f"{label}: negative beginning value {row.beginning_value}; daily return set to 0.")
        return ZERO
    if row.beginning_value == 0 and row.ending_value - row.net_flows != 0:
        warnings.append(f"{label}: beginning value is 0; daily return set to 0.")
    r = flow_adjusted_return(
        beginning_value=row.beginning_value,
        ending_value=row.ending_value,
        net_flows=row.net_flows,
    )
    return quantize(r, places)


def _link(rows: Sequence[DailyValue], returns: Sequence[Decimal], *, places: int) -> list[DailyReturn]:
    out: list[DailyReturn] = []
    growth = ONE
    for row, r in zip(rows, returns):
        growth *= ONE + r
        out.append(
            DailyReturn(
                date=row.date,
                beginning_value=row.beginning_value,
                ending_value=row.ending_value,
                net_flows=row.net_flows,
                market_value_change=row.market_value_change,
                daily_return=r,
                cumulative_return=quantize(growth - ONE, places),
            )
        )
    return out


def _summarize(
    linked: Sequence[DailyReturn],
    *,
    risk_free_rate: Decimal,
    settings: EngineSettings,
    warnings: list[str],
) -> PerformanceSummary:
    places = settings.return_places
    if not linked:
        return PerformanceSummary(
            total_twr=ZERO,
            annualized_twr=ZERO,
            period_days=0,
            best_day=ZERO,
            best_day_date=None,
            worst_day=ZERO,
            worst_day_date=None,
            mean_daily_return=ZERO,
            volatility=ZERO,
            sharpe_ratio=None,
            max_drawdown=ZERO,
            risk_free_rate=risk_free_rate,
        )

    returns = [r.daily_return for r in linked]
    total = linked[-1].cumulative_return
    period_days = len(linked)
    annualized = annualize(total, period_days, settings=settings)
    if annualized is None:
        warnings.append("Cumulative growth factor is not positive; annualized return set to -1.")
        annualized = -ONE
    annualized = quantize(annualized, places)

    best = max(linked, key=lambda r: r.daily_return)
    worst = min(linked, key=lambda r: r.daily_return)
    std = _sample_std(returns)
    vol = ZERO
    if std is not None:
        vol = quantize(std * Decimal(settings.trading_days_per_year).sqrt(), places)
    sharpe = None
    if vol != 0:
        sharpe = quantize((annualized - risk_free_rate) / vol, places)
    mean = _mean(returns)
    assert mean is not None

    return PerformanceSummary(
        total_twr=total,
        annualized_twr=annualized,
        period_days=period_days,
        best_day=best.daily_return,
        best_day_date=best.date,
        worst_day=worst.daily_return,
        worst_day_date=worst.date,
        mean_daily_return=quantize(mean, places),
        volatility=vol,
        sharpe_ratio=sharpe,
        max_drawdown=quantize(max_drawdown_from_returns(returns), places),
        risk_free_rate=risk_free_rate,
    )


def _resolve_risk_free(risk_free_rate: Any, settings: EngineSettings) -> Decimal:
    rf = to_decimal(risk_free_rate if risk_free_rate is not None else settings.risk_free_rate)
    if rf is None:
        raise ContractViolation(f"risk_free_rate must be numeric, got {risk_free_rate!r}")
    return rf


def _ordered(daily_values: Iterable[DailyValue], warnings: list[str]) -> list[DailyValue]:
    rows = list(daily_values)
    if is_chronological([r.date for r in rows]):
        return rows
    warnings.append("Daily values were not in chronological order; they were sorted by date.")
    # Undated rows stay at their index; only the dated rows are reordered around them.
    dated = iter(sorted((r for r in rows if r.date is not None), key=lambda r: r.date))
    return [r if r.date is None else next(dated) for r in rows]


def compute_twr(
    daily_values: Iterable[DailyValue],
    *,
    risk_free_rate: Any = None,
    settings: EngineSettings | None = None,
) -> TWRResult:
    """
    Time-weighted return over a daily valuation series.

    Daily flow-adjusted returns are linked geometrically into a running cumulative return.
    Malformed rows (missing date, negative base) contribute a zero return and a warning
    instead of failing the whole period.
    """
    settings = settings or DEFAULT_SETTINGS
    rf = _resolve_risk_free(risk_free_rate, settings)
    warnings: list[str] = []
    rows = _ordered(daily_values, warnings)

    returns: list[Decimal] = []
    prev: DailyValue | None = None
    for i, row in enumerate(rows):
        returns.append(_row_return(row, i, prev, places=settings.return_places, warnings=warnings))
        prev = row

    linked = _link(rows, returns, places=settings.return_places)
    summary = _summarize(linked, risk_free_rate=rf, settings=settings, warnings=warnings)
    log.debug(
        "TWR over %d day(s): total=%s annualized=%s vol=%s",
        summary.period_days,
        summary.total_twr,
        summary.annualized_twr,
        summary.volatility,
    )
    return TWRResult(daily_returns=linked, summary=summary, warnings=warnings)


def rolling_returns(
    daily_returns: Sequence[DailyValue],
    window_days: int = 30,
    *,
    settings: EngineSettings | None = None,
) -> list[RollingReturn]:
    """Linked (and annualized) return of every trailing `window_days` window; empty when the series is shorter."""
    settings = settings or DEFAULT_SETTINGS
    if window_days < 1:
        raise ContractViolation(f"window_days must be at least 1, got {window_days}")
    places = settings.return_places
    rets: list[Decimal] = []
    for r in daily_returns:
        if r.daily_return is not None:
            rets.append(r.daily_return)
        else:
            rets.append(
                quantize(
                    flow_adjusted_return(
                        beginning_value=r.beginning_value,
                        ending_value=r.ending_value,
                        net_flows=r.net_flows,
                    ),
                    places,
                )
            )

    out: list[RollingReturn] = []
    for end in range(window_days - 1, len(rets)):
        begin = end - window_days + 1
        total = chain_link(rets[begin : end + 1])
        ann = annualize(total, window_days, settings=settings)
        out.append(
            RollingReturn(
                start_date=daily_returns[begin].date,
                end_date=daily_returns[end].date,
                period_days=window_days,
                total_return=quantize(total, places),
                annualized_return=quantize(ann if ann is not None else -ONE, places),
            )
        )
    return out


def fee_adjusted_twr(
    daily_values: Iterable[DailyValue],
    annual_fee_rate: Any,
    *,
    risk_free_rate: Any = None,
    settings: EngineSettings | None = None,
) -> FeeAdjustedTWR:
    """
    Gross and net-of-fee TWR.

    The net series deducts `annual_fee_rate / calendar_days_per_year` from every daily return.
    """
    settings = settings or DEFAULT_SETTINGS
    fee = to_decimal(annual_fee_rate)
    if fee is None:
        raise ContractViolation(f"annual_fee_rate must be numeric, got {annual_fee_rate!r}")
    places = settings.return_places
    daily_fee = fee / Decimal(settings.calendar_days_per_year)

    gross = compute_twr(daily_values, risk_free_rate=risk_free_rate, settings=settings)
    net_returns = [quantize(r.daily_return - daily_fee, places) for r in gross.daily_returns]
    net_linked = _link(gross.daily_returns, net_returns, places=places)
    net_warnings = list(gross.warnings)
    net_summary = _summarize(
        net_linked,
        risk_free_rate=_resolve_risk_free(risk_free_rate, settings),
        settings=settings,
        warnings=net_warnings,
    )
    net = TWRResult(daily_returns=net_linked, summary=net_summary, warnings=net_warnings)
    return FeeAdjustedTWR(
        gross=gross,
        net=net,
        annual_fee_rate=fee,
        daily_fee_rate=quantize(daily_fee, places),
        total_fee_drag=gross.summary.total_twr - net.summary.total_twr,
        annualized_fee_drag=gross.summary.annualized_twr - net.summary.annualized_twr,
    )
