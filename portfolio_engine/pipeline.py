from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Iterable

from portfolio_engine.aum import AUMResult, compute_aum
from portfolio_engine.money import jsonable
from portfolio_engine.qc import QCResult, check_aum_identity, summarize_qc, validate_returns
from portfolio_engine.returns import TWRResult, compute_twr
from portfolio_engine.settings import DEFAULT_SETTINGS, EngineSettings
from portfolio_engine.types import Position, Transaction

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PerformanceReport:
    account_id: str
    start_date: dt.date
    end_date: dt.date
    aum: AUMResult
    twr: TWRResult
    qc: list[QCResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def data_available(self) -> bool:
        return self.aum.summary.data_available

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "data_available": self.data_available,
            "summary": jsonable(asdict(self.aum.summary)),
            "performance": jsonable(asdict(self.twr.summary)),
            "daily_returns": [r.to_dict() for r in self.twr.daily_returns],
            "qc": summarize_qc(self.qc),
            "warnings": list(self.warnings),
        }


def run_qc(report: PerformanceReport, *, settings: EngineSettings | None = None) -> list[QCResult]:
    return [
        check_aum_identity(report.aum, settings=settings),
        validate_returns(report.twr.daily_returns, settings=settings),
    ]


def compute_performance(
    account_id: str,
    start_date: dt.date,
    end_date: dt.date,
    positions: Iterable[Position],
    transactions: Iterable[Transaction],
    *,
    risk_free_rate: Any = None,
    settings: EngineSettings | None = None,
) -> PerformanceReport:
    """
    AUM -> TWR in one pass: the daily valuation series built by `compute_aum` is the
    only input to `compute_twr`.
    """
    settings = settings or DEFAULT_SETTINGS
    aum = compute_aum(account_id, start_date, end_date, positions, transactions, settings=settings)
    twr = compute_twr(aum.daily_values, risk_free_rate=risk_free_rate, settings=settings)
    report = PerformanceReport(
        account_id=account_id,
        start_date=start_date,
        end_date=end_date,
        aum=aum,
        twr=twr,
        warnings=[*aum.warnings, *twr.warnings],
    )
    qc = run_qc(report, settings=settings)
    log.debug("Performance %s %s..%s: qc=%s", account_id, start_date, end_date, summarize_qc(qc)["status"])
    return replace(report, qc=qc)
