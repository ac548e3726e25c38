"""Public API for portfolio_engine."""

from __future__ import annotations

__all__ = [
    "AccountMismatch",
    "AggregateAUM",
    "AssetClassAllocation",
    "AttributionRow",
    "AUMResult",
    "AUMSummary",
    "ConcentrationStats",
    "ContractViolation",
    "Crystallization",
    "DailyReturn",
    "DailyValue",
    "EngineError",
    "EngineSettings",
    "FeeAccrual",
    "FeeAdjustedTWR",
    "FeeAdjustment",
    "FeeBasis",
    "FeeSchedule",
    "FeeTier",
    "Holding",
    "HoldingsSnapshot",
    "InvalidDateRange",
    "MultiAccountFees",
    "PerformanceFee",
    "PerformanceReport",
    "PerformanceSummary",
    "Position",
    "Price",
    "QCResult",
    "QCStatus",
    "RollingReturn",
    "Transaction",
    "TransactionType",
    "TieredFee",
    "TWRResult",
    "accrue_fees",
    "accrue_multiple_fees",
    "check_aum_identity",
    "classify_transaction_type",
    "compute_aggregate_aum",
    "compute_aum",
    "compute_holdings",
    "compute_multiple_aum",
    "compute_performance",
    "compute_twr",
    "concentration",
    "fee_adjusted_twr",
    "find_missing_prices",
    "load_engine_config",
    "performance_attribution",
    "performance_fee",
    "reconcile_positions",
    "rolling_returns",
    "run_qc",
    "tiered_fee",
    "validate_returns",
]

from portfolio_engine.aum import AggregateAUM, AUMResult, AUMSummary, compute_aggregate_aum, compute_aum, compute_multiple_aum
from portfolio_engine.exceptions import AccountMismatch, ContractViolation, EngineError, InvalidDateRange
from portfolio_engine.fees import (
    Crystallization,
    FeeAccrual,
    FeeAdjustment,
    FeeBasis,
    FeeSchedule,
    FeeTier,
    MultiAccountFees,
    PerformanceFee,
    TieredFee,
    accrue_fees,
    accrue_multiple_fees,
    performance_fee,
    tiered_fee,
)
from portfolio_engine.holdings import (
    AssetClassAllocation,
    AttributionRow,
    ConcentrationStats,
    Holding,
    HoldingsSnapshot,
    compute_holdings,
    concentration,
    performance_attribution,
)
from portfolio_engine.pipeline import PerformanceReport, compute_performance, run_qc
from portfolio_engine.qc import (
    QCResult,
    QCStatus,
    check_aum_identity,
    find_missing_prices,
    reconcile_positions,
    validate_returns,
)
from portfolio_engine.returns import (
    FeeAdjustedTWR,
    PerformanceSummary,
    RollingReturn,
    TWRResult,
    compute_twr,
    fee_adjusted_twr,
    rolling_returns,
)
from portfolio_engine.settings import EngineSettings, load_engine_config
from portfolio_engine.types import (
    DailyReturn,
    DailyValue,
    Position,
    Price,
    Transaction,
    TransactionType,
    classify_transaction_type,
)
