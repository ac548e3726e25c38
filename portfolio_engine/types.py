from __future__ import annotations

import datetime as dt
import enum
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any

from portfolio_engine.money import ZERO, jsonable, to_decimal

CASH_ASSET_CLASS = "CASH"
UNCLASSIFIED_ASSET_CLASS = "UNCLASSIFIED"


class TransactionType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    FEE = "FEE"
    TAX = "TAX"
    DEPOSIT = "DEPOSIT"
    CONTRIBUTION = "CONTRIBUTION"
    WITHDRAWAL = "WITHDRAWAL"
    DISTRIBUTION = "DISTRIBUTION"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    OTHER = "OTHER"


_TYPE_SYNONYMS: dict[str, TransactionType] = {
    "B": TransactionType.BUY,
    "BOUGHT": TransactionType.BUY,
    "PURCHASE": TransactionType.BUY,
    "S": TransactionType.SELL,
    "SOLD": TransactionType.SELL,
    "DIV": TransactionType.DIVIDEND,
    "INT": TransactionType.INTEREST,
    "COMMISSION": TransactionType.FEE,
    "ADVISORY_FEE": TransactionType.FEE,
    "MANAGEMENT_FEE": TransactionType.FEE,
    "WITHHOLDING": TransactionType.TAX,
    "WHT": TransactionType.TAX,
    "CONTRIB": TransactionType.CONTRIBUTION,
    "WITHDRAW": TransactionType.WITHDRAWAL,
    "DIST": TransactionType.DISTRIBUTION,
    "XFER_IN": TransactionType.TRANSFER_IN,
    "XFER_OUT": TransactionType.TRANSFER_OUT,
}

INFLOW_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.CONTRIBUTION, TransactionType.TRANSFER_IN})
OUTFLOW_TYPES = frozenset({TransactionType.WITHDRAWAL, TransactionType.DISTRIBUTION, TransactionType.TRANSFER_OUT})
FEE_TYPES = frozenset({TransactionType.FEE, TransactionType.TAX})
INCOME_TYPES = frozenset({TransactionType.DIVIDEND, TransactionType.INTEREST})
TRADE_TYPES = frozenset({TransactionType.BUY, TransactionType.SELL})


def classify_transaction_type(raw: Any) -> TransactionType:
    if isinstance(raw, TransactionType):
        return raw
    t = str(raw or "").strip().upper().replace(" ", "_").replace("-", "_")
    if not t:
        return TransactionType.OTHER
    try:
        return TransactionType(t)
    except ValueError:
        return _TYPE_SYNONYMS.get(t, TransactionType.OTHER)


def coerce_date(value: Any) -> dt.date | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return dt.date.fromisoformat(s[:10])
    except ValueError:
        return None


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


@dataclass(frozen=True)
class Position:
    account_id: str
    date: dt.date | None
    market_value: Decimal | None
    security_id: str | None = None
    symbol: str | None = None
    quantity: Decimal | None = None
    asset_class: str | None = None
    cost_basis: Decimal | None = None
    unrealized_pnl: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", coerce_date(self.date))
        for name in ("market_value", "quantity", "cost_basis", "unrealized_pnl"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        object.__setattr__(self, "security_id", _opt_str(self.security_id))
        object.__setattr__(self, "symbol", _opt_str(self.symbol))
        ac = _opt_str(self.asset_class)
        object.__setattr__(self, "asset_class", ac.upper() if ac else None)

    @property
    def security_key(self) -> str | None:
        """Grouping key for a security; None for account-level valuation lines."""
        return self.security_id or self.symbol

    @property
    def is_cash(self) -> bool:
        return self.asset_class == CASH_ASSET_CLASS


@dataclass(frozen=True)
class Transaction:
    account_id: str
    date: dt.date | None
    amount: Decimal | None
    type: TransactionType
    security_id: str | None = None
    quantity: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", coerce_date(self.date))
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "quantity", to_decimal(self.quantity))
        object.__setattr__(self, "type", classify_transaction_type(self.type))
        object.__setattr__(self, "security_id", _opt_str(self.security_id))


def external_flow(tx: Transaction, *, fees_as_flows: bool = False, income_as_flows: bool = False) -> Decimal:
    """
    Portfolio-perspective external flow of a transaction: contributions positive, withdrawals negative.

    Trades are never flows; their effect is already in market value.
    """
    amount = tx.amount if tx.amount is not None else ZERO
    if tx.type in INFLOW_TYPES:
        return abs(amount)
    if tx.type in OUTFLOW_TYPES:
        return -abs(amount)
    if fees_as_flows and tx.type in FEE_TYPES:
        return -abs(amount)
    if income_as_flows and tx.type in INCOME_TYPES:
        return amount
    return ZERO


@dataclass(frozen=True)
class DailyValue:
    date: dt.date | None
    beginning_value: Decimal
    ending_value: Decimal
    net_flows: Decimal = ZERO
    market_value_change: Decimal | None = None
    daily_return: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", coerce_date(self.date))
        for name in ("beginning_value", "ending_value", "net_flows"):
            v = to_decimal(getattr(self, name))
            object.__setattr__(self, name, v if v is not None else ZERO)
        change = to_decimal(self.market_value_change)
        if change is None:
            change = self.ending_value - self.beginning_value - self.net_flows
        object.__setattr__(self, "market_value_change", change)
        object.__setattr__(self, "daily_return", to_decimal(self.daily_return))

    def to_dict(self) -> dict[str, Any]:
        return jsonable(asdict(self))


@dataclass(frozen=True)
class DailyReturn(DailyValue):
    cumulative_return: Decimal = ZERO


@dataclass(frozen=True)
class Price:
    security_id: str
    date: dt.date | None
    close: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "security_id", _opt_str(self.security_id))
        object.__setattr__(self, "date", coerce_date(self.date))
        object.__setattr__(self, "close", to_decimal(self.close))
