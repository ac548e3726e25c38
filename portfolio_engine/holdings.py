from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Sequence

from portfolio_engine.exceptions import AccountMismatch, ContractViolation
from portfolio_engine.money import ONE, ZERO, jsonable, quantize, to_decimal
from portfolio_engine.settings import DEFAULT_SETTINGS, EngineSettings
from portfolio_engine.types import (
    CASH_ASSET_CLASS,
    TRADE_TYPES,
    UNCLASSIFIED_ASSET_CLASS,
    Position,
    Transaction,
    TransactionType,
)
from portfolio_engine.validation import require_account, split_undated

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Holding:
    security_id: str
    symbol: str | None
    asset_class: str
    quantity: Decimal | None
    market_value: Decimal
    cost_basis: Decimal | None
    unrealized_pnl: Decimal | None
    unrealized_pnl_percent: Decimal | None
    allocation_percent: Decimal
    position_date: dt.date


@dataclass(frozen=True)
class AssetClassAllocation:
    asset_class: str
    count: int
    market_value: Decimal
    unrealized_pnl: Decimal
    allocation_percent: Decimal


@dataclass(frozen=True)
class HoldingsSnapshot:
    account_id: str
    as_of_date: dt.date
    holdings: list[Holding]
    asset_classes: list[AssetClassAllocation]
    cash_balance: Decimal
    cash_allocation_percent: Decimal
    total_market_value: Decimal
    total_cost_basis: Decimal
    total_unrealized_pnl: Decimal
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return jsonable(asdict(self))


@dataclass(frozen=True)
class ConcentrationStats:
    holding_count: int
    top5_weight: Decimal
    top10_weight: Decimal
    herfindahl_index: Decimal
    effective_holdings: Decimal
    largest_holding_weight: Decimal
    largest_holding_symbol: str | None


@dataclass
class _Basis:
    cost: Decimal = ZERO
    quantity: Decimal = ZERO


def reconstruct_cost_basis(
    transactions: Iterable[Transaction],
    *,
    as_of_date: dt.date,
    warnings: list[str] | None = None,
) -> dict[str, Decimal]:
    """
    Average-cost basis per security from BUY/SELL history up to `as_of_date`.

    - BUY adds `abs(amount)` to cost and its quantity to shares.
    - SELL removes `average_cost * sold_quantity`.
    - If any trade of a security lacks a quantity, that security falls back to
      cumulative net trade amounts (BUY adds, SELL subtracts).
    - A negative result is floored at 0.
    """
    warnings = warnings if warnings is not None else []
    trades: dict[str, list[Transaction]] = defaultdict(list)
    for t in transactions:
        if t.type not in TRADE_TYPES:
            continue
        if t.date is None or t.date > as_of_date or not t.security_id:
            continue
        trades[t.security_id].append(t)

    out: dict[str, Decimal] = {}
    for sec in sorted(trades):
        txs = sorted(trades[sec], key=lambda t: t.date)
        with_qty = all(t.quantity is not None for t in txs)
        b = _Basis()
        oversold = False
        for t in txs:
            amt = abs(t.amount) if t.amount is not None else ZERO
            if t.type == TransactionType.BUY:
                b.cost += amt
                if with_qty:
                    b.quantity += abs(t.quantity)
                continue
            if not with_qty:
                b.cost -= amt
                continue
            sold = abs(t.quantity)
            if sold > b.quantity:
                oversold = True
                sold = b.quantity
            if b.quantity > 0:
                b.cost -= b.cost / b.quantity * sold
                b.quantity -= sold
            if b.quantity == 0:
                b.cost = ZERO
        if oversold:
            warnings.append(f"{sec}: SELL quantity exceeds shares bought; basis of the excess is unknown.")
        if b.cost < 0:
            warnings.append(f"{sec}: net trade amounts give a negative cost basis; floored at 0.")
            b.cost = ZERO
        out[sec] = b.cost
    return out


def _latest_by_key(positions: Sequence[Position]) -> dict[str, Position]:
    latest: dict[str, Position] = {}
    for p in sorted(positions, key=lambda p: p.date):
        latest[p.security_key] = p
    return latest


def _allocation(value: Decimal, total: Decimal, places: int) -> Decimal:
    if total <= 0:
        return ZERO
    return quantize(value / total, places)


def compute_holdings(
    account_id: str,
    as_of_date: dt.date,
    positions: Iterable[Position],
    transactions: Iterable[Transaction],
    *,
    cash_balance: Any = None,
    settings: EngineSettings | None = None,
) -> HoldingsSnapshot:
    """
    Open positions as of `as_of_date` with market value, unrealized P&L and allocation.

    Allocations are computed once every holding is known, against a total that includes cash,
    so holdings plus cash sum to 1 whenever the total is positive.
    """
    if not isinstance(as_of_date, dt.date):
        raise ContractViolation(f"as_of_date must be a date, got {as_of_date!r}")
    settings = settings or DEFAULT_SETTINGS
    positions = list(positions)
    transactions = list(transactions)
    require_account(account_id, positions)
    require_account(account_id, transactions)

    money_places = settings.currency_places
    pct_places = settings.return_places
    warnings: list[str] = []

    dated, undated = split_undated(positions)
    if undated:
        warnings.append(f"Ignored {undated} position record(s) without a date.")
    eligible = [p for p in dated if p.date <= as_of_date and p.market_value is not None]

    cash_lines = _latest_by_key([p for p in eligible if p.is_cash])
    sec_positions = [p for p in eligible if not p.is_cash]
    account_lines = [p for p in sec_positions if p.security_key is None]
    if account_lines:
        warnings.append(
            f"Ignored {len(account_lines)} account-level valuation record(s) without a security identifier."
        )
    latest = _latest_by_key([p for p in sec_positions if p.security_key is not None])

    if cash_balance is not None:
        cash = to_decimal(cash_balance)
        if cash is None:
            raise ContractViolation(f"cash_balance must be numeric, got {cash_balance!r}")
    else:
        cash = sum((p.market_value for p in cash_lines.values()), ZERO)
    cash = quantize(cash, money_places)

    bases = reconstruct_cost_basis(transactions, as_of_date=as_of_date, warnings=warnings)

    open_positions: list[tuple[str, Position, Decimal, Decimal | None]] = []
    for key in sorted(latest):
        p = latest[key]
        if p.quantity is not None and p.quantity == 0:
            continue
        mv = quantize(p.market_value, money_places)
        if key in bases:
            basis: Decimal | None = bases[key]
        elif p.cost_basis is not None:
            basis = p.cost_basis
        elif p.unrealized_pnl is not None:
            basis = p.market_value - p.unrealized_pnl
        else:
            basis = None
        if basis is None:
            warnings.append(f"{key}: no cost basis available (zero-basis holding); unrealized P&L not computed.")
        else:
            basis = quantize(basis, money_places)
            if basis == 0:
                warnings.append(f"{key}: zero cost basis; unrealized P&L equals market value.")
        open_positions.append((key, p, mv, basis))

    total = sum((mv for _k, _p, mv, _b in open_positions), ZERO) + cash
    if total < 0:
        warnings.append(f"Total market value is negative ({total}); allocations set to 0.")

    holdings: list[Holding] = []
    for key, p, mv, basis in open_positions:
        pnl = mv - basis if basis is not None else None
        pnl_pct = quantize(pnl / basis, pct_places) if pnl is not None and basis and basis > 0 else None
        holdings.append(
            Holding(
                security_id=key,
                symbol=p.symbol,
                asset_class=p.asset_class or UNCLASSIFIED_ASSET_CLASS,
                quantity=p.quantity,
                market_value=mv,
                cost_basis=basis,
                unrealized_pnl=pnl,
                unrealized_pnl_percent=pnl_pct,
                allocation_percent=_allocation(mv, total, pct_places),
                position_date=p.date,
            )
        )
    holdings.sort(key=lambda h: (-h.market_value, h.security_id))

    snapshot = HoldingsSnapshot(
        account_id=account_id,
        as_of_date=as_of_date,
        holdings=holdings,
        asset_classes=group_by_asset_class(holdings, total_market_value=total, cash_balance=cash, settings=settings),
        cash_balance=cash,
        cash_allocation_percent=_allocation(cash, total, pct_places),
        total_market_value=total,
        total_cost_basis=sum((h.cost_basis for h in holdings if h.cost_basis is not None), ZERO),
        total_unrealized_pnl=sum((h.unrealized_pnl for h in holdings if h.unrealized_pnl is not None), ZERO),
        warnings=warnings,
    )
    log.debug(
        "Holdings %s as of %s: %d holding(s), total=%s cash=%s",
        account_id,
        as_of_date,
        len(holdings),
        total,
        cash,
    )
    return snapshot


def group_by_asset_class(
    holdings: Sequence[Holding],
    *,
    total_market_value: Decimal,
    cash_balance: Decimal = ZERO,
    settings: EngineSettings | None = None,
) -> list[AssetClassAllocation]:
    """
    Asset-class breakdown from unrounded group market values against the snapshot total.

    Cash appears as its own row when non-zero, so the rows sum to the total.
    """
    settings = settings or DEFAULT_SETTINGS
    places = settings.return_places
    mv: dict[str, Decimal] = defaultdict(lambda: ZERO)
    pnl: dict[str, Decimal] = defaultdict(lambda: ZERO)
    count: dict[str, int] = defaultdict(int)
    for h in holdings:
        mv[h.asset_class] += h.market_value
        pnl[h.asset_class] += h.unrealized_pnl or ZERO
        count[h.asset_class] += 1
    if cash_balance != 0:
        mv[CASH_ASSET_CLASS] += cash_balance

    rows = [
        AssetClassAllocation(
            asset_class=ac,
            count=count[ac],
            market_value=mv[ac],
            unrealized_pnl=pnl[ac],
            allocation_percent=_allocation(mv[ac], total_market_value, places),
        )
        for ac in mv
    ]
    rows.sort(key=lambda r: (-r.market_value, r.asset_class))
    return rows


def concentration(snapshot: HoldingsSnapshot, *, settings: EngineSettings | None = None) -> ConcentrationStats:
    """Concentration of the non-cash holdings, using their allocation of the whole account."""
    settings = settings or DEFAULT_SETTINGS
    places = settings.return_places
    weights = sorted((h.allocation_percent for h in snapshot.holdings), reverse=True)
    hhi = quantize(sum((w * w for w in weights), ZERO), places)
    largest = snapshot.holdings[0] if snapshot.holdings else None
    return ConcentrationStats(
        holding_count=len(weights),
        top5_weight=sum(weights[:5], ZERO),
        top10_weight=sum(weights[:10], ZERO),
        herfindahl_index=hhi,
        effective_holdings=quantize(ONE / hhi, places) if hhi > 0 else ZERO,
        largest_holding_weight=weights[0] if weights else ZERO,
        largest_holding_symbol=(largest.symbol or largest.security_id) if largest else None,
    )


@dataclass(frozen=True)
class AttributionRow:
    security_id: str
    symbol: str | None
    previous_weight: Decimal
    current_weight: Decimal
    weight_change: Decimal
    previous_price: Decimal | None
    current_price: Decimal | None
    price_return: Decimal | None
    contribution: Decimal


def _unit_price(h: Holding | None) -> Decimal | None:
    if h is None or not h.quantity:
        return None
    return h.market_value / h.quantity


def performance_attribution(
    current: HoldingsSnapshot,
    previous: HoldingsSnapshot,
    *,
    settings: EngineSettings | None = None,
) -> list[AttributionRow]:
    """
    Per-security attribution between two snapshots of one account.

    Contribution is the previous weight times the security's price return. A security held in
    only one of the snapshots has no price return and contributes 0. Rows are ordered by
    absolute contribution, largest first.
    """
    if current.account_id != previous.account_id:
        raise AccountMismatch(
            f"snapshots belong to different accounts: {previous.account_id!r} and {current.account_id!r}"
        )
    if previous.as_of_date > current.as_of_date:
        raise ContractViolation(
            f"previous snapshot ({previous.as_of_date.isoformat()}) is after current ({current.as_of_date.isoformat()})"
        )
    settings = settings or DEFAULT_SETTINGS
    places = settings.return_places
    cur = {h.security_id: h for h in current.holdings}
    prev = {h.security_id: h for h in previous.holdings}

    rows: list[AttributionRow] = []
    for sec in sorted(cur.keys() | prev.keys()):
        c, p = cur.get(sec), prev.get(sec)
        prev_w = p.allocation_percent if p else ZERO
        cur_w = c.allocation_percent if c else ZERO
        prev_px, cur_px = _unit_price(p), _unit_price(c)
        ret = None
        if prev_px and cur_px is not None:
            ret = quantize(cur_px / prev_px - ONE, places)
        rows.append(
            AttributionRow(
                security_id=sec,
                symbol=(c.symbol if c else None) or (p.symbol if p else None),
                previous_weight=prev_w,
                current_weight=cur_w,
                weight_change=cur_w - prev_w,
                previous_price=quantize(prev_px, places) if prev_px is not None else None,
                current_price=quantize(cur_px, places) if cur_px is not None else None,
                price_return=ret,
                contribution=quantize(prev_w * ret, places) if ret is not None else ZERO,
            )
        )
    rows.sort(key=lambda r: -abs(r.contribution))
    return rows
