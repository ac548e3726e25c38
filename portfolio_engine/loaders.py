from __future__ import annotations

import csv
import datetime as dt
import re
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Sequence

from portfolio_engine.money import to_decimal
from portfolio_engine.types import Position, Transaction, TransactionType, classify_transaction_type

_MONEY_RE = re.compile(r"[-+]?\d[\d,]*\.?\d*")
_DELIMITERS = ",\t;"

# Tried in order after ISO-8601.
DATE_FORMATS: tuple[str, ...] = ("%m/%d/%Y", "%m/%d/%y", "%d-%b-%y", "%d-%b-%Y", "%Y/%m/%d")

_POSITION_COLUMNS: dict[str, tuple[str, ...]] = {
    "account_id": ("account_id", "account", "account_number", "acct"),
    "date": ("date", "as_of", "as_of_date", "position_date"),
    "market_value": ("market_value", "marketvalue", "value", "mv"),
    "security_id": ("security_id", "cusip", "isin", "security"),
    "symbol": ("symbol", "ticker"),
    "quantity": ("quantity", "qty", "shares", "units"),
    "asset_class": ("asset_class", "assetclass", "class"),
    "cost_basis": ("cost_basis", "basis", "cost", "book_value"),
    "unrealized_pnl": ("unrealized_pnl", "unrealized_gain_loss", "unrealized"),
}

_TRANSACTION_COLUMNS: dict[str, tuple[str, ...]] = {
    "account_id": ("account_id", "account", "account_number", "acct"),
    "date": ("date", "trade_date", "settle_date", "posted_date"),
    "type": ("type", "transaction_type", "action", "activity"),
    "amount": ("amount", "net_amount", "value", "proceeds"),
    "security_id": ("security_id", "cusip", "isin", "security", "symbol", "ticker"),
    "quantity": ("quantity", "qty", "shares", "units"),
}


def parse_date(value: Any, formats: Sequence[str] = DATE_FORMATS) -> dt.date | None:
    s = str(value).strip() if value is not None else ""
    if not s:
        return None
    try:
        return dt.date.fromisoformat(s[:10])
    except ValueError:
        pass
    head = s.split()[0]
    for fmt in formats:
        try:
            return dt.datetime.strptime(head, fmt).date()
        except ValueError:
            continue
    return None


def parse_money(value: Any) -> Decimal | None:
    if value is None:
        return None
    s = str(value).strip().replace("$", "").strip()
    if not s:
        return None
    neg = False
    # Formats like "(123.45)".
    if s.startswith("(") and s.endswith(")"):
        neg = True
        s = s[1:-1]
    m = _MONEY_RE.search(s.replace("*", "").replace(" ", ""))
    if not m:
        return None
    d = to_decimal(m.group(0))
    if d is None:
        return None
    return -abs(d) if neg else d


def _slug(header: str) -> str:
    return re.sub(r"[^0-9a-z]+", "_", (header or "").lower()).strip("_")


def _detect_delimiter(lines: Sequence[str]) -> str:
    sample = "\n".join(lines[:30])
    if not sample:
        return ","
    try:
        return csv.Sniffer().sniff(sample, delimiters=_DELIMITERS).delimiter
    except csv.Error:
        # Sniffer gives up on single-column or ragged files; go by the header line.
        header = lines[0]
        return max(_DELIMITERS, key=header.count) if any(c in header for c in _DELIMITERS) else ","


class _Columns:
    """Maps canonical field names to the header a particular export uses for them."""

    def __init__(self, fieldnames: Sequence[str] | None, synonyms: Mapping[str, tuple[str, ...]]):
        by_slug = {_slug(h): h for h in (fieldnames or []) if h}
        self._header: dict[str, str] = {}
        for field, names in synonyms.items():
            for name in names:
                if name in by_slug:
                    self._header[field] = by_slug[name]
                    break

    def text(self, row: Mapping[str, Any], field: str) -> str | None:
        header = self._header.get(field)
        raw = row.get(header) if header else None
        s = str(raw).strip() if raw is not None else ""
        return s or None


def _read(path: Path, synonyms: Mapping[str, tuple[str, ...]]) -> tuple[_Columns, list[dict[str, Any]]]:
    lines = path.read_text(encoding="utf-8-sig", errors="replace").splitlines()
    reader = csv.DictReader(lines, delimiter=_detect_delimiter(lines))
    rows = [r for r in reader if r]
    return _Columns(reader.fieldnames, synonyms), rows


def _upper(value: str | None) -> str | None:
    return value.upper() if value else None


def load_positions(
    path: Path,
    *,
    account_id: str | None = None,
    date_formats: Sequence[str] = DATE_FORMATS,
) -> tuple[list[Position], list[str]]:
    """
    Parse a position export into `Position` records.

    `account_id` fills rows without an account column. Rows missing a date or market
    value are skipped with a warning.
    """
    cols, rows = _read(path, _POSITION_COLUMNS)
    warnings: list[str] = []
    out: list[Position] = []
    skipped = 0
    for row in rows:
        d = parse_date(cols.text(row, "date"), date_formats)
        mv = parse_money(cols.text(row, "market_value"))
        acct = cols.text(row, "account_id") or account_id
        if d is None or mv is None or acct is None:
            skipped += 1
            continue
        out.append(
            Position(
                account_id=acct,
                date=d,
                market_value=mv,
                security_id=_upper(cols.text(row, "security_id")),
                symbol=_upper(cols.text(row, "symbol")),
                quantity=parse_money(cols.text(row, "quantity")),
                asset_class=cols.text(row, "asset_class"),
                cost_basis=parse_money(cols.text(row, "cost_basis")),
                unrealized_pnl=parse_money(cols.text(row, "unrealized_pnl")),
            )
        )
    if skipped:
        warnings.append(f"Skipped {skipped} position row(s) missing a date, market value or account.")
    if not out:
        warnings.append("No positions parsed (check delimiter/headers).")
    out.sort(key=lambda p: (p.account_id, p.date, p.security_key or ""))
    return out, warnings


def load_transactions(
    path: Path,
    *,
    account_id: str | None = None,
    date_formats: Sequence[str] = DATE_FORMATS,
) -> tuple[list[Transaction], list[str]]:
    """Parse a transaction export into `Transaction` records (types normalized, order preserved)."""
    cols, rows = _read(path, _TRANSACTION_COLUMNS)
    warnings: list[str] = []
    out: list[Transaction] = []
    skipped = 0
    unknown: set[str] = set()
    for row in rows:
        d = parse_date(cols.text(row, "date"), date_formats)
        acct = cols.text(row, "account_id") or account_id
        if d is None or acct is None:
            skipped += 1
            continue
        raw_type = cols.text(row, "type")
        tx_type = classify_transaction_type(raw_type)
        if tx_type == TransactionType.OTHER and raw_type:
            unknown.add(raw_type)
        out.append(
            Transaction(
                account_id=acct,
                date=d,
                amount=parse_money(cols.text(row, "amount")),
                type=tx_type,
                security_id=_upper(cols.text(row, "security_id")),
                quantity=parse_money(cols.text(row, "quantity")),
            )
        )
    if skipped:
        warnings.append(f"Skipped {skipped} transaction row(s) missing a date or account.")
    if unknown:
        warnings.append(f"Unrecognized transaction type(s) treated as OTHER: {', '.join(sorted(unknown))}.")
    return out, warnings
