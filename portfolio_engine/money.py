from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any

ZERO = Decimal(0)
ONE = Decimal(1)


def to_decimal(value: Any) -> Decimal | None:
    """
    Best-effort conversion to `Decimal`.

    Floats go through `str()` so `0.1` becomes `Decimal("0.1")` rather than its binary expansion.
    Returns None for blanks and unparseable strings.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return Decimal(str(value))
    s = str(value).strip()
    if not s:
        return None
    neg = False
    if s.startswith("(") and s.endswith(")"):
        neg = True
        s = s[1:-1]
    s = s.replace(",", "").replace("$", "").strip()
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    return -d if neg else d


def quantize(value: Decimal, places: int) -> Decimal:
    q = ONE if places <= 0 else ONE.scaleb(-int(places))
    with localcontext() as ctx:
        # Very large annualized figures need more digits than the default context carries.
        ctx.prec = max(ctx.prec, value.adjusted() + int(places) + 2)
        out = value.quantize(q, rounding=ROUND_HALF_UP)
    # Avoid "-0.00" leaking into reports.
    if out == 0:
        return out.copy_abs()
    return out


def jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        return jsonable(value.value)
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return str(value)
