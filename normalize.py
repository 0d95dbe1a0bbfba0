"""Coercion helpers applied where schemaless documents enter the domain model.

Stored documents may come from older clients that used camelCase keys and
major-unit floats (``{"value": 12.5, "accountId": "..."}``). Everything is
coerced here so the ledger only ever sees typed records.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional


def parse_amount(value: str) -> int:
    clean = value.strip().replace("R$", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return int((amount * 100).quantize(Decimal("1")))


def to_cents(value: Any, fallback: int = 0) -> int:
    """Major-unit number or numeric string to integer cents."""
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value * 100
    if isinstance(value, (float, Decimal)):
        try:
            return int((Decimal(str(value)) * 100).quantize(Decimal("1")))
        except InvalidOperation:
            return fallback
    try:
        return parse_amount(str(value))
    except ValueError:
        return fallback


def coerce_int(value: Any, fallback: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return fallback
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return fallback


def to_date(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) > 10 and value[10] in "T ":
        return value[:10]
    return value


def normalize_record(
    data: Any,
    *,
    renames: Mapping[str, str],
    amounts: Mapping[str, str],
) -> Any:
    """Rename legacy keys and convert legacy major-unit amounts to cents.

    ``renames`` maps legacy key -> field name. ``amounts`` maps legacy
    major-unit key -> ``*_cents`` field name. Existing modern keys win.
    """
    if not isinstance(data, Mapping):
        return data
    out = {k: v for k, v in data.items() if v is not None}
    for legacy, field in renames.items():
        if legacy in out:
            value = out.pop(legacy)
            out.setdefault(field, value)
    for legacy, field in amounts.items():
        if legacy in out:
            value = out.pop(legacy)
            out.setdefault(field, to_cents(value))
    return out
