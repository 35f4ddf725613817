from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from billing.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum monetary value accepted from clients: 99,99,99,999.99
MAX_AMOUNT = Decimal("999999999.99")

GST_RATES = (0, 5, 12, 18, 28)

PAYMENT_TYPES = ("CASH", "CREDIT")


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(ValueError):
    """404-level: a referenced entity does not exist."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate phone number)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def to_decimal(value: Any, field: str) -> Decimal:
    """Strict Decimal coercion; floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def to_int(value: Any, field: str) -> int:
    # Integers - strict validation to reject floats and scientific notation
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return to_int(value, col.key)

    if isinstance(coltype, Numeric):
        return to_decimal(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value.strip()[:10])
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
        raise ValidationError(f"{col.key} must be a date")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_amount_range(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        if patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
        if patch[key] > MAX_AMOUNT:
            raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT}")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_amount_range(patch, "rate")
    _check_amount_range(patch, "mrp")

    if "gst_percentage" in patch and patch["gst_percentage"] is not None:
        if patch["gst_percentage"] not in GST_RATES:
            raise ValidationError(
                f"gst_percentage must be one of: {', '.join(str(r) for r in GST_RATES)}"
            )


def enforce_rules_opening_stock(value: Any) -> int:
    qty = to_int(value, "opening_stock_qty")
    if qty < 0:
        raise ValidationError("opening_stock_qty must be >= 0")
    return qty


def enforce_rules_customer(patch: dict) -> None:
    if "payment_type" in patch and patch["payment_type"] is not None:
        patch["payment_type"] = patch["payment_type"].upper()
        if patch["payment_type"] not in PAYMENT_TYPES:
            raise ValidationError("payment_type must be CASH or CREDIT")

    if "phone" in patch and patch["phone"] is not None:
        if not any(ch.isdigit() for ch in patch["phone"]):
            raise ValidationError("phone must contain digits")


def enforce_rules_stock_adjust(payload: dict) -> tuple[int, str, str | None]:
    # Adjustment requires qty > 0 and a direction; the sign comes from type
    if payload.get("quantity") is None:
        raise ValidationError("quantity is required")
    quantity = to_int(payload["quantity"], "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    adjust_type = payload.get("type")
    if adjust_type not in ("in", "out"):
        raise ValidationError("type must be 'in' or 'out'")

    reason = payload.get("reason")
    if reason is not None:
        reason = str(reason).strip()[:255] or None

    return quantity, adjust_type, reason


def normalize_payment_type(value: Any) -> str:
    if value is None:
        return "CREDIT"
    if not isinstance(value, str) or value.strip().upper() not in PAYMENT_TYPES:
        raise ValidationError("paymentType must be Cash or Credit")
    return value.strip().upper()


def require_positive_amount(value: Any, field: str = "amount") -> Decimal:
    amount = to_decimal(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}")
    return amount


def require_text(value: Any, field: str, max_length: int = 255) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
