# Overview: Input coercion helpers and the column-driven payload validator used by the registry services.

from __future__ import annotations

from dataclasses import dataclass, field as dc_field
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import Boolean, DateTime, Integer, String, Text

from .errors import ValidationError
from pdv.time_utils import parse_iso_datetime


# Upper bound for a catalog price: R$ 9.999.999,99
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which model columns a client payload may touch.

    writable_fields is the allowlist for both create and patch;
    required_on_create lists the keys a create payload must carry.
    """
    writable_fields: set[str]
    required_on_create: set[str] = dc_field(default_factory=set)


def _model_columns(model: type) -> dict[str, Any]:
    return {column.key: column for column in model.__mapper__.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
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


def require_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    number = coerce_int(value, field)
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return number


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = tuple(choices)
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}")
    return value


def coerce_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def _normalize(column, value: Any):
    """Coerce one raw JSON value to what the column stores."""
    column_type = column.type
    if isinstance(column_type, Integer):
        return coerce_int(value, column.key)
    if isinstance(column_type, Boolean):
        return value if isinstance(value, bool) else bool(value)
    if isinstance(column_type, DateTime):
        return coerce_datetime(value, column.key)
    if isinstance(column_type, (String, Text)):
        text = str(value).strip()
        if text == "" and not column.nullable:
            raise ValidationError(f"{column.key} cannot be blank")
        limit = getattr(column_type, "length", None)
        if limit and len(text) > limit:
            raise ValidationError(f"{column.key} exceeds max length {limit}")
        return text
    return value


def validate_payload(
    *,
    model: type,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn a client JSON object into a patch for `model`.

    Keys outside policy.writable_fields are refused, values are coerced by
    column type, and nullability and String lengths come from the column
    definitions. With partial=False the policy's required_on_create keys
    must all be present.
    """
    payload = {} if payload is None else payload
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(policy.required_on_create - set(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = _model_columns(model)
    refused = sorted(key for key in payload if key not in policy.writable_fields or key not in columns)
    if refused:
        raise ValidationError(f"Field not allowed: {', '.join(refused)}")

    patch: dict = {}
    for key, raw in payload.items():
        column = columns[key]
        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _normalize(column, raw)
    return patch


def enforce_rules_product(patch: dict) -> None:
    """Catalog rules the column metadata cannot express."""
    price = patch.get("price_cents")
    if price is not None and not 0 <= price <= MAX_PRICE_CENTS:
        raise ValidationError(
            f"price_cents must be between 0 and {MAX_PRICE_CENTS}",
            details={"price_cents": price},
        )

    for key in ("stock", "min_stock"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
