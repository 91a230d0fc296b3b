# Overview: JSON payload validation for API routes, driven by model column metadata.

from __future__ import annotations
from datetime import datetime
from salonerp.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime

from .errors import ValidationError


# Upper bound for any single monetary amount: 9,999,999.99
MAX_AMOUNT_CENTS = 999_999_999

KIND_INT = "int"
KIND_BOOL = "bool"
KIND_DATETIME = "datetime"
KIND_STR = "str"
KIND_LIST = "list"


@dataclass(frozen=True)
class PayloadPolicy:
    """
    What a route accepts:
    - writable_fields: model columns clients may set (security boundary)
    - required: fields that must be present
    - extra_fields: non-column inputs and their kind (e.g. opening_stock: int)
    """
    writable_fields: set[str]
    required: set[str] = field(default_factory=set)
    extra_fields: dict[str, str] = field(default_factory=dict)


def _kind_of(col) -> str:
    coltype = col.type
    if isinstance(coltype, Boolean):
        return KIND_BOOL
    if isinstance(coltype, Integer):
        return KIND_INT
    if isinstance(coltype, DateTime):
        return KIND_DATETIME
    if isinstance(coltype, (String, Text)):
        return KIND_STR
    return ""


def coerce(kind: str, name: str, value: Any):
    """Coerce one JSON value; None passes through."""
    if value is None:
        return None

    # Integers - strict: no floats, no scientific notation, no decimals
    if kind == KIND_INT:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{name} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{name} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{name} must be an integer, not a decimal")
        raise ValidationError(f"{name} must be an integer")

    if kind == KIND_BOOL:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
            return value.strip().lower() in ("true", "1")
        raise ValidationError(f"{name} must be a boolean")

    # Datetimes (ISO-8601 strings, normalized to UTC-naive)
    if kind == KIND_DATETIME:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{name} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{name} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{name} must be a datetime")

    if kind == KIND_LIST:
        if not isinstance(value, list):
            raise ValidationError(f"{name} must be a list")
        return value

    if kind == KIND_STR:
        return str(value).strip()

    return value


def validate_payload(*, model, payload: Any, policy: PayloadPolicy) -> dict:
    """
    Validate and normalize a JSON object against the model's column metadata
    (type, nullability, String length) and the route's policy.

    Returns a dict holding only allowed keys, ready to pass to a service.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in policy.required if payload.get(f) in (None, ""))
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = {c.key: c for c in model.__mapper__.columns}

    cleaned: dict = {}
    for key, raw in payload.items():
        if key in policy.extra_fields:
            cleaned[key] = coerce(policy.extra_fields[key], key, raw)
            continue
        if key not in policy.writable_fields or key not in cols:
            raise ValidationError(f"Field not allowed: {key}")

        col = cols[key]
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
            continue

        val = coerce(_kind_of(col), key, raw)

        if isinstance(val, str) and not col.nullable and val == "":
            raise ValidationError(f"{key} cannot be blank")
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{key} exceeds max length {col.type.length}")
        if key.endswith("_cents") and isinstance(val, int) and val > MAX_AMOUNT_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS}")

        cleaned[key] = val

    return cleaned


def query_int(args, name: str, default: int | None = None) -> int | None:
    """Integer query-string parameter."""
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    return coerce(KIND_INT, name, raw)


def query_datetime(args, name: str) -> datetime | None:
    return coerce(KIND_DATETIME, name, args.get(name) or None)
