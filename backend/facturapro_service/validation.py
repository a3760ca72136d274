from __future__ import annotations
from datetime import date, datetime
from facturapro_service.time_utils import parse_iso_datetime, parse_iso_date

import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

MAX_STOCK = 1_000_000_000

ROLES = ("admin", "employee")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(ValueError):
    """409-level constraint conflict (duplicate email, dangling reference)."""

    def __init__(self, message: str, code: str = "unique_violation", detail: str | None = None):
        super().__init__(message)
        self.code = code
        self.detail = detail or message


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for insert
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer", col.key)
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)", col.key)
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)", col.key)
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer", col.key)
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal", col.key)
        raise ValidationError(f"{col.key} must be an integer", col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "t", "yes"}
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", col.key)
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", col.key)
            return dt
        raise ValidationError(f"{col.key} must be a datetime", col.key)

    # Dates ("YYYY-MM-DD")
    if isinstance(coltype, Date):
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date", col.key)
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date", col.key)
            return d
        raise ValidationError(f"{col.key} must be a date", col.key)

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

    partial=False: insert semantics (enforce required_on_create)
    partial=True: update semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing[0])

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", k)
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", k)
            patch[k] = None
            continue

        val = coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", k)

        # Optional text fields: blank means "not provided"
        if isinstance(col.type, (String, Text)) and col.nullable and val == "":
            val = None

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", k)

        patch[k] = val

    return patch


def validate_email(email: str | None, field: str = "email") -> str:
    value = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError("A valid email address is required", field)
    return value


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "price_cents" in patch and patch["price_cents"] is not None:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price_cents must be >= 0", "price_cents")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(
                f"price_cents cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})",
                "price_cents",
            )

    if "stock" in patch and patch["stock"] is not None:
        stock = patch["stock"]
        if stock < 0:
            raise ValidationError("stock must be >= 0", "stock")
        if stock > MAX_STOCK:
            raise ValidationError(f"stock cannot exceed {MAX_STOCK}", "stock")


def enforce_rules_client(patch: dict) -> None:
    if patch.get("email"):
        patch["email"] = validate_email(patch["email"])


def enforce_rules_account(patch: dict) -> None:
    if "role" in patch and patch["role"] not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}", "role")


def enforce_rules_invoice(patch: dict) -> None:
    if "total_cents" in patch and patch["total_cents"] is not None and patch["total_cents"] < 0:
        raise ValidationError("total_cents must be >= 0", "total_cents")

    if "status" in patch and patch["status"] != "pending":
        raise ValidationError("New invoices must start as pending", "status")

    issue_date = patch.get("issue_date")
    due_date = patch.get("due_date")
    if issue_date and due_date and due_date < issue_date:
        raise ValidationError("due_date cannot be before issue_date", "due_date")


def enforce_rules_invoice_line(patch: dict) -> None:
    quantity = patch.get("quantity")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0", "quantity")

    unit_price = patch.get("unit_price_cents")
    if unit_price is None or unit_price < 0:
        raise ValidationError("unit_price_cents must be >= 0", "unit_price_cents")

    expected = quantity * unit_price
    subtotal = patch.get("subtotal_cents")
    if subtotal is None:
        patch["subtotal_cents"] = expected
    elif subtotal != expected:
        raise ValidationError("subtotal_cents must equal quantity * unit_price_cents", "subtotal_cents")
