# Overview: Privileged remote functions invoked through /api/rpc/<name>.

"""
RPC Service: server-side business operations

WHY: Some operations must not be expressed as plain table writes from the
dashboard, because they need elevated rights or must be atomic:

- register_tenant    public signup: tenant + first admin identity/profile
- provision_account  admin creates a user in their tenant without touching
                     the admin's own session (identity + profile as a unit)
- decrement_stock    stock decrement for one invoice line, never below zero
- create_invoice     header + lines + stock decrement in ONE transaction
- dashboard_stats    monthly figures for the dashboard landing page

Each function receives the Caller (None for public functions) and a dict of
arguments, and returns a JSON-serializable result. Errors are RpcError
subclasses, ValidationError, ConflictError or TenantAccessError; the route
maps them to HTTP statuses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Tenant, Account, Client, Invoice, InvoiceLine
from ..validation import ValidationError, ROLES, enforce_rules_invoice
from .auth_service import create_identity
from .concurrency import lock_products, run_with_retry
from .tenant_service import Caller, TenantAccessError, require_tenant, require_row_in_tenant
from .table_service import conflict_from_integrity_error
from . import reporting_service
from facturapro_service.time_utils import parse_iso_date, today


class RpcError(Exception):
    """Business-rule rejection raised by a remote function."""

    code = "rpc_error"
    status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class FunctionNotFoundError(RpcError):
    code = "function_not_found"
    status = 404


class ForbiddenError(RpcError):
    code = "forbidden"
    status = 403


class InsufficientStockError(RpcError):
    code = "insufficient_stock"
    status = 409


@dataclass(frozen=True)
class RpcFunction:
    handler: Callable[[Caller | None, dict], Any]
    requires_auth: bool = True
    admin_only: bool = False


def _text(args: dict, key: str, *, required: bool = True, max_length: int = 255) -> str | None:
    value = args.get(key)
    if value is None or str(value).strip() == "":
        if required:
            raise ValidationError(f"{key} is required", key)
        return None
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}", key)
    return value


def _positive_int(value, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            value = int(str(value).strip())
        except (TypeError, ValueError):
            raise ValidationError(f"{key} must be an integer", key)
    if value <= 0:
        raise ValidationError(f"{key} must be > 0", key)
    return value


def _role(args: dict) -> str:
    role = args.get("role") or "employee"
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}", "role")
    return role


def _commit() -> None:
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise conflict_from_integrity_error(e)


# =============================================================================
# FUNCTIONS
# =============================================================================

def register_tenant(caller: Caller | None, args: dict) -> dict:
    """
    Create a tenant together with its first admin.

    ATOMIC: tenant, identity and account are flushed in one transaction; any
    failure rolls back all three.
    """
    tenant_name = _text(args, "tenant_name")
    admin_name = _text(args, "admin_name")

    try:
        tenant = Tenant(
            name=tenant_name,
            tax_id=_text(args, "tax_id", required=False, max_length=32),
            address=_text(args, "address", required=False),
            phone=_text(args, "phone", required=False, max_length=32),
        )
        db.session.add(tenant)
        db.session.flush()

        identity = create_identity(args.get("email"), args.get("password"))
        account = Account(
            id=identity.id,
            tenant_id=tenant.id,
            name=admin_name,
            role="admin",
            email=identity.email,
        )
        db.session.add(account)
    except Exception:
        db.session.rollback()
        raise

    _commit()
    return {"tenant": tenant.to_dict(), "account": account.to_dict()}


def provision_account(caller: Caller, args: dict) -> dict:
    """
    Create identity + profile in the caller's tenant.

    WHY: The public sign-up path would start a session for the new user.
    Running here, with service rights, the admin's own session is untouched
    and the two rows can never be created separately.
    """
    tenant_id = require_tenant(caller)
    name = _text(args, "name")
    role = _role(args)

    try:
        identity = create_identity(args.get("email"), args.get("password"))
        account = Account(
            id=identity.id,
            tenant_id=tenant_id,
            name=name,
            role=role,
            email=identity.email,
        )
        db.session.add(account)
    except Exception:
        db.session.rollback()
        raise

    _commit()
    return account.to_dict()


def decrement_stock(caller: Caller, args: dict) -> dict:
    """
    Subtract `quantity` from a product's stock.

    Rejects with insufficient_stock instead of going negative; the product
    row is locked for the duration of the check-and-write.
    """
    tenant_id = require_tenant(caller)
    product_id = _positive_int(args.get("product_id"), "product_id")
    quantity = _positive_int(args.get("quantity"), "quantity")

    def _op():
        products = lock_products(tenant_id, [product_id])
        product = products.get(product_id)
        if product is None:
            raise TenantAccessError("product not found")

        if product.stock < quantity:
            raise InsufficientStockError(
                "Insufficient stock",
                details={"product_id": product_id, "requested_quantity": quantity, "stock": product.stock},
            )

        product.stock -= quantity
        _commit()
        return {"product_id": product.id, "stock": product.stock}

    return run_with_retry(_op)


def create_invoice(caller: Caller, args: dict) -> dict:
    """
    Create an invoice with its lines and decrement stock, all or nothing.

    Unit prices are snapshotted from the products at commit time and stock is
    re-checked under lock, so concurrent sales of the same product cannot
    oversell.
    """
    tenant_id = require_tenant(caller)
    client = require_row_in_tenant(Client, args.get("client_id"), tenant_id, label="client")

    raw_lines = args.get("lines") or []
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("An invoice needs at least one line", "lines")

    requested: dict[int, int] = {}
    for raw in raw_lines:
        if not isinstance(raw, dict):
            raise ValidationError("Each line must be an object", "lines")
        product_id = _positive_int(raw.get("product_id"), "product_id")
        if product_id in requested:
            raise ValidationError("Each product may appear only once per invoice", "lines")
        requested[product_id] = _positive_int(raw.get("quantity"), "quantity")

    try:
        issue_date = parse_iso_date(args.get("issue_date")) or today()
        due_date = parse_iso_date(args.get("due_date"))
    except ValueError:
        raise ValidationError("Dates must be ISO-8601 (YYYY-MM-DD)", "issue_date")

    def _op():
        products = lock_products(tenant_id, requested)
        missing = sorted(set(requested) - set(products))
        if missing:
            raise TenantAccessError("product not found")

        insufficient = [
            {"product_id": pid, "requested_quantity": qty, "stock": products[pid].stock}
            for pid, qty in requested.items()
            if products[pid].stock < qty
        ]
        if insufficient:
            raise InsufficientStockError("Insufficient stock", details={"items": insufficient})

        header = {"issue_date": issue_date, "due_date": due_date, "status": "pending"}
        enforce_rules_invoice(header)

        invoice = Invoice(
            tenant_id=tenant_id,
            client_id=client.id,
            creator_id=caller.identity_id,
            total_cents=0,
            **header,
        )
        db.session.add(invoice)
        db.session.flush()

        total = 0
        for product_id, quantity in requested.items():
            product = products[product_id]
            subtotal = quantity * product.price_cents
            db.session.add(InvoiceLine(
                tenant_id=tenant_id,
                invoice_id=invoice.id,
                product_id=product_id,
                quantity=quantity,
                unit_price_cents=product.price_cents,
                subtotal_cents=subtotal,
            ))
            product.stock -= quantity
            total += subtotal

        invoice.total_cents = total
        _commit()

        data = invoice.to_dict()
        data["lines"] = [line.to_dict() for line in invoice.lines]
        return data

    return run_with_retry(_op)


def dashboard_stats(caller: Caller, args: dict) -> dict:
    tenant_id = require_tenant(caller)
    return reporting_service.monthly_stats(tenant_id, day=parse_iso_date(args.get("day")) or today())


RPC_FUNCTIONS: dict[str, RpcFunction] = {
    "register_tenant": RpcFunction(register_tenant, requires_auth=False),
    "provision_account": RpcFunction(provision_account, admin_only=True),
    "decrement_stock": RpcFunction(decrement_stock),
    "create_invoice": RpcFunction(create_invoice),
    "dashboard_stats": RpcFunction(dashboard_stats),
}


def get_function(name: str) -> RpcFunction:
    function = RPC_FUNCTIONS.get(name)
    if function is None:
        raise FunctionNotFoundError(f"Could not find the function public.{name} in the schema cache")
    return function


def call(name: str, caller: Caller | None, args: dict | None) -> Any:
    """
    Invoke a registered function.

    The route has already enforced authentication for functions that need
    it; role requirements are checked here.
    """
    function = get_function(name)
    if function.admin_only and (caller is None or not caller.is_admin):
        raise ForbiddenError(f"{name} requires the admin role")
    if args is not None and not isinstance(args, dict):
        raise ValidationError("RPC arguments must be a JSON object")
    return function.handler(caller, args or {})
