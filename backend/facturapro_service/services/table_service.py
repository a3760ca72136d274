# Overview: Generic row-level-secured table access behind the /api/rest routes.

"""
Table Service: PostgREST-style select/insert/update/delete with tenant policy

WHY: The dashboard talks to tables directly (list, create, edit, delete),
so the service must be the enforcement point for tenant isolation. Client
side tenant filters are a convenience; the policy here is the boundary.

QUERY LANGUAGE (query string):
- select=*,tenant(*)         column projection plus embedded relations
- col=eq.value               filters: eq neq gt gte lt lte in ilike
- order=created_at.desc,id   ordering (asc default)
- limit=N&offset=M           paging

ROW-LEVEL POLICY:
- Every read is AND-ed with tenant_id = caller.tenant_id
- Inserts may omit tenant_id (filled in) but never name another tenant
- Foreign keys in inserts must point at rows of the same tenant
- Update and delete require at least one filter (no accidental mass writes)
- Per-table rules: see TABLES below
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Tenant, Account, Client, Product, Invoice, InvoiceLine, SessionToken
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    ConflictError,
    coerce_value,
    validate_payload,
    enforce_rules_product,
    enforce_rules_client,
    enforce_rules_account,
    enforce_rules_invoice,
    enforce_rules_invoice_line,
)
from .tenant_service import Caller, TenantAccessError, require_tenant, require_row_in_tenant, log_cross_tenant_attempt
from facturapro_service.time_utils import today


RESERVED_PARAMS = {"select", "order", "limit", "offset"}
FILTER_OPERATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "in", "ilike"}
MAX_LIMIT = 1000


class QueryError(ValueError):
    """400-level malformed query (unknown column, operator, embed)."""

    code = "invalid_query"


class UnknownTableError(LookupError):
    code = "not_found"


@dataclass(frozen=True)
class TablePolicy:
    """
    Everything the table API knows about one exposed table.

    - embeds: embed name -> (relationship attribute, target table)
    - insert_policy / update_policy: None means the operation is denied
    - rules: business rules applied to validated insert/update patches
    - before_insert / before_delete: tenant-aware reference checks
    """
    name: str
    model: type
    tenant_column: str = "tenant_id"
    embeds: dict[str, tuple[str, str]] = field(default_factory=dict)
    insert_policy: ModelValidationPolicy | None = None
    update_policy: ModelValidationPolicy | None = None
    allow_delete: bool = False
    admin_only_writes: bool = False
    rules: Callable[[dict], None] | None = None
    before_insert: Callable[[Caller, dict], None] | None = None
    before_delete: Callable[[Caller, object], None] | None = None


# =============================================================================
# PER-TABLE REFERENCE CHECKS
# =============================================================================

def _check_invoice_insert(caller: Caller, patch: dict) -> None:
    require_row_in_tenant(Client, patch.get("client_id"), caller.tenant_id, label="client")

    creator_id = patch.setdefault("creator_id", caller.identity_id)
    if creator_id != caller.identity_id:
        log_cross_tenant_attempt(f"invoice creator {creator_id} is not the caller", caller=caller)
        raise TenantAccessError("Invoices can only be created on behalf of yourself")

    patch.setdefault("issue_date", today())
    patch.setdefault("status", "pending")


def _check_invoice_line_insert(caller: Caller, patch: dict) -> None:
    require_row_in_tenant(Invoice, patch.get("invoice_id"), caller.tenant_id, label="invoice")
    require_row_in_tenant(Product, patch.get("product_id"), caller.tenant_id, label="product")


def _check_client_delete(caller: Caller, client: Client) -> None:
    if db.session.query(Invoice.id).filter_by(client_id=client.id).first():
        raise ConflictError(
            "This client has invoices and cannot be deleted",
            code="foreign_key_violation",
            detail=f'Key (id)=({client.id}) is still referenced from table "invoices".',
        )


def _check_product_delete(caller: Caller, product: Product) -> None:
    if db.session.query(InvoiceLine.id).filter_by(product_id=product.id).first():
        raise ConflictError(
            "This product appears on invoices and cannot be deleted",
            code="foreign_key_violation",
            detail=f'Key (id)=({product.id}) is still referenced from table "invoice_lines".',
        )


def _check_account_delete(caller: Caller, account: Account) -> None:
    if account.id == caller.identity_id:
        log_cross_tenant_attempt("attempt to delete own account", caller=caller)
        raise TenantAccessError("You cannot delete your own account")
    if db.session.query(Invoice.id).filter_by(creator_id=account.id).first():
        raise ConflictError(
            "This user has issued invoices and cannot be deleted",
            code="foreign_key_violation",
            detail=f'Key (id)=({account.id}) is still referenced from table "invoices".',
        )


TABLES: dict[str, TablePolicy] = {
    "tenants": TablePolicy(
        name="tenants",
        model=Tenant,
        tenant_column="id",
    ),
    "accounts": TablePolicy(
        name="accounts",
        model=Account,
        embeds={"tenant": ("tenant", "tenants")},
        update_policy=ModelValidationPolicy(writable_fields=frozenset({"name", "role"})),
        allow_delete=True,
        admin_only_writes=True,
        rules=enforce_rules_account,
        before_delete=_check_account_delete,
    ),
    "clients": TablePolicy(
        name="clients",
        model=Client,
        insert_policy=ModelValidationPolicy(
            writable_fields=frozenset({"tenant_id", "name", "email", "phone", "address", "tax_id"}),
            required_on_create=frozenset({"name"}),
        ),
        update_policy=ModelValidationPolicy(
            writable_fields=frozenset({"name", "email", "phone", "address", "tax_id"}),
        ),
        allow_delete=True,
        rules=enforce_rules_client,
        before_delete=_check_client_delete,
    ),
    "products": TablePolicy(
        name="products",
        model=Product,
        insert_policy=ModelValidationPolicy(
            writable_fields=frozenset({"tenant_id", "name", "description", "price_cents", "stock"}),
            required_on_create=frozenset({"name"}),
        ),
        update_policy=ModelValidationPolicy(
            writable_fields=frozenset({"name", "description", "price_cents", "stock"}),
        ),
        allow_delete=True,
        rules=enforce_rules_product,
        before_delete=_check_product_delete,
    ),
    "invoices": TablePolicy(
        name="invoices",
        model=Invoice,
        embeds={
            "client": ("client", "clients"),
            "creator": ("creator", "accounts"),
            "lines": ("lines", "invoice_lines"),
        },
        insert_policy=ModelValidationPolicy(
            writable_fields=frozenset({
                "tenant_id", "client_id", "creator_id", "issue_date", "due_date", "total_cents", "status",
            }),
            required_on_create=frozenset({"client_id", "total_cents"}),
        ),
        rules=enforce_rules_invoice,
        before_insert=_check_invoice_insert,
    ),
    "invoice_lines": TablePolicy(
        name="invoice_lines",
        model=InvoiceLine,
        embeds={
            "product": ("product", "products"),
            "invoice": ("invoice", "invoices"),
        },
        insert_policy=ModelValidationPolicy(
            writable_fields=frozenset({
                "tenant_id", "invoice_id", "product_id", "quantity", "unit_price_cents", "subtotal_cents",
            }),
            required_on_create=frozenset({"invoice_id", "product_id", "quantity", "unit_price_cents"}),
        ),
        rules=enforce_rules_invoice_line,
        before_insert=_check_invoice_line_insert,
    ),
}


def get_table(name: str) -> TablePolicy:
    policy = TABLES.get(name)
    if policy is None:
        raise UnknownTableError(f'relation "{name}" does not exist')
    return policy


# =============================================================================
# QUERY PARSING
# =============================================================================

@dataclass
class Projection:
    """Parsed select=: columns (None = all) and embedded relations."""
    columns: list[str] | None
    embeds: dict[str, tuple[TablePolicy, str, "Projection"]]


def _split_top_level(expr: str) -> list[str]:
    parts, depth, current = [], 0, []
    for ch in expr:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise QueryError("Unbalanced parentheses in select")
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if depth != 0:
        raise QueryError("Unbalanced parentheses in select")
    parts.append("".join(current).strip())
    return [p for p in parts if p]


_EMBED_PATTERN = re.compile(r"^([a-z_]+)\((.*)\)$", re.DOTALL)


def parse_select(expr: str | None, policy: TablePolicy) -> Projection:
    columns: list[str] | None = []
    embeds: dict = {}
    model_columns = {c.key for c in policy.model.__mapper__.columns}

    for token in _split_top_level(expr or "*"):
        if token == "*":
            columns = None
            continue

        match = _EMBED_PATTERN.match(token)
        if match:
            embed_name, inner = match.groups()
            if embed_name not in policy.embeds:
                raise QueryError(
                    f"Could not find a relationship between '{policy.name}' and '{embed_name}'"
                )
            attr, target_name = policy.embeds[embed_name]
            target = get_table(target_name)
            embeds[embed_name] = (target, attr, parse_select(inner, target))
            continue

        if token not in model_columns:
            raise QueryError(f"column {policy.name}.{token} does not exist")
        if columns is not None:
            columns.append(token)

    if columns == [] and not embeds:
        columns = None
    return Projection(columns=columns, embeds=embeds)


def _column(policy: TablePolicy, name: str):
    col = policy.model.__table__.columns.get(name)
    if col is None:
        raise QueryError(f"column {policy.name}.{name} does not exist")
    return col


def _coerce_filter(col, raw: str):
    try:
        return coerce_value(col, raw)
    except ValidationError as e:
        raise QueryError(str(e))


def parse_filters(params, policy: TablePolicy) -> list:
    """
    Translate col=op.value query params into SQLAlchemy criteria.

    `params` is any mapping with .items(); repeated keys should be passed as a
    list of (key, value) pairs via items(multi=True) by the route.
    """
    criteria = []
    for key, raw in params:
        if key in RESERVED_PARAMS:
            continue
        col = _column(policy, key)
        op, sep, value = str(raw).partition(".")
        if not sep or op not in FILTER_OPERATORS:
            raise QueryError(f"Unsupported filter '{raw}' on {key}")

        if op == "in":
            if not (value.startswith("(") and value.endswith(")")):
                raise QueryError(f"in filter on {key} must look like in.(a,b)")
            items = [v.strip() for v in value[1:-1].split(",") if v.strip()]
            criteria.append(col.in_([_coerce_filter(col, v) for v in items]))
            continue

        if op == "ilike":
            criteria.append(col.ilike(value.replace("*", "%")))
            continue

        if value == "null" and op in ("eq", "neq"):
            criteria.append(col.is_(None) if op == "eq" else col.is_not(None))
            continue

        coerced = _coerce_filter(col, value)
        criteria.append({
            "eq": col == coerced,
            "neq": col != coerced,
            "gt": col > coerced,
            "gte": col >= coerced,
            "lt": col < coerced,
            "lte": col <= coerced,
        }[op])
    return criteria


def parse_order(expr: str | None, policy: TablePolicy) -> list:
    clauses = []
    for token in filter(None, (t.strip() for t in (expr or "").split(","))):
        name, _, direction = token.partition(".")
        col = _column(policy, name)
        direction = direction or "asc"
        if direction not in ("asc", "desc"):
            raise QueryError(f"Unsupported order direction '{direction}'")
        clauses.append(col.desc() if direction == "desc" else col.asc())
    if not clauses:
        clauses.append(_column(policy, "id").asc())
    return clauses


def _parse_int(raw, name: str) -> int | None:
    if raw in (None, ""):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise QueryError(f"{name} must be an integer")
    if value < 0:
        raise QueryError(f"{name} must be >= 0")
    return value


# =============================================================================
# SERIALIZATION
# =============================================================================

def serialize(row, projection: Projection) -> dict:
    data = row.to_dict()
    if projection.columns is not None:
        data = {k: v for k, v in data.items() if k in projection.columns}

    for embed_name, (target, attr, sub) in projection.embeds.items():
        related = getattr(row, attr)
        if isinstance(related, list):
            data[embed_name] = [serialize(r, sub) for r in related]
        else:
            data[embed_name] = serialize(related, sub) if related is not None else None
    return data


# =============================================================================
# OPERATIONS
# =============================================================================

def _scoped_query(caller: Caller, policy: TablePolicy, filters):
    tenant_col = _column(policy, policy.tenant_column)
    query = db.session.query(policy.model).filter(tenant_col == caller.tenant_id)
    criteria = parse_filters(filters, policy)
    if criteria:
        query = query.filter(*criteria)
    return query, criteria


def _require_writable(caller: Caller, policy: TablePolicy, operation: str) -> None:
    require_tenant(caller)
    if policy.admin_only_writes and not caller.is_admin:
        log_cross_tenant_attempt(f"{operation} on {policy.name} requires admin", caller=caller)
        raise TenantAccessError(f"new row violates row-level security policy for table \"{policy.name}\"")


def conflict_from_integrity_error(e: IntegrityError) -> ConflictError:
    """Translate a database constraint failure, keeping the driver's detail verbatim."""
    detail = str(e.orig)
    if "UNIQUE" in detail.upper():
        return ConflictError("duplicate key value violates unique constraint", detail=detail)
    if "FOREIGN KEY" in detail.upper():
        return ConflictError("violates foreign key constraint", code="foreign_key_violation", detail=detail)
    return ConflictError("violates check constraint", code="check_violation", detail=detail)


def _commit_or_conflict() -> None:
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise conflict_from_integrity_error(e)


def select_rows(caller: Caller, table: str, filters, *, select: str | None = None,
                order: str | None = None, limit=None, offset=None) -> list[dict]:
    """
    Tenant-scoped select.

    MULTI-TENANT: An identity without a profile (tenant_id=None) matches no
    rows instead of erroring, mirroring how a row-level policy behaves.
    """
    policy = get_table(table)
    projection = parse_select(select, policy)
    order_by = parse_order(order, policy)
    limit = _parse_int(limit, "limit")
    offset = _parse_int(offset, "offset")

    if caller.tenant_id is None:
        # Still validate the filters so malformed queries fail the same way
        parse_filters(filters, policy)
        return []

    query, _ = _scoped_query(caller, policy, filters)
    query = query.order_by(*order_by)
    if offset:
        query = query.offset(offset)
    query = query.limit(min(limit, MAX_LIMIT) if limit is not None else MAX_LIMIT)

    return [serialize(row, projection) for row in query.all()]


def _build_row(caller: Caller, policy: TablePolicy, payload: dict):
    patch = validate_payload(model=policy.model, payload=payload, policy=policy.insert_policy, partial=False)

    tenant_id = patch.get("tenant_id")
    if tenant_id is not None and tenant_id != caller.tenant_id:
        log_cross_tenant_attempt(f"insert into {policy.name} for tenant {tenant_id}", caller=caller)
        raise TenantAccessError(f"new row violates row-level security policy for table \"{policy.name}\"")
    patch["tenant_id"] = caller.tenant_id

    if policy.before_insert:
        policy.before_insert(caller, patch)
    if policy.rules:
        policy.rules(patch)

    row = policy.model()
    for k, v in patch.items():
        setattr(row, k, v)
    return row


def insert_rows(caller: Caller, table: str, payload, *, select: str | None = None):
    """
    Insert one row (dict payload) or several in one transaction (list payload).

    Returns the inserted representation (dict or list of dicts).
    """
    policy = get_table(table)
    if policy.insert_policy is None:
        raise TenantAccessError(f"new row violates row-level security policy for table \"{policy.name}\"")
    _require_writable(caller, policy, "insert")
    projection = parse_select(select, policy)

    many = isinstance(payload, list)
    payloads = payload if many else [payload]
    if not payloads:
        raise ValidationError("Empty insert payload")

    try:
        rows = []
        for item in payloads:
            row = _build_row(caller, policy, item)
            db.session.add(row)
            rows.append(row)
        db.session.flush()
    except IntegrityError as e:
        db.session.rollback()
        raise conflict_from_integrity_error(e)
    except Exception:
        db.session.rollback()
        raise

    _commit_or_conflict()

    data = [serialize(row, projection) for row in rows]
    return data if many else data[0]


def update_rows(caller: Caller, table: str, filters, payload: dict, *, select: str | None = None) -> list[dict]:
    policy = get_table(table)
    if policy.update_policy is None:
        raise TenantAccessError(f"update on table \"{policy.name}\" is not permitted")
    _require_writable(caller, policy, "update")
    projection = parse_select(select, policy)

    patch = validate_payload(model=policy.model, payload=payload, policy=policy.update_policy, partial=True)
    if policy.rules:
        policy.rules(patch)
    if not patch:
        raise ValidationError("Empty update payload")

    query, criteria = _scoped_query(caller, policy, filters)
    if not criteria:
        raise QueryError("UPDATE requires a WHERE clause")

    rows = query.all()
    for row in rows:
        for k, v in patch.items():
            setattr(row, k, v)

    _commit_or_conflict()
    return [serialize(row, projection) for row in rows]


def delete_rows(caller: Caller, table: str, filters) -> list[dict]:
    policy = get_table(table)
    if not policy.allow_delete:
        raise TenantAccessError(f"delete on table \"{policy.name}\" is not permitted")
    _require_writable(caller, policy, "delete")

    query, criteria = _scoped_query(caller, policy, filters)
    if not criteria:
        raise QueryError("DELETE requires a WHERE clause")

    rows = query.all()
    deleted = []
    try:
        for row in rows:
            if policy.before_delete:
                policy.before_delete(caller, row)
            deleted.append(row.to_dict())
            if isinstance(row, Account):
                _delete_account_identity(row)
            else:
                db.session.delete(row)
    except Exception:
        db.session.rollback()
        raise

    _commit_or_conflict()
    return deleted


def _delete_account_identity(account: Account) -> None:
    """An account and its identity go together; their sessions go first."""
    identity = account.identity
    db.session.query(SessionToken).filter_by(identity_id=account.id).delete(synchronize_session=False)
    db.session.delete(account)
    if identity is not None:
        db.session.delete(identity)
