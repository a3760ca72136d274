# Overview: Immutable row types the dashboard core works with, built from service JSON.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from .roles import Role


def cents_to_decimal(cents: int | None) -> Decimal:
    """Integer minor units to a two-decimal amount (display only)."""
    return (Decimal(cents or 0) / 100).quantize(Decimal("0.01"))


def _parse_datetime(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    s = str(value)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_date(value) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class Session:
    """An authenticated session as issued by the auth endpoints."""
    access_token: str
    refresh_token: str
    user_id: int
    email: str
    expires_at: datetime | None = None
    token_type: str = "bearer"

    @classmethod
    def from_payload(cls, payload: dict) -> "Session":
        session = payload["session"]
        user = payload["user"]
        return cls(
            access_token=session["access_token"],
            refresh_token=session["refresh_token"],
            user_id=int(user["id"]),
            email=user["email"],
            expires_at=_parse_datetime(session.get("expires_at")),
            token_type=session.get("token_type", "bearer"),
        )


@dataclass(frozen=True)
class Tenant:
    id: int
    name: str
    tax_id: str | None = None
    address: str | None = None
    phone: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Tenant":
        return cls(
            id=row["id"],
            name=row["name"],
            tax_id=row.get("tax_id"),
            address=row.get("address"),
            phone=row.get("phone"),
        )


@dataclass(frozen=True)
class Account:
    """
    Tenant-scoped profile of an identity.

    When read for the Session Store it carries its Tenant (joined), which is
    what every controller uses to scope its queries.
    """
    id: int
    tenant_id: int
    name: str
    role: Role
    email: str
    created_at: datetime | None = None
    tenant: Tenant | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Account":
        tenant = row.get("tenant")
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            role=Role.parse(row["role"]),
            email=row["email"],
            created_at=_parse_datetime(row.get("created_at")),
            tenant=Tenant.from_row(tenant) if tenant else None,
        )

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class Client:
    id: int
    tenant_id: int
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    tax_id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Client":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            email=row.get("email"),
            phone=row.get("phone"),
            address=row.get("address"),
            tax_id=row.get("tax_id"),
            created_at=_parse_datetime(row.get("created_at")),
        )


@dataclass(frozen=True)
class Product:
    id: int
    tenant_id: int
    name: str
    price_cents: int
    stock: int
    description: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Product":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            price_cents=int(row["price_cents"]),
            stock=int(row["stock"]),
            description=row.get("description"),
            created_at=_parse_datetime(row.get("created_at")),
        )

    @property
    def price(self) -> Decimal:
        return cents_to_decimal(self.price_cents)


@dataclass(frozen=True)
class InvoiceLine:
    id: int | None
    invoice_id: int
    product_id: int
    quantity: int
    unit_price_cents: int
    subtotal_cents: int
    product: Product | None = None

    @classmethod
    def from_row(cls, row: dict) -> "InvoiceLine":
        product = row.get("product")
        return cls(
            id=row.get("id"),
            invoice_id=row["invoice_id"],
            product_id=row["product_id"],
            quantity=int(row["quantity"]),
            unit_price_cents=int(row["unit_price_cents"]),
            subtotal_cents=int(row["subtotal_cents"]),
            product=Product.from_row(product) if product else None,
        )


@dataclass(frozen=True)
class Invoice:
    id: int
    tenant_id: int
    client_id: int
    creator_id: int
    issue_date: date
    total_cents: int
    status: str = "pending"
    due_date: date | None = None
    created_at: datetime | None = None
    client: Client | None = None
    creator: Account | None = None
    lines: tuple[InvoiceLine, ...] = field(default_factory=tuple)

    @classmethod
    def from_row(cls, row: dict) -> "Invoice":
        client = row.get("client")
        creator = row.get("creator")
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            client_id=row["client_id"],
            creator_id=row["creator_id"],
            issue_date=_parse_date(row["issue_date"]),
            total_cents=int(row["total_cents"]),
            status=row.get("status", "pending"),
            due_date=_parse_date(row.get("due_date")),
            created_at=_parse_datetime(row.get("created_at")),
            client=Client.from_row(client) if client else None,
            creator=Account.from_row(creator) if creator else None,
            lines=tuple(InvoiceLine.from_row(r) for r in row.get("lines") or ()),
        )

    @property
    def total(self) -> Decimal:
        return cents_to_decimal(self.total_cents)


@dataclass(frozen=True)
class DashboardStats:
    month_start: date
    revenue_cents: int
    invoices_issued: int
    new_clients: int
    paid_rate: float

    @classmethod
    def from_row(cls, row: dict) -> "DashboardStats":
        return cls(
            month_start=_parse_date(row["month_start"]),
            revenue_cents=int(row["revenue_cents"]),
            invoices_issued=int(row["invoices_issued"]),
            new_clients=int(row["new_clients"]),
            paid_rate=float(row["paid_rate"]),
        )
