from __future__ import annotations

from ..extensions import db
from facturapro_service.time_utils import to_utc_z


class Client(db.Model):
    """
    Customer of a tenant (the party an invoice is issued to).

    MULTI-TENANT: Scoped by tenant_id. Email is unique within a tenant, so a
    duplicate insert surfaces as a unique_violation to the dashboard.
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_clients_tenant_email"),
        db.Index("ix_clients_tenant_id", "tenant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    tax_id = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("clients", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "tax_id": self.tax_id,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Sellable product with on-hand stock.

    MULTI-TENANT: Scoped by tenant_id.

    Prices are integer cents. Stock is decremented by invoice creation
    through the decrement_stock / create_invoice RPCs and may never go
    negative (enforced by CHECK constraint and by the RPC itself).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_tenant_id", "tenant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "created_at": to_utc_z(self.created_at),
        }
