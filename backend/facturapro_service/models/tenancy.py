from __future__ import annotations

from ..extensions import db
from facturapro_service.time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every customer company is a Tenant.

    WHY: Shared-database multi-tenancy with strict isolation.
    Accounts, clients, products and invoices belong to exactly one tenant.

    DESIGN:
    - Created once at signup together with its first admin account
      (register_tenant RPC); immutable from the dashboard afterwards
    - Every tenant-owned table carries tenant_id and is filtered by the
      row-level policy in table_service
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    tax_id = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "tax_id": self.tax_id,
            "address": self.address,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
        }
