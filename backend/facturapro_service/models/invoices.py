from __future__ import annotations

from ..extensions import db
from facturapro_service.time_utils import to_utc_z, to_iso_date


INVOICE_STATUSES = ("pending", "paid", "void")


class Invoice(db.Model):
    """
    Invoice header.

    MULTI-TENANT: Scoped by tenant_id; client and creator must belong to the
    same tenant (checked by the row-level policy on insert).

    total_cents is derived: the sum of the line subtotals. The dashboard never
    updates an invoice once created; status transitions happen elsewhere.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.CheckConstraint("total_cents >= 0", name="ck_invoices_total_non_negative"),
        db.Index("ix_invoices_tenant_id", "tenant_id"),
        db.Index("ix_invoices_tenant_issue_date", "tenant_id", "issue_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    creator_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)

    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="pending")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("invoices", lazy=True))
    client = db.relationship("Client", backref=db.backref("invoices", lazy=True))
    creator = db.relationship("Account", backref=db.backref("invoices", lazy=True))

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} tenant_id={self.tenant_id} total_cents={self.total_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "creator_id": self.creator_id,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "total_cents": self.total_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceLine(db.Model):
    """
    Invoice line item.

    unit_price_cents is a snapshot of the product price when the line was
    drafted; subtotal_cents = quantity * unit_price_cents.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_invoice_lines_price_non_negative"),
        db.UniqueConstraint("invoice_id", "product_id", name="uq_invoice_lines_invoice_product"),
        db.Index("ix_invoice_lines_invoice_id", "invoice_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship("Invoice", backref=db.backref("lines", lazy=True, order_by="InvoiceLine.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }
