# Overview: In-memory invoice assembly and its commit sequences.

"""
Invoice Draft

    DRAFT --commit()--> SUBMITTING --> COMMITTED
                                   +-> FAILED(step)

Lines are keyed by product: a product appears at most once, its quantity is
kept within [1, stock observed when the line was added], and unit prices are
snapshotted from the product at that moment. total() is always recomputed
from the lines.

commit() performs three remote steps:

    1. HEADER  insert the invoice (total, status pending)
    2. LINES   insert all lines referencing the new invoice id
    3. STOCK   decrement_stock RPC once per line

A header failure aborts with nothing written and the draft stays editable.
A failure in step 2 or 3 leaves the header behind; PartialCommitError names
the failed step and the invoice id. Stock is not re-checked between editing
and commit, so this path can oversell under concurrent sales.

commit_transactional() sends the whole draft to the create_invoice RPC,
which writes header, lines and stock decrement in one transaction and
re-checks stock under lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum

from .errors import (
    FacturaError,
    OperationInProgress,
    PartialCommitError,
    RemoteError,
    ValidationError,
    friendly_message,
)
from .models import Invoice, Product

logger = logging.getLogger(__name__)


class DraftStatus(Enum):
    DRAFT = "draft"
    SUBMITTING = "submitting"
    COMMITTED = "committed"
    FAILED = "failed"


class CommitStep(Enum):
    HEADER = 1
    LINES = 2
    STOCK = 3
    TRANSACTION = 4

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass
class DraftLine:
    product_id: int
    product_name: str
    unit_price_cents: int
    stock: int
    quantity: int = 1

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents


class InvoiceDraft:
    def __init__(self, remote, session_store, *, issue_date: date | None = None):
        self._remote = remote
        self._session_store = session_store
        self.client_id: int | None = None
        self.issue_date = issue_date or date.today()
        self.due_date: date | None = None
        self._lines: dict[int, DraftLine] = {}
        self.status = DraftStatus.DRAFT
        self.failed_step: CommitStep | None = None
        self.invoice_id: int | None = None
        self.error: str | None = None

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    @property
    def lines(self) -> list[DraftLine]:
        return list(self._lines.values())

    @property
    def is_editable(self) -> bool:
        """Draft, or failed before anything was written."""
        if self.status is DraftStatus.DRAFT:
            return True
        return self.status is DraftStatus.FAILED and self.invoice_id is None

    def _ensure_editable(self) -> None:
        if self.status is DraftStatus.SUBMITTING:
            raise OperationInProgress("The invoice is being saved")
        if not self.is_editable:
            raise ValidationError("This invoice has already been saved; start a new one")

    def select_client(self, client_id: int | None) -> None:
        self._ensure_editable()
        self.client_id = client_id

    def set_due_date(self, due_date: date | None) -> None:
        self._ensure_editable()
        if due_date is not None and due_date < self.issue_date:
            raise ValidationError("The due date cannot be before the issue date", "due_date")
        self.due_date = due_date

    def add_line(self, product: Product) -> DraftLine:
        self._ensure_editable()
        if product.id in self._lines:
            raise ValidationError(f"{product.name} is already on this invoice", "product_id")
        if product.stock <= 0:
            raise ValidationError(f"{product.name} is out of stock", "product_id")

        line = DraftLine(
            product_id=product.id,
            product_name=product.name,
            unit_price_cents=product.price_cents,
            stock=product.stock,
        )
        self._lines[product.id] = line
        return line

    def set_quantity(self, product_id: int, quantity) -> int:
        """Store quantity clamped to [1, stock]; returns the stored value."""
        self._ensure_editable()
        line = self._line(product_id)
        try:
            requested = int(quantity)
        except (TypeError, ValueError):
            requested = 1
        line.quantity = max(1, min(requested, line.stock))
        return line.quantity

    def remove_line(self, product_id: int) -> None:
        self._ensure_editable()
        self._line(product_id)
        del self._lines[product_id]

    def total(self) -> int:
        return sum(line.subtotal_cents for line in self._lines.values())

    def _line(self, product_id: int) -> DraftLine:
        line = self._lines.get(product_id)
        if line is None:
            raise ValidationError("That product is not on this invoice", "product_id")
        return line

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    def _preflight(self):
        self._ensure_editable()
        if self.client_id is None:
            raise ValidationError("Select a client", "client_id")
        if not self._lines:
            raise ValidationError("Add at least one product", "lines")
        profile = self._session_store.state.profile
        if profile is None:
            raise ValidationError("Sign in to create invoices")
        return profile

    def _fail(self, step: CommitStep, error: Exception) -> None:
        self.status = DraftStatus.FAILED
        self.failed_step = step
        self.error = friendly_message(error)
        logger.warning("Invoice commit failed at step %s: %s", step.label, error)

    def commit(self) -> Invoice:
        """Three-step commit (header, lines, stock)."""
        profile = self._preflight()
        self.status = DraftStatus.SUBMITTING
        self.failed_step = None
        self.error = None

        header = {
            "tenant_id": profile.tenant_id,
            "client_id": self.client_id,
            "creator_id": profile.id,
            "issue_date": self.issue_date.isoformat(),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "total_cents": self.total(),
            "status": "pending",
        }
        try:
            row = self._remote.table("invoices").insert(header)
        except FacturaError as e:
            self._fail(CommitStep.HEADER, e)
            raise
        invoice = Invoice.from_row(row)
        self.invoice_id = invoice.id

        lines = [
            {
                "tenant_id": profile.tenant_id,
                "invoice_id": invoice.id,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "unit_price_cents": line.unit_price_cents,
                "subtotal_cents": line.subtotal_cents,
            }
            for line in self._lines.values()
        ]
        try:
            self._remote.table("invoice_lines").insert(lines)
        except RemoteError as e:
            partial = PartialCommitError(CommitStep.LINES, invoice.id, e)
            self._fail(CommitStep.LINES, partial)
            raise partial from e

        decremented = []
        for line in self._lines.values():
            try:
                self._remote.rpc("decrement_stock", {"product_id": line.product_id, "quantity": line.quantity})
            except RemoteError as e:
                partial = PartialCommitError(CommitStep.STOCK, invoice.id, e, decremented)
                self._fail(CommitStep.STOCK, partial)
                raise partial from e
            decremented.append(line.product_id)

        self.status = DraftStatus.COMMITTED
        logger.info("Invoice %s committed (%s lines, total %s)", invoice.id, len(lines), invoice.total_cents)
        return invoice

    def commit_transactional(self) -> Invoice:
        """Single-call commit through the create_invoice RPC (all or nothing)."""
        self._preflight()
        self.status = DraftStatus.SUBMITTING
        self.failed_step = None
        self.error = None

        args = {
            "client_id": self.client_id,
            "issue_date": self.issue_date.isoformat(),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "lines": [
                {"product_id": line.product_id, "quantity": line.quantity}
                for line in self._lines.values()
            ],
        }
        try:
            row = self._remote.rpc("create_invoice", args)
        except FacturaError as e:
            self._fail(CommitStep.TRANSACTION, e)
            raise

        invoice = Invoice.from_row(row)
        self.invoice_id = invoice.id
        self.status = DraftStatus.COMMITTED
        logger.info("Invoice %s committed in one transaction", invoice.id)
        return invoice
