# Overview: Tenant-scoped list/create/update/delete state for the dashboard pages.

"""
Entity Controllers

One controller per page (Clients, Products, Users, Invoices). Each keeps:

- items:  the last applied list, in the table's stable order
- form:   the create/edit fields the page is showing
- busy:   True while a mutation is in flight (second submission is rejected)
- error:  user-facing message of the last failure, shown inline

CONTRACT:
- Required fields are validated locally; ValidationError never reaches the
  remote layer
- Inserts carry the caller's tenant_id; updates and deletes are scoped by
  row id (and tenant_id, which the service enforces regardless)
- Every successful mutation re-lists instead of patching items locally
- Delete requires a confirmation callback and uses mutate-then-reconcile:
  remove locally, delete remotely, restore on failure, re-list on success
- The form is kept on failure and cleared on success
- Only the most recently started fetch is applied; after dispose() late
  responses are ignored
"""

from __future__ import annotations

import logging
from typing import Callable

from .errors import (
    AuthError,
    ConfirmationRequired,
    FacturaError,
    OperationInProgress,
    ValidationError,
    WriteError,
    friendly_message,
)
from .models import Account, Client, DashboardStats, Invoice, Product
from .provisioning import AccountProvisioner, validate_email
from .roles import Role

logger = logging.getLogger(__name__)


class EntityController:
    """Generic tenant-scoped collection controller."""

    table: str = ""
    order: str = "created_at.desc,id.desc"
    columns: str = "*"
    entity = None
    required_fields: tuple[str, ...] = ("name",)
    updatable_fields: frozenset[str] = frozenset()
    # Sent exactly as typed
    secret_fields: frozenset[str] = frozenset({"password"})

    def __init__(self, remote, session_store):
        self._remote = remote
        self._session_store = session_store
        self.items: list = []
        self.form: dict = {}
        self.editing_id: int | None = None
        self.busy = False
        self.loading = False
        self.error: str | None = None
        self._generation = 0
        self._disposed = False

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    @property
    def profile(self) -> Account:
        profile = self._session_store.state.profile
        if profile is None:
            raise AuthError("Not signed in", code="no_session")
        return profile

    @property
    def tenant_id(self) -> int:
        return self.profile.tenant_id

    def dispose(self) -> None:
        """The page was left; responses still in flight become no-ops."""
        self._disposed = True

    # -------------------------------------------------------------------------
    # Form helpers
    # -------------------------------------------------------------------------

    def edit(self, row) -> None:
        self.editing_id = row.id
        self.form = {field: getattr(row, field) for field in self.updatable_fields}
        self.error = None

    def cancel_edit(self) -> None:
        self.editing_id = None
        self.form = {}
        self.error = None

    def validate(self, fields: dict, *, partial: bool = False) -> dict:
        """Return the cleaned payload or raise ValidationError."""
        cleaned = {}
        for key, value in fields.items():
            if isinstance(value, str) and key not in self.secret_fields:
                value = value.strip()
            cleaned[key] = value

        required = [f for f in self.required_fields if not partial or f in cleaned]
        for field in required:
            if cleaned.get(field) in (None, ""):
                raise ValidationError(f"{field} is required", field)
        return cleaned

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def list(self) -> list:
        """
        Fetch all rows of the caller's tenant and apply them if this is still
        the most recent fetch.
        """
        self._generation += 1
        generation = self._generation
        self.loading = True
        try:
            rows = self._remote.table(self.table).select(
                self.columns, {"tenant_id": self.tenant_id}, self.order,
            )
        except FacturaError as e:
            if self._is_current(generation):
                self.loading = False
                self.error = friendly_message(e)
                raise
            logger.debug("Ignoring failure of stale %s fetch: %s", self.table, e)
            return self.items

        if not self._is_current(generation):
            logger.debug("Discarding stale %s response (generation %s)", self.table, generation)
            return self.items

        self.loading = False
        self.items = [self.entity.from_row(row) for row in rows]
        return self.items

    def create(self, fields: dict):
        with self._mutation():
            self.form = dict(fields)
            payload = self.validate(fields)
            created = self._insert(payload)
            self.form = {}
        self._reconcile()
        return created

    def update(self, row_id: int, fields: dict):
        with self._mutation():
            self.form = dict(fields)
            self.editing_id = row_id
            forbidden = sorted(set(fields) - self.updatable_fields)
            if forbidden:
                raise ValidationError(f"Field cannot be changed: {forbidden[0]}", forbidden[0])
            payload = self.validate(fields, partial=True)
            if not payload:
                raise ValidationError("Nothing to update")

            rows = self._remote.table(self.table).update(
                payload, {"id": row_id, "tenant_id": self.tenant_id},
            )
            if not rows:
                raise WriteError("Record not found", code="not_found")
            self.form = {}
            self.editing_id = None
        self._reconcile()
        return self.entity.from_row(rows[0])

    def delete(self, row_id: int, confirm: Callable[[object], bool] | None = None) -> bool:
        """
        Delete after explicit confirmation.

        Returns False when the confirmation callback declines. Raises
        ConfirmationRequired when no confirmation step was provided.
        """
        row = next((item for item in self.items if item.id == row_id), None)
        with self._mutation():
            self.check_delete(row_id)
            if confirm is None:
                raise ConfirmationRequired("Deleting requires an explicit confirmation")
            if not confirm(row):
                return False

            previous = list(self.items)
            self.items = [item for item in self.items if item.id != row_id]
            try:
                self._remote.table(self.table).delete({"id": row_id, "tenant_id": self.tenant_id})
            except FacturaError:
                self.items = previous
                raise
        self._reconcile()
        return True

    def check_delete(self, row_id: int) -> None:
        """Local delete preconditions; nothing by default."""

    # -------------------------------------------------------------------------

    def _insert(self, payload: dict):
        row = self._remote.table(self.table).insert({**payload, "tenant_id": self.tenant_id})
        return self.entity.from_row(row)

    def _is_current(self, generation: int) -> bool:
        return not self._disposed and generation == self._generation

    def _reconcile(self) -> None:
        if not self._disposed:
            self.list()

    def _mutation(self):
        return _Mutation(self)


class _Mutation:
    """busy flag + inline error handling around one mutation."""

    def __init__(self, controller: EntityController):
        self._controller = controller

    def __enter__(self):
        if self._controller.busy:
            raise OperationInProgress("Another change is still being saved")
        self._controller.busy = True
        self._controller.error = None
        return self

    def __exit__(self, exc_type, exc, tb):
        self._controller.busy = False
        if exc is not None and isinstance(exc, FacturaError):
            self._controller.error = friendly_message(exc)
            logger.info("%s mutation failed: %s", self._controller.table, exc)
        return False


class ClientsController(EntityController):
    table = "clients"
    entity = Client
    updatable_fields = frozenset({"name", "email", "phone", "address", "tax_id"})

    def validate(self, fields: dict, *, partial: bool = False) -> dict:
        cleaned = super().validate(fields, partial=partial)
        if cleaned.get("email"):
            cleaned["email"] = validate_email(cleaned["email"])
        return cleaned


class ProductsController(EntityController):
    table = "products"
    entity = Product
    updatable_fields = frozenset({"name", "description", "price_cents", "stock"})

    def validate(self, fields: dict, *, partial: bool = False) -> dict:
        cleaned = super().validate(fields, partial=partial)
        for field in ("price_cents", "stock"):
            if field not in cleaned:
                continue
            value = cleaned[field]
            if isinstance(value, bool) or not isinstance(value, int):
                try:
                    value = int(str(value).strip())
                except ValueError:
                    raise ValidationError(f"{field} must be a whole number", field)
            if value < 0:
                raise ValidationError(f"{field} cannot be negative", field)
            cleaned[field] = value
        return cleaned


class UsersController(EntityController):
    """
    Accounts of the tenant (admin surface).

    Creation goes through the provisioning RPC, never a table insert. Email
    is tied to the identity and cannot be edited. An admin cannot delete
    their own account.
    """

    table = "accounts"
    order = "name.asc,id.asc"
    entity = Account
    required_fields = ("name", "email", "password")
    updatable_fields = frozenset({"name", "role"})

    def __init__(self, remote, session_store):
        super().__init__(remote, session_store)
        self._provisioner = AccountProvisioner(remote)

    def validate(self, fields: dict, *, partial: bool = False) -> dict:
        if partial:
            cleaned = {k: (v.strip() if isinstance(v, str) else v) for k, v in fields.items()}
            if "name" in cleaned and not cleaned["name"]:
                raise ValidationError("name is required", "name")
        else:
            cleaned = super().validate(fields)
            cleaned["email"] = validate_email(cleaned["email"])
        if "role" in cleaned:
            try:
                cleaned["role"] = Role.parse(cleaned["role"]).value
            except ValueError as e:
                raise ValidationError(str(e), "role")
        return cleaned

    def _insert(self, payload: dict) -> Account:
        return self._provisioner.provision(
            name=payload["name"],
            email=payload["email"],
            password=payload["password"],
            role=payload.get("role", Role.EMPLOYEE),
        )

    def check_delete(self, row_id: int) -> None:
        if row_id == self.profile.id:
            raise ValidationError("You cannot delete your own account", "id")


class InvoicesController(EntityController):
    """Read-only invoice list and detail; invoices are created by InvoiceDraft."""

    table = "invoices"
    order = "issue_date.desc,id.desc"
    columns = "*,client(*)"
    entity = Invoice
    detail_columns = "*,client(*),creator(*),lines(*,product(*))"

    def __init__(self, remote, session_store):
        super().__init__(remote, session_store)
        self.current: Invoice | None = None

    def detail(self, invoice_id: int) -> Invoice | None:
        rows = self._remote.table(self.table).select(
            self.detail_columns, {"id": invoice_id, "tenant_id": self.tenant_id},
        )
        if self._disposed:
            return self.current
        self.current = Invoice.from_row(rows[0]) if rows else None
        return self.current

    def create(self, fields: dict):
        raise WriteError("Invoices are created through the invoice draft", code="not_supported")

    def update(self, row_id: int, fields: dict):
        raise WriteError("Invoices cannot be modified", code="not_supported")

    def delete(self, row_id: int, confirm=None) -> bool:
        raise WriteError("Invoices cannot be deleted", code="not_supported")


class DashboardController:
    """Monthly figures for the landing page."""

    def __init__(self, remote, session_store):
        self._remote = remote
        self._session_store = session_store
        self.stats: DashboardStats | None = None
        self.error: str | None = None

    def load(self) -> DashboardStats:
        if not self._session_store.state.is_authenticated:
            raise AuthError("Not signed in", code="no_session")
        try:
            self.stats = DashboardStats.from_row(self._remote.rpc("dashboard_stats", {}))
        except FacturaError as e:
            self.error = friendly_message(e)
            raise
        self.error = None
        return self.stats
