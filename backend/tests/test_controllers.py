# Overview: Pytest coverage for the tenant-scoped page controllers.

"""
Controller Tests

Real flows run against the service in-process (remote fixtures). Races the
service cannot produce on demand (re-entrant submissions, responses that
arrive after a newer fetch or after the page was left) use FakeRemote.
"""

import pytest

from conftest import PASSWORD, PROFILE_ROW, signed_in_store
from facturapro_service.extensions import db
from facturapro_service.models import Identity

from facturapro.controllers import (
    ClientsController,
    DashboardController,
    InvoicesController,
    ProductsController,
    UsersController,
)
from facturapro.errors import (
    AuthError,
    ConfirmationRequired,
    OperationInProgress,
    ProvisioningError,
    ProvisioningErrorKind,
    ValidationError,
    WriteError,
)
from facturapro.roles import Role
from facturapro.session_store import SessionStore


def client_row(row_id, name, tenant_id=PROFILE_ROW["tenant_id"]):
    return {"id": row_id, "tenant_id": tenant_id, "name": name}


def confirm_yes(row):
    return True


# =============================================================================
# LISTING
# =============================================================================


class TestListing:

    def test_lists_only_own_tenant(self, remote, admin_store, client_a, client_b):
        controller = ClientsController(remote, admin_store)
        items = controller.list()
        assert [c.id for c in items] == [client_a.id]
        assert controller.loading is False

    def test_list_is_idempotent(self, remote, admin_store, client_a):
        controller = ClientsController(remote, admin_store)
        first = controller.list()
        second = controller.list()
        assert first == second

    def test_newest_first(self, remote, admin_store, product_a, product_a2):
        controller = ProductsController(remote, admin_store)
        assert [p.name for p in controller.list()] == ["Gadget", "Widget"]

    def test_other_tenant_sees_its_own(self, remote_factory, admin_b, client_a, client_b):
        other = remote_factory()
        controller = ClientsController(other, signed_in_store(other, admin_b.email))
        assert [c.name for c in controller.list()] == ["Cliente Beta"]

    def test_requires_profile(self, remote, db_session):
        store = SessionStore(remote)
        store.initialize()
        with pytest.raises(AuthError):
            ClientsController(remote, store).list()

    def test_stale_response_is_discarded(self, fake_remote, fake_store):
        controller = ClientsController(fake_remote, fake_store)
        responses = iter([
            lambda filters: (controller.list(), [client_row(1, "Old")])[1],
            lambda filters: [client_row(2, "New")],
        ])
        fake_remote.on("select", "clients", lambda filters: next(responses)(filters))

        controller.list()

        assert [c.name for c in controller.items] == ["New"]

    def test_response_after_dispose_is_ignored(self, fake_remote, fake_store):
        controller = ClientsController(fake_remote, fake_store)

        def leave_page(filters):
            controller.dispose()
            return [client_row(1, "Late")]

        fake_remote.on("select", "clients", leave_page)
        controller.list()
        assert controller.items == []

    def test_list_scopes_by_tenant(self, fake_remote, fake_store):
        ClientsController(fake_remote, fake_store).list()
        assert fake_remote.calls == [("select", "clients", {"tenant_id": PROFILE_ROW["tenant_id"]})]


# =============================================================================
# CREATE / UPDATE
# =============================================================================


class TestCreateAndUpdate:

    def test_create_clears_form_and_relists(self, remote, admin_store, tenant_a, client_a):
        controller = ClientsController(remote, admin_store)
        controller.list()

        created = controller.create({"name": "  Nuevo Cliente ", "email": "NUEVO@clients.test"})

        assert created.name == "Nuevo Cliente"
        assert created.email == "nuevo@clients.test"
        assert created.tenant_id == tenant_a.id
        assert controller.form == {}
        assert controller.busy is False
        assert controller.error is None
        assert [c.name for c in controller.items] == ["Nuevo Cliente", "Cliente Uno"]

    def test_duplicate_keeps_form_and_detail(self, remote, admin_store, client_a):
        controller = ClientsController(remote, admin_store)
        fields = {"name": "Copia", "email": client_a.email}

        with pytest.raises(WriteError) as exc:
            controller.create(fields)

        assert exc.value.code == "unique_violation"
        assert "UNIQUE" in exc.value.detail.upper()
        assert controller.form == fields
        assert controller.error == "A record with these details already exists."
        assert controller.busy is False

    def test_missing_name_is_local(self, fake_remote, fake_store):
        controller = ClientsController(fake_remote, fake_store)
        with pytest.raises(ValidationError) as exc:
            controller.create({"name": "  "})
        assert exc.value.field == "name"
        assert controller.form == {"name": "  "}
        assert controller.error == "name is required"
        assert fake_remote.calls == []

    def test_invalid_email_is_local(self, fake_remote, fake_store):
        with pytest.raises(ValidationError):
            ClientsController(fake_remote, fake_store).create({"name": "X", "email": "not-an-email"})
        assert fake_remote.calls == []

    def test_insert_carries_tenant(self, fake_remote, fake_store):
        fake_remote.on("insert", "clients", lambda row: {**row, "id": 5})
        ClientsController(fake_remote, fake_store).create({"name": "Scoped"})
        assert fake_remote.calls[0] == (
            "insert", "clients", {"name": "Scoped", "tenant_id": PROFILE_ROW["tenant_id"]},
        )

    def test_second_submission_is_rejected_while_busy(self, fake_remote, fake_store):
        controller = ClientsController(fake_remote, fake_store)
        rejected = []

        def insert_and_resubmit(row):
            with pytest.raises(OperationInProgress):
                controller.create({"name": "Twice"})
            rejected.append(True)
            return {**row, "id": 9}

        fake_remote.on("insert", "clients", insert_and_resubmit)
        controller.create({"name": "Once"})

        assert rejected == [True]
        assert [c for c in fake_remote.calls if c[0] == "insert"] == [
            ("insert", "clients", {"name": "Once", "tenant_id": PROFILE_ROW["tenant_id"]}),
        ]
        assert controller.busy is False

    def test_update_product(self, remote, admin_store, product_a):
        controller = ProductsController(remote, admin_store)
        updated = controller.update(product_a.id, {"price_cents": "1500", "stock": 8})
        assert updated.price_cents == 1500
        assert updated.stock == 8
        assert controller.editing_id is None
        assert [p.stock for p in controller.items] == [8]

    @pytest.mark.parametrize("fields", [{"stock": -1}, {"price_cents": "12.50"}, {"name": ""}])
    def test_invalid_product_update_is_local(self, fake_remote, fake_store, fields):
        with pytest.raises(ValidationError):
            ProductsController(fake_remote, fake_store).update(1, fields)
        assert fake_remote.calls == []

    def test_update_of_other_tenant_row_is_not_found(self, remote, admin_store, product_b):
        controller = ProductsController(remote, admin_store)
        with pytest.raises(WriteError) as exc:
            controller.update(product_b.id, {"stock": 0})
        assert exc.value.code == "not_found"

    def test_edit_and_cancel(self, remote, admin_store, client_a):
        controller = ClientsController(remote, admin_store)
        row = controller.list()[0]
        controller.edit(row)
        assert controller.editing_id == client_a.id
        assert controller.form["name"] == "Cliente Uno"
        controller.cancel_edit()
        assert controller.editing_id is None
        assert controller.form == {}


# =============================================================================
# DELETE
# =============================================================================


class TestDelete:

    def test_requires_confirmation(self, remote, admin_store, client_a):
        controller = ClientsController(remote, admin_store)
        controller.list()
        with pytest.raises(ConfirmationRequired):
            controller.delete(client_a.id)
        assert [c.id for c in controller.list()] == [client_a.id]

    def test_declined_confirmation(self, remote, admin_store, client_a):
        controller = ClientsController(remote, admin_store)
        controller.list()
        assert controller.delete(client_a.id, confirm=lambda row: False) is False
        assert len(controller.items) == 1

    def test_confirmed_delete(self, remote, admin_store, client_a):
        controller = ClientsController(remote, admin_store)
        controller.list()
        seen = []
        assert controller.delete(client_a.id, confirm=lambda row: seen.append(row.name) or True) is True
        assert seen == ["Cliente Uno"]
        assert controller.items == []

    def test_referenced_client_is_restored(self, remote, admin_store, client_a, product_a):
        remote.rpc("create_invoice", {"client_id": client_a.id, "lines": [{"product_id": product_a.id, "quantity": 1}]})
        controller = ClientsController(remote, admin_store)
        controller.list()

        with pytest.raises(WriteError) as exc:
            controller.delete(client_a.id, confirm=confirm_yes)

        assert exc.value.code == "foreign_key_violation"
        assert [c.id for c in controller.items] == [client_a.id]
        assert controller.error == "This record is still referenced by other records and cannot be removed."

    def test_restore_on_remote_failure(self, fake_remote, fake_store):
        fake_remote.on("select", "clients", [client_row(1, "Uno"), client_row(2, "Dos")])
        fake_remote.on("delete", "clients", WriteError("timeout", code="network_error"))
        controller = ClientsController(fake_remote, fake_store)
        controller.list()

        with pytest.raises(WriteError):
            controller.delete(2, confirm=confirm_yes)

        assert [c.name for c in controller.items] == ["Uno", "Dos"]
        assert controller.error == "The service could not be reached. Please try again."


# =============================================================================
# USERS (admin surface)
# =============================================================================


class TestUsers:

    def test_create_goes_through_provisioning(self, remote, admin_store, tenant_a):
        controller = UsersController(remote, admin_store)
        account = controller.create({"name": "Nora", "email": "nora@acme.test", "password": PASSWORD})

        assert account.role is Role.EMPLOYEE
        assert account.tenant_id == tenant_a.id
        assert [a.name for a in controller.items] == ["Ana Admin", "Nora"]
        # The admin is still the one signed in
        assert admin_store.profile.email == "ana@acme.test"

    def test_password_is_kept_as_typed(self, remote, admin_store, remote_factory):
        UsersController(remote, admin_store).create(
            {"name": "Nora", "email": " nora@acme.test ", "password": "  padded-secret "}
        )

        session = remote_factory().auth.sign_in("nora@acme.test", "  padded-secret ")
        assert session.email == "nora@acme.test"
        with pytest.raises(AuthError):
            remote_factory().auth.sign_in("nora@acme.test", "padded-secret")

    def test_duplicate_identity(self, remote, admin_store, employee_a):
        controller = UsersController(remote, admin_store)
        with pytest.raises(ProvisioningError) as exc:
            controller.create({"name": "Eva Again", "email": employee_a.email, "password": PASSWORD})
        assert exc.value.kind is ProvisioningErrorKind.DUPLICATE_IDENTITY
        assert controller.error == "A user with this email address is already registered."

    def test_short_password_is_local(self, fake_remote, fake_store):
        with pytest.raises(ValidationError) as exc:
            UsersController(fake_remote, fake_store).create({"name": "N", "email": "n@x.test", "password": "123"})
        assert exc.value.field == "password"
        assert fake_remote.calls == []

    def test_email_is_not_updatable(self, fake_remote, fake_store):
        controller = UsersController(fake_remote, fake_store)
        with pytest.raises(ValidationError) as exc:
            controller.update(2, {"email": "new@fake.test"})
        assert exc.value.field == "email"
        assert fake_remote.calls == []

    def test_change_role(self, remote, admin_store, employee_a):
        controller = UsersController(remote, admin_store)
        account = controller.update(employee_a.id, {"role": "admin"})
        assert account.role is Role.ADMIN

    def test_employee_cannot_change_roles(self, remote_factory, employee_a, admin_a):
        other = remote_factory()
        controller = UsersController(other, signed_in_store(other, employee_a.email))
        with pytest.raises(WriteError) as exc:
            controller.update(admin_a.id, {"role": "employee"})
        assert exc.value.code == "rls_violation"

    def test_cannot_delete_self(self, fake_remote, fake_store):
        with pytest.raises(ValidationError):
            UsersController(fake_remote, fake_store).delete(PROFILE_ROW["id"], confirm=confirm_yes)
        assert fake_remote.calls == []

    def test_delete_employee(self, remote, admin_store, employee_a):
        employee_id = employee_a.id
        controller = UsersController(remote, admin_store)
        controller.list()
        assert controller.delete(employee_id, confirm=confirm_yes) is True
        assert [a.id for a in controller.items] == [admin_store.profile.id]
        db.session.expire_all()
        assert db.session.get(Identity, employee_id) is None


# =============================================================================
# INVOICES AND DASHBOARD
# =============================================================================


class TestInvoicesAndDashboard:

    def _sell(self, remote, client_row_, product, quantity, issue_date):
        return remote.rpc("create_invoice", {
            "client_id": client_row_.id,
            "issue_date": issue_date,
            "lines": [{"product_id": product.id, "quantity": quantity}],
        })

    def test_list_and_detail(self, remote, admin_store, admin_a, client_a, product_a):
        older = self._sell(remote, client_a, product_a, 1, "2026-01-05")
        newer = self._sell(remote, client_a, product_a, 2, "2026-02-05")

        controller = InvoicesController(remote, admin_store)
        items = controller.list()
        assert [i.id for i in items] == [newer["id"], older["id"]]
        assert items[0].client.name == "Cliente Uno"

        invoice = controller.detail(newer["id"])
        assert invoice.total_cents == 2500
        assert invoice.creator.id == admin_a.id
        (line,) = invoice.lines
        assert line.product.name == "Widget"
        assert line.subtotal_cents == 2500

    def test_detail_of_other_tenant_invoice(self, remote, admin_store, admin_b, remote_factory,
                                            client_b, product_b):
        other = remote_factory()
        other.auth.sign_in(admin_b.email, PASSWORD)
        sold = self._sell(other, client_b, product_b, 1, "2026-01-05")

        assert InvoicesController(remote, admin_store).detail(sold["id"]) is None

    def test_invoices_are_immutable(self, fake_remote, fake_store):
        controller = InvoicesController(fake_remote, fake_store)
        for attempt in (
            lambda: controller.create({}),
            lambda: controller.update(1, {"status": "paid"}),
            lambda: controller.delete(1, confirm=confirm_yes),
        ):
            with pytest.raises(WriteError) as exc:
                attempt()
            assert exc.value.code == "not_supported"

    def test_dashboard(self, remote, admin_store, client_a, product_a):
        remote.rpc("create_invoice", {"client_id": client_a.id, "lines": [{"product_id": product_a.id, "quantity": 2}]})

        stats = DashboardController(remote, admin_store).load()
        assert stats.revenue_cents == 2500
        assert stats.invoices_issued == 1
        assert stats.new_clients == 1
        assert stats.paid_rate == 0.0

    def test_dashboard_requires_session(self, remote, db_session):
        store = SessionStore(remote)
        store.initialize()
        with pytest.raises(AuthError):
            DashboardController(remote, store).load()
