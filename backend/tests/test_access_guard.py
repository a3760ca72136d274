# Overview: Pytest coverage for navigation gating and the role predicate.

import pytest

from conftest import PROFILE_ROW
from facturapro.access_guard import (
    DEFAULT_ROUTE,
    SIGN_IN_ROUTE,
    GuardDecision,
    GuardOutcome,
    evaluate,
    guard_navigation,
    match_route,
    navigation_items,
)
from facturapro.models import Account, Session
from facturapro.roles import Role, has_role
from facturapro.session_store import SessionState


SESSION = Session(access_token="a", refresh_token="r", user_id=1, email=PROFILE_ROW["email"])
ADMIN = Account.from_row(PROFILE_ROW)
EMPLOYEE = Account.from_row({**PROFILE_ROW, "id": 2, "role": "employee"})

LOADING = SessionState.loading()
SIGNED_OUT = SessionState.unauthenticated()
AS_ADMIN = SessionState.authenticated(SESSION, ADMIN)
AS_EMPLOYEE = SessionState.authenticated(SESSION, EMPLOYEE)


class TestEvaluate:

    @pytest.mark.parametrize(
        "state,required,expected",
        [
            (LOADING, (), GuardDecision.wait()),
            (LOADING, (Role.ADMIN,), GuardDecision.wait()),
            (SIGNED_OUT, (), GuardDecision.redirect(SIGN_IN_ROUTE)),
            (SIGNED_OUT, (Role.ADMIN,), GuardDecision.redirect(SIGN_IN_ROUTE)),
            (AS_EMPLOYEE, (), GuardDecision.allow()),
            (AS_EMPLOYEE, (Role.ADMIN,), GuardDecision.redirect(DEFAULT_ROUTE)),
            (AS_EMPLOYEE, (Role.ADMIN, Role.EMPLOYEE), GuardDecision.allow()),
            (AS_ADMIN, (Role.ADMIN,), GuardDecision.allow()),
            (AS_ADMIN, ("employee",), GuardDecision.redirect(DEFAULT_ROUTE)),
        ],
    )
    def test_truth_table(self, state, required, expected):
        assert evaluate(state, required) == expected

    def test_loading_never_redirects(self):
        assert evaluate(LOADING).target is None


class TestGuardNavigation:

    def test_employee_is_bounced_from_users(self):
        assert guard_navigation(AS_EMPLOYEE, "/users") == GuardDecision.redirect(DEFAULT_ROUTE)
        assert guard_navigation(AS_ADMIN, "/users").outcome is GuardOutcome.ALLOW

    def test_protected_routes_send_anonymous_to_sign_in(self):
        for path in ("/", "/clients", "/invoices/new", "/invoices/42"):
            assert guard_navigation(SIGNED_OUT, path) == GuardDecision.redirect(SIGN_IN_ROUTE)

    def test_sign_in_page(self):
        assert guard_navigation(SIGNED_OUT, "/auth").outcome is GuardOutcome.ALLOW
        assert guard_navigation(AS_EMPLOYEE, "/auth/") == GuardDecision.redirect(DEFAULT_ROUTE)
        assert guard_navigation(LOADING, "/auth").outcome is GuardOutcome.WAIT

    def test_unknown_path(self):
        assert guard_navigation(AS_ADMIN, "/settings") == GuardDecision.redirect(DEFAULT_ROUTE)
        assert guard_navigation(SIGNED_OUT, "/settings") == GuardDecision.redirect(SIGN_IN_ROUTE)
        assert guard_navigation(LOADING, "/settings").outcome is GuardOutcome.WAIT

    def test_route_matching(self):
        assert match_route("/invoices/new").title == "New invoice"
        assert match_route("/invoices/7").title == "Invoice"
        assert match_route("/invoices/abc") is None
        assert match_route("/clients/").path == "/clients"


class TestNavigation:

    def test_admin_sees_users(self):
        assert [r.path for r in navigation_items(ADMIN)] == ["/", "/clients", "/products", "/invoices", "/users"]

    def test_employee_does_not(self):
        assert "/users" not in [r.path for r in navigation_items(EMPLOYEE)]

    def test_no_profile_sees_nothing(self):
        assert navigation_items(None) == []


class TestHasRole:

    def test_no_profile(self):
        assert has_role(None) is False
        assert has_role(None, [Role.EMPLOYEE]) is False

    def test_empty_requirement_means_any_account(self):
        assert has_role(EMPLOYEE) is True

    def test_membership(self):
        assert has_role(ADMIN, [Role.ADMIN]) is True
        assert has_role(EMPLOYEE, ["admin"]) is False

    def test_unknown_role_is_rejected(self):
        with pytest.raises(ValueError):
            has_role(ADMIN, ["owner"])
