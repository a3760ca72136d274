# Overview: Pytest coverage for the dashboard session store and the auth client.

"""
Session Store Tests

The store must only move in response to auth events, end UNAUTHENTICATED for
identities without a profile, and ignore resolutions overtaken by a newer
event.
"""

import pytest

from conftest import PASSWORD, PROFILE_ROW
from facturapro_service.extensions import db
from facturapro_service.models import SessionToken
from facturapro_service.services.auth_service import create_identity

from facturapro.access_guard import GuardOutcome, evaluate, guard_navigation
from facturapro.errors import AuthError, QueryError
from facturapro.models import Session
from facturapro.remote import AuthEvent
from facturapro.roles import Role
from facturapro.session_store import SessionState, SessionStatus, SessionStore


class TestLifecycle:

    def test_starts_loading(self, remote):
        store = SessionStore(remote)
        assert store.state.status is SessionStatus.LOADING
        assert store.state.is_loading

    def test_sign_in_resolves_profile_and_tenant(self, remote, admin_a, tenant_a):
        store = SessionStore(remote)
        seen = []
        store.subscribe(lambda state: seen.append(state.status))
        assert guard_navigation(store.state, "/").outcome is GuardOutcome.WAIT

        store.sign_in(admin_a.email, PASSWORD)

        assert seen == [SessionStatus.AUTHENTICATED]
        state = store.state
        assert state.is_authenticated
        assert state.session.user_id == admin_a.id
        assert state.profile.role is Role.ADMIN
        assert state.profile.tenant.id == tenant_a.id
        assert state.profile.tenant.name == "Acme SL"
        assert evaluate(state).outcome is GuardOutcome.ALLOW
        assert guard_navigation(state, "/").outcome is GuardOutcome.ALLOW

    def test_initialize_without_session(self, remote, db_session):
        store = SessionStore(remote)
        assert store.initialize().status is SessionStatus.UNAUTHENTICATED

    def test_wrong_password_raises_and_state_unchanged(self, remote, admin_a):
        store = SessionStore(remote)
        store.initialize()
        with pytest.raises(AuthError) as exc:
            store.sign_in(admin_a.email, "not-the-password")
        assert exc.value.code == "invalid_credentials"
        assert store.state.status is SessionStatus.UNAUTHENTICATED

    def test_logout_goes_through_signed_out_event(self, admin_store, admin_a):
        assert admin_store.state.is_authenticated
        admin_store.logout()

        assert admin_store.state.status is SessionStatus.UNAUTHENTICATED
        assert admin_store.profile is None
        session = db.session.query(SessionToken).filter_by(identity_id=admin_a.id).one()
        assert session.is_revoked is True

    def test_token_refresh_keeps_profile(self, admin_store, remote):
        before = admin_store.state
        remote.auth.refresh_session()

        state = admin_store.state
        assert state.is_authenticated
        assert state.session.access_token != before.session.access_token
        assert state.profile == before.profile

    def test_rejected_refresh_signs_out(self, admin_store, remote, admin_a):
        db.session.query(SessionToken).filter_by(identity_id=admin_a.id).update({"is_revoked": True})
        db.session.commit()

        with pytest.raises(AuthError):
            remote.auth.refresh_session()
        assert admin_store.state.status is SessionStatus.UNAUTHENTICATED

    def test_current_user(self, admin_store, remote, admin_a):
        assert remote.auth.get_user()["id"] == admin_a.id

    def test_close_stops_listening(self, remote, admin_a):
        store = SessionStore(remote)
        store.initialize()
        store.close()
        remote.auth.sign_in(admin_a.email, PASSWORD)
        assert store.state.status is SessionStatus.UNAUTHENTICATED


class TestMissingProfile:

    def test_identity_without_account_is_signed_out(self, remote, db_session):
        create_identity("orphan@nowhere.test", PASSWORD)
        db.session.commit()

        store = SessionStore(remote)
        store.initialize()
        store.sign_in("orphan@nowhere.test", PASSWORD)

        assert store.state.status is SessionStatus.UNAUTHENTICATED
        assert remote.auth.get_session() is None
        assert db.session.query(SessionToken).filter_by(is_revoked=False).count() == 0

    def test_profile_fetch_failure_signs_out(self, fake_remote):
        fake_remote.on("select", "accounts", QueryError("boom", code="network_error"))
        store = SessionStore(fake_remote)
        store.initialize()

        fake_remote.auth.sign_in("fiona@fake.test", PASSWORD)

        assert store.state.status is SessionStatus.UNAUTHENTICATED
        assert fake_remote.auth.sign_out_calls == 1


class TestEvents:

    def test_listeners_are_notified_once_per_change(self, fake_store, fake_remote):
        seen = []
        unsubscribe = fake_store.subscribe(seen.append)

        fake_store.on_auth_event(AuthEvent.TOKEN_REFRESHED, fake_store.state.session)
        assert seen == []

        fake_remote.auth.emit(AuthEvent.SIGNED_OUT, None)
        assert [s.status for s in seen] == [SessionStatus.UNAUTHENTICATED]

        unsubscribe()
        fake_remote.auth.sign_in(PROFILE_ROW["email"], PASSWORD)
        assert len(seen) == 1
        assert fake_store.state.is_authenticated

    def test_stale_resolution_is_discarded(self, fake_remote):
        """A sign-out arriving while the profile is still loading wins."""
        store = SessionStore(fake_remote)
        store.initialize()

        def fetch_then_sign_out(filters):
            fake_remote.auth.emit(AuthEvent.SIGNED_OUT, None)
            return [PROFILE_ROW]

        fake_remote.on("select", "accounts", fetch_then_sign_out)
        fake_remote.auth.emit(
            AuthEvent.SIGNED_IN,
            Session(access_token="a", refresh_token="r", user_id=1, email=PROFILE_ROW["email"]),
        )

        assert store.state == SessionState.unauthenticated()

    def test_profile_lookup_is_by_identity(self, fake_store, fake_remote):
        fake_store.on_auth_event(
            AuthEvent.SIGNED_IN,
            Session(access_token="b", refresh_token="r", user_id=7, email="other@fake.test"),
        )
        assert fake_remote.calls == [("select", "accounts", {"id": 7})]
