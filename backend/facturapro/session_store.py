# Overview: Single source of truth for who is signed in, with which tenant and role.

"""
Session Store

States:
    LOADING -> AUTHENTICATED(session, profile) | UNAUTHENTICATED

The store only moves in response to remote auth events (or initialize()).
It never guesses locally: logout() asks the service to sign out and waits for
the SIGNED_OUT event to clear the state.

A session whose Account profile cannot be resolved (missing row or failed
fetch) is signed out remotely and ends UNAUTHENTICATED, so a signed-in
identity without a profile can never bounce between protected routes.

Resolutions overtaken by a newer auth event are discarded (generation
counter), so the state always reflects the most recent event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .errors import FacturaError
from .models import Account, Session

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "*,tenant(*)"


class SessionStatus(Enum):
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus
    session: Session | None = None
    profile: Account | None = None

    @classmethod
    def loading(cls) -> "SessionState":
        return cls(SessionStatus.LOADING)

    @classmethod
    def unauthenticated(cls) -> "SessionState":
        return cls(SessionStatus.UNAUTHENTICATED)

    @classmethod
    def authenticated(cls, session: Session, profile: Account) -> "SessionState":
        return cls(SessionStatus.AUTHENTICATED, session, profile)

    @property
    def is_loading(self) -> bool:
        return self.status is SessionStatus.LOADING

    @property
    def is_authenticated(self) -> bool:
        return self.status is SessionStatus.AUTHENTICATED


StateListener = Callable[[SessionState], None]


class SessionStore:
    """
    Holds the current SessionState. Consumers receive the store by injection
    and only read it; the store is the only writer.
    """

    def __init__(self, remote):
        self._remote = remote
        self._state = SessionState.loading()
        self._listeners: list[StateListener] = []
        self._generation = 0
        self._subscription = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def profile(self) -> Account | None:
        return self._state.profile

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def initialize(self) -> SessionState:
        """Subscribe to auth events (once) and resolve the current session."""
        self._ensure_subscribed()
        self._resolve(self._remote.auth.get_session())
        return self._state

    def on_auth_event(self, event, session: Session | None) -> None:
        logger.debug("Session store received %s", getattr(event, "value", event))
        self._resolve(session)

    def sign_in(self, email: str, password: str) -> SessionState:
        """
        Sign in through the auth client.

        The state changes through the resulting SIGNED_IN event, not here.
        AuthError propagates to the caller.
        """
        self._ensure_subscribed()
        self._remote.auth.sign_in(email, password)
        return self._state

    def logout(self) -> None:
        """Request remote sign-out; the SIGNED_OUT event clears the state."""
        self._remote.auth.sign_out()

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    # -------------------------------------------------------------------------

    def _ensure_subscribed(self) -> None:
        if self._subscription is None:
            self._subscription = self._remote.auth.on_session_change(self.on_auth_event)

    def _set(self, state: SessionState) -> None:
        if state == self._state:
            return
        previous = self._state.status
        self._state = state
        logger.info("Session %s -> %s", previous.value, state.status.value)
        for listener in list(self._listeners):
            listener(state)

    def _fetch_profile(self, session: Session) -> Account | None:
        rows = self._remote.table("accounts").select(PROFILE_COLUMNS, {"id": session.user_id})
        return Account.from_row(rows[0]) if rows else None

    def _resolve(self, session: Session | None) -> None:
        self._generation += 1
        generation = self._generation

        if session is None:
            self._set(SessionState.unauthenticated())
            return

        try:
            profile = self._fetch_profile(session)
        except FacturaError as e:
            logger.warning("Profile fetch failed for identity %s: %s", session.user_id, e)
            profile = None

        if generation != self._generation:
            logger.debug("Discarding stale profile resolution for identity %s", session.user_id)
            return

        if profile is None:
            logger.warning("No profile for identity %s; forcing sign-out", session.user_id)
            self._set(SessionState.unauthenticated())
            self._force_sign_out()
            return

        self._set(SessionState.authenticated(session, profile))

    def _force_sign_out(self) -> None:
        try:
            self._remote.auth.sign_out()
        except FacturaError as e:
            logger.warning("Forced sign-out failed: %s", e)
