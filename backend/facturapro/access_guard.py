# Overview: Navigation gating from session state and role requirements.

"""
Access Guard

evaluate(state, required_roles) is a pure function:

    LOADING                                   -> wait (no redirect)
    UNAUTHENTICATED                           -> redirect to SIGN_IN_ROUTE
    AUTHENTICATED, role not in required_roles -> redirect to DEFAULT_ROUTE
    otherwise                                 -> allow

A role mismatch lands on the default route rather than an error page, so
unauthorized roles never learn that a route exists.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .roles import Role, has_role
from .session_store import SessionState, SessionStatus

SIGN_IN_ROUTE = "/auth"
DEFAULT_ROUTE = "/"


class GuardOutcome(Enum):
    WAIT = "wait"
    REDIRECT = "redirect"
    ALLOW = "allow"


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    target: str | None = None

    @classmethod
    def wait(cls) -> "GuardDecision":
        return cls(GuardOutcome.WAIT)

    @classmethod
    def redirect(cls, target: str) -> "GuardDecision":
        return cls(GuardOutcome.REDIRECT, target)

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(GuardOutcome.ALLOW)


def evaluate(state: SessionState, required_roles: Iterable[Role] = ()) -> GuardDecision:
    if state.status is SessionStatus.LOADING:
        return GuardDecision.wait()
    if state.status is SessionStatus.UNAUTHENTICATED:
        return GuardDecision.redirect(SIGN_IN_ROUTE)
    if not has_role(state.profile, required_roles):
        return GuardDecision.redirect(DEFAULT_ROUTE)
    return GuardDecision.allow()


@dataclass(frozen=True)
class Route:
    path: str
    title: str
    required_roles: frozenset = frozenset()
    in_navigation: bool = True

    @property
    def pattern(self) -> re.Pattern:
        return re.compile("^" + re.sub(r"<[a-z_]+>", r"[0-9]+", self.path) + "$")


ROUTES: tuple[Route, ...] = (
    Route("/", "Dashboard"),
    Route("/clients", "Clients"),
    Route("/products", "Products"),
    Route("/invoices", "Invoices"),
    Route("/invoices/new", "New invoice", in_navigation=False),
    Route("/invoices/<invoice_id>", "Invoice", in_navigation=False),
    Route("/users", "Users", required_roles=frozenset({Role.ADMIN})),
)


def match_route(path: str) -> Route | None:
    path = path.rstrip("/") or "/"
    for route in ROUTES:
        if route.pattern.match(path):
            return route
    return None


def guard_navigation(state: SessionState, path: str) -> GuardDecision:
    """
    Decide a navigation to `path`.

    The sign-in page is public, but a signed-in user visiting it is sent to
    the default route. Unknown paths behave like a protected route that
    always redirects to the default route.
    """
    normalized = path.rstrip("/") or "/"

    if normalized == SIGN_IN_ROUTE:
        if state.status is SessionStatus.LOADING:
            return GuardDecision.wait()
        if state.status is SessionStatus.AUTHENTICATED:
            return GuardDecision.redirect(DEFAULT_ROUTE)
        return GuardDecision.allow()

    route = match_route(normalized)
    if route is None:
        decision = evaluate(state)
        if decision.outcome is GuardOutcome.ALLOW:
            return GuardDecision.redirect(DEFAULT_ROUTE)
        return decision

    return evaluate(state, route.required_roles)


def navigation_items(profile) -> list[Route]:
    """Sidebar entries visible to `profile` (Users only for admins)."""
    return [
        route for route in ROUTES
        if route.in_navigation and has_role(profile, route.required_roles)
    ]
