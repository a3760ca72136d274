# Overview: HTTP client for the Remote Data Service (auth, tables, RPC).

"""
HttpDataService: the dashboard core's only way to reach the backend

    remote = HttpDataService(ClientConfig.from_env())
    remote.auth.sign_in(email, password)
    rows = remote.table("clients").select("*", {"tenant_id": 1}, "created_at.desc")
    remote.rpc("decrement_stock", {"product_id": 3, "quantity": 2})

Every request carries the public key in the `apikey` header and, once signed
in, the access token as a Bearer credential. Error bodies
({"error", "code", "details"}) are translated into the core error taxonomy:
AuthError for 401s and auth endpoints, QueryError for selects, WriteError for
table mutations and RpcError for functions. Transport failures keep the same
class with code "network_error".

The session lives in memory only. Auth changes are broadcast to
on_session_change subscribers synchronously, after the local session has
been updated.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

import httpx

from .config import ClientConfig
from .errors import AuthError, QueryError, WriteError, RpcError, RemoteError
from .models import Session

logger = logging.getLogger(__name__)


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


SessionListener = Callable[[AuthEvent, "Session | None"], None]


class Subscription:
    """Handle returned by on_session_change; unsubscribe() is idempotent."""

    def __init__(self, listeners: list, callback: SessionListener):
        self._listeners = listeners
        self._callback = callback

    def unsubscribe(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


def _scalar(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def encode_filters(filters: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    """
    {"tenant_id": 1, "stock": ("gt", 0), "id": ("in", [1, 2])}
    -> [("tenant_id", "eq.1"), ("stock", "gt.0"), ("id", "in.(1,2)")]
    """
    params = []
    for column, value in (filters or {}).items():
        if isinstance(value, tuple):
            op, operand = value
        else:
            op, operand = "eq", value
        if op == "in":
            params.append((column, "in.(" + ",".join(_scalar(v) for v in operand) + ")"))
        else:
            params.append((column, f"{op}.{_scalar(operand)}"))
    return params


def encode_order(order: str | Iterable[str] | None) -> str | None:
    if order is None:
        return None
    if isinstance(order, str):
        return order
    return ",".join(order)


class AuthClient:
    """Sign-in, sign-out, refresh and the session-change broadcast."""

    def __init__(self, service: "HttpDataService"):
        self._service = service
        self._session: Session | None = None
        self._listeners: list[SessionListener] = []

    def get_session(self) -> Session | None:
        return self._session

    def on_session_change(self, callback: SessionListener) -> Subscription:
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    def _emit(self, event: AuthEvent, session: Session | None) -> None:
        logger.debug("Auth event %s (user=%s)", event.value, session.user_id if session else None)
        for listener in list(self._listeners):
            listener(event, session)

    def sign_in(self, email: str, password: str) -> Session:
        payload = self._service.request(
            "POST", "/api/auth/login",
            json={"email": email, "password": password},
            error_cls=AuthError,
            authenticated=False,
        )
        self._session = Session.from_payload(payload)
        self._emit(AuthEvent.SIGNED_IN, self._session)
        return self._session

    def sign_out(self) -> None:
        """
        Revoke the session remotely and forget it locally.

        The local session is cleared even when the remote call fails; the
        token then simply expires on the service.
        """
        session = self._session
        if session is None:
            return
        try:
            self._service.request("POST", "/api/auth/logout", error_cls=AuthError)
        except RemoteError as e:
            logger.warning("Remote sign-out failed, clearing local session anyway: %s", e)
        self._session = None
        self._emit(AuthEvent.SIGNED_OUT, None)

    def refresh_session(self) -> Session:
        """Rotate the token pair. A rejected refresh token signs the user out."""
        if self._session is None:
            raise AuthError("No session to refresh", code="no_session")
        try:
            payload = self._service.request(
                "POST", "/api/auth/refresh",
                json={"refresh_token": self._session.refresh_token},
                error_cls=AuthError,
                authenticated=False,
            )
        except AuthError as e:
            if e.status == 401:
                self._session = None
                self._emit(AuthEvent.SIGNED_OUT, None)
            raise
        self._session = Session.from_payload(payload)
        self._emit(AuthEvent.TOKEN_REFRESHED, self._session)
        return self._session

    def get_user(self) -> dict:
        return self._service.request("GET", "/api/auth/user", error_cls=AuthError)["user"]


class TableQuery:
    """One exposed table: select / insert / update / delete."""

    def __init__(self, service: "HttpDataService", name: str):
        self._service = service
        self.name = name

    @property
    def _path(self) -> str:
        return f"/api/rest/{self.name}"

    def select(self, columns: str = "*", filters: Mapping[str, Any] | None = None,
               order: str | Iterable[str] | None = None, *, limit: int | None = None) -> list[dict]:
        params = [("select", columns)] + encode_filters(filters)
        order_expr = encode_order(order)
        if order_expr:
            params.append(("order", order_expr))
        if limit is not None:
            params.append(("limit", str(limit)))
        return self._service.request("GET", self._path, params=params, error_cls=QueryError)

    def insert(self, row: dict | list[dict], *, returning: str = "*"):
        return self._service.request(
            "POST", self._path, params=[("select", returning)], json=row, error_cls=WriteError,
        )

    def update(self, patch: dict, filters: Mapping[str, Any], *, returning: str = "*") -> list[dict]:
        params = [("select", returning)] + encode_filters(filters)
        return self._service.request("PATCH", self._path, params=params, json=patch, error_cls=WriteError)

    def delete(self, filters: Mapping[str, Any]) -> list[dict]:
        return self._service.request("DELETE", self._path, params=encode_filters(filters), error_cls=WriteError)


class HttpDataService:
    """
    Remote Data Service client over httpx.

    `transport` lets tests route requests to an in-process WSGI app
    (httpx.WSGITransport) instead of the network.
    """

    def __init__(self, config: ClientConfig, *, transport: httpx.BaseTransport | None = None):
        self.config = config
        self._client = httpx.Client(
            base_url=config.url,
            headers={"apikey": config.public_key},
            timeout=config.timeout,
            transport=transport,
        )
        self.auth = AuthClient(self)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    def rpc(self, function_name: str, args: dict | None = None):
        payload = self.request("POST", f"/api/rpc/{function_name}", json=args or {}, error_cls=RpcError)
        return payload.get("data") if isinstance(payload, dict) else payload

    def request(self, method: str, path: str, *, error_cls: type[RemoteError],
                params=None, json=None, authenticated: bool = True):
        headers = {}
        session = self.auth.get_session()
        if authenticated and session is not None:
            headers["Authorization"] = f"Bearer {session.access_token}"

        try:
            response = self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise error_cls(f"Could not reach the service: {e}", code="network_error") from e

        if response.is_success:
            return response.json() if response.content else None

        raise self._translate_error(response, error_cls)

    @staticmethod
    def _translate_error(response: httpx.Response, error_cls: type[RemoteError]) -> RemoteError:
        try:
            body = response.json()
        except ValueError:
            body = {"error": response.text or response.reason_phrase}
        if not isinstance(body, dict):
            body = {"error": str(body)}

        message = body.get("error") or response.reason_phrase
        code = body.get("code")
        detail = body.get("details")

        logger.info("Service rejected request (%s %s): %s", response.status_code, code, message)
        if response.status_code == 401 and error_cls is not AuthError:
            return AuthError(message, code=code, detail=detail, status=401)
        return error_cls(message, code=code, detail=detail, status=response.status_code)
