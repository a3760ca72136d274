# backend/facturapro/__init__.py
"""
FacturaPro dashboard core.

    remote = HttpDataService(ClientConfig.from_env())
    store = SessionStore(remote)
    store.initialize()

Controllers, the invoice draft and the access guard all receive the store
(and the remote) by injection.
"""

from .config import ClientConfig
from .remote import HttpDataService, AuthEvent
from .session_store import SessionStore, SessionState, SessionStatus
from .roles import Role, has_role

__all__ = [
    "ClientConfig",
    "HttpDataService", "AuthEvent",
    "SessionStore", "SessionState", "SessionStatus",
    "Role", "has_role",
]
