# Overview: Closed role enumeration and the single role predicate.

from __future__ import annotations

from enum import Enum
from typing import Iterable


class Role(str, Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}")


def has_role(profile, required: Iterable[Role] = ()) -> bool:
    """
    True when `profile` may access something that requires any of `required`.

    An empty requirement means "any authenticated account". No profile never
    satisfies anything.
    """
    if profile is None:
        return False
    required = frozenset(Role.parse(r) for r in required)
    if not required:
        return True
    return profile.role in required
