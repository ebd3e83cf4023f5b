"""
Caller context for SendConf operations.

A Context identifies who is calling. Every store operation takes one and
every permission check is evaluated against its user.

Invariants:
    - The admin context is synthetic and never corresponds to a stored user
    - Only trusted internal callers may use get_admin_context()
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class User:
    """Authenticated user.

    Attributes:
        id: User identifier (users.id)
        username: Login name
        role: Global role name (see DEFAULT_ROLES["global"])
        admin: Synthetic administrative identity, bypasses capability checks
    """

    id: int
    username: str
    role: str = "nobody"
    admin: bool = False


@dataclass(frozen=True)
class Context:
    """Per-call context passed through the store."""

    user: User

    @property
    def is_admin(self) -> bool:
        return self.user.admin


_ADMIN_CONTEXT = Context(user=User(id=0, username="__admin__", role="master", admin=True))


def get_admin_context() -> Context:
    """Get the synthetic administrative context."""
    return _ADMIN_CONTEXT
