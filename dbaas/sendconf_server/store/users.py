"""User lookup and creation."""

from __future__ import annotations

from ..context import Context, User
from ..errors import NotFoundError, ValidationError
from .database import Transaction
from .shares import DEFAULT_ROLES


def create_user_tx(tx: Transaction, username: str, role: str = "nobody", name: str | None = None) -> int:
    """Insert a user and return its id.

    Callers rebuild permissions afterwards when the global role implies
    a root namespace role.
    """
    if role not in DEFAULT_ROLES["global"]:
        raise ValidationError(f"Unknown global role: {role}", field_name="role")
    if tx.fetchone("SELECT id FROM users WHERE username = ?", (username,)) is not None:
        raise ValidationError(f"Username already exists: {username}", field_name="username")
    return tx.insert("users", {"username": username, "name": name or username, "role": role})


def get_user_by_username_tx(tx: Transaction, username: str) -> User:
    row = tx.fetchone("SELECT id, username, role FROM users WHERE username = ?", (username,))
    if row is None:
        raise NotFoundError(f"User not found: {username}", resource_type="user")
    return User(id=row["id"], username=row["username"], role=row["role"])


def get_context_tx(tx: Transaction, username: str) -> Context:
    """Build a caller context for a stored user."""
    return Context(user=get_user_by_username_tx(tx, username))
