"""
Namespace validation for namespaced entities.

Every send configuration belongs to exactly one namespace. This module
checks that the referenced namespace exists and that moving an entity
between namespaces is allowed for the caller.

Invariants:
    - An entity never references a missing namespace
    - A move requires the create operation on the destination namespace
      and the delete operation on the entity in its current namespace
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..context import Context
from ..errors import NamespaceMoveError, NamespaceNotFoundError, PermissionDeniedError, enforce
from .database import Transaction
from .shares import PermissionService

logger = logging.getLogger(__name__)


class NamespaceValidator:
    """Validates namespace references and namespace moves."""

    def __init__(self, shares: PermissionService) -> None:
        self.shares = shares

    def validate_entity_tx(self, tx: Transaction, entity: Mapping[str, Any]) -> None:
        """Check that the entity references an existing namespace.

        Raises:
            ValidationError: Namespace not set
            NamespaceNotFoundError: Namespace does not exist
        """
        namespace_id = entity.get("namespace")
        enforce(namespace_id is not None, "Entity namespace not set", field_name="namespace")

        if tx.fetchone("SELECT id FROM namespaces WHERE id = ?", (namespace_id,)) is None:
            raise NamespaceNotFoundError(namespace_id)

    def validate_move_tx(
        self,
        tx: Transaction,
        context: Context,
        entity: Mapping[str, Any],
        existing: Mapping[str, Any],
        entity_type: str,
        create_operation: str,
        delete_operation: str,
    ) -> None:
        """Check that the caller may move an entity to a new namespace.

        Does nothing when the namespace is unchanged.

        Raises:
            NamespaceMoveError: Caller lacks either operation
        """
        source = existing.get("namespace")
        destination = entity.get("namespace")
        if destination is None or destination == source:
            return

        try:
            self.shares.enforce_entity_permission_tx(
                tx, context, "namespace", destination, create_operation
            )
        except PermissionDeniedError as e:
            raise NamespaceMoveError(source, destination, create_operation) from e

        try:
            self.shares.enforce_entity_permission_tx(
                tx, context, entity_type, existing["id"], delete_operation
            )
        except PermissionDeniedError as e:
            raise NamespaceMoveError(source, destination, delete_operation) from e

        logger.debug(
            "Namespace move allowed",
            extra={
                "entity_type": entity_type,
                "entity_id": existing["id"],
                "from_namespace": source,
                "to_namespace": destination,
            },
        )


def create_namespace_tx(
    tx: Transaction,
    name: str,
    parent: int | None,
    description: str | None = None,
) -> int:
    """Insert a namespace below parent and return its id.

    Callers rebuild permissions afterwards.
    """
    if parent is not None and tx.fetchone("SELECT id FROM namespaces WHERE id = ?", (parent,)) is None:
        raise NamespaceNotFoundError(parent)
    return tx.insert("namespaces", {"name": name, "description": description, "namespace": parent})
