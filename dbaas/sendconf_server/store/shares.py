"""
Shares and materialized permissions for SendConf.

This module handles access control for entities:
- Role assignments (shares) of users on namespaces and entities
- Materialization of shares into per-operation permission rows
- Permission checks performed inside the caller's transaction

A namespace role grants its own operations on that namespace and its
"children" operations on every entity in that namespace or any namespace
below it. An entity role grants operations on that single entity. A global
role may imply a role on the root namespace.

Invariants:
    - Permission checks read only the permissions table
    - rebuild_permissions_tx is idempotent and must run after every write
      that can change visibility (create, update, move, share)
    - The admin context bypasses checks but not entity existence
    - Absent and forbidden entities are indistinguishable to regular users

How to change safely:
    - New operations must be added to ENTITY_OPERATIONS and to roles
    - New roles must be additive
    - Run a full rebuild after changing DEFAULT_ROLES
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from ..context import Context
from ..errors import NotFoundError, PermissionDeniedError
from .database import ROOT_NAMESPACE_ID, Transaction

logger = logging.getLogger(__name__)


# Operations available per entity type
ENTITY_OPERATIONS: dict[str, frozenset[str]] = {
    "namespace": frozenset(
        {
            "view",
            "edit",
            "delete",
            "share",
            "createNamespace",
            "createList",
            "createCampaign",
            "createSendConfiguration",
        }
    ),
    "sendConfiguration": frozenset(
        {
            "viewPublic",
            "viewPrivate",
            "edit",
            "delete",
            "share",
            "sendWithoutOverrides",
            "sendWithAllowedOverrides",
            "sendWithAnyOverrides",
        }
    ),
    "list": frozenset({"view", "edit", "delete", "share"}),
}

# Backing table of each entity type
ENTITY_TABLES: dict[str, str] = {
    "namespace": "namespaces",
    "sendConfiguration": "send_configurations",
    "list": "lists",
}

DEFAULT_ROLES: dict[str, dict[str, dict[str, Any]]] = {
    "global": {
        "master": {"name": "Master", "root_namespace_role": "master"},
        "nobody": {"name": "Nobody", "root_namespace_role": None},
    },
    "namespace": {
        "master": {
            "name": "Master",
            "permissions": ENTITY_OPERATIONS["namespace"],
            "children": {
                "namespace": ENTITY_OPERATIONS["namespace"],
                "sendConfiguration": ENTITY_OPERATIONS["sendConfiguration"],
                "list": ENTITY_OPERATIONS["list"],
            },
        },
        "editor": {
            "name": "Editor",
            "permissions": frozenset({"view", "createList", "createCampaign", "createSendConfiguration"}),
            "children": {
                "namespace": frozenset({"view"}),
                "sendConfiguration": frozenset(
                    {"viewPublic", "viewPrivate", "edit", "delete", "sendWithAllowedOverrides"}
                ),
                "list": frozenset({"view", "edit", "delete"}),
            },
        },
        "viewer": {
            "name": "Viewer",
            "permissions": frozenset({"view"}),
            "children": {
                "namespace": frozenset({"view"}),
                "sendConfiguration": frozenset({"viewPublic"}),
                "list": frozenset({"view"}),
            },
        },
    },
    "sendConfiguration": {
        "master": {"name": "Master", "permissions": ENTITY_OPERATIONS["sendConfiguration"]},
        "sender": {
            "name": "Sender",
            "permissions": frozenset({"viewPublic", "sendWithAllowedOverrides"}),
        },
        "viewer": {"name": "Viewer", "permissions": frozenset({"viewPublic"})},
    },
    "list": {
        "master": {"name": "Master", "permissions": ENTITY_OPERATIONS["list"]},
        "viewer": {"name": "Viewer", "permissions": frozenset({"view"})},
    },
}


def throw_permission_denied(
    entity_type: str | None = None,
    entity_id: int | None = None,
    operation: str | None = None,
) -> None:
    """Raise PermissionDeniedError."""
    raise PermissionDeniedError(entity_type=entity_type, entity_id=entity_id, operation=operation)


class PermissionService:
    """Checks, lists and rebuilds materialized permissions.

    Thread safety:
        Stateless; all state lives in the transaction passed to each call.

    Example:
        >>> shares = PermissionService()
        >>> with db.transaction() as tx:
        ...     shares.enforce_entity_permission_tx(
        ...         tx, context, "sendConfiguration", 7, "viewPrivate"
        ...     )
    """

    def __init__(self, roles: dict[str, dict[str, dict[str, Any]]] | None = None) -> None:
        self.roles = roles or DEFAULT_ROLES

    def _table(self, entity_type: str) -> str:
        try:
            return ENTITY_TABLES[entity_type]
        except KeyError:
            raise ValueError(f"Unknown entity type: {entity_type}") from None

    def _entity_exists_tx(self, tx: Transaction, entity_type: str, entity_id: Any) -> bool:
        row = tx.fetchone(f"SELECT 1 FROM {self._table(entity_type)} WHERE id = ?", (entity_id,))
        return row is not None

    def check_entity_permission_tx(
        self,
        tx: Transaction,
        context: Context,
        entity_type: str,
        entity_id: Any,
        operation: str,
    ) -> bool:
        """Check whether the caller holds an operation on an entity.

        Args:
            tx: Current transaction
            context: Caller context
            entity_type: Entity type (namespace, sendConfiguration, list)
            entity_id: Entity identifier
            operation: Required operation

        Returns:
            True if granted. For the admin context, True if the entity exists.
        """
        if context.is_admin:
            return self._entity_exists_tx(tx, entity_type, entity_id)

        row = tx.fetchone(
            """
            SELECT 1 FROM permissions
            WHERE entity_type = ? AND entity = ? AND user = ? AND operation = ?
            """,
            (entity_type, entity_id, context.user.id, operation),
        )
        return row is not None

    def enforce_entity_permission_tx(
        self,
        tx: Transaction,
        context: Context,
        entity_type: str,
        entity_id: Any,
        operation: str,
    ) -> None:
        """Check permission and raise if denied.

        Raises:
            NotFoundError: Admin context and the entity does not exist
            PermissionDeniedError: Operation not granted (or entity absent)
        """
        if context.is_admin:
            if not self._entity_exists_tx(tx, entity_type, entity_id):
                raise NotFoundError(resource_type=entity_type, resource_id=entity_id)
            return

        if not self.check_entity_permission_tx(tx, context, entity_type, entity_id, operation):
            logger.info(
                "Permission denied",
                extra={
                    "user_id": context.user.id,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "operation": operation,
                },
            )
            throw_permission_denied(entity_type, entity_id, operation)

    def get_permissions_tx(
        self,
        tx: Transaction,
        context: Context,
        entity_type: str,
        entity_id: Any,
    ) -> set[str]:
        """List operations the caller holds on an entity."""
        if context.is_admin:
            return set(ENTITY_OPERATIONS[entity_type])

        rows = tx.fetchall(
            "SELECT operation FROM permissions WHERE entity_type = ? AND entity = ? AND user = ?",
            (entity_type, entity_id, context.user.id),
        )
        return {row["operation"] for row in rows}

    def _namespace_parents_tx(self, tx: Transaction) -> dict[int, int | None]:
        return {
            row["id"]: row["namespace"]
            for row in tx.fetchall("SELECT id, namespace FROM namespaces")
        }

    def _namespace_shares_tx(self, tx: Transaction) -> dict[int, dict[int, str]]:
        """Effective namespace roles: namespace id -> user id -> role."""
        by_namespace: dict[int, dict[int, str]] = defaultdict(dict)

        for row in tx.fetchall("SELECT id, role FROM users"):
            global_role = self.roles["global"].get(row["role"], {})
            root_role = global_role.get("root_namespace_role")
            if root_role:
                by_namespace[ROOT_NAMESPACE_ID][row["id"]] = root_role

        # Explicit shares override the implied root share
        for row in tx.fetchall(
            "SELECT entity, user, role FROM shares WHERE entity_type = 'namespace'"
        ):
            by_namespace[row["entity"]][row["user"]] = row["role"]

        return by_namespace

    @staticmethod
    def _ancestors(namespace_id: int | None, parents: dict[int, int | None]) -> list[int]:
        """Namespace chain from namespace_id up to the root, inclusive."""
        chain = []
        seen = set()
        while namespace_id is not None and namespace_id not in seen:
            seen.add(namespace_id)
            chain.append(namespace_id)
            namespace_id = parents.get(namespace_id)
        return chain

    def rebuild_permissions_tx(
        self,
        tx: Transaction,
        entity_type: str | None = None,
        entity_id: Any = None,
    ) -> None:
        """Recompute materialized permissions.

        Args:
            tx: Current transaction
            entity_type: Restrict to one entity type (all types if None)
            entity_id: Restrict to one entity of entity_type
        """
        types = [entity_type] if entity_type else list(ENTITY_TABLES)
        parents = self._namespace_parents_tx(tx)
        namespace_shares = self._namespace_shares_tx(tx)

        for etype in types:
            table = self._table(etype)
            query = f"SELECT id, namespace FROM {table}"
            params: list[Any] = []
            if entity_id is not None:
                query += " WHERE id = ?"
                params.append(entity_id)

            entities = tx.fetchall(query, params)

            if entity_id is not None:
                tx.execute(
                    "DELETE FROM permissions WHERE entity_type = ? AND entity = ?",
                    (etype, entity_id),
                )
            else:
                tx.execute("DELETE FROM permissions WHERE entity_type = ?", (etype,))

            for entity in entities:
                granted = self._compute_entity_permissions_tx(
                    tx, etype, entity, parents, namespace_shares
                )
                for user_id, operations in granted.items():
                    tx.executemany(
                        """
                        INSERT OR IGNORE INTO permissions (entity_type, entity, user, operation)
                        VALUES (?, ?, ?, ?)
                        """,
                        [(etype, entity["id"], user_id, op) for op in sorted(operations)],
                    )

        logger.debug(
            "Rebuilt permissions",
            extra={"entity_type": entity_type, "entity_id": entity_id},
        )

    def _compute_entity_permissions_tx(
        self,
        tx: Transaction,
        entity_type: str,
        entity: dict[str, Any],
        parents: dict[int, int | None],
        namespace_shares: dict[int, dict[int, str]],
    ) -> dict[int, set[str]]:
        granted: dict[int, set[str]] = defaultdict(set)
        namespace_roles = self.roles["namespace"]

        if entity_type == "namespace":
            # Own namespace role grants "permissions", ancestors grant "children"
            for user_id, role in namespace_shares.get(entity["id"], {}).items():
                granted[user_id] |= set(namespace_roles.get(role, {}).get("permissions", ()))
            owners = self._ancestors(entity["namespace"], parents)
        else:
            owners = self._ancestors(entity["namespace"], parents)
            entity_roles = self.roles.get(entity_type, {})
            for row in tx.fetchall(
                "SELECT user, role FROM shares WHERE entity_type = ? AND entity = ?",
                (entity_type, entity["id"]),
            ):
                granted[row["user"]] |= set(entity_roles.get(row["role"], {}).get("permissions", ()))

        for namespace_id in owners:
            for user_id, role in namespace_shares.get(namespace_id, {}).items():
                children = namespace_roles.get(role, {}).get("children", {})
                granted[user_id] |= set(children.get(entity_type, ()))

        return granted

    def assign_tx(
        self,
        tx: Transaction,
        context: Context,
        entity_type: str,
        entity_id: Any,
        user_id: int,
        role: str | None,
    ) -> None:
        """Share an entity with a user, or remove the share when role is None.

        Raises:
            PermissionDeniedError: Caller lacks "share" on the entity
            ValueError: Role is not defined for the entity type
        """
        self.enforce_entity_permission_tx(tx, context, entity_type, entity_id, "share")

        tx.execute(
            "DELETE FROM shares WHERE entity_type = ? AND entity = ? AND user = ?",
            (entity_type, entity_id, user_id),
        )
        if role is not None:
            if role not in self.roles.get(entity_type, {}):
                raise ValueError(f"Unknown role '{role}' for entity type {entity_type}")
            tx.insert(
                "shares",
                {"entity_type": entity_type, "entity": entity_id, "user": user_id, "role": role},
            )

        if entity_type == "namespace":
            # Affects everything in and below the namespace
            self.rebuild_permissions_tx(tx)
        else:
            self.rebuild_permissions_tx(tx, entity_type=entity_type, entity_id=entity_id)

    def remove_entity_tx(self, tx: Transaction, entity_type: str, entity_id: Any) -> None:
        """Drop shares and permissions of a deleted entity."""
        tx.execute(
            "DELETE FROM shares WHERE entity_type = ? AND entity = ?", (entity_type, entity_id)
        )
        tx.execute(
            "DELETE FROM permissions WHERE entity_type = ? AND entity = ?",
            (entity_type, entity_id),
        )
