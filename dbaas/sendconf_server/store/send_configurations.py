"""
Send configuration records.

This module implements list, read, create, update and delete of send
configurations. Each operation runs in a single transaction that covers
the permission check, validation, the write and the permission rebuild,
so a failure at any step leaves no trace.

Updates use optimistic concurrency: the caller sends the hash of the record
as it read it (originalHash). If the stored record hashes differently the
update fails with ChangedError and the caller must reload and retry.

Invariants:
    - Only ALLOWED_KEYS are ever written
    - mailer_settings is encoded exactly once per write, after validation
    - Permissions are rebuilt as the last step of create and update
    - The system send configuration cannot be deleted
    - Ids are normalized to int before any comparison or query
    - NOT NULL columns never receive None; text is valid UTF-8
    - Deleting a configuration nulls list references and refuses while
      campaigns still reference it

How to change safely:
    - Keep the hash check before any mutating statement
    - Never call the async methods from inside another transaction; use the
      *_tx variants with the caller's Transaction instead
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from ..context import Context, get_admin_context
from ..errors import (
    ChangedError,
    DependencyPresentError,
    NamespaceNotFoundError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    enforce,
)
from .database import Database, Transaction, now_ms
from .fields import (
    ALLOWED_KEYS,
    BOOLEAN_KEYS,
    NOT_NULL_KEYS,
    PUBLIC_KEYS,
    compute_hash,
    filter_object,
    find_unencodable,
)
from .listing import ListingParams, Page, list_with_permissions_tx
from .mailers import get_codec
from .namespaces import NamespaceValidator
from .shares import PermissionService

logger = logging.getLogger(__name__)

ENTITY_TYPE = "sendConfiguration"

LISTING_COLUMNS = {
    "name": "send_configurations.name",
    "id": "send_configurations.id",
    "description": "send_configurations.description",
    "mailerType": "send_configurations.mailer_type",
    "created": "send_configurations.created",
    "namespaceName": "namespaces.name",
}

_INTEGER_ID = re.compile(r"[+-]?[0-9]+")


def parse_id(config_id: Any) -> int:
    """Coerce a send configuration id to int.

    SQLite compares '1' equal to 1 in an INTEGER column, so ids must be
    normalized before any comparison in Python.

    Raises:
        ValidationError: Not an integer or an integer string
    """
    if isinstance(config_id, int) and not isinstance(config_id, bool):
        return config_id
    if isinstance(config_id, str) and _INTEGER_ID.fullmatch(config_id.strip()):
        return int(config_id)
    raise ValidationError(f"Invalid send configuration id: {config_id!r}", field_name="id")


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    for key in BOOLEAN_KEYS:
        if key in row and row[key] is not None:
            row[key] = bool(row[key])
    return row


class SendConfigurations:
    """Transactional store of send configurations.

    Attributes:
        db: Database the records live in
        shares: Permission service used for every check and rebuild
        namespaces: Namespace validator
        system_send_configuration_id: Id of the undeletable system record

    Example:
        >>> store = SendConfigurations(db, PermissionService(), system_send_configuration_id=1)
        >>> config_id = await store.create(context, {
        ...     "name": "Primary SMTP",
        ...     "mailer_type": "smtp",
        ...     "mailer_settings": {"host": "mail.example.com"},
        ...     "namespace": 1,
        ... })
        >>> entity = await store.get_by_id(context, config_id)
        >>> entity["originalHash"] = store.hash(entity)
    """

    hash = staticmethod(compute_hash)

    def __init__(
        self,
        db: Database,
        shares: PermissionService,
        namespaces: NamespaceValidator | None = None,
        system_send_configuration_id: int = 1,
    ) -> None:
        self.db = db
        self.shares = shares
        self.namespaces = namespaces or NamespaceValidator(shares)
        self.system_send_configuration_id = system_send_configuration_id

    def _load_tx(self, tx: Transaction, config_id: Any) -> dict[str, Any] | None:
        row = tx.fetchone("SELECT * FROM send_configurations WHERE id = ?", (config_id,))
        return _normalize_row(row) if row is not None else None

    async def list_paged(self, context: Context, params: ListingParams) -> Page:
        """List send configurations the caller may view publicly."""
        with self.db.transaction() as tx:
            return list_with_permissions_tx(
                tx,
                context,
                entity_type=ENTITY_TYPE,
                operation="viewPublic",
                from_clause=(
                    "send_configurations INNER JOIN namespaces "
                    "ON namespaces.id = send_configurations.namespace"
                ),
                id_column="send_configurations.id",
                columns=LISTING_COLUMNS,
                params=params,
                search_columns=("name", "description"),
            )

    def get_by_id_tx(
        self,
        tx: Transaction,
        context: Context,
        config_id: Any,
        with_permissions: bool = True,
        with_private_data: bool = True,
    ) -> dict[str, Any]:
        """Read a send configuration inside an existing transaction.

        Args:
            tx: Current transaction
            context: Caller context
            config_id: Send configuration id
            with_permissions: Attach the caller's operations as "permissions"
            with_private_data: Return the full record including mailer
                settings (requires viewPrivate) instead of the public projection
                (requires viewPublic)

        Raises:
            PermissionDeniedError: Operation not granted or record absent
            NotFoundError: Record absent (admin context)
        """
        config_id = parse_id(config_id)

        if with_private_data:
            self.shares.enforce_entity_permission_tx(tx, context, ENTITY_TYPE, config_id, "viewPrivate")
            entity = self._load_tx(tx, config_id)
            if entity is None:
                raise NotFoundError(resource_type=ENTITY_TYPE, resource_id=config_id)
            entity["mailer_settings"] = get_codec(entity["mailer_type"]).decode(entity["mailer_settings"])
        else:
            self.shares.enforce_entity_permission_tx(tx, context, ENTITY_TYPE, config_id, "viewPublic")
            row = tx.fetchone(
                f"SELECT {', '.join(PUBLIC_KEYS)} FROM send_configurations WHERE id = ?",
                (config_id,),
            )
            if row is None:
                raise NotFoundError(resource_type=ENTITY_TYPE, resource_id=config_id)
            entity = _normalize_row(row)

        # Permissions are optional as this may be called with the synthetic admin context
        if with_permissions:
            entity["permissions"] = sorted(
                self.shares.get_permissions_tx(tx, context, ENTITY_TYPE, config_id)
            )

        return entity

    async def get_by_id(
        self,
        context: Context,
        config_id: Any,
        with_permissions: bool = True,
        with_private_data: bool = True,
    ) -> dict[str, Any]:
        """Read a send configuration. See get_by_id_tx."""
        with self.db.transaction() as tx:
            return self.get_by_id_tx(tx, context, config_id, with_permissions, with_private_data)

    def _validate_and_preprocess_tx(self, tx: Transaction, entity: dict[str, Any]) -> None:
        """Validate fields, namespace and mailer, then encode mailer_settings in place."""
        for key in sorted(NOT_NULL_KEYS & entity.keys()):
            enforce(entity[key] is not None, f"{key} must not be null", field_name=key)

        invalid = find_unencodable(filter_object(entity, ALLOWED_KEYS))
        if invalid:
            raise ValidationError(
                "Text must be valid UTF-8",
                field_name=invalid[0].split(".", 1)[0],
                errors=[f"{path}: invalid character" for path in invalid],
            )

        self.namespaces.validate_entity_tx(tx, entity)

        codec = get_codec(entity.get("mailer_type"))
        if "mailer_settings" in entity:
            entity["mailer_settings"] = codec.encode(entity["mailer_settings"])

    async def create(self, context: Context, entity: Mapping[str, Any]) -> int:
        """Create a send configuration and return its id.

        Raises:
            PermissionDeniedError: No createSendConfiguration on the namespace
            ValidationError: Unknown namespace or mailer type, bad settings
        """
        entity = dict(entity)

        with self.db.transaction() as tx:
            try:
                self.shares.enforce_entity_permission_tx(
                    tx, context, "namespace", entity.get("namespace"), "createSendConfiguration"
                )
            except NotFoundError as e:
                # Only the admin context reaches here; report it as a dangling reference
                raise NamespaceNotFoundError(entity.get("namespace")) from e

            self._validate_and_preprocess_tx(tx, entity)

            config_id = tx.insert(
                "send_configurations",
                {**filter_object(entity, ALLOWED_KEYS), "created": now_ms()},
            )

            self.shares.rebuild_permissions_tx(tx, entity_type=ENTITY_TYPE, entity_id=config_id)

        logger.info(
            "Created send configuration",
            extra={
                "send_configuration_id": config_id,
                "namespace": entity["namespace"],
                "mailer_type": entity["mailer_type"],
                "user_id": context.user.id,
            },
        )
        return config_id

    async def update_with_consistency_check(self, context: Context, entity: Mapping[str, Any]) -> None:
        """Overwrite the whitelisted fields of a send configuration.

        The entity must carry "id" and "originalHash", the hash of the record
        as the caller last read it.

        Raises:
            PermissionDeniedError: No edit on the send configuration
            NotFoundError: Record does not exist
            ChangedError: Record changed since the caller read it
            ValidationError: Invalid namespace, mailer type, settings or move
        """
        entity = dict(entity)
        config_id = entity.get("id")
        enforce(config_id is not None, "Send configuration id not set", field_name="id")
        config_id = parse_id(config_id)

        with self.db.transaction() as tx:
            self.shares.enforce_entity_permission_tx(tx, context, ENTITY_TYPE, config_id, "edit")

            existing = self._load_tx(tx, config_id)
            if existing is None:
                raise NotFoundError(resource_type=ENTITY_TYPE, resource_id=config_id)

            existing["mailer_settings"] = get_codec(existing["mailer_type"]).decode(
                existing["mailer_settings"]
            )

            if compute_hash(existing) != entity.get("originalHash"):
                logger.info(
                    "Send configuration changed since read",
                    extra={"send_configuration_id": config_id, "user_id": context.user.id},
                )
                raise ChangedError(entity_id=config_id)

            if "mailer_type" in entity and "mailer_settings" not in entity:
                if entity["mailer_type"] != existing["mailer_type"]:
                    # Kept settings must satisfy the new type's codec
                    entity["mailer_settings"] = existing["mailer_settings"]

            self._validate_and_preprocess_tx(tx, entity)

            self.namespaces.validate_move_tx(
                tx, context, entity, existing, ENTITY_TYPE, "createSendConfiguration", "delete"
            )

            tx.update("send_configurations", filter_object(entity, ALLOWED_KEYS), id=config_id)

            self.shares.rebuild_permissions_tx(tx, entity_type=ENTITY_TYPE, entity_id=config_id)

        logger.info(
            "Updated send configuration",
            extra={"send_configuration_id": config_id, "user_id": context.user.id},
        )

    def _reject_system_delete(self, config_id: int) -> None:
        if config_id == self.system_send_configuration_id:
            raise PermissionDeniedError(
                "The system send configuration cannot be deleted",
                entity_type=ENTITY_TYPE,
                entity_id=config_id,
                operation="delete",
            )

    async def remove(self, context: Context, config_id: Any) -> None:
        """Delete a send configuration.

        List references to it are set to NULL in the same transaction.

        Raises:
            PermissionDeniedError: System configuration, or no delete permission
            DependencyPresentError: Campaigns still use the configuration
            ValidationError: Id is not an integer
        """
        config_id = parse_id(config_id)
        self._reject_system_delete(config_id)

        with self.db.transaction() as tx:
            self.shares.enforce_entity_permission_tx(tx, context, ENTITY_TYPE, config_id, "delete")

            row = tx.fetchone("SELECT id FROM send_configurations WHERE id = ?", (config_id,))
            if row is not None:
                self._reject_system_delete(row["id"])

            campaigns = tx.fetchall(
                "SELECT id, name FROM campaigns WHERE send_configuration = ? ORDER BY id",
                (config_id,),
            )
            if campaigns:
                raise DependencyPresentError(
                    "Send configuration is used by campaigns",
                    dependencies=[
                        {"entity_type": "campaign", "id": campaign["id"], "name": campaign["name"]}
                        for campaign in campaigns
                    ],
                )

            cleared = tx.execute(
                "UPDATE lists SET send_configuration = NULL WHERE send_configuration = ?",
                (config_id,),
            ).rowcount

            tx.execute("DELETE FROM send_configurations WHERE id = ?", (config_id,))

            self.shares.remove_entity_tx(tx, ENTITY_TYPE, config_id)

        logger.info(
            "Deleted send configuration",
            extra={
                "send_configuration_id": config_id,
                "lists_cleared": cleared,
                "user_id": context.user.id,
            },
        )

    async def get_system_send_configuration(self) -> dict[str, Any]:
        """Read the system send configuration without its mailer settings."""
        return await self.get_by_id(
            get_admin_context(),
            self.system_send_configuration_id,
            with_permissions=False,
            with_private_data=False,
        )
