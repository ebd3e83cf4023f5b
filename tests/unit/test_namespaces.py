"""
Unit tests for namespace validation.

Tests cover:
- Namespace existence checks
- Namespace move permission checks
- Namespace creation
"""

import pytest

from dbaas.sendconf_server.errors import (
    NamespaceMoveError,
    NamespaceNotFoundError,
    ValidationError,
)
from dbaas.sendconf_server.store.namespaces import NamespaceValidator, create_namespace_tx


class TestNamespaceValidator:
    """Tests for NamespaceValidator."""

    @pytest.fixture
    def validator(self, shares):
        return NamespaceValidator(shares)

    @pytest.fixture
    def config_id(self, db, shares, world):
        with db.transaction() as tx:
            config_id = tx.insert(
                "send_configurations",
                {"name": "movable", "mailer_type": "smtp", "namespace": world.ns1, "created": 1},
            )
            shares.rebuild_permissions_tx(tx, entity_type="sendConfiguration", entity_id=config_id)
        return config_id

    def test_existing_namespace(self, db, validator, world):
        """Existing namespace passes."""
        with db.transaction() as tx:
            validator.validate_entity_tx(tx, {"namespace": world.ns2})

    def test_missing_namespace(self, db, validator):
        """Namespace must be set."""
        with pytest.raises(ValidationError) as exc_info:
            with db.transaction() as tx:
                validator.validate_entity_tx(tx, {"name": "x"})
        assert exc_info.value.field_name == "namespace"

    def test_unknown_namespace(self, db, validator):
        """Namespace must exist."""
        with pytest.raises(NamespaceNotFoundError) as exc_info:
            with db.transaction() as tx:
                validator.validate_entity_tx(tx, {"namespace": 777})
        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.code == "NAMESPACE_NOT_FOUND"

    def test_move_same_namespace_unchecked(self, db, validator, world, config_id):
        """No checks when the namespace does not change."""
        existing = {"id": config_id, "namespace": world.ns1}
        with db.transaction() as tx:
            validator.validate_move_tx(
                tx, world.eve, {"namespace": world.ns1}, existing,
                "sendConfiguration", "createSendConfiguration", "delete",
            )

    def test_move_needs_create_on_destination(self, db, validator, world, config_id):
        """alice has no rights on ns2."""
        existing = {"id": config_id, "namespace": world.ns1}
        with pytest.raises(NamespaceMoveError) as exc_info:
            with db.transaction() as tx:
                validator.validate_move_tx(
                    tx, world.alice, {"namespace": world.ns2}, existing,
                    "sendConfiguration", "createSendConfiguration", "delete",
                )
        assert exc_info.value.operation == "createSendConfiguration"
        assert exc_info.value.destination == world.ns2

    def test_move_needs_delete_on_entity(self, db, validator, world, config_id):
        """carol may create in ns2 but cannot delete from ns1."""
        existing = {"id": config_id, "namespace": world.ns1}
        with pytest.raises(NamespaceMoveError) as exc_info:
            with db.transaction() as tx:
                validator.validate_move_tx(
                    tx, world.carol, {"namespace": world.ns2}, existing,
                    "sendConfiguration", "createSendConfiguration", "delete",
                )
        assert exc_info.value.operation == "delete"

    def test_move_allowed(self, db, validator, world, config_id):
        """dave holds both operations."""
        existing = {"id": config_id, "namespace": world.ns1}
        with db.transaction() as tx:
            validator.validate_move_tx(
                tx, world.dave, {"namespace": world.ns2}, existing,
                "sendConfiguration", "createSendConfiguration", "delete",
            )


class TestCreateNamespace:
    """Tests for create_namespace_tx."""

    def test_create_child(self, db):
        """Namespaces are created under a parent."""
        with db.transaction() as tx:
            namespace_id = create_namespace_tx(tx, "Sales", parent=1, description="EMEA")
            row = tx.fetchone("SELECT * FROM namespaces WHERE id = ?", (namespace_id,))
        assert row["namespace"] == 1
        assert row["description"] == "EMEA"

    def test_unknown_parent(self, db):
        """Parent must exist."""
        with pytest.raises(NamespaceNotFoundError):
            with db.transaction() as tx:
                create_namespace_tx(tx, "Orphan", parent=999)
