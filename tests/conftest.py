"""
Shared fixtures for SendConf tests.

The `world` fixture seeds a small tenant layout:

    Root (1)                       admin: global master
    ├── Marketing (ns1)            alice: master, bob: viewer, dave: master
    │   └── Newsletters (ns1a)
    └── Transactional (ns2)        carol: editor, dave: editor

eve has no shares at all.
"""

import tempfile
from dataclasses import dataclass
from pathlib import Path

import pytest

from dbaas.sendconf_server.context import Context, User, get_admin_context
from dbaas.sendconf_server.store import Database, PermissionService, SendConfigurations
from dbaas.sendconf_server.store.namespaces import create_namespace_tx
from dbaas.sendconf_server.store.users import create_user_tx, get_context_tx


@dataclass
class World:
    """Seeded namespaces and caller contexts."""

    ns1: int
    ns1a: int
    ns2: int
    admin: Context
    root_admin: Context
    alice: Context
    bob: Context
    carol: Context
    dave: Context
    eve: Context


def make_entity(namespace: int, **overrides) -> dict:
    """Build a valid send configuration payload."""
    entity = {
        "name": "Primary SMTP",
        "description": "Main relay",
        "from_email": "news@example.com",
        "from_email_overridable": False,
        "from_name": "Example News",
        "from_name_overridable": True,
        "reply_to": "reply@example.com",
        "reply_to_overridable": False,
        "subject": "",
        "subject_overridable": False,
        "verp_hostname": None,
        "mailer_type": "smtp",
        "mailer_settings": {"host": "mail.example.com", "port": 587, "encryption": "starttls"},
        "namespace": namespace,
    }
    entity.update(overrides)
    return entity


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db(data_dir):
    """Create and seed database."""
    database = Database(Path(data_dir) / "sendconf.db", wal_mode=False)
    database.initialize(system_send_configuration_id=1)
    return database


@pytest.fixture
def shares(db):
    """Create permission service with permissions rebuilt."""
    service = PermissionService()
    with db.transaction() as tx:
        service.rebuild_permissions_tx(tx)
    return service


@pytest.fixture
def store(db, shares):
    """Create send configuration store."""
    return SendConfigurations(db, shares, system_send_configuration_id=1)


@pytest.fixture
def world(db, shares):
    """Seed namespaces, users and shares."""
    admin = get_admin_context()

    with db.transaction() as tx:
        ns1 = create_namespace_tx(tx, "Marketing", parent=1)
        ns1a = create_namespace_tx(tx, "Newsletters", parent=ns1)
        ns2 = create_namespace_tx(tx, "Transactional", parent=1)

        ids = {name: create_user_tx(tx, name) for name in ("alice", "bob", "carol", "dave", "eve")}

        shares.rebuild_permissions_tx(tx)

        shares.assign_tx(tx, admin, "namespace", ns1, ids["alice"], "master")
        shares.assign_tx(tx, admin, "namespace", ns1, ids["bob"], "viewer")
        shares.assign_tx(tx, admin, "namespace", ns2, ids["carol"], "editor")
        shares.assign_tx(tx, admin, "namespace", ns1, ids["dave"], "master")
        shares.assign_tx(tx, admin, "namespace", ns2, ids["dave"], "editor")

        contexts = {name: get_context_tx(tx, name) for name in ids}
        root_admin = get_context_tx(tx, "admin")

    return World(
        ns1=ns1,
        ns1a=ns1a,
        ns2=ns2,
        admin=admin,
        root_admin=root_admin,
        **contexts,
    )


@pytest.fixture
def stranger():
    """Context of a user id that does not exist."""
    return Context(user=User(id=9999, username="ghost"))
