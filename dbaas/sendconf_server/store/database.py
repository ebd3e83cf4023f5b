"""
SQLite database and unit-of-work transactions for SendConf.

This module owns the SQLite file that stores:
- Send configurations with their serialized mailer settings
- Namespaces, users and shares (role assignments)
- Materialized permissions derived from shares
- Lists and campaigns referencing send configurations

Every store operation runs inside one Transaction obtained from
Database.transaction(). The Transaction object is passed explicitly to each
collaborator (permission checks, validation, writes, permission rebuild),
so all of them see and commit the same state.

Invariants:
    - One connection per transaction, closed when the transaction ends
    - Transactions start with BEGIN IMMEDIATE, taking the write lock up front
    - Any exception inside a transaction rolls it back and is re-raised
    - Column names used in generated SQL are plain identifiers

How to change safely:
    - Schema changes must be additive (CREATE ... IF NOT EXISTS)
    - Use Transaction.insert/update only with whitelisted column sets

Table schema:
    send_configurations:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - name, description, from_email, from_name, reply_to, subject,
          verp_hostname TEXT
        - *_overridable INTEGER (0/1)
        - mailer_type TEXT
        - mailer_settings TEXT (JSON)
        - namespace INTEGER -> namespaces.id
        - created INTEGER (Unix ms)

    shares:
        - entity_type TEXT, entity INTEGER, user INTEGER, role TEXT
        - PRIMARY KEY (entity_type, entity, user)

    permissions:
        - entity_type TEXT, entity INTEGER, user INTEGER, operation TEXT
        - PRIMARY KEY (entity_type, entity, user, operation)
"""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ROOT_NAMESPACE_ID = 1

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def now_ms() -> int:
    """Current time as Unix milliseconds."""
    return int(time.time() * 1000)


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


class Transaction:
    """Unit of work over a single SQLite connection.

    Created by Database.transaction(); never commit or roll back directly.

    Example:
        >>> with db.transaction() as tx:
        ...     row = tx.fetchone("SELECT * FROM namespaces WHERE id = ?", (1,))
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Any = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, rows: Any) -> sqlite3.Cursor:
        return self.conn.executemany(sql, rows)

    def fetchone(self, sql: str, params: Any = ()) -> dict[str, Any] | None:
        row = self.conn.execute(sql, params).fetchone()
        return dict(row) if row is not None else None

    def fetchall(self, sql: str, params: Any = ()) -> list[dict[str, Any]]:
        return [dict(row) for row in self.conn.execute(sql, params).fetchall()]

    def insert(self, table: str, values: Mapping[str, Any]) -> int:
        """Insert a row and return its rowid."""
        columns = [_check_identifier(c) for c in values]
        placeholders = ", ".join("?" for _ in columns)
        cursor = self.conn.execute(
            f"INSERT INTO {_check_identifier(table)} ({', '.join(columns)}) "
            f"VALUES ({placeholders})",
            [values[c] for c in columns],
        )
        return cursor.lastrowid

    def update(self, table: str, values: Mapping[str, Any], **where: Any) -> int:
        """Update matching rows and return the number changed."""
        if not values:
            return 0
        assignments = ", ".join(f"{_check_identifier(c)} = ?" for c in values)
        conditions = " AND ".join(f"{_check_identifier(c)} = ?" for c in where)
        cursor = self.conn.execute(
            f"UPDATE {_check_identifier(table)} SET {assignments} WHERE {conditions}",
            [*values.values(), *where.values()],
        )
        return cursor.rowcount


class Database:
    """SQLite database holding send configurations and their permissions.

    Thread safety:
        Each transaction opens its own connection. SQLite serializes writers
        via BEGIN IMMEDIATE and lets readers proceed in WAL mode.

    Example:
        >>> db = Database("/var/lib/sendconf/sendconf.db")
        >>> db.initialize(system_send_configuration_id=1)
        >>> with db.transaction() as tx:
        ...     tx.fetchall("SELECT id, name FROM send_configurations")
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database handle.

        Args:
            path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run a block as one atomic unit of work.

        Yields:
            Transaction bound to a fresh connection

        Raises:
            Whatever the block raises, after rolling back
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield Transaction(conn)
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS namespaces (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                namespace INTEGER REFERENCES namespaces(id)
            );

            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                name TEXT,
                role TEXT NOT NULL DEFAULT 'nobody'
            );

            CREATE TABLE IF NOT EXISTS send_configurations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL DEFAULT '',
                description TEXT,
                from_email TEXT,
                from_email_overridable INTEGER NOT NULL DEFAULT 0,
                from_name TEXT,
                from_name_overridable INTEGER NOT NULL DEFAULT 0,
                reply_to TEXT,
                reply_to_overridable INTEGER NOT NULL DEFAULT 0,
                subject TEXT,
                subject_overridable INTEGER NOT NULL DEFAULT 0,
                verp_hostname TEXT,
                mailer_type TEXT NOT NULL,
                mailer_settings TEXT NOT NULL DEFAULT '{}',
                namespace INTEGER NOT NULL REFERENCES namespaces(id),
                created INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_send_configurations_namespace
                ON send_configurations(namespace);

            CREATE TABLE IF NOT EXISTS lists (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                namespace INTEGER NOT NULL REFERENCES namespaces(id),
                send_configuration INTEGER REFERENCES send_configurations(id)
            );

            CREATE INDEX IF NOT EXISTS idx_lists_send_configuration
                ON lists(send_configuration);

            CREATE TABLE IF NOT EXISTS campaigns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                namespace INTEGER NOT NULL REFERENCES namespaces(id),
                send_configuration INTEGER REFERENCES send_configurations(id)
            );

            CREATE INDEX IF NOT EXISTS idx_campaigns_send_configuration
                ON campaigns(send_configuration);

            CREATE TABLE IF NOT EXISTS shares (
                entity_type TEXT NOT NULL,
                entity INTEGER NOT NULL,
                user INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                PRIMARY KEY (entity_type, entity, user)
            );

            CREATE TABLE IF NOT EXISTS permissions (
                entity_type TEXT NOT NULL,
                entity INTEGER NOT NULL,
                user INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                operation TEXT NOT NULL,
                PRIMARY KEY (entity_type, entity, user, operation)
            );

            CREATE INDEX IF NOT EXISTS idx_permissions_user
                ON permissions(entity_type, user, operation, entity);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    def _seed(self, tx: Transaction, system_send_configuration_id: int, admin_username: str) -> None:
        """Create the root namespace, admin user and system send configuration."""
        if tx.fetchone("SELECT id FROM namespaces WHERE id = ?", (ROOT_NAMESPACE_ID,)) is None:
            tx.insert(
                "namespaces",
                {
                    "id": ROOT_NAMESPACE_ID,
                    "name": "Root",
                    "description": "Root namespace",
                    "namespace": None,
                },
            )

        if tx.fetchone("SELECT id FROM users WHERE username = ?", (admin_username,)) is None:
            tx.insert(
                "users",
                {"username": admin_username, "name": "Administrator", "role": "master"},
            )

        existing = tx.fetchone(
            "SELECT id FROM send_configurations WHERE id = ?", (system_send_configuration_id,)
        )
        if existing is None:
            tx.insert(
                "send_configurations",
                {
                    "id": system_send_configuration_id,
                    "name": "System",
                    "description": "Send configuration used to deliver system emails",
                    "from_email": "admin@example.com",
                    "from_email_overridable": True,
                    "from_name": "My Company",
                    "from_name_overridable": True,
                    "reply_to": "",
                    "reply_to_overridable": True,
                    "subject": "",
                    "subject_overridable": True,
                    "verp_hostname": None,
                    "mailer_type": "zone_mta",
                    "mailer_settings": '{"zone_mta_type":3}',
                    "namespace": ROOT_NAMESPACE_ID,
                    "created": now_ms(),
                },
            )
            logger.info(
                "Created system send configuration",
                extra={"send_configuration_id": system_send_configuration_id},
            )

    def initialize(
        self,
        system_send_configuration_id: int = 1,
        admin_username: str = "admin",
    ) -> None:
        """Create schema and seed records if they don't exist.

        Permissions are not rebuilt here; callers run
        PermissionService.rebuild_permissions_tx afterwards.

        Args:
            system_send_configuration_id: Id of the undeletable system record
            admin_username: Username of the bootstrap administrator
        """
        with self._get_connection() as conn:
            self._create_schema(conn)

        with self.transaction() as tx:
            self._seed(tx, system_send_configuration_id, admin_username)

        logger.info(f"Initialized database: {self.path}")

    def exists(self) -> bool:
        return self.path.exists()

    def get_stats(self) -> dict[str, int]:
        """Get row counts of the main tables."""
        with self._get_connection() as conn:
            stats = {}
            for table in ("send_configurations", "namespaces", "users", "permissions"):
                cursor = conn.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = cursor.fetchone()[0]
            return stats
