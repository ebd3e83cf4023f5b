"""
Unit tests for server wiring.

Tests cover:
- Logging setup per format
- Store construction from configuration
"""

import logging

import json_log_formatter
import pytest

from dbaas.sendconf_server.config import ObservabilityConfig, ServerConfig, StorageConfig, SystemConfig
from dbaas.sendconf_server.context import get_admin_context
from dbaas.sendconf_server.main import build_store, setup_logging
from dbaas.sendconf_server.store.listing import ListingParams


@pytest.fixture
def root_logger():
    """Restore root logger handlers and level after the test."""
    logger = logging.getLogger()
    handlers, level = list(logger.handlers), logger.level
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, root_logger):
        """JSON format installs the JSON formatter."""
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="DEBUG")))

        assert root_logger.level == logging.DEBUG
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self, root_logger):
        """Text format uses a plain formatter."""
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="text")))

        formatter = root_logger.handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("aiohttp.access").level == logging.WARNING


class TestBuildStore:
    """Tests for build_store."""

    @pytest.mark.asyncio
    async def test_build_store(self, tmp_path):
        """Store is seeded and uses the configured system id."""
        config = ServerConfig(
            storage=StorageConfig(data_dir=str(tmp_path), wal_mode=False),
            system=SystemConfig(send_configuration_id=7, admin_username="root"),
        )

        store = build_store(config)

        assert store.system_send_configuration_id == 7
        system = await store.get_system_send_configuration()
        assert system["id"] == 7
        assert (tmp_path / "sendconf.db").exists()

        page = await store.list_paged(get_admin_context(), ListingParams())
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_build_store_reopen(self, tmp_path):
        """Reopening an existing database does not reseed."""
        config = ServerConfig(storage=StorageConfig(data_dir=str(tmp_path), wal_mode=False))

        build_store(config)
        store = build_store(config)

        assert store.db.get_stats()["send_configurations"] == 1
        assert store.db.get_stats()["users"] == 1

