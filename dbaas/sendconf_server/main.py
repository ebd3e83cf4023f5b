"""
SendConf Server - Main entry point.

This module starts the SendConf server:
- Opens (and if needed creates and seeds) the SQLite database
- Rebuilds materialized permissions
- Serves the HTTP API

Usage:
    python -m dbaas.sendconf_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Permissions are rebuilt before the first request is served
    - Graceful shutdown stops accepting requests before exiting
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import create_http_app, start_http_server
from .config import ServerConfig
from .store import Database, NamespaceValidator, PermissionService, SendConfigurations

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def build_store(config: ServerConfig) -> SendConfigurations:
    """Open the database, seed it and wire the store together.

    Args:
        config: Server configuration

    Returns:
        Ready-to-use SendConfigurations store
    """
    db = Database(
        path=config.storage.db_path,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
        cache_size_pages=config.storage.cache_size_pages,
    )
    db.initialize(
        system_send_configuration_id=config.system.send_configuration_id,
        admin_username=config.system.admin_username,
    )

    shares = PermissionService()
    with db.transaction() as tx:
        shares.rebuild_permissions_tx(tx)

    return SendConfigurations(
        db,
        shares,
        namespaces=NamespaceValidator(shares),
        system_send_configuration_id=config.system.send_configuration_id,
    )


class Server:
    """SendConf Server orchestrator.

    Attributes:
        config: Server configuration
        store: Send configuration store
        runner: HTTP application runner

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.store: SendConfigurations | None = None
        self.runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting SendConf server")
        self.config.log_config()

        try:
            Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)

            self.store = build_store(self.config)

            host, port = self.config.http.bind_address.rsplit(":", 1)
            app = create_http_app(self.store, self.config.http)
            self.runner = await start_http_server(app, host, int(port))

            self._running = True
            logger.info("SendConf server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        if self._running:
            self._running = False
            logger.info("SendConf server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
