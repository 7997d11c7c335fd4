"""
Waste Ledger Server - Main entry point.

This module starts the ledger server:
- Opens (and on first run, creates) the SQLite store
- Records the configured administrator
- Serves the HTTP API until SIGTERM/SIGINT

Usage:
    python -m services.wasteledger_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is initialized before the HTTP server accepts requests
    - Graceful shutdown waits for the HTTP runner to clean up

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter

from .api.http_server import run_http_server
from .config import ServerConfig
from .records import CanonicalStore, WasteLedger

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


class Server:
    """Ledger server orchestrator.

    Attributes:
        config: Server configuration
        store: Canonical SQLite store
        ledger: WasteLedger state machine

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

        # Components (initialized in start())
        self.store: CanonicalStore | None = None
        self.ledger: WasteLedger | None = None

        self._tasks: list[asyncio.Task] = []

    def open_ledger(self) -> WasteLedger:
        """Create the store and ledger from configuration."""
        data_dir = Path(self.config.storage.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)

        self.store = CanonicalStore(
            data_dir=str(data_dir),
            db_name=self.config.storage.db_name,
            wal_mode=self.config.storage.wal_mode,
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
            cache_size_pages=self.config.storage.cache_size_pages,
        )
        state = self.store.initialize(admin=self.config.admin)
        logger.info(
            "Ledger store ready",
            extra={
                "db_path": str(self.store.get_db_path()),
                "entry_count": state.entry_count,
                "paused": state.paused,
            },
        )

        self.ledger = WasteLedger(self.store, limits=self.config.limits)
        return self.ledger

    async def start(self) -> None:
        """Start the server and wait for shutdown."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting waste ledger server")
        self.config.log_config()

        try:
            ledger = self.open_ledger()

            http_task = asyncio.create_task(run_http_server(ledger, self.config.http))
            self._tasks.append(http_task)

            self._running = True
            logger.info("Waste ledger server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running and not self._tasks:
            return

        logger.info("Stopping waste ledger server")

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        self._running = False
        logger.info("Waste ledger server stopped")

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
