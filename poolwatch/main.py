#!/usr/bin/env python3
"""
PoolWatch: Mining Pool to Matrix Notification Relay
Main application entry point.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from poolwatch.chat import MatrixChatClient
from poolwatch.common.errors import ChatError, ConfigError
from poolwatch.config import AppConfig, LoggingConfig, load_config
from poolwatch.db import CheckpointStore, DatabaseConnection, SessionPersistence, init_database
from poolwatch.monitor import DiffEngine, DiffThresholds, EventQueue, SnapshotStore
from poolwatch.monitor.scheduler import Scheduler
from poolwatch.notify import Notifier
from poolwatch.pool import PoolClient

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


def setup_logging(config: LoggingConfig) -> None:
    """Configure structured logging based on config settings."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if config.format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.level)
        ),
        cache_logger_on_first_use=True,
    )
    logger.info("logging_configured", level=config.level, format=config.format)


class PoolWatch:
    """Main application class.

    This class wires all components of the relay:
    - Checkpoint database
    - Matrix chat client
    - Pool client, diff engine, snapshot store and event queue
    - Notifier and scheduler
    """

    def __init__(self, config: AppConfig):
        """Initialize the application.

        Args:
            config: Validated configuration
        """
        self.config = config
        self.db: Optional[DatabaseConnection] = None
        self.chat_client: Optional[MatrixChatClient] = None
        self.pool_client: Optional[PoolClient] = None
        self.scheduler: Optional[Scheduler] = None

    async def setup(self) -> Scheduler:
        """Create all components, restore checkpoints and connect to chat.

        Raises:
            ChatError: If the chat login or a room join fails at startup
        """
        config = self.config

        self.db = await init_database(config.storage.resolved_database_url)
        checkpoints = CheckpointStore(self.db)

        store = SnapshotStore()
        store.seed(await checkpoints.load())

        self.chat_client = MatrixChatClient(
            homeserver_url=config.matrix.homeserver_url,
            user_id=config.matrix.user_id,
            password=config.matrix.password,
            access_token=config.matrix.access_token,
            device_id=config.matrix.device_id,
            device_name=config.matrix.device_name,
            display_name=config.matrix.display_name,
            proxy=config.matrix.proxy,
            session_store=SessionPersistence(self.db),
        )
        rooms = list(dict.fromkeys(
            room for account in config.accounts for room in config.rooms_for(account)
        ))
        await self.chat_client.connect(rooms)

        self.pool_client = PoolClient(
            status_url=config.pool.status_url,
            timeout_seconds=config.pool.request_timeout_seconds,
            auth_header=config.pool.auth_header,
            proxy=config.pool.proxy,
            workers_url=config.pool.workers_url,
            blocks_url=config.pool.blocks_url,
        )

        queue = EventQueue(max_queue_size=config.delivery.queue_size)
        notifier = Notifier(
            chat_client=self.chat_client,
            rooms=config.matrix.rooms,
            account_rooms={
                account.account_id: list(account.room_ids)
                for account in config.accounts
                if account.room_ids
            },
            base_delay_seconds=config.delivery.base_delay_seconds,
            max_delay_seconds=config.delivery.max_delay_seconds,
            max_attempts=config.delivery.max_attempts,
        )

        self.scheduler = Scheduler(
            accounts=config.accounts,
            pool_client=self.pool_client,
            store=store,
            diff_engine=DiffEngine(DiffThresholds.from_config(config.thresholds)),
            queue=queue,
            notifier=notifier,
            checkpoints=checkpoints,
            interval_seconds=config.poll.interval_seconds,
            jitter_fraction=config.poll.jitter_fraction,
            shutdown_grace_seconds=config.delivery.shutdown_grace_seconds,
        )
        return self.scheduler

    def _install_signal_handlers(self, scheduler: Scheduler) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.request_shutdown)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                logger.debug("signal_handler_unsupported", signal=sig.name)

    async def start(self) -> None:
        """Start the relay and run until a shutdown signal."""
        try:
            scheduler = await self.setup()
            self._install_signal_handlers(scheduler)
            await scheduler.run()
        finally:
            await self.close()

    async def close(self) -> None:
        """Close network clients and the database."""
        if self.pool_client:
            await self.pool_client.close()
        if self.chat_client:
            await self.chat_client.close()
        if self.db:
            await self.db.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="poolwatch",
        description="Relay mining pool account changes to Matrix rooms",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to the YAML config file (default: config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level",
    )
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point.

    Returns:
        int: Process exit code
    """
    args = parse_args(argv)

    try:
        config = load_config(args.config)
        if args.log_level:
            config.logging = LoggingConfig(level=args.log_level, format=config.logging.format)
    except (ConfigError, ValueError) as e:
        logger.error("config_invalid", error=str(e))
        return EXIT_STARTUP_FAILURE

    setup_logging(config.logging)
    app = PoolWatch(config)

    try:
        await app.start()
    except ChatError as e:
        logger.error("chat_startup_failed", error=str(e), code=e.code)
        return EXIT_STARTUP_FAILURE

    logger.info("shutdown_complete")
    return EXIT_OK


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("shutdown_requested")
        sys.exit(EXIT_OK)


if __name__ == "__main__":
    run()
