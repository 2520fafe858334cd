"""eventgate daemon: wires the proposal approval subsystem together.

Startup sequence:

1. Load ``eventgate.toml``
2. Configure structured logging
3. Provision the database, open the pool, run migrations
4. Build the credential manager and calendar write client
5. Build the store, Telegram channel, router, ingestor and sweeper
6. Start the channel (polling or webhook) and the sweeper
7. Serve the HTTP API with uvicorn

Shutdown runs the same steps in reverse.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path

import uvicorn

from eventgate.api.app import create_app
from eventgate.calendar import CalendarWriteClient
from eventgate.channels.telegram import TelegramApprovalChannel
from eventgate.config import EventGateConfig, load_config
from eventgate.core.logging import configure_logging
from eventgate.credentials import CredentialFileStore, CredentialManager
from eventgate.db import Database
from eventgate.migrations import run_migrations
from eventgate.proposals.ingest import ProposalIngestor
from eventgate.proposals.router import CallbackRouter
from eventgate.proposals.store import ProposalStore
from eventgate.proposals.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


def build_credential_manager(config: EventGateConfig) -> CredentialManager:
    return CredentialManager(
        CredentialFileStore(config.google.resolved_credentials_path),
        timeout=config.google.request_timeout_seconds,
    )


async def open_database(config: EventGateConfig) -> Database:
    """Provision, connect and migrate the proposal database."""
    db = Database.from_env(config.db.name, schema=config.db.schema)
    await db.provision()
    await run_migrations(db.url, schema=config.db.schema)
    await db.connect()
    return db


class EventGateDaemon:
    """Owns every long-lived component of one eventgate process."""

    def __init__(self, config_dir: Path) -> None:
        self.config_dir = Path(config_dir)
        self.config: EventGateConfig | None = None
        self.db: Database | None = None
        self.credentials: CredentialManager | None = None
        self.calendar: CalendarWriteClient | None = None
        self.store: ProposalStore | None = None
        self.channel: TelegramApprovalChannel | None = None
        self.router: CallbackRouter | None = None
        self.ingestor: ProposalIngestor | None = None
        self.sweeper: ExpirySweeper | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Execute the full startup sequence.

        A failure at any step prevents the following steps.
        """
        self.config = load_config(self.config_dir)
        config = self.config

        log_root = Path(config.logging.log_root) if config.logging.log_root else None
        configure_logging(
            level=config.logging.level,
            fmt=config.logging.format,
            log_root=log_root,
            service_name=config.name,
        )
        logger.info("Starting eventgate: %s", config.name)

        self.db = await open_database(config)

        self.credentials = build_credential_manager(config)
        self.calendar = CalendarWriteClient(
            self.credentials,
            timezone=config.timezone,
            calendar_id=config.google.calendar_id,
            timeout=config.google.request_timeout_seconds,
        )

        expiry_window = timedelta(hours=config.proposals.expiry_hours)
        self.store = ProposalStore(self.db)
        self.channel = TelegramApprovalChannel(config.telegram, timezone=config.timezone)
        self.router = CallbackRouter(
            self.store,
            self.calendar,
            self.channel,
            expiry_window=expiry_window,
        )
        self.channel.set_router(self.router)
        self.ingestor = ProposalIngestor(self.store, self.channel, timezone=config.timezone)
        self.sweeper = ExpirySweeper(
            self.store,
            expiry_window=expiry_window,
            interval_seconds=config.proposals.sweep_interval_seconds,
        )

        await self.channel.start()
        await self.sweeper.start()
        await self._start_api_server()
        logger.info(
            "eventgate ready",
            extra={
                "telegram_mode": self.channel.config.mode,
                "api_port": config.api.port,
            },
        )

    async def _start_api_server(self) -> None:
        assert self.config is not None
        assert self.ingestor is not None and self.store is not None and self.channel is not None
        app = create_app(
            ingestor=self.ingestor,
            store=self.store,
            channel=self.channel,
            service_name=self.config.name,
        )
        server_config = uvicorn.Config(
            app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level="info",
            timeout_graceful_shutdown=0,
        )
        self._server = uvicorn.Server(server_config)
        self._server_task = asyncio.create_task(self._server.serve())

    async def shutdown(self) -> None:
        """Graceful shutdown in reverse startup order."""
        logger.info("Shutting down eventgate: %s", self.config.name if self.config else "unknown")

        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            try:
                await self._server_task
            except Exception:
                logger.exception("Error while stopping API server")
            self._server_task = None
            self._server = None

        if self.sweeper is not None:
            await self.sweeper.stop()
        if self.channel is not None:
            try:
                await self.channel.stop()
            except Exception:
                logger.exception("Error while stopping Telegram channel")
        if self.calendar is not None:
            await self.calendar.aclose()
        if self.credentials is not None:
            await self.credentials.aclose()
        if self.db is not None:
            await self.db.close()
