"""eventgate HTTP API: FastAPI application factory.

The app exposes:
- ``GET /api/health``
- ``POST /api/proposals`` (agent ingestion, always 202)
- ``GET /api/proposals/{proposal_id}``
- ``POST /api/telegram/webhook``
"""

from __future__ import annotations

from fastapi import FastAPI

from eventgate.api.models import HealthResponse
from eventgate.api.routers import proposals as proposals_routes
from eventgate.api.routers import telegram as telegram_routes
from eventgate.channels.telegram import TelegramApprovalChannel
from eventgate.proposals.ingest import ProposalIngestor
from eventgate.proposals.store import ProposalStore


def create_app(
    *,
    ingestor: ProposalIngestor,
    store: ProposalStore,
    channel: TelegramApprovalChannel,
    service_name: str = "eventgate",
) -> FastAPI:
    """Build the FastAPI app with its dependencies wired in."""
    app = FastAPI(title="eventgate", version="0.1.0")

    @app.get("/api/health")
    async def health() -> HealthResponse:
        return HealthResponse(service=service_name)

    app.include_router(proposals_routes.router)
    app.include_router(telegram_routes.router)

    app.dependency_overrides[proposals_routes._get_ingestor] = lambda: ingestor
    app.dependency_overrides[proposals_routes._get_store] = lambda: store
    app.dependency_overrides[telegram_routes._get_channel] = lambda: channel
    return app
