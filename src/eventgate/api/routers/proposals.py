"""Proposal ingestion and read endpoints.

- ``POST /api/proposals``: accept a proposal from the agent. Always answers
  202; validation failures are only logged.
- ``GET /api/proposals/{proposal_id}``: read one proposal.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from eventgate.api.models import AcceptedResponse, ApiResponse, ProposalResponse
from eventgate.proposals.ingest import ProposalIngestor
from eventgate.proposals.store import ProposalNotFoundError, ProposalStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proposals", tags=["proposals"])


def _get_ingestor() -> ProposalIngestor:
    """Dependency stub, overridden by ``create_app``."""
    raise RuntimeError("ProposalIngestor not initialized")


def _get_store() -> ProposalStore:
    """Dependency stub, overridden by ``create_app``."""
    raise RuntimeError("ProposalStore not initialized")


async def _ingest_in_background(ingestor: ProposalIngestor, payload: Any) -> None:
    if not isinstance(payload, dict):
        logger.warning(
            "Rejected event proposal with non-object body",
            extra={"body_type": type(payload).__name__},
        )
        return
    try:
        await ingestor.ingest(payload)
    except Exception:
        logger.exception("Failed to ingest event proposal")


@router.post("", status_code=202)
async def submit_proposal(
    request: Request,
    background_tasks: BackgroundTasks,
    ingestor: ProposalIngestor = Depends(_get_ingestor),
) -> AcceptedResponse:
    """Queue a proposal for validation and presentation."""
    try:
        payload: Any = await request.json()
    except ValueError:
        payload = None
    background_tasks.add_task(_ingest_in_background, ingestor, payload)
    return AcceptedResponse()


@router.get("/{proposal_id}")
async def get_proposal(
    proposal_id: str,
    store: ProposalStore = Depends(_get_store),
) -> ApiResponse[ProposalResponse]:
    try:
        parsed_id = UUID(proposal_id)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid proposal_id: {proposal_id}")

    try:
        proposal = await store.get(parsed_id)
    except ProposalNotFoundError:
        raise HTTPException(status_code=404, detail=f"Proposal not found: {proposal_id}")
    return ApiResponse[ProposalResponse](data=ProposalResponse.from_proposal(proposal))
