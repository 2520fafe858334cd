"""Entry point for proposals coming from the agent.

Ingestion is fire-and-forget from the agent's point of view: a request that
fails validation is logged and dropped, and the agent is never told. A valid
request becomes a ``pending`` proposal and is presented to the human.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from eventgate.proposals.channel import ApprovalChannel
from eventgate.proposals.events import ProposalEventType, record_proposal_event
from eventgate.proposals.models import EventProposal, ProposalStatus
from eventgate.proposals.store import ProposalStore
from eventgate.proposals.validator import (
    ProposalCandidate,
    ProposalRequest,
    ProposalValidationError,
    validate_proposal_request,
)

logger = logging.getLogger(__name__)


def new_proposal(candidate: ProposalCandidate, created_at: datetime) -> EventProposal:
    """Mint a fresh pending proposal with a never-reused UUID4 id."""
    return EventProposal(
        id=uuid.uuid4(),
        title=candidate.title,
        start_at=candidate.start_at,
        end_at=candidate.end_at,
        attendees=list(candidate.attendees),
        description=candidate.description,
        location=candidate.location,
        origin_conversation_id=candidate.origin_conversation_id,
        created_at=created_at,
        status=ProposalStatus.PENDING,
    )


class ProposalIngestor:
    """Validates, stores and presents agent proposals.

    Parameters
    ----------
    store:
        Proposal persistence.
    channel:
        Where the approval message is rendered.
    timezone:
        Zone applied to timestamps sent without an offset.
    """

    def __init__(
        self,
        store: ProposalStore,
        channel: ApprovalChannel,
        *,
        timezone: str = "UTC",
    ) -> None:
        self._store = store
        self._channel = channel
        self._timezone = timezone

    async def ingest(
        self, payload: Mapping[str, Any], *, now: datetime | None = None
    ) -> EventProposal | None:
        """Turn a raw agent payload into a presented proposal.

        Returns the stored proposal, or ``None`` when the payload was rejected.
        """
        current = now or datetime.now(UTC)
        try:
            request = ProposalRequest.model_validate(dict(payload))
            candidate = validate_proposal_request(
                request, now=current, timezone=self._timezone
            )
        except ProposalValidationError as exc:
            logger.warning(
                "Rejected event proposal",
                extra={"rule": exc.rule.value, "detail": exc.detail},
            )
            return None
        except ValidationError as exc:
            logger.warning(
                "Rejected malformed event proposal",
                extra={"errors": exc.error_count()},
            )
            return None

        proposal = await self._store.create(new_proposal(candidate, current))
        await record_proposal_event(
            self._store.pool,
            ProposalEventType.PROPOSAL_CREATED,
            actor="agent",
            proposal_id=proposal.id,
            metadata={"origin_conversation_id": proposal.origin_conversation_id},
            occurred_at=current,
        )
        logger.info(
            "Stored event proposal",
            extra={"proposal_id": str(proposal.id), "title": proposal.title},
        )

        handle = await self._channel.present(proposal)
        if handle is None:
            return proposal

        if await self._store.attach_message_handle(proposal.id, handle):
            proposal.message_handle = handle
            await record_proposal_event(
                self._store.pool,
                ProposalEventType.PROPOSAL_PRESENTED,
                actor="system",
                proposal_id=proposal.id,
                metadata={"chat_id": handle.chat_id, "message_id": handle.message_id},
            )
        return proposal
