"""Append-only audit trail for proposal lifecycle changes."""

from __future__ import annotations

import enum
import json
import uuid
from datetime import UTC, datetime
from typing import Any


class ProposalEventType(enum.StrEnum):
    """Canonical event names for proposal audit records."""

    PROPOSAL_CREATED = "proposal_created"
    PROPOSAL_PRESENTED = "proposal_presented"
    PROPOSAL_APPROVED = "proposal_approved"
    PROPOSAL_REJECTED = "proposal_rejected"
    PROPOSAL_EXPIRED = "proposal_expired"
    PROPOSAL_WRITE_FAILED = "proposal_write_failed"


async def record_proposal_event(
    pool: Any,
    event_type: ProposalEventType | str,
    *,
    actor: str,
    proposal_id: uuid.UUID,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> None:
    """Persist an immutable proposal event row.

    Callers record an event only after the matching state change has been
    committed, so a lost compare-and-set never leaves an audit row behind.
    """
    event_name = event_type.value if isinstance(event_type, ProposalEventType) else str(event_type)
    event_time = occurred_at if occurred_at is not None else datetime.now(UTC)

    await pool.execute(
        "INSERT INTO proposal_events "
        "(event_type, proposal_id, actor, reason, event_metadata, occurred_at) "
        "VALUES ($1, $2, $3, $4, $5, $6)",
        event_name,
        proposal_id,
        actor,
        reason,
        json.dumps(metadata or {}),
        event_time,
    )
