"""Durable proposal records with an atomic compare-and-set status transition.

``transition`` is the only path that changes a proposal's status. It runs as
a single ``UPDATE ... WHERE id = $ AND status = $expected RETURNING *``
statement, so when several callers race to move the same proposal out of
``pending`` exactly one of them gets a row back.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import asyncpg

from eventgate.proposals.models import ApprovalMessageHandle, EventProposal, ProposalStatus

logger = logging.getLogger(__name__)

_VALID_TRANSITIONS: dict[ProposalStatus, set[ProposalStatus]] = {
    ProposalStatus.PENDING: {
        ProposalStatus.APPROVED,
        ProposalStatus.REJECTED,
        ProposalStatus.EXPIRED,
    },
    ProposalStatus.APPROVED: set(),
    ProposalStatus.REJECTED: set(),
    ProposalStatus.EXPIRED: set(),
}


class ProposalStoreError(Exception):
    """Base class for proposal persistence errors."""


class ProposalNotFoundError(ProposalStoreError, LookupError):
    def __init__(self, proposal_id: uuid.UUID) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Proposal not found: {proposal_id}")


class DuplicateProposalError(ProposalStoreError):
    def __init__(self, proposal_id: uuid.UUID) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Proposal already exists: {proposal_id}")


class InvalidTransitionError(ProposalStoreError):
    """Raised when a status transition is not in the lifecycle table."""


class TransitionConflictError(ProposalStoreError):
    """The proposal was not in the expected status when the update ran."""

    def __init__(
        self,
        proposal_id: uuid.UUID,
        expected: ProposalStatus,
        actual: ProposalStatus,
    ) -> None:
        self.proposal_id = proposal_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Proposal {proposal_id} is '{actual.value}', expected '{expected.value}'"
        )


def validate_transition(current: ProposalStatus, target: ProposalStatus) -> None:
    """Raise InvalidTransitionError if ``current -> target`` is not allowed."""
    if target not in _VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Cannot transition from '{current.value}' to '{target.value}'"
        )


class ProposalStore:
    """asyncpg-backed repository for ``event_proposals``.

    Parameters
    ----------
    pool:
        An asyncpg pool, or anything exposing ``fetchrow``/``fetch``/``execute``
        with the same semantics (e.g. :class:`eventgate.db.Database`).
    """

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    @property
    def pool(self) -> Any:
        return self._pool

    async def create(self, proposal: EventProposal) -> EventProposal:
        """Insert *proposal* in ``pending`` and return the stored record."""
        if proposal.status is not ProposalStatus.PENDING:
            raise InvalidTransitionError(
                f"New proposals must start as 'pending', got '{proposal.status.value}'"
            )
        try:
            row = await self._pool.fetchrow(
                "INSERT INTO event_proposals "
                "(id, title, start_at, end_at, attendees, description, location, "
                "origin_conversation_id, status, created_at) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10) "
                "RETURNING *",
                proposal.id,
                proposal.title,
                proposal.start_at,
                proposal.end_at,
                json.dumps(proposal.attendees),
                proposal.description,
                proposal.location,
                proposal.origin_conversation_id,
                ProposalStatus.PENDING.value,
                proposal.created_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateProposalError(proposal.id) from exc
        return EventProposal.from_row(row)

    async def get(self, proposal_id: uuid.UUID) -> EventProposal:
        row = await self._pool.fetchrow("SELECT * FROM event_proposals WHERE id = $1", proposal_id)
        if row is None:
            raise ProposalNotFoundError(proposal_id)
        return EventProposal.from_row(row)

    async def transition(
        self,
        proposal_id: uuid.UUID,
        expected: ProposalStatus,
        new: ProposalStatus,
        *,
        resolved_at: datetime | None = None,
        external_event_id: str | None = None,
        external_event_link: str | None = None,
    ) -> EventProposal:
        """Atomically move *proposal_id* from *expected* to *new*.

        Parameters
        ----------
        proposal_id:
            Proposal to update.
        expected:
            Status the caller last observed.
        new:
            Target status; must be a legal successor of *expected*.
        resolved_at:
            Resolution timestamp recorded with a terminal status. Defaults
            to now.
        external_event_id, external_event_link:
            Calendar identifiers recorded alongside an approval.

        Returns
        -------
        EventProposal
            The updated record.

        Raises
        ------
        InvalidTransitionError
            If ``expected -> new`` is not in the lifecycle table.
        ProposalNotFoundError
            If no proposal has this id.
        TransitionConflictError
            If the stored status was no longer *expected*.
        """
        validate_transition(expected, new)
        if resolved_at is None and new.is_terminal:
            resolved_at = datetime.now(UTC)

        row = await self._pool.fetchrow(
            "UPDATE event_proposals "
            "SET status = $1, resolved_at = $2, "
            "external_event_id = COALESCE($3, external_event_id), "
            "external_event_link = COALESCE($4, external_event_link) "
            "WHERE id = $5 AND status = $6 "
            "RETURNING *",
            new.value,
            resolved_at,
            external_event_id,
            external_event_link,
            proposal_id,
            expected.value,
        )
        if row is not None:
            return EventProposal.from_row(row)

        actual = await self._pool.fetchval(
            "SELECT status FROM event_proposals WHERE id = $1", proposal_id
        )
        if actual is None:
            raise ProposalNotFoundError(proposal_id)
        raise TransitionConflictError(proposal_id, expected, ProposalStatus(actual))

    async def attach_message_handle(
        self, proposal_id: uuid.UUID, handle: ApprovalMessageHandle
    ) -> bool:
        """Record where the approval message lives.

        Only applies while the proposal is still pending and never touches
        ``status``. Returns False when the proposal had already left pending.
        """
        updated = await self._pool.fetchval(
            "UPDATE event_proposals SET message_chat_id = $1, message_id = $2 "
            "WHERE id = $3 AND status = $4 "
            "RETURNING id",
            handle.chat_id,
            handle.message_id,
            proposal_id,
            ProposalStatus.PENDING.value,
        )
        return updated is not None

    async def list_overdue_pending(self, cutoff: datetime) -> list[EventProposal]:
        """Return pending proposals created at or before *cutoff*, oldest first."""
        rows = await self._pool.fetch(
            "SELECT * FROM event_proposals "
            "WHERE status = $1 AND created_at <= $2 "
            "ORDER BY created_at ASC",
            ProposalStatus.PENDING.value,
            cutoff,
        )
        return [EventProposal.from_row(row) for row in rows]
