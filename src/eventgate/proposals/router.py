"""Turns a human's approve/reject tap into at most one calendar write.

For one ``(proposal_id, action)`` delivery the router:

1. drops unknown proposals ("no longer available"),
2. drops proposals that already left ``pending`` ("already handled"),
3. expires proposals older than the expiry window,
4. expires proposals whose start time has passed,
5. records a rejection, or
6. creates the calendar event and only then records the approval.

A failed calendar write leaves the proposal ``pending`` so the human can tap
again. Every status change goes through the store's compare-and-set; losing
that race is reported as "already handled". Deliveries for the same proposal
are serialized by a per-id lock held across the external write, so
duplicated taps inside one process make at most one calendar call.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from opentelemetry import trace

from eventgate.calendar import CalendarWriteClient, CalendarWriteError
from eventgate.core.logging import bind_proposal_context
from eventgate.proposals.channel import (
    ApprovalChannel,
    approved_text,
    expired_text,
    failed_text,
    rejected_text,
    start_passed_text,
)
from eventgate.proposals.events import ProposalEventType, record_proposal_event
from eventgate.proposals.models import (
    ApprovalAction,
    ApprovalMessageHandle,
    EventProposal,
    ProposalStatus,
)
from eventgate.proposals.store import (
    ProposalNotFoundError,
    ProposalStore,
    TransitionConflictError,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("eventgate")

DEFAULT_EXPIRY_WINDOW = timedelta(hours=24)


class OutcomeKind(enum.StrEnum):
    NOT_FOUND = "not_found"
    ALREADY_HANDLED = "already_handled"
    EXPIRED = "expired"
    START_PASSED = "start_passed"
    REJECTED = "rejected"
    APPROVED = "approved"
    FAILED = "failed"


_ACK_TEXT: dict[OutcomeKind, str] = {
    OutcomeKind.NOT_FOUND: "This proposal is no longer available.",
    OutcomeKind.ALREADY_HANDLED: "This proposal was already handled.",
    OutcomeKind.EXPIRED: "This proposal has expired.",
    OutcomeKind.START_PASSED: "The start time has already passed.",
    OutcomeKind.REJECTED: "Skipped.",
    OutcomeKind.APPROVED: "Event created.",
    OutcomeKind.FAILED: "Could not create the event. You can try again.",
}


@dataclass(frozen=True)
class CallbackOutcome:
    """What happened to a callback, plus the ack text for the tapper."""

    kind: OutcomeKind
    proposal: EventProposal | None = None
    error: CalendarWriteError | None = None

    @property
    def ack_text(self) -> str:
        return _ACK_TEXT[self.kind]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CallbackRouter:
    """Dispatches approval callbacks against the proposal lifecycle.

    Parameters
    ----------
    store:
        Proposal persistence with the compare-and-set transition.
    calendar:
        Client that performs the single external write.
    channel:
        Where outcome messages are rendered.
    expiry_window:
        Age after which a pending proposal can no longer be decided.
    clock:
        Returns the current aware time; overridable for tests.
    """

    def __init__(
        self,
        store: ProposalStore,
        calendar: CalendarWriteClient,
        channel: ApprovalChannel,
        *,
        expiry_window: timedelta = DEFAULT_EXPIRY_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._calendar = calendar
        self._channel = channel
        self._expiry_window = expiry_window
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, proposal_id: uuid.UUID) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the event loop.
        lock = self._locks.get(proposal_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[proposal_id] = lock
        return lock

    async def handle(
        self,
        proposal_id: uuid.UUID,
        action: ApprovalAction,
        *,
        message_handle: ApprovalMessageHandle | None = None,
    ) -> CallbackOutcome:
        """Apply *action* to *proposal_id*.

        *message_handle* is the message the tap came from; it is used when
        the stored record has no handle of its own.
        """
        with (
            tracer.start_as_current_span("eventgate.proposal.callback") as span,
            bind_proposal_context(proposal_id),
        ):
            span.set_attribute("proposal.id", str(proposal_id))
            span.set_attribute("proposal.action", action.value)
            async with self._lock_for(proposal_id):
                outcome = await self._handle_locked(proposal_id, action, message_handle)
            span.set_attribute("proposal.outcome", outcome.kind.value)
            logger.info(
                "Handled proposal callback",
                extra={"action": action.value, "outcome": outcome.kind.value},
            )
            return outcome

    async def _handle_locked(
        self,
        proposal_id: uuid.UUID,
        action: ApprovalAction,
        message_handle: ApprovalMessageHandle | None,
    ) -> CallbackOutcome:
        try:
            proposal = await self._store.get(proposal_id)
        except ProposalNotFoundError:
            return CallbackOutcome(OutcomeKind.NOT_FOUND)

        if proposal.status is not ProposalStatus.PENDING:
            return CallbackOutcome(OutcomeKind.ALREADY_HANDLED, proposal)

        handle = proposal.message_handle or message_handle
        now = self._clock()

        if now >= proposal.created_at + self._expiry_window:
            window_hours = int(self._expiry_window.total_seconds() // 3600)
            return await self._close(
                proposal,
                ProposalStatus.EXPIRED,
                OutcomeKind.EXPIRED,
                handle,
                expired_text(proposal, window_hours),
                event_type=ProposalEventType.PROPOSAL_EXPIRED,
                reason="expiry window elapsed before a decision",
            )

        if proposal.start_at <= now:
            return await self._close(
                proposal,
                ProposalStatus.EXPIRED,
                OutcomeKind.START_PASSED,
                handle,
                start_passed_text(proposal),
                event_type=ProposalEventType.PROPOSAL_EXPIRED,
                reason="start time passed before a decision",
            )

        if action is ApprovalAction.REJECT:
            return await self._close(
                proposal,
                ProposalStatus.REJECTED,
                OutcomeKind.REJECTED,
                handle,
                rejected_text(proposal),
                event_type=ProposalEventType.PROPOSAL_REJECTED,
            )

        return await self._approve(proposal, handle)

    async def _close(
        self,
        proposal: EventProposal,
        new_status: ProposalStatus,
        kind: OutcomeKind,
        handle: ApprovalMessageHandle | None,
        outcome_text: str,
        *,
        event_type: ProposalEventType,
        reason: str | None = None,
    ) -> CallbackOutcome:
        """Move *proposal* out of pending without touching the calendar."""
        try:
            updated = await self._store.transition(
                proposal.id,
                ProposalStatus.PENDING,
                new_status,
                resolved_at=self._clock(),
            )
        except TransitionConflictError as exc:
            logger.info(
                "Proposal resolved concurrently",
                extra={"expected": exc.expected.value, "actual": exc.actual.value},
            )
            return CallbackOutcome(OutcomeKind.ALREADY_HANDLED, proposal)

        await record_proposal_event(
            self._store.pool,
            event_type,
            actor="human",
            proposal_id=proposal.id,
            reason=reason,
        )
        if handle is not None:
            await self._channel.resolve(handle, outcome_text)
        return CallbackOutcome(kind, updated)

    async def _approve(
        self, proposal: EventProposal, handle: ApprovalMessageHandle | None
    ) -> CallbackOutcome:
        try:
            created = await self._calendar.create_event(proposal)
        except CalendarWriteError as exc:
            logger.warning(
                "Calendar write failed; proposal stays pending",
                extra={"error_class": exc.error_class, "error": str(exc)},
            )
            metadata: dict[str, Any] = {"error_class": exc.error_class}
            status_code = getattr(exc, "status_code", None)
            if status_code is not None:
                metadata["status_code"] = status_code
            await record_proposal_event(
                self._store.pool,
                ProposalEventType.PROPOSAL_WRITE_FAILED,
                actor="human",
                proposal_id=proposal.id,
                reason=str(exc),
                metadata=metadata,
            )
            if handle is not None:
                await self._channel.resolve(
                    handle,
                    failed_text(proposal, exc.error_class, _human_detail(exc)),
                    retry_actions_for=proposal,
                )
            return CallbackOutcome(OutcomeKind.FAILED, proposal, error=exc)

        try:
            updated = await self._store.transition(
                proposal.id,
                ProposalStatus.PENDING,
                ProposalStatus.APPROVED,
                resolved_at=self._clock(),
                external_event_id=created.external_id,
                external_event_link=created.external_link,
            )
        except TransitionConflictError as exc:
            # Another process resolved the proposal while the write was in flight.
            logger.error(
                "Calendar event created for a proposal that was resolved concurrently",
                extra={
                    "external_event_id": created.external_id,
                    "external_event_link": created.external_link,
                    "actual": exc.actual.value,
                },
            )
            return CallbackOutcome(OutcomeKind.ALREADY_HANDLED, proposal)

        await record_proposal_event(
            self._store.pool,
            ProposalEventType.PROPOSAL_APPROVED,
            actor="human",
            proposal_id=proposal.id,
            metadata={
                "external_event_id": created.external_id,
                "external_event_link": created.external_link,
            },
        )
        if handle is not None:
            await self._channel.resolve(handle, approved_text(updated, created.external_link))
        return CallbackOutcome(OutcomeKind.APPROVED, updated)


def _human_detail(exc: CalendarWriteError) -> str | None:
    """Provider message for API errors; other classes get a generic notice."""
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return None
