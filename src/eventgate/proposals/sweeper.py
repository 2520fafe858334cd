"""Periodic expiry of proposals nobody decided on.

Expiry is also enforced lazily when a stale proposal is tapped; the sweeper
only makes sure stale rows do not sit in ``pending`` forever. It never edits
chat messages: a late tap on a swept proposal gets "already handled".
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from eventgate.proposals.events import ProposalEventType, record_proposal_event
from eventgate.proposals.models import ProposalStatus
from eventgate.proposals.store import ProposalStore, TransitionConflictError

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 3600


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ExpirySweeper:
    """Moves pending proposals older than the expiry window to ``expired``."""

    def __init__(
        self,
        store: ProposalStore,
        *,
        expiry_window: timedelta = timedelta(hours=24),
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._expiry_window = expiry_window
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None

    async def sweep_once(self) -> list[uuid.UUID]:
        """Expire every overdue pending proposal and return the ids that changed."""
        now = self._clock()
        overdue = await self._store.list_overdue_pending(now - self._expiry_window)

        expired_ids: list[uuid.UUID] = []
        for proposal in overdue:
            try:
                await self._store.transition(
                    proposal.id,
                    ProposalStatus.PENDING,
                    ProposalStatus.EXPIRED,
                    resolved_at=now,
                )
            except TransitionConflictError:
                # A callback got there first.
                continue
            expired_ids.append(proposal.id)
            try:
                await record_proposal_event(
                    self._store.pool,
                    ProposalEventType.PROPOSAL_EXPIRED,
                    actor="system:expiry",
                    proposal_id=proposal.id,
                    reason="expiry window elapsed before a decision",
                    occurred_at=now,
                )
            except Exception:
                # The row is already expired; keep sweeping the batch.
                logger.exception(
                    "Failed to record expiry audit event",
                    extra={"proposal_id": str(proposal.id)},
                )

        if expired_ids:
            logger.info("Expired stale proposals", extra={"expired_count": len(expired_ids)})
        return expired_ids

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error sweeping expired proposals")

            await asyncio.sleep(self._interval_seconds)
