"""Fakes for the router, sweeper and ingestor tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from eventgate.calendar import CalendarWriteError, CreatedEvent
from eventgate.proposals.channel import ApprovalChannel
from eventgate.proposals.models import ApprovalMessageHandle, EventProposal
from eventgate.proposals.store import ProposalStore


@dataclass
class ResolvedMessage:
    handle: ApprovalMessageHandle
    text: str
    retry_actions_for: EventProposal | None


class RecordingChannel(ApprovalChannel):
    """Channel that records every call instead of talking to a chat service."""

    def __init__(self, *, present_result: ApprovalMessageHandle | None = None) -> None:
        self.present_result = present_result
        self.presented: list[EventProposal] = []
        self.resolved: list[ResolvedMessage] = []
        self.acknowledged: list[tuple[str, str]] = []

    async def present(self, proposal: EventProposal) -> ApprovalMessageHandle | None:
        self.presented.append(proposal)
        return self.present_result

    async def resolve(
        self,
        handle: ApprovalMessageHandle,
        outcome_text: str,
        *,
        retry_actions_for: EventProposal | None = None,
    ) -> bool:
        self.resolved.append(ResolvedMessage(handle, outcome_text, retry_actions_for))
        return True

    async def acknowledge(self, callback_id: str, text: str) -> None:
        self.acknowledged.append((callback_id, text))


@dataclass
class FakeCalendar:
    """Stands in for CalendarWriteClient.create_event.

    ``delay`` yields to the event loop mid-write so concurrent callers
    actually interleave. ``errors`` are raised in order before any success.
    """

    delay: float = 0.0
    errors: list[CalendarWriteError] = field(default_factory=list)
    calls: list[EventProposal] = field(default_factory=list)

    async def create_event(self, proposal: EventProposal) -> CreatedEvent:
        self.calls.append(proposal)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        n = len(self.calls)
        return CreatedEvent(
            external_id=f"evt-{n}",
            external_link=f"https://calendar.google.com/event?eid=evt-{n}",
        )


HANDLE = ApprovalMessageHandle(chat_id="1001", message_id="77")


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel(present_result=HANDLE)


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def store(mock_pool) -> ProposalStore:
    return ProposalStore(mock_pool)


@pytest.fixture
def seed_proposal(mock_pool, proposal_factory):
    """Store a proposal (presented by default) directly in the mock pool."""

    def _seed(**overrides: Any) -> EventProposal:
        overrides.setdefault("message_handle", HANDLE)
        proposal = proposal_factory(**overrides)
        mock_pool.seed(proposal)
        return proposal

    return _seed
