"""Shared fixtures for the eventgate test suite.

``MockProposalPool`` interprets the handful of SQL statements issued by
:class:`eventgate.proposals.store.ProposalStore` against in-memory dicts.
Each coroutine completes without yielding to the event loop, so every
statement is atomic, like a single Postgres statement.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import asyncpg
import pytest

from eventgate.proposals.models import EventProposal, ProposalStatus

BASE_TIME = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock for components that accept ``clock=``."""

    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class MockProposalPool:
    """In-memory stand-in for an asyncpg pool holding the proposal tables."""

    def __init__(self) -> None:
        self.proposals: dict[uuid.UUID, dict[str, Any]] = {}
        self.events: list[dict[str, Any]] = []
        self.transition_calls: int = 0

    def seed(self, proposal: EventProposal) -> None:
        self.proposals[proposal.id] = {
            "id": proposal.id,
            "title": proposal.title,
            "start_at": proposal.start_at,
            "end_at": proposal.end_at,
            "attendees": json.dumps(proposal.attendees),
            "description": proposal.description,
            "location": proposal.location,
            "origin_conversation_id": proposal.origin_conversation_id,
            "status": proposal.status.value,
            "message_chat_id": proposal.message_handle.chat_id if proposal.message_handle else None,
            "message_id": proposal.message_handle.message_id if proposal.message_handle else None,
            "external_event_id": proposal.external_event_id,
            "external_event_link": proposal.external_event_link,
            "created_at": proposal.created_at,
            "resolved_at": proposal.resolved_at,
        }

    def status_of(self, proposal_id: uuid.UUID) -> str:
        return self.proposals[proposal_id]["status"]

    def event_types(self, proposal_id: uuid.UUID | None = None) -> list[str]:
        return [
            event["event_type"]
            for event in self.events
            if proposal_id is None or event["proposal_id"] == proposal_id
        ]

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        if query.startswith("INSERT INTO event_proposals"):
            proposal_id = args[0]
            if proposal_id in self.proposals:
                raise asyncpg.UniqueViolationError(
                    'duplicate key value violates unique constraint "event_proposals_pkey"'
                )
            row = {
                "id": proposal_id,
                "title": args[1],
                "start_at": args[2],
                "end_at": args[3],
                "attendees": args[4],
                "description": args[5],
                "location": args[6],
                "origin_conversation_id": args[7],
                "status": args[8],
                "created_at": args[9],
                "message_chat_id": None,
                "message_id": None,
                "external_event_id": None,
                "external_event_link": None,
                "resolved_at": None,
            }
            self.proposals[proposal_id] = row
            return dict(row)

        if query.startswith("SELECT * FROM event_proposals WHERE id = $1"):
            row = self.proposals.get(args[0])
            return dict(row) if row is not None else None

        if query.startswith("UPDATE event_proposals SET status"):
            self.transition_calls += 1
            new_status, resolved_at, external_id, external_link, proposal_id, expected = args
            row = self.proposals.get(proposal_id)
            if row is None or row["status"] != expected:
                return None
            row["status"] = new_status
            row["resolved_at"] = resolved_at
            if external_id is not None:
                row["external_event_id"] = external_id
            if external_link is not None:
                row["external_event_link"] = external_link
            return dict(row)

        raise AssertionError(f"Unexpected fetchrow query: {query}")

    async def fetchval(self, query: str, *args: Any) -> Any:
        if query.startswith("SELECT status FROM event_proposals"):
            row = self.proposals.get(args[0])
            return row["status"] if row is not None else None

        if query.startswith("UPDATE event_proposals SET message_chat_id"):
            chat_id, message_id, proposal_id, expected = args
            row = self.proposals.get(proposal_id)
            if row is None or row["status"] != expected:
                return None
            row["message_chat_id"] = chat_id
            row["message_id"] = message_id
            return proposal_id

        raise AssertionError(f"Unexpected fetchval query: {query}")

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        if "FROM event_proposals" in query and "created_at <= $2" in query:
            status, cutoff = args
            rows = [
                dict(row)
                for row in self.proposals.values()
                if row["status"] == status and row["created_at"] <= cutoff
            ]
            return sorted(rows, key=lambda row: row["created_at"])

        raise AssertionError(f"Unexpected fetch query: {query}")

    async def execute(self, query: str, *args: Any) -> str:
        if query.startswith("INSERT INTO proposal_events"):
            self.events.append(
                {
                    "event_type": args[0],
                    "proposal_id": args[1],
                    "actor": args[2],
                    "reason": args[3],
                    "event_metadata": json.loads(args[4]),
                    "occurred_at": args[5],
                }
            )
            return "INSERT 0 1"

        raise AssertionError(f"Unexpected execute query: {query}")


def build_proposal(**overrides: Any) -> EventProposal:
    """A pending proposal created at BASE_TIME, starting two days later."""
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "title": "Dinner with Alex",
        "start_at": BASE_TIME + timedelta(days=2),
        "end_at": BASE_TIME + timedelta(days=2, hours=2),
        "attendees": ["alex@example.com"],
        "description": "Booked at the usual place",
        "location": "Bistro 42",
        "origin_conversation_id": "tg:1001",
        "created_at": BASE_TIME,
        "status": ProposalStatus.PENDING,
    }
    values.update(overrides)
    return EventProposal(**values)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def mock_pool() -> MockProposalPool:
    return MockProposalPool()


@pytest.fixture
def proposal_factory():
    return build_proposal
