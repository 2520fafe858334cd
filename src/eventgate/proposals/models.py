"""Data models for event proposals.

``EventProposal`` maps 1:1 to the ``event_proposals`` table. Includes JSON
serialisation helpers for API responses and database round-tripping.
"""

from __future__ import annotations

import enum
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class ProposalStatus(enum.StrEnum):
    """Lifecycle states of a proposal. Everything except PENDING is terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not ProposalStatus.PENDING


class ApprovalAction(enum.StrEnum):
    """Decisions a human can take on a presented proposal."""

    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class ApprovalMessageHandle:
    """Where the approval message for a proposal was rendered."""

    chat_id: str
    message_id: str


def _parse_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_optional_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    return _parse_datetime(value)


def _parse_attendees(value: Any) -> list[str]:
    """Parse the JSONB attendee list (may arrive as text from asyncpg)."""
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return [str(item) for item in value]


def _row_get(row: Any, key: str) -> Any:
    return row.get(key) if hasattr(row, "get") else row[key]


@dataclass
class EventProposal:
    """A calendar event an agent would like to create, awaiting a human decision.

    Maps 1:1 to the ``event_proposals`` database table.
    """

    id: uuid.UUID
    title: str
    start_at: datetime
    end_at: datetime
    origin_conversation_id: str
    created_at: datetime
    status: ProposalStatus = ProposalStatus.PENDING
    attendees: list[str] = field(default_factory=list)
    description: str | None = None
    location: str | None = None
    message_handle: ApprovalMessageHandle | None = None
    resolved_at: datetime | None = None
    external_event_id: str | None = None
    external_event_link: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-safe dictionary."""
        handle = self.message_handle
        return {
            "id": str(self.id),
            "title": self.title,
            "start_at": self.start_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "attendees": list(self.attendees),
            "description": self.description,
            "location": self.location,
            "origin_conversation_id": self.origin_conversation_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "message_chat_id": handle.chat_id if handle else None,
            "message_id": handle.message_id if handle else None,
            "external_event_id": self.external_event_id,
            "external_event_link": self.external_event_link,
        }

    @classmethod
    def from_row(cls, row: Any) -> EventProposal:
        """Reconstruct an EventProposal from an asyncpg Record or mapping."""
        chat_id = _row_get(row, "message_chat_id")
        message_id = _row_get(row, "message_id")
        handle = (
            ApprovalMessageHandle(chat_id=str(chat_id), message_id=str(message_id))
            if chat_id is not None and message_id is not None
            else None
        )
        return cls(
            id=_parse_uuid(row["id"]),
            title=row["title"],
            start_at=_parse_datetime(row["start_at"]),
            end_at=_parse_datetime(row["end_at"]),
            attendees=_parse_attendees(_row_get(row, "attendees")),
            description=_row_get(row, "description"),
            location=_row_get(row, "location"),
            origin_conversation_id=row["origin_conversation_id"],
            status=ProposalStatus(row["status"]),
            created_at=_parse_datetime(row["created_at"]),
            resolved_at=_parse_optional_datetime(_row_get(row, "resolved_at")),
            message_handle=handle,
            external_event_id=_row_get(row, "external_event_id"),
            external_event_link=_row_get(row, "external_event_link"),
        )
