"""Pydantic response models for the eventgate HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from eventgate.proposals.models import EventProposal


class ApiMeta(BaseModel):
    """Extensible metadata bag attached to every API response."""

    model_config = {"extra": "allow"}


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Generic wrapper: ``{"data": T, "meta": {...}}``."""

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class AcceptedResponse(BaseModel):
    """Answer to every ingestion request, whatever happened to the proposal."""

    status: str = "accepted"


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str


class ProposalResponse(BaseModel):
    id: str
    title: str
    start_at: datetime
    end_at: datetime
    attendees: list[str] = Field(default_factory=list)
    description: str | None = None
    location: str | None = None
    origin_conversation_id: str
    status: str
    created_at: datetime
    resolved_at: datetime | None = None
    external_event_id: str | None = None
    external_event_link: str | None = None

    @classmethod
    def from_proposal(cls, proposal: EventProposal) -> ProposalResponse:
        data: dict[str, Any] = proposal.to_dict()
        data.pop("message_chat_id", None)
        data.pop("message_id", None)
        return cls.model_validate(data)
