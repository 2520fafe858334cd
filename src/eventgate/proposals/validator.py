"""Structural and semantic checks on proposal requests from the agent.

The agent is untrusted, so nothing it sends reaches the store without passing
these rules. Rules run in a fixed order and the first failure wins:

1. title is non-empty
2. start and end parse as ISO-8601 timestamps
3. start is strictly before end
4. start is strictly in the future
5. every attendee looks like an email address
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ValidationRule(enum.StrEnum):
    TITLE_REQUIRED = "title_required"
    TIMESTAMP_FORMAT = "timestamp_format"
    START_BEFORE_END = "start_before_end"
    START_IN_FUTURE = "start_in_future"
    ATTENDEE_EMAIL = "attendee_email"


class ProposalValidationError(ValueError):
    """A proposal request broke one of the validation rules."""

    def __init__(self, rule: ValidationRule, detail: str) -> None:
        self.rule = rule
        self.detail = detail
        super().__init__(f"{rule.value}: {detail}")


class ProposalRequest(BaseModel):
    """Raw proposal request as emitted by the agent.

    Field values are kept as loosely typed as possible; the semantic rules
    live in :func:`validate_proposal_request` so failures are reported in a
    fixed order. Both camelCase and snake_case keys are accepted.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str = ""
    start_time: Any = Field(default=None, validation_alias=AliasChoices("startTime", "start_time"))
    end_time: Any = Field(default=None, validation_alias=AliasChoices("endTime", "end_time"))
    attendees: list[str] = Field(default_factory=list)
    description: str | None = None
    location: str | None = None
    origin_conversation_id: str = Field(
        default="",
        validation_alias=AliasChoices("originConversationId", "origin_conversation_id"),
    )

    @field_validator("title", "origin_conversation_id", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("attendees", mode="before")
    @classmethod
    def _coerce_attendees(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if not isinstance(value, list | tuple):
            raise ValueError("attendees must be a list of email addresses")
        return [str(item) for item in value]


@dataclass
class ProposalCandidate:
    """A request that passed every rule, with timestamps normalised to aware datetimes."""

    title: str
    start_at: datetime
    end_at: datetime
    origin_conversation_id: str
    attendees: list[str] = field(default_factory=list)
    description: str | None = None
    location: str | None = None


def _parse_timestamp(value: Any, tz: ZoneInfo) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def validate_proposal_request(
    request: ProposalRequest,
    *,
    now: datetime | None = None,
    timezone: str = "UTC",
) -> ProposalCandidate:
    """Apply the rules in order and return a normalised candidate.

    Parameters
    ----------
    request:
        The agent's request.
    now:
        Reference time for the future-start rule. Defaults to the current
        UTC time.
    timezone:
        IANA zone attached to timestamps that arrive without an offset.

    Raises
    ------
    ProposalValidationError
        On the first failing rule.
    """
    current = now or datetime.now(UTC)
    tz = ZoneInfo(timezone)

    title = request.title.strip()
    if not title:
        raise ProposalValidationError(ValidationRule.TITLE_REQUIRED, "title must not be empty")

    start_at = _parse_timestamp(request.start_time, tz)
    if start_at is None:
        raise ProposalValidationError(
            ValidationRule.TIMESTAMP_FORMAT,
            f"start time is not an ISO-8601 timestamp: {request.start_time!r}",
        )
    end_at = _parse_timestamp(request.end_time, tz)
    if end_at is None:
        raise ProposalValidationError(
            ValidationRule.TIMESTAMP_FORMAT,
            f"end time is not an ISO-8601 timestamp: {request.end_time!r}",
        )

    if start_at >= end_at:
        raise ProposalValidationError(
            ValidationRule.START_BEFORE_END,
            f"start {start_at.isoformat()} is not before end {end_at.isoformat()}",
        )

    if start_at <= current:
        raise ProposalValidationError(
            ValidationRule.START_IN_FUTURE,
            f"start {start_at.isoformat()} is not in the future",
        )

    attendees = [attendee.strip() for attendee in request.attendees]
    for attendee in attendees:
        if not _EMAIL_PATTERN.match(attendee):
            raise ProposalValidationError(
                ValidationRule.ATTENDEE_EMAIL,
                f"invalid attendee email: {attendee!r}",
            )

    return ProposalCandidate(
        title=title,
        start_at=start_at,
        end_at=end_at,
        origin_conversation_id=request.origin_conversation_id.strip(),
        attendees=attendees,
        description=_clean_optional(request.description),
        location=_clean_optional(request.location),
    )
