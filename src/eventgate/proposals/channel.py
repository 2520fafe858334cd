"""Approval channel contract and the channel-neutral pieces around it.

A channel renders a proposal as an interactive message with two actions,
later replaces that message with the outcome, and answers the tap itself
with a short acknowledgment. Callback payloads have the shape
``event:<action>:<proposal-id>``.
"""

from __future__ import annotations

import abc
import logging
import uuid

from eventgate.proposals.models import ApprovalAction, ApprovalMessageHandle, EventProposal

logger = logging.getLogger(__name__)

CALLBACK_PREFIX = "event"


class ApprovalChannel(abc.ABC):
    """Human-facing surface for proposal decisions."""

    @abc.abstractmethod
    async def present(self, proposal: EventProposal) -> ApprovalMessageHandle | None:
        """Render *proposal* with approve/reject actions.

        Returns ``None`` when delivery failed; the failure is logged and the
        proposal simply stays pending until it expires.
        """
        ...

    @abc.abstractmethod
    async def resolve(
        self,
        handle: ApprovalMessageHandle,
        outcome_text: str,
        *,
        retry_actions_for: EventProposal | None = None,
    ) -> bool:
        """Replace the message with *outcome_text* and remove its actions.

        When *retry_actions_for* is given the approve/reject actions for that
        proposal are attached again so the human can retry.
        """
        ...

    @abc.abstractmethod
    async def acknowledge(self, callback_id: str, text: str) -> None:
        """Show a one-shot acknowledgment to whoever tapped the action."""
        ...


def build_callback_data(action: ApprovalAction, proposal_id: uuid.UUID) -> str:
    return f"{CALLBACK_PREFIX}:{action.value}:{proposal_id}"


def parse_callback_data(data: str | None) -> tuple[uuid.UUID, ApprovalAction] | None:
    """Decode ``event:<action>:<id>``; anything else yields ``None``."""
    if not data:
        return None
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != CALLBACK_PREFIX:
        return None
    _, tag, raw_id = parts
    try:
        action = ApprovalAction(tag)
    except ValueError:
        logger.debug("Ignoring callback with unknown action tag", extra={"tag": tag})
        return None
    try:
        proposal_id = uuid.UUID(raw_id)
    except ValueError:
        logger.debug("Ignoring callback with malformed proposal id", extra={"raw_id": raw_id})
        return None
    return proposal_id, action


# ---------------------------------------------------------------------------
# Outcome texts (plain text, shown in place of the original message)
# ---------------------------------------------------------------------------


def approved_text(proposal: EventProposal, link: str | None) -> str:
    text = f"✅ Event created: {proposal.title}"
    if link:
        text += f"\n{link}"
    return text


def rejected_text(proposal: EventProposal) -> str:
    return f"❌ Skipped: {proposal.title}"


def expired_text(proposal: EventProposal, window_hours: int = 24) -> str:
    return f"⌛ Expired: {proposal.title}\nNo decision was made within {window_hours} hours."


def start_passed_text(proposal: EventProposal) -> str:
    return f"⌛ Not created: {proposal.title}\nThe start time has already passed."


def failed_text(proposal: EventProposal, error_class: str, detail: str | None = None) -> str:
    text = f"⚠️ Could not create {proposal.title} ({error_class} error)."
    if detail:
        text += f"\n{detail}"
    text += "\nThe proposal is still open. Tap Create to try again."
    return text
