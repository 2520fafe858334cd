"""Event proposal lifecycle: validation, persistence, approval and expiry."""

from eventgate.proposals.models import (
    ApprovalAction,
    ApprovalMessageHandle,
    EventProposal,
    ProposalStatus,
)
from eventgate.proposals.store import (
    DuplicateProposalError,
    InvalidTransitionError,
    ProposalNotFoundError,
    ProposalStore,
    TransitionConflictError,
)

__all__ = [
    "ApprovalAction",
    "ApprovalMessageHandle",
    "DuplicateProposalError",
    "EventProposal",
    "InvalidTransitionError",
    "ProposalNotFoundError",
    "ProposalStatus",
    "ProposalStore",
    "TransitionConflictError",
]
