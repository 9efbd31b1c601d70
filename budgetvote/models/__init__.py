# Import models to make them accessible via budgetvote.models
# and ensure they are registered with SQLAlchemy's Base metadata
from .user import User, UserRole
from .session import (
    SessionParticipant,
    SessionPhase,
    SessionStatus,
    SessionType,
    VotingSession,
)
from .budget import BudgetResult, BudgetVote
from .proposal import ArchivedWinner, BallotChoice, FinalVote, Proposal, ProposalStatus

__all__ = [
    "User",
    "UserRole",
    "VotingSession",
    "SessionParticipant",
    "SessionStatus",
    "SessionPhase",
    "SessionType",
    "BudgetVote",
    "BudgetResult",
    "Proposal",
    "ProposalStatus",
    "FinalVote",
    "BallotChoice",
    "ArchivedWinner",
]
