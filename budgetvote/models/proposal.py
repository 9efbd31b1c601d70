from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base


class ProposalStatus(str, Enum):
    ACTIVE = "active"
    TOP = "top"
    ARCHIVED = "archived"


class BallotChoice(str, Enum):
    YES = "yes"
    NO = "no"


class Proposal(Base):
    __tablename__ = "proposals"

    proposal_id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        String(64),
        ForeignKey("voting_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(200), nullable=False)
    problem = Column(Text, nullable=False, default="")
    solution = Column(Text, nullable=False, default="")
    author_id = Column(String(36), ForeignKey("users.user_id"), nullable=True)
    author_name = Column(String, nullable=False)
    status = Column(String(16), nullable=False, default=ProposalStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("VotingSession", back_populates="proposals")


class FinalVote(Base):
    __tablename__ = "final_votes"
    # One ballot per participant per session.
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_final_vote_ballot"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        String(64),
        ForeignKey("voting_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    proposal_id = Column(
        Integer,
        ForeignKey("proposals.proposal_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        String(36),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    choice = Column(String(3), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ArchivedWinner(Base):
    __tablename__ = "archived_winners"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        String(64),
        ForeignKey("voting_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    proposal_id = Column(Integer, nullable=False)
    title = Column(String(200), nullable=False)
    problem = Column(Text, nullable=False, default="")
    solution = Column(Text, nullable=False, default="")
    author_name = Column(String, nullable=False)
    yes_votes = Column(Integer, nullable=False)
    no_votes = Column(Integer, nullable=False)
    archived_at = Column(DateTime(timezone=True), server_default=func.now())
