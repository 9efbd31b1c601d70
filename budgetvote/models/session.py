from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class SessionStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class SessionPhase(str, Enum):
    PHASE1 = "phase1"
    PHASE2 = "phase2"
    CLOSED = "closed"


class SessionType(str, Enum):
    BUDGET = "budget"
    PROPOSAL = "proposal"


class VotingSession(Base):
    __tablename__ = "voting_sessions"

    session_id = Column(String(64), primary_key=True, index=True)
    session_type = Column(String(16), nullable=False, default=SessionType.BUDGET.value)
    name = Column(String(200), nullable=False)
    municipality = Column(String(100), nullable=True)
    total_budget = Column(Integer, nullable=True)
    status = Column(
        String(16), nullable=False, default=SessionStatus.DRAFT.value, index=True
    )
    phase = Column(
        String(16), nullable=False, default=SessionPhase.PHASE1.value, index=True
    )
    # Expense and income definitions, see services.budget_tree for the shape.
    categories = Column(JSON, nullable=False, default=list)
    income_categories = Column(JSON, nullable=False, default=list)
    single_result = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(36), ForeignKey("users.user_id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    start_date = Column(DateTime(timezone=True), nullable=True)
    phase2_start_time = Column(DateTime(timezone=True), nullable=True)
    phase2_termination_scheduled = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    participant_links = relationship(
        "SessionParticipant",
        back_populates="session",
        cascade="all, delete-orphan",
    )
    proposals = relationship(
        "Proposal",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="Proposal.proposal_id",
    )

    @property
    def active_participant_ids(self) -> list[str]:
        return sorted(link.user_id for link in self.participant_links or [])

    @property
    def is_budget(self) -> bool:
        return self.session_type == SessionType.BUDGET.value


class SessionParticipant(Base):
    __tablename__ = "session_participants"
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_participant"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        String(64),
        ForeignKey("voting_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        String(36),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("VotingSession", back_populates="participant_links")
