from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    func,
)

from ..database import Base


def generate_vote_id() -> str:
    return str(uuid4())


class BudgetVote(Base):
    __tablename__ = "budget_votes"
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_budget_vote_participant"),
    )

    vote_id = Column(String(36), primary_key=True, default=generate_vote_id)
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
    allocations = Column(JSON, nullable=False, default=list)
    income_allocations = Column(JSON, nullable=False, default=list)
    total_expenses = Column(Integer, nullable=False, default=0)
    total_income = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class BudgetResult(Base):
    __tablename__ = "budget_results"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        String(64),
        ForeignKey("voting_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    median_allocations = Column(JSON, nullable=False, default=list)
    median_income_allocations = Column(JSON, nullable=False, default=list)
    total_median_expenses = Column(Float, nullable=False, default=0.0)
    total_median_income = Column(Float, nullable=False, default=0.0)
    balanced_expenses = Column(Float, nullable=False, default=0.0)
    voter_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
