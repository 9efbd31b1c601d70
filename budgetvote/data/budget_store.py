from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from fastapi import Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.budget import BudgetResult, BudgetVote
from ..services.budget_tree import Ballot

_log = logging.getLogger(__name__)


def ballot_from_vote(vote: BudgetVote) -> Ballot:
    return Ballot(
        allocations=list(vote.allocations or []),
        income_allocations=list(vote.income_allocations or []),
    )


class VoteStore:
    """Budget votes (one per participant and session) and their results."""

    def __init__(self, db: Session, logger: Optional[Callable[[str], None]] = None):
        self.db = db
        self.logger = logger or _log.debug

    # Votes

    def get_vote(self, session_id: str, user_id: str) -> Optional[BudgetVote]:
        return (
            self.db.query(BudgetVote)
            .filter(BudgetVote.session_id == session_id, BudgetVote.user_id == user_id)
            .first()
        )

    def list_votes(self, session_id: str) -> List[BudgetVote]:
        return (
            self.db.query(BudgetVote)
            .filter(BudgetVote.session_id == session_id)
            .order_by(BudgetVote.created_at, BudgetVote.vote_id)
            .all()
        )

    def list_ballots(self, session_id: str) -> List[Ballot]:
        return [ballot_from_vote(vote) for vote in self.list_votes(session_id)]

    def voter_ids(self, session_id: str) -> List[str]:
        rows = (
            self.db.query(BudgetVote.user_id)
            .filter(BudgetVote.session_id == session_id)
            .all()
        )
        return sorted(row[0] for row in rows)

    @staticmethod
    def _apply(
        vote: BudgetVote,
        allocations: Sequence[Dict[str, Any]],
        income_allocations: Sequence[Dict[str, Any]],
        total_expenses: int,
        total_income: int,
    ) -> None:
        vote.allocations = list(allocations)
        vote.income_allocations = list(income_allocations)
        vote.total_expenses = int(total_expenses)
        vote.total_income = int(total_income)

    def upsert_vote(
        self,
        session_id: str,
        user_id: str,
        allocations: Sequence[Dict[str, Any]],
        income_allocations: Sequence[Dict[str, Any]],
        total_expenses: int,
        total_income: int,
    ) -> BudgetVote:
        """
        Store the participant's vote, replacing any previous one.

        Two concurrent first submissions race on the unique constraint; the
        loser rolls back and overwrites the winner's row instead.
        """
        existing = self.get_vote(session_id, user_id)
        if existing is not None:
            self._apply(
                existing, allocations, income_allocations, total_expenses, total_income
            )
            self.db.commit()
            self.db.refresh(existing)
            self.logger(f"upsert_vote: replaced vote of {user_id} in {session_id}")
            return existing

        vote = BudgetVote(session_id=session_id, user_id=user_id)
        self._apply(vote, allocations, income_allocations, total_expenses, total_income)
        self.db.add(vote)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            self.logger(
                f"upsert_vote: concurrent insert for {user_id} in {session_id}, updating"
            )
            existing = self.get_vote(session_id, user_id)
            if existing is None:
                raise
            self._apply(
                existing, allocations, income_allocations, total_expenses, total_income
            )
            self.db.commit()
            vote = existing
        self.db.refresh(vote)
        self.logger(f"upsert_vote: stored vote of {user_id} in {session_id}")
        return vote

    # Results

    def get_result(self, session_id: str) -> Optional[BudgetResult]:
        return (
            self.db.query(BudgetResult)
            .filter(BudgetResult.session_id == session_id)
            .first()
        )

    def add_result(self, session_id: str, payload: Dict[str, Any]) -> BudgetResult:
        """Stage a result row in the current transaction without committing."""
        result = BudgetResult(
            session_id=session_id,
            median_allocations=payload["medianAllocations"],
            median_income_allocations=payload["medianIncomeAllocations"],
            total_median_expenses=payload["totalMedianExpenses"],
            total_median_income=payload["totalMedianIncome"],
            balanced_expenses=payload["balancedExpenses"],
            voter_count=payload["voterCount"],
        )
        self.db.add(result)
        self.db.flush()
        return result

    def save_result(self, session_id: str, payload: Dict[str, Any]) -> BudgetResult:
        """Persist a result once; a concurrent writer's row wins and is returned."""
        try:
            result = self.add_result(session_id, payload)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            result = self.get_result(session_id)
            if result is None:
                raise
            self.logger(f"save_result: reusing concurrent result for {session_id}")
            return result
        self.db.refresh(result)
        return result

    def delete_result(self, session_id: str) -> bool:
        deleted = (
            self.db.query(BudgetResult)
            .filter(BudgetResult.session_id == session_id)
            .delete(synchronize_session=False)
        )
        return bool(deleted)


def result_payload(result: BudgetResult) -> Dict[str, Any]:
    return {
        "sessionId": result.session_id,
        "medianAllocations": result.median_allocations,
        "medianIncomeAllocations": result.median_income_allocations,
        "totalMedianExpenses": result.total_median_expenses,
        "totalMedianIncome": result.total_median_income,
        "balancedExpenses": result.balanced_expenses,
        "voterCount": result.voter_count,
    }


def get_vote_store(db: Session = Depends(get_db)) -> VoteStore:
    """Dependency provider for VoteStore."""
    return VoteStore(db=db)
