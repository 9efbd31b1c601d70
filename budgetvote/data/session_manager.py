from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from fastapi import Depends
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.proposal import (
    ArchivedWinner,
    BallotChoice,
    FinalVote,
    Proposal,
    ProposalStatus,
)
from ..models.session import (
    SessionParticipant,
    SessionPhase,
    SessionStatus,
    SessionType,
    VotingSession,
)
from ..models.user import User
from ..services.errors import DuplicateBallot, NotFoundError, SessionNotActive
from ..utils.identifiers import generate_session_id
from ..utils.timeutils import utc_now

_log = logging.getLogger(__name__)


class SessionManager:
    """Voting sessions, their participants, proposals and final ballots."""

    def __init__(self, db: Session, logger: Optional[Callable[[str], None]] = None):
        self.db = db
        self.logger = logger or _log.debug

    # Sessions

    def create_session(
        self,
        *,
        name: str,
        session_type: str = SessionType.BUDGET.value,
        municipality: Optional[str] = None,
        total_budget: Optional[int] = None,
        categories: Optional[Sequence[Dict[str, Any]]] = None,
        income_categories: Optional[Sequence[Dict[str, Any]]] = None,
        single_result: bool = False,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VotingSession:
        moment = now or utc_now()
        session = VotingSession(
            session_id=generate_session_id(self.db, name, municipality, moment),
            session_type=session_type,
            name=name,
            municipality=municipality,
            total_budget=total_budget,
            status=SessionStatus.DRAFT.value,
            phase=SessionPhase.PHASE1.value,
            categories=list(categories or []),
            income_categories=list(income_categories or []),
            single_result=single_result,
            created_by=created_by,
            created_at=moment,
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        _log.info(
            "Created %s session %s (%s)", session_type, session.session_id, name
        )
        return session

    def get_session(self, session_id: str) -> Optional[VotingSession]:
        return (
            self.db.query(VotingSession)
            .filter(VotingSession.session_id == session_id)
            .first()
        )

    def require_session(self, session_id: str) -> VotingSession:
        session = self.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def list_sessions(self, status: Optional[str] = None) -> List[VotingSession]:
        query = self.db.query(VotingSession)
        if status:
            query = query.filter(VotingSession.status == status)
        return query.order_by(VotingSession.created_at.desc()).all()

    # Participants

    def is_participant(self, session_id: str, user_id: str) -> bool:
        return (
            self.db.query(SessionParticipant.id)
            .filter(
                SessionParticipant.session_id == session_id,
                SessionParticipant.user_id == user_id,
            )
            .first()
            is not None
        )

    def join(self, session: VotingSession, user_id: str) -> bool:
        """Register a participant. Returns False when they already joined."""
        if session.status != SessionStatus.ACTIVE.value:
            raise SessionNotActive(session.session_id, session.status, session.phase)
        if self.is_participant(session.session_id, user_id):
            return False
        self.db.add(SessionParticipant(session_id=session.session_id, user_id=user_id))
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent join of the same user landed first.
            self.db.rollback()
            return False
        self.logger(f"join: {user_id} joined {session.session_id}")
        return True

    def participant_ids(self, session_id: str) -> List[str]:
        rows = (
            self.db.query(SessionParticipant.user_id)
            .filter(SessionParticipant.session_id == session_id)
            .all()
        )
        return sorted(row[0] for row in rows)

    # Proposals

    def add_proposal(
        self,
        session: VotingSession,
        author: User,
        *,
        title: str,
        problem: str = "",
        solution: str = "",
    ) -> Proposal:
        if (
            session.status != SessionStatus.ACTIVE.value
            or session.phase != SessionPhase.PHASE1.value
        ):
            raise SessionNotActive(session.session_id, session.status, session.phase)
        proposal = Proposal(
            session_id=session.session_id,
            title=title,
            problem=problem,
            solution=solution,
            author_id=author.user_id,
            author_name=author.display_name or author.login,
            status=ProposalStatus.ACTIVE.value,
        )
        self.db.add(proposal)
        self.db.commit()
        self.db.refresh(proposal)
        return proposal

    def list_proposals(
        self, session_id: str, status: Optional[str] = None
    ) -> List[Proposal]:
        query = self.db.query(Proposal).filter(Proposal.session_id == session_id)
        if status:
            query = query.filter(Proposal.status == status)
        return query.order_by(Proposal.proposal_id).all()

    # Final votes

    def cast_final_vote(
        self,
        session: VotingSession,
        user_id: str,
        proposal_id: int,
        choice: str,
    ) -> FinalVote:
        """
        Record the participant's single ballot of the session.

        Voting makes the caller a participant if they had not joined yet.
        """
        if (
            session.status != SessionStatus.ACTIVE.value
            or session.phase != SessionPhase.PHASE2.value
        ):
            raise SessionNotActive(session.session_id, session.status, session.phase)
        proposal = (
            self.db.query(Proposal)
            .filter(
                Proposal.session_id == session.session_id,
                Proposal.proposal_id == proposal_id,
                Proposal.status == ProposalStatus.TOP.value,
            )
            .first()
        )
        if proposal is None:
            raise NotFoundError("Proposal", str(proposal_id))
        if self.has_final_vote(session.session_id, user_id):
            raise DuplicateBallot(session.session_id, user_id)

        ballot = FinalVote(
            session_id=session.session_id,
            proposal_id=proposal.proposal_id,
            user_id=user_id,
            choice=BallotChoice(choice).value,
        )
        self.db.add(ballot)
        if not self.is_participant(session.session_id, user_id):
            self.db.add(
                SessionParticipant(session_id=session.session_id, user_id=user_id)
            )
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateBallot(session.session_id, user_id) from exc
        self.db.refresh(ballot)
        self.logger(
            f"cast_final_vote: {user_id} voted {choice} on {proposal_id} "
            f"in {session.session_id}"
        )
        return ballot

    def has_final_vote(self, session_id: str, user_id: str) -> bool:
        return (
            self.db.query(FinalVote.id)
            .filter(FinalVote.session_id == session_id, FinalVote.user_id == user_id)
            .first()
            is not None
        )

    def final_voter_ids(self, session_id: str) -> List[str]:
        rows = (
            self.db.query(FinalVote.user_id)
            .filter(FinalVote.session_id == session_id)
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    def tally(self, session_id: str) -> Dict[int, Dict[str, int]]:
        """Yes/no counts per proposal that received at least one ballot."""
        rows = (
            self.db.query(FinalVote.proposal_id, FinalVote.choice, func.count(FinalVote.id))
            .filter(FinalVote.session_id == session_id)
            .group_by(FinalVote.proposal_id, FinalVote.choice)
            .all()
        )
        counts: Dict[int, Dict[str, int]] = {}
        for proposal_id, choice, total in rows:
            bucket = counts.setdefault(proposal_id, {"yes": 0, "no": 0})
            bucket[choice] = int(total)
        return counts

    def list_winners(self, session_id: str) -> List[ArchivedWinner]:
        return (
            self.db.query(ArchivedWinner)
            .filter(ArchivedWinner.session_id == session_id)
            .order_by(ArchivedWinner.id)
            .all()
        )


def get_session_manager(db: Session = Depends(get_db)) -> SessionManager:
    """Dependency provider for SessionManager."""
    return SessionManager(db=db)
