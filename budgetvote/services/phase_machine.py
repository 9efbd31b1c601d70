from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from budgetvote.models.proposal import Proposal, ProposalStatus
from budgetvote.models.session import (
    SessionPhase,
    SessionStatus,
    SessionType,
    VotingSession,
)
from budgetvote.utils.timeutils import utc_now

from .errors import InvalidTransition

logger = logging.getLogger(__name__)


class SessionPhaseMachine:
    """
    draft -> active(phase1) -> active(phase2) -> closed

    Budget sessions skip phase1. Closed is terminal. Every method mutates the
    given session in memory; committing is up to the caller.
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def describe(session: VotingSession) -> str:
        if session.status == SessionStatus.ACTIVE.value:
            return f"active({session.phase})"
        return session.status

    def activate(
        self, session: VotingSession, now: Optional[datetime] = None
    ) -> VotingSession:
        if session.status != SessionStatus.DRAFT.value:
            raise InvalidTransition(
                session.session_id, self.describe(session), "activate"
            )
        moment = now or utc_now()
        session.status = SessionStatus.ACTIVE.value
        session.start_date = moment
        if session.session_type == SessionType.BUDGET.value:
            session.phase = SessionPhase.PHASE2.value
            session.phase2_start_time = moment
        else:
            session.phase = SessionPhase.PHASE1.value
        logger.info(
            "Session %s activated into %s", session.session_id, session.phase
        )
        return session

    def advance_to_phase2(
        self,
        session: VotingSession,
        top_proposal_ids: Optional[Iterable[int]] = None,
        now: Optional[datetime] = None,
    ) -> VotingSession:
        """
        Move a proposal session into final voting.

        The chosen proposals become the top tier; without a selection every
        active proposal does.
        """
        if (
            session.status != SessionStatus.ACTIVE.value
            or session.phase != SessionPhase.PHASE1.value
        ):
            raise InvalidTransition(
                session.session_id, self.describe(session), "advance"
            )

        query = self.db.query(Proposal).filter(
            Proposal.session_id == session.session_id,
            Proposal.status == ProposalStatus.ACTIVE.value,
        )
        if top_proposal_ids is not None:
            query = query.filter(Proposal.proposal_id.in_(list(top_proposal_ids)))
        promoted = 0
        for proposal in query.all():
            proposal.status = ProposalStatus.TOP.value
            promoted += 1

        session.phase = SessionPhase.PHASE2.value
        session.phase2_start_time = now or utc_now()
        logger.info(
            "Session %s advanced to phase2 with %d top proposal(s)",
            session.session_id,
            promoted,
        )
        return session

    def ensure_closable(self, session: VotingSession) -> None:
        if session.status != SessionStatus.ACTIVE.value:
            raise InvalidTransition(
                session.session_id, self.describe(session), "close"
            )

    def mark_closed(
        self, session: VotingSession, now: Optional[datetime] = None
    ) -> VotingSession:
        self.ensure_closable(session)
        session.status = SessionStatus.CLOSED.value
        session.phase = SessionPhase.CLOSED.value
        session.end_date = now or utc_now()
        session.phase2_termination_scheduled = None
        return session
