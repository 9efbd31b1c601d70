"""
Exactly-once closing of voting sessions.

A close is announced by storing ``phase2_termination_scheduled`` and carried
out by whichever request first clears that timestamp with a conditional
UPDATE (compare-and-clear). Pollers and inline triggers race freely; the
affected-row count tells the single winner apart from everybody else.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from budgetvote.config.loader import VotingSettings
from budgetvote.data.budget_store import VoteStore
from budgetvote.data.session_manager import SessionManager
from budgetvote.models.session import SessionPhase, SessionStatus, VotingSession
from budgetvote.utils.timeutils import as_utc, isoformat, utc_now

from .errors import AlreadyClaimed, InvalidTransition, NotFoundError
from .phase_machine import SessionPhaseMachine
from .session_close import SessionCloser

logger = logging.getLogger(__name__)

NO_PENDING_MESSAGE = "No pending termination"
ALREADY_EXECUTED_MESSAGE = "Termination already executed by another request"


def _seconds_until(target: datetime, now: datetime) -> int:
    return max(0, math.floor((target - now).total_seconds()))


def _active_phase2(query):
    return query.filter(
        VotingSession.status == SessionStatus.ACTIVE.value,
        VotingSession.phase == SessionPhase.PHASE2.value,
    )


class TerminationScheduler:
    def __init__(self, db: Session, settings: VotingSettings):
        self.db = db
        self.settings = settings

    def schedule(
        self,
        session_id: str,
        grace_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Set the termination time unless one is already set.

        Returns the effective schedule either way; ``scheduled`` tells whether
        this call was the one that set it.
        """
        moment = now or utc_now()
        grace = (
            self.settings.termination_grace_seconds
            if grace_seconds is None
            else grace_seconds
        )
        session = self.db.get(VotingSession, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)

        target = moment + timedelta(seconds=grace)
        updated = (
            _active_phase2(self.db.query(VotingSession))
            .filter(
                VotingSession.session_id == session_id,
                VotingSession.phase2_termination_scheduled.is_(None),
            )
            .update(
                {VotingSession.phase2_termination_scheduled: target},
                synchronize_session=False,
            )
        )
        self.db.commit()

        scheduled_at = as_utc(session.phase2_termination_scheduled)
        if scheduled_at is None:
            raise InvalidTransition(
                session_id,
                SessionPhaseMachine.describe(session),
                "schedule termination of",
            )
        if updated:
            logger.info(
                "Termination of session %s scheduled for %s (grace %ss)",
                session_id,
                scheduled_at.isoformat(),
                grace,
            )
        return {
            "sessionId": session_id,
            "scheduled": bool(updated),
            "terminationScheduled": isoformat(scheduled_at),
            "secondsRemaining": _seconds_until(scheduled_at, moment),
        }


class TerminationExecutor:
    def __init__(self, db: Session):
        self.db = db
        self.closer = SessionCloser(db)

    def find_pending(self, session_id: Optional[str] = None) -> Optional[VotingSession]:
        """Active phase2 session with a termination time, earliest first."""
        query = _active_phase2(self.db.query(VotingSession)).filter(
            VotingSession.phase2_termination_scheduled.isnot(None)
        )
        if session_id:
            query = query.filter(VotingSession.session_id == session_id)
        return query.order_by(VotingSession.phase2_termination_scheduled).first()

    def claim(self, session_id: str, seen: datetime, now: datetime) -> None:
        """
        Clear the termination time if it is still ``seen`` and due.

        Raises ``AlreadyClaimed`` unless this call modified the row.
        """
        cleared = (
            _active_phase2(self.db.query(VotingSession))
            .filter(
                VotingSession.session_id == session_id,
                VotingSession.phase2_termination_scheduled == seen,
                VotingSession.phase2_termination_scheduled <= now,
            )
            .update(
                {VotingSession.phase2_termination_scheduled: None},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if cleared != 1:
            raise AlreadyClaimed(session_id)

    def execute(
        self, session_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        moment = now or utc_now()
        pending = self.find_pending(session_id)
        if pending is None:
            return {"terminationExecuted": False, "message": NO_PENDING_MESSAGE}

        target_id = pending.session_id
        scheduled_at = as_utc(pending.phase2_termination_scheduled)
        if moment < scheduled_at:
            return {
                "terminationExecuted": False,
                "secondsRemaining": _seconds_until(scheduled_at, moment),
                "sessionId": target_id,
            }

        try:
            self.claim(target_id, scheduled_at, moment)
        except AlreadyClaimed:
            logger.info("Termination of session %s claimed elsewhere", target_id)
            return {
                "terminationExecuted": False,
                "message": ALREADY_EXECUTED_MESSAGE,
                "sessionId": target_id,
            }

        logger.info("Executing scheduled termination of session %s", target_id)
        # The claim is committed; a failure below leaves the session active
        # without a termination time and is not retried.
        try:
            session = self.db.get(VotingSession, target_id, populate_existing=True)
            outcome = self.closer.close(session, moment)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "Termination of session %s failed after claim; manual recovery needed",
                target_id,
            )
            raise

        return {
            "terminationExecuted": True,
            "sessionId": target_id,
            "outcome": outcome.to_dict(),
        }


class AutoCloseEvaluator:
    """
    Inline close trigger: every participant voted, or phase2 ran out of time.

    A positive decision goes through the same scheduler and executor as a
    delayed close, with the auto-close grace (zero closes right away).
    """

    def __init__(self, db: Session, settings: VotingSettings):
        self.db = db
        self.settings = settings
        self.sessions = SessionManager(db)
        self.votes = VoteStore(db)
        self.scheduler = TerminationScheduler(db, settings)
        self.executor = TerminationExecutor(db)

    def _voter_ids(self, session: VotingSession) -> set[str]:
        if session.is_budget:
            return set(self.votes.voter_ids(session.session_id))
        return set(self.sessions.final_voter_ids(session.session_id))

    def check(
        self, session: VotingSession, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Report whether the session should close. Never writes."""
        if (
            session.status != SessionStatus.ACTIVE.value
            or session.phase != SessionPhase.PHASE2.value
        ):
            return {"shouldClose": False, "reason": "not_in_phase2"}

        participants = self.sessions.participant_ids(session.session_id)
        voters = self._voter_ids(session)
        voted_count = sum(1 for user_id in participants if user_id in voters)
        counts = {"votedCount": voted_count, "totalUsers": len(participants)}

        if participants and voted_count == len(participants):
            return {"shouldClose": True, "reason": "all_users_voted", **counts}

        started = as_utc(session.phase2_start_time)
        if started is None:
            return {
                "shouldClose": False,
                "reason": "phase2_start_time_missing",
                **counts,
            }

        moment = now or utc_now()
        duration = self.settings.phase2_duration_hours
        elapsed_hours = (moment - started).total_seconds() / 3600
        if elapsed_hours >= duration:
            return {"shouldClose": True, "reason": "time_limit_exceeded", **counts}
        return {
            "shouldClose": False,
            "reason": "time_remaining",
            "hoursRemaining": max(0.0, duration - elapsed_hours),
            **counts,
        }

    def trigger(self, session_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        moment = now or utc_now()
        try:
            self.scheduler.schedule(
                session_id, self.settings.auto_close_grace_seconds, moment
            )
        except InvalidTransition:
            logger.info("Auto-close of %s skipped: session no longer open", session_id)
            return {"terminationExecuted": False, "message": ALREADY_EXECUTED_MESSAGE}
        return self.executor.execute(session_id, moment)

    def evaluate_and_close(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        moment = now or utc_now()
        session = self.sessions.require_session(session_id)
        decision = self.check(session, moment)
        if not decision["shouldClose"]:
            return {**decision, "terminationExecuted": False}
        logger.info("Auto-close of %s triggered: %s", session_id, decision["reason"])
        return {**decision, **self.trigger(session_id, moment)}
