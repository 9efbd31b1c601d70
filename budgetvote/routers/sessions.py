import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from budgetvote.auth.auth import get_current_active_user, require_admin
from budgetvote.config.loader import VotingSettings, get_voting_settings
from budgetvote.data.session_manager import SessionManager, get_session_manager
from budgetvote.database import get_db
from budgetvote.models.session import SessionPhase, SessionType
from budgetvote.models.user import User
from budgetvote.schemas.session import (
    AdvancePhaseRequest,
    ArchivedWinnerRead,
    ExecuteTerminationRequest,
    FinalVoteCreate,
    ProposalCreate,
    ProposalRead,
    ScheduleTerminationRequest,
    SessionCreate,
    SessionRead,
)
from budgetvote.services.errors import BudgetVoteError, NotFoundError
from budgetvote.services.phase_machine import SessionPhaseMachine
from budgetvote.services.session_close import SessionCloser
from budgetvote.services.termination import (
    AutoCloseEvaluator,
    TerminationExecutor,
    TerminationScheduler,
)
from budgetvote.utils.session_events import session_events

from .common import audit, to_http_exception

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

logger = logging.getLogger(__name__)


def _require(sessions: SessionManager, session_id: str):
    try:
        return sessions.require_session(session_id)
    except NotFoundError as exc:
        raise to_http_exception(exc)


@router.post("", response_model=SessionRead, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionCreate,
    admin: User = Depends(require_admin),
    sessions: SessionManager = Depends(get_session_manager),
):
    session = sessions.create_session(
        name=payload.name,
        session_type=payload.session_type,
        municipality=payload.municipality,
        total_budget=payload.total_budget,
        categories=payload.stored_categories(),
        income_categories=payload.stored_income_categories(),
        single_result=payload.single_result,
        created_by=admin.user_id,
    )
    audit("create_session", session.session_id, admin)
    return SessionRead.model_validate(session)


@router.get("", response_model=List[SessionRead])
async def list_sessions(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    return [SessionRead.model_validate(item) for item in sessions.list_sessions(status_filter)]


@router.post("/execute-termination")
async def execute_termination(
    payload: Optional[ExecuteTerminationRequest] = Body(default=None),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """
    Poll a scheduled termination. Reports the countdown until it is due, then
    closes the session for exactly one of the concurrent callers.
    """
    session_id = payload.session_id if payload else None
    outcome = TerminationExecutor(db).execute(session_id)
    if outcome["terminationExecuted"]:
        await session_events.phase_change(
            outcome["sessionId"], SessionPhase.CLOSED.value
        )
    return outcome


@router.get("/{session_id}", response_model=SessionRead)
async def get_session(
    session_id: str,
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    return SessionRead.model_validate(_require(sessions, session_id))


@router.post("/{session_id}/activate", response_model=SessionRead)
async def activate_session(
    session_id: str,
    admin: User = Depends(require_admin),
    sessions: SessionManager = Depends(get_session_manager),
    db: Session = Depends(get_db),
):
    session = _require(sessions, session_id)
    try:
        SessionPhaseMachine(db).activate(session)
    except BudgetVoteError as exc:
        raise to_http_exception(exc)
    db.commit()
    audit("activate_session", session_id, admin)
    db.refresh(session)
    await session_events.phase_change(session_id, session.phase)
    return SessionRead.model_validate(session)


@router.post("/{session_id}/advance-phase", response_model=SessionRead)
async def advance_phase(
    session_id: str,
    payload: Optional[AdvancePhaseRequest] = Body(default=None),
    admin: User = Depends(require_admin),
    sessions: SessionManager = Depends(get_session_manager),
    db: Session = Depends(get_db),
):
    session = _require(sessions, session_id)
    top_ids = payload.top_proposal_ids if payload else None
    try:
        SessionPhaseMachine(db).advance_to_phase2(session, top_ids)
    except BudgetVoteError as exc:
        raise to_http_exception(exc)
    db.commit()
    audit("advance_phase", session_id, admin)
    db.refresh(session)
    await session_events.phase_change(session_id, session.phase)
    return SessionRead.model_validate(session)


@router.post("/{session_id}/schedule-termination")
async def schedule_termination(
    session_id: str,
    payload: Optional[ScheduleTerminationRequest] = Body(default=None),
    admin: User = Depends(require_admin),
    settings: VotingSettings = Depends(get_voting_settings),
    db: Session = Depends(get_db),
):
    grace = payload.grace_seconds if payload else None
    try:
        schedule = TerminationScheduler(db, settings).schedule(session_id, grace)
    except BudgetVoteError as exc:
        raise to_http_exception(exc)
    if schedule["scheduled"]:
        audit("schedule_termination", session_id, admin)
        await session_events.termination_scheduled(session_id, schedule)
    return schedule


@router.post("/{session_id}/close")
async def close_session(
    session_id: str,
    admin: User = Depends(require_admin),
    sessions: SessionManager = Depends(get_session_manager),
    db: Session = Depends(get_db),
):
    """Administrative close, regardless of votes or schedule."""
    session = _require(sessions, session_id)
    try:
        outcome = SessionCloser(db).close(session)
    except BudgetVoteError as exc:
        raise to_http_exception(exc)
    db.commit()
    audit("close_session", session_id, admin)
    await session_events.phase_change(session_id, SessionPhase.CLOSED.value)
    return outcome.to_dict()


@router.post("/{session_id}/join")
async def join_session(
    session_id: str,
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    session = _require(sessions, session_id)
    try:
        joined = sessions.join(session, current_user.user_id)
    except BudgetVoteError as exc:
        raise to_http_exception(exc)
    participants = sessions.participant_ids(session_id)
    return {
        "sessionId": session_id,
        "joined": joined,
        "participantCount": len(participants),
    }


@router.post(
    "/{session_id}/proposals",
    response_model=ProposalRead,
    status_code=status.HTTP_201_CREATED,
)
async def submit_proposal(
    session_id: str,
    payload: ProposalCreate,
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    session = _require(sessions, session_id)
    if session.session_type != SessionType.PROPOSAL.value:
        raise to_http_exception(NotFoundError("Proposal session", session_id))
    try:
        proposal = sessions.add_proposal(
            session,
            current_user,
            title=payload.title,
            problem=payload.problem,
            solution=payload.solution,
        )
    except BudgetVoteError as exc:
        raise to_http_exception(exc)
    return ProposalRead.model_validate(proposal)


@router.get("/{session_id}/proposals", response_model=List[ProposalRead])
async def list_proposals(
    session_id: str,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    _require(sessions, session_id)
    return [
        ProposalRead.model_validate(item)
        for item in sessions.list_proposals(session_id, status_filter)
    ]


@router.post("/{session_id}/final-votes")
async def cast_final_vote(
    session_id: str,
    payload: FinalVoteCreate,
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
    settings: VotingSettings = Depends(get_voting_settings),
    db: Session = Depends(get_db),
):
    """Record the caller's single ballot, then close the session if that was the last one."""
    session = _require(sessions, session_id)
    try:
        ballot = sessions.cast_final_vote(
            session, current_user.user_id, payload.proposal_id, payload.choice
        )
    except BudgetVoteError as exc:
        raise to_http_exception(exc)

    await session_events.vote_update(
        session_id, len(sessions.final_voter_ids(session_id))
    )

    auto_close = AutoCloseEvaluator(db, settings).evaluate_and_close(session_id)
    if auto_close.get("terminationExecuted"):
        await session_events.phase_change(session_id, SessionPhase.CLOSED.value)
    return {
        "vote": {
            "sessionId": session_id,
            "proposalId": ballot.proposal_id,
            "choice": ballot.choice,
        },
        "autoClose": auto_close,
    }


@router.get("/{session_id}/auto-close")
async def check_auto_close(
    session_id: str,
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
    settings: VotingSettings = Depends(get_voting_settings),
    db: Session = Depends(get_db),
):
    session = _require(sessions, session_id)
    return AutoCloseEvaluator(db, settings).check(session)


@router.get("/{session_id}/winners", response_model=List[ArchivedWinnerRead])
async def list_winners(
    session_id: str,
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    _require(sessions, session_id)
    return [
        ArchivedWinnerRead.model_validate(item)
        for item in sessions.list_winners(session_id)
    ]
