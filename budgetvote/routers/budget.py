import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from budgetvote.auth.auth import get_current_active_user, require_admin
from budgetvote.data.budget_store import VoteStore, get_vote_store, result_payload
from budgetvote.data.session_manager import SessionManager, get_session_manager
from budgetvote.database import get_db
from budgetvote.models.session import SessionPhase, SessionStatus
from budgetvote.models.user import User
from budgetvote.schemas.budget import (
    BudgetVoteRead,
    BudgetVoteSubmit,
    ResultRecomputeRequest,
)
from budgetvote.services.budget_tree import Ballot, BudgetTree
from budgetvote.services.errors import (
    BudgetVoteError,
    EmptyVoteSet,
    InvalidTransition,
    NotFoundError,
    SessionNotActive,
)
from budgetvote.services.median_aggregator import aggregate
from budgetvote.services.session_close import SessionCloser
from budgetvote.services.vote_validator import validate_vote
from budgetvote.utils.session_events import session_events

from .common import audit, to_http_exception

router = APIRouter(prefix="/api/budget", tags=["budget"])

logger = logging.getLogger(__name__)


def _budget_session(sessions: SessionManager, session_id: str):
    session = sessions.get_session(session_id)
    if session is None or not session.is_budget:
        raise to_http_exception(NotFoundError("Budget session", session_id))
    return session


@router.post("/votes", response_model=BudgetVoteRead)
async def submit_vote(
    payload: BudgetVoteSubmit,
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
    store: VoteStore = Depends(get_vote_store),
):
    """
    Store the caller's budget, replacing an earlier one. Budget sessions stay
    open until an administrator closes them or a scheduled termination runs.
    """
    session = _budget_session(sessions, payload.session_id)
    if session.status != SessionStatus.ACTIVE.value:
        raise to_http_exception(
            SessionNotActive(session.session_id, session.status, session.phase)
        )
    if not payload.allocations:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one expense allocation is required.",
        )
    if not payload.income_allocations:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one income allocation is required.",
        )

    allocations = payload.stored_allocations()
    income_allocations = payload.stored_income_allocations()
    validation = validate_vote(
        Ballot(allocations, income_allocations), BudgetTree.for_session(session)
    )
    if not validation.valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Vote validation failed",
                "errors": [error.to_dict() for error in validation.errors],
            },
        )

    try:
        sessions.join(session, current_user.user_id)
    except BudgetVoteError as exc:
        raise to_http_exception(exc)
    total_expenses, total_income = payload.derived_totals()
    vote = store.upsert_vote(
        session.session_id,
        current_user.user_id,
        allocations,
        income_allocations,
        total_expenses,
        total_income,
    )
    response = BudgetVoteRead.model_validate(vote)

    await session_events.budget_vote(
        session.session_id, len(store.voter_ids(session.session_id))
    )
    return response


@router.get("/votes", response_model=BudgetVoteRead)
async def get_my_vote(
    session_id: str = Query(...),
    current_user: User = Depends(get_current_active_user),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.get_vote(session_id, current_user.user_id)
    if vote is None:
        raise to_http_exception(NotFoundError("Vote", session_id))
    return BudgetVoteRead.model_validate(vote)


@router.get("/results")
async def get_results(
    session_id: str = Query(...),
    current_user: User = Depends(get_current_active_user),
    sessions: SessionManager = Depends(get_session_manager),
    store: VoteStore = Depends(get_vote_store),
):
    """Result of a closed session, computed and stored on first access."""
    session = _budget_session(sessions, session_id)
    if session.status != SessionStatus.CLOSED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Results are available once the session is closed.",
        )
    result = store.get_result(session_id)
    if result is None:
        ballots = store.list_ballots(session_id)
        if not ballots:
            raise to_http_exception(NotFoundError("Votes for session", session_id))
        payload = aggregate(ballots, BudgetTree.for_session(session), session_id=session_id)
        result = store.save_result(session_id, payload)
        logger.info("Computed result for closed session %s on first access", session_id)
    return result_payload(result)


@router.post("/results")
async def recompute_results(
    payload: ResultRecomputeRequest,
    admin: User = Depends(require_admin),
    sessions: SessionManager = Depends(get_session_manager),
    store: VoteStore = Depends(get_vote_store),
    db: Session = Depends(get_db),
):
    """Throw away the stored result and compute it again, closing the session if needed."""
    session = _budget_session(sessions, payload.session_id)
    if session.status == SessionStatus.DRAFT.value:
        raise to_http_exception(
            InvalidTransition(session.session_id, session.status, "close")
        )
    ballots = store.list_ballots(session.session_id)
    if not ballots:
        raise to_http_exception(EmptyVoteSet(session.session_id))

    was_closed = session.status == SessionStatus.CLOSED.value
    try:
        store.delete_result(session.session_id)
        if was_closed:
            store.add_result(
                session.session_id,
                aggregate(
                    ballots,
                    BudgetTree.for_session(session),
                    session_id=session.session_id,
                ),
            )
        else:
            SessionCloser(db).close(session)
        db.commit()
    except BudgetVoteError as exc:
        db.rollback()
        raise to_http_exception(exc)

    audit("recompute_result", session.session_id, admin)
    if not was_closed:
        await session_events.phase_change(
            session.session_id, SessionPhase.CLOSED.value
        )
    return result_payload(store.get_result(session.session_id))
