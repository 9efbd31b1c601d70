from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from budgetvote.data.budget_store import VoteStore
from budgetvote.data.session_manager import SessionManager
from budgetvote.models.proposal import ArchivedWinner, Proposal, ProposalStatus
from budgetvote.models.session import SessionType, VotingSession
from budgetvote.utils.timeutils import utc_now

from .budget_tree import BudgetTree
from .median_aggregator import aggregate
from .phase_machine import SessionPhaseMachine

logger = logging.getLogger(__name__)


@dataclass
class CloseOutcome:
    session_id: str
    session_type: str
    winners: List[Dict[str, Any]] = field(default_factory=list)
    result_created: bool = False
    voter_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "sessionType": self.session_type,
            "winners": self.winners,
            "resultCreated": self.result_created,
            "voterCount": self.voter_count,
        }


def select_winners(
    tallies: List[Dict[str, Any]], single_result: bool
) -> List[Dict[str, Any]]:
    """
    Pick the winning entries from ``[{proposal, yes, no}, ...]``.

    Normally every proposal with more yes than no votes wins; ties lose. In
    single-result mode every proposal sharing the best yes-minus-no wins.
    """
    if single_result:
        if not tallies:
            return []
        best = max(item["yes"] - item["no"] for item in tallies)
        return [item for item in tallies if item["yes"] - item["no"] == best]
    return [item for item in tallies if item["yes"] > item["no"]]


class SessionCloser:
    """Runs the close procedure of a session inside the caller's transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.votes = VoteStore(db)
        self.sessions = SessionManager(db)
        self.phases = SessionPhaseMachine(db)

    def close(
        self, session: VotingSession, now: Optional[datetime] = None
    ) -> CloseOutcome:
        moment = now or utc_now()
        self.phases.ensure_closable(session)
        if session.session_type == SessionType.BUDGET.value:
            outcome = self._close_budget(session)
        else:
            outcome = self._close_proposals(session, moment)
        self.phases.mark_closed(session, moment)
        self.db.flush()
        logger.info(
            "Session %s closed: winners=%d result_created=%s voters=%d",
            session.session_id,
            len(outcome.winners),
            outcome.result_created,
            outcome.voter_count,
        )
        return outcome

    def _close_budget(self, session: VotingSession) -> CloseOutcome:
        outcome = CloseOutcome(session.session_id, session.session_type)
        existing = self.votes.get_result(session.session_id)
        if existing is not None:
            outcome.voter_count = existing.voter_count
            return outcome
        ballots = self.votes.list_ballots(session.session_id)
        if not ballots:
            logger.warning(
                "Session %s closed without votes; no result stored", session.session_id
            )
            return outcome
        payload = aggregate(
            ballots, BudgetTree.for_session(session), session_id=session.session_id
        )
        self.votes.add_result(session.session_id, payload)
        outcome.result_created = True
        outcome.voter_count = payload["voterCount"]
        return outcome

    def _close_proposals(
        self, session: VotingSession, moment: datetime
    ) -> CloseOutcome:
        outcome = CloseOutcome(session.session_id, session.session_type)
        counts = self.sessions.tally(session.session_id)
        top_tier = self.sessions.list_proposals(
            session.session_id, ProposalStatus.TOP.value
        )
        tallies = [
            {
                "proposal": proposal,
                "yes": counts.get(proposal.proposal_id, {}).get("yes", 0),
                "no": counts.get(proposal.proposal_id, {}).get("no", 0),
            }
            for proposal in top_tier
        ]
        for item in select_winners(tallies, bool(session.single_result)):
            proposal: Proposal = item["proposal"]
            self.db.add(
                ArchivedWinner(
                    session_id=session.session_id,
                    proposal_id=proposal.proposal_id,
                    title=proposal.title,
                    problem=proposal.problem,
                    solution=proposal.solution,
                    author_name=proposal.author_name,
                    yes_votes=item["yes"],
                    no_votes=item["no"],
                    archived_at=moment,
                )
            )
            outcome.winners.append(
                {
                    "proposalId": proposal.proposal_id,
                    "title": proposal.title,
                    "yesVotes": item["yes"],
                    "noVotes": item["no"],
                }
            )

        self.db.query(Proposal).filter(
            Proposal.session_id == session.session_id
        ).update(
            {Proposal.status: ProposalStatus.ARCHIVED.value},
            synchronize_session=False,
        )
        outcome.voter_count = len(self.sessions.final_voter_ids(session.session_id))
        return outcome
