from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import WebSocket

logger = logging.getLogger(__name__)

PHASE_CHANGE = "phase-change"
VOTE_UPDATE = "vote-update"
BUDGET_VOTE = "budget-vote"
TERMINATION_SCHEDULED = "termination-scheduled"


def session_event(event_type: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": event_type, "payload": payload}


@dataclass
class Subscriber:
    """One socket listening to one voting session."""

    session_id: str
    websocket: WebSocket
    user_id: Optional[str] = None
    subscriber_id: str = field(default_factory=lambda: str(uuid4()))


class SessionEventHub:
    """
    In-process publisher of voting-session events.

    Events are ``{"type": ..., "payload": {...}}`` documents. A subscriber
    whose send fails is dropped; nothing is queued or replayed.
    """

    def __init__(self):
        self._subscribers: Dict[str, Dict[str, Subscriber]] = {}

    async def subscribe(
        self,
        websocket: WebSocket,
        session_id: str,
        *,
        user_id: Optional[str] = None,
    ) -> Subscriber:
        await websocket.accept()
        subscriber = Subscriber(session_id=session_id, websocket=websocket, user_id=user_id)
        self._subscribers.setdefault(session_id, {})[subscriber.subscriber_id] = subscriber
        logger.debug(
            "Subscribed %s to session %s (user=%s)",
            subscriber.subscriber_id,
            session_id,
            user_id,
        )
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        listeners = self._subscribers.get(subscriber.session_id)
        if not listeners:
            return
        if listeners.pop(subscriber.subscriber_id, None) is not None:
            logger.debug(
                "Unsubscribed %s from session %s",
                subscriber.subscriber_id,
                subscriber.session_id,
            )
        if not listeners:
            self._subscribers.pop(subscriber.session_id, None)

    def subscribers(self, session_id: str) -> list[Subscriber]:
        return list(self._subscribers.get(session_id, {}).values())

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, {}))

    async def _deliver(self, subscriber: Subscriber, event: Dict[str, Any]) -> bool:
        try:
            await subscriber.websocket.send_json(event)
        except Exception:  # pragma: no cover - depends on network
            logger.debug(
                "Dropping subscriber %s of session %s after failed send",
                subscriber.subscriber_id,
                subscriber.session_id,
            )
            self.unsubscribe(subscriber)
            return False
        return True

    async def publish(
        self, session_id: str, event_type: str, payload: Dict[str, Any]
    ) -> int:
        """Send an event to the session's current subscribers; returns deliveries."""
        event = session_event(event_type, payload)
        delivered = 0
        # Copy first: a failed send unsubscribes while we iterate.
        for subscriber in self.subscribers(session_id):
            if await self._deliver(subscriber, event):
                delivered += 1
        return delivered

    async def reply(
        self, subscriber: Subscriber, event_type: str, payload: Optional[Dict[str, Any]]
    ) -> None:
        await self._deliver(subscriber, session_event(event_type, payload))

    async def phase_change(self, session_id: str, phase: str) -> int:
        return await self.publish(
            session_id, PHASE_CHANGE, {"sessionId": session_id, "phase": phase}
        )

    async def budget_vote(self, session_id: str, voter_count: int) -> int:
        return await self.publish(
            session_id, BUDGET_VOTE, {"sessionId": session_id, "voterCount": voter_count}
        )

    async def vote_update(self, session_id: str, voted_count: int) -> int:
        return await self.publish(
            session_id, VOTE_UPDATE, {"sessionId": session_id, "votedCount": voted_count}
        )

    async def termination_scheduled(
        self, session_id: str, schedule: Dict[str, Any]
    ) -> int:
        return await self.publish(
            session_id, TERMINATION_SCHEDULED, {"sessionId": session_id, **schedule}
        )


session_events = SessionEventHub()
