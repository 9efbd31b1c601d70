import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from budgetvote.data.session_manager import SessionManager, get_session_manager
from budgetvote.models.session import VotingSession
from budgetvote.utils.session_events import session_events
from budgetvote.utils.timeutils import isoformat, utc_now

router = APIRouter(prefix="/ws", tags=["realtime"])

logger = logging.getLogger(__name__)


def _session_snapshot(session: VotingSession) -> Dict[str, Any]:
    return {
        "sessionId": session.session_id,
        "status": session.status,
        "phase": session.phase,
        "phase2StartTime": isoformat(session.phase2_start_time),
        "phase2TerminationScheduled": isoformat(session.phase2_termination_scheduled),
    }


@router.websocket("/sessions/{session_id}")
async def session_socket(
    websocket: WebSocket,
    session_id: str,
    sessions: SessionManager = Depends(get_session_manager),
) -> None:
    """
    Subscribe to a voting session. Server events: phase-change, vote-update,
    budget-vote and termination-scheduled.
    """
    session = sessions.get_session(session_id)
    if session is None:
        logger.error("Session %s not found for WebSocket connection", session_id)
        await websocket.close(code=1008, reason="Session not found")
        return

    subscriber = await session_events.subscribe(
        websocket,
        session_id,
        user_id=websocket.query_params.get("userId"),
    )
    await session_events.reply(
        subscriber,
        "connection_ack",
        {"connectionId": subscriber.subscriber_id, **_session_snapshot(session)},
    )

    try:
        while True:
            message = await websocket.receive_json()
            message_type = message.get("type") if isinstance(message, dict) else None
            if message_type == "ping":
                await session_events.reply(
                    subscriber,
                    "pong",
                    {"sessionId": session_id, "timestamp": utc_now().isoformat()},
                )
            elif message_type == "state_request":
                sessions.db.expire_all()
                current = sessions.get_session(session_id)
                await session_events.reply(
                    subscriber,
                    "session_state",
                    _session_snapshot(current) if current else None,
                )
            else:
                await session_events.reply(
                    subscriber,
                    "error",
                    {"message": f"Unknown message type '{message_type}'"},
                )
    except WebSocketDisconnect:
        logger.debug(
            "WebSocketDisconnect: session_id=%s subscriber=%s",
            session_id,
            subscriber.subscriber_id,
        )
    finally:
        session_events.unsubscribe(subscriber)
