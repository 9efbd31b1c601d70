import pytest

from budgetvote.utils.session_events import SessionEventHub


@pytest.fixture
def anyio_backend():
    return "asyncio"


class _FakeSocket:
    def __init__(self, *, on_send=None, should_fail: bool = False):
        self._on_send = on_send
        self._should_fail = should_fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self._on_send:
            self._on_send()
        if self._should_fail:
            raise RuntimeError("send failed")
        self.sent.append(message)


@pytest.mark.anyio("asyncio")
async def test_subscribe_and_unsubscribe_track_listeners_per_session():
    hub = SessionEventHub()
    socket = _FakeSocket()

    subscriber = await hub.subscribe(socket, "vallentuna-2025", user_id="u-1")

    assert socket.accepted
    assert subscriber.user_id == "u-1"
    assert hub.subscriber_count("vallentuna-2025") == 1
    assert hub.subscriber_count("taby-2025") == 0

    hub.unsubscribe(subscriber)
    hub.unsubscribe(subscriber)
    assert hub.subscriber_count("vallentuna-2025") == 0


@pytest.mark.anyio("asyncio")
async def test_phase_change_reaches_only_the_session():
    hub = SessionEventHub()
    here = _FakeSocket()
    elsewhere = _FakeSocket()
    await hub.subscribe(here, "vallentuna-2025")
    await hub.subscribe(elsewhere, "taby-2025")

    delivered = await hub.phase_change("vallentuna-2025", "closed")

    assert delivered == 1
    assert here.sent == [
        {
            "type": "phase-change",
            "payload": {"sessionId": "vallentuna-2025", "phase": "closed"},
        }
    ]
    assert elsewhere.sent == []


@pytest.mark.anyio("asyncio")
async def test_vote_events_carry_counts():
    hub = SessionEventHub()
    socket = _FakeSocket()
    await hub.subscribe(socket, "vallentuna-2025")

    await hub.budget_vote("vallentuna-2025", 3)
    await hub.vote_update("vallentuna-2025", 2)

    assert [event["type"] for event in socket.sent] == ["budget-vote", "vote-update"]
    assert socket.sent[0]["payload"]["voterCount"] == 3
    assert socket.sent[1]["payload"]["votedCount"] == 2


@pytest.mark.anyio("asyncio")
async def test_termination_scheduled_merges_schedule_into_payload():
    hub = SessionEventHub()
    socket = _FakeSocket()
    await hub.subscribe(socket, "vallentuna-2025")

    await hub.termination_scheduled(
        "vallentuna-2025", {"scheduled": True, "gracePeriodSeconds": 60}
    )

    payload = socket.sent[0]["payload"]
    assert socket.sent[0]["type"] == "termination-scheduled"
    assert payload["sessionId"] == "vallentuna-2025"
    assert payload["gracePeriodSeconds"] == 60


@pytest.mark.anyio("asyncio")
async def test_publish_survives_unsubscribe_during_delivery():
    hub = SessionEventHub()
    session_id = "vallentuna-2025"
    peer_socket = _FakeSocket()
    peer = None

    def _drop_peer():
        hub.unsubscribe(peer)

    first_socket = _FakeSocket(on_send=_drop_peer)
    await hub.subscribe(first_socket, session_id)
    peer = await hub.subscribe(peer_socket, session_id)

    await hub.publish(session_id, "vote-update", {"sessionId": session_id})

    assert len(first_socket.sent) == 1
    assert hub.subscriber_count(session_id) == 1


@pytest.mark.anyio("asyncio")
async def test_failed_subscriber_is_dropped():
    hub = SessionEventHub()
    session_id = "vallentuna-2025"
    healthy = _FakeSocket()
    await hub.subscribe(healthy, session_id)
    await hub.subscribe(_FakeSocket(should_fail=True), session_id)

    delivered = await hub.budget_vote(session_id, 1)

    assert delivered == 1
    assert hub.subscriber_count(session_id) == 1
    assert hub.subscribers(session_id)[0].websocket is healthy


@pytest.mark.anyio("asyncio")
async def test_reply_targets_one_subscriber():
    hub = SessionEventHub()
    mine = _FakeSocket()
    other = _FakeSocket()
    subscriber = await hub.subscribe(mine, "vallentuna-2025")
    await hub.subscribe(other, "vallentuna-2025")

    await hub.reply(subscriber, "pong", {"sessionId": "vallentuna-2025"})

    assert mine.sent == [{"type": "pong", "payload": {"sessionId": "vallentuna-2025"}}]
    assert other.sent == []
