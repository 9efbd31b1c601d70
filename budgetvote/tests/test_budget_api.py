import pytest

from budgetvote.data.budget_store import VoteStore
from budgetvote.data.session_manager import SessionManager
from budgetvote.models.budget import BudgetVote
from budgetvote.services.errors import SessionNotActive


def _payload(session_id, school=150, parks=250, rate=20.0, subs=None):
    return {
        "sessionId": session_id,
        "allocations": [
            {
                "categoryId": "A",
                "amount": school,
                "subAllocations": subs
                if subs is not None
                else [
                    {"subcategoryId": "A1", "amount": school // 3},
                    {"subcategoryId": "A2", "amount": school - school // 3},
                ],
            },
            {"categoryId": "B", "amount": parks},
        ],
        "incomeAllocations": [
            {"categoryId": "tax", "amount": 400, "taxRatePercent": rate},
            {"categoryId": "fees", "amount": 100},
        ],
    }


def _join(client_for, users, session_id):
    for user in users:
        response = client_for(user).post(f"/api/sessions/{session_id}/join")
        assert response.status_code == 200


def test_submit_and_read_back_vote(
    participant_client, client_for, make_session, participants
):
    session = make_session()
    _join(client_for, participants[1:2], session.session_id)

    response = participant_client.post("/api/budget/votes", json=_payload(session.session_id))

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["sessionId"] == session.session_id
    assert body["userId"] == participants[0].user_id
    assert body["totalExpenses"] == 400
    assert body["totalIncome"] == 500
    assert body["allocations"][0]["subAllocations"][0] == {
        "subcategoryId": "A1",
        "amount": 50,
    }

    mine = participant_client.get(
        "/api/budget/votes", params={"session_id": session.session_id}
    )
    assert mine.status_code == 200
    assert mine.json()["voteId"] == body["voteId"]


def test_resubmission_replaces_previous_vote(
    db_session, client_for, make_session, participants
):
    session = make_session()
    _join(client_for, participants, session.session_id)
    voter = client_for(participants[0])

    voter.post("/api/budget/votes", json=_payload(session.session_id, parks=250))
    response = voter.post("/api/budget/votes", json=_payload(session.session_id, parks=300))

    assert response.status_code == 200
    assert response.json()["totalExpenses"] == 450
    votes = (
        db_session.query(BudgetVote)
        .filter(BudgetVote.session_id == session.session_id)
        .all()
    )
    assert len(votes) == 1


def test_invalid_vote_lists_every_problem(participant_client, make_session):
    session = make_session()
    payload = _payload(
        session.session_id,
        school=99,
        subs=[{"subcategoryId": "A1", "amount": 10}, {"subcategoryId": "A2", "amount": 89}],
    )
    payload["allocations"].append({"categoryId": "Z", "amount": 5})

    response = participant_client.post("/api/budget/votes", json=payload)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["message"] == "Vote validation failed"
    assert [error["code"] for error in detail["errors"]] == [
        "BELOW_MINIMUM",
        "SUBCATEGORY_BELOW_MINIMUM",
        "CATEGORY_NOT_FOUND",
    ]
    assert detail["errors"][0]["params"]["minimum"] == 100


def test_vote_requires_expense_and_income_allocations(participant_client, make_session):
    session = make_session()
    payload = _payload(session.session_id)
    payload["incomeAllocations"] = []

    response = participant_client.post("/api/budget/votes", json=payload)

    assert response.status_code == 400


def test_tax_rate_out_of_range_is_rejected(participant_client, make_session):
    session = make_session()

    response = participant_client.post(
        "/api/budget/votes", json=_payload(session.session_id, rate=120.0)
    )

    assert response.status_code == 422
    assert isinstance(response.json()["detail"], list)


def test_vote_on_unknown_or_draft_session(participant_client, make_session):
    draft = make_session(activate=False)

    missing = participant_client.post("/api/budget/votes", json=_payload("nowhere-2025"))
    inactive = participant_client.post(
        "/api/budget/votes", json=_payload(draft.session_id)
    )

    assert missing.status_code == 404
    assert inactive.status_code == 400
    assert inactive.json()["detail"]["code"] == "SESSION_NOT_ACTIVE"


def test_vote_requires_authentication(client, make_session):
    session = make_session()

    response = client.post("/api/budget/votes", json=_payload(session.session_id))

    assert response.status_code == 401


def test_budget_session_stays_open_after_every_participant_votes(
    client_for, make_session, participants
):
    session = make_session()
    _join(client_for, participants[:2], session.session_id)

    first = client_for(participants[0]).post(
        "/api/budget/votes", json=_payload(session.session_id)
    )
    state = client_for(participants[0]).get(f"/api/sessions/{session.session_id}")
    assert first.status_code == 200
    assert state.json()["status"] == "active"

    second = client_for(participants[1]).post(
        "/api/budget/votes", json=_payload(session.session_id, 300, 100)
    )
    state = client_for(participants[1]).get(f"/api/sessions/{session.session_id}")
    assert second.status_code == 200, second.text
    assert state.json()["status"] == "active"


def test_first_vote_on_unjoined_session_keeps_it_open(
    client_for, make_session, participants
):
    session = make_session()

    first = client_for(participants[0]).post(
        "/api/budget/votes", json=_payload(session.session_id)
    )
    second = client_for(participants[1]).post(
        "/api/budget/votes", json=_payload(session.session_id, 300, 100)
    )

    assert first.status_code == 200
    assert second.status_code == 200, second.text
    state = client_for(participants[0]).get(f"/api/sessions/{session.session_id}")
    assert state.json()["status"] == "active"


def test_join_refusal_during_vote_maps_to_bad_request(
    monkeypatch, participant_client, make_session
):
    session = make_session()

    def _refuse(self, target, user_id):
        raise SessionNotActive(target.session_id, "closed", "closed")

    monkeypatch.setattr(SessionManager, "join", _refuse)

    response = participant_client.post(
        "/api/budget/votes", json=_payload(session.session_id)
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "SESSION_NOT_ACTIVE"


def test_admin_close_produces_balanced_result(
    admin_client, client_for, make_session, participants
):
    session = make_session()
    _join(client_for, participants[:2], session.session_id)

    client_for(participants[0]).post(
        "/api/budget/votes", json=_payload(session.session_id, 150, 250, rate=20.0)
    )
    early = client_for(participants[0]).get(
        "/api/budget/results", params={"session_id": session.session_id}
    )
    assert early.status_code == 400

    client_for(participants[1]).post(
        "/api/budget/votes", json=_payload(session.session_id, 300, 100, rate=22.0)
    )
    closed = admin_client.post(f"/api/sessions/{session.session_id}/close")
    assert closed.status_code == 200, closed.text

    state = client_for(participants[0]).get(f"/api/sessions/{session.session_id}")
    assert state.json()["status"] == "closed"
    result = client_for(participants[0]).get(
        "/api/budget/results", params={"session_id": session.session_id}
    )
    assert result.status_code == 200
    body = result.json()
    assert body["voterCount"] == 2
    assert body["totalMedianExpenses"] == 400
    assert body["totalMedianIncome"] == 500
    assert body["balancedExpenses"] == 500
    amounts = {item["categoryId"]: item["medianAmount"] for item in body["medianAllocations"]}
    assert amounts["A"] == pytest.approx(281.25)
    assert amounts["B"] == pytest.approx(218.75)
    tax = next(
        item for item in body["medianIncomeAllocations"] if item["categoryId"] == "tax"
    )
    assert tax["medianTaxRatePercent"] == pytest.approx(21.0)


def test_result_is_computed_on_first_read(
    db_session, admin_client, client_for, make_session, participants
):
    session = make_session()
    voter = client_for(participants[0])
    voter.post("/api/budget/votes", json=_payload(session.session_id))
    assert admin_client.post(f"/api/sessions/{session.session_id}/close").status_code == 200
    store = VoteStore(db_session)
    assert store.delete_result(session.session_id)
    db_session.commit()

    response = voter.get("/api/budget/results", params={"session_id": session.session_id})

    assert response.status_code == 200
    assert response.json()["voterCount"] == 1
    assert store.get_result(session.session_id) is not None


def test_admin_recompute_closes_active_session(
    admin_client, client_for, make_session, participants
):
    session = make_session()
    _join(client_for, participants[:2], session.session_id)
    client_for(participants[0]).post("/api/budget/votes", json=_payload(session.session_id))

    forbidden = client_for(participants[0]).post(
        "/api/budget/results", json={"sessionId": session.session_id}
    )
    response = admin_client.post("/api/budget/results", json={"sessionId": session.session_id})

    assert forbidden.status_code == 403
    assert response.status_code == 200
    assert response.json()["voterCount"] == 1
    state = admin_client.get(f"/api/sessions/{session.session_id}").json()
    assert state["status"] == "closed"


def test_recompute_rejects_draft_and_empty_sessions(admin_client, make_session):
    draft = make_session(activate=False)
    empty = make_session(name="Täby Budget 2025", municipality="Täby")

    draft_response = admin_client.post(
        "/api/budget/results", json={"sessionId": draft.session_id}
    )
    empty_response = admin_client.post(
        "/api/budget/results", json={"sessionId": empty.session_id}
    )

    assert draft_response.status_code == 400
    assert draft_response.json()["detail"]["code"] == "INVALID_TRANSITION"
    assert empty_response.status_code == 400
    assert empty_response.json()["detail"]["code"] == "EMPTY_VOTE_SET"
