from datetime import datetime
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from budgetvote.auth.auth import create_access_token
from budgetvote.config.loader import VotingSettings, get_voting_settings
from budgetvote.data.session_manager import SessionManager
from budgetvote.database import Base, get_db
from budgetvote.main import app
from budgetvote.models.user import User, UserRole
from budgetvote.services.phase_machine import SessionPhaseMachine
from budgetvote.utils.timeutils import utc_now

# One shared in-memory database for the whole run
TEST_DATABASE_URL = "sqlite://"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False)

BUDGET_CATEGORIES = [
    {
        "id": "A",
        "name": "Schools",
        "defaultAmount": 200,
        "minAmount": 100,
        "subcategories": [
            {"id": "A1", "name": "Preschool", "defaultAmount": 80, "minAmount": 20},
            {"id": "A2", "name": "Primary", "defaultAmount": 120, "minAmount": 0},
        ],
    },
    {"id": "B", "name": "Parks", "defaultAmount": 300, "minAmount": 0},
]

INCOME_CATEGORIES = [
    {
        "id": "tax",
        "name": "Municipal tax",
        "amount": 400,
        "isTaxRate": True,
        "taxRatePercent": 20.0,
    },
    {"id": "fees", "name": "Fees", "amount": 100},
]


@pytest.fixture(scope="session")
def create_test_tables():
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function")
def db_connection(create_test_tables):
    """A connection whose outer transaction is rolled back after the test."""
    connection = engine.connect()
    transaction = connection.begin()
    try:
        yield connection
    finally:
        if transaction.is_active:
            transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def db_session(db_connection):
    """
    Session used by the app under test (overrides get_db).
    Rolled back with the connection after the test.
    """
    db = TestingSessionLocal(bind=db_connection)
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield db
    finally:
        db.close()
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture(scope="function")
def peer_db_session(db_connection):
    """A second, independent session: stands in for a concurrent request."""
    db = TestingSessionLocal(bind=db_connection)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def voting_settings():
    settings = VotingSettings(
        termination_grace_seconds=60,
        auto_close_grace_seconds=0,
        phase2_duration_hours=6,
    )
    app.dependency_overrides[get_voting_settings] = lambda: settings
    try:
        yield settings
    finally:
        app.dependency_overrides.pop(get_voting_settings, None)


def _add_user(db: Session, login: str, role: str) -> User:
    user = User(login=login, display_name=login.title(), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    return _add_user(db_session, "admin", UserRole.ADMIN.value)


@pytest.fixture(scope="function")
def participants(db_session: Session):
    return [
        _add_user(db_session, f"voter{index}", UserRole.PARTICIPANT.value)
        for index in range(1, 4)
    ]


def auth_headers(login: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': login})}"}


@pytest.fixture(scope="function")
def client(db_session: Session, voting_settings):
    """Unauthenticated client; the app shares db_session through get_db."""
    return TestClient(app)


@pytest.fixture(scope="function")
def admin_client(db_session: Session, voting_settings, admin_user: User):
    return TestClient(app, headers=auth_headers(admin_user.login))


@pytest.fixture(scope="function")
def client_for(db_session: Session, voting_settings):
    """Build a client authenticated as the given user."""

    def _build(user: User) -> TestClient:
        return TestClient(app, headers=auth_headers(user.login))

    return _build


@pytest.fixture(scope="function")
def participant_client(client_for, participants):
    return client_for(participants[0])


@pytest.fixture(scope="function")
def make_session(db_session: Session, admin_user: User):
    """Create (and optionally activate) a session straight through the services."""

    def _make(
        session_type: str = "budget",
        *,
        activate: bool = True,
        name: str = "Vallentuna Budget 2025",
        municipality: str = "Vallentuna",
        single_result: bool = False,
        now: Optional[datetime] = None,
    ):
        now = now or utc_now()
        manager = SessionManager(db_session)
        session = manager.create_session(
            name=name,
            session_type=session_type,
            municipality=municipality,
            categories=BUDGET_CATEGORIES if session_type == "budget" else [],
            income_categories=INCOME_CATEGORIES if session_type == "budget" else [],
            single_result=single_result,
            created_by=admin_user.user_id,
            now=now,
        )
        if activate:
            SessionPhaseMachine(db_session).activate(session, now=now)
            db_session.commit()
        return session

    return _make
