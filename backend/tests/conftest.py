import time
from typing import List

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.core.database import Base, build_engine
from app.main import create_app
from app.models.user import User
from app.services.broadcaster import RosterBroadcaster

DEFAULT_PASSWORD = "pw123"


class RecordingBroadcaster(RosterBroadcaster):
    """Broadcaster that also remembers every event it was asked to send."""

    def __init__(self) -> None:
        super().__init__()
        self.events: List[str] = []

    async def broadcast(self, event: str = "usersUpdated") -> int:
        self.events.append(event)
        return await super().broadcast(event)


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret-key",
        BCRYPT_ROUNDS=4,
        CORS_ORIGINS="http://localhost:5173",
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def app(settings, engine, broadcaster):
    return create_app(settings=settings, engine=engine, broadcaster=broadcaster)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db(app):
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def register(client):
    def _register(name: str, email: str, password: str = DEFAULT_PASSWORD):
        return client.post("/api/register", json={"name": name, "email": email, "password": password})
    return _register


@pytest.fixture
def login(client):
    def _login(email: str, password: str = DEFAULT_PASSWORD) -> str:
        response = client.post("/api/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["token"]
    return _login


@pytest.fixture
def user_id(db):
    def _user_id(email: str) -> int:
        db.expire_all()
        return db.query(User.id).filter(User.email == email).scalar()
    return _user_id


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def wait_for_connections(broadcaster: RosterBroadcaster, expected: int, timeout: float = 2.0) -> None:
    """The server registers a socket just after accepting it; give it a moment."""
    deadline = time.monotonic() + timeout
    while broadcaster.connection_count != expected:
        if time.monotonic() > deadline:
            raise AssertionError(
                f"expected {expected} connections, have {broadcaster.connection_count}"
            )
        time.sleep(0.01)
