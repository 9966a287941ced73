"""
QAFlow test configuration

Activity log tables on a file database; a fresh session registry with a fake
pipeline service per test.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from qaflow.database.config import Base, get_db
from qaflow.database import activity_models  # noqa: F401 - registers tables
from qaflow.main import app
from qaflow.services.activity_service import ActivityRecorder
from qaflow.services.session_service import SessionRegistry

from factories import make_api

# file database (in-memory connections are isolated per connection)
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Database dependency override"""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def apply_overrides():
    old_overrides = app.dependency_overrides.copy()
    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = old_overrides


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop them afterwards"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_api():
    return make_api()


@pytest.fixture
def registry(fake_api):
    """Session registry wired to the fake pipeline service"""
    registry = SessionRegistry(
        client_factory=lambda: fake_api,
        recorder=ActivityRecorder(TestingSessionLocal),
    )
    app.state.sessions = registry
    yield registry
    del app.state.sessions


@pytest.fixture
def client(registry):
    """Test client (lifespan not run; state prepared by fixtures)"""
    from fastapi.testclient import TestClient
    return TestClient(app)
