import os
from datetime import timedelta
from typing import Generator
from unittest.mock import MagicMock

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret-for-testing-only"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-for-testing-only"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["APP_ENV"] = "test"
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from chirp.dependencies import get_notifier
from chirp.main import app
from chirp.models.database import Base, get_db
from chirp.models.user import User
from chirp.services.email_service import EmailNotifier
from chirp.services.jwt_service import TokenCodec
from chirp.services.password_hasher import CredentialHasher
from chirp.services.rate_limit import reset_rate_limits
from chirp.services.session_service import SessionService

TEST_PASSWORD = "Testpass1!"

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(autouse=True)
def _clear_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=EmailNotifier)


@pytest.fixture(scope="function")
def client(db: Session, notifier: MagicMock) -> Generator[TestClient, None, None]:
    """Create a test client with database and notifier overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec.from_settings()


@pytest.fixture
def expired_codec() -> TokenCodec:
    return TokenCodec(
        access_secret=os.environ["JWT_ACCESS_SECRET"],
        refresh_secret=os.environ["JWT_REFRESH_SECRET"],
        access_expires=timedelta(seconds=-30),
        refresh_expires=timedelta(seconds=-30),
    )


@pytest.fixture
def service(db: Session, hasher: CredentialHasher, codec: TokenCodec, notifier: MagicMock) -> SessionService:
    return SessionService(db=db, hasher=hasher, codec=codec, notifier=notifier)


@pytest.fixture
def test_user(db: Session, hasher: CredentialHasher) -> User:
    """Create a test user."""
    user = User(
        email="test@example.com",
        username="tester",
        first_name="Test",
        last_name="User",
        hashed_password=hasher.hash(TEST_PASSWORD),
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def inactive_user(db: Session, hasher: CredentialHasher) -> User:
    user = User(
        email="gone@example.com",
        username="gone",
        hashed_password=hasher.hash(TEST_PASSWORD),
        is_active=False,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def login_tokens(client: TestClient, test_user: User) -> dict[str, str]:
    """Log the test user in and return its token pair."""
    response = client.post(
        "/api/auth/login",
        json={"email": "test@example.com", "password": TEST_PASSWORD},
    )
    assert response.status_code == 200
    return response.json()["data"]


@pytest.fixture
def auth_headers(login_tokens: dict[str, str]) -> dict[str, str]:
    """Get auth headers with access token."""
    return {"Authorization": f"Bearer {login_tokens['accessToken']}"}
