import pytest
import os
import tempfile
from datetime import datetime, timezone

import pyotp
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from portal_auth.auth.dependencies import get_attempt_limiter, get_audit_logger
from portal_auth.auth.security import encrypt_sensitive_data, get_password_hash
from portal_auth.database import get_db
from portal_auth.main import app
from portal_auth.models import Base, TwoFactorCredential, User
from portal_auth.services.audit_logging_service import AuditLogger
from portal_auth.services.rate_limiting_service import AttemptLimiter, InMemoryAttemptStore

TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture(scope="function")
def session_factory():
    """Temporary SQLite database shared by the request and audit sessions"""
    db_fd, db_path = tempfile.mkstemp()
    test_database_url = f"sqlite:///{db_path}"

    engine = create_engine(test_database_url, connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)

    yield TestingSessionLocal

    # Cleanup
    engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def test_db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def audit_logger(session_factory):
    return AuditLogger(session_factory)


@pytest.fixture
def limiter():
    return AttemptLimiter(InMemoryAttemptStore())


@pytest.fixture
def create_user(test_db):
    """Factory for users with a known password"""
    def _create_user(email: str = "borrower@example.com", password: str = TEST_PASSWORD) -> User:
        user = User(email=email, hashed_password=get_password_hash(password))
        test_db.add(user)
        test_db.commit()
        test_db.refresh(user)
        return user
    return _create_user


@pytest.fixture
def enabled_user(test_db, create_user):
    """User with an enabled credential: (user, secret, backup_codes)"""
    user = create_user()
    secret = pyotp.random_base32()
    backup_codes = ["99EE3096", "9D062644", "0A1B2C3D"]
    test_db.add(TwoFactorCredential(
        user_id=user.id,
        secret_key=encrypt_sensitive_data(secret),
        is_enabled=True,
        backup_codes=list(backup_codes),
        setup_initiated_at=datetime.now(timezone.utc),
    ))
    test_db.commit()
    test_db.refresh(user)
    return user, secret, backup_codes


@pytest.fixture
def client(session_factory, limiter, audit_logger):
    """TestClient wired to the temporary database and a fresh limiter"""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_attempt_limiter] = lambda: limiter
    app.dependency_overrides[get_audit_logger] = lambda: audit_logger

    yield TestClient(app)

    app.dependency_overrides.clear()
