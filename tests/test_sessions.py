"""Tests for the login session state machine."""
import pytest
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from portal_auth.auth.errors import (
    AlreadyCompleteError,
    SecondFactorRequiredError,
    SessionExpiredError,
    SessionNotFoundError,
)
from portal_auth.auth.security import hash_session_token
from portal_auth.models.session import LoginSession, SessionState, as_utc
from portal_auth.services.session_service import SessionService


@pytest.fixture
def session_service(test_db):
    return SessionService(test_db)


def _expires_in(session: LoginSession) -> timedelta:
    return as_utc(session.expires_at) - datetime.now(timezone.utc)


class TestCreateSession:

    def test_user_without_second_factor_is_authenticated(self, session_service, create_user):
        user = create_user()

        issued = session_service.create_session(user, "10.0.0.1", "pytest")

        assert issued.session.two_factor_complete is True
        assert issued.session.state == SessionState.AUTHENTICATED
        assert timedelta(hours=23, minutes=59) < _expires_in(issued.session) <= timedelta(hours=24)

    def test_user_with_second_factor_is_pending(self, session_service, enabled_user):
        user, _, _ = enabled_user

        issued = session_service.create_session(user, "10.0.0.1", "pytest")

        assert issued.session.two_factor_complete is False
        assert issued.session.state == SessionState.PENDING_SECOND_FACTOR
        assert timedelta(minutes=9) < _expires_in(issued.session) <= timedelta(minutes=10)

    def test_only_token_hash_is_stored(self, session_service, test_db, create_user):
        user = create_user()

        issued = session_service.create_session(user)

        stored = test_db.execute(select(LoginSession)).scalar_one()
        assert stored.token_hash == hash_session_token(issued.token)
        assert stored.token_hash != issued.token
        assert len(stored.token_hash) == 64

    def test_tokens_are_unique(self, session_service, create_user):
        user = create_user()
        tokens = {session_service.create_session(user).token for _ in range(5)}
        assert len(tokens) == 5


class TestGetSession:

    def test_unknown_token(self, session_service):
        with pytest.raises(SessionNotFoundError) as exc_info:
            session_service.get_session("no-such-token")
        assert exc_info.value.kind == "SessionNotFound"

    def test_expired_session_is_removed(self, session_service, test_db, enabled_user):
        user, _, _ = enabled_user
        issued = session_service.create_session(user)
        issued.session.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        test_db.commit()

        with pytest.raises(SessionExpiredError) as exc_info:
            session_service.get_session(issued.token)
        assert exc_info.value.kind == "SessionExpired"

        # Expiry is a kind of "not found" for callers
        with pytest.raises(SessionNotFoundError):
            session_service.get_session(issued.token)
        assert test_db.execute(select(LoginSession)).first() is None


class TestPromotion:

    def test_promote_extends_ttl(self, session_service, enabled_user):
        user, _, _ = enabled_user
        issued = session_service.create_session(user)

        promoted = session_service.promote(issued.session)

        assert promoted.two_factor_complete is True
        assert promoted.state == SessionState.AUTHENTICATED
        assert _expires_in(promoted) > timedelta(hours=23)

    def test_second_promotion_fails(self, session_service, enabled_user):
        user, _, _ = enabled_user
        issued = session_service.create_session(user)
        session_service.promote(issued.session)
        expires_at = issued.session.expires_at

        with pytest.raises(AlreadyCompleteError) as exc_info:
            session_service.promote(issued.session)

        assert exc_info.value.kind == "AlreadyComplete"
        assert issued.session.expires_at == expires_at

    def test_stale_copy_cannot_promote_again(self, session_service, session_factory, enabled_user):
        user, _, _ = enabled_user
        issued = session_service.create_session(user)

        other_db = session_factory()
        try:
            other = SessionService(other_db)
            stale = other.get_session(issued.token)
            assert stale.two_factor_complete is False

            session_service.promote(session_service.get_session(issued.token))

            with pytest.raises(AlreadyCompleteError):
                other.promote(stale)
        finally:
            other_db.close()

    def test_token_is_unchanged_by_promotion(self, session_service, enabled_user):
        user, _, _ = enabled_user
        issued = session_service.create_session(user)
        session_service.promote(issued.session)

        assert session_service.get_session(issued.token).two_factor_complete is True


class TestAuthenticate:

    def test_pending_session_is_refused(self, session_service, enabled_user):
        user, _, _ = enabled_user
        issued = session_service.create_session(user)

        with pytest.raises(SecondFactorRequiredError):
            session_service.authenticate(issued.token)

    def test_complete_session_is_accepted(self, session_service, enabled_user):
        user, _, _ = enabled_user
        issued = session_service.create_session(user)
        session_service.promote(issued.session)

        assert session_service.authenticate(issued.token).user_id == user.id


class TestLogout:

    def test_logout_is_idempotent(self, session_service, create_user):
        user = create_user()
        issued = session_service.create_session(user)

        assert session_service.logout(issued.token) is True
        assert session_service.logout(issued.token) is False
        assert session_service.logout("never-issued") is False

        with pytest.raises(SessionNotFoundError):
            session_service.get_session(issued.token)


def test_purge_expired(session_service, test_db, create_user):
    user = create_user()
    live = session_service.create_session(user)
    stale = session_service.create_session(user)
    stale.session.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    test_db.commit()

    assert session_service.purge_expired() == 1

    test_db.expire_all()
    remaining = test_db.execute(select(LoginSession)).scalars().all()
    assert [s.token_hash for s in remaining] == [hash_session_token(live.token)]
