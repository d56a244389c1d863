"""
Login session state machine

NO_SESSION -> PENDING_SECOND_FACTOR -> AUTHENTICATED, or straight to
AUTHENTICATED when the user has no enabled second factor. Sessions end by
logout (row deleted) or expiry.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from portal_auth.auth.errors import (
    AlreadyCompleteError,
    SecondFactorRequiredError,
    SessionExpiredError,
    SessionNotFoundError,
)
from portal_auth.auth.security import generate_session_token, hash_session_token
from portal_auth.config.two_factor_config import FULL_SESSION_TTL_HOURS, PENDING_SESSION_TTL_MINUTES
from portal_auth.core.logging import get_logger
from portal_auth.models.session import LoginSession
from portal_auth.models.user import User

logger = get_logger(__name__)


@dataclass
class IssuedSession:
    token: str  # raw bearer token, returned to the client once
    session: LoginSession


class SessionService:
    PENDING_TTL = timedelta(minutes=PENDING_SESSION_TTL_MINUTES)
    FULL_TTL = timedelta(hours=FULL_SESSION_TTL_HOURS)

    def __init__(self, db: Session):
        self.db = db

    def create_session(
        self,
        user: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedSession:
        """Issue a session after the password check succeeded."""
        now = datetime.now(timezone.utc)
        pending = user.has_two_factor_enabled
        token = generate_session_token()

        session = LoginSession(
            user_id=user.id,
            token_hash=hash_session_token(token),
            two_factor_complete=not pending,
            created_at=now,
            expires_at=now + (self.PENDING_TTL if pending else self.FULL_TTL),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)

        logger.info(
            f"Session {session.id} created for user {user.id} "
            f"({'pending second factor' if pending else 'authenticated'})"
        )
        return IssuedSession(token=token, session=session)

    def get_session(self, token: str) -> LoginSession:
        """Look up a live session by its raw token."""
        session = self.db.execute(
            select(LoginSession).where(LoginSession.token_hash == hash_session_token(token))
        ).scalar_one_or_none()

        if session is None:
            raise SessionNotFoundError()

        if session.is_expired():
            logger.info(f"Session {session.id} expired, removing")
            self.db.delete(session)
            self.db.commit()
            raise SessionExpiredError()

        return session

    def promote(self, session: LoginSession) -> LoginSession:
        """
        Mark the second factor as done and extend the session. One way only.

        The flip is a conditional UPDATE, so of two concurrent promotions of
        the same session exactly one succeeds. Pending changes in the caller's
        transaction (such as a consumed backup code) are committed with it or
        rolled back together.
        """
        if session.two_factor_complete:
            raise AlreadyCompleteError()

        result = self.db.execute(
            update(LoginSession)
            .where(LoginSession.id == session.id, LoginSession.two_factor_complete.is_(False))
            .values(two_factor_complete=True, expires_at=datetime.now(timezone.utc) + self.FULL_TTL)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            logger.warning(f"Session {session.id} was already promoted by a concurrent request")
            raise AlreadyCompleteError()

        self.db.commit()
        self.db.refresh(session)

        logger.info(f"Session {session.id} promoted to authenticated")
        return session

    def authenticate(self, token: str) -> LoginSession:
        """Resolve a bearer token for a protected endpoint; pending sessions are refused."""
        session = self.get_session(token)
        if not session.two_factor_complete:
            raise SecondFactorRequiredError()
        return session

    def logout(self, token: str) -> bool:
        """Delete the session for token. Returns False when there was nothing to delete."""
        result = self.db.execute(
            delete(LoginSession).where(LoginSession.token_hash == hash_session_token(token))
        )
        self.db.commit()
        return result.rowcount > 0

    def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            delete(LoginSession)
            .where(LoginSession.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired sessions")
        return result.rowcount
