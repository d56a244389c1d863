"""Login session model backing the two-step handshake."""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, String, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from .base import Base


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionState(str, enum.Enum):
    NO_SESSION = "no_session"
    PENDING_SECOND_FACTOR = "pending_second_factor"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class LoginSession(Base):
    """
    Login session keyed by the SHA256 hash of its bearer token.

    A session starts pending (two_factor_complete False) when the user has
    an enabled credential and can only move to complete, never back.
    """
    __tablename__ = "login_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    token_hash = Column(String(64), nullable=False, unique=True)  # SHA256 of the bearer token
    two_factor_complete = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=False)

    ip_address = Column(String(45))
    user_agent = Column(Text)

    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index("ix_login_sessions_user_id", "user_id"),
        Index("ix_login_sessions_expires_at", "expires_at"),
    )

    def __repr__(self):
        return f"<LoginSession(id={self.id}, user_id={self.user_id}, complete={self.two_factor_complete})>"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return as_utc(self.expires_at) <= now

    @property
    def state(self) -> SessionState:
        if self.is_expired():
            return SessionState.EXPIRED
        if self.two_factor_complete:
            return SessionState.AUTHENTICATED
        return SessionState.PENDING_SECOND_FACTOR
