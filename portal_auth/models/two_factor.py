"""Two-factor authentication database models."""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .base import Base
import uuid


class TwoFactorCredential(Base):
    """TOTP secret and backup codes for one user."""
    __tablename__ = "user_two_factor"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    secret_key = Column(String, nullable=False)  # Fernet-encrypted base32 secret
    is_enabled = Column(Boolean, default=False, nullable=False)
    backup_codes = Column(JSON, nullable=False, default=list)  # ordered, unused codes only
    setup_initiated_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationship
    user = relationship("User", back_populates="two_factor")

    def __repr__(self):
        return f"<TwoFactorCredential(id={self.id}, user_id={self.user_id}, enabled={self.is_enabled})>"


class TwoFactorAttempt(Base):
    """Append-only record of a second-factor verification attempt."""
    __tablename__ = "two_factor_attempts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    success = Column(Boolean, default=False, nullable=False)
    token_used = Column(String(10), nullable=True)  # masked prefix, never the full code
    attempted_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_two_factor_attempts_user_attempted", "user_id", "attempted_at"),
    )

    def __repr__(self):
        return f"<TwoFactorAttempt(id={self.id}, user_id={self.user_id}, success={self.success})>"
