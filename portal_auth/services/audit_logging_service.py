"""
Audit trail for second-factor verification
Attempt rows go to the database; other security events go to the log
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal_auth.auth.two_factor_codes import mask_token
from portal_auth.core.logging import get_logger
from portal_auth.models.two_factor import TwoFactorAttempt

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    LOGIN_FAILURE = "login_failure"
    LOGOUT = "logout"
    SESSION_CREATED = "session_created"
    SESSION_PROMOTED = "session_promoted"
    TWO_FACTOR_SETUP_STARTED = "two_factor_setup_started"
    TWO_FACTOR_ENABLED = "two_factor_enabled"
    TWO_FACTOR_DISABLED = "two_factor_disabled"
    BACKUP_CODE_USED = "backup_code_used"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"
    VERIFICATION_SUCCESS = "verification_success"
    VERIFICATION_FAILURE = "verification_failure"


class AuditLogger:
    """
    Records verification attempts in their own database session.

    Writing the audit row is best effort: a failure is logged and never
    reaches the caller, so it cannot change a verification result.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record_attempt(
        self,
        user_id: str,
        client_ip: Optional[str],
        success: bool,
        token_used: Optional[str],
    ) -> Optional[TwoFactorAttempt]:
        attempt = TwoFactorAttempt(
            user_id=user_id,
            ip_address=client_ip,
            success=success,
            token_used=mask_token(token_used),
            attempted_at=datetime.now(timezone.utc),
        )

        db = None
        try:
            db = self.session_factory()
            db.add(attempt)
            db.commit()
            db.refresh(attempt)
            db.expunge(attempt)
        except SQLAlchemyError as e:
            if db is not None:
                db.rollback()
            logger.error(f"Failed to record verification attempt for user {user_id}: {str(e)}")
            return None
        finally:
            if db is not None:
                db.close()

        event_type = AuditEventType.VERIFICATION_SUCCESS if success else AuditEventType.VERIFICATION_FAILURE
        self.log_event(event_type, user_id, client_ip)
        return attempt

    def log_event(
        self,
        event_type: AuditEventType,
        user_id: Optional[str],
        client_ip: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        message = f"Audit event {event_type.value} user={user_id} ip={client_ip}"
        if details:
            message += " " + " ".join(f"{k}={v}" for k, v in sorted(details.items()))

        if event_type in (AuditEventType.VERIFICATION_FAILURE, AuditEventType.LOGIN_FAILURE):
            logger.warning(message)
        else:
            logger.info(message)

    def recent_attempts(self, db: Session, user_id: str, limit: int = 10) -> List[TwoFactorAttempt]:
        return list(
            db.execute(
                select(TwoFactorAttempt)
                .where(TwoFactorAttempt.user_id == user_id)
                .order_by(desc(TwoFactorAttempt.attempted_at))
                .limit(limit)
            ).scalars().all()
        )
