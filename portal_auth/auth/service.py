from sqlalchemy.orm import Session
from sqlalchemy import select
from typing import Optional
from fastapi import HTTPException, status
from .errors import InvalidPasswordError
from .security import verify_password, get_password_hash
from .schemas import UserCreate, UserLogin, LoginResponse, UserResponse
from ..models.session import as_utc
from ..models.user import User
from ..services.audit_logging_service import AuditEventType, AuditLogger
from ..services.session_service import SessionService


class AuthService:
    """Password step of the login handshake."""

    def __init__(self, db: Session, audit: Optional[AuditLogger] = None):
        self.db = db
        self.audit = audit
        self.sessions = SessionService(db)

    def create_user(self, user_data: UserCreate) -> User:
        """Create a new user."""
        if self.get_user_by_email(user_data.email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        db_user = User(
            email=user_data.email,
            hashed_password=get_password_hash(user_data.password)
        )

        self.db.add(db_user)
        self.db.commit()
        self.db.refresh(db_user)
        return db_user

    def authenticate_user(self, login_data: UserLogin) -> Optional[User]:
        """Authenticate user with email and password."""
        user = self.get_user_by_email(login_data.email)

        if not user:
            return None

        if not verify_password(login_data.password, user.hashed_password):
            return None

        if not user.is_active:
            return None

        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        return self.db.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()

    def login(
        self,
        login_data: UserLogin,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResponse:
        """
        Check the password and open a session.

        Users with an enabled second factor get a pending session that only
        /2fa/verify accepts; everyone else is authenticated straight away.
        """
        user = self.authenticate_user(login_data)
        if not user:
            if self.audit:
                self.audit.log_event(AuditEventType.LOGIN_FAILURE, None, ip_address)
            raise InvalidPasswordError()

        issued = self.sessions.create_session(user, ip_address, user_agent)
        if self.audit:
            self.audit.log_event(
                AuditEventType.SESSION_CREATED,
                user.id,
                ip_address,
                {"two_factor_complete": issued.session.two_factor_complete},
            )

        return LoginResponse(
            session_token=issued.token,
            requires_two_factor=not issued.session.two_factor_complete,
            two_factor_complete=issued.session.two_factor_complete,
            expires_at=as_utc(issued.session.expires_at),
            user=UserResponse.model_validate(user),
        )

    def logout(self, token: str) -> bool:
        deleted = self.sessions.logout(token)
        if self.audit and deleted:
            self.audit.log_event(AuditEventType.LOGOUT, None)
        return deleted
