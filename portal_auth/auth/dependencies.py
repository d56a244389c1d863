from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from .errors import SessionNotFoundError
from ..config.two_factor_config import TRUST_PROXY_HEADERS
from ..database import get_db
from ..models.user import User
from ..services.audit_logging_service import AuditLogger
from ..services.rate_limiting_service import AttemptLimiter
from ..services.session_service import SessionService

# Security scheme; missing credentials surface as SessionNotFound rather than FastAPI's 403
security = HTTPBearer(auto_error=False)


def get_client_ip(request: Request) -> Optional[str]:
    """Client address used for rate limiting and audit."""
    if TRUST_PROXY_HEADERS:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # Take the first IP in the chain
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip
    return request.client.host if request.client else None


def get_attempt_limiter(request: Request) -> AttemptLimiter:
    """Limiter built at startup and kept on the application state."""
    return request.app.state.attempt_limiter


def get_audit_logger(request: Request) -> AuditLogger:
    return request.app.state.audit_logger


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    if credentials is None or not credentials.credentials:
        raise SessionNotFoundError("Missing bearer token")
    return credentials.credentials


async def get_current_user(
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the user behind a fully authenticated session.

    Pending sessions raise SecondFactorRequired, so nothing protected by this
    dependency is reachable before /2fa/verify succeeds.
    """
    session = SessionService(db).authenticate(token)

    user = session.user
    if user is None or not user.is_active:
        raise SessionNotFoundError()
    return user
