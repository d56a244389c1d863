from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from .schemas import UserCreate, UserLogin, UserResponse, LoginResponse
from .service import AuthService
from .dependencies import get_audit_logger, get_bearer_token, get_client_ip, get_current_user
from ..database import get_db
from ..models.user import User
from ..services.audit_logging_service import AuditLogger

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register_user(
    user_data: UserCreate,
    db: Session = Depends(get_db)
):
    """Register a new user."""
    auth_service = AuthService(db)
    return auth_service.create_user(user_data)


@router.post("/login", response_model=LoginResponse)
def login_user(
    login_data: UserLogin,
    request: Request,
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger)
):
    """
    Password step of login.

    - No two-factor credential: the returned session token is immediately usable.
    - Two-factor enabled: the token is pending; pass it as `sessionToken` to
      `/2fa/verify` within 10 minutes. Until then protected endpoints reject it.
    """
    auth_service = AuthService(db, audit)
    return auth_service.login(login_data, get_client_ip(request), request.headers.get("user-agent"))


@router.post("/logout", status_code=status.HTTP_200_OK)
def logout_user(
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger)
):
    """Delete the session. Logging out twice is not an error."""
    AuthService(db, audit).logout(token)
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information."""
    return current_user
