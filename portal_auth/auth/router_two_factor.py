"""Two-factor authentication router implementation."""
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import List
import io

from .schemas_two_factor import (
    BackupCodesResponse,
    GenerateBackupCodesRequest,
    TwoFactorAttemptLog,
    TwoFactorDisableRequest,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
    TwoFactorVerifyRequest,
    TwoFactorVerifyResponse,
    TwoFactorVerifySetupRequest,
    TwoFactorVerifySetupResponse,
)
from .two_factor_service import TwoFactorService
from .dependencies import get_attempt_limiter, get_audit_logger, get_client_ip, get_current_user
from ..database import get_db
from ..models.user import User
from ..services.audit_logging_service import AuditLogger
from ..services.rate_limiting_service import AttemptLimiter

router = APIRouter(prefix="/2fa", tags=["two-factor"])


def get_two_factor_service(
    db: Session = Depends(get_db),
    limiter: AttemptLimiter = Depends(get_attempt_limiter),
    audit: AuditLogger = Depends(get_audit_logger),
) -> TwoFactorService:
    return TwoFactorService(db, limiter, audit)


@router.post("/setup", response_model=TwoFactorSetupResponse, status_code=status.HTTP_200_OK)
async def setup_two_factor(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Start two-factor setup for the current user.

    Generates a new TOTP secret and returns it as a QR code data URL and as
    a manual entry key. Calling this again before confirming replaces the
    previous secret. The credential stays disabled until `/2fa/verify-setup`
    succeeds.
    """
    return await service.setup(current_user)


@router.get("/qr-code")
async def get_qr_code(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """PNG QR code for the pending (unconfirmed) secret."""
    qr_code_data = service.generate_qr_code(current_user)

    return StreamingResponse(
        io.BytesIO(qr_code_data),
        media_type="image/png",
        headers={"Content-Disposition": "inline; filename=two_factor_qr_code.png"}
    )


@router.post("/verify-setup", response_model=TwoFactorVerifySetupResponse)
async def verify_setup(
    request_data: TwoFactorVerifySetupRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Confirm setup with a code from the authenticator app.

    On success two-factor authentication is enabled and the backup codes are
    returned. They are never shown again.

    Rate limited per client and user.
    """
    return await service.verify_setup(current_user, request_data.token, get_client_ip(request))


@router.post("/verify", response_model=TwoFactorVerifyResponse)
async def verify_login(
    request_data: TwoFactorVerifyRequest,
    request: Request,
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Second step of login.

    Takes the pending `sessionToken` from `/auth/login` and either a 6-digit
    TOTP code or an 8-character backup code. On success the same session
    token becomes a full session. A used backup code is removed for good.

    Rate limited per client and user.
    """
    return await service.verify_login(
        request_data.session_token, request_data.token, get_client_ip(request)
    )


@router.post("/disable", status_code=status.HTTP_200_OK)
async def disable_two_factor(
    request_data: TwoFactorDisableRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Disable two-factor authentication.

    Requires the current password and a valid TOTP or backup code. Remaining
    backup codes are discarded.
    """
    await service.disable(
        current_user, request_data.password, request_data.token, get_client_ip(request)
    )
    return {"message": "Two-factor authentication disabled", "enabled": False}


@router.get("/status", response_model=TwoFactorStatusResponse)
async def get_two_factor_status(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    return service.get_status(current_user)


@router.post("/generate-backup-codes", response_model=BackupCodesResponse)
async def generate_backup_codes(
    request_data: GenerateBackupCodesRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Replace all backup codes with a fresh set.

    Needs a TOTP code from the authenticator app; backup codes are not
    accepted here. Every previous backup code stops working.
    """
    return await service.regenerate_backup_codes(current_user, request_data.token, get_client_ip(request))


@router.get("/attempts", response_model=List[TwoFactorAttemptLog])
async def get_attempts(
    limit: int = 10,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """Recent verification attempts for the current user, newest first."""
    if limit > 50:
        limit = 50
    return service.get_recent_attempts(current_user, max(1, limit))
