"""Two-factor authentication service implementation."""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import (
    AlreadyCompleteError,
    AlreadyEnabledError,
    InvalidCodeError,
    InvalidPasswordError,
    NotEnabledError,
    NotInitiatedError,
)
from .schemas_two_factor import (
    BackupCodesResponse,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
    TwoFactorVerifyResponse,
    TwoFactorVerifySetupResponse,
)
from .security import decrypt_sensitive_data, encrypt_sensitive_data, verify_password
from .two_factor_codes import (
    METHOD_BACKUP_CODE,
    METHOD_TOTP,
    CodeCheck,
    TotpCode,
    build_provisioning_uri,
    generate_backup_codes,
    generate_secret,
    parse_submitted_code,
    render_provisioning_data_url,
    render_provisioning_image,
    verify_submitted_code,
    verify_totp,
)
from ..config.two_factor_config import TOTP_DRIFT_WINDOW, TWO_FACTOR_ISSUER
from ..core.logging import get_logger
from ..models.session import as_utc
from ..models.two_factor import TwoFactorAttempt, TwoFactorCredential
from ..models.user import User
from ..services.audit_logging_service import AuditEventType, AuditLogger
from ..services.rate_limiting_service import AttemptLimiter
from ..services.session_service import SessionService

logger = get_logger(__name__)


class TwoFactorService:
    """
    Orchestrates setup, verification and backup-code handling.

    Every code-checking operation goes through the attempt limiter first, then
    the verifier, and records the outcome with the audit logger.
    """

    def __init__(
        self,
        db: Session,
        limiter: AttemptLimiter,
        audit: AuditLogger,
        issuer: str = TWO_FACTOR_ISSUER,
        drift_window: int = TOTP_DRIFT_WINDOW,
    ):
        self.db = db
        self.limiter = limiter
        self.audit = audit
        self.issuer = issuer
        self.drift_window = drift_window
        self.sessions = SessionService(db)

    def _get_credential(self, user_id: str) -> Optional[TwoFactorCredential]:
        return self.db.execute(
            select(TwoFactorCredential).where(TwoFactorCredential.user_id == user_id)
        ).scalar_one_or_none()

    def _get_enabled_credential(self, user_id: str) -> TwoFactorCredential:
        credential = self._get_credential(user_id)
        if credential is None or not credential.is_enabled:
            raise NotEnabledError()
        return credential

    def _check_code(self, credential: TwoFactorCredential, token: str) -> CodeCheck:
        submitted = parse_submitted_code(token)
        secret = decrypt_sensitive_data(credential.secret_key)
        if not secret and isinstance(submitted, TotpCode):
            logger.error(f"Stored secret for user {credential.user_id} could not be decrypted")
            return CodeCheck(valid=False, method=METHOD_TOTP, remaining_codes=list(credential.backup_codes or []))
        return verify_submitted_code(
            submitted, secret, list(credential.backup_codes or []), drift_window=self.drift_window
        )

    def _reject(self, user_id: str, client_ip: Optional[str], token: str) -> InvalidCodeError:
        self.audit.record_attempt(user_id, client_ip, False, token)
        return InvalidCodeError()

    async def setup(self, user: User) -> TwoFactorSetupResponse:
        """Provision a new unconfirmed secret, replacing any previous unconfirmed one."""
        credential = self._get_credential(user.id)
        if credential is not None and credential.is_enabled:
            raise AlreadyEnabledError("Two-factor authentication is already enabled. Disable it first to reconfigure.")

        generated = generate_secret(user.email, self.issuer)
        qr_code = render_provisioning_data_url(generated.provisioning_uri)

        now = datetime.now(timezone.utc)
        secret_encrypted = encrypt_sensitive_data(generated.secret)

        if credential is not None:
            credential.secret_key = secret_encrypted
            credential.backup_codes = []
            credential.setup_initiated_at = now
        else:
            self.db.add(TwoFactorCredential(
                user_id=user.id,
                secret_key=secret_encrypted,
                is_enabled=False,
                backup_codes=[],
                setup_initiated_at=now,
            ))
        self.db.commit()

        self.audit.log_event(AuditEventType.TWO_FACTOR_SETUP_STARTED, user.id)
        return TwoFactorSetupResponse(
            secret=generated.secret,
            manual_entry_key=generated.secret,
            provisioning_uri=generated.provisioning_uri,
            qr_code=qr_code,
        )

    def generate_qr_code(self, user: User) -> bytes:
        """PNG QR code for a provisioned but not yet confirmed secret."""
        credential = self._get_credential(user.id)
        if credential is None:
            raise NotInitiatedError()
        if credential.is_enabled:
            raise AlreadyEnabledError()

        secret = decrypt_sensitive_data(credential.secret_key)
        if not secret:
            raise NotInitiatedError("Stored secret is unreadable. Start setup again.")

        uri = build_provisioning_uri(secret, user.email, self.issuer)
        return render_provisioning_image(uri)

    async def verify_setup(self, user: User, token: str, client_ip: Optional[str]) -> TwoFactorVerifySetupResponse:
        await self.limiter.hit(client_ip, user.id)

        credential = self._get_credential(user.id)
        if credential is None:
            raise NotInitiatedError()
        if credential.is_enabled:
            raise AlreadyEnabledError()

        secret = decrypt_sensitive_data(credential.secret_key)
        if not secret or not verify_totp(token, secret, drift_window=self.drift_window):
            raise self._reject(user.id, client_ip, token)

        backup_codes = generate_backup_codes()
        credential.is_enabled = True
        credential.backup_codes = backup_codes
        credential.last_used_at = datetime.now(timezone.utc)
        self.db.commit()

        self.audit.record_attempt(user.id, client_ip, True, token)
        self.audit.log_event(AuditEventType.TWO_FACTOR_ENABLED, user.id, client_ip)

        return TwoFactorVerifySetupResponse(
            message="Two-factor authentication enabled. Store these backup codes somewhere safe; they will not be shown again.",
            enabled=True,
            backup_codes=backup_codes,
        )

    async def verify_login(self, session_token: str, token: str, client_ip: Optional[str]) -> TwoFactorVerifyResponse:
        """Second step of login: check the code and promote the pending session."""
        session = self.sessions.get_session(session_token)

        await self.limiter.hit(client_ip, session.user_id)

        if session.two_factor_complete:
            raise AlreadyCompleteError()

        credential = self._get_enabled_credential(session.user_id)

        check = self._check_code(credential, token)
        if not check.valid:
            raise self._reject(session.user_id, client_ip, token)

        if check.method == METHOD_BACKUP_CODE:
            credential.backup_codes = check.remaining_codes
        credential.last_used_at = datetime.now(timezone.utc)

        # Credential changes are committed together with the promotion
        session = self.sessions.promote(session)

        self.audit.record_attempt(session.user_id, client_ip, True, token)
        self.audit.log_event(
            AuditEventType.SESSION_PROMOTED, session.user_id, client_ip, {"method": check.method}
        )

        remaining = len(credential.backup_codes or [])
        warning = None
        if check.method == METHOD_BACKUP_CODE:
            self.audit.log_event(
                AuditEventType.BACKUP_CODE_USED, session.user_id, client_ip, {"remaining": remaining}
            )
            warning = f"Backup code used. {remaining} backup codes remaining."

        return TwoFactorVerifyResponse(
            message="Two-factor verification successful",
            two_factor_complete=True,
            expires_at=as_utc(session.expires_at),
            method=check.method,
            backup_codes_remaining=remaining,
            warning=warning,
        )

    async def disable(self, user: User, password: str, token: str, client_ip: Optional[str]) -> None:
        await self.limiter.hit(client_ip, user.id)

        if not verify_password(password, user.hashed_password):
            raise InvalidPasswordError("Invalid password")

        credential = self._get_enabled_credential(user.id)

        check = self._check_code(credential, token)
        if not check.valid:
            raise self._reject(user.id, client_ip, token)

        credential.is_enabled = False
        credential.backup_codes = []
        credential.last_used_at = datetime.now(timezone.utc)
        self.db.commit()

        self.audit.record_attempt(user.id, client_ip, True, token)
        self.audit.log_event(AuditEventType.TWO_FACTOR_DISABLED, user.id, client_ip)

    def get_status(self, user: User) -> TwoFactorStatusResponse:
        credential = self._get_credential(user.id)
        if credential is None:
            return TwoFactorStatusResponse(
                enabled=False,
                setup_initiated=False,
                last_used_at=None,
                backup_codes_remaining=0,
            )

        return TwoFactorStatusResponse(
            enabled=bool(credential.is_enabled),
            setup_initiated=credential.setup_initiated_at is not None,
            last_used_at=as_utc(credential.last_used_at),
            backup_codes_remaining=len(credential.backup_codes or []),
        )

    async def regenerate_backup_codes(self, user: User, token: str, client_ip: Optional[str]) -> BackupCodesResponse:
        """Replace the whole backup-code set. Only a TOTP token is accepted."""
        await self.limiter.hit(client_ip, user.id)

        credential = self._get_enabled_credential(user.id)

        submitted = parse_submitted_code(token)
        secret = decrypt_sensitive_data(credential.secret_key)
        if (
            not isinstance(submitted, TotpCode)
            or not secret
            or not verify_totp(submitted.code, secret, drift_window=self.drift_window)
        ):
            raise self._reject(user.id, client_ip, token)

        backup_codes = generate_backup_codes()
        credential.backup_codes = backup_codes
        credential.last_used_at = datetime.now(timezone.utc)
        self.db.commit()

        self.audit.record_attempt(user.id, client_ip, True, token)
        self.audit.log_event(AuditEventType.BACKUP_CODES_REGENERATED, user.id, client_ip)

        return BackupCodesResponse(backup_codes=backup_codes, codes_count=len(backup_codes))

    def get_recent_attempts(self, user: User, limit: int = 10) -> List[TwoFactorAttempt]:
        return self.audit.recent_attempts(self.db, user.id, limit)
