"""Two-factor authentication Pydantic schemas."""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from datetime import datetime


def _digits_only(v: str) -> str:
    if not (v.isascii() and v.isdigit()):
        raise ValueError('Token must contain only digits')
    return v


class TwoFactorSetupResponse(BaseModel):
    """Response after setup initiation."""
    secret: str = Field(..., description="Base32 encoded TOTP secret")
    manual_entry_key: str = Field(..., description="Secret for manual entry in an authenticator app")
    provisioning_uri: str = Field(..., description="otpauth:// URI encoded in the QR code")
    qr_code: str = Field(..., description="PNG QR code as a data URL")

    class Config:
        json_schema_extra = {
            "example": {
                "secret": "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP",
                "manual_entry_key": "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP",
                "provisioning_uri": "otpauth://totp/Esoteric%20Loan%20Portal:borrower%40example.com?secret=...",
                "qr_code": "data:image/png;base64,iVBORw0KGgo..."
            }
        }


class TwoFactorVerifySetupRequest(BaseModel):
    """Confirm setup with a code from the authenticator app."""
    token: str = Field(..., min_length=6, max_length=6, description="6-digit TOTP token")

    @field_validator('token')
    @classmethod
    def validate_token(cls, v):
        return _digits_only(v)


class TwoFactorVerifySetupResponse(BaseModel):
    message: str
    enabled: bool
    backup_codes: List[str] = Field(..., description="Single-use backup codes, shown only once")


class TwoFactorVerifyRequest(BaseModel):
    """Second step of login."""
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=6, max_length=8, description="6-digit TOTP token or 8-character backup code")
    session_token: str = Field(..., alias="sessionToken", min_length=1, description="Token returned by /auth/login")


class TwoFactorVerifyResponse(BaseModel):
    message: str
    two_factor_complete: bool
    expires_at: datetime
    method: str = Field(..., description="totp or backup_code")
    backup_codes_remaining: int
    warning: Optional[str] = None


class TwoFactorDisableRequest(BaseModel):
    """Request to disable two-factor authentication."""
    password: str = Field(..., min_length=1, description="Current password for confirmation")
    token: str = Field(..., min_length=6, max_length=8, description="6-digit TOTP token or backup code")


class TwoFactorStatusResponse(BaseModel):
    enabled: bool = Field(..., description="Whether two-factor authentication is enabled")
    setup_initiated: bool = Field(..., description="Whether a secret has been provisioned")
    last_used_at: Optional[datetime] = Field(None, description="Last successful verification")
    backup_codes_remaining: int = Field(..., description="Number of unused backup codes")

    class Config:
        json_schema_extra = {
            "example": {
                "enabled": True,
                "setup_initiated": True,
                "last_used_at": "2024-01-15T10:30:00Z",
                "backup_codes_remaining": 9
            }
        }


class GenerateBackupCodesRequest(BaseModel):
    """Regenerating backup codes needs a TOTP token, not a backup code."""
    token: str = Field(..., min_length=6, max_length=6, description="6-digit TOTP token")

    @field_validator('token')
    @classmethod
    def validate_token(cls, v):
        return _digits_only(v)


class BackupCodesResponse(BaseModel):
    backup_codes: List[str] = Field(..., description="New backup codes; previous codes no longer work")
    codes_count: int

    class Config:
        json_schema_extra = {
            "example": {
                "backup_codes": ["99EE3096", "9D062644"],
                "codes_count": 10
            }
        }


class TwoFactorAttemptLog(BaseModel):
    id: str
    success: bool
    ip_address: Optional[str] = None
    token_used: Optional[str] = Field(None, description="Masked token prefix")
    attempted_at: datetime

    class Config:
        from_attributes = True
