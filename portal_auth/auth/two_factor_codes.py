"""TOTP secrets, provisioning images, backup codes and their verification."""
import base64
import hmac
import io
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Union

import pyotp
import qrcode
from qrcode.exceptions import DataOverflowError

from .errors import EncodingError
from ..config.two_factor_config import BACKUP_CODE_COUNT, TOTP_DRIFT_WINDOW

SECRET_LENGTH = 32  # base32 characters, 160 bits
TOTP_DIGITS = 6
BACKUP_CODE_LENGTH = 8

METHOD_TOTP = "totp"
METHOD_BACKUP_CODE = "backup_code"


@dataclass(frozen=True)
class GeneratedSecret:
    secret: str
    provisioning_uri: str


@dataclass(frozen=True)
class TotpCode:
    """A submitted authenticator-app code."""
    code: str


@dataclass(frozen=True)
class BackupCode:
    """A submitted single-use backup code."""
    code: str


SubmittedCode = Union[TotpCode, BackupCode]


@dataclass
class BackupCodeCheck:
    valid: bool
    remaining_codes: List[str]


@dataclass
class CodeCheck:
    valid: bool
    method: str
    remaining_codes: List[str] = field(default_factory=list)


def build_provisioning_uri(secret: str, subject_label: str, issuer_label: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=subject_label, issuer_name=issuer_label)


def generate_secret(subject_label: str, issuer_label: str) -> GeneratedSecret:
    """Create a fresh TOTP secret and the otpauth:// URI authenticator apps scan."""
    secret = pyotp.random_base32(length=SECRET_LENGTH)
    return GeneratedSecret(secret=secret, provisioning_uri=build_provisioning_uri(secret, subject_label, issuer_label))


def _parse_totp_uri(uri: str) -> pyotp.TOTP:
    if not isinstance(uri, str) or not uri.startswith("otpauth://totp/"):
        raise EncodingError("Provisioning URI must be an otpauth://totp/ URI")
    try:
        otp = pyotp.parse_uri(uri)
        otp.byte_secret()
    except (ValueError, TypeError) as e:
        raise EncodingError(f"Malformed provisioning URI: {e}") from e
    if not isinstance(otp, pyotp.TOTP):
        raise EncodingError("Provisioning URI must describe a TOTP credential")
    return otp


def render_provisioning_image(uri: str) -> bytes:
    """Encode a provisioning URI as a PNG QR code."""
    _parse_totp_uri(uri)

    qr = qrcode.QRCode(version=None, box_size=10, border=4)
    qr.add_data(uri)
    try:
        qr.make(fit=True)
    except DataOverflowError as e:
        raise EncodingError("Provisioning URI is too long to encode") from e

    img = qr.make_image(fill_color="black", back_color="white")

    img_buffer = io.BytesIO()
    img.save(img_buffer, format="PNG")
    return img_buffer.getvalue()


def render_provisioning_data_url(uri: str) -> str:
    png = render_provisioning_image(uri)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> List[str]:
    """Generate unique 8-character uppercase hex codes."""
    codes: List[str] = []
    while len(codes) < count:
        code = secrets.token_hex(BACKUP_CODE_LENGTH // 2).upper()
        if code not in codes:
            codes.append(code)
    return codes


def parse_submitted_code(raw: str) -> SubmittedCode:
    """Backup codes are exactly 8 characters; anything else is treated as TOTP."""
    raw = raw.strip()
    if len(raw) == BACKUP_CODE_LENGTH:
        return BackupCode(raw.upper())
    return TotpCode(raw)


def verify_totp(
    token: str,
    secret: str,
    drift_window: int = TOTP_DRIFT_WINDOW,
    for_time: Optional[datetime] = None,
) -> bool:
    """
    Check a 6-digit code against the current step and drift_window steps
    either side. Every candidate is compared in constant time.
    """
    if not token or len(token) != TOTP_DIGITS or not token.isascii() or not token.isdigit():
        return False

    totp = pyotp.TOTP(secret)
    for_time = for_time or datetime.now(timezone.utc)

    matched = False
    for offset in range(-drift_window, drift_window + 1):
        if hmac.compare_digest(totp.at(for_time, offset), token):
            matched = True
    return matched


def verify_backup_code(code: str, stored_codes: List[str]) -> BackupCodeCheck:
    """Case-insensitive match; on success the matched code is dropped from the result."""
    submitted = code.strip().upper().encode()

    match_index = None
    for index, candidate in enumerate(stored_codes):
        if hmac.compare_digest(candidate.upper().encode(), submitted) and match_index is None:
            match_index = index

    if match_index is None:
        return BackupCodeCheck(valid=False, remaining_codes=list(stored_codes))

    remaining = [c for i, c in enumerate(stored_codes) if i != match_index]
    return BackupCodeCheck(valid=True, remaining_codes=remaining)


def verify_submitted_code(
    submitted: SubmittedCode,
    secret: str,
    stored_codes: List[str],
    drift_window: int = TOTP_DRIFT_WINDOW,
) -> CodeCheck:
    if isinstance(submitted, BackupCode):
        result = verify_backup_code(submitted.code, stored_codes)
        return CodeCheck(valid=result.valid, method=METHOD_BACKUP_CODE, remaining_codes=result.remaining_codes)

    valid = verify_totp(submitted.code, secret, drift_window=drift_window)
    return CodeCheck(valid=valid, method=METHOD_TOTP, remaining_codes=list(stored_codes))


def mask_token(token: Optional[str]) -> Optional[str]:
    """Keep a three-character prefix so raw codes never reach the audit table."""
    if not token:
        return None
    return token[:3] + "*"
