import base64
import hashlib
import os
import secrets

from cryptography.fernet import Fernet, InvalidToken
from dotenv import load_dotenv
from passlib.context import CryptContext

from ..core.logging import get_logger

load_dotenv()

logger = get_logger(__name__)

# Encryption key for TOTP secrets at rest
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")
if not ENCRYPTION_KEY:
    # Secrets encrypted with a generated key do not survive a restart; development only
    logger.warning("ENCRYPTION_KEY not set, generating an ephemeral key")
    ENCRYPTION_KEY = base64.urlsafe_b64encode(os.urandom(32)).decode()

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

fernet = Fernet(ENCRYPTION_KEY.encode() if len(ENCRYPTION_KEY) == 44 else base64.urlsafe_b64encode(ENCRYPTION_KEY.encode()[:32].ljust(32, b"0")))

SESSION_TOKEN_BYTES = 32


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)


def generate_session_token() -> str:
    """Opaque bearer token handed to the client; only its hash is persisted."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def encrypt_sensitive_data(data: str) -> str:
    """Encrypt sensitive data using Fernet encryption."""
    if not data:
        return data
    return fernet.encrypt(data.encode()).decode()


def decrypt_sensitive_data(encrypted_data: str) -> str:
    """Decrypt sensitive data using Fernet encryption."""
    if not encrypted_data:
        return encrypted_data
    try:
        return fernet.decrypt(encrypted_data.encode()).decode()
    except InvalidToken:
        # Return empty string if decryption fails
        logger.error("Failed to decrypt stored secret")
        return ""
