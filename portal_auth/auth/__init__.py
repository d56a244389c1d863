from .errors import TwoFactorError
from .security import verify_password, get_password_hash

__all__ = [
    "TwoFactorError",
    "verify_password",
    "get_password_hash",
]
