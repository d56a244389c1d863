from .base import Base
from .user import User
from .two_factor import TwoFactorCredential, TwoFactorAttempt
from .session import LoginSession, SessionState

__all__ = ["Base", "User", "TwoFactorCredential", "TwoFactorAttempt", "LoginSession", "SessionState"]
