"""Two-factor authentication settings."""

import os
from dotenv import load_dotenv

load_dotenv()

# Provisioning
TWO_FACTOR_ISSUER = os.getenv("TWO_FACTOR_ISSUER", "Esoteric Loan Portal")
BACKUP_CODE_COUNT = int(os.getenv("BACKUP_CODE_COUNT", "10"))

# Verification
TOTP_DRIFT_WINDOW = int(os.getenv("TOTP_DRIFT_WINDOW", "2"))  # steps of 30s either side
TWO_FACTOR_MAX_ATTEMPTS = int(os.getenv("TWO_FACTOR_MAX_ATTEMPTS", "5"))
TWO_FACTOR_WINDOW_SECONDS = int(os.getenv("TWO_FACTOR_WINDOW_SECONDS", "900"))  # 15 minutes

# "memory" for a single process, "redis" when several instances share limits
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()

# Login sessions
PENDING_SESSION_TTL_MINUTES = int(os.getenv("PENDING_SESSION_TTL_MINUTES", "10"))
FULL_SESSION_TTL_HOURS = int(os.getenv("FULL_SESSION_TTL_HOURS", "24"))

# Only honour X-Forwarded-For / X-Real-IP behind a trusted proxy
TRUST_PROXY_HEADERS = os.getenv("TRUST_PROXY_HEADERS", "false").lower() == "true"
