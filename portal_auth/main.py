from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .auth.errors import RateLimitedError, TwoFactorError
from .auth.router import router as auth_router
from .auth.router_two_factor import router as two_factor_router
from .config.redis_config import close_redis_connections, ping_redis
from .config.two_factor_config import RATE_LIMIT_BACKEND
from .core.logging import get_logger
from .database import SessionLocal, create_tables
from .services.audit_logging_service import AuditLogger
from .services.rate_limiting_service import build_attempt_limiter
from .services.session_service import SessionService

logger = get_logger(__name__)

app = FastAPI(
    title="Loan Portal Auth API",
    description="Password login with TOTP two-factor authentication and backup codes",
    version="1.0.0"
)

# Include routers
app.include_router(auth_router)
app.include_router(two_factor_router)


@app.exception_handler(TwoFactorError)
async def two_factor_error_handler(request: Request, exc: TwoFactorError):
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    elif exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.on_event("startup")
async def startup_event():
    create_tables()

    app.state.attempt_limiter = build_attempt_limiter()
    app.state.audit_logger = AuditLogger(SessionLocal)

    db = SessionLocal()
    try:
        SessionService(db).purge_expired()
    finally:
        db.close()

    if RATE_LIMIT_BACKEND == "redis":
        if await ping_redis():
            logger.info("Redis connection established")
        else:
            logger.error("Redis connection failed; verification requests will be refused")


@app.on_event("shutdown")
async def shutdown_event():
    if RATE_LIMIT_BACKEND == "redis":
        await close_redis_connections()
        logger.info("Redis connections closed")


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
