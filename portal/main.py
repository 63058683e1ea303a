import logging
import os
import time
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
# This is needed for relationships between models in different files
from . import (
    models,  # noqa: F401
    models_ai,  # noqa: F401
    models_contract,  # noqa: F401
    models_integration,  # noqa: F401
    models_invoice,  # noqa: F401
    models_messaging,  # noqa: F401
    models_ticket,  # noqa: F401
)
from .config import ALLOWED_ORIGINS, RATE_LIMIT_ENABLED
from .database import Base, engine
from .domain.contracts.router import router as contracts_router
from .domain.invoices.router import router as invoices_router
from .domain.messaging.router import router as messaging_router
from .domain.organizations.router import router as organizations_router
from .domain.tickets.router import router as tickets_router
from .routes.ai import router as ai_router
from .routes.audit_logs import router as audit_logs_router
from .routes.cron import router as cron_router
from .routes.files import admin_router as s3_admin_router
from .routes.files import router as files_router
from .routes.integrations import router as integrations_router
from .routes.notifications import router as notifications_router
from .routes.quickbooks import router as quickbooks_router
from .routes.stripe_webhooks import router as stripe_webhooks_router
from .routes.users import admin_router as users_admin_router
from .routes.users import router as users_router
from .routes.zapier import router as zapier_router
from .security_headers import SecurityHeadersMiddleware

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)

SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info("Database tables created successfully")

    if RATE_LIMIT_ENABLED:
        try:
            from .rate_limiter import get_redis_client

            get_redis_client().ping()  # Connection test
            logger.info("Redis connection established")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed - rate limited endpoints will answer 503: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Client Portal API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Answer body validation failures with 400, and with 401 when the problem is
    a missing or malformed Authorization header
    """
    errors = exc.errors()
    for error in errors:
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {errors}")
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Validation failed",
            "errors": [
                {
                    "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                    "message": error.get("msg", "Invalid value"),
                }
                for error in errors
            ],
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"❌ {request.method} {request.url.path} - Unhandled error: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.monotonic()
    response = await call_next(request)
    duration_ms = (time.monotonic() - start_time) * 1000
    if response.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {response.status_code} ({duration_ms:.0f}ms)")
    else:
        logger.debug(f"{request.method} {request.url.path} - {response.status_code} ({duration_ms:.0f}ms)")
    return response


if SECURITY_HEADERS_ENABLED:
    app.add_middleware(SecurityHeadersMiddleware, exclude_paths=["/health", "/docs", "/openapi.json"])
    logger.info("Security headers enabled")
else:
    logger.warning("Security headers DISABLED - only use in development!")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(users_router)
app.include_router(users_admin_router)
app.include_router(organizations_router)
app.include_router(tickets_router)
app.include_router(invoices_router)
app.include_router(contracts_router)
app.include_router(messaging_router)
app.include_router(notifications_router)
app.include_router(audit_logs_router)
app.include_router(stripe_webhooks_router)
app.include_router(zapier_router)
app.include_router(ai_router)
app.include_router(files_router)
app.include_router(s3_admin_router)
app.include_router(integrations_router)
app.include_router(quickbooks_router)
app.include_router(cron_router)


@app.get("/")
def root():
    return {"message": "Client Portal API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
