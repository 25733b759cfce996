# main.py
"""
Payment link service - FastAPI application.

Run locally with:
    uvicorn main:app --reload
"""
import os
import uuid
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import check_connection
from exceptions import (
    ConflictError,
    CredentialError,
    NotFoundError,
    PaymentLinkError,
    ProviderError,
    ReconciliationDeferred,
    SignatureVerificationError,
    TenantContextMissing,
    TenantIsolationViolation,
    ValidationError,
)
from logging_config import setup_logging
from routers import (
    payment_configs_router,
    payment_links_router,
    transactions_router,
    webhooks_router,
)
from services.credential_vault import get_vault

logger = structlog.get_logger(__name__)

# Domain error -> HTTP status. Subclasses are matched before their bases.
ERROR_STATUS = {
    ValidationError: 400,
    CredentialError: 400,
    SignatureVerificationError: 401,
    TenantContextMissing: 500,
    TenantIsolationViolation: 404,
    NotFoundError: 404,
    ConflictError: 409,
    ProviderError: 502,
    ReconciliationDeferred: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings)
    # Fail fast on a missing or malformed vault key
    get_vault()
    logger.info("application_started", app_env=settings.app_env)
    yield
    logger.info("application_stopped")


# App instance
app = FastAPI(title="Payment Links", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_for(exc: PaymentLinkError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


@app.exception_handler(PaymentLinkError)
async def payment_link_error_handler(request: Request, exc: PaymentLinkError):
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("request_failed", error_code=exc.code, error=exc.message)
    else:
        logger.info("request_rejected", error_code=exc.code, status_code=status_code)
    detail = exc.message
    if isinstance(exc, TenantIsolationViolation) and status_code == 404:
        detail = "Not found"
    body = {"error": exc.code, "detail": detail}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    if isinstance(exc, ProviderError):
        body["provider"] = exc.provider
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return JSONResponse(status_code=404, content={"error": "Route not found"})
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "http_error", "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# Request context + 500 fallback middleware
@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        method=request.method,
        path=request.url.path,
    )
    try:
        return await call_next(request)
    except Exception:
        logger.exception("unhandled_exception")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/api/health", tags=["health"])
def health():
    database_ok = check_connection()
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={"status": "ok" if database_ok else "degraded", "database": database_ok},
    )


app.include_router(payment_configs_router)
app.include_router(payment_links_router)
app.include_router(transactions_router)
app.include_router(webhooks_router)

if __name__ == "__main__":
    port = int(os.getenv("PORT", 10000))
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True)
