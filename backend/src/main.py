# pyright: reportMissingTypeStubs=false
"""
Clinic Ledger Backend API

A FastAPI application exposing the financial ledger of a multi-clinic
practice: invoices, payments, payment plans, adjustments and the audit trail.

Features:
- Tenant-scoped ledger endpoints under /api/ledger
- Immutable audit trail for every financial mutation
- PostgreSQL database with SQLAlchemy ORM
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import adjustments, audit_logs, invoices, payment_plans, payments
from api.ledger_errors import ledger_http_error
from core.constants import CORS_ORIGINS
from core.exceptions import LedgerError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("Clinic Ledger API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Clinic Ledger Backend API")
    yield
    logger.info("Shutting down Clinic Ledger Backend API")


# Create FastAPI application
app = FastAPI(
    title="Clinic Ledger Backend",
    description="Multi-tenant financial ledger for clinics",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Audit-Status", "Idempotent-Replayed"],
)

LEDGER_RESPONSES = {
    400: {"description": "Bad request"},
    401: {"description": "Unauthorized"},
    404: {"description": "Resource not found"},
    409: {"description": "Conflict"},
    500: {"description": "Internal server error"},
}

# Include API routers
app.include_router(invoices.router, prefix="/api/ledger", tags=["invoices"], responses=LEDGER_RESPONSES)
app.include_router(payments.router, prefix="/api/ledger", tags=["payments"], responses=LEDGER_RESPONSES)
app.include_router(payment_plans.router, prefix="/api/ledger", tags=["payment-plans"], responses=LEDGER_RESPONSES)
app.include_router(adjustments.router, prefix="/api/ledger", tags=["adjustments"], responses=LEDGER_RESPONSES)
app.include_router(audit_logs.router, prefix="/api/ledger", tags=["audit"], responses=LEDGER_RESPONSES)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "Clinic Ledger Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Global exception handlers
@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    """Handle ledger errors that escaped an endpoint's own mapping."""
    http_error = ledger_http_error(exc)
    logger.warning(f"Ledger error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=http_error.status_code,
        content={"detail": exc.message, "type": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )
