"""
Strikerate - Cricket Prediction Markets
Main FastAPI Application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from urllib.parse import urlparse

from strikerate.core.config import settings
from strikerate.api.auth import router as auth_router
from strikerate.api.markets import router as markets_router
from strikerate.api.matches import router as matches_router
from strikerate.api.predictions import router as predictions_router
from strikerate.api.users import router as users_router

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper()))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Strikerate API...")
    try:
        db_host = urlparse(getattr(settings, "DATABASE_URL", "")).hostname
        logger.info("Config: db_host=%s env=%s", db_host, settings.ENVIRONMENT)
    except ValueError:
        logger.info("Config: env=%s", settings.ENVIRONMENT)
    if not settings.ADMIN_WALLET_ADDRESS:
        logger.warning("ADMIN_WALLET_ADDRESS is not set; privileged match actions will be rejected")
    if not settings.TREASURY_WALLET_ADDRESS:
        logger.warning("TREASURY_WALLET_ADDRESS is not set; stake payments cannot be verified")
    yield
    logger.info("Shutting down Strikerate API...")


app = FastAPI(
    title="Strikerate API",
    description="Cricket score prediction markets settled in USDC",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Missing or invalid fields", "errors": jsonable_errors(exc)},
    )


# Include routers
app.include_router(auth_router, prefix="/api", tags=["auth"])
app.include_router(matches_router, prefix="/api/matches", tags=["matches"])
app.include_router(markets_router, prefix="/api/markets", tags=["markets"])
app.include_router(predictions_router, prefix="/api/predictions", tags=["predictions"])
app.include_router(users_router, prefix="/api", tags=["users"])


@app.get("/health")
async def health_check():
    """Liveness check (should be fast and not depend on external services)."""
    return {
        "status": "ok",
        "service": "strikerate-backend",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/ready")
def readiness_check():
    """Readiness check (verifies the database is reachable)."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    from strikerate.core.database import SessionLocal

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Readiness check failed: %s", e)
        return JSONResponse(status_code=503, content={"status": "not_ready", "error": "database unavailable"})
    finally:
        db.close()
    return {"status": "ready", "db": "ok"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Strikerate API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }
