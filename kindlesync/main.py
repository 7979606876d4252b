"""Kindle Reading Sync - Main FastAPI Application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from kindlesync import __version__
from kindlesync.api import auth_router, callback_router
from kindlesync.config import get_settings
from kindlesync.core.logging import RequestLoggingMiddleware, setup_logging
from kindlesync.core.slowapi_limiter import limiter
from kindlesync.database import init_db, close_db

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging(json_output=settings.log_json, level=settings.log_level)
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title="Kindle Reading Sync",
    description="Delegated GitHub sign-in for Kindle devices",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)

# The Kindle extension calls from a file:// origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(auth_router)
app.include_router(callback_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Kindle Reading Sync",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
