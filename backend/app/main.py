"""
Package Notify Backend API
FastAPI application that tells residents over LINE that a package is
waiting, and lets them link their LINE account to their apartment.
"""

import logging
import os
from typing import List

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.dependencies import store_dependency
from app.routers import apartments, notify, webhook
from app.services.binding_store import BindingStore
from app.services.line_messaging import close_line_client

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Package Notify API",
    description="LINE package-arrival notifications for apartment residents",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins for the guard console.

    Always includes http://localhost:3000. Additional origins are read from
    the CORS_ORIGINS environment variable as a comma-separated list, e.g.:
        CORS_ORIGINS=https://guard.example.com,https://lobby.example.com

    Duplicates are removed while preserving order.
    """
    always_included = ["http://localhost:3000"]

    extra_origins: List[str] = []
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        extra_origins = [o.strip() for o in cors_env.split(",") if o.strip()]

    seen: set = set()
    origins: List[str] = []
    for origin in always_included + extra_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)

    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(apartments.router, prefix="/api/apartments", tags=["apartments"])
app.include_router(notify.router, prefix="/api", tags=["notify"])
app.include_router(webhook.router, prefix="/webhook", tags=["webhook"])


@app.on_event("startup")
async def log_startup_urls() -> None:
    """Log where the API can be reached and which integrations are configured."""
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info("Package Notify API running at http://localhost:%s", host_port)

    if not os.getenv("LINE_CHANNEL_ACCESS_TOKEN") or not os.getenv("LINE_CHANNEL_SECRET"):
        logger.warning(
            "LINE_CHANNEL_ACCESS_TOKEN or LINE_CHANNEL_SECRET is not set; "
            "notifications and the webhook will be unavailable"
        )


@app.on_event("shutdown")
async def close_gateway() -> None:
    await close_line_client()


@app.get("/")
async def root():
    return {"message": "Package Notify API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db(store: BindingStore = Depends(store_dependency)):
    """
    Test the binding store connection.

    Runs the backend's lightweight ping query. Returns 503 on failure.
    """
    try:
        store.ping()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
