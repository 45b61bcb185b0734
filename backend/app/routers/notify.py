"""
Package notification and ledger maintenance endpoints.

Endpoints:
  POST /notify          — push a package notice to an apartment's accounts
  POST /admin/cleanup   — purge ledger rows older than N days

Status codes for POST /notify:
  200  every push succeeded            {"status": "OK", "results": [...]}
  207  some pushes failed              {"status": "PARTIAL", "results": [...]}
  400  MISSING_APARTMENT / APARTMENT_NOT_FOUND / NOT_BOUND
  422  malformed body (e.g. non-integer count)
  500  INTERNAL_ERROR (storage failure)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse

from app.auth import require_admin
from app.dependencies import gateway_dependency, store_dependency
from app.models.notification import CleanupResponse, DispatchStatus, NotifyRequest
from app.services.binding_store import BindingStore
from app.services.dispatcher import DispatchError, dispatch_notification
from app.services.ledger import (
    DEFAULT_RETENTION_DAYS,
    InvalidRetentionError,
    purge_notifications,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/notify",
    responses={
        200: {"description": "All bound accounts were notified"},
        207: {"description": "Some pushes failed; see results"},
        400: {"description": "Missing apartment, unknown apartment, or no bound account"},
        401: {"description": "Missing or invalid Basic auth credentials"},
    },
)
async def notify(
    request: NotifyRequest,
    _: str = Depends(require_admin),
    store: BindingStore = Depends(store_dependency),
    gateway=Depends(gateway_dependency),
):
    """Send a package notice to every LINE account bound to an apartment."""
    try:
        result = await dispatch_notification(
            store,
            gateway,
            request.apartment,
            count=request.count,
            note=request.note,
        )
    except DispatchError as e:
        raise HTTPException(
            status_code=400,
            detail={"code": e.code, "message": e.message},
        )
    except Exception as e:
        logger.error(f"Dispatch for {request.apartment!r} failed: {e}")
        raise HTTPException(
            status_code=500,
            detail={"code": "INTERNAL_ERROR", "message": "Failed to send notification"},
        )

    status_code = 200 if result.status is DispatchStatus.OK else 207
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.post("/admin/cleanup", response_model=CleanupResponse)
async def cleanup_notifications(
    _: str = Depends(require_admin),
    payload: Optional[dict] = Body(None),
    store: BindingStore = Depends(store_dependency),
):
    """
    Purge notification history older than `days` days (default 45).

    days must be a positive integer; anything else is rejected with
    INVALID_DAYS.
    """
    days = (payload or {}).get("days", DEFAULT_RETENTION_DAYS)

    try:
        deleted, cutoff = purge_notifications(store, days)
    except InvalidRetentionError as e:
        raise HTTPException(
            status_code=400,
            detail={"code": e.code, "message": str(e)},
        )
    except Exception as e:
        logger.error(f"Cleanup error: {e}")
        raise HTTPException(
            status_code=500,
            detail={"code": "CLEANUP_FAILED", "message": str(e)},
        )

    return CleanupResponse(deleted=deleted, cutoff=cutoff.isoformat())
