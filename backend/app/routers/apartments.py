"""
Apartment listing for the guard console.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from app.auth import require_admin
from app.dependencies import store_dependency
from app.models.notification import Apartment
from app.services.binding_store import BindingStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[Apartment])
async def list_apartments(
    _: str = Depends(require_admin),
    store: BindingStore = Depends(store_dependency),
):
    """
    List every registered apartment, ordered block → floor → unit.

    Floors and units compare numerically, so A-2-1 comes before A-10-1.
    """
    try:
        return store.list_apartments()
    except Exception as e:
        logger.error(f"Failed to list apartments: {e}")
        raise HTTPException(
            status_code=500,
            detail={"code": "INTERNAL_ERROR", "message": "Failed to list apartments"},
        )
