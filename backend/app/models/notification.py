"""
Pydantic models for apartments, package notifications and the ledger.

Models:
  Apartment            — row returned by GET /api/apartments
  NotifyRequest        — request body for POST /api/notify
  RecipientResult      — outcome of one push to one bound account
  DispatchResult       — response body for POST /api/notify (200 / 207)
  NotificationStatus   — ledger status values
  NotificationRecord   — ledger row
  CleanupResponse      — response body for POST /api/admin/cleanup
"""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class NotificationStatus(str, Enum):
    """Aggregate outcome persisted to the notifications ledger."""
    OK = "ok"
    PARTIAL_FAIL = "partial_fail"
    NO_BINDING = "no_binding"


class DispatchStatus(str, Enum):
    """Outcome reported to the caller of a dispatch."""
    OK = "OK"
    PARTIAL = "PARTIAL"


class Apartment(BaseModel):
    """A registered dwelling unit."""
    model_config = {"from_attributes": True}

    apartment_no: str
    display_name: str


class NotifyRequest(BaseModel):
    """
    Request body for POST /api/notify.

    apartment is raw admin input; it is normalized before lookup.
    count and note are optional and only change the message text.
    """
    apartment: Optional[str] = None
    count: Optional[int] = None
    note: Optional[str] = None


class RecipientResult(BaseModel):
    """Result of a single push attempt to one recipient."""
    user_id: str
    ok: bool
    at: str
    # Gateway error payload (decoded JSON body) or exception message
    error: Optional[Any] = None


class DispatchResult(BaseModel):
    status: DispatchStatus
    results: List[RecipientResult] = Field(default_factory=list)

    @property
    def failed(self) -> List[RecipientResult]:
        return [r for r in self.results if not r.ok]


class NotificationRecord(BaseModel):
    """Full notifications ledger row."""
    model_config = {"from_attributes": True}

    id: Optional[int] = None
    apartment_no: Optional[str] = None
    count: Optional[int] = None
    note: Optional[str] = None
    status: NotificationStatus
    error: Optional[str] = None
    sent_at: str


class CleanupResponse(BaseModel):
    ok: bool = True
    deleted: int
    cutoff: str
