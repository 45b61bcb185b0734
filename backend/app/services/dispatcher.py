"""
Package notification dispatch.

Given an apartment number typed by the guard, push a "package waiting"
message to every LINE account bound to that apartment and record the
aggregate outcome in the notifications ledger.

Sends are independent: one failing recipient does not stop the others,
nothing is retried, and the call is not transactional. The caller gets the
per-recipient results and decides what to do about failures.
"""

import asyncio
import json
import logging
from typing import Optional

from app.models.notification import (
    DispatchResult,
    DispatchStatus,
    NotificationStatus,
    RecipientResult,
)
from app.services.apartment_key import normalize_apartment_no
from app.services.binding_store import BindingStore, utc_now_iso
from app.services.line_messaging import GatewayError

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """A dispatch was rejected before any message was sent."""

    code = "DISPATCH_FAILED"

    def __init__(self, message: str, apartment_no: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.apartment_no = apartment_no


class MissingApartmentError(DispatchError):
    code = "MISSING_APARTMENT"


class ApartmentNotFoundError(DispatchError):
    code = "APARTMENT_NOT_FOUND"


class NotBoundError(DispatchError):
    code = "NOT_BOUND"


def compose_message(count: Optional[int] = None, note: Optional[str] = None) -> str:
    """
    Build the notification text.

    Examples:
        compose_message()              -> "📦 You have a new package waiting at the management office, please pick it up soon."
        compose_message(3)             -> "📦 You have 3 packages waiting at the management office, please pick it up soon."
        compose_message(1, "Fragile")  -> "📦 You have 1 package waiting at the management office. Note: Fragile"
    """
    if isinstance(count, int) and not isinstance(count, bool) and count > 0:
        noun = "package" if count == 1 else "packages"
        text = f"📦 You have {count} {noun} waiting at the management office"
    else:
        text = "📦 You have a new package waiting at the management office"

    note = (note or "").strip()
    if note:
        text += f". Note: {note}"
    else:
        text += ", please pick it up soon."
    return text


async def _send_one(gateway, user_id: str, text: str) -> RecipientResult:
    """Push to one recipient, capturing any failure instead of raising."""
    try:
        await gateway.push(user_id, text)
        return RecipientResult(user_id=user_id, ok=True, at=utc_now_iso())
    except GatewayError as e:
        logger.warning(f"Push to {user_id!r} failed: {e}")
        return RecipientResult(
            user_id=user_id,
            ok=False,
            at=utc_now_iso(),
            error=e.payload if e.payload is not None else str(e),
        )
    except Exception as e:
        logger.warning(f"Push to {user_id!r} failed unexpectedly: {e}")
        return RecipientResult(user_id=user_id, ok=False, at=utc_now_iso(), error=str(e))


async def dispatch_notification(
    store: BindingStore,
    gateway,
    apartment_raw: Optional[str],
    count: Optional[int] = None,
    note: Optional[str] = None,
) -> DispatchResult:
    """
    Notify every account bound to an apartment.

    Steps:
    1. Normalize the apartment number; it must exist.
    2. Resolve bound accounts. None bound → ledger 'no_binding', NotBoundError.
    3. Compose the message text from count / note.
    4. Push to all recipients concurrently, one attempt each.
    5. Record 'ok' or 'partial_fail' (with serialized results) in the ledger.

    Raises:
        MissingApartmentError:  apartment_raw is empty
        ApartmentNotFoundError: no such apartment (nothing recorded)
        NotBoundError:          apartment has no bound account (recorded)
    Storage errors propagate unchanged.
    """
    if not apartment_raw or not str(apartment_raw).strip():
        raise MissingApartmentError("An apartment number is required.")

    apartment_no = normalize_apartment_no(apartment_raw)
    if not store.apartment_exists(apartment_no):
        raise ApartmentNotFoundError(
            f"Apartment {apartment_no} does not exist.", apartment_no=apartment_no
        )

    note = (note or "").strip() or None

    user_ids = store.get_user_ids_by_apartment(apartment_no)
    if not user_ids:
        store.add_notification(
            apartment_no, count, note, NotificationStatus.NO_BINDING.value, None
        )
        raise NotBoundError(
            f"Apartment {apartment_no} has no linked LINE account yet.",
            apartment_no=apartment_no,
        )

    text = compose_message(count, note)

    # gather preserves input order, so results line up with user_ids
    results = list(
        await asyncio.gather(*(_send_one(gateway, uid, text) for uid in user_ids))
    )
    dispatch = DispatchResult(
        status=DispatchStatus.OK
        if all(r.ok for r in results)
        else DispatchStatus.PARTIAL,
        results=results,
    )

    if dispatch.status is DispatchStatus.OK:
        store.add_notification(
            apartment_no, count, note, NotificationStatus.OK.value, None
        )
        logger.info(f"Notified {len(results)} account(s) for {apartment_no}")
    else:
        error_detail = json.dumps(
            [r.model_dump(mode="json") for r in results], ensure_ascii=False
        )
        store.add_notification(
            apartment_no, count, note, NotificationStatus.PARTIAL_FAIL.value, error_detail
        )
        logger.warning(
            f"{len(dispatch.failed)} of {len(results)} push(es) failed for {apartment_no}"
        )

    return dispatch
