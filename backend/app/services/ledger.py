"""
Notifications ledger retention.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from app.services.binding_store import BindingStore

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 45


class InvalidRetentionError(ValueError):
    code = "INVALID_DAYS"


def purge_notifications(
    store: BindingStore,
    days: Any = DEFAULT_RETENTION_DAYS,
    now: Optional[datetime] = None,
) -> tuple[int, datetime]:
    """
    Delete ledger rows older than `days` days.

    days must be a positive int; bools, floats and strings are rejected
    even when they look like whole numbers.

    Returns:
        (deleted_count, cutoff) tuple.

    Raises:
        InvalidRetentionError: days is not a positive integer.
    """
    if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
        raise InvalidRetentionError(f"days must be a positive integer, got {days!r}")

    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    deleted = store.cleanup_old_notifications(cutoff)
    logger.info(f"Purged {deleted} notification(s) sent before {cutoff.isoformat()}")
    return deleted, cutoff
