"""
Binding store: apartments, apartment ↔ LINE account bindings, and the
notifications ledger.

One interface (BindingStore), two interchangeable backends:
  - supabase  (default) — networked Postgres via the Supabase client
  - sqlite    — embedded file-backed database, also used by the test suite
                with DB_PATH=":memory:"

Select the backend with STORE_BACKEND=<name>.

Adding a new backend:
  1. Subclass BindingStore.
  2. Register it in _BACKENDS.
  3. Set STORE_BACKEND=<name> in the environment.

Both backends rely on storage-level constraints rather than
application-level locking:
  - apartments.apartment_no is the primary key
  - (apartment_no, line_user_id) is the primary key of apartment_members,
    so a duplicate bind is an insert-if-absent no-op
  - deleting an apartment cascades to its bindings and sets
    notifications.apartment_no to NULL
"""

import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from postgrest.exceptions import APIError

from app.db import supabase_admin
from app.services.apartment_key import apartment_sort_key

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for foreign_key_violation
_FK_VIOLATION = "23503"


def utc_now_iso(now: Optional[datetime] = None) -> str:
    """Return a UTC ISO-8601 timestamp with fixed microsecond precision."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _sorted_apartments(rows: list[dict]) -> list[dict]:
    """Fill in display names and order rows block → floor → unit."""
    apartments = [
        {
            "apartment_no": r["apartment_no"],
            "display_name": r.get("display_name") or r["apartment_no"],
        }
        for r in rows
    ]
    return sorted(apartments, key=lambda a: apartment_sort_key(a["apartment_no"]))


def _distinct(values: list[str]) -> list[str]:
    seen: set = set()
    out: list[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


class BindingStore(ABC):
    """Storage operations the notification core depends on."""

    @abstractmethod
    def list_apartments(self) -> list[dict]:
        """Return [{apartment_no, display_name}] ordered block → floor → unit."""

    @abstractmethod
    def apartment_exists(self, apartment_no: str) -> bool:
        ...

    @abstractmethod
    def bind_apartment_to_user(self, apartment_no: str, user_id: str) -> bool:
        """
        Bind a LINE account to an apartment.

        Returns False (never raises) when the apartment does not exist.
        Binding the same pair twice is a no-op that still returns True.
        """

    @abstractmethod
    def get_user_ids_by_apartment(self, apartment_no: str) -> list[str]:
        ...

    @abstractmethod
    def add_notification(
        self,
        apartment_no: Optional[str],
        count: Optional[int],
        note: Optional[str],
        status: str,
        error: Optional[str],
        sent_at: Optional[datetime] = None,
    ) -> None:
        """Append one row to the notifications ledger."""

    @abstractmethod
    def add_apartment(self, apartment_no: str, display_name: Optional[str] = None) -> bool:
        """Insert an apartment if absent. Returns True when a row was created."""

    @abstractmethod
    def remove_apartment(self, apartment_no: str) -> bool:
        ...

    @abstractmethod
    def cleanup_old_notifications(self, cutoff: datetime) -> int:
        """Delete ledger rows sent strictly before cutoff; return the count."""

    @abstractmethod
    def ping(self) -> None:
        """Raise if the backend cannot be reached."""


# ---------------------------------------------------------------------------
# Supabase backend
# ---------------------------------------------------------------------------

class SupabaseBindingStore(BindingStore):
    """
    Postgres via Supabase PostgREST.

    Tables are created by supabase/migrations/20261018000000_package_notify.sql.
    """

    def __init__(self, client=None):
        self._client = client if client is not None else supabase_admin
        if not self._client:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase store backend"
            )

    def list_apartments(self) -> list[dict]:
        result = (
            self._client.table("apartments")
            .select("apartment_no, display_name")
            .execute()
        )
        return _sorted_apartments(result.data or [])

    def apartment_exists(self, apartment_no: str) -> bool:
        result = (
            self._client.table("apartments")
            .select("apartment_no")
            .eq("apartment_no", apartment_no)
            .limit(1)
            .execute()
        )
        return bool(result.data)

    def bind_apartment_to_user(self, apartment_no: str, user_id: str) -> bool:
        if not self.apartment_exists(apartment_no):
            return False

        try:
            (
                self._client.table("apartment_members")
                .upsert(
                    {"apartment_no": apartment_no, "line_user_id": user_id},
                    on_conflict="apartment_no,line_user_id",
                    ignore_duplicates=True,
                )
                .execute()
            )
        except APIError as e:
            # Apartment removed between the existence check and the insert
            if e.code == _FK_VIOLATION:
                logger.warning(
                    f"Apartment {apartment_no!r} disappeared before bind of {user_id!r}"
                )
                return False
            raise
        return True

    def get_user_ids_by_apartment(self, apartment_no: str) -> list[str]:
        result = (
            self._client.table("apartment_members")
            .select("line_user_id")
            .eq("apartment_no", apartment_no)
            .execute()
        )
        return _distinct([r["line_user_id"] for r in result.data or []])

    def add_notification(
        self,
        apartment_no: Optional[str],
        count: Optional[int],
        note: Optional[str],
        status: str,
        error: Optional[str],
        sent_at: Optional[datetime] = None,
    ) -> None:
        self._client.table("notifications").insert(
            {
                "apartment_no": apartment_no,
                "count": count,
                "note": note,
                "status": status,
                "error": error,
                "sent_at": utc_now_iso(sent_at),
            }
        ).execute()

    def add_apartment(self, apartment_no: str, display_name: Optional[str] = None) -> bool:
        result = (
            self._client.table("apartments")
            .upsert(
                {"apartment_no": apartment_no, "display_name": display_name or apartment_no},
                on_conflict="apartment_no",
                ignore_duplicates=True,
            )
            .execute()
        )
        return bool(result.data)

    def remove_apartment(self, apartment_no: str) -> bool:
        result = (
            self._client.table("apartments")
            .delete()
            .eq("apartment_no", apartment_no)
            .execute()
        )
        return bool(result.data)

    def cleanup_old_notifications(self, cutoff: datetime) -> int:
        result = (
            self._client.table("notifications")
            .delete()
            .lt("sent_at", utc_now_iso(cutoff))
            .execute()
        )
        return len(result.data or [])

    def ping(self) -> None:
        self._client.table("apartments").select("apartment_no").limit(1).execute()


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_SQLITE_SCHEMA = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS apartments (
  apartment_no TEXT PRIMARY KEY,
  display_name TEXT
);

CREATE TABLE IF NOT EXISTS apartment_members (
  apartment_no TEXT NOT NULL,
  line_user_id TEXT NOT NULL,
  bound_at     TEXT NOT NULL,
  PRIMARY KEY (apartment_no, line_user_id),
  FOREIGN KEY (apartment_no) REFERENCES apartments(apartment_no) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS notifications (
  id           INTEGER PRIMARY KEY AUTOINCREMENT,
  apartment_no TEXT,
  count        INTEGER,
  note         TEXT,
  status       TEXT NOT NULL,
  error        TEXT,
  sent_at      TEXT NOT NULL,
  FOREIGN KEY (apartment_no) REFERENCES apartments(apartment_no) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_members_apt ON apartment_members(apartment_no);
CREATE INDEX IF NOT EXISTS idx_notif_apt   ON notifications(apartment_no);
"""


class SqliteBindingStore(BindingStore):
    """Embedded SQLite database at db_path (``:memory:`` for tests)."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or os.getenv("DB_PATH", "./data/app.db")
        if self.db_path != ":memory:":
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        # FastAPI runs sync dependencies in a threadpool
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SQLITE_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def list_apartments(self) -> list[dict]:
        rows = self._conn.execute(
            "SELECT apartment_no, display_name FROM apartments"
        ).fetchall()
        return _sorted_apartments([dict(r) for r in rows])

    def apartment_exists(self, apartment_no: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM apartments WHERE apartment_no = ?", (apartment_no,)
        ).fetchone()
        return row is not None

    def bind_apartment_to_user(self, apartment_no: str, user_id: str) -> bool:
        if not self.apartment_exists(apartment_no):
            return False

        try:
            with self._conn:
                self._conn.execute(
                    "INSERT OR IGNORE INTO apartment_members(apartment_no, line_user_id, bound_at) "
                    "VALUES (?, ?, ?)",
                    (apartment_no, user_id, utc_now_iso()),
                )
        except sqlite3.IntegrityError:
            # INSERT OR IGNORE does not ignore foreign key failures
            logger.warning(
                f"Apartment {apartment_no!r} disappeared before bind of {user_id!r}"
            )
            return False
        return True

    def get_user_ids_by_apartment(self, apartment_no: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT line_user_id FROM apartment_members WHERE apartment_no = ?",
            (apartment_no,),
        ).fetchall()
        return _distinct([r["line_user_id"] for r in rows])

    def add_notification(
        self,
        apartment_no: Optional[str],
        count: Optional[int],
        note: Optional[str],
        status: str,
        error: Optional[str],
        sent_at: Optional[datetime] = None,
    ) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO notifications(apartment_no, count, note, status, error, sent_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (apartment_no, count, note, status, error, utc_now_iso(sent_at)),
            )

    def list_notifications(self) -> list[dict]:
        """Return every ledger row, oldest first."""
        rows = self._conn.execute(
            "SELECT id, apartment_no, count, note, status, error, sent_at "
            "FROM notifications ORDER BY id"
        ).fetchall()
        return [dict(r) for r in rows]

    def add_apartment(self, apartment_no: str, display_name: Optional[str] = None) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO apartments(apartment_no, display_name) VALUES (?, ?)",
                (apartment_no, display_name or apartment_no),
            )
        return cursor.rowcount > 0

    def remove_apartment(self, apartment_no: str) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM apartments WHERE apartment_no = ?", (apartment_no,)
            )
        return cursor.rowcount > 0

    def cleanup_old_notifications(self, cutoff: datetime) -> int:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM notifications WHERE sent_at < ?", (utc_now_iso(cutoff),)
            )
        return cursor.rowcount

    def ping(self) -> None:
        self._conn.execute("SELECT 1").fetchone()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_BACKENDS: dict[str, type[BindingStore]] = {
    "supabase": SupabaseBindingStore,
    "sqlite": SqliteBindingStore,
}


def create_store(backend: Optional[str] = None) -> BindingStore:
    """
    Build the store selected by the backend argument or STORE_BACKEND.

    Priority:
      1. backend argument (explicit, used by scripts and tests)
      2. STORE_BACKEND env var
      3. Default: "supabase"

    Raises ValueError for unknown backend names.
    """
    resolved = (backend or os.getenv("STORE_BACKEND", "supabase")).lower().strip()

    store_cls = _BACKENDS.get(resolved)
    if store_cls is None:
        raise ValueError(
            f"Unknown store backend {resolved!r}. "
            f"Supported backends: {sorted(_BACKENDS)}"
        )

    logger.info(f"Using {resolved} binding store")
    return store_cls()


@lru_cache(maxsize=1)
def get_store() -> BindingStore:
    """FastAPI dependency returning the process-wide store."""
    return create_store()
