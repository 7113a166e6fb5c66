"""
Idempotent upsert into the authoritative inventory store.

Implements INSERT ... ON CONFLICT (vcpn) DO UPDATE. The unique constraint
on vcpn is what prevents duplicates, so concurrent writers of the same key
serialize in the database instead of in application locks.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from psycopg.types.json import Jsonb

from inventory_pipeline.core.fields import CANONICAL_FIELDS
from inventory_pipeline.core.models import InventoryRecord

from .connection import DatabaseConnectionPool

INVENTORY_COLUMNS: tuple[str, ...] = (
    "id",
    "name",
    "description",
    *CANONICAL_FIELDS,
    "extra_fields",
    "quantity",
    "price",
    "last_upload_session_id",
    "last_synced_at",
    "marked_for_deletion_at",
    "deletion_batch_id",
)

# Everything except the key and identity is overwritten on conflict
_UPDATE_COLUMNS = [c for c in INVENTORY_COLUMNS if c not in ("id", "vcpn")]

UPSERT_SQL = f"""
    INSERT INTO inventory ({", ".join(INVENTORY_COLUMNS)})
    VALUES ({", ".join(["%s"] * len(INVENTORY_COLUMNS))})
    ON CONFLICT (vcpn) DO UPDATE SET
        {", ".join(f"{c} = EXCLUDED.{c}" for c in _UPDATE_COLUMNS)}
    RETURNING id, (xmax = 0) AS inserted
"""

SELECT_SQL = f"SELECT {', '.join(INVENTORY_COLUMNS)} FROM inventory"

MARK_MISSING_SQL = """
    UPDATE inventory i
    SET marked_for_deletion_at = NOW(), deletion_batch_id = %(batch_id)s
    WHERE i.last_upload_session_id IS NOT NULL
      AND i.marked_for_deletion_at IS NULL
      AND NOT EXISTS (
          SELECT 1 FROM staging_record s
          WHERE s.upload_session_id = ANY(%(session_ids)s) AND s.vcpn = i.vcpn
      )
    RETURNING i.id, i.vcpn
"""


class InventoryRepository:
    """
    Reads and writes the inventory table.

    Args:
        pool: Database connection pool
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    @staticmethod
    def _params(record: InventoryRecord) -> tuple[Any, ...]:
        values = record.model_dump()
        return tuple(
            Jsonb(values[c]) if c == "extra_fields" else values[c]
            for c in INVENTORY_COLUMNS
        )

    def upsert(self, record: InventoryRecord, cur=None) -> tuple[UUID, bool]:
        """
        Insert or update one record by vcpn.

        Args:
            record: Record to write
            cur: Cursor of an open transaction; a pooled connection is used when omitted

        Returns:
            (inventory id, True if the row was inserted, False if updated)
        """
        if cur is not None:
            cur.execute(UPSERT_SQL, self._params(record))
            row = cur.fetchone()
        else:
            row = self.pool.execute_query(UPSERT_SQL, self._params(record))[0]
        return row["id"], bool(row["inserted"])

    def get_by_vcpn(self, vcpn: str) -> InventoryRecord | None:
        rows = self.pool.execute_query(f"{SELECT_SQL} WHERE vcpn = %s", (vcpn,))
        return InventoryRecord(**rows[0]) if rows else None

    def count_by_vcpn(self, vcpn: str) -> int:
        rows = self.pool.execute_query("SELECT COUNT(*) AS n FROM inventory WHERE vcpn = %s", (vcpn,))
        return rows[0]["n"]

    def existing_keys(self, vcpns: Iterable[str]) -> set[str]:
        """Which of the given keys already exist."""
        keys = [k for k in set(vcpns) if k]
        if not keys:
            return set()
        rows = self.pool.execute_query("SELECT vcpn FROM inventory WHERE vcpn = ANY(%s)", (keys,))
        return {row["vcpn"] for row in rows}

    def mark_missing(self, batch_id: UUID, session_ids: Iterable[UUID]) -> list[dict]:
        """
        Soft-mark upload-managed records whose key no session of an upload staged.

        Records never written by an upload, and records already marked, are
        left alone.

        Returns:
            The marked rows as {"id", "vcpn"}, ordered by vcpn
        """
        rows = self.pool.execute_query(
            MARK_MISSING_SQL,
            {"batch_id": batch_id, "session_ids": list(session_ids)},
        )
        return sorted(rows, key=lambda row: row["vcpn"])
