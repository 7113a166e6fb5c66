"""
Staging store for parsed rows awaiting review and reconciliation.

Rows are append-only per (session, row_number): a re-run of the same chunk
rows after a resume inserts nothing. Filtering and paging happen in SQL
because a session can hold tens of thousands of rows.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any
from uuid import UUID

from psycopg.types.json import Jsonb

from inventory_pipeline.core.exceptions import StagingRecordNotFoundError
from inventory_pipeline.core.fields import CANONICAL_FIELDS
from inventory_pipeline.core.models import StagingFilter, StagingPage, StagingRecord, ValidationIssue

from .connection import DatabaseConnectionPool

FIELD_COLUMNS: tuple[str, ...] = CANONICAL_FIELDS + ("extra_fields",)

STAGING_COLUMNS: tuple[str, ...] = (
    "id",
    "upload_session_id",
    "row_number",
    "original_data",
    *FIELD_COLUMNS,
    "validation_status",
    "needs_review",
    "issues",
    "validation_notes",
    "action_type",
    "existing_inventory_id",
    "processed_at",
    "created_at",
    "updated_at",
)

# Columns a caller may change after insert
UPDATABLE_COLUMNS: frozenset[str] = frozenset(STAGING_COLUMNS) - {
    "id",
    "upload_session_id",
    "row_number",
    "created_at",
    "updated_at",
}

JSON_COLUMNS: frozenset[str] = frozenset({"original_data", "extra_fields", "issues"})

SELECT_COLUMNS = ", ".join(STAGING_COLUMNS)


def _adapt(column: str, value: Any) -> Any:
    """Wrap JSON columns for psycopg; issues are stored as plain dicts."""
    if column == "issues":
        return Jsonb([
            issue.model_dump() if isinstance(issue, ValidationIssue) else dict(issue)
            for issue in (value or [])
        ])
    if column in JSON_COLUMNS:
        return Jsonb(value or {})
    if column == "validation_notes":
        return list(value or [])
    return value


class StagingRepository:
    """
    CRUD and query access over staging_record.

    Args:
        pool: Database connection pool
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def insert_batch(self, session_id: UUID, records: Iterable[StagingRecord]) -> int:
        """
        Insert rows for one session in a single transaction.

        Rows whose (session, row_number) already exists are skipped.

        Returns:
            Number of rows actually inserted
        """
        insert_columns = [c for c in STAGING_COLUMNS if c not in ("created_at", "updated_at")]
        placeholders = ", ".join(["%s"] * len(insert_columns))
        query = f"""
            INSERT INTO staging_record ({", ".join(insert_columns)})
            VALUES ({placeholders})
            ON CONFLICT (upload_session_id, row_number) DO NOTHING
        """

        params_list = []
        for record in records:
            values = record.model_dump()
            values["upload_session_id"] = session_id
            params_list.append(tuple(_adapt(c, values[c]) for c in insert_columns))

        if not params_list:
            return 0

        with self.pool.get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.executemany(query, params_list)
                    return max(cur.rowcount, 0)

    def get(self, record_id: UUID) -> StagingRecord:
        rows = self.pool.execute_query(
            f"SELECT {SELECT_COLUMNS} FROM staging_record WHERE id = %s",
            (record_id,),
        )
        if not rows:
            raise StagingRecordNotFoundError(str(record_id))
        return StagingRecord(**rows[0])

    def update(self, record_id: UUID, changes: dict[str, Any], cur=None) -> StagingRecord:
        """
        Apply a partial update and return the stored row.

        The owning session, row number and id are never changed.

        Args:
            record_id: Row to update
            changes: Column -> new value
            cur: Optional cursor of an open transaction to run in

        Raises:
            ValueError: If changes name a column that cannot be updated
            StagingRecordNotFoundError: If the row does not exist
        """
        rejected = set(changes) - UPDATABLE_COLUMNS
        if rejected:
            raise ValueError(f"Staging columns cannot be updated: {sorted(rejected)}")
        if not changes:
            return self.get(record_id)

        assignments = ", ".join(f"{column} = %({column})s" for column in changes)
        params = {column: _adapt(column, value) for column, value in changes.items()}
        params["__id"] = record_id
        query = f"""
            UPDATE staging_record
            SET {assignments}, updated_at = NOW()
            WHERE id = %(__id)s
            RETURNING {SELECT_COLUMNS}
        """

        if cur is not None:
            cur.execute(query, params)
            rows = cur.fetchall()
        else:
            rows = self.pool.execute_query(query, params)

        if not rows:
            raise StagingRecordNotFoundError(str(record_id))
        return StagingRecord(**rows[0])

    def query(
        self,
        session_id: UUID,
        filters: StagingFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> StagingPage:
        """
        One page of a session's rows in row order, with the filtered total.

        search_term matches vcpn, part number, description and notes
        (case-insensitive); issue_type matches any attached issue of that type.
        """
        where, params = self._where(session_id, filters or StagingFilter())

        count_rows = self.pool.execute_query(
            f"SELECT COUNT(*) AS total FROM staging_record WHERE {where}",
            params,
        )
        total = count_rows[0]["total"] if count_rows else 0

        rows = self.pool.execute_query(
            f"""
            SELECT {SELECT_COLUMNS} FROM staging_record
            WHERE {where}
            ORDER BY row_number
            LIMIT %(limit)s OFFSET %(offset)s
            """,
            {**params, "limit": page_size, "offset": (page - 1) * page_size},
        )
        return StagingPage(
            records=[StagingRecord(**row) for row in rows],
            total_count=total,
            page=page,
            page_size=page_size,
        )

    @staticmethod
    def _where(session_id: UUID, filters: StagingFilter) -> tuple[str, dict[str, Any]]:
        clauses = ["upload_session_id = %(session_id)s"]
        params: dict[str, Any] = {"session_id": session_id}

        if filters.status is not None:
            clauses.append("validation_status = %(status)s")
            params["status"] = filters.status
        if filters.needs_review is not None:
            clauses.append("needs_review = %(needs_review)s")
            params["needs_review"] = filters.needs_review
        if filters.action_type is not None:
            clauses.append("action_type = %(action_type)s")
            params["action_type"] = filters.action_type
        if filters.search_term:
            clauses.append(
                "(vcpn ILIKE %(search)s OR part_number ILIKE %(search)s "
                "OR long_description ILIKE %(search)s "
                "OR array_to_string(validation_notes, ' ') ILIKE %(search)s)"
            )
            escaped = (
                filters.search_term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            )
            params["search"] = f"%{escaped}%"
        if filters.issue_type:
            clauses.append("issues @> %(issue_filter)s")
            params["issue_filter"] = Jsonb([{"issue_type": filters.issue_type}])

        return " AND ".join(clauses), params

    def ids_for_session(self, session_id: UUID, statuses: Iterable[str] | None = None) -> list[UUID]:
        """Row ids of a session in row order, optionally limited to some statuses."""
        if statuses is None:
            rows = self.pool.execute_query(
                "SELECT id FROM staging_record WHERE upload_session_id = %s ORDER BY row_number",
                (session_id,),
            )
        else:
            rows = self.pool.execute_query(
                """
                SELECT id FROM staging_record
                WHERE upload_session_id = %s AND validation_status = ANY(%s)
                ORDER BY row_number
                """,
                (session_id, list(statuses)),
            )
        return [row["id"] for row in rows]

    def iter_session(
        self,
        session_id: UUID,
        statuses: Iterable[str] | None = None,
        page_size: int = 500,
    ) -> Iterator[StagingRecord]:
        """
        Stream a session's rows in row order, one page in memory at a time.

        Uses keyset pagination on row_number, so rows updated while iterating
        are neither skipped nor repeated.
        """
        status_list = list(statuses) if statuses is not None else None
        last_row = 0
        while True:
            if status_list is None:
                rows = self.pool.execute_query(
                    f"""
                    SELECT {SELECT_COLUMNS} FROM staging_record
                    WHERE upload_session_id = %s AND row_number > %s
                    ORDER BY row_number LIMIT %s
                    """,
                    (session_id, last_row, page_size),
                )
            else:
                rows = self.pool.execute_query(
                    f"""
                    SELECT {SELECT_COLUMNS} FROM staging_record
                    WHERE upload_session_id = %s AND row_number > %s
                      AND validation_status = ANY(%s)
                    ORDER BY row_number LIMIT %s
                    """,
                    (session_id, last_row, status_list, page_size),
                )
            if not rows:
                return
            for row in rows:
                yield StagingRecord(**row)
            last_row = rows[-1]["row_number"]

    def vcpns_for_session(self, session_id: UUID, before_row: int | None = None) -> set[str]:
        """Distinct non-empty keys already staged for a session, optionally only from rows before before_row."""
        query = "SELECT DISTINCT vcpn FROM staging_record WHERE upload_session_id = %s AND vcpn <> ''"
        params: tuple = (session_id,)
        if before_row is not None:
            query += " AND row_number < %s"
            params = (session_id, before_row)
        rows = self.pool.execute_query(query, params)
        return {row["vcpn"] for row in rows}

    def get_many(self, record_ids: Iterable[UUID]) -> list[StagingRecord]:
        """Rows for the given ids; missing ids are left out."""
        ids = list(record_ids)
        if not ids:
            return []
        rows = self.pool.execute_query(
            f"SELECT {SELECT_COLUMNS} FROM staging_record WHERE id = ANY(%s) ORDER BY upload_session_id, row_number",
            (ids,),
        )
        return [StagingRecord(**row) for row in rows]

    def get_by_row_numbers(self, session_id: UUID, row_numbers: Iterable[int]) -> list[StagingRecord]:
        """Stored rows of a session at the given row numbers, in row order."""
        numbers = sorted(set(row_numbers))
        if not numbers:
            return []
        rows = self.pool.execute_query(
            f"SELECT {SELECT_COLUMNS} FROM staging_record "
            "WHERE upload_session_id = %s AND row_number = ANY(%s) ORDER BY row_number",
            (session_id, numbers),
        )
        return [StagingRecord(**row) for row in rows]

    def delete(self, record_id: UUID) -> bool:
        return self.pool.execute_command("DELETE FROM staging_record WHERE id = %s", (record_id,)) > 0

    def delete_by_session(self, session_id: UUID) -> int:
        return self.pool.execute_command(
            "DELETE FROM staging_record WHERE upload_session_id = %s",
            (session_id,),
        )

    def count_by_status(self, session_id: UUID) -> dict[str, int]:
        rows = self.pool.execute_query(
            """
            SELECT validation_status, COUNT(*) AS n FROM staging_record
            WHERE upload_session_id = %s
            GROUP BY validation_status
            """,
            (session_id,),
        )
        return {row["validation_status"]: row["n"] for row in rows}

    def staged_row_count(self, session_id: UUID) -> int:
        rows = self.pool.execute_query(
            "SELECT COUNT(*) AS n FROM staging_record WHERE upload_session_id = %s",
            (session_id,),
        )
        return rows[0]["n"] if rows else 0

    def set_action_types(self, session_id: UUID) -> int:
        """
        Mark accepted, unprocessed rows as insert or update by whether their
        vcpn already exists in the inventory store.

        Returns:
            Number of rows whose action_type was set
        """
        return self.pool.execute_command(
            """
            UPDATE staging_record s
            SET action_type = CASE
                    WHEN EXISTS (SELECT 1 FROM inventory i WHERE i.vcpn = s.vcpn) THEN 'update'
                    ELSE 'insert'
                END,
                updated_at = NOW()
            WHERE s.upload_session_id = %s
              AND s.validation_status IN ('valid', 'corrected')
              AND s.vcpn <> ''
            """,
            (session_id,),
        )
