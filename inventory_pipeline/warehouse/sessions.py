"""
Upload session persistence.

Counter updates are increments applied in SQL, and status changes are a
single UPDATE ... RETURNING, so a progress poller never sees a half-applied
transition.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from inventory_pipeline.core.exceptions import SessionNotFoundError
from inventory_pipeline.core.models import TERMINAL_STATUSES, UploadSession

from .connection import DatabaseConnectionPool

SESSION_COLUMNS = (
    "id, batch_id, filename, original_filename, chunk_number, total_chunks, file_size, status, "
    "total_records, rows_consumed, processed_records, valid_records, invalid_records, corrected_records, "
    "failed_records, inserted_records, updated_records, error_message, "
    "created_at, updated_at, started_at, completed_at"
)

COUNTER_FIELDS: tuple[str, ...] = (
    "rows_consumed",
    "processed_records",
    "valid_records",
    "invalid_records",
    "corrected_records",
    "failed_records",
    "inserted_records",
    "updated_records",
)


class UploadSessionRepository:
    """
    CRUD over upload_session.

    Args:
        pool: Database connection pool
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def create(self, session: UploadSession) -> UploadSession:
        query = f"""
            INSERT INTO upload_session (
                id, batch_id, filename, original_filename, chunk_number, total_chunks,
                file_size, status, total_records, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {SESSION_COLUMNS}
        """
        rows = self.pool.execute_query(
            query,
            (
                session.id,
                session.batch_id,
                session.filename,
                session.original_filename,
                session.chunk_number,
                session.total_chunks,
                session.file_size,
                session.status,
                session.total_records,
                session.created_at,
                session.updated_at,
            ),
        )
        return UploadSession(**rows[0])

    def get(self, session_id: UUID) -> UploadSession:
        rows = self.pool.execute_query(
            f"SELECT {SESSION_COLUMNS} FROM upload_session WHERE id = %s",
            (session_id,),
        )
        if not rows:
            raise SessionNotFoundError(str(session_id))
        return UploadSession(**rows[0])

    def list(self, limit: int = 50, batch_id: UUID | None = None) -> list[UploadSession]:
        """Sessions newest first, optionally restricted to one upload."""
        if batch_id is not None:
            rows = self.pool.execute_query(
                f"""
                SELECT {SESSION_COLUMNS} FROM upload_session
                WHERE batch_id = %s
                ORDER BY created_at DESC, chunk_number DESC
                LIMIT %s
                """,
                (batch_id, limit),
            )
        else:
            rows = self.pool.execute_query(
                f"""
                SELECT {SESSION_COLUMNS} FROM upload_session
                ORDER BY created_at DESC, chunk_number DESC
                LIMIT %s
                """,
                (limit,),
            )
        return [UploadSession(**row) for row in rows]

    def chunks_for_batch(self, batch_id: UUID) -> list[UploadSession]:
        """All chunks of one upload in chunk order."""
        rows = self.pool.execute_query(
            f"SELECT {SESSION_COLUMNS} FROM upload_session WHERE batch_id = %s ORDER BY chunk_number",
            (batch_id,),
        )
        return [UploadSession(**row) for row in rows]

    def update_progress(self, session_id: UUID, **deltas: int) -> UploadSession:
        """
        Add deltas to the session counters.

        Args:
            session_id: Session to update
            **deltas: Counter name -> increment, e.g. processed_records=50

        Raises:
            ValueError: For unknown counter names
            SessionNotFoundError: If the session does not exist
        """
        unknown = set(deltas) - set(COUNTER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown session counters: {sorted(unknown)}")

        increments = {name: int(value) for name, value in deltas.items() if value}
        if not increments:
            return self.get(session_id)

        assignments = ", ".join(f"{name} = {name} + %({name})s" for name in increments)
        params: dict[str, Any] = {**increments, "id": session_id}
        rows = self.pool.execute_query(
            f"""
            UPDATE upload_session
            SET {assignments}, updated_at = NOW()
            WHERE id = %(id)s
            RETURNING {SESSION_COLUMNS}
            """,
            params,
        )
        if not rows:
            raise SessionNotFoundError(str(session_id))
        return UploadSession(**rows[0])

    def transition(
        self,
        session_id: UUID,
        status: str,
        error_message: str | None = None,
    ) -> UploadSession:
        """
        Move a session to a new status in one statement.

        started_at is stamped on the first move to processing; completed_at
        on any terminal status. A completed session never changes again.
        """
        terminal = status in TERMINAL_STATUSES
        rows = self.pool.execute_query(
            f"""
            UPDATE upload_session
            SET status = %(status)s,
                error_message = %(error_message)s,
                updated_at = NOW(),
                started_at = CASE
                    WHEN %(status)s = 'processing' AND started_at IS NULL THEN NOW()
                    ELSE started_at
                END,
                completed_at = CASE WHEN %(terminal)s THEN NOW() ELSE NULL END
            WHERE id = %(id)s AND status <> 'completed'
            RETURNING {SESSION_COLUMNS}
            """,
            {"status": status, "error_message": error_message, "terminal": terminal, "id": session_id},
        )
        if rows:
            return UploadSession(**rows[0])
        return self.get(session_id)

    def delete(self, session_id: UUID) -> bool:
        """Delete a session; its staging rows go with it (ON DELETE CASCADE)."""
        return self.pool.execute_command("DELETE FROM upload_session WHERE id = %s", (session_id,)) > 0
