"""
Unit tests for progress snapshots and combined run status.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from inventory_pipeline.core.exceptions import SessionNotFoundError
from inventory_pipeline.core.models import UploadSession
from inventory_pipeline.observability.progress import ProgressReporter, combined_status

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_chunk(batch_id, chunk_number, **overrides) -> UploadSession:
    values = {
        "batch_id": batch_id,
        "filename": "/uploads/vendor.csv",
        "original_filename": "vendor.csv",
        "chunk_number": chunk_number,
        "total_chunks": 2,
        "total_records": 10,
        "created_at": T0,
        "updated_at": T0,
    }
    values.update(overrides)
    return UploadSession(**values)


class TestCombinedStatus:
    """Tests for collapsing chunk statuses"""

    @pytest.mark.parametrize(
        "statuses, expected",
        [
            (["completed", "failed", "processing"], "failed"),
            (["completed", "processing", "pending"], "processing"),
            (["completed", "paused", "pending"], "paused"),
            (["completed", "completed"], "completed"),
            (["completed", "pending"], "processing"),
            (["pending", "pending"], "pending"),
            ([], "pending"),
        ],
    )
    def test_combined_status(self, statuses, expected):
        """Test status priority across chunks"""
        assert combined_status(statuses) == expected


class TestProgressReporter:
    """Tests for ProgressReporter"""

    def test_run_progress_mid_upload(self, fake_sessions):
        """Test counters, rate and ETA while the second chunk is running"""
        batch_id = uuid4()
        now = T0 + timedelta(seconds=20)
        fake_sessions.create(
            make_chunk(
                batch_id, 1,
                status="completed",
                rows_consumed=10, processed_records=10, valid_records=8, invalid_records=2,
                started_at=T0, completed_at=T0 + timedelta(seconds=10), updated_at=T0 + timedelta(seconds=10),
            )
        )
        fake_sessions.create(
            make_chunk(
                batch_id, 2,
                status="processing",
                rows_consumed=5, processed_records=5, corrected_records=5,
                started_at=T0 + timedelta(seconds=10), updated_at=now,
            )
        )

        snapshot = ProgressReporter(fake_sessions, clock=lambda: now).run_progress(batch_id)

        assert snapshot.status == "processing"
        assert snapshot.total_records == 20
        assert snapshot.rows_consumed == 15
        assert snapshot.valid_records == 8
        assert snapshot.invalid_records == 2
        assert snapshot.corrected_records == 5
        assert snapshot.elapsed_seconds == 20.0
        assert snapshot.throughput == 0.75
        assert snapshot.percent_complete == 75.0
        assert snapshot.eta_seconds == 6.7
        assert [c.chunk_number for c in snapshot.chunks] == [1, 2]
        assert not snapshot.stalled

    def test_completed_run_has_zero_eta(self, fake_sessions):
        """Test a finished upload reports 100% and no remaining time"""
        batch_id = uuid4()
        fake_sessions.create(
            make_chunk(
                batch_id, 1, total_chunks=1,
                status="completed", rows_consumed=10, processed_records=10, valid_records=10,
                started_at=T0, completed_at=T0 + timedelta(seconds=4), updated_at=T0 + timedelta(seconds=4),
            )
        )

        snapshot = ProgressReporter(fake_sessions, clock=lambda: T0 + timedelta(hours=5)).run_progress(batch_id)

        assert snapshot.status == "completed"
        assert snapshot.percent_complete == 100.0
        assert snapshot.elapsed_seconds == 4.0
        assert snapshot.eta_seconds == 0.0

    def test_pending_run(self, fake_sessions):
        """Test an upload that has not started has no rate or ETA"""
        batch_id = uuid4()
        fake_sessions.create(make_chunk(batch_id, 1))
        fake_sessions.create(make_chunk(batch_id, 2))

        snapshot = ProgressReporter(fake_sessions, clock=lambda: T0).run_progress(batch_id)

        assert snapshot.status == "pending"
        assert snapshot.elapsed_seconds == 0.0
        assert snapshot.throughput == 0.0
        assert snapshot.eta_seconds is None

    def test_stalled_processing_chunk(self, fake_sessions):
        """Test a processing chunk with an old update is flagged stalled"""
        batch_id = uuid4()
        session = fake_sessions.create(
            make_chunk(batch_id, 1, status="processing", rows_consumed=3, processed_records=3, started_at=T0)
        )
        reporter = ProgressReporter(fake_sessions, stalled_after_seconds=3600, clock=lambda: T0 + timedelta(hours=2))

        snapshot = reporter.session_progress(session.id)

        assert snapshot.stalled
        assert snapshot.session_id == session.id
        assert snapshot.chunks[0].stalled

    def test_paused_chunk_is_never_stalled(self, fake_sessions):
        """Test only processing chunks can stall"""
        session = make_chunk(uuid4(), 1, status="paused", started_at=T0)
        reporter = ProgressReporter(fake_sessions, clock=lambda: T0 + timedelta(days=1))
        assert not reporter.is_stalled(session)

    def test_failed_chunk_reports_error(self, fake_sessions):
        """Test failure reasons surface on the chunk line"""
        batch_id = uuid4()
        fake_sessions.create(
            make_chunk(batch_id, 1, status="failed", error_message="Chunk 1 failed: connection lost", started_at=T0)
        )
        snapshot = ProgressReporter(fake_sessions, clock=lambda: T0).run_progress(batch_id)
        assert snapshot.status == "failed"
        assert snapshot.chunks[0].error_message == "Chunk 1 failed: connection lost"

    def test_unknown_batch(self, fake_sessions):
        """Test an unknown upload raises SessionNotFoundError"""
        with pytest.raises(SessionNotFoundError):
            ProgressReporter(fake_sessions).run_progress(uuid4())

    def test_unknown_session(self, fake_sessions):
        """Test an unknown chunk raises SessionNotFoundError"""
        with pytest.raises(SessionNotFoundError):
            ProgressReporter(fake_sessions).session_progress(uuid4())
