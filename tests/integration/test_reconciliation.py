"""
Integration tests for reconciliation into the inventory store.

Tests idempotent upserts by vcpn, per-row transactions and session counters.
"""

from uuid import uuid4

import pytest

from inventory_pipeline.batch.reconcile import ReconciliationEngine
from inventory_pipeline.core.exceptions import SessionNotFoundError, UploadIncompleteError
from inventory_pipeline.core.models import InventoryRecord, StagingRecord, UploadSession
from inventory_pipeline.warehouse.inventory import InventoryRepository
from inventory_pipeline.warehouse.sessions import UploadSessionRepository
from inventory_pipeline.warehouse.staging import StagingRepository


@pytest.fixture
def repos(clean_db):
    return UploadSessionRepository(clean_db), StagingRepository(clean_db), InventoryRepository(clean_db)


@pytest.fixture
def engine(clean_db, repos):
    sessions, staging, inventory = repos
    return ReconciliationEngine(clean_db, staging=staging, inventory=inventory, sessions=sessions, timeout_seconds=5)


def stage(repos, rows: list[dict]) -> tuple[UploadSession, list[StagingRecord]]:
    sessions, staging, _ = repos
    session = sessions.create(
        UploadSession(filename="/uploads/v.csv", original_filename="v.csv", total_records=len(rows))
    )
    records = [
        StagingRecord(
            upload_session_id=session.id,
            row_number=n,
            **{"vendor_code": "ABC", "validation_status": "valid", **row},
        )
        for n, row in enumerate(rows, start=1)
    ]
    staging.insert_batch(session.id, records)
    return session, records


@pytest.mark.integration
class TestReconciliationEngine:
    """Integration tests for ReconciliationEngine"""

    def test_insert_then_update_same_key(self, repos, engine):
        """Test two uploads of one key leave a single inventory row with the later values"""
        sessions, staging, inventory = repos
        first_session, (first,) = stage(
            repos,
            [{"part_number": "10406", "vcpn": "ABC10406", "east_qty": 5, "total_qty": 5, "long_description": "Pad"}],
        )
        second_session, (second,) = stage(
            repos,
            [{"part_number": "10406", "vcpn": "ABC10406", "east_qty": 7, "total_qty": 7, "jobber_price": 9.99}],
        )

        inserted = engine.reconcile(first.id)
        updated = engine.reconcile(second.id)

        assert inserted.action == "insert"
        assert updated.action == "update"
        assert inserted.inventory_id == updated.inventory_id
        assert inventory.count_by_vcpn("ABC10406") == 1

        stored = inventory.get_by_vcpn("ABC10406")
        assert stored.total_qty == 7
        assert stored.quantity == 7
        assert stored.price == pytest.approx(9.99)
        assert stored.name == "10406"
        assert stored.last_upload_session_id == second_session.id

        staged_row = staging.get(second.id)
        assert staged_row.validation_status == "processed"
        assert staged_row.action_type == "update"
        assert staged_row.existing_inventory_id == updated.inventory_id
        assert staged_row.processed_at is not None

        assert sessions.get(first_session.id).inserted_records == 1
        assert sessions.get(second_session.id).updated_records == 1

    def test_reapplying_processed_row_is_deterministic(self, repos, engine):
        """Test processing a row twice changes neither inventory nor counters"""
        sessions, staging, inventory = repos
        session, (record,) = stage(
            repos, [{"part_number": "1", "vcpn": "ABC1", "east_qty": 2, "total_qty": 2, "extra_fields": {"bin": "A"}}]
        )

        engine.reconcile(record.id)
        before = inventory.get_by_vcpn("ABC1")
        again = engine.reconcile(record.id)
        after = inventory.get_by_vcpn("ABC1")

        assert again.action == "update"
        assert again.first_processing is False
        assert after.id == before.id
        assert after.model_dump(exclude={"last_synced_at"}) == before.model_dump(exclude={"last_synced_at"})
        assert after.extra_fields == {"bin": "A"}
        counted = sessions.get(session.id)
        assert counted.inserted_records == 1
        assert counted.updated_records == 0

    def test_rows_that_cannot_be_applied_are_skipped(self, repos, engine):
        """Test invalid rows and rows without a key are never written"""
        _, (invalid, keyless) = stage(
            repos,
            [
                {"part_number": "1", "vcpn": "ABC1", "validation_status": "invalid"},
                {"part_number": "", "vcpn": ""},
            ],
        )

        assert engine.reconcile(invalid.id).action == "skip"
        assert engine.reconcile(keyless.id).action == "skip"
        assert repos[2].existing_keys(["ABC1"]) == set()

    def test_failed_upsert_rolls_back_row(self, repos, engine):
        """Test a database error leaves the staging row untouched and is counted"""
        sessions, staging, inventory = repos
        session, (record,) = stage(
            repos,
            [{"part_number": "1", "vcpn": "ABC1", "jobber_price": 1e13, "validation_status": "corrected"}],
        )

        result = engine.reconcile(record.id)

        assert result.action == "failed"
        assert "Row 1" in result.error
        assert "ABC1" in result.error
        assert inventory.get_by_vcpn("ABC1") is None
        assert staging.get(record.id).validation_status == "corrected"
        assert sessions.get(session.id).failed_records == 1

    def test_count_false_leaves_counters_to_caller(self, repos, engine):
        """Test the scheduler path reports outcomes without touching counters"""
        sessions, _, _ = repos
        session, (record,) = stage(repos, [{"part_number": "1", "vcpn": "ABC1"}])

        result = engine.reconcile(record.id, count=False)

        assert result.action == "insert"
        assert result.first_processing is True
        assert sessions.get(session.id).inserted_records == 0

    def test_reconcile_all_accepted(self, repos, engine):
        """Test only valid and corrected rows of the session are applied"""
        sessions, staging, inventory = repos
        session, records = stage(
            repos,
            [
                {"part_number": "1", "vcpn": "ABC1"},
                {"part_number": "2", "vcpn": "ABC2", "validation_status": "corrected"},
                {"part_number": "3", "vcpn": "ABC3", "validation_status": "invalid"},
                {"part_number": "4", "vcpn": "ABC4"},
            ],
        )
        inventory.upsert(InventoryRecord(vcpn="ABC4", name="existing"))

        summary = engine.reconcile_all_accepted(session.id, page_size=2)

        assert summary.attempted == 3
        assert summary.inserted == 2
        assert summary.updated == 1
        assert summary.failed == 0
        assert staging.count_by_status(session.id) == {"processed": 3, "invalid": 1}
        counted = sessions.get(session.id)
        assert counted.inserted_records == 2
        assert counted.updated_records == 1

    def test_reconcile_many_reports_unknown_ids(self, repos, engine):
        """Test a missing id is a failed result, not an exception"""
        _, (record,) = stage(repos, [{"part_number": "1", "vcpn": "ABC1"}])
        missing = uuid4()

        summary = engine.reconcile_many([record.id, missing])

        assert summary.inserted == 1
        assert summary.failed == 1
        assert str(missing) in summary.errors[0]

    def test_preview_actions(self, repos, engine):
        """Test preview labels rows without writing inventory"""
        sessions, staging, inventory = repos
        session, records = stage(repos, [{"part_number": "1", "vcpn": "ABC1"}, {"part_number": "2", "vcpn": "ABC2"}])
        engine.reconcile(records[0].id)

        labeled = engine.preview_actions(session.id)

        assert labeled == 1
        assert staging.get(records[1].id).action_type == "insert"
        assert inventory.get_by_vcpn("ABC2") is None


@pytest.mark.integration
class TestMarkMissingForDeletion:
    """Integration tests for flagging inventory records an upload no longer lists"""

    def test_missing_keys_are_marked_and_cleared_by_next_upsert(self, repos, engine):
        """Test only upload-managed records absent from the new upload are flagged"""
        sessions, _, inventory = repos
        first, _ = stage(
            repos,
            [
                {"part_number": "1", "vcpn": "ABC1"},
                {"part_number": "2", "vcpn": "ABC2"},
                {"part_number": "3", "vcpn": "ABC3"},
            ],
        )
        engine.reconcile_all_accepted(first.id)
        inventory.upsert(InventoryRecord(vcpn="MANUAL1", name="entered by hand"))

        second, _ = stage(
            repos,
            [{"part_number": "1", "vcpn": "ABC1"}, {"part_number": "3", "vcpn": "ABC3", "validation_status": "invalid"}],
        )
        sessions.transition(second.id, "completed")

        summary = engine.mark_missing_for_deletion(second.batch_id)

        assert summary.deleted == 1
        assert [(r.action, r.vcpn) for r in summary.results] == [("delete", "ABC2")]
        marked = inventory.get_by_vcpn("ABC2")
        assert marked.marked_for_deletion_at is not None
        assert marked.deletion_batch_id == second.batch_id
        assert summary.results[0].inventory_id == marked.id
        assert inventory.get_by_vcpn("ABC1").marked_for_deletion_at is None
        assert inventory.get_by_vcpn("ABC3").marked_for_deletion_at is None
        assert inventory.get_by_vcpn("MANUAL1").marked_for_deletion_at is None

        assert engine.mark_missing_for_deletion(second.batch_id).deleted == 0

        third, (again,) = stage(repos, [{"part_number": "2", "vcpn": "ABC2"}])
        engine.reconcile(again.id)
        restored = inventory.get_by_vcpn("ABC2")
        assert restored.marked_for_deletion_at is None
        assert restored.deletion_batch_id is None

    def test_incomplete_upload_is_refused(self, repos, engine):
        """Test marking waits until every chunk of the upload has completed"""
        session, _ = stage(repos, [{"part_number": "1", "vcpn": "ABC1"}])

        with pytest.raises(UploadIncompleteError, match="chunks not completed: 1"):
            engine.mark_missing_for_deletion(session.batch_id)
        with pytest.raises(SessionNotFoundError):
            engine.mark_missing_for_deletion(uuid4())
