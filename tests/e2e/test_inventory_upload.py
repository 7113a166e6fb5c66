"""
End-to-end tests for the inventory import pipeline.

Tests the complete flow: CSV upload → chunked staging (with pause, stop and
resume) → review and edits → mass correction → reconciliation into inventory.
"""

import os

import pytest

from inventory_pipeline.batch.pipeline import InventoryImportPipeline
from inventory_pipeline.core.config import PipelineSettings
from inventory_pipeline.core.exceptions import (
    CooldownActiveError,
    ImportCancelledError,
    SessionNotFoundError,
    UploadRejectedError,
)
from inventory_pipeline.utils.validation import InputValidationError

SHORT_FILE = [
    "VendorCode,PartNumber,VCPN,LongDescription,EastQty,MidwestQty,TotalQty,Bin Location",
    "ABC,10401,ABC10401,Brake pad,2,3,5,A1",
    "ABC,10403,ABC10403,Caliper,5,3,0,A3",
]


class OperatorAtRow:
    """Validator wrapper that fires an operator action once, while validating one row."""

    def __init__(self, inner, action, row_number: int):
        self.inner = inner
        self.action = action
        self.row_number = row_number
        self.fired = False

    def validate(self, fields, row_number, formula_log=None):
        if row_number == self.row_number and not self.fired:
            self.fired = True
            self.action()
        return self.inner.validate(fields, row_number, formula_log=formula_log)


@pytest.fixture
def pipeline(clean_db, spark_session):
    return InventoryImportPipeline(
        clean_db,
        spark=spark_session,
        settings=PipelineSettings(chunk_size=4, batch_size=2),
    )


@pytest.fixture
def vendor_csv(test_data_dir):
    return os.path.join(test_data_dir, "vendor_inventory.csv")


def totals(chunks) -> dict[str, int]:
    return {
        "rows_consumed": sum(c.rows_consumed for c in chunks),
        "processed": sum(c.processed_records for c in chunks),
        "valid": sum(c.valid_records for c in chunks),
        "corrected": sum(c.corrected_records for c in chunks),
        "invalid": sum(c.invalid_records for c in chunks),
        "failed": sum(c.failed_records for c in chunks),
    }


EXPECTED_TOTALS = {"rows_consumed": 10, "processed": 10, "valid": 5, "corrected": 4, "invalid": 1, "failed": 0}


@pytest.mark.e2e
@pytest.mark.slow
class TestInventoryUpload:
    """E2E tests for uploading and reconciling a vendor file"""

    def test_upload_stages_every_row_once(self, pipeline, vendor_csv):
        """Test a clean run stages all rows across three chunks"""
        outcome = pipeline.upload(vendor_csv, content_type="text/csv")

        assert outcome.state == "completed"
        assert [c.total_records for c in outcome.chunks] == [4, 4, 2]
        assert all(c.status == "completed" for c in outcome.chunks)
        assert totals(outcome.chunks) == EXPECTED_TOTALS
        assert sum(pipeline.staging.staged_row_count(c.id) for c in outcome.chunks) == 10

        first_chunk = pipeline.query_staging(outcome.chunks[0].id)
        by_row = {r.row_number: r for r in first_chunk.records}
        assert by_row[2].part_number == "10402"
        assert by_row[2].vcpn == "ABC10402"
        assert by_row[2].original_data["PartNumber"] == '="10402"'
        assert by_row[3].total_qty == 8
        assert by_row[4].validation_status == "invalid"
        assert by_row[1].extra_fields == {"bin_location": "A1"}

    def test_pause_and_resume_matches_uninterrupted_run(self, pipeline, vendor_csv):
        """Test pausing inside chunk 2 and resuming stages the same rows exactly once"""
        pipeline.scheduler.validator = OperatorAtRow(pipeline.validator, pipeline.pause, row_number=5)

        paused = pipeline.upload(vendor_csv)

        assert paused.state == "paused"
        assert paused.paused_session_id == paused.chunks[1].id
        assert [c.status for c in paused.chunks] == ["completed", "paused", "pending"]
        assert paused.chunks[1].rows_consumed == 2

        snapshot = pipeline.progress(paused.batch_id)
        assert snapshot.status == "paused"
        assert snapshot.rows_consumed == 6
        assert snapshot.percent_complete == 60.0

        resumed = pipeline.resume(paused.batch_id, vendor_csv)

        assert resumed.state == "completed"
        assert resumed.rows_processed == 4
        assert totals(resumed.chunks) == EXPECTED_TOTALS
        assert sum(pipeline.staging.staged_row_count(c.id) for c in resumed.chunks) == 10

        duplicates = pipeline.query_staging(resumed.chunks[1].id, issue_type="duplicate").records
        assert [r.row_number for r in duplicates] == [7]
        assert pipeline.progress(paused.batch_id).status == "completed"

    def test_stop_then_resume(self, pipeline, vendor_csv):
        """Test a stop fails the running chunk with a reason and can be resumed"""
        pipeline.scheduler.validator = OperatorAtRow(pipeline.validator, pipeline.stop, row_number=3)

        with pytest.raises(ImportCancelledError) as exc_info:
            pipeline.upload(vendor_csv)

        assert exc_info.value.row_number == 5
        sessions = pipeline.list_sessions()
        batch_id = sessions[0].batch_id
        chunks = pipeline.sessions.chunks_for_batch(batch_id)
        assert [c.status for c in chunks] == ["completed", "failed", "pending"]
        assert chunks[1].error_message == "Cancelled by operator at row 5"

        resumed = pipeline.resume(batch_id, vendor_csv)

        assert resumed.state == "completed"
        assert totals(resumed.chunks) == EXPECTED_TOTALS

    def test_resume_rejects_different_file(self, pipeline, vendor_csv, write_csv):
        """Test a resume against a file of another length is refused"""
        pipeline.scheduler.validator = OperatorAtRow(pipeline.validator, pipeline.pause, row_number=1)
        paused = pipeline.upload(vendor_csv)
        shorter = write_csv("vendor_short.csv", SHORT_FILE)

        with pytest.raises(UploadRejectedError, match="planned for 10"):
            pipeline.resume(paused.batch_id, shorter)

    def test_rejected_upload_creates_no_session(self, pipeline, vendor_csv, write_csv):
        """Test non-CSV uploads and files without required columns are refused before any session exists"""
        with pytest.raises(UploadRejectedError):
            pipeline.upload(vendor_csv, content_type="application/pdf")
        no_parts = write_csv("vendor_no_parts.csv", ["VendorCode,Description,EastQty", "ABC,Brake pad,2"])
        with pytest.raises(UploadRejectedError, match="Missing required headers: part_number"):
            pipeline.upload(no_parts)
        assert pipeline.list_sessions() == []

    def test_review_edit_and_reconcile(self, pipeline, vendor_csv):
        """Test the operator flow from review to inventory"""
        outcome = pipeline.upload(vendor_csv)
        chunk1, chunk2, chunk3 = (c.id for c in outcome.chunks)

        review = pipeline.query_staging(chunk2, needs_review=True)
        assert [r.row_number for r in review.records] == [7, 8]

        corrected = pipeline.mass_correct(chunk1, "recompute_key")
        assert corrected.changed == 3
        assert corrected.notes == []

        summaries = [pipeline.process_all_valid(chunk) for chunk in (chunk1, chunk2, chunk3)]
        assert [(s.inserted, s.updated, s.failed) for s in summaries] == [(3, 0, 0), (3, 1, 0), (2, 0, 0)]
        assert pipeline.inventory.count_by_vcpn("ABC10405") == 1
        assert pipeline.inventory.get_by_vcpn("ABC10405").description == "Clip again"
        assert pipeline.inventory.get_by_vcpn("ABC10403").quantity == 8

        invalid = pipeline.query_staging(chunk1, status="invalid").records[0]
        edited = pipeline.edit_row(invalid.id, {"vendor_code": "ABC"})
        assert edited.validation_status == "corrected"
        assert edited.vcpn == "ABC10404"
        assert pipeline.process_one(edited.id).action == "insert"

        progress = pipeline.progress(outcome.batch_id)
        assert progress.inserted_records == 9
        assert progress.updated_records == 1

        # processed rows stay editable and can be applied again
        processed = pipeline.query_staging(chunk3, status="processed").records[0]
        pipeline.edit_row(processed.id, {"east_qty": "10"})
        again = pipeline.process_one(processed.id)
        assert again.action == "update"
        assert pipeline.inventory.get_by_vcpn(processed.vcpn).total_qty == 13
        assert pipeline.progress(outcome.batch_id).updated_records == 1

    def test_deletes_leave_inventory_alone(self, pipeline, vendor_csv):
        """Test deleting rows and sessions never touches reconciled inventory"""
        outcome = pipeline.upload(vendor_csv)
        last = outcome.chunks[2].id
        pipeline.process_all_valid(last)
        row = pipeline.query_staging(last).records[0]

        pipeline.delete_row(row.id)
        pipeline.delete_session(last)

        assert pipeline.inventory.get_by_vcpn("XYZ777") is not None
        with pytest.raises(SessionNotFoundError):
            pipeline.delete_session(last)
        with pytest.raises(SessionNotFoundError):
            pipeline.query_staging(last)

    def test_bad_caller_input(self, pipeline):
        """Test malformed identifiers are rejected before reaching the database"""
        with pytest.raises(InputValidationError):
            pipeline.query_staging("not-a-uuid")
        with pytest.raises(InputValidationError):
            pipeline.edit_row("not-a-uuid", {"east_qty": "1"})


@pytest.mark.e2e
def test_shipping_quote_cooldown(clean_db):
    """Test the second quote inside the window is rejected locally"""
    calls = []
    pipeline = InventoryImportPipeline(
        clean_db,
        settings=PipelineSettings(shipping_quote_cooldown_seconds=300),
        fetch_quote=lambda vcpn: calls.append(vcpn) or {"vcpn": vcpn, "rate": 12.0},
    )

    assert pipeline.request_shipping_quote("ABC10401") == {"vcpn": "ABC10401", "rate": 12.0}
    with pytest.raises(CooldownActiveError):
        pipeline.request_shipping_quote("ABC10402")

    assert calls == ["ABC10401"]
    assert 0 < pipeline.seconds_until_next_quote() <= 300
