"""
Bulk fixes over staging rows.

Each correction type is a pure function from a staging row to the column
changes and notes it implies. The operator pages through the target rows
and applies the changes. Every changed row also gets its key rebuilt from
vendor code and part number, loses the issues the correction resolved, and
is marked corrected. A row still missing a required field stays invalid
and keeps needing review.
"""

import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from inventory_pipeline.core.fields import (
    AGGREGATE_QTY_FIELD,
    COMPOSITE_KEY_FIELD,
    REQUIRED_FIELDS,
    clean_cell,
    compute_composite_key,
    strip_formula,
    sum_location_quantities,
)
from inventory_pipeline.core.models import StagingRecord
from inventory_pipeline.core.validators import change_note
from inventory_pipeline.observability import metrics
from inventory_pipeline.observability.logger import get_logger, log_operation

logger = get_logger(__name__)

CorrectionType = Literal["strip_formula", "recompute_key", "recompute_total"]

ALL_IN_SESSION = "all-in-session"

# (changes, notes); no changes means the row is left alone
Correction = tuple[dict[str, Any], list[str]]


def strip_formula_correction(record: StagingRecord) -> Correction:
    """Unwrap ="..." part numbers and rebuild the key from the clean value."""
    stripped = strip_formula(record.part_number)
    if stripped == record.part_number:
        return {}, []

    changes: dict[str, Any] = {"part_number": stripped}
    notes = [change_note("part_number", record.part_number, stripped)]

    key = compute_composite_key(record.vendor_code, stripped)
    if key != record.vcpn:
        changes[COMPOSITE_KEY_FIELD] = key
        notes.append(change_note(COMPOSITE_KEY_FIELD, record.vcpn, key))
    return changes, notes


def recompute_key_correction(record: StagingRecord) -> Correction:
    """
    Rebuild vcpn from vendor code and part number.

    Rows keep their key when it is already right but are still returned as
    changed; rows lacking either component are skipped.
    """
    key = compute_composite_key(record.vendor_code, record.part_number)
    if not key:
        return {}, []
    notes = [change_note(COMPOSITE_KEY_FIELD, record.vcpn, key)] if key != record.vcpn else []
    return {COMPOSITE_KEY_FIELD: key}, notes


def recompute_total_correction(record: StagingRecord) -> Correction:
    """Rebuild total_qty from the eight location quantities."""
    total = sum_location_quantities(record.model_dump())
    current = getattr(record, AGGREGATE_QTY_FIELD)
    notes = [change_note(AGGREGATE_QTY_FIELD, current, total)] if total != current else []
    return {AGGREGATE_QTY_FIELD: total}, notes


CORRECTIONS: dict[str, Callable[[StagingRecord], Correction]] = {
    "strip_formula": strip_formula_correction,
    "recompute_key": recompute_key_correction,
    "recompute_total": recompute_total_correction,
}


def settle_correction(record: StagingRecord, changes: dict[str, Any], notes: list[str]) -> dict[str, Any]:
    """
    Complete a correction's changes into the row update that is written.

    The key always follows vendor code and part number. Issues on the
    corrected fields are dropped. Duplicate-key warnings stay and keep the
    row in review. Rows that still lack a required field are kept invalid.
    """
    values = {**record.model_dump(), **changes}
    changes = dict(changes)
    notes = list(notes)

    key = compute_composite_key(values.get("vendor_code"), values.get("part_number"))
    if key != record.vcpn and changes.get(COMPOSITE_KEY_FIELD) != key:
        changes[COMPOSITE_KEY_FIELD] = key
        notes.append(change_note(COMPOSITE_KEY_FIELD, record.vcpn, key))

    missing = [name for name in REQUIRED_FIELDS if not clean_cell(values.get(name))]
    issues = [
        issue
        for issue in record.issues
        if issue.issue_type == "duplicate" or issue.field_name not in changes
    ]
    return {
        **changes,
        "issues": issues,
        "validation_status": "invalid" if missing else "corrected",
        "needs_review": bool(missing) or any(issue.issue_type == "duplicate" for issue in issues),
        "validation_notes": [*record.validation_notes, *notes],
    }


class MassCorrectionResult(BaseModel):
    """What one mass correction did."""

    correction_type: CorrectionType
    session_id: UUID
    examined: int = 0
    changed: int = 0
    notes: list[str] = Field(default_factory=list)


class MassCorrectionOperator:
    """
    Applies one correction type across a session or a selection of its rows.

    Calls are serialized, so two corrections over overlapping rows never
    interleave.

    Args:
        staging: Staging repository
        sessions: Upload session repository, used to check the session exists
        page_size: Rows held in memory at a time
    """

    def __init__(self, staging, sessions=None, page_size: int = 500):
        self.staging = staging
        self.sessions = sessions
        self.page_size = page_size
        self._lock = threading.Lock()

    def apply(
        self,
        session_id: UUID,
        correction_type: str,
        targets: Iterable[UUID] | str = ALL_IN_SESSION,
    ) -> MassCorrectionResult:
        """
        Correct the target rows of a session.

        Args:
            session_id: Session whose rows are corrected
            correction_type: strip_formula, recompute_key or recompute_total
            targets: Row ids, or ALL_IN_SESSION. Ids from other sessions are ignored.

        Raises:
            ValueError: Unknown correction type
            SessionNotFoundError: Unknown session
        """
        transform = CORRECTIONS.get(correction_type)
        if transform is None:
            raise ValueError(
                f"Unknown correction type {correction_type!r}; expected one of {sorted(CORRECTIONS)}"
            )
        if self.sessions is not None:
            self.sessions.get(session_id)

        result = MassCorrectionResult(correction_type=correction_type, session_id=session_id)

        with self._lock, log_operation(
            f"Mass correction {correction_type}",
            logger=logger,
            session_id=str(session_id),
        ) as op:
            for record in self._targets(session_id, targets):
                result.examined += 1
                changes, notes = transform(record)
                if not changes:
                    continue
                update = settle_correction(record, changes, notes)
                self.staging.update(record.id, update)
                notes = update["validation_notes"][len(record.validation_notes):]
                result.changed += 1
                result.notes.extend(f"Row {record.row_number}: {note}" for note in notes)
            op.note(examined=result.examined, changed=result.changed)

        metrics.increment_counter(
            metrics.mass_corrections_total, result.changed, correction_type=correction_type
        )
        return result

    def _targets(self, session_id: UUID, targets: Iterable[UUID] | str) -> Iterator[StagingRecord]:
        if isinstance(targets, str):
            if targets != ALL_IN_SESSION:
                raise ValueError(f"targets must be row ids or {ALL_IN_SESSION!r}")
            yield from self.staging.iter_session(session_id, page_size=self.page_size)
            return

        ids = list(dict.fromkeys(targets))
        for start in range(0, len(ids), self.page_size):
            for record in self.staging.get_many(ids[start:start + self.page_size]):
                if record.upload_session_id == session_id:
                    yield record
