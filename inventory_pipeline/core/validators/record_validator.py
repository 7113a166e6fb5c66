"""
RecordValidator - per-row structural and business-rule checks.

Takes one normalized field map and returns a ValidationResult with the
cleaned field map. Validation is pure: nothing is persisted or logged here,
the chunk scheduler decides what to do with the result.
"""

from collections.abc import Mapping
from typing import Any

from inventory_pipeline.core.fields import (
    AGGREGATE_QTY_FIELD,
    BOOLEAN_FIELDS,
    COMPOSITE_KEY_FIELD,
    DECIMAL_FIELDS,
    INTEGER_FIELDS,
    REQUIRED_FIELDS,
    clean_cell,
    compute_composite_key,
    strip_formula,
    sum_location_quantities,
)
from inventory_pipeline.core.models import ValidationIssue, ValidationResult
from .base_validator import BaseValidator, RuleViolation
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator


def change_note(field_name: str, old: Any, new: Any) -> str:
    """Human-readable old → new note used across validation and corrections."""
    return f"{field_name}: {old} → {new}"


class RecordValidator:
    """
    Validates and auto-corrects one inventory row.

    Status policy:
    - any error -> invalid
    - no errors but at least one warning or correction -> corrected
    - otherwise -> valid

    Example:
        >>> validator = RecordValidator()
        >>> result = validator.validate({"vendor_code": "ABC", "part_number": '="10406"'}, 2)
        >>> result.cleaned["vcpn"], result.status
        ('ABC10406', 'corrected')
    """

    def __init__(self) -> None:
        self.required: list[BaseValidator] = [RequiredFieldValidator(name) for name in REQUIRED_FIELDS]
        self.types: list[BaseValidator] = (
            [TypeValidator(name, {"expected_type": "integer"}) for name in INTEGER_FIELDS]
            + [TypeValidator(name, {"expected_type": "decimal"}) for name in DECIMAL_FIELDS]
            + [TypeValidator(name, {"expected_type": "boolean"}) for name in BOOLEAN_FIELDS]
        )

    def validate(
        self,
        fields: Mapping[str, Any],
        row_number: int,
        formula_log: Mapping[str, str] | None = None,
    ) -> ValidationResult:
        """
        Validate one normalized row.

        Args:
            fields: Canonical field map (normalized or raw)
            row_number: Source row number, carried into every issue
            formula_log: Fields whose formula wrapping the normalizer already
                stripped, with their original values

        Returns:
            ValidationResult with cleaned values and structured issues
        """
        cleaned: dict[str, Any] = {
            key: value if isinstance(value, (bool, int, float)) else clean_cell(value)
            for key, value in fields.items()
        }
        errors: list[str] = []
        warnings: list[str] = []
        issues: list[ValidationIssue] = []

        def warn(issue_type: str, field_name: str, old: Any, new: Any, description: str, fix: str) -> None:
            warnings.append(description)
            issues.append(
                ValidationIssue(
                    issue_type=issue_type,
                    field_name=field_name,
                    description=description,
                    suggested_fix=fix,
                    severity="warning",
                    row_number=row_number,
                    old_value=None if old is None else str(old),
                    new_value=None if new is None else str(new),
                )
            )

        self._strip_formulas(cleaned, formula_log or {}, warn)

        for validator in self.required:
            value = cleaned.get(validator.field_name)
            try:
                cleaned[validator.field_name] = validator.validate(value, cleaned)
            except RuleViolation as violation:
                cleaned[validator.field_name] = violation.fallback
                errors.append(f"Row {row_number}: {violation.message}")
                issues.append(
                    ValidationIssue(
                        issue_type=violation.issue_type,
                        field_name=violation.field_name,
                        description=violation.message,
                        suggested_fix=f"Provide a value for {violation.field_name}",
                        severity="error",
                        row_number=row_number,
                        old_value=None if value is None else str(value),
                    )
                )

        for validator in self.types:
            value = cleaned.get(validator.field_name, "")
            try:
                cleaned[validator.field_name] = validator.validate(value, cleaned)
            except RuleViolation as violation:
                cleaned[validator.field_name] = violation.fallback
                warn(
                    violation.issue_type,
                    violation.field_name,
                    value,
                    violation.fallback,
                    f"{violation.field_name}: {violation.message}",
                    "Correct the value in the source file or edit the row",
                )

        if not errors:
            self._correct_composite_key(cleaned, warn)
        self._correct_aggregate(cleaned, warn)

        if errors:
            status = "invalid"
        elif warnings:
            status = "corrected"
        else:
            status = "valid"

        return ValidationResult(
            row_number=row_number,
            is_valid=not errors,
            status=status,
            errors=errors,
            warnings=warnings,
            issues=issues,
            cleaned=cleaned,
        )

    @staticmethod
    def _strip_formulas(cleaned: dict[str, Any], formula_log: Mapping[str, str], warn) -> None:
        for field_name, original in formula_log.items():
            if field_name in cleaned:
                warn(
                    "invalid_format",
                    field_name,
                    original,
                    cleaned[field_name],
                    change_note(field_name, original, cleaned[field_name]),
                    "Remove spreadsheet formula wrapping",
                )

        part_number = cleaned.get("part_number", "")
        stripped = strip_formula(part_number)
        if stripped != part_number:
            cleaned["part_number"] = stripped
            warn(
                "invalid_format",
                "part_number",
                part_number,
                stripped,
                change_note("part_number", part_number, stripped),
                "Remove spreadsheet formula wrapping",
            )

    @staticmethod
    def _correct_composite_key(cleaned: dict[str, Any], warn) -> None:
        expected = compute_composite_key(cleaned.get("vendor_code"), cleaned.get("part_number"))
        current = clean_cell(cleaned.get(COMPOSITE_KEY_FIELD))
        if current == expected:
            return
        cleaned[COMPOSITE_KEY_FIELD] = expected
        if current:
            description = f'VCPN corrected from "{current}" to "{expected}"'
        else:
            description = f'VCPN auto-generated: "{expected}"'
        warn(
            "calculation_error",
            COMPOSITE_KEY_FIELD,
            current,
            expected,
            description,
            "Recompute the key from vendor_code and part_number",
        )

    @staticmethod
    def _correct_aggregate(cleaned: dict[str, Any], warn) -> None:
        expected = sum_location_quantities(cleaned)
        current = cleaned.get(AGGREGATE_QTY_FIELD, 0)
        if current == expected:
            return
        cleaned[AGGREGATE_QTY_FIELD] = expected
        warn(
            "calculation_error",
            AGGREGATE_QTY_FIELD,
            current,
            expected,
            f"TotalQty corrected from {current} to {expected}",
            "Recompute total from location quantities",
        )
