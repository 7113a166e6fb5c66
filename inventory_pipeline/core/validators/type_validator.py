"""
TypeValidator - coerces spreadsheet text into integers, decimals and booleans.
"""

import re
from typing import Any

from inventory_pipeline.core.fields import INTEGER_MAX, INTEGER_MIN, clean_cell
from inventory_pipeline.core.fields.constants import TRUE_TOKENS
from .base_validator import BaseValidator, RuleViolation

# Currency symbols, thousands separators and stray whitespace in numeric cells
_NUMERIC_NOISE = re.compile(r"[$,\s]")


class TypeValidator(BaseValidator):
    """
    Coerces a field to its declared type.

    Supported types:
    - "integer": quantities; "1,200" -> 1200, "5.0" -> 5
    - "decimal": prices and dimensions; "$12.50" -> 12.5
    - "boolean": true/1/yes/y (any case) -> True, anything else -> False

    Empty numeric cells become 0 without complaint. Unparsable numeric cells,
    and integers outside the 4-byte column range, raise RuleViolation with
    fallback 0 so the caller can substitute it.
    Boolean coercion never fails.
    """

    TYPE_MAPPING = {
        "integer": int,
        "int": int,
        "decimal": float,
        "float": float,
        "boolean": bool,
        "bool": bool,
    }

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")

        self.expected_type = self.TYPE_MAPPING.get(str(expected_type).lower())
        if not self.expected_type:
            raise ValueError(f"Unsupported type: {expected_type}")

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        if self.expected_type is bool:
            return self._coerce_bool(value)

        # bool is an int subclass; a flag in a numeric column is not a number
        if isinstance(value, self.expected_type) and not isinstance(value, bool):
            return self._check_range(value, value)

        text = _NUMERIC_NOISE.sub("", clean_cell(value))
        if text == "":
            return self.expected_type(0)

        try:
            number = float(text)
        except ValueError:
            raise RuleViolation(
                rule_name="type_check",
                field_name=self.field_name,
                message=f"cannot parse {value!r} as {self.expected_type.__name__}; using 0",
                fallback=self.expected_type(0),
            ) from None

        if number != number or number in (float("inf"), float("-inf")):
            raise RuleViolation(
                rule_name="type_check",
                field_name=self.field_name,
                message=f"{value!r} is not a finite number; using 0",
                fallback=self.expected_type(0),
            )

        if self.expected_type is int:
            return self._check_range(int(number), value)
        return number

    def _check_range(self, number, value: Any):
        if self.expected_type is int and not INTEGER_MIN <= number <= INTEGER_MAX:
            raise RuleViolation(
                rule_name="type_check",
                field_name=self.field_name,
                message=f"{value!r} is outside the integer range; using 0",
                fallback=0,
            )
        return number

    @staticmethod
    def _coerce_bool(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return clean_cell(value).lower() in TRUE_TOKENS

    @property
    def rule_type(self) -> str:
        return "type_check"
