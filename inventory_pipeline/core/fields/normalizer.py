"""
Field normalization for raw spreadsheet rows.

Maps vendor headers onto canonical field names and removes cell-level
spreadsheet artifacts. Normalization never raises: a cell that cannot be
read degrades to an empty string.
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

from .constants import HEADER_SYNONYMS, REQUIRED_FIELDS

_TOKEN_PATTERN = re.compile(r"[^a-z0-9]")
_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def header_token(header: Any) -> str:
    """Reduce a header to lowercase letters and digits for synonym lookup."""
    return _TOKEN_PATTERN.sub("", str(header).lower())


def slugify(header: Any) -> str:
    """
    Slug for headers with no canonical mapping.

    Examples:
        >>> slugify("Bin Location")
        'bin_location'
        >>> slugify("  Qty (Reserved) ")
        'qty_reserved'
    """
    slug = _SLUG_PATTERN.sub("_", str(header).lower()).strip("_")
    return slug or "column"


def strip_formula(value: Any) -> str:
    """
    Remove spreadsheet formula wrapping from a cell.

    A leading "=" is removed and, if what remains is wrapped in double quotes,
    the quotes are removed as well. Nested wrappings are peeled until none is
    left, so the result never starts with "=".

    Examples:
        >>> strip_formula('="10406"')
        '10406'
        >>> strip_formula('10406')
        '10406'
    """
    text = clean_cell(value)
    while text.startswith("="):
        text = text[1:].strip()
        if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
            text = text[1:-1].strip()
    return text


def clean_cell(value: Any) -> str:
    """Convert a raw cell to a trimmed string; unreadable cells become ""."""
    if value is None:
        return ""
    try:
        text = value if isinstance(value, str) else str(value)
    except Exception:
        return ""
    return text.replace("\ufeff", "").strip()


class FieldNormalizer:
    """
    Maps raw spreadsheet rows onto canonical field names.

    Lookup is case and punctuation insensitive. Canonical names map to
    themselves, which keeps normalization idempotent. Headers with no
    synonym keep their data under a slug of the header text.
    """

    def __init__(self, extra_synonyms: Mapping[str, Sequence[str]] | None = None):
        self._lookup: dict[str, str] = {}
        for canonical, synonyms in HEADER_SYNONYMS.items():
            self._register(canonical, synonyms)
        for canonical, synonyms in (extra_synonyms or {}).items():
            self._register(canonical, synonyms)

    def _register(self, canonical: str, synonyms: Sequence[str]) -> None:
        self._lookup[header_token(canonical)] = canonical
        for synonym in synonyms:
            self._lookup[header_token(synonym)] = canonical

    def map_header(self, header: Any) -> str:
        """Return the canonical field name for a header, or its slug."""
        token = header_token(clean_cell(header))
        if token in self._lookup:
            return self._lookup[token]
        return slugify(clean_cell(header))

    def missing_required(self, headers: Sequence[Any]) -> list[str]:
        """Required fields that no header maps onto, in declaration order."""
        mapped = {self.map_header(header) for header in headers}
        return [name for name in REQUIRED_FIELDS if name not in mapped]

    def normalize_row(
        self,
        headers: Sequence[Any],
        cells: Sequence[Any],
        formula_log: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """
        Build a canonical field map from one raw row.

        Missing trailing cells become "". When two headers map to the same
        field, the first non-empty value wins.

        Args:
            headers: The file's header row
            cells: Ordered cell values for one data row
            formula_log: Optional dict that receives {field: original value}
                for every cell whose formula wrapping was stripped

        Returns:
            Flat dict keyed by canonical field names
        """
        fields: dict[str, str] = {}
        for index, header in enumerate(headers):
            name = self.map_header(header)
            raw = cells[index] if index < len(cells) else ""
            self._put(fields, name, raw, formula_log)
        return fields

    def normalize_fields(
        self,
        field_map: Mapping[Any, Any],
        formula_log: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Normalize an already keyed row; normalize_fields(normalize_fields(x)) == normalize_fields(x)."""
        fields: dict[str, str] = {}
        for key, raw in field_map.items():
            self._put(fields, self.map_header(key), raw, formula_log)
        return fields

    @staticmethod
    def _put(
        fields: dict[str, str],
        name: str,
        raw: Any,
        formula_log: dict[str, str] | None,
    ) -> None:
        original = clean_cell(raw)
        value = strip_formula(original)
        if value != original and formula_log is not None:
            formula_log.setdefault(name, original)
        if fields.get(name):
            return
        fields[name] = value
