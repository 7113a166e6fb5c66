"""
Canonical field names, header mapping and derived-value helpers.
"""

from .constants import (
    AGGREGATE_QTY_FIELD,
    BOOLEAN_FIELDS,
    CANONICAL_FIELDS,
    COMPOSITE_KEY_FIELD,
    DECIMAL_FIELDS,
    HEADER_SYNONYMS,
    INTEGER_FIELDS,
    INTEGER_MAX,
    INTEGER_MIN,
    LOCATION_QTY_FIELDS,
    NUMERIC_FIELDS,
    REQUIRED_FIELDS,
    TEXT_FIELDS,
)
from .keys import compute_composite_key, normalize_part_number, sum_location_quantities
from .normalizer import FieldNormalizer, clean_cell, slugify, strip_formula

__all__ = [
    "AGGREGATE_QTY_FIELD",
    "BOOLEAN_FIELDS",
    "CANONICAL_FIELDS",
    "COMPOSITE_KEY_FIELD",
    "DECIMAL_FIELDS",
    "HEADER_SYNONYMS",
    "INTEGER_FIELDS",
    "INTEGER_MAX",
    "INTEGER_MIN",
    "LOCATION_QTY_FIELDS",
    "NUMERIC_FIELDS",
    "REQUIRED_FIELDS",
    "TEXT_FIELDS",
    "FieldNormalizer",
    "clean_cell",
    "slugify",
    "strip_formula",
    "compute_composite_key",
    "normalize_part_number",
    "sum_location_quantities",
]
