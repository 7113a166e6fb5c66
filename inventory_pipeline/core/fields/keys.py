"""
Derived values that must stay consistent with their source fields:
the composite key (vcpn) and the aggregate quantity (total_qty).
"""

from collections.abc import Mapping
from typing import Any

from .constants import LOCATION_QTY_FIELDS
from .normalizer import clean_cell, strip_formula


def normalize_part_number(part_number: Any) -> str:
    """Part numbers are compared and keyed without formula wrapping."""
    return strip_formula(part_number)


def compute_composite_key(vendor_code: Any, part_number: Any) -> str:
    """
    Build the natural key shared by staging and inventory records.

    Returns "" when either component is empty, since a key built from half
    an identity would collide across vendors.

    Examples:
        >>> compute_composite_key("ABC", '="10406"')
        'ABC10406'
    """
    vendor = clean_cell(vendor_code)
    part = normalize_part_number(part_number)
    if not vendor or not part:
        return ""
    return f"{vendor}{part}"


def sum_location_quantities(fields: Mapping[str, Any]) -> int:
    """Sum the per-warehouse quantities; missing or unreadable values count as 0."""
    total = 0
    for name in LOCATION_QTY_FIELDS:
        value = fields.get(name)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            total += value
        elif isinstance(value, float):
            total += int(value)
        else:
            try:
                total += int(float(clean_cell(value) or 0))
            except ValueError:
                continue
    return total
