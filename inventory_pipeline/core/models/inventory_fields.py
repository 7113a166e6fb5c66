"""
Normalized inventory attributes shared by staging and authoritative records.
"""

from typing import Any

from pydantic import BaseModel, Field

from inventory_pipeline.core.fields import CANONICAL_FIELDS


class InventoryFields(BaseModel):
    """Canonical, already coerced inventory attributes."""

    vendor_code: str = ""
    vendor_name: str = ""
    part_number: str = ""
    vcpn: str = ""
    manufacturer_part_no: str = ""
    long_description: str = ""

    east_qty: int = 0
    midwest_qty: int = 0
    california_qty: int = 0
    southeast_qty: int = 0
    pacific_nw_qty: int = 0
    texas_qty: int = 0
    great_lakes_qty: int = 0
    florida_qty: int = 0
    total_qty: int = 0
    case_qty: int = 0

    jobber_price: float = 0.0
    cost: float = 0.0
    core_charge: float = 0.0
    weight: float = 0.0
    height: float = 0.0
    length: float = 0.0
    width: float = 0.0
    ups_ground_assessorial: float = 0.0
    us_ltl: float = 0.0

    upc_code: str = ""
    aaia_code: str = ""
    prop65_toxicity: str = ""
    kit_components: str = ""

    upsable: bool = False
    is_non_returnable: bool = False
    is_oversized: bool = False
    is_hazmat: bool = False
    is_chemical: bool = False
    is_kit: bool = False

    extra_fields: dict[str, str] = Field(default_factory=dict)

    def canonical_values(self) -> dict[str, Any]:
        """The canonical fields only, keyed by name."""
        return {name: getattr(self, name) for name in CANONICAL_FIELDS}

    @classmethod
    def split_fields(cls, fields: dict[str, Any]) -> tuple[dict[str, Any], dict[str, str]]:
        """Separate canonical values from slugged extras in a cleaned field map."""
        canonical = {k: v for k, v in fields.items() if k in CANONICAL_FIELDS}
        extras = {k: str(v) for k, v in fields.items() if k not in CANONICAL_FIELDS}
        return canonical, extras
