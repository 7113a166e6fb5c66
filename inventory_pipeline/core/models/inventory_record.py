"""
InventoryRecord model: the authoritative inventory line keyed by vcpn.
"""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import Field

from .inventory_fields import InventoryFields
from .upload_session import utc_now

UNKNOWN_ITEM_NAME = "Unknown Item"


class InventoryRecord(InventoryFields):
    """
    Authoritative inventory line.

    Attributes:
        id: Inventory identifier (PK)
        name: Display name
        description: Long description copied from the vendor file
        quantity: Mirrors total_qty
        price: Mirrors jobber_price
        last_upload_session_id: Session that last wrote this record
        last_synced_at: When it was last written by reconciliation
        marked_for_deletion_at: When an upload that no longer lists this key
            marked it; cleared whenever the record is written again
        deletion_batch_id: The upload that marked it
    """

    id: UUID = Field(default_factory=uuid4)
    vcpn: str = Field(..., min_length=1)
    name: str = UNKNOWN_ITEM_NAME
    description: str = ""
    quantity: int = 0
    price: float = 0.0
    last_upload_session_id: UUID | None = None
    last_synced_at: datetime = Field(default_factory=utc_now)
    marked_for_deletion_at: datetime | None = None
    deletion_batch_id: UUID | None = None

    @staticmethod
    def display_name(fields: InventoryFields) -> str:
        """Description, else part number, else a placeholder."""
        return fields.long_description or fields.part_number or UNKNOWN_ITEM_NAME

    @classmethod
    def from_fields(cls, fields: InventoryFields, session_id: UUID | None = None) -> "InventoryRecord":
        values = fields.canonical_values()
        return cls(
            **values,
            name=cls.display_name(fields),
            description=fields.long_description,
            quantity=fields.total_qty,
            price=fields.jobber_price,
            last_upload_session_id=session_id,
        )
