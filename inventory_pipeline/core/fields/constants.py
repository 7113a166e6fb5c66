"""
Canonical field names for vendor inventory rows and the header synonyms
that map spreadsheet columns onto them.
"""

# Per-warehouse quantities; total_qty must always equal their sum.
LOCATION_QTY_FIELDS: tuple[str, ...] = (
    "east_qty",
    "midwest_qty",
    "california_qty",
    "southeast_qty",
    "pacific_nw_qty",
    "texas_qty",
    "great_lakes_qty",
    "florida_qty",
)

AGGREGATE_QTY_FIELD = "total_qty"
COMPOSITE_KEY_FIELD = "vcpn"
REQUIRED_FIELDS: tuple[str, ...] = ("vendor_code", "part_number")

INTEGER_FIELDS: tuple[str, ...] = LOCATION_QTY_FIELDS + (AGGREGATE_QTY_FIELD, "case_qty")

# Integer cells are stored as 4-byte integers; total_qty is a BIGINT so the
# sum of in-range location quantities always fits.
INTEGER_MIN = -(2**31)
INTEGER_MAX = 2**31 - 1

DECIMAL_FIELDS: tuple[str, ...] = (
    "jobber_price",
    "cost",
    "core_charge",
    "weight",
    "height",
    "length",
    "width",
    "ups_ground_assessorial",
    "us_ltl",
)

NUMERIC_FIELDS: tuple[str, ...] = INTEGER_FIELDS + DECIMAL_FIELDS

BOOLEAN_FIELDS: tuple[str, ...] = (
    "upsable",
    "is_non_returnable",
    "is_oversized",
    "is_hazmat",
    "is_chemical",
    "is_kit",
)

TEXT_FIELDS: tuple[str, ...] = (
    "vendor_name",
    "vendor_code",
    "part_number",
    COMPOSITE_KEY_FIELD,
    "manufacturer_part_no",
    "long_description",
    "prop65_toxicity",
    "upc_code",
    "aaia_code",
    "kit_components",
)

CANONICAL_FIELDS: tuple[str, ...] = TEXT_FIELDS + NUMERIC_FIELDS + BOOLEAN_FIELDS

TRUE_TOKENS = frozenset({"true", "1", "yes", "y"})

# Synonyms are compared after lowercasing and dropping everything that is not
# a letter or digit, so "Part Number", "part_number" and "PART-NUMBER" collide.
HEADER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "vendor_name": ("VendorName", "Vendor Name", "Vendor", "Supplier", "Supplier Name"),
    "vcpn": ("VCPN", "Vendor Combined Part Number", "Composite Key", "Combined Part Number"),
    "vendor_code": ("VendorCode", "Vendor Code", "Vendor ID", "Line Code", "Mfr Code"),
    "part_number": ("PartNumber", "Part Number", "PartNo", "Part No", "Part #", "SKU", "Item Number"),
    "manufacturer_part_no": (
        "ManufacturerPartNo", "Manufacturer Part No", "Manufacturer Part Number", "MPN", "Mfr Part Number",
    ),
    "long_description": ("LongDescription", "Long Description", "Description", "Item Description", "Desc"),
    "jobber_price": ("JobberPrice", "Jobber Price", "Jobber", "List Price", "Price"),
    "cost": ("Cost", "Your Cost", "Dealer Cost", "Unit Cost"),
    "core_charge": ("CoreCharge", "Core Charge", "Core"),
    "upsable": ("UPSable", "UPS Able", "Ships UPS"),
    "case_qty": ("CaseQty", "Case Qty", "Case Quantity", "Pack Qty"),
    "is_non_returnable": ("IsNonReturnable", "Non Returnable", "NonReturnable"),
    "prop65_toxicity": ("Prop65Toxicity", "Prop 65", "Prop65", "Prop 65 Toxicity"),
    "upc_code": ("UPCCode", "UPC Code", "UPC"),
    "is_oversized": ("IsOversized", "Oversized"),
    "weight": ("Weight", "Weight Lbs", "Wt"),
    "height": ("Height",),
    "length": ("Length",),
    "width": ("Width",),
    "aaia_code": ("AAIACode", "AAIA Code", "AAIA"),
    "is_hazmat": ("IsHazmat", "Hazmat", "Hazardous"),
    "is_chemical": ("IsChemical", "Chemical"),
    "ups_ground_assessorial": ("UPS_Ground_Assessorial", "UPS Ground Assessorial", "UPS Ground Accessorial"),
    "us_ltl": ("US_LTL", "US LTL", "LTL"),
    "east_qty": ("EastQty", "East Qty", "East"),
    "midwest_qty": ("MidwestQty", "Midwest Qty", "Midwest"),
    "california_qty": ("CaliforniaQty", "California Qty", "California"),
    "southeast_qty": ("SoutheastQty", "Southeast Qty", "Southeast"),
    "pacific_nw_qty": ("PacificNWQty", "Pacific NW Qty", "Pacific Northwest Qty", "PacificNW"),
    "texas_qty": ("TexasQty", "Texas Qty", "Texas"),
    "great_lakes_qty": ("GreatLakesQty", "Great Lakes Qty", "Great Lakes"),
    "florida_qty": ("FloridaQty", "Florida Qty", "Florida"),
    "total_qty": ("TotalQty", "Total Qty", "Total Quantity", "Qty On Hand", "Quantity"),
    "kit_components": ("KitComponents", "Kit Components"),
    "is_kit": ("IsKit", "Kit"),
}
