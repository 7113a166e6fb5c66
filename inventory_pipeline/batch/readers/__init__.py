"""
Upload readers.
"""

from .csv_reader import ACCEPTED_CONTENT_TYPES, CSVReader, CSVSource, check_upload

__all__ = [
    "ACCEPTED_CONTENT_TYPES",
    "CSVReader",
    "CSVSource",
    "check_upload",
]
