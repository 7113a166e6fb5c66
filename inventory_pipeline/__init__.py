"""
Vendor inventory CSV import pipeline.
"""

__version__ = "0.1.0"
