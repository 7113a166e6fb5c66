"""
Chunked inventory import: scheduling, reconciliation and bulk corrections.
"""

from .mass_correction import ALL_IN_SESSION, MassCorrectionOperator, MassCorrectionResult
from .pipeline import InventoryImportPipeline
from .readers import CSVReader, CSVSource
from .reconcile import ReconcileResult, ReconcileSummary, ReconciliationEngine
from .scheduler import ChunkScheduler, SchedulerControl, SchedulerOutcome

__all__ = [
    "ALL_IN_SESSION",
    "ChunkScheduler",
    "CSVReader",
    "CSVSource",
    "InventoryImportPipeline",
    "MassCorrectionOperator",
    "MassCorrectionResult",
    "ReconcileResult",
    "ReconcileSummary",
    "ReconciliationEngine",
    "SchedulerControl",
    "SchedulerOutcome",
]
