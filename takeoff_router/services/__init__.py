# Services package
"""Business services for the take-off retrieval system."""

from .batching import run_in_batches
from .data_loader import DataLoader
from .ingestion import IngestionReport, IngestionService
from .quantity_reconciler import QuantityReconciler, ReconcileFilters
from .sheet_images import DirectorySheetImageProvider

__all__ = [
    "DataLoader",
    "DirectorySheetImageProvider",
    "IngestionReport",
    "IngestionService",
    "QuantityReconciler",
    "ReconcileFilters",
    "run_in_batches",
]
