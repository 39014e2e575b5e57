# Query package
"""Query routing system for the take-off retrieval service."""

from .classifier import QueryClassifier
from .complete_data_handler import CompleteDataHandler
from .extractor import EntityExtractor
from .quantity_handler import QuantityHandler
from .router import SmartRetrievalRouter
from .semantic_handler import SemanticHandler
from .summary_handler import SummaryHandler
from .types import (
    EntityExtraction,
    ProvenanceRef,
    QueryClassification,
    RouteOptions,
    RoutingResult,
    StepResult,
    VisualTaskParams,
)
from .visual_handler import VisualHandler

__all__ = [
    # Handlers
    "CompleteDataHandler",
    "QuantityHandler",
    "SemanticHandler",
    "SummaryHandler",
    "VisualHandler",
    # Core components
    "QueryClassifier",
    "EntityExtractor",
    "SmartRetrievalRouter",
    # Types
    "EntityExtraction",
    "ProvenanceRef",
    "QueryClassification",
    "RouteOptions",
    "RoutingResult",
    "StepResult",
    "VisualTaskParams",
]
