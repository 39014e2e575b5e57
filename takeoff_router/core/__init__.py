# Core package
"""Core models, settings and utilities for the take-off retrieval system."""

from .config import (
    Config,
    InstructionProfile,
    QueryIntent,
    QueryType,
    RoutingMethod,
    RoutingStatus,
    SheetType,
    SourceContext,
    TerminationType,
    VisualTask,
)
from .interfaces import SheetImageProvider, VectorSearchInterface, VisionInterface
from .models import (
    DocumentChunk,
    ExtractedComponent,
    LengthResult,
    SheetImage,
    SheetRef,
    SummaryRow,
    TerminationPoint,
    UtilityCrossing,
    VisionExtraction,
)
from .settings import settings

__all__ = [
    # Configuration
    "Config",
    "settings",
    # Enums
    "InstructionProfile",
    "QueryIntent",
    "QueryType",
    "RoutingMethod",
    "RoutingStatus",
    "SheetType",
    "SourceContext",
    "TerminationType",
    "VisualTask",
    # Interfaces
    "SheetImageProvider",
    "VectorSearchInterface",
    "VisionInterface",
    # Models
    "DocumentChunk",
    "ExtractedComponent",
    "LengthResult",
    "SheetImage",
    "SheetRef",
    "SummaryRow",
    "TerminationPoint",
    "UtilityCrossing",
    "VisionExtraction",
]
