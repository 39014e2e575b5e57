# types.py
"""Data types and models for the retrieval routing system."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from takeoff_router.core import (
    QueryIntent,
    QueryType,
    RoutingMethod,
    RoutingStatus,
    VisualTask,
)


@dataclass(frozen=True)
class EntityExtraction:
    """Entities pulled out of a question"""

    system_name: Optional[str] = None
    item_name: Optional[str] = None
    size: Optional[str] = None
    station: Optional[str] = None
    sheet_number: Optional[str] = None
    component_type: Optional[str] = None
    detail_number: Optional[str] = None
    material: Optional[str] = None


@dataclass(frozen=True)
class QueryClassification:
    """Classification result for a question"""

    query_type: QueryType
    intent: QueryIntent
    confidence: float
    reasoning: str = ""
    item_name: Optional[str] = None
    system_name: Optional[str] = None
    station: Optional[str] = None
    sheet_number: Optional[str] = None
    size_filter: Optional[str] = None
    component_type: Optional[str] = None
    detail_number: Optional[str] = None
    needs_direct_lookup: bool = False
    needs_complete_data: bool = False
    needs_vector_search: bool = True
    needs_visual_analysis: bool = False
    is_aggregation: bool = False
    preferred_sheet_types: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.query_type.value,
            "intent": self.intent.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "item_name": self.item_name,
            "system_name": self.system_name,
            "station": self.station,
            "sheet_number": self.sheet_number,
            "size_filter": self.size_filter,
            "component_type": self.component_type,
            "detail_number": self.detail_number,
            "needs_direct_lookup": self.needs_direct_lookup,
            "needs_complete_data": self.needs_complete_data,
            "needs_vector_search": self.needs_vector_search,
            "needs_visual_analysis": self.needs_visual_analysis,
            "is_aggregation": self.is_aggregation,
            "preferred_sheet_types": list(self.preferred_sheet_types),
        }


@dataclass
class ProvenanceRef:
    """What one step of the retrieval chain did"""

    step: str
    attempted: bool = False
    produced: bool = False
    detail: Optional[str] = None
    error: Optional[str] = None
    sheet_numbers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "attempted": self.attempted,
            "produced": self.produced,
            "detail": self.detail,
            "error": self.error,
            "sheet_numbers": self.sheet_numbers,
        }


@dataclass
class StepResult:
    """Output of a single retrieval handler"""

    produced: bool
    context: str = ""
    confidence: float = 0.0
    detail: Optional[str] = None
    partial: bool = False
    cautions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    sheet_numbers: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls, detail: Optional[str] = None, **kwargs) -> "StepResult":
        return cls(produced=False, detail=detail, **kwargs)


@dataclass(frozen=True)
class VisualTaskParams:
    """Parameters handed to the vision service for on-demand inspection"""

    task: VisualTask
    component_type: Optional[str] = None
    size_filter: Optional[str] = None
    utility_name: Optional[str] = None
    station: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task.value,
            "component_type": self.component_type,
            "size_filter": self.size_filter,
            "utility_name": self.utility_name,
            "station": self.station,
        }


@dataclass(frozen=True)
class RouteOptions:
    """Per-request routing limits"""

    max_results: int = 15
    min_confidence: float = 0.7
    step_timeout: Optional[float] = None
    deadline: Optional[float] = None  # absolute time.monotonic() value


@dataclass
class RoutingResult:
    """Response from the retrieval router"""

    classification: QueryClassification
    context: str
    method: RoutingMethod
    sources: List[ProvenanceRef]
    confidence: float
    timing_ms: float
    status: RoutingStatus = RoutingStatus.FOUND
    cautions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    visual_task: Optional[VisualTaskParams] = None
    note: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status == RoutingStatus.FOUND

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classification": self.classification.to_dict(),
            "context": self.context,
            "method": self.method.value,
            "sources": [source.to_dict() for source in self.sources],
            "confidence": round(self.confidence, 3),
            "timing_ms": round(self.timing_ms, 1),
            "status": self.status.value,
            "cautions": self.cautions,
            "warnings": self.warnings,
            "visual_task": self.visual_task.to_dict() if self.visual_task else None,
            "note": self.note,
        }
