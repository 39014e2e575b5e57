# models.py
"""Value objects shared by extraction, reconciliation and routing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import SourceContext, TerminationType
from .normalize import normalize_name, normalize_size, normalize_utility_name
from .stations import normalize_station, parse_station


@dataclass(frozen=True)
class ExtractedComponent:
    """A single physical item read off a drawing"""

    name: str
    quantity: float = 1
    size: Optional[str] = None
    station: Optional[str] = None
    sheet_number: Optional[str] = None
    source_context: SourceContext = SourceContext.DRAWING_LABEL
    confidence: float = 1.0
    unit: Optional[str] = None  # None/EA for counted items, LF etc. for runs
    item_type: Optional[str] = None
    system_name: Optional[str] = None
    document_id: Optional[str] = None

    def identity_key(self) -> Tuple[str, Optional[str], Optional[str]]:
        """Deduplication key: normalized name, size and station"""
        return (
            normalize_name(self.name),
            normalize_size(self.size),
            normalize_station(self.station) if self.station else None,
        )

    @property
    def is_index_sourced(self) -> bool:
        return self.source_context == SourceContext.INDEX_LIST

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "size": self.size,
            "station": self.station,
            "sheet_number": self.sheet_number,
            "source_context": self.source_context.value,
            "confidence": self.confidence,
            "unit": self.unit,
            "item_type": self.item_type,
            "system_name": self.system_name,
            "document_id": self.document_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedComponent":
        context = data.get("source_context") or SourceContext.DRAWING_LABEL.value
        return cls(
            name=str(data["name"]).strip(),
            quantity=data.get("quantity", 1),
            size=data.get("size") or None,
            station=data.get("station") or None,
            sheet_number=data.get("sheet_number") or None,
            source_context=SourceContext(context),
            confidence=float(data.get("confidence", 1.0)),
            unit=data.get("unit") or None,
            item_type=data.get("item_type") or None,
            system_name=data.get("system_name") or None,
            document_id=data.get("document_id") or None,
        )


@dataclass(frozen=True)
class TerminationPoint:
    """A labeled BEGIN/END marker for a utility run"""

    utility_name: str
    termination_type: TerminationType
    station: str
    station_numeric: Optional[float] = None
    sheet_number: Optional[str] = None
    confidence: float = 1.0
    notes: Optional[str] = None

    @property
    def normalized_utility(self) -> str:
        return normalize_utility_name(self.utility_name)

    @property
    def numeric(self) -> Optional[float]:
        if self.station_numeric is not None:
            return self.station_numeric
        return parse_station(self.station)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "utility_name": self.utility_name,
            "termination_type": self.termination_type.value,
            "station": self.station,
            "station_numeric": self.station_numeric,
            "sheet_number": self.sheet_number,
            "confidence": self.confidence,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TerminationPoint":
        station = str(data["station"]).strip()
        return cls(
            utility_name=str(data["utility_name"]).strip(),
            termination_type=TerminationType(str(data["termination_type"]).upper()),
            station=station,
            station_numeric=parse_station(station),
            sheet_number=data.get("sheet_number") or None,
            confidence=float(data.get("confidence", 1.0)),
            notes=data.get("notes") or None,
        )


@dataclass(frozen=True)
class LengthResult:
    """Run length derived from a BEGIN/END termination pair"""

    utility_name: str
    begin_station: str
    end_station: str
    length_lf: float
    confidence: float
    begin_sheet: Optional[str] = None
    end_sheet: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "utility_name": self.utility_name,
            "begin_station": self.begin_station,
            "end_station": self.end_station,
            "length_lf": self.length_lf,
            "confidence": self.confidence,
            "begin_sheet": self.begin_sheet,
            "end_sheet": self.end_sheet,
        }


@dataclass(frozen=True)
class UtilityCrossing:
    """A different utility intersecting the alignment being analyzed"""

    crossing_utility_code: str
    full_name: str
    station: Optional[str] = None
    elevation: Optional[float] = None
    is_existing: bool = False
    is_proposed: bool = False
    size: Optional[str] = None
    confidence: float = 1.0
    sheet_number: Optional[str] = None
    alignment_name: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crossing_utility_code": self.crossing_utility_code,
            "full_name": self.full_name,
            "station": self.station,
            "elevation": self.elevation,
            "is_existing": self.is_existing,
            "is_proposed": self.is_proposed,
            "size": self.size,
            "confidence": self.confidence,
            "sheet_number": self.sheet_number,
            "alignment_name": self.alignment_name,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UtilityCrossing":
        elevation = data.get("elevation")
        return cls(
            crossing_utility_code=str(data["crossing_utility_code"]).strip().upper(),
            full_name=str(data.get("full_name") or data["crossing_utility_code"]),
            station=data.get("station") or None,
            elevation=float(elevation) if elevation not in (None, "") else None,
            is_existing=bool(data.get("is_existing", False)),
            is_proposed=bool(data.get("is_proposed", False)),
            size=data.get("size") or None,
            confidence=float(data.get("confidence", 1.0)),
            sheet_number=data.get("sheet_number") or None,
            alignment_name=data.get("alignment_name") or None,
            notes=data.get("notes") or None,
        )


@dataclass(frozen=True)
class DocumentChunk:
    """An embedded text fragment of a drawing sheet"""

    content: str
    project_id: str
    document_id: Optional[str] = None
    sheet_number: Optional[str] = None
    sheet_type: Optional[str] = None
    chunk_type: str = "text"
    stations: Tuple[str, ...] = ()
    page_number: Optional[int] = None
    similarity: Optional[float] = None
    chunk_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "content": self.content,
            "project_id": self.project_id,
            "document_id": self.document_id,
            "sheet_number": self.sheet_number,
            "sheet_type": self.sheet_type,
            "chunk_type": self.chunk_type,
            "stations": list(self.stations),
            "page_number": self.page_number,
            "similarity": self.similarity,
        }


@dataclass(frozen=True)
class SummaryRow:
    """One row of the per-project quantity summary"""

    item_type: str
    total_quantity: float
    document_count: int
    avg_confidence: float
    item_count: int = 0


@dataclass(frozen=True)
class SheetRef:
    document_id: Optional[str]
    sheet_number: str
    page_number: Optional[int] = None
    sheet_type: Optional[str] = None


@dataclass(frozen=True)
class SheetImage:
    """A rasterized drawing page ready for the vision service"""

    sheet_number: str
    image: bytes
    document_id: Optional[str] = None
    page_number: Optional[int] = None
    mime_type: str = "image/png"


@dataclass
class VisionExtraction:
    """Structured output of one vision call on one sheet"""

    sheet_number: str
    sheet_type: Optional[str] = None
    components: List[ExtractedComponent] = field(default_factory=list)
    termination_points: List[TerminationPoint] = field(default_factory=list)
    crossings: List[UtilityCrossing] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    rejected: List[str] = field(default_factory=list)
