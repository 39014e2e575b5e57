# semantic_handler.py
"""Handler for similarity search over embedded drawing chunks."""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from takeoff_router.core import Config, DocumentChunk, QueryType, VectorSearchInterface
from takeoff_router.core.stations import station_distance
from .types import QueryClassification, RouteOptions, StepResult
from .utils import AnswerFormatter

logger = logging.getLogger(__name__)

SHEET_TYPE_BOOST = 0.3
STATION_BOOST = 0.2
STATION_WINDOW_FT = 500.0
INDEX_SHEET_PENALTY = 0.5
INDEX_TYPE_PENALTY = 0.4

_INDEX_CONTENT = re.compile(
    r"sheet index|table of contents|index of sheets|\bsheet\b.*\bdescription\b", re.IGNORECASE
)


def is_likely_index_sheet(chunk: DocumentChunk) -> bool:
    if chunk.sheet_type in ("index", "toc"):
        return True
    sheet = (chunk.sheet_number or "").lower()
    if "index" in sheet or "toc" in sheet or sheet in ("i-1", "idx-1"):
        return True
    return bool(_INDEX_CONTENT.search(chunk.content or ""))


def sheet_type_boost(classification: QueryClassification, chunk: DocumentChunk) -> float:
    sheet_type = chunk.sheet_type
    if not sheet_type:
        return 0.0
    if classification.query_type == QueryType.QUANTITY:
        if sheet_type in ("index", "toc"):
            return -INDEX_TYPE_PENALTY
        if sheet_type in ("plan", "profile", "plan_profile"):
            return SHEET_TYPE_BOOST * 1.5
        if sheet_type == "title":
            return SHEET_TYPE_BOOST
    if sheet_type in classification.preferred_sheet_types:
        return SHEET_TYPE_BOOST * 0.7
    return 0.0


def station_boost(station: Optional[str], chunk: DocumentChunk) -> float:
    """Closer stations score higher, fading to zero at the window edge"""
    if not station or not chunk.stations:
        return 0.0
    best = 0.0
    for chunk_station in chunk.stations:
        distance = station_distance(station, chunk_station)
        if distance is None or abs(distance) > STATION_WINDOW_FT:
            continue
        best = max(best, STATION_BOOST * (1 - abs(distance) / STATION_WINDOW_FT))
    return best


def index_penalty(classification: QueryClassification, chunk: DocumentChunk) -> float:
    if classification.query_type not in (QueryType.QUANTITY, QueryType.LOCATION):
        return 0.0
    return -INDEX_SHEET_PENALTY if is_likely_index_sheet(chunk) else 0.0


def rerank(
    chunks: List[DocumentChunk], classification: QueryClassification
) -> List[Tuple[DocumentChunk, float]]:
    """Drop weak matches, then order by similarity plus boosts"""
    scored = []
    for chunk in chunks:
        similarity = chunk.similarity or 0.0
        if similarity < Config.MIN_SIMILARITY:
            continue
        boost = (
            sheet_type_boost(classification, chunk)
            + station_boost(classification.station, chunk)
            + index_penalty(classification, chunk)
        )
        scored.append((chunk, round(similarity + boost, 4)))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored


class SemanticHandler:
    """Vector similarity search, narrowed by extracted entities"""

    def __init__(self, vector_service: VectorSearchInterface):
        self.vector_service = vector_service

    @staticmethod
    def build_filters(classification: QueryClassification) -> Optional[Dict[str, Any]]:
        filters: Dict[str, Any] = {}
        if classification.sheet_number:
            filters["sheet_number"] = classification.sheet_number
        return filters or None

    def handle(
        self, query: str, project_id: str, classification: QueryClassification, options: RouteOptions
    ) -> StepResult:
        # Over-fetch so re-ranking has room to promote drawing sheets
        search_limit = max(options.max_results * 2, 10)
        filters = self.build_filters(classification)
        results = self.vector_service.semantic_search(
            project_id, query, limit=search_limit, filters=filters
        )
        if not results and filters:
            logger.info(f"No matches with filters {filters}; retrying unfiltered")
            results = self.vector_service.semantic_search(project_id, query, limit=search_limit)

        ranked = rerank(results, classification)[: options.max_results]
        if not ranked:
            return StepResult.empty("no chunks above the similarity floor")

        chunks = [chunk for chunk, _ in ranked]
        top = [chunk.similarity or 0.0 for chunk in chunks[:3]]
        confidence = round(min(0.85, sum(top) / len(top)), 3)

        cautions = []
        if all(is_likely_index_sheet(chunk) for chunk in chunks):
            cautions.append(f"This answer {Config.INDEX_CAUTION}.")

        sheets = AnswerFormatter.sheets_of_chunks(chunks)
        return StepResult(
            produced=True,
            context=AnswerFormatter.chunks(chunks, f"Relevant drawing text for: '{query}'"),
            confidence=confidence,
            detail=f"{len(chunks)} chunks from {len(sheets)} sheets",
            cautions=cautions,
            sheet_numbers=sheets,
            data={"results": len(chunks)},
        )
