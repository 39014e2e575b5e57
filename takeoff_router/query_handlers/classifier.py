# classifier.py
"""Query classification functionality for the routing system.

Classification is a walk over an ordered table of pattern families. The
first family that matches decides the query type, the strategy flags and a
fixed confidence; ties always resolve to the earlier family.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from takeoff_router.core import Config, QueryIntent, QueryType
from .extractor import EntityExtractor
from .types import QueryClassification


def _compile(patterns: List[str]) -> List[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


AGGREGATION_PATTERNS = _compile([
    r"(?:total|sum|aggregate|combined)\s+(?:length|amount|quantity|footage|volume|area)\s+(?:of|for)\s+(.+?)(?:\?|$)",
    r"(?:what|how much)\s+(?:is|are)?\s*(?:the)?\s+(?:total|sum|aggregate)\s+(.+?)(?:\?|$)",
    r"(?:add up|sum up|total up)\s+(?:all)?\s*(.+?)(?:\?|$)",
    r"(?:sum|total)\s+all\s+(.+?)(?:\?|$)",
])

QUANTITY_PATTERNS = _compile([
    r"\b(?:how\s+many|count|total|quantity|takeoff|list\s+all)\b\s+(.+?)(?:\?|$)",
    r"(?:give\s+me\s+a\s+takeoff|provide\s+a\s+takeoff)\s+(?:of|for)?\s*(.+?)(?:\?|$)",
    r"\b(?:count\s+all|list\s+all|enumerate)\s+(.+?)(?:\?|$)",
    r"(?:total|entire|complete)\s+(?:length|amount|quantity|footage)\s+(?:of|for)\s+(.+?)(?:\?|$)",
    r"(?:what|how much)\s+(?:is|of)?\s*(?:the)?\s+(?:total|complete)\s+(.+?)(?:\?|$)",
    r"(?:linear\s+feet|\blf\b|footage)\s+(?:of|for|in)\s+(.+?)(?:\?|$)",
    r"how\s+long\s+(?:is|are)?\s*(?:the)?\s*(.+?)(?:\?|$)",
    r"(?:what|what's)\s+(?:is)?\s*(?:the)?\s*length\s+(?:of|for)\s+(.+?)(?:\?|$)",
    r"(?:length|footage|amount|sum)\s+of\s+(.+?)(?:\?|$)",
])

PROJECT_SUMMARY_PATTERNS = _compile([
    r"(?:analyze|overview|understand|summarize|review)\s+(?:the|this|entire|complete|whole)?\s*project",
    r"(?:complete|full|entire)\s+project\s+(?:takeoff|analysis|overview|summary)",
    r"what'?s\s+in\s+(?:the|this)\s+project",
    r"(?:project|plan|set)\s+(?:overview|summary|analysis)",
    r"(?:show|tell|give)\s+(?:me)?\s*(?:a|the)?\s*project\s+(?:overview|summary)",
])

CROSSING_PATTERNS = _compile([
    r"(?:what|which|list|show|find)\s+(?:utilities?|lines?|systems?)\s+(?:cross|crosses|crossing|intersect|intersects)",
    r"(?:cross|crosses|crossing|intersect|intersects)\s+(?:the)?\s*(?:water|sewer|storm|electrical|gas|telecom|fiber|line)",
    r"(?:any|what|which|list)\s+(?:conflicts?|interferences?)\s+(?:with)?\s*(?:existing)?\s*(?:utilities?|lines?)",
    r"(?:existing|proposed)\s+(?:utilities?|lines?)\s+(?:that)?\s*(?:cross|conflict|interfere)",
    r"where\s+(?:does|do)\s+(?:the)?\s*(?:\w+\s+)?(?:utility|utilities|line|lines)\s+cross",
    r"(?:crossing|conflict)\s+(?:at|near)?\s*(?:station|sta)",
    r"(?:list|show|find|identify)\s+(?:all)?\s*(?:utility)?\s*(?:crossings?|conflicts?|interferences?)",
    r"(?:crossings?|conflicts?)\s+(?:with|along|at)\s+(?:the)?\s*(?:\w+\s+)?(?:line|alignment)",
])

LOCATION_PATTERNS = _compile([
    r"(?:where|location|position)\s+(?:is|are|of)\s+(.+?)(?:\?|$)",
    r"(?:at|near|around)\s+(?:station|sta)\s+([\d+.]+)",
    r"(?:show|find)\s+(?:me)?\s*(?:the)?\s+(?:location|position)\s+(?:of)\s+(.+?)(?:\?|$)",
    r"what\s+(?:is|are)\s+(?:at|near)\s+(?:station|sta)\s+([\d+.]+)",
])

SPECIFICATION_PATTERNS = _compile([
    r"(?:spec|specification|requirement|standard)(?:s)?\s+(?:for|of)\s+(.+?)(?:\?|$)",
    r"what\s+(?:material|type|size|diameter|class)\s+(?:of|is|for)\s+(.+?)(?:\?|$)",
    r"(?:shall|must|required|minimum|maximum)\s+(.+?)(?:\?|$)",
    r"(?:material|bedding|backfill|installation)\s+(?:for|requirement|spec)",
])

DETAIL_PATTERNS = _compile([
    r"(?:detail|section|typical)\s+([\w/-]+)",
    r"(?:how|what)\s+(?:to|do|does)\s+(?:install|construct|build)\s+(.+?)(?:\?|$)",
    r"(?:show|find)\s+(?:me)?\s*(?:the)?\s+detail\s+(?:for|of)\s+(.+?)(?:\?|$)",
    r"(?:construction|installation)\s+(?:detail|method|procedure)",
])

REFERENCE_PATTERNS = _compile([
    r"(?:sheet|drawing)\s+([\w-]+)",
    r"(?:see|refer to|reference)\s+sheet\s+([\w-]+)",
    r"(?:what|which)\s+sheet(?:s)?\s+(?:show|contain|have)\s+(.+?)(?:\?|$)",
])


@dataclass(frozen=True)
class PatternFamily:
    """One row of the classification table"""

    name: str
    patterns: List[re.Pattern]
    builder: Callable[[str, EntityExtractor], QueryClassification]
    extra_match: Optional[Callable[[str, EntityExtractor], bool]] = None

    def matches(self, normalized: str, extractor: EntityExtractor) -> bool:
        if any(pattern.search(normalized) for pattern in self.patterns):
            return True
        return bool(self.extra_match and self.extra_match(normalized, extractor))


def _confidence(query_type: QueryType) -> float:
    return Config.FAMILY_CONFIDENCE[query_type]


def _build_quantity(query: str, extractor: EntityExtractor, is_aggregation: bool) -> QueryClassification:
    return QueryClassification(
        query_type=QueryType.QUANTITY,
        intent=QueryIntent.QUANTITATIVE,
        confidence=_confidence(QueryType.QUANTITY),
        reasoning="aggregation pattern" if is_aggregation else "quantity pattern",
        item_name=extractor.extract_item_name(query),
        system_name=extractor.extract_system_name(query),
        station=extractor.extract_station(query),
        sheet_number=extractor.extract_sheet_number(query),
        size_filter=extractor.extract_size(query),
        component_type=extractor.extract_component_type(query),
        needs_direct_lookup=True,
        needs_complete_data=True,
        needs_vector_search=True,
        needs_visual_analysis=False,
        is_aggregation=is_aggregation,
        preferred_sheet_types=("plan", "profile", "plan_profile", "title"),
    )


def build_aggregation(query: str, extractor: EntityExtractor) -> QueryClassification:
    return _build_quantity(query, extractor, is_aggregation=True)


def build_quantity(query: str, extractor: EntityExtractor) -> QueryClassification:
    return _build_quantity(query, extractor, is_aggregation=False)


def build_project_summary(query: str, extractor: EntityExtractor) -> QueryClassification:
    return QueryClassification(
        query_type=QueryType.PROJECT_SUMMARY,
        intent=QueryIntent.QUANTITATIVE,
        confidence=_confidence(QueryType.PROJECT_SUMMARY),
        reasoning="project summary pattern",
        needs_direct_lookup=True,
        needs_complete_data=True,
        needs_vector_search=False,
        needs_visual_analysis=False,
        is_aggregation=True,
        preferred_sheet_types=("title", "index"),
    )


def build_crossing(query: str, extractor: EntityExtractor) -> QueryClassification:
    system_name = extractor.extract_system_name(query)
    return QueryClassification(
        query_type=QueryType.UTILITY_CROSSING,
        intent=QueryIntent.QUANTITATIVE,
        confidence=_confidence(QueryType.UTILITY_CROSSING),
        reasoning="utility crossing pattern",
        item_name=system_name,
        system_name=system_name,
        station=extractor.extract_station(query),
        sheet_number=extractor.extract_sheet_number(query),
        size_filter=extractor.extract_size(query),
        # Stored crossings are checked first; text search is unreliable for crossing labels
        needs_direct_lookup=True,
        needs_complete_data=False,
        needs_vector_search=False,
        needs_visual_analysis=True,
        preferred_sheet_types=("profile", "plan_profile", "plan"),
    )


def build_location(query: str, extractor: EntityExtractor) -> QueryClassification:
    return QueryClassification(
        query_type=QueryType.LOCATION,
        intent=QueryIntent.LOCATIONAL,
        confidence=_confidence(QueryType.LOCATION),
        reasoning="location pattern",
        item_name=extractor.extract_location_item(query),
        system_name=extractor.extract_system_name(query),
        station=extractor.extract_station(query),
        sheet_number=extractor.extract_sheet_number(query),
        component_type=extractor.extract_component_type(query),
        needs_vector_search=True,
        needs_visual_analysis=True,
        preferred_sheet_types=("plan", "profile", "plan_profile"),
    )


def build_specification(query: str, extractor: EntityExtractor) -> QueryClassification:
    return QueryClassification(
        query_type=QueryType.SPECIFICATION,
        intent=QueryIntent.INFORMATIONAL,
        confidence=_confidence(QueryType.SPECIFICATION),
        reasoning="specification pattern",
        item_name=extractor.extract_material(query),
        sheet_number=extractor.extract_sheet_number(query),
        needs_vector_search=True,
        preferred_sheet_types=("notes", "specification", "legend"),
    )


def build_detail(query: str, extractor: EntityExtractor) -> QueryClassification:
    return QueryClassification(
        query_type=QueryType.DETAIL,
        intent=QueryIntent.INFORMATIONAL,
        confidence=_confidence(QueryType.DETAIL),
        reasoning="detail pattern",
        detail_number=extractor.extract_detail_number(query),
        sheet_number=extractor.extract_sheet_number(query),
        component_type=extractor.extract_component_type(query),
        needs_vector_search=True,
        needs_visual_analysis=True,
        preferred_sheet_types=("detail", "section"),
    )


def build_reference(query: str, extractor: EntityExtractor) -> QueryClassification:
    return QueryClassification(
        query_type=QueryType.REFERENCE,
        intent=QueryIntent.INFORMATIONAL,
        confidence=_confidence(QueryType.REFERENCE),
        reasoning="reference pattern",
        sheet_number=extractor.extract_sheet_number(query),
        needs_vector_search=True,
    )


def general_classification(reasoning: str = "no pattern matched") -> QueryClassification:
    return QueryClassification(
        query_type=QueryType.GENERAL,
        intent=QueryIntent.INFORMATIONAL,
        confidence=_confidence(QueryType.GENERAL),
        reasoning=reasoning,
        needs_vector_search=True,
    )


# Priority order of the families; the first match wins
CLASSIFICATION_TABLE: List[PatternFamily] = [
    PatternFamily("aggregation", AGGREGATION_PATTERNS, build_aggregation),
    PatternFamily("quantity", QUANTITY_PATTERNS, build_quantity),
    PatternFamily("project_summary", PROJECT_SUMMARY_PATTERNS, build_project_summary),
    PatternFamily(
        "utility_crossing",
        CROSSING_PATTERNS,
        build_crossing,
        extra_match=lambda text, extractor: extractor.contains_crossing_keywords(text),
    ),
    PatternFamily("location", LOCATION_PATTERNS, build_location),
    PatternFamily("specification", SPECIFICATION_PATTERNS, build_specification),
    PatternFamily("detail", DETAIL_PATTERNS, build_detail),
    PatternFamily("reference", REFERENCE_PATTERNS, build_reference),
]


class QueryClassifier:
    """Classifies questions by walking the ordered family table"""

    def __init__(
        self,
        entity_extractor: Optional[EntityExtractor] = None,
        table: Optional[List[PatternFamily]] = None,
    ):
        self.entity_extractor = entity_extractor or EntityExtractor()
        self.table = table if table is not None else CLASSIFICATION_TABLE

    def classify(self, query: str) -> QueryClassification:
        """Classify a question. Never raises for unmatched input."""
        normalized = (query or "").lower().strip()
        if not normalized:
            return general_classification("empty query")

        for family in self.table:
            if family.matches(normalized, self.entity_extractor):
                return family.builder(query, self.entity_extractor)

        return general_classification()

    def matched_family(self, query: str) -> Optional[str]:
        """Name of the family that would classify the question"""
        normalized = (query or "").lower().strip()
        for family in self.table:
            if family.matches(normalized, self.entity_extractor):
                return family.name
        return None
