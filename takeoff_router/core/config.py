# config.py
import logging
import os
from enum import Enum

logger = logging.getLogger(__name__)


class QueryType(Enum):
    """Pattern families a question can be classified into"""

    QUANTITY = "quantity"
    PROJECT_SUMMARY = "project_summary"
    UTILITY_CROSSING = "utility_crossing"
    LOCATION = "location"
    SPECIFICATION = "specification"
    DETAIL = "detail"
    REFERENCE = "reference"
    GENERAL = "general"


class QueryIntent(Enum):
    QUANTITATIVE = "quantitative"
    INFORMATIONAL = "informational"
    LOCATIONAL = "locational"


class RoutingMethod(Enum):
    """Which source(s) produced the routed context"""

    DIRECT_ONLY = "direct_only"
    VECTOR_ONLY = "vector_only"
    HYBRID = "hybrid"
    COMPLETE_DATA = "complete_data"
    VISUAL_ANALYSIS = "visual_analysis"


class RoutingStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    DEGRADED = "degraded"


class SourceContext(Enum):
    """Where on the drawing a component was read from"""

    DRAWING_LABEL = "drawing_label"
    CALLOUT_BOX = "callout_box"
    QUANTITY_TABLE = "quantity_table"
    PROFILE_VIEW = "profile_view"
    INDEX_LIST = "index_list"


class TerminationType(Enum):
    BEGIN = "BEGIN"
    END = "END"
    TIE_IN = "TIE_IN"
    TERMINUS = "TERMINUS"


class SheetType(Enum):
    TITLE = "title"
    INDEX = "index"
    PLAN = "plan"
    PROFILE = "profile"
    PLAN_PROFILE = "plan_profile"
    DETAIL = "detail"
    SECTION = "section"
    NOTES = "notes"
    SPECIFICATION = "specification"
    LEGEND = "legend"
    OTHER = "other"


class InstructionProfile(Enum):
    """Task-specific instruction sets sent to the vision service"""

    CLASSIFICATION = "classification"
    COMPONENT_EXTRACTION = "component_extraction"
    CROSSING_DETECTION = "crossing_detection"


class VisualTask(Enum):
    COUNT_COMPONENTS = "count_components"
    FIND_CROSSINGS = "find_crossings"
    MEASURE_LENGTH = "measure_length"
    LOCATE_STATION = "locate_station"


class Config:
    """Fixed constants for classification, reconciliation and routing"""

    # Per-family classification confidence
    FAMILY_CONFIDENCE = {
        QueryType.QUANTITY: 0.9,
        QueryType.PROJECT_SUMMARY: 0.9,
        QueryType.UTILITY_CROSSING: 0.85,
        QueryType.LOCATION: 0.85,
        QueryType.SPECIFICATION: 0.8,
        QueryType.DETAIL: 0.8,
        QueryType.REFERENCE: 0.75,
        QueryType.GENERAL: 0.5,
    }

    # Reconciliation
    STATION_TOLERANCE_FT = 1.0
    INDEX_CONFIDENCE_PENALTY = 0.7
    AGGREGATION_BREAKDOWN_LIMIT = 10
    INDEX_CAUTION = "may come from an index sheet and could be incomplete"

    # Retrieval
    DOMINANT_SYSTEM_SHARE = 0.8
    MIN_SIMILARITY = 0.2
    MAX_DETAIL_ROWS = 20
    MAX_CROSSING_ROWS = 30
    MENTION_SCAN_LIMIT = 100

    # Known alignment families used for system auto-detection
    SYSTEM_FAMILIES = ["WATER LINE", "STORM DRAIN", "SEWER", "FIRE LINE"]

    SAMPLE_QUESTIONS = [
        "How many 12 inch gate valves are there?",
        "What is the total length of water line A?",
        "What utilities cross water line A?",
        "Where is the fire hydrant near station 15+00?",
        "What is the spec for pipe bedding?",
        "Show me detail 3 on sheet C-501",
        "Give me a project summary",
    ]

    IS_DEVELOPMENT = os.getenv("ENVIRONMENT", "development") == "development"

    @classmethod
    def load_env_for_development(cls):
        """Load .env file only for local development"""
        if cls.IS_DEVELOPMENT:
            from dotenv import load_dotenv

            if load_dotenv():
                logger.info("Loaded .env file for local development")
