# complete_data_handler.py
"""Handler that fetches every chunk of a system for full take-offs."""

import logging
import re
from typing import Dict, List, Optional

from takeoff_router.core import Config, DocumentChunk
from takeoff_router.core.stations import parse_station
from takeoff_router.data.base_repository import BaseProjectRepository
from .extractor import EntityExtractor
from .types import QueryClassification, RouteOptions, StepResult
from .utils import AnswerFormatter

logger = logging.getLogger(__name__)

CALLOUT_CHUNK_TYPES = ["callout_box"]

_MATCH_LINE = re.compile(r"MATCH\s*LINE", re.IGNORECASE)
_NAVIGATION = re.compile(
    r"MATCH\s*LINE|SEE\s+SHEET|PLAN\s*-|PROFILE\s*-|KEY\s*PLAN|STA\s+\d", re.IGNORECASE
)
_COMPONENT_INDICATORS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"\d+\s*-\s*\d+.*(?:VALVE|TEE|BEND|CAP|COUPLING|REDUCER|HYDRANT|ARV|SLEEVE|PLUG)",
        r"GATE\s*VALVE",
        r"FIRE\s*HYDRANT",
        r"AIR\s*RELEASE",
        r"TAPPING\s*SLEEVE",
        r"THRUST\s*BLOCK",
        r"BLOW.?OFF",
        r"SERVICE\s*(?:CONNECTION|LATERAL)",
        r"\d+-IN\s+(?:DI|PVC|HDPE|STEEL|CI)\s+PIPE",
        r"ELEC\s+\d",
        r"\bSS\b.*\d+\.\d+",
        r"\bSTM\b.*\d+\.\d+",
    ]
]


def is_match_line_only(content: str) -> bool:
    """True for sheet-navigation text with no component data

    e.g. ``MATCH LINE - WATER LINE 'A' STA 4+38.83 SEE SHEET CU102``
    """
    if not content or not _MATCH_LINE.search(content):
        return False
    if any(pattern.search(content) for pattern in _COMPONENT_INDICATORS):
        return False
    navigation = len(_NAVIGATION.findall(content))
    words = len(content.split())
    # Navigation phrases average about five words each
    return navigation > 0 and navigation * 5 > words * 0.4


def _first_station(chunk: DocumentChunk) -> float:
    values = [parse_station(s) for s in chunk.stations]
    values = [v for v in values if v is not None]
    return min(values) if values else float("inf")


class CompleteDataHandler:
    """Returns all structured chunks for a named or dominant system"""

    def __init__(
        self,
        repository: BaseProjectRepository,
        entity_extractor: Optional[EntityExtractor] = None,
    ):
        self.repository = repository
        self.entity_extractor = entity_extractor or EntityExtractor()

    def detect_dominant_system(self, project_id: str) -> Optional[str]:
        """The system family holding more than the dominant share of mentions, if any"""
        counts: Dict[str, int] = self.repository.count_system_mentions(
            project_id, Config.SYSTEM_FAMILIES
        )
        total = sum(counts.values())
        if not total:
            return None
        family, count = max(counts.items(), key=lambda pair: pair[1])
        share = count / total
        logger.info(f"System mentions for project {project_id}: {counts} (top {family} at {share:.0%})")
        if share > Config.DOMINANT_SYSTEM_SHARE:
            return family.title()
        return None

    def _fetch(self, project_id: str, variations: Optional[List[str]]) -> List[DocumentChunk]:
        chunks = self.repository.get_system_chunks(
            project_id, name_variations=variations, chunk_types=CALLOUT_CHUNK_TYPES
        )
        if not chunks:
            # Projects ingested without callout detection only have plain text chunks
            chunks = self.repository.get_system_chunks(project_id, name_variations=variations)
        return chunks

    def handle(
        self, query: str, project_id: str, classification: QueryClassification, options: RouteOptions
    ) -> StepResult:
        system_name = classification.system_name
        detected = False
        if not system_name:
            system_name = self.detect_dominant_system(project_id)
            detected = system_name is not None

        variations = self.entity_extractor.system_name_variations(system_name) if system_name else None
        chunks = self._fetch(project_id, variations)

        kept = [chunk for chunk in chunks if not is_match_line_only(chunk.content)]
        filtered = len(chunks) - len(kept)
        if filtered:
            logger.info(f"Dropped {filtered} match-line-only chunks")
        if not kept:
            return StepResult.empty(f"no chunks for {system_name or 'any system'}")

        kept.sort(key=lambda c: (c.sheet_number or "", _first_station(c)))
        sheets = AnswerFormatter.sheets_of_chunks(kept)
        label = system_name or "all systems"
        heading = (
            f"Complete data for {label} ({len(kept)} chunks from {len(sheets)} sheets"
            f"{', system auto-detected' if detected else ''}):"
        )

        cautions = []
        if not system_name:
            cautions.append("No single system dominates this project; data covers all systems.")
        return StepResult(
            produced=True,
            context=AnswerFormatter.chunks(kept, heading),
            confidence=0.8 if system_name else 0.7,
            detail=f"{len(kept)} chunks for {label}",
            cautions=cautions,
            sheet_numbers=sheets,
            data={"system_name": system_name, "auto_detected": detected, "chunks": len(kept)},
        )
