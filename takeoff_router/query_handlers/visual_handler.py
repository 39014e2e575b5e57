# visual_handler.py
"""Handler for on-demand visual inspection of drawing sheets.

The most expensive retrieval path: sheets are rasterized images sent to the
vision service a few at a time, and the replies are reconciled exactly like
ingested records.
"""

import asyncio
import logging
import re
from typing import List, Optional

from takeoff_router.core import (
    InstructionProfile,
    QueryType,
    SheetImageProvider,
    SheetRef,
    VisionExtraction,
    VisionInterface,
    VisualTask,
    settings,
)
from takeoff_router.core.stations import stations_approximately_equal, station_distance
from takeoff_router.data.base_repository import BaseProjectRepository
from takeoff_router.services.batching import run_in_batches
from takeoff_router.services.quantity_reconciler import QuantityReconciler, ReconcileFilters
from .extractor import EntityExtractor
from .types import QueryClassification, RouteOptions, StepResult, VisualTaskParams
from .utils import AnswerFormatter

logger = logging.getLogger(__name__)

COMPONENT_KEYWORDS = [
    "valve", "tee", "fitting", "hydrant", "cap", "plug", "bend", "elbow",
    "manhole", "catch basin", "arv", "air release", "deflection", "defl",
    "coupling", "reducer", "component", "tapping sleeve", "tap sleeve", "hot tap",
]
_BEND_PATTERN = re.compile(
    r"\d+(?:\.\d+)?\s*[°º]?\s*bend|quarter\s*bend|eighth\s*bend|1/16\s*bend|1/32\s*bend",
    re.IGNORECASE,
)
_LENGTH_PATTERN = re.compile(r"length|termination|\bbegin\b|\bend\b|total.*feet|\blf\b", re.IGNORECASE)

# Nearby components are reported within this distance of a queried station
LOCATE_WINDOW_FT = 100.0


def determine_visual_task(query: str, entity_extractor: Optional[EntityExtractor] = None) -> VisualTask:
    """Which inspection a question calls for"""
    extractor = entity_extractor or EntityExtractor()
    lowered = (query or "").lower()

    # A bare "cross" is also a fitting, so only crossing wording counts here
    if extractor.contains_crossing_keywords(query) or re.search(r"\bcrossings?\b|\bconflict", lowered):
        return VisualTask.FIND_CROSSINGS
    if any(keyword in lowered for keyword in COMPONENT_KEYWORDS) or _BEND_PATTERN.search(lowered):
        return VisualTask.COUNT_COMPONENTS
    if _LENGTH_PATTERN.search(lowered):
        return VisualTask.MEASURE_LENGTH
    return VisualTask.LOCATE_STATION


class VisualHandler:
    """Sends a bounded set of sheets to the vision service for a specific task"""

    def __init__(
        self,
        repository: BaseProjectRepository,
        vision: VisionInterface,
        image_provider: SheetImageProvider,
        reconciler: Optional[QuantityReconciler] = None,
        entity_extractor: Optional[EntityExtractor] = None,
        max_sheets: Optional[int] = None,
    ):
        self.repository = repository
        self.vision = vision
        self.image_provider = image_provider
        self.reconciler = reconciler or QuantityReconciler()
        self.entity_extractor = entity_extractor or EntityExtractor()
        self.max_sheets = max_sheets or settings.MAX_VISUAL_SHEETS

    def build_task_params(self, query: str, classification: QueryClassification) -> VisualTaskParams:
        task = (
            VisualTask.FIND_CROSSINGS
            if classification.query_type == QueryType.UTILITY_CROSSING
            else determine_visual_task(query, self.entity_extractor)
        )
        return VisualTaskParams(
            task=task,
            component_type=classification.component_type or self.entity_extractor.extract_component_type(query),
            size_filter=classification.size_filter,
            utility_name=classification.system_name,
            station=classification.station,
        )

    def _select_sheets(self, project_id: str, classification: QueryClassification) -> List[SheetRef]:
        if classification.sheet_number:
            sheets = [
                s for s in self.repository.list_sheets(project_id)
                if s.sheet_number == classification.sheet_number
            ]
            if sheets:
                return sheets[:1]
        preferred = list(classification.preferred_sheet_types) or None
        sheets = self.repository.list_sheets(project_id, sheet_types=preferred, limit=self.max_sheets)
        if not sheets and preferred:
            sheets = self.repository.list_sheets(project_id, limit=self.max_sheets)
        return sheets

    async def handle(
        self, query: str, project_id: str, classification: QueryClassification, options: RouteOptions
    ) -> StepResult:
        params = self.build_task_params(query, classification)
        sheets = await asyncio.to_thread(self._select_sheets, project_id, classification)
        if not sheets:
            return StepResult.empty("no sheets available for visual analysis")

        images = await asyncio.to_thread(self.image_provider.get_sheet_images, project_id, sheets)
        if not images:
            return StepResult.empty("no sheet images available")

        profile = (
            InstructionProfile.CROSSING_DETECTION
            if params.task == VisualTask.FIND_CROSSINGS
            else InstructionProfile.COMPONENT_EXTRACTION
        )
        task_params = params.to_dict()

        async def analyze(image):
            return await asyncio.to_thread(self.vision.analyze_sheet, image, profile, task_params)

        outcomes = await run_in_batches(
            images, analyze, settings.INGEST_BATCH_SIZE, settings.INGEST_BATCH_DELAY
        )
        extractions: List[VisionExtraction] = [
            result for _, result in outcomes if isinstance(result, VisionExtraction)
        ]
        failed = len(outcomes) - len(extractions)
        if not extractions:
            return StepResult.empty(f"vision analysis failed on all {failed} sheets")

        cost = round(sum(e.cost_usd for e in extractions), 6)
        logger.info(
            f"Visual analysis ({params.task.value}) on {len(extractions)} sheets, "
            f"{failed} failed, cost ${cost:.4f}"
        )

        if params.task == VisualTask.FIND_CROSSINGS:
            result = self._crossings(extractions, params)
        elif params.task == VisualTask.MEASURE_LENGTH and params.utility_name:
            result = self._length(extractions, params)
        elif params.task == VisualTask.LOCATE_STATION and params.station:
            result = self._locate(extractions, params, options)
        else:
            result = self._count(extractions, params, options)

        result.data.update({"visual_task": task_params, "sheets_analyzed": len(extractions), "cost_usd": cost})
        if failed:
            result.warnings.append(f"Visual analysis failed on {failed} of {len(outcomes)} sheets.")
        return result

    def _crossings(self, extractions: List[VisionExtraction], params: VisualTaskParams) -> StepResult:
        crossings = [c for e in extractions for c in e.crossings]
        if params.station:
            crossings = [c for c in crossings if stations_approximately_equal(c.station, params.station)] or crossings
        if not crossings:
            return StepResult.empty("no crossings visible on analyzed sheets")
        return StepResult(
            produced=True,
            context=AnswerFormatter.crossings(crossings, params.utility_name),
            confidence=round(sum(c.confidence for c in crossings) / len(crossings), 3),
            detail=f"{len(crossings)} crossings found visually",
            sheet_numbers=sorted({c.sheet_number for c in crossings if c.sheet_number}),
        )

    def _length(self, extractions: List[VisionExtraction], params: VisualTaskParams) -> StepResult:
        points = [p for e in extractions for p in e.termination_points]
        records = [c for e in extractions for c in e.components]
        resolution = self.reconciler.resolve_length(params.utility_name, points, records)
        if not resolution.found:
            return StepResult.empty(
                f"no length visible for {params.utility_name}", warnings=list(resolution.warnings)
            )
        return StepResult(
            produced=True,
            context=AnswerFormatter.length(resolution),
            confidence=resolution.confidence,
            detail=f"length via {resolution.method}",
            cautions=list(resolution.cautions),
            warnings=list(resolution.warnings),
            sheet_numbers=[e.sheet_number for e in extractions],
        )

    def _filters(self, params: VisualTaskParams, options: RouteOptions) -> ReconcileFilters:
        return ReconcileFilters(
            component_type=params.component_type,
            size=params.size_filter,
            utility=params.utility_name,
            min_confidence=options.min_confidence,
        )

    def _count(
        self, extractions: List[VisionExtraction], params: VisualTaskParams, options: RouteOptions
    ) -> StepResult:
        records = [c for e in extractions for c in e.components]
        result = self.reconciler.reconcile(records, self._filters(params, options))
        if not result.total_count:
            return StepResult.empty("no matching components visible")
        label = params.component_type or "component"
        return StepResult(
            produced=True,
            context=AnswerFormatter.component_count(
                label, result, size_filter=params.size_filter, utility_filter=params.utility_name
            ),
            confidence=result.confidence,
            detail=f"{result.total_count:g} {label} counted visually",
            sheet_numbers=result.sheet_numbers,
        )

    def _locate(
        self, extractions: List[VisionExtraction], params: VisualTaskParams, options: RouteOptions
    ) -> StepResult:
        records = [c for e in extractions for c in e.components]
        valid, _ = self.reconciler.filter_valid(records)
        matching = self.reconciler.apply_filters(valid, self._filters(params, options))
        nearby = []
        for record in matching:
            distance = station_distance(params.station, record.station) if record.station else None
            if distance is not None and abs(distance) <= LOCATE_WINDOW_FT:
                nearby.append((abs(distance), record))
        if not nearby:
            return StepResult.empty(f"nothing found near station {params.station}")

        nearby.sort(key=lambda pair: pair[0])
        lines = [f"**Items near Station {params.station}:**"]
        for distance, record in nearby[: options.max_results]:
            size = f" {record.size}" if record.size else ""
            lines.append(
                f"• {record.name}{size} at Station {record.station} "
                f"({distance:.0f} ft away, Sheet {record.sheet_number or '-'})"
            )
        items = [record for _, record in nearby]
        return StepResult(
            produced=True,
            context="\n".join(lines),
            confidence=round(sum(r.confidence for r in items) / len(items), 3),
            detail=f"{len(items)} items near {params.station}",
            sheet_numbers=sorted({r.sheet_number for r in items if r.sheet_number}),
        )
