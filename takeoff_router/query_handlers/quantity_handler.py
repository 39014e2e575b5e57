# quantity_handler.py
"""Handler for direct lookups against vision-extracted structured records.

Picks the narrowest answer the stored data supports: stored crossings,
run lengths, summed totals, per-size component counts, and finally a
fuzzy item-name search.
"""

import logging
import re
from typing import List, Optional

from takeoff_router.core import Config, QueryType
from takeoff_router.core.normalize import normalize_size
from takeoff_router.core.stations import stations_approximately_equal
from takeoff_router.data.base_repository import BaseProjectRepository
from takeoff_router.services.quantity_reconciler import QuantityReconciler, ReconcileFilters
from .extractor import EntityExtractor, clean_item_name
from .types import QueryClassification, RouteOptions, StepResult
from .utils import AnswerFormatter

logger = logging.getLogger(__name__)

LENGTH_PATTERN = re.compile(
    r"\b(?:length|how long|footage|linear\s+f(?:ee|oo)t|lf)\b", re.IGNORECASE
)

FUZZY_SEARCH_LIMIT = 20


class QuantityHandler:
    """Direct structured lookup, the highest-priority data source"""

    def __init__(
        self,
        repository: BaseProjectRepository,
        reconciler: Optional[QuantityReconciler] = None,
        entity_extractor: Optional[EntityExtractor] = None,
    ):
        self.repository = repository
        self.reconciler = reconciler or QuantityReconciler()
        self.entity_extractor = entity_extractor or EntityExtractor()

    def handle(
        self, query: str, project_id: str, classification: QueryClassification, options: RouteOptions
    ) -> StepResult:
        if self._is_crossing_question(query, classification):
            return self.lookup_crossings(project_id, classification)
        if classification.system_name and LENGTH_PATTERN.search(query):
            return self.lookup_length(project_id, classification.system_name)
        if classification.is_aggregation:
            return self.lookup_aggregation(project_id, classification, options)
        if classification.component_type:
            return self.lookup_component_count(project_id, classification, options)
        return self.lookup_fuzzy(query, project_id, classification, options)

    def _is_crossing_question(self, query: str, classification: QueryClassification) -> bool:
        if classification.query_type == QueryType.UTILITY_CROSSING:
            return True
        # "12-IN crosses" counts a fitting, not crossing utilities
        return not classification.component_type and self.entity_extractor.contains_crossing_keywords(query)

    def lookup_crossings(self, project_id: str, classification: QueryClassification) -> StepResult:
        crossings = self.repository.get_crossings(project_id, classification.system_name)
        if classification.station:
            near = [c for c in crossings if stations_approximately_equal(c.station, classification.station)]
            crossings = near or crossings
        if classification.size_filter:
            wanted = normalize_size(classification.size_filter)
            crossings = [c for c in crossings if normalize_size(c.size) == wanted]
        if not crossings:
            return StepResult.empty("no stored crossings")

        confidence = round(sum(c.confidence for c in crossings) / len(crossings), 3)
        sheets = sorted({c.sheet_number for c in crossings if c.sheet_number})
        return StepResult(
            produced=True,
            context=AnswerFormatter.crossings(crossings, classification.system_name),
            confidence=confidence,
            detail=f"{len(crossings)} stored crossings",
            sheet_numbers=sheets,
            data={"crossings": len(crossings)},
        )

    def lookup_length(self, project_id: str, utility_name: str) -> StepResult:
        points = self.repository.get_termination_points(project_id, utility_name)
        records = self.repository.get_components(project_id)
        resolution = self.reconciler.resolve_length(utility_name, points, records)

        if not resolution.found:
            if resolution.warnings:
                # Partial termination data is carried to the next step, never dropped
                return StepResult(
                    produced=False,
                    partial=True,
                    context="\n".join(f"- {warning}" for warning in resolution.warnings),
                    detail="partial termination data",
                    warnings=list(resolution.warnings),
                )
            return StepResult.empty(f"no length data for {utility_name}")

        sheets: List[str] = []
        if resolution.length_result is not None:
            sheets = [
                s for s in (resolution.length_result.begin_sheet, resolution.length_result.end_sheet) if s
            ]
        else:
            sheets = sorted({r.sheet_number for r in resolution.records if r.sheet_number})

        return StepResult(
            produced=True,
            context=AnswerFormatter.length(resolution),
            confidence=resolution.confidence,
            detail=f"length via {resolution.method}",
            cautions=list(resolution.cautions),
            warnings=list(resolution.warnings),
            sheet_numbers=list(dict.fromkeys(sheets)),
            data={"length_lf": resolution.length_lf, "length_method": resolution.method},
        )

    def lookup_aggregation(
        self, project_id: str, classification: QueryClassification, options: RouteOptions
    ) -> StepResult:
        records = self.repository.get_components(project_id)
        filters = ReconcileFilters(
            component_type=classification.component_type,
            size=classification.size_filter,
            utility=classification.system_name,
            min_confidence=options.min_confidence,
        )
        if not (filters.component_type or filters.utility):
            item = clean_item_name(classification.item_name)
            if not item:
                return StepResult.empty("aggregation without a target item")
            filters = ReconcileFilters(
                component_type=item,
                size=classification.size_filter,
                min_confidence=options.min_confidence,
            )

        result = self.reconciler.aggregate(records, filters, label=classification.item_name)
        if not result.item_count:
            return StepResult.empty("no matching records to sum")

        cautions = []
        if result.index_sourced:
            cautions.append(f"This total {Config.INDEX_CAUTION}.")
        return StepResult(
            produced=True,
            context=AnswerFormatter.aggregation(result),
            confidence=result.confidence,
            detail=f"summed {result.item_count} records",
            cautions=cautions,
            sheet_numbers=result.sheet_numbers,
            data={"total": result.total, "unit": result.unit},
        )

    def lookup_component_count(
        self, project_id: str, classification: QueryClassification, options: RouteOptions
    ) -> StepResult:
        records = self.repository.get_components(project_id)
        filters = ReconcileFilters(
            component_type=classification.component_type,
            size=classification.size_filter,
            utility=classification.system_name,
            min_confidence=options.min_confidence,
        )
        result = self.reconciler.reconcile(records, filters)
        if not result.total_count:
            return StepResult.empty(f"no {classification.component_type} records")

        cautions = []
        if all(item.is_index_sourced for item in result.items):
            cautions.append(f"This count {Config.INDEX_CAUTION}.")
        return StepResult(
            produced=True,
            context=AnswerFormatter.component_count(
                classification.component_type,
                result,
                size_filter=classification.size_filter,
                utility_filter=classification.system_name,
            ),
            confidence=result.confidence,
            detail=f"{result.total_count:g} {classification.component_type} across {len(result.groups)} sizes",
            cautions=cautions,
            sheet_numbers=result.sheet_numbers,
            data={"total_count": result.total_count, "by_size": result.by_size},
        )

    def lookup_fuzzy(
        self, query: str, project_id: str, classification: QueryClassification, options: RouteOptions
    ) -> StepResult:
        term = clean_item_name(classification.item_name) or clean_item_name(query)
        if not term:
            return StepResult.empty("no item name to search")

        matches = self.repository.search_quantities(project_id, term, limit=FUZZY_SEARCH_LIMIT)
        matches = [(c, s) for c, s in matches if c.confidence >= options.min_confidence]
        if not matches:
            return StepResult.empty(f"no records similar to '{term}'")

        unique, _ = self.reconciler.deduplicate(c for c, _ in matches)
        best = {c.identity_key(): c for c in unique}
        kept = []
        for component, similarity in matches:
            key = component.identity_key()
            if key in best:
                kept.append((best.pop(key), similarity))
        kept = kept[: options.max_results]
        top_similarity = kept[0][1]
        confidence = round(
            sum(c.confidence for c, _ in kept) / len(kept) * min(1.0, 0.5 + top_similarity), 3
        )
        cautions = []
        if all(c.is_index_sourced for c, _ in kept):
            cautions.append(f"These quantities {Config.INDEX_CAUTION}.")
            confidence = round(confidence * Config.INDEX_CONFIDENCE_PENALTY, 3)
        return StepResult(
            produced=True,
            context=AnswerFormatter.quantity_matches(kept),
            confidence=confidence,
            detail=f"{len(kept)} records similar to '{term}'",
            cautions=cautions,
            sheet_numbers=sorted({c.sheet_number for c, _ in kept if c.sheet_number}),
            data={"matches": len(kept)},
        )
