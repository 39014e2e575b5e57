# router.py
"""Main orchestrating router that walks the retrieval priority chain."""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from takeoff_router.core import (
    QueryIntent,
    QueryType,
    RoutingMethod,
    RoutingStatus,
    SheetImageProvider,
    VectorSearchInterface,
    VisionInterface,
    settings,
)
from takeoff_router.core.exceptions import QueryProcessingError
from takeoff_router.data.base_repository import BaseProjectRepository
from takeoff_router.services.quantity_reconciler import QuantityReconciler
from .classifier import QueryClassifier, general_classification
from .complete_data_handler import CompleteDataHandler
from .extractor import EntityExtractor
from .quantity_handler import QuantityHandler
from .semantic_handler import SemanticHandler
from .summary_handler import SummaryHandler
from .types import (
    ProvenanceRef,
    QueryClassification,
    RouteOptions,
    RoutingResult,
    StepResult,
    VisualTaskParams,
)
from .visual_handler import VisualHandler

logger = logging.getLogger(__name__)

SUMMARY_STEP = "project_summary"
DIRECT_STEP = "direct_lookup"
COMPLETE_STEP = "complete_data"
VECTOR_STEP = "vector_search"
VISUAL_STEP = "visual_analysis"

CHAIN = [SUMMARY_STEP, DIRECT_STEP, COMPLETE_STEP, VECTOR_STEP, VISUAL_STEP]

STEP_LABELS = {
    SUMMARY_STEP: "the project summary",
    DIRECT_STEP: "direct structured lookup",
    COMPLETE_STEP: "complete system data",
    VECTOR_STEP: "document similarity search",
    VISUAL_STEP: "on-demand visual analysis",
}


def default_route_options() -> RouteOptions:
    return RouteOptions(
        max_results=settings.DEFAULT_MAX_RESULTS,
        min_confidence=settings.DEFAULT_MIN_CONFIDENCE,
        step_timeout=settings.STEP_TIMEOUT_SECONDS,
    )


class SmartRetrievalRouter:
    """Routes a question through summary, direct, complete-data, vector and visual sources.

    Steps run one at a time in priority order and the first step that
    produces data ends the chain. Collaborators are injected so tests can
    substitute fakes.
    """

    def __init__(
        self,
        repository: BaseProjectRepository,
        vector_service: Optional[VectorSearchInterface] = None,
        vision: Optional[VisionInterface] = None,
        image_provider: Optional[SheetImageProvider] = None,
        classifier: Optional[QueryClassifier] = None,
        reconciler: Optional[QuantityReconciler] = None,
    ):
        self.repository = repository
        self.entity_extractor = classifier.entity_extractor if classifier else EntityExtractor()
        self.classifier = classifier or QueryClassifier(self.entity_extractor)
        self.reconciler = reconciler or QuantityReconciler()

        # Initialize handlers
        self.summary_handler = SummaryHandler(repository)
        self.quantity_handler = QuantityHandler(repository, self.reconciler, self.entity_extractor)
        self.complete_data_handler = CompleteDataHandler(repository, self.entity_extractor)
        self.semantic_handler = SemanticHandler(vector_service) if vector_service else None
        self.visual_handler = (
            VisualHandler(repository, vision, image_provider, self.reconciler, self.entity_extractor)
            if vision and image_provider
            else None
        )

    async def route(
        self, query: str, project_id: str, options: Optional[RouteOptions] = None
    ) -> RoutingResult:
        """Answer context for a question. Never raises."""
        start = time.perf_counter()
        options = options or default_route_options()
        sources = [ProvenanceRef(step=name) for name in CHAIN]

        try:
            return await self._route(query, project_id, options, sources, start)
        except Exception as e:
            logger.exception(f"Routing failed for project {project_id}: {str(e)}")
            return RoutingResult(
                classification=general_classification("routing error"),
                context="",
                method=RoutingMethod.VECTOR_ONLY,
                sources=sources,
                confidence=0.0,
                timing_ms=self._elapsed_ms(start),
                status=RoutingStatus.DEGRADED,
                note=f"Unable to process query: {str(e)}",
            )

    async def _route(
        self,
        query: str,
        project_id: str,
        options: RouteOptions,
        sources: List[ProvenanceRef],
        start: float,
    ) -> RoutingResult:
        classification = self.classifier.classify(query)
        if not isinstance(classification, QueryClassification):
            raise QueryProcessingError(f"Classifier returned {type(classification).__name__}")

        logger.info(
            f"Query classified as '{classification.query_type.value}' "
            f"with confidence {classification.confidence:.2f}"
        )

        refs = {ref.step: ref for ref in sources}
        capabilities = await self._capabilities(project_id, options)
        partial: Optional[StepResult] = None
        visual_task: Optional[VisualTaskParams] = None

        def finish(step: str, result: StepResult, method: RoutingMethod) -> RoutingResult:
            return self._build_result(
                classification, step, result, method, sources, partial, visual_task, start
            )

        # 1. Pre-aggregated project summary
        if classification.query_type == QueryType.PROJECT_SUMMARY:
            if not self._skip(refs[SUMMARY_STEP], capabilities, "structured_quantities"):
                result = await self._run_step(
                    refs[SUMMARY_STEP], self.summary_handler.handle,
                    query, project_id, classification, options,
                )
                if result.produced:
                    return finish(SUMMARY_STEP, result, RoutingMethod.DIRECT_ONLY)

        # 2. Vision-extracted structured records
        if classification.needs_direct_lookup and classification.intent == QueryIntent.QUANTITATIVE:
            if not self._skip(
                refs[DIRECT_STEP], capabilities,
                "structured_quantities", "termination_points", "utility_crossings",
            ):
                result = await self._run_step(
                    refs[DIRECT_STEP], self.quantity_handler.handle,
                    query, project_id, classification, options,
                )
                if result.produced:
                    return finish(DIRECT_STEP, result, RoutingMethod.DIRECT_ONLY)
                if result.partial:
                    partial = result

        # 3. Every chunk of the named or dominant system
        if classification.needs_complete_data:
            if not self._skip(refs[COMPLETE_STEP], capabilities, "document_chunks"):
                result = await self._run_step(
                    refs[COMPLETE_STEP], self.complete_data_handler.handle,
                    query, project_id, classification, options,
                )
                if result.produced:
                    return finish(COMPLETE_STEP, result, RoutingMethod.COMPLETE_DATA)

        # 4. Similarity search, merged with any partial direct result
        if classification.needs_vector_search:
            if self.semantic_handler is None:
                refs[VECTOR_STEP].detail = "vector search not configured"
            else:
                result = await self._run_step(
                    refs[VECTOR_STEP], self.semantic_handler.handle,
                    query, project_id, classification, options,
                )
                if result.produced:
                    method = RoutingMethod.HYBRID if partial else RoutingMethod.VECTOR_ONLY
                    return finish(VECTOR_STEP, result, method)

        # 5. On-demand visual inspection, the most expensive path
        if classification.needs_visual_analysis:
            if self.visual_handler is None:
                refs[VISUAL_STEP].detail = "visual analysis not configured"
            else:
                visual_task = self.visual_handler.build_task_params(query, classification)
                result = await self._run_step(
                    refs[VISUAL_STEP], self.visual_handler.handle,
                    query, project_id, classification, options,
                )
                if result.produced:
                    return finish(VISUAL_STEP, result, RoutingMethod.VISUAL_ANALYSIS)

        return self._not_found(classification, sources, partial, visual_task, start)

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    @staticmethod
    def _step_timeout(options: RouteOptions) -> float:
        timeout = options.step_timeout or settings.STEP_TIMEOUT_SECONDS
        if options.deadline is not None:
            timeout = min(timeout, options.deadline - time.monotonic())
        return timeout

    async def _call(self, func: Callable[..., Any], args: tuple, timeout: float) -> Any:
        if asyncio.iscoroutinefunction(func):
            return await asyncio.wait_for(func(*args), timeout)
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)

    async def _run_step(self, ref: ProvenanceRef, func: Callable[..., Any], *args) -> StepResult:
        """Run one chain step; any collaborator failure becomes an empty result"""
        options: RouteOptions = args[-1]
        timeout = self._step_timeout(options)
        ref.attempted = True
        if timeout <= 0:
            ref.error = "deadline exceeded before step started"
            logger.warning(f"Skipping {ref.step}: deadline exceeded")
            return StepResult.empty(ref.error)

        logger.info(f"Attempting {ref.step} (timeout {timeout:.1f}s)")
        try:
            result = await self._call(func, args, timeout)
        except asyncio.TimeoutError:
            ref.error = f"timed out after {timeout:.1f}s"
            logger.warning(f"Step {ref.step} {ref.error}")
            return StepResult.empty(ref.error)
        except Exception as e:
            ref.error = f"{type(e).__name__}: {str(e)}"
            logger.error(f"Step {ref.step} failed: {ref.error}")
            return StepResult.empty(ref.error)

        ref.produced = result.produced
        ref.detail = result.detail
        ref.sheet_numbers = list(result.sheet_numbers)
        logger.info(
            f"Step {ref.step} {'produced data' if result.produced else 'found nothing'}"
            f"{f' ({result.detail})' if result.detail else ''}"
        )
        return result

    async def _capabilities(self, project_id: str, options: RouteOptions) -> Optional[Dict[str, bool]]:
        """What data the project has; None when unknown"""
        try:
            return await self._call(
                self.repository.get_capabilities, (project_id,), self._step_timeout(options)
            )
        except asyncio.TimeoutError:
            logger.warning(f"Capability check timed out for project {project_id}")
        except Exception as e:
            logger.warning(f"Capability check failed for project {project_id}: {str(e)}")
        return None

    @staticmethod
    def _skip(ref: ProvenanceRef, capabilities: Optional[Dict[str, bool]], *needed: str) -> bool:
        if capabilities is None:
            return False
        if any(capabilities.get(name, True) for name in needed):
            return False
        ref.detail = "project has no data for this source"
        return True

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000

    def _build_result(
        self,
        classification: QueryClassification,
        step: str,
        result: StepResult,
        method: RoutingMethod,
        sources: List[ProvenanceRef],
        partial: Optional[StepResult],
        visual_task: Optional[VisualTaskParams],
        start: float,
    ) -> RoutingResult:
        cautions: List[str] = []
        warnings: List[str] = []
        context = result.context

        empty_attempts = [
            ref.step for ref in sources
            if ref.step != step and ref.attempted and not ref.produced
        ]
        if empty_attempts:
            tried = ", ".join(STEP_LABELS[s] for s in empty_attempts)
            cautions.append(
                f"This answer comes from {STEP_LABELS[step]} because {tried} returned no data."
            )

        if partial is not None and step != DIRECT_STEP:
            context = f"{partial.context}\n\n{context}" if partial.context else context
            cautions.append(
                f"Direct lookup returned only partial data; supplemented with {STEP_LABELS[step]}."
            )
            cautions.extend(partial.cautions)
            warnings.extend(partial.warnings)

        cautions.extend(result.cautions)
        warnings.extend(result.warnings)

        routing_result = RoutingResult(
            classification=classification,
            context=context,
            method=method,
            sources=sources,
            confidence=result.confidence,
            timing_ms=self._elapsed_ms(start),
            status=RoutingStatus.FOUND,
            cautions=list(dict.fromkeys(cautions)),
            warnings=list(dict.fromkeys(warnings)),
            visual_task=visual_task,
        )
        logger.info(
            f"Routed via {method.value} ({step}) with confidence {routing_result.confidence:.2f} "
            f"in {routing_result.timing_ms:.0f}ms"
        )
        return routing_result

    def _not_found(
        self,
        classification: QueryClassification,
        sources: List[ProvenanceRef],
        partial: Optional[StepResult],
        visual_task: Optional[VisualTaskParams],
        start: float,
    ) -> RoutingResult:
        attempted = [ref.step for ref in sources if ref.attempted]
        errors = [f"{ref.step}: {ref.error}" for ref in sources if ref.error]
        note = (
            f"No data found after trying {', '.join(STEP_LABELS[s] for s in attempted)}."
            if attempted
            else "No data source applies to this question for this project."
        )
        if errors:
            note += f" Errors: {'; '.join(errors)}."

        context = ""
        cautions: List[str] = []
        if partial is not None and partial.context:
            # A BEGIN without its END, for example
            context = partial.context
            note += f" Direct lookup found only partial data: {partial.context.strip()}"
            cautions.extend(partial.cautions)

        logger.info(f"No data found for query ({len(attempted)} steps attempted)")
        return RoutingResult(
            classification=classification,
            context=context,
            method=RoutingMethod.VECTOR_ONLY,
            sources=sources,
            confidence=0.0,
            timing_ms=self._elapsed_ms(start),
            status=RoutingStatus.NOT_FOUND,
            cautions=list(dict.fromkeys(cautions)),
            warnings=list(partial.warnings) if partial else [],
            visual_task=visual_task,
            note=note,
        )
