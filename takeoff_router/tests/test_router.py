# test_router.py
"""Tests for the retrieval priority chain."""

import asyncio
import time
from unittest.mock import Mock

import pytest

from takeoff_router.core import (
    QueryType,
    RoutingMethod,
    RoutingStatus,
    SheetImage,
    TerminationPoint,
    TerminationType,
    UtilityCrossing,
    VisionExtraction,
    VisualTask,
)
from takeoff_router.core.entity_config import EntityConfigLoader
from takeoff_router.core.exceptions import DatabaseError
from takeoff_router.query_handlers import QueryClassifier, RouteOptions, SmartRetrievalRouter
from takeoff_router.query_handlers.extractor import EntityExtractor
from takeoff_router.services.quantity_reconciler import QuantityReconciler

PROJECT = "proj-1"


@pytest.fixture
def entity_config():
    return EntityConfigLoader(config_path="/nonexistent/entities.yaml")


@pytest.fixture
def classifier(entity_config):
    return QueryClassifier(EntityExtractor(entity_config))


@pytest.fixture
def make_router(repository, classifier, entity_config):
    def factory(**kwargs):
        kwargs.setdefault("classifier", classifier)
        kwargs.setdefault("reconciler", QuantityReconciler(entity_config))
        kwargs.setdefault("repository", repository)
        return SmartRetrievalRouter(**kwargs)
    return factory


@pytest.fixture
def vector_hit(chunk_factory):
    return chunk_factory("12-IN GATE VALVE STA 10+50 WATER LINE A", similarity=0.8)


def route(router, query, options=None):
    return asyncio.run(router.route(query, PROJECT, options))


def source(result, step):
    return next(ref for ref in result.sources if ref.step == step)


class TestPriorityChain:
    """Test cases for step ordering and fallbacks."""

    def test_direct_lookup_wins(self, make_router, repository, sample_components, vector_service_factory,
                                vector_hit):
        repository.add_components(PROJECT, sample_components)
        vector_service = vector_service_factory([vector_hit])
        router = make_router(vector_service=vector_service)

        result = route(router, "How many 12 inch gate valves are there?")

        assert result.status == RoutingStatus.FOUND
        assert result.method == RoutingMethod.DIRECT_ONLY
        assert "**TOTAL: 2 gate valve(s)**" in result.context
        assert result.cautions == []
        assert source(result, "direct_lookup").produced
        assert not source(result, "complete_data").attempted
        assert vector_service.calls == []

    def test_project_summary(self, make_router, repository, sample_components):
        repository.add_components(PROJECT, sample_components)

        result = route(make_router(), "Give me a project summary")

        assert result.classification.query_type == QueryType.PROJECT_SUMMARY
        assert result.method == RoutingMethod.DIRECT_ONLY
        assert source(result, "project_summary").produced
        assert "| Item Type |" in result.context

    def test_complete_data_before_vector(self, make_router, repository, sample_chunks, vector_service_factory,
                                         vector_hit):
        repository.add_chunks(sample_chunks)
        vector_service = vector_service_factory([vector_hit])

        result = route(make_router(vector_service=vector_service), "What is the total length of water line A?")

        assert result.method == RoutingMethod.COMPLETE_DATA
        assert not source(result, "direct_lookup").attempted
        assert source(result, "direct_lookup").detail == "project has no data for this source"
        assert vector_service.calls == []

    def test_fallback_to_vector_has_caution(self, make_router, repository, sample_components,
                                            vector_service_factory, vector_hit):
        repository.add_components(PROJECT, sample_components)
        router = make_router(vector_service=vector_service_factory([vector_hit]))

        result = route(router, "How many manholes are there?")

        assert result.method == RoutingMethod.VECTOR_ONLY
        assert result.status == RoutingStatus.FOUND
        assert result.cautions[0] == (
            "This answer comes from document similarity search because "
            "direct structured lookup returned no data."
        )
        assert source(result, "direct_lookup").attempted
        assert not source(result, "direct_lookup").produced

    def test_partial_direct_result_merged(self, make_router, repository, vector_service_factory, vector_hit):
        repository.add_termination_points(PROJECT, [
            TerminationPoint("WATER LINE A", TerminationType.BEGIN, "10+00", 1000.0, "C-101"),
        ])
        router = make_router(vector_service=vector_service_factory([vector_hit]))

        result = route(router, "What is the total length of water line A?")

        assert result.method == RoutingMethod.HYBRID
        assert result.context.startswith("- Found partial termination data for Water Line A")
        assert "12-IN GATE VALVE STA 10+50" in result.context
        assert (
            "Direct lookup returned only partial data; supplemented with document similarity search."
            in result.cautions
        )
        assert any("BEGIN, no END" in warning for warning in result.warnings)

    def test_visual_analysis_last(self, make_router, repository, sample_chunks, mock_image_provider):
        repository.add_chunks(sample_chunks)
        mock_image_provider.get_sheet_images.return_value = [SheetImage("C-101", b"png")]
        vision = Mock()
        vision.analyze_sheet.return_value = VisionExtraction(
            "C-101",
            crossings=[UtilityCrossing("GAS", "Gas", "16+10", is_existing=True, sheet_number="C-101")],
        )
        router = make_router(vision=vision, image_provider=mock_image_provider)

        result = route(router, "What utilities cross water line A?")

        assert result.method == RoutingMethod.VISUAL_ANALYSIS
        assert result.visual_task.task == VisualTask.FIND_CROSSINGS
        assert result.visual_task.utility_name == "Water Line A"
        assert "Gas (GAS)" in result.context


class TestNotFoundAndErrors:
    """Test cases for empty results, failures and timeouts."""

    def test_not_found(self, make_router, vector_service_factory):
        result = route(make_router(vector_service=vector_service_factory([])), "How many gate valves are there?")

        assert result.status == RoutingStatus.NOT_FOUND
        assert not result.found
        assert result.method == RoutingMethod.VECTOR_ONLY
        assert result.confidence == 0.0
        assert result.note == "No data found after trying document similarity search."

    def test_not_found_keeps_partial_direct_data(self, make_router, repository):
        repository.add_termination_points(PROJECT, [
            TerminationPoint("WATER LINE A", TerminationType.BEGIN, "10+00", 1000.0, "C-101"),
        ])

        result = route(make_router(), "What is the total length of water line A?")

        assert result.status == RoutingStatus.NOT_FOUND
        assert result.context.startswith("- Found partial termination data for Water Line A")
        assert "Direct lookup found only partial data: - Found partial termination data" in result.note
        assert any("BEGIN, no END" in warning for warning in result.warnings)

    def test_nothing_configured(self, make_router):
        result = route(make_router(), "hello there")

        assert result.status == RoutingStatus.NOT_FOUND
        assert result.note == "No data source applies to this question for this project."
        assert source(result, "vector_search").detail == "vector search not configured"

    def test_classifier_failure_is_degraded(self, make_router):
        classifier = Mock()
        classifier.classify.side_effect = RuntimeError("pattern table corrupt")

        result = route(make_router(classifier=classifier), "How many gate valves?")

        assert result.status == RoutingStatus.DEGRADED
        assert result.classification.query_type == QueryType.GENERAL
        assert result.classification.reasoning == "routing error"
        assert result.note == "Unable to process query: pattern table corrupt"

    def test_invalid_classification_is_degraded(self, make_router):
        classifier = Mock()
        classifier.classify.return_value = None

        result = route(make_router(classifier=classifier), "How many gate valves?")

        assert result.status == RoutingStatus.DEGRADED

    def test_collaborator_failure_recorded(self, make_router, vector_service_factory, vector_hit):
        repository = Mock()
        repository.get_capabilities.side_effect = DatabaseError("connection refused")
        repository.get_components.side_effect = DatabaseError("connection refused")
        repository.get_system_chunks.side_effect = DatabaseError("connection refused")
        repository.count_system_mentions.side_effect = DatabaseError("connection refused")
        router = make_router(repository=repository, vector_service=vector_service_factory([vector_hit]))

        result = route(router, "How many gate valves are there?")

        assert result.status == RoutingStatus.FOUND
        assert result.method == RoutingMethod.VECTOR_ONLY
        assert source(result, "direct_lookup").error == "DatabaseError: connection refused"
        assert source(result, "complete_data").error == "DatabaseError: connection refused"

    def test_step_timeout(self, make_router, vector_service_factory):
        class SlowVectorService(vector_service_factory):
            def semantic_search(self, project_id, query, limit=10, filters=None):
                time.sleep(0.5)
                return []

        router = make_router(vector_service=SlowVectorService())

        result = route(router, "hello there", RouteOptions(step_timeout=0.05))

        assert result.status == RoutingStatus.NOT_FOUND
        assert source(result, "vector_search").error.startswith("timed out after")
        assert "Errors: vector_search: timed out" in result.note

    def test_deadline_exceeded(self, make_router, repository, sample_components):
        repository.add_components(PROJECT, sample_components)
        options = RouteOptions(deadline=time.monotonic() - 1)

        result = route(make_router(), "How many gate valves are there?", options)

        assert result.status == RoutingStatus.NOT_FOUND
        assert source(result, "direct_lookup").error == "deadline exceeded before step started"

    def test_result_serializes(self, make_router, repository, sample_components):
        repository.add_components(PROJECT, sample_components)

        data = route(make_router(), "How many gate valves are there?").to_dict()

        assert data["method"] == "direct_only"
        assert data["status"] == "found"
        assert data["classification"]["type"] == "quantity"
        assert [s["step"] for s in data["sources"]] == [
            "project_summary", "direct_lookup", "complete_data", "vector_search", "visual_analysis",
        ]
