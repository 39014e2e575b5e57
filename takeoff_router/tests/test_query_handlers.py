# test_query_handlers.py
"""Tests for the individual retrieval handlers."""

import asyncio
from unittest.mock import Mock

import pytest

from takeoff_router.core import (
    InstructionProfile,
    SheetImage,
    TerminationPoint,
    TerminationType,
    UtilityCrossing,
    VisionExtraction,
    VisualTask,
)
from takeoff_router.core.entity_config import EntityConfigLoader
from takeoff_router.core.exceptions import VisionServiceError
from takeoff_router.query_handlers import (
    CompleteDataHandler,
    QuantityHandler,
    SemanticHandler,
    SummaryHandler,
    VisualHandler,
)
from takeoff_router.query_handlers.classifier import QueryClassifier, general_classification
from takeoff_router.query_handlers.complete_data_handler import is_match_line_only
from takeoff_router.query_handlers.extractor import EntityExtractor
from takeoff_router.query_handlers.semantic_handler import rerank, station_boost
from takeoff_router.query_handlers.types import RouteOptions
from takeoff_router.query_handlers.visual_handler import determine_visual_task
from takeoff_router.services.quantity_reconciler import QuantityReconciler

PROJECT = "proj-1"


@pytest.fixture
def entity_config():
    return EntityConfigLoader(config_path="/nonexistent/entities.yaml")


@pytest.fixture
def extractor(entity_config):
    return EntityExtractor(entity_config)


@pytest.fixture
def classify(extractor):
    return QueryClassifier(extractor).classify


@pytest.fixture
def options():
    return RouteOptions()


@pytest.fixture
def loaded_repository(repository, sample_components, sample_termination_points, sample_crossings, sample_chunks):
    repository.add_components(PROJECT, sample_components, document_id="doc-1")
    repository.add_termination_points(PROJECT, sample_termination_points)
    repository.add_crossings(PROJECT, sample_crossings)
    repository.add_chunks(sample_chunks)
    return repository


@pytest.fixture
def quantity_handler(loaded_repository, entity_config, extractor):
    return QuantityHandler(loaded_repository, QuantityReconciler(entity_config), extractor)


class TestSummaryHandler:
    """Test cases for the project summary step."""

    def test_summary_table(self, loaded_repository, classify, options):
        result = SummaryHandler(loaded_repository).handle(
            "Give me a project summary", PROJECT, classify("Give me a project summary"), options
        )

        assert result.produced
        assert "| pipe | 1180 | 1 |" in result.context
        assert "| valve | 4 | 1 |" in result.context
        assert 0 < result.confidence <= 1

    def test_empty_project(self, repository, classify, options):
        result = SummaryHandler(repository).handle("project summary", "empty", classify("project summary"), options)
        assert not result.produced


class TestQuantityHandler:
    """Test cases for direct structured lookups."""

    def test_component_count(self, quantity_handler, classify, options):
        query = "How many 12 inch gate valves are there?"
        result = quantity_handler.handle(query, PROJECT, classify(query), options)

        assert result.produced
        assert result.data["total_count"] == 2
        assert "**TOTAL: 2 gate valve(s)**" in result.context
        assert "(1 duplicate records removed)" in result.context
        assert result.sheet_numbers == ["C-101"]

    def test_length_from_termination_points(self, quantity_handler, classify, options):
        query = "What is the total length of water line A?"
        result = quantity_handler.handle(query, PROJECT, classify(query), options)

        assert result.produced
        assert result.data == {"length_lf": 1250.0, "length_method": "termination_points"}
        assert "22+50 - 10+00 = **1,250.00 LF**" in result.context
        assert result.sheet_numbers == ["C-101", "C-103"]

    def test_partial_termination_data_is_carried(self, repository, entity_config, extractor, classify, options):
        repository.add_termination_points(PROJECT, [
            TerminationPoint("WATER LINE A", TerminationType.BEGIN, "10+00", 1000.0, "C-101"),
        ])
        handler = QuantityHandler(repository, QuantityReconciler(entity_config), extractor)
        query = "What is the total length of water line A?"

        result = handler.handle(query, PROJECT, classify(query), options)

        assert not result.produced
        assert result.partial
        assert "BEGIN, no END" in result.warnings[0]

    def test_stored_crossings(self, quantity_handler, classify, options):
        query = "What utilities cross water line A?"
        result = quantity_handler.handle(query, PROJECT, classify(query), options)

        assert result.produced
        assert result.data == {"crossings": 2}
        assert "**TOTAL: 2 utility crossing(s)**" in result.context
        assert "| Sanitary Sewer (SS) | 1 | 1 | 0 |" in result.context

    def test_index_sourced_total_has_caution(self, repository, entity_config, extractor, classify, options,
                                             index_component):
        repository.add_components(PROJECT, [index_component])
        handler = QuantityHandler(repository, QuantityReconciler(entity_config), extractor)
        query = "What is the total quantity of gate valves?"

        result = handler.handle(query, PROJECT, classify(query), options)

        assert result.produced
        assert result.data["total"] == 4
        assert result.confidence == pytest.approx(0.525)
        assert result.cautions == ["This total may come from an index sheet and could be incomplete."]

    def test_fuzzy_search(self, quantity_handler, options):
        result = quantity_handler.lookup_fuzzy("fire hydrants", PROJECT, general_classification(), options)

        assert result.produced
        assert "FIRE HYDRANT (6-IN) 1 EA at Station 12+00.00" in result.context
        assert result.confidence == pytest.approx(0.9)

    def test_no_matching_records(self, quantity_handler, classify, options):
        query = "How many manholes are there?"
        result = quantity_handler.handle(query, PROJECT, classify(query), options)
        assert not result.produced


class TestCompleteDataHandler:
    """Test cases for complete system retrieval."""

    def test_named_system(self, loaded_repository, extractor, classify, options, chunk_factory):
        loaded_repository.add_chunks([
            chunk_factory("MATCH LINE - WATER LINE 'A' STA 4+38.83 SEE SHEET CU102", sheet_number="C-103"),
        ])
        handler = CompleteDataHandler(loaded_repository, extractor)
        query = "What is the total length of water line A?"

        result = handler.handle(query, PROJECT, classify(query), options)

        assert result.produced
        assert result.data["chunks"] == 2
        assert result.sheet_numbers == ["C-101", "C-102"]
        assert result.confidence == 0.8
        assert "MATCH LINE" not in result.context

    def test_dominant_system_detected(self, loaded_repository, extractor, options):
        handler = CompleteDataHandler(loaded_repository, extractor)

        result = handler.handle("give me everything", PROJECT, general_classification(), options)

        assert result.produced
        assert result.data["system_name"] == "Water Line"
        assert result.data["auto_detected"]
        assert "system auto-detected" in result.context

    def test_no_dominant_system(self, extractor):
        repository = Mock()
        repository.count_system_mentions.return_value = {"WATER LINE": 5, "SEWER": 5}
        handler = CompleteDataHandler(repository, extractor)
        assert handler.detect_dominant_system(PROJECT) is None

    def test_empty_project(self, repository, extractor, options):
        handler = CompleteDataHandler(repository, extractor)
        result = handler.handle("anything", "empty", general_classification(), options)
        assert not result.produced

    @pytest.mark.parametrize(
        "content,expected",
        [
            ("MATCH LINE - WATER LINE 'A' STA 4+38.83 SEE SHEET CU102", True),
            ("MATCH LINE STA 18+00 12-IN GATE VALVE STA 18+10", False),
            ("WATER LINE A 12-IN TEE STA 18+75", False),
            ("", False),
        ],
    )
    def test_match_line_detection(self, content, expected):
        assert is_match_line_only(content) is expected


class TestSemanticHandler:
    """Test cases for similarity search and re-ranking."""

    def test_weak_matches_dropped(self, vector_service_factory, chunk_factory, classify, options):
        vector_service = vector_service_factory([
            chunk_factory("12-IN GATE VALVE STA 10+50", similarity=0.9),
            chunk_factory("GATE VALVE BOX DETAIL", sheet_number="C-501", sheet_type="detail", similarity=0.6),
            chunk_factory("TITLE BLOCK", sheet_number="G-000", sheet_type="title", similarity=0.1),
        ])
        query = "How many gate valves are there?"

        result = SemanticHandler(vector_service).handle(query, PROJECT, classify(query), options)

        assert result.produced
        assert result.data["results"] == 2
        assert result.confidence == pytest.approx(0.75)
        assert result.sheet_numbers == ["C-101", "C-501"]
        assert vector_service.calls[0]["limit"] == 30

    def test_confidence_capped(self, vector_service_factory, chunk_factory, classify, options):
        vector_service = vector_service_factory([chunk_factory("GATE VALVE", similarity=0.99)])
        query = "How many gate valves are there?"
        result = SemanticHandler(vector_service).handle(query, PROJECT, classify(query), options)
        assert result.confidence == 0.85

    def test_unfiltered_retry(self, chunk_factory, classify, options):
        vector_service = Mock()
        vector_service.semantic_search.side_effect = [[], [chunk_factory("DETAIL 3 THRUST BLOCK", similarity=0.7)]]
        query = "Show me detail 3 on sheet C-501"

        result = SemanticHandler(vector_service).handle(query, PROJECT, classify(query), options)

        assert result.produced
        first, second = vector_service.semantic_search.call_args_list
        assert first.kwargs["filters"] == {"sheet_number": "C-501"}
        assert "filters" not in second.kwargs

    def test_index_only_results_have_caution(self, vector_service_factory, chunk_factory, classify, options):
        vector_service = vector_service_factory([
            chunk_factory("SHEET INDEX: C-101 WATER PLAN", sheet_number="G-001", sheet_type="index",
                          similarity=0.9),
        ])
        query = "What is the spec for pipe bedding?"
        result = SemanticHandler(vector_service).handle(query, PROJECT, classify(query), options)
        assert result.cautions == ["This answer may come from an index sheet and could be incomplete."]

    def test_rerank_prefers_drawing_sheets(self, chunk_factory, classify):
        index_chunk = chunk_factory("GATE VALVE QTY 4", sheet_number="G-001", sheet_type="index", similarity=0.8)
        plan_chunk = chunk_factory("12-IN GATE VALVE", similarity=0.5)

        ranked = rerank([index_chunk, plan_chunk], classify("How many gate valves are there?"))

        assert [chunk for chunk, _ in ranked] == [plan_chunk, index_chunk]

    def test_station_boost(self, chunk_factory):
        chunk = chunk_factory("HYDRANT", stations=("15+50",))
        assert station_boost("15+00", chunk) == pytest.approx(0.18)
        assert station_boost("25+00", chunk) == 0.0
        assert station_boost(None, chunk) == 0.0


class TestVisualHandler:
    """Test cases for on-demand visual inspection."""

    @pytest.mark.parametrize(
        "query,task",
        [
            ("What utilities cross water line A?", VisualTask.FIND_CROSSINGS),
            ("How many gate valves on sheet C-101?", VisualTask.COUNT_COMPONENTS),
            ("How many 45 bends?", VisualTask.COUNT_COMPONENTS),
            ("What is the length of water line A?", VisualTask.MEASURE_LENGTH),
            ("What is at station 15+00?", VisualTask.LOCATE_STATION),
        ],
    )
    def test_determine_visual_task(self, extractor, query, task):
        assert determine_visual_task(query, extractor) == task

    @pytest.fixture
    def images(self):
        return [SheetImage("C-101", b"png-1"), SheetImage("C-102", b"png-2")]

    def _handler(self, repository, vision, images, entity_config, extractor):
        image_provider = Mock()
        image_provider.get_sheet_images.return_value = images
        return VisualHandler(
            repository, vision, image_provider, QuantityReconciler(entity_config), extractor
        )

    def test_count_components(self, loaded_repository, images, entity_config, extractor, classify,
                              options, component_factory):
        found = {
            "C-101": [component_factory("GATE VALVE", "12-IN", "10+50")],
            "C-102": [
                component_factory("GATE VALVE", "12-IN", "10+50", sheet_number="C-102", confidence=0.8),
                component_factory("GATE VALVE", "12-IN", "14+20", sheet_number="C-102", confidence=0.85),
            ],
        }
        vision = Mock()
        vision.analyze_sheet.side_effect = lambda sheet, profile, params=None: VisionExtraction(
            sheet.sheet_number, components=found[sheet.sheet_number], cost_usd=0.002
        )
        handler = self._handler(loaded_repository, vision, images, entity_config, extractor)
        query = "How many 12 inch gate valves are there?"

        result = asyncio.run(handler.handle(query, PROJECT, classify(query), options))

        assert result.produced
        assert "**TOTAL: 2 gate valve(s)**" in result.context
        assert result.data["visual_task"]["task"] == "count_components"
        assert result.data["sheets_analyzed"] == 2
        assert result.data["cost_usd"] == pytest.approx(0.004)
        assert vision.analyze_sheet.call_args.args[1] == InstructionProfile.COMPONENT_EXTRACTION

    def test_crossings_use_crossing_profile(self, loaded_repository, images, entity_config, extractor,
                                            classify, options):
        def analyze(sheet, profile, params=None):
            if sheet.sheet_number == "C-102":
                raise VisionServiceError("timeout")
            return VisionExtraction(
                sheet.sheet_number,
                crossings=[UtilityCrossing("GAS", "Gas", "16+10", is_existing=True, sheet_number="C-101")],
            )

        vision = Mock()
        vision.analyze_sheet.side_effect = analyze
        handler = self._handler(loaded_repository, vision, images, entity_config, extractor)
        query = "What utilities cross water line A?"

        result = asyncio.run(handler.handle(query, PROJECT, classify(query), options))

        assert result.produced
        assert "Gas (GAS)" in result.context
        assert result.warnings == ["Visual analysis failed on 1 of 2 sheets."]
        assert vision.analyze_sheet.call_args.args[1] == InstructionProfile.CROSSING_DETECTION

    def test_no_sheets(self, repository, images, entity_config, extractor, classify, options):
        handler = self._handler(repository, Mock(), images, entity_config, extractor)
        query = "How many gate valves are there?"
        result = asyncio.run(handler.handle(query, PROJECT, classify(query), options))
        assert not result.produced
        assert result.detail == "no sheets available for visual analysis"

    def test_no_images(self, loaded_repository, entity_config, extractor, classify, options):
        handler = self._handler(loaded_repository, Mock(), [], entity_config, extractor)
        query = "How many gate valves are there?"
        result = asyncio.run(handler.handle(query, PROJECT, classify(query), options))
        assert result.detail == "no sheet images available"

    def test_build_task_params(self, loaded_repository, entity_config, extractor, classify):
        handler = self._handler(loaded_repository, Mock(), [], entity_config, extractor)
        query = "Where is the fire hydrant near station 15+00?"

        params = handler.build_task_params(query, classify(query))

        assert params.task == VisualTask.COUNT_COMPONENTS
        assert params.component_type == "fire hydrant"
        assert params.station == "15+00"
