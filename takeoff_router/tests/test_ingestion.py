# test_ingestion.py
"""Tests for sheet ingestion and batched vision calls."""

import asyncio
from unittest.mock import Mock

import pytest

from takeoff_router.core import (
    DocumentChunk,
    InstructionProfile,
    SheetImage,
    TerminationPoint,
    TerminationType,
    UtilityCrossing,
    VisionExtraction,
    settings,
)
from takeoff_router.core.exceptions import DatabaseError, VectorServiceError, VisionServiceError
from takeoff_router.providers.vision_providers import GroqVisionProvider
from takeoff_router.services.batching import run_in_batches
from takeoff_router.services.ingestion import (
    SHEET_SUMMARY_CHUNK,
    IngestionReport,
    IngestionService,
    build_sheet_chunk,
)

PROJECT = "proj-1"


@pytest.fixture
def sheets():
    return [
        SheetImage("C-101", b"png-1", document_id="doc-1"),
        SheetImage("C-102", b"png-2", document_id="doc-1"),
        SheetImage("C-103", b"png-3", document_id="doc-1"),
    ]


@pytest.fixture
def vision(component_factory):
    """Vision provider returning fresh extractions per sheet and profile."""
    components = {
        "C-101": [
            component_factory("GATE VALVE", "12-IN", "10+50", confidence=0.9),
            component_factory("FIRE HYDRANT", "6-IN", "12+00", item_type="hydrant"),
        ],
        "C-102": [
            component_factory("GATE VALVE", "12-IN", "10+50.50", sheet_number="C-102", confidence=0.95),
            component_factory("TEE", "12-IN", "18+75", sheet_number="C-102", item_type="fitting"),
            component_factory("TEE", "8-IN", "19+00", sheet_number="C-102", quantity=0),
        ],
    }
    terminations = {
        "C-101": [
            TerminationPoint("WATER LINE A", TerminationType.BEGIN, "10+00", 1000.0, "C-101"),
            TerminationPoint("WATER LINE A", TerminationType.END, "MATCH LINE 4+38.83", None, "C-101"),
        ],
    }

    def analyze_sheet(sheet, profile, task_params=None):
        if sheet.sheet_number == "C-103":
            raise VisionServiceError("rate limited")
        if profile == InstructionProfile.COMPONENT_EXTRACTION:
            return VisionExtraction(
                sheet_number=sheet.sheet_number,
                sheet_type="plan_profile",
                components=list(components.get(sheet.sheet_number, [])),
                termination_points=list(terminations.get(sheet.sheet_number, [])),
                input_tokens=1000,
                output_tokens=200,
                cost_usd=0.001,
                rejected=["unreadable callout"] if sheet.sheet_number == "C-101" else [],
            )
        crossings = []
        if sheet.sheet_number == "C-101":
            crossings.append(UtilityCrossing("ELEC", "Electrical", "11+25", sheet_number="C-101",
                                             alignment_name="WATER LINE A"))
        return VisionExtraction(
            sheet_number=sheet.sheet_number,
            crossings=crossings,
            input_tokens=500,
            output_tokens=50,
            cost_usd=0.0005,
        )

    provider = Mock()
    provider.analyze_sheet.side_effect = analyze_sheet
    return provider


class TestIngestionService:
    """Test cases for ingesting a plan set."""

    def test_ingest_project(self, repository, vision, sheets):
        service = IngestionService(repository, vision, batch_size=2, batch_delay=0)

        report = asyncio.run(service.ingest_project(PROJECT, sheets))

        assert report.sheets_processed == 2
        assert report.sheets_failed == 1
        assert report.failed_sheets == ["C-103"]
        assert report.components_added == 3
        assert report.components_replaced == 1
        assert report.rejected == 3
        assert report.termination_points == 1
        assert report.crossings == 1
        assert report.chunks_indexed == 2
        assert report.input_tokens == 3000
        assert report.cost_usd == pytest.approx(0.003)
        assert vision.analyze_sheet.call_count == 5

    def test_stored_records_after_merge(self, repository, vision, sheets):
        service = IngestionService(repository, vision, batch_size=2, batch_delay=0)
        asyncio.run(service.ingest_project(PROJECT, sheets))

        components = repository.get_components(PROJECT)
        valves = [c for c in components if c.name == "GATE VALVE"]
        assert len(components) == 3
        assert len(valves) == 1
        assert valves[0].confidence == 0.95
        assert valves[0].document_id == "doc-1"

        points = repository.get_termination_points(PROJECT, "WATER LINE A")
        assert [p.termination_type for p in points] == [TerminationType.BEGIN]

    def test_reingesting_skips_duplicates(self, repository, vision, sheets):
        service = IngestionService(repository, vision, batch_size=3, batch_delay=0)
        asyncio.run(service.ingest_project(PROJECT, sheets[:1]))

        report = asyncio.run(service.ingest_project(PROJECT, sheets[:1]))

        assert report.components_added == 0
        assert report.duplicates_skipped == 2
        assert len(repository.get_components(PROJECT)) == 2

    def test_storage_failure_marks_sheet_failed(self, vision, sheets):
        repository = Mock()
        repository.get_components.return_value = []
        repository.add_components.side_effect = DatabaseError("disk full")
        service = IngestionService(repository, vision, batch_size=2, batch_delay=0)

        report = asyncio.run(service.ingest_project(PROJECT, sheets[:1]))

        assert report.sheets_processed == 0
        assert report.failed_sheets == ["C-101"]

    def test_no_sheets(self, repository, mock_vision):
        service = IngestionService(repository, mock_vision)
        report = asyncio.run(service.ingest_project(PROJECT, []))
        assert report.to_dict()["sheets_processed"] == 0

    def test_extract_sheet_combines_profiles(self, repository, vision, sheets):
        service = IngestionService(repository, vision)
        extraction = service.extract_sheet(sheets[0])

        assert len(extraction.components) == 2
        assert len(extraction.crossings) == 1
        assert extraction.input_tokens == 1500
        assert extraction.sheet_type == "plan_profile"

    def test_index_chunks(self, repository, mock_vision, fake_vector_service, sample_chunks):
        service = IngestionService(repository, mock_vision, vector_service=fake_vector_service)
        report = IngestionReport(PROJECT)

        assert service.index_chunks(sample_chunks, report) == 4
        assert len(fake_vector_service.added) == 4
        assert report.chunks_indexed == 4
        assert len(repository.get_system_chunks(PROJECT)) == 4

    def test_index_chunks_survives_embedding_failure(self, repository, mock_vision, sample_chunks):
        vector_service = Mock()
        vector_service.add_chunks.side_effect = VectorServiceError("collection locked")
        service = IngestionService(repository, mock_vision, vector_service=vector_service)

        assert service.index_chunks(sample_chunks) == 4
        assert len(repository.get_system_chunks(PROJECT)) == 4

    def test_unreadable_vision_reply_fails_sheet(self, monkeypatch, repository, sheets):
        monkeypatch.setattr(settings, "GROQ_API_KEY", None)
        provider = GroqVisionProvider(model_name="meta-llama/llama-4-scout-17b-16e-instruct")
        provider.llm = Mock()
        provider.llm.invoke.return_value = Mock(
            content="Sorry, I cannot read this sheet.", usage_metadata=None
        )
        service = IngestionService(repository, provider, batch_size=2, batch_delay=0)

        report = asyncio.run(service.ingest_project(PROJECT, sheets[:1]))

        assert report.sheets_failed == 1
        assert report.failed_sheets == ["C-101"]
        assert report.sheets_processed == 0
        assert repository.list_sheets(PROJECT) == []


class TestSheetRecords:
    """Test cases for the per-sheet record written alongside extracted rows."""

    def test_ingested_sheets_are_listed(self, repository, vision, sheets):
        service = IngestionService(repository, vision, batch_size=2, batch_delay=0)
        asyncio.run(service.ingest_project(PROJECT, sheets))

        listed = repository.list_sheets(PROJECT)

        assert [s.sheet_number for s in listed] == ["C-101", "C-102"]
        assert {s.sheet_type for s in listed} == {"plan_profile"}
        assert {s.document_id for s in listed} == {"doc-1"}
        assert repository.get_capabilities(PROJECT)["document_chunks"] is True

    def test_sheet_contents_reach_complete_data(self, repository, vision, sheets):
        service = IngestionService(repository, vision, batch_size=2, batch_delay=0)
        asyncio.run(service.ingest_project(PROJECT, sheets))

        chunks = repository.get_system_chunks(
            PROJECT, name_variations=["WATER LINE A"], chunk_types=[SHEET_SUMMARY_CHUNK]
        )
        first = next(c for c in chunks if c.sheet_number == "C-101")

        assert first.content.startswith("SHEET C-101 (plan_profile).")
        assert "12-IN GATE VALVE STA 10+50 (WATER LINE A)." in first.content
        assert "WATER LINE A BEGIN STA 10+00." in first.content
        assert "ELEC (Electrical) CROSSING WATER LINE A STA 11+25." in first.content
        assert "MATCH LINE" not in first.content
        assert first.stations == ("10+00", "10+50", "11+25", "12+00")

    def test_reingesting_replaces_sheet_record(self, repository, vision, sheets, fake_vector_service):
        service = IngestionService(
            repository, vision, vector_service=fake_vector_service, batch_size=2, batch_delay=0
        )
        asyncio.run(service.ingest_project(PROJECT, sheets[:1]))
        asyncio.run(service.ingest_project(PROJECT, sheets[:1]))

        chunks = repository.get_system_chunks(PROJECT, chunk_types=[SHEET_SUMMARY_CHUNK])
        assert len(chunks) == 1
        ids = {c.chunk_id for c in fake_vector_service.added}
        assert ids == {f"{PROJECT}_doc-1_C-101_{SHEET_SUMMARY_CHUNK}"}

    def test_build_sheet_chunk_without_callouts(self):
        extraction = VisionExtraction(sheet_number="G-001", sheet_type="index")

        chunk = build_sheet_chunk(PROJECT, "G-001", extraction, [], [], page_number=1)

        assert isinstance(chunk, DocumentChunk)
        assert chunk.content == "SHEET G-001 (index). No callouts extracted."
        assert chunk.stations == ()
        assert chunk.chunk_type == SHEET_SUMMARY_CHUNK
        assert chunk.page_number == 1

    def test_quantity_shown_for_bulk_items(self, component_factory):
        pipe = component_factory("WATER PIPE", "12-IN", None, quantity=1180, unit="LF", item_type="pipe")
        extraction = VisionExtraction(sheet_number="C-101", sheet_type="plan_profile")

        chunk = build_sheet_chunk(PROJECT, "C-101", extraction, [pipe], [])

        assert "12-IN WATER PIPE QTY 1180 LF (WATER LINE A)." in chunk.content


class TestRunInBatches:
    """Test cases for rate-limited batch execution."""

    def test_failures_do_not_stop_remaining_items(self):
        async def worker(item):
            if item == 3:
                raise ValueError("bad item")
            return item * 10

        outcomes = asyncio.run(run_in_batches([1, 2, 3, 4, 5], worker, batch_size=2, delay_seconds=0))

        assert [item for item, _ in outcomes] == [1, 2, 3, 4, 5]
        assert [result for _, result in outcomes if not isinstance(result, Exception)] == [10, 20, 40, 50]
        assert isinstance(outcomes[2][1], ValueError)

    def test_batches_run_in_sequence(self):
        running = []
        peak = []

        async def worker(item):
            running.append(item)
            peak.append(len(running))
            await asyncio.sleep(0)
            running.remove(item)
            return item

        asyncio.run(run_in_batches(list(range(7)), worker, batch_size=3, delay_seconds=0))
        assert max(peak) <= 3

    def test_empty_input(self):
        async def worker(item):
            return item

        assert asyncio.run(run_in_batches([], worker, batch_size=2, delay_seconds=0)) == []
