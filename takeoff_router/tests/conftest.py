# conftest.py
"""Pytest configuration and shared fixtures."""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest

from takeoff_router.core import (
    DocumentChunk,
    ExtractedComponent,
    SourceContext,
    TerminationPoint,
    TerminationType,
    UtilityCrossing,
    VectorSearchInterface,
)
from takeoff_router.data.models import DatabaseManager
from takeoff_router.data.sqlalchemy_repository import SQLAlchemyProjectRepository


@pytest.fixture(scope="session")
def test_env():
    """Set up test environment variables."""
    # Store original values
    original_env = {}
    test_vars = {
        'ENVIRONMENT': 'test',
        'GROQ_API_KEY': 'test_key_12345',
    }

    for key, value in test_vars.items():
        original_env[key] = os.environ.get(key)
        os.environ[key] = value

    yield

    # Restore original values
    for key, original_value in original_env.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
def temp_db():
    """Create a temporary test database for each test."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as tmp_file:
        temp_db_path = tmp_file.name

    db_manager = DatabaseManager(f'sqlite:///{temp_db_path}')
    db_manager.create_tables()
    try:
        yield db_manager
    finally:
        db_manager.engine.dispose()
        Path(temp_db_path).unlink(missing_ok=True)


@pytest.fixture
def repository(temp_db):
    """Repository opening one session per call on the temporary database."""
    return SQLAlchemyProjectRepository(db_manager=temp_db)


class FakeVectorService(VectorSearchInterface):
    """In-memory vector service returning canned search results."""

    def __init__(self, results: Optional[List[DocumentChunk]] = None, error: Optional[Exception] = None):
        self.results = results or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.added: List[DocumentChunk] = []

    def generate_embedding(self, text: str) -> List[float]:
        return [0.0] * 8

    def add_chunks(self, chunks: List[DocumentChunk]) -> int:
        self.added.extend(chunks)
        return len(chunks)

    def semantic_search(self, project_id, query, limit=10, filters=None):
        self.calls.append({"project_id": project_id, "query": query, "limit": limit, "filters": filters})
        if self.error:
            raise self.error
        return list(self.results)

    def delete_project(self, project_id: str) -> None:
        self.added = [c for c in self.added if c.project_id != project_id]


@pytest.fixture
def fake_vector_service():
    return FakeVectorService()


@pytest.fixture
def vector_service_factory():
    return FakeVectorService


@pytest.fixture
def mock_vision():
    """Create a mock vision provider."""
    vision = Mock()
    vision.analyze_sheet.side_effect = AssertionError("vision should not be called")
    return vision


@pytest.fixture
def mock_image_provider():
    provider = Mock()
    provider.get_sheet_images.return_value = []
    return provider


def make_component(name="GATE VALVE", size="12-IN", station="10+50", **kwargs) -> ExtractedComponent:
    defaults = {
        "sheet_number": "C-101",
        "confidence": 0.9,
        "item_type": "valve",
        "system_name": "WATER LINE A",
    }
    defaults.update(kwargs)
    return ExtractedComponent(name=name, size=size, station=station, **defaults)


@pytest.fixture
def component_factory():
    return make_component


@pytest.fixture
def sample_components():
    """Gate valves and fittings across three sheets, with one cross-sheet duplicate."""
    return [
        make_component("GATE VALVE", "12-IN", "10+50"),
        make_component("GATE VALVE", "12-IN", "14+20", confidence=0.85),
        make_component("GATE VALVE", "8-IN", "18+75", sheet_number="C-102"),
        # Same valve read again off the overlapping sheet
        make_component("GATE VALVE", "12-IN", "14+20", sheet_number="C-102", confidence=0.8),
        make_component("TEE", "12-IN", "18+75", sheet_number="C-102", item_type="fitting"),
        make_component("FIRE HYDRANT", "6-IN", "12+00", item_type="hydrant"),
        make_component(
            "WATER PIPE", "12-IN", None, quantity=1180, unit="LF", item_type="pipe"
        ),
    ]


@pytest.fixture
def sample_termination_points():
    return [
        TerminationPoint("WATER LINE A", TerminationType.BEGIN, "10+00", 1000.0, "C-101", 0.95),
        TerminationPoint("WATER LINE A", TerminationType.END, "22+50", 2250.0, "C-103", 0.9),
    ]


@pytest.fixture
def sample_crossings():
    return [
        UtilityCrossing("ELEC", "Electrical", "11+25", is_existing=True, sheet_number="C-101",
                        alignment_name="WATER LINE A", confidence=0.87),
        UtilityCrossing("SS", "Sanitary Sewer", "15+60", elevation=312.4, size="8-IN",
                        is_existing=True, sheet_number="C-102", alignment_name="WATER LINE A",
                        confidence=0.9),
    ]


def make_chunk(content, sheet_number="C-101", **kwargs) -> DocumentChunk:
    defaults = {"project_id": "proj-1", "sheet_type": "plan_profile", "chunk_type": "callout_box"}
    defaults.update(kwargs)
    return DocumentChunk(content=content, sheet_number=sheet_number, **defaults)


@pytest.fixture
def chunk_factory():
    return make_chunk


@pytest.fixture
def sample_chunks():
    return [
        make_chunk("WATER LINE A BEGIN STA 10+00. INSTALL 12-IN GATE VALVE STA 10+50.",
                   stations=("10+00", "10+50")),
        make_chunk("WATER LINE A 12-IN X 8-IN TEE STA 18+75 WITH 8-IN GATE VALVE.",
                   sheet_number="C-102", stations=("18+75",)),
        make_chunk("MATCH LINE STA 18+00 SEE SHEET C-103", sheet_number="C-102",
                   chunk_type="text", stations=("18+00",)),
        make_chunk("GENERAL NOTES: ALL WATER PIPE SHALL BE PVC C900.", sheet_number="C-001",
                   sheet_type="notes", chunk_type="text"),
    ]


@pytest.fixture
def index_component():
    return make_component(
        "GATE VALVE", None, None, quantity=4, sheet_number="G-001",
        source_context=SourceContext.INDEX_LIST, confidence=0.75,
    )


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )


# Custom collection hook for organizing tests
def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Add markers based on test file name
        if "test_web" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        elif "test_sqlalchemy_repository" in item.nodeid or "test_ingestion" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)

        # Mark slow tests
        if any(keyword in item.nodeid.lower() for keyword in ["performance", "large", "slow"]):
            item.add_marker(pytest.mark.slow)
