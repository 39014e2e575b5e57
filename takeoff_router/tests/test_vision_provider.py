# test_vision_provider.py
"""Tests for the vision provider and its reply parsing."""

import json
from unittest.mock import Mock

import pytest

from takeoff_router.core import InstructionProfile, SheetImage, SourceContext, TerminationType, settings
from takeoff_router.core.exceptions import VisionServiceError
from takeoff_router.providers.vision_providers import (
    GroqVisionProvider,
    build_task_prompt,
    estimate_cost,
    parse_extraction_payload,
    pricing_for,
    strip_code_fences,
)

PAYLOAD = {
    "sheet_number": "C-101",
    "sheet_type": "plan_profile",
    "components": [
        {"name": "gate valve", "size": "12-IN", "quantity": 1, "station": "13+68.83",
         "source_context": "profile_view", "confidence": 0.9},
        {"size": "8-IN", "quantity": 1},
    ],
    "termination_points": [
        {"utility_name": "Water Line A", "termination_type": "begin", "station": "0+00", "confidence": 0.95},
        {"utility_name": "Water Line A", "termination_type": "MIDDLE", "station": "5+00"},
    ],
    "crossings": [
        {"crossing_utility_code": "ss", "full_name": "Sanitary Sewer", "station": "14+20.00",
         "elevation": "28.5", "is_existing": True},
    ],
}


@pytest.fixture
def sheet():
    return SheetImage("C-101", b"\x89PNG fake bytes")


@pytest.fixture
def unconfigured_provider(monkeypatch):
    monkeypatch.setattr(settings, "GROQ_API_KEY", None)
    return GroqVisionProvider(model_name="meta-llama/llama-4-scout-17b-16e-instruct")


class TestPayloadParsing:
    """Test cases for turning model replies into typed records."""

    def test_parse_payload(self):
        extraction = parse_extraction_payload(PAYLOAD, "C-999")

        assert extraction.sheet_number == "C-101"
        assert extraction.sheet_type == "plan_profile"
        assert len(extraction.components) == 1
        assert extraction.components[0].source_context == SourceContext.PROFILE_VIEW
        assert extraction.components[0].sheet_number == "C-101"
        assert extraction.termination_points[0].termination_type == TerminationType.BEGIN
        assert extraction.termination_points[0].station_numeric == 0.0
        assert extraction.crossings[0].crossing_utility_code == "SS"
        assert extraction.crossings[0].elevation == 28.5
        assert len(extraction.rejected) == 2

    def test_index_sheet_defaults_source_context(self):
        payload = {"sheet_type": "index", "components": [{"name": "gate valve", "quantity": 4}]}
        extraction = parse_extraction_payload(payload, "G-001")

        assert extraction.sheet_number == "G-001"
        assert extraction.components[0].is_index_sourced

    def test_empty_payload(self):
        extraction = parse_extraction_payload({}, "C-101")
        assert extraction.components == []
        assert extraction.rejected == []

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'


class TestPrompts:
    """Test cases for instruction profiles."""

    def test_task_focus_appended(self):
        prompt = build_task_prompt(
            InstructionProfile.COMPONENT_EXTRACTION,
            {"component_type": "gate valve", "size_filter": "12-IN", "station": "15+00"},
        )
        assert prompt.endswith("Focus only on component type: gate valve; size: 12-IN; near station 15+00.")

    def test_no_task_params(self):
        prompt = build_task_prompt(InstructionProfile.CROSSING_DETECTION)
        assert "Focus only" not in prompt
        assert "EXIST 12-IN W" in prompt


class TestCost:
    """Test cases for token pricing."""

    def test_pricing_lookup(self):
        assert pricing_for("meta-llama/llama-4-maverick-17b-128e-instruct") == (0.20, 0.60)
        assert pricing_for("some-other-model") == (0.11, 0.34)

    def test_estimate_cost(self):
        assert estimate_cost("llama-4-scout", 2000, 500) == pytest.approx(0.00039)


class TestGroqVisionProvider:
    """Test cases for the provider with a stubbed chat model."""

    def test_missing_api_key_raises(self, unconfigured_provider, sheet):
        with pytest.raises(VisionServiceError, match="GROQ_API_KEY"):
            unconfigured_provider.analyze_sheet(sheet, InstructionProfile.COMPONENT_EXTRACTION)

    def test_analyze_sheet(self, unconfigured_provider, sheet):
        unconfigured_provider.llm = Mock()
        unconfigured_provider.llm.invoke.return_value = Mock(
            content=f"```json\n{json.dumps(PAYLOAD)}\n```",
            usage_metadata={"input_tokens": 2000, "output_tokens": 500},
        )

        extraction = unconfigured_provider.analyze_sheet(
            sheet, InstructionProfile.COMPONENT_EXTRACTION, {"component_type": "gate valve"}
        )

        assert len(extraction.components) == 1
        assert extraction.input_tokens == 2000
        assert extraction.cost_usd == pytest.approx(0.00039)

        messages = unconfigured_provider.llm.invoke.call_args.args[0]
        text_part, image_part = messages[1].content
        assert text_part["text"].startswith("Sheet C-101.")
        assert "Focus only on component type: gate valve." in text_part["text"]
        assert image_part["image_url"]["url"].startswith("data:image/png;base64,")

    def test_unparseable_reply_raises(self, unconfigured_provider, sheet):
        unconfigured_provider.llm = Mock()
        unconfigured_provider.llm.invoke.return_value = Mock(content="I cannot read this sheet.", usage_metadata=None)

        with pytest.raises(VisionServiceError, match="not valid JSON"):
            unconfigured_provider.analyze_sheet(sheet, InstructionProfile.CROSSING_DETECTION)

    def test_non_object_reply_raises(self, unconfigured_provider, sheet):
        unconfigured_provider.llm = Mock()
        unconfigured_provider.llm.invoke.return_value = Mock(content='["GATE VALVE"]', usage_metadata=None)

        with pytest.raises(VisionServiceError, match="not a JSON object"):
            unconfigured_provider.analyze_sheet(sheet, InstructionProfile.COMPONENT_EXTRACTION)

    def test_empty_object_reply_is_valid(self, unconfigured_provider, sheet):
        unconfigured_provider.llm = Mock()
        unconfigured_provider.llm.invoke.return_value = Mock(content="{}", usage_metadata=None)

        extraction = unconfigured_provider.analyze_sheet(sheet, InstructionProfile.CROSSING_DETECTION)

        assert extraction.crossings == []
        assert extraction.cost_usd == 0.0

    def test_client_errors_wrapped(self, unconfigured_provider, sheet):
        unconfigured_provider.llm = Mock()
        unconfigured_provider.llm.invoke.side_effect = RuntimeError("503 Service Unavailable")

        with pytest.raises(VisionServiceError, match="C-101"):
            unconfigured_provider.analyze_sheet(sheet, InstructionProfile.COMPONENT_EXTRACTION)
