# vision_providers.py
"""
Groq vision provider for drawing-sheet extraction using LangChain

Each call sends one rasterized sheet plus an instruction profile and parses the
model's JSON reply into a ``VisionExtraction``.
"""

import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.utils.utils import convert_to_secret_str
from langchain_groq import ChatGroq

from takeoff_router.core import (
    ExtractedComponent,
    InstructionProfile,
    SheetImage,
    TerminationPoint,
    UtilityCrossing,
    VisionExtraction,
    VisionInterface,
    settings,
)
from takeoff_router.core.exceptions import VisionServiceError

logger = logging.getLogger(__name__)

# USD per million tokens (input, output)
MODEL_PRICING = {
    "llama-4-scout": (0.11, 0.34),
    "llama-4-maverick": (0.20, 0.60),
}
DEFAULT_PRICING = (0.11, 0.34)

SYSTEM_PROMPT = (
    "You are an experienced construction estimator reading civil engineering plan sheets. "
    "Reply with a single JSON object and nothing else."
)

_SHEET_TYPE_INSTRUCTIONS = """First decide what kind of sheet this is.
If it is an INDEX or TABLE OF CONTENTS (a table listing sheets of the plan set), set
"sheet_type" to "index"; quantities read from it must use "source_context": "index_list".
Otherwise use one of: title, plan, profile, plan_profile, detail, section, notes, legend, other."""

PROFILE_PROMPTS = {
    InstructionProfile.CLASSIFICATION: f"""{_SHEET_TYPE_INSTRUCTIONS}

Return:
{{"sheet_number": "C-101", "sheet_type": "plan_profile", "title": "...", "systems": ["Water Line A"]}}""",
    InstructionProfile.COMPONENT_EXTRACTION: f"""{_SHEET_TYPE_INSTRUCTIONS}

Extract what an estimator needs for a take-off. Better to return 5 components with high
confidence than 20 with errors. To avoid counting the same item twice, read components from
the PROFILE VIEW (the band with the horizontal station scale) when one is present.

1. Termination points: labels such as "BEGIN WATER LINE 'A' STA 0+00" or
   "END SD-B STA 32+62.01", often rotated along the pipe.
2. Components: valves, fittings, hydrants, manholes and similar items with size and station.
   Runs of pipe go in as quantities with "unit": "LF".
3. Stations must look like 12+34.56. Never report offsets (2+16-27 RT), road stations
   or match-line stations as component stations.

Return:
{{"sheet_number": "C-101", "sheet_type": "plan_profile",
  "components": [{{"name": "gate valve", "item_type": "gate valve", "size": "12-IN", "quantity": 1,
                  "unit": "EA", "station": "13+68.83", "source_context": "profile_view",
                  "system_name": "Water Line A", "confidence": 0.9}}],
  "termination_points": [{{"utility_name": "Water Line A", "termination_type": "BEGIN",
                          "station": "0+00", "notes": "", "confidence": 0.9}}]}}

source_context is one of drawing_label, callout_box, quantity_table, profile_view, index_list.""",
    InstructionProfile.CROSSING_DETECTION: """Find every OTHER utility that crosses the alignment in the
profile view. Crossing labels look like "EXIST 12-IN W", "SS INV ELEV 28.5", "ELEC" or "FO".
Do not report components of the alignment itself.

Return:
{"sheet_number": "C-101", "sheet_type": "profile",
 "crossings": [{"crossing_utility_code": "W", "full_name": "water", "station": "14+20.00",
                "elevation": 28.5, "is_existing": true, "is_proposed": false, "size": "12-IN",
                "alignment_name": "Water Line A", "notes": "", "confidence": 0.85}]}""",
}

_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


def pricing_for(model_name: str) -> Tuple[float, float]:
    for marker, pricing in MODEL_PRICING.items():
        if marker in model_name:
            return pricing
    return DEFAULT_PRICING


def estimate_cost(model_name: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = pricing_for(model_name)
    return round(
        (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price, 6
    )


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one"""
    return _FENCE.sub("", text.strip()).strip()


def parse_extraction_payload(
    payload: Dict[str, Any], sheet_number: str
) -> VisionExtraction:
    """Turn the model's JSON object into typed records; unusable items are listed in ``rejected``"""
    extraction = VisionExtraction(
        sheet_number=payload.get("sheet_number") or sheet_number,
        sheet_type=payload.get("sheet_type"),
    )

    for item in payload.get("components") or []:
        try:
            data = dict(item)
            data.setdefault("sheet_number", extraction.sheet_number)
            if extraction.sheet_type == "index" and not data.get("source_context"):
                data["source_context"] = "index_list"
            extraction.components.append(ExtractedComponent.from_dict(data))
        except (KeyError, TypeError, ValueError) as e:
            extraction.rejected.append(f"component {item!r}: {e}")

    for item in payload.get("termination_points") or []:
        try:
            data = dict(item)
            data.setdefault("sheet_number", extraction.sheet_number)
            extraction.termination_points.append(TerminationPoint.from_dict(data))
        except (KeyError, TypeError, ValueError) as e:
            extraction.rejected.append(f"termination point {item!r}: {e}")

    for item in payload.get("crossings") or []:
        try:
            data = dict(item)
            data.setdefault("sheet_number", extraction.sheet_number)
            extraction.crossings.append(UtilityCrossing.from_dict(data))
        except (KeyError, TypeError, ValueError) as e:
            extraction.rejected.append(f"crossing {item!r}: {e}")

    if extraction.rejected:
        logger.warning(
            f"Sheet {extraction.sheet_number}: rejected {len(extraction.rejected)} malformed items"
        )
    return extraction


def build_task_prompt(profile: InstructionProfile, task_params: Optional[Dict[str, Any]] = None) -> str:
    prompt = PROFILE_PROMPTS[profile]
    if not task_params:
        return prompt

    focus: List[str] = []
    if task_params.get("component_type"):
        focus.append(f"component type: {task_params['component_type']}")
    if task_params.get("size_filter"):
        focus.append(f"size: {task_params['size_filter']}")
    if task_params.get("utility_name"):
        focus.append(f"alignment: {task_params['utility_name']}")
    if task_params.get("station"):
        focus.append(f"near station {task_params['station']}")
    if focus:
        prompt += "\n\nFocus only on " + "; ".join(focus) + "."
    return prompt


class GroqVisionProvider(VisionInterface):
    """
    Groq multimodal chat model via LangChain

    Setup:
    1. Sign up at https://console.groq.com/
    2. Set environment variable: export GROQ_API_KEY=your_key
    """

    def __init__(self, model_name: Optional[str] = None, api_key: Optional[str] = None):
        self.model_name = model_name or settings.VISION_MODEL
        api_key = api_key or settings.GROQ_API_KEY

        if not api_key:
            logger.warning("GROQ_API_KEY not set; visual analysis and ingestion are unavailable")

            class UnconfiguredVisionClient:
                def invoke(self, messages):
                    raise VisionServiceError(
                        "Groq API key not configured. Please set GROQ_API_KEY environment variable."
                    )

            self.llm = UnconfiguredVisionClient()
        else:
            logger.info(f"Using Groq vision model {self.model_name}")
            self.llm = ChatGroq(
                model=self.model_name,
                temperature=0,
                max_tokens=settings.VISION_MAX_TOKENS,
                api_key=convert_to_secret_str(api_key),
            )

    def _messages(self, sheet: SheetImage, prompt: str) -> List[Any]:
        encoded = base64.b64encode(sheet.image).decode("ascii")
        return [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(
                content=[
                    {"type": "text", "text": f"Sheet {sheet.sheet_number}.\n\n{prompt}"},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{sheet.mime_type};base64,{encoded}"},
                    },
                ]
            ),
        ]

    def analyze_sheet(
        self,
        sheet: SheetImage,
        profile: InstructionProfile,
        task_params: Optional[Dict[str, Any]] = None,
    ) -> VisionExtraction:
        prompt = build_task_prompt(profile, task_params)
        try:
            response = self.llm.invoke(self._messages(sheet, prompt))
        except VisionServiceError:
            raise
        except Exception as e:
            logger.error(f"Vision call failed for sheet {sheet.sheet_number}: {str(e)}")
            raise VisionServiceError(f"Vision call failed for sheet {sheet.sheet_number}: {str(e)}") from e

        raw = response.content if isinstance(response.content, str) else str(response.content)
        try:
            payload = json.loads(strip_code_fences(raw))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse vision response for sheet {sheet.sheet_number}: {e}")
            raise VisionServiceError(
                f"Vision response for sheet {sheet.sheet_number} is not valid JSON"
            ) from e
        if not isinstance(payload, dict):
            raise VisionServiceError(
                f"Vision response for sheet {sheet.sheet_number} is not a JSON object"
            )

        extraction = parse_extraction_payload(payload, sheet.sheet_number)

        usage = getattr(response, "usage_metadata", None) or {}
        extraction.input_tokens = int(usage.get("input_tokens", 0))
        extraction.output_tokens = int(usage.get("output_tokens", 0))
        extraction.cost_usd = estimate_cost(
            self.model_name, extraction.input_tokens, extraction.output_tokens
        )
        logger.info(
            f"[Vision] Sheet {sheet.sheet_number}: {extraction.input_tokens} input, "
            f"{extraction.output_tokens} output tokens | Cost: ${extraction.cost_usd:.4f}"
        )
        return extraction


def create_vision_provider(model_name: Optional[str] = None) -> VisionInterface:
    """Factory function to create the configured vision provider"""
    return GroqVisionProvider(model_name=model_name)
