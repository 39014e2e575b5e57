# utils.py
"""Formatting helpers that turn retrieval results into router context."""

from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from takeoff_router.core import Config, DocumentChunk, ExtractedComponent, UtilityCrossing
from takeoff_router.core.normalize import normalize_size
from takeoff_router.services.quantity_reconciler import (
    AggregationResult,
    LengthResolution,
    ReconciliationResult,
)

LENGTH_METHOD_DESCRIPTIONS = {
    "termination_points": "Calculated from actual drawing termination points (BEGIN/END labels)",
    "structured_quantity": "From structured quantity records",
    "index_quantity": "From an index sheet quantity listing",
}


def _fmt_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:,.2f}"


def _percent(value: float) -> str:
    return f"{value * 100:.0f}%"


class AnswerFormatter:
    """Markdown renderings of counts, lengths, crossings and chunks"""

    @staticmethod
    def component_count(
        component_type: str,
        result: ReconciliationResult,
        size_filter: Optional[str] = None,
        utility_filter: Optional[str] = None,
    ) -> str:
        size_desc = f"{normalize_size(size_filter)} " if size_filter else ""
        utility_desc = f" for {utility_filter}" if utility_filter else ""
        lines = [f"**{size_desc}{component_type.capitalize()} Count{utility_desc}:**", ""]

        sizes = list(result.by_size)
        if len(sizes) > 1 or (sizes and sizes[0] != "Unknown"):
            lines.append("| Size | Count |")
            lines.append("|------|-------|")
            for group in result.groups:
                lines.append(f"| {group.size} | {_fmt_number(group.quantity)} |")
            lines.append("")

        if len(result.items) <= Config.MAX_DETAIL_ROWS:
            lines.append("**Detail:**")
            lines.append("| Sheet | Station | Size | Qty | Item |")
            lines.append("|-------|---------|------|-----|------|")
            for item in result.items:
                lines.append(
                    f"| {item.sheet_number or '-'} | {item.station or '-'} | "
                    f"{normalize_size(item.size) or '-'} | {_fmt_number(item.quantity)} | {item.name} |"
                )
            lines.append("")

        lines.append(f"**TOTAL: {_fmt_number(result.total_count)} {component_type}(s)**")
        if result.duplicates_removed:
            lines.append(f"({result.duplicates_removed} duplicate records removed)")
        lines.append(f"Confidence: {_percent(result.confidence)}")
        lines.append("Source: Vision-extracted data from construction plans")
        return "\n".join(lines)

    @staticmethod
    def aggregation(result: AggregationResult) -> str:
        lines = [f"**{result.summary_line}**"]
        if result.breakdown:
            lines.append("")
            lines.append("**Breakdown:**")
            lines.extend(result.breakdown)
        lines.append("")
        lines.append(f"Confidence: {_percent(result.confidence)}")
        return "\n".join(lines)

    @staticmethod
    def length(resolution: LengthResolution) -> str:
        lines = [f"**{resolution.utility_name} Length:**", ""]
        length = resolution.length_result
        if length is not None:
            lines.append("| | Station | Sheet |")
            lines.append("|--|---------|-------|")
            lines.append(f"| BEGIN | {length.begin_station} | {length.begin_sheet or '-'} |")
            lines.append(f"| END | {length.end_station} | {length.end_sheet or '-'} |")
            lines.append("")
            lines.append("**Calculation:**")
            lines.append(
                f"{length.end_station} - {length.begin_station} = **{length.length_lf:,.2f} LF**"
            )
        else:
            lines.append(f"**Total: {resolution.length_lf:,.2f} LF**")
            for record in resolution.records[: Config.MAX_DETAIL_ROWS]:
                sheet = f" (Sheet {record.sheet_number})" if record.sheet_number else ""
                lines.append(f"- {record.name}: {_fmt_number(record.quantity)} {record.unit or 'LF'}{sheet}")
        lines.append("")
        lines.append(f"Confidence: {_percent(resolution.confidence)}")
        lines.append(f"Method: {LENGTH_METHOD_DESCRIPTIONS.get(resolution.method, resolution.method)}")
        if resolution.cautions:
            lines.append("")
            lines.append("**Caution:**")
            lines.extend(f"- {caution}" for caution in resolution.cautions)
        if resolution.warnings:
            lines.append("")
            lines.append("**Warnings:**")
            lines.extend(f"- {warning}" for warning in resolution.warnings)
        return "\n".join(lines)

    @staticmethod
    def crossing_summary(crossings: List[UtilityCrossing]) -> List[Tuple[str, int, int, int]]:
        """(utility label, total, existing, proposed) per crossing utility"""
        counts: "OrderedDict[str, List[int]]" = OrderedDict()
        for crossing in crossings:
            label = f"{crossing.full_name} ({crossing.crossing_utility_code})"
            row = counts.setdefault(label, [0, 0, 0])
            row[0] += 1
            row[1] += int(crossing.is_existing)
            row[2] += int(crossing.is_proposed)
        return [(label, *row) for label, row in counts.items()]

    @staticmethod
    def crossings(crossings: List[UtilityCrossing], alignment: Optional[str] = None) -> str:
        heading = f"**Utility Crossings{f' ({alignment})' if alignment else ''}:**"
        lines = [heading, ""]

        lines.append("**Summary by Utility Type:**")
        lines.append("| Utility | Total | Existing | Proposed |")
        lines.append("|---------|-------|----------|----------|")
        for label, total, existing, proposed in AnswerFormatter.crossing_summary(crossings):
            lines.append(f"| {label} | {total} | {existing} | {proposed} |")
        lines.append("")

        lines.append("**Crossing Details:**")
        lines.append("| Station | Utility | Elevation | Type | Size | Sheet |")
        lines.append("|---------|---------|-----------|------|------|-------|")
        for crossing in crossings[: Config.MAX_CROSSING_ROWS]:
            kind = "Existing" if crossing.is_existing else ("Proposed" if crossing.is_proposed else "Unknown")
            elevation = f"{crossing.elevation:.2f} ft" if crossing.elevation is not None else "-"
            lines.append(
                f"| {crossing.station or '-'} | {crossing.full_name} ({crossing.crossing_utility_code}) | "
                f"{elevation} | {kind} | {crossing.size or '-'} | {crossing.sheet_number or '-'} |"
            )
        if len(crossings) > Config.MAX_CROSSING_ROWS:
            lines.append(f"\n*... and {len(crossings) - Config.MAX_CROSSING_ROWS} more crossings*")

        lines.append(f"\n**TOTAL: {len(crossings)} utility crossing(s)**")
        return "\n".join(lines)

    @staticmethod
    def quantity_matches(matches: List[Tuple[ExtractedComponent, float]]) -> str:
        lines = ["**Matching take-off items:**"]
        for component, similarity in matches:
            parts = [component.name]
            if component.size:
                parts.append(f"({normalize_size(component.size)})")
            parts.append(f"{_fmt_number(component.quantity)} {(component.unit or 'EA').upper()}")
            if component.station:
                parts.append(f"at Station {component.station}")
            if component.sheet_number:
                parts.append(f"(Sheet {component.sheet_number})")
            parts.append(f"({_percent(component.confidence)} confidence)")
            lines.append(f"• {' '.join(parts)}")
        return "\n".join(lines)

    @staticmethod
    def chunks(chunks: List[DocumentChunk], heading: str) -> str:
        lines = [heading, ""]
        for chunk in chunks:
            source = f"Sheet {chunk.sheet_number}" if chunk.sheet_number else "Unknown sheet"
            if chunk.sheet_type:
                source += f", {chunk.sheet_type}"
            if chunk.similarity is not None:
                source += f", relevance {chunk.similarity * 100:.1f}%"
            lines.append(f"[{source}]")
            lines.append(chunk.content.strip())
            lines.append("")
        return "\n".join(lines).rstrip()

    @staticmethod
    def sheets_of_chunks(chunks: List[DocumentChunk]) -> List[str]:
        seen: Dict[str, bool] = OrderedDict()
        for chunk in chunks:
            if chunk.sheet_number:
                seen[chunk.sheet_number] = True
        return list(seen)
