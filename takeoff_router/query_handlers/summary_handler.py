# summary_handler.py
"""Handler for project summary questions."""

from typing import List

from takeoff_router.core import SummaryRow
from takeoff_router.data.base_repository import BaseProjectRepository
from .types import QueryClassification, RouteOptions, StepResult


def format_summary_table(rows: List[SummaryRow]) -> str:
    lines = [
        "| Item Type | Count | Documents | Avg Confidence |",
        "|---|---|---|---|",
    ]
    for row in rows:
        total = int(row.total_quantity) if float(row.total_quantity).is_integer() else round(row.total_quantity, 2)
        lines.append(
            f"| {row.item_type} | {total} | {row.document_count} | {row.avg_confidence * 100:.0f}% |"
        )
    return "\n".join(lines)


class SummaryHandler:
    """Answers from the pre-aggregated per-project summary"""

    def __init__(self, repository: BaseProjectRepository):
        self.repository = repository

    def handle(
        self, query: str, project_id: str, classification: QueryClassification, options: RouteOptions
    ) -> StepResult:
        rows = self.repository.get_project_summary(project_id)
        if not rows:
            return StepResult.empty("project summary is empty")

        total_items = sum(row.item_count for row in rows)
        weighted = sum(row.avg_confidence * row.item_count for row in rows)
        confidence = round(weighted / total_items, 3) if total_items else 0.0

        context = "\n".join(
            [
                f"Project take-off summary ({len(rows)} item types, {total_items} records):",
                "",
                format_summary_table(rows),
            ]
        )
        return StepResult(
            produced=True,
            context=context,
            confidence=confidence,
            detail=f"{len(rows)} item types",
            data={"rows": len(rows)},
        )
