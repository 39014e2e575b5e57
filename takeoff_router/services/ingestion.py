# ingestion.py
"""Turns drawing sheets into stored structured records.

Each sheet image goes to the vision service under the component and crossing
instruction profiles. Extracted components are validated, merged against the
records already stored for the project, and written. Sheets are processed in
small batches to stay under the vision API rate limit; one sheet failing never
stops the rest.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from takeoff_router.core import (
    DocumentChunk,
    ExtractedComponent,
    InstructionProfile,
    SheetImage,
    TerminationPoint,
    UtilityCrossing,
    VectorSearchInterface,
    VisionExtraction,
    VisionInterface,
    settings,
)
from takeoff_router.core.exceptions import VectorServiceError
from takeoff_router.core.stations import is_valid_station, parse_station
from takeoff_router.data.base_repository import BaseProjectRepository
from .batching import run_in_batches
from .quantity_reconciler import QuantityReconciler

logger = logging.getLogger(__name__)

INGEST_PROFILES = [InstructionProfile.COMPONENT_EXTRACTION, InstructionProfile.CROSSING_DETECTION]

# Chunk type of the per-sheet record written at ingestion
SHEET_SUMMARY_CHUNK = "sheet_summary"


@dataclass
class IngestionReport:
    """Totals for one ingestion run"""

    project_id: str
    sheets_processed: int = 0
    sheets_failed: int = 0
    components_added: int = 0
    components_replaced: int = 0
    duplicates_skipped: int = 0
    rejected: int = 0
    termination_points: int = 0
    crossings: int = 0
    chunks_indexed: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    failed_sheets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "sheets_processed": self.sheets_processed,
            "sheets_failed": self.sheets_failed,
            "components_added": self.components_added,
            "components_replaced": self.components_replaced,
            "duplicates_skipped": self.duplicates_skipped,
            "rejected": self.rejected,
            "termination_points": self.termination_points,
            "crossings": self.crossings,
            "chunks_indexed": self.chunks_indexed,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": round(self.cost_usd, 6),
            "failed_sheets": self.failed_sheets,
        }


def _component_line(component: ExtractedComponent) -> str:
    text = " ".join(part for part in (component.size, component.name) if part)
    unit = (component.unit or "EA").upper()
    if unit != "EA" or component.quantity != 1:
        text += f" QTY {component.quantity:g} {unit}"
    if component.station:
        text += f" STA {component.station}"
    if component.system_name:
        text += f" ({component.system_name})"
    return text + "."


def _crossing_line(crossing: UtilityCrossing) -> str:
    status = "EXIST" if crossing.is_existing else "PROP" if crossing.is_proposed else None
    label = " ".join(part for part in (status, crossing.size, crossing.crossing_utility_code) if part)
    text = f"{label} ({crossing.full_name}) CROSSING"
    if crossing.alignment_name:
        text += f" {crossing.alignment_name}"
    if crossing.station:
        text += f" STA {crossing.station}"
    return text + "."


def build_sheet_chunk(
    project_id: str,
    sheet_number: str,
    extraction: VisionExtraction,
    components: List[ExtractedComponent],
    points: List[TerminationPoint],
    document_id: Optional[str] = None,
    page_number: Optional[int] = None,
) -> DocumentChunk:
    """Text record of what was read off one sheet.

    Stored alongside the structured rows so the sheet is listed for visual
    analysis and its contents are reachable by complete-data retrieval and
    similarity search.
    """
    heading = f"SHEET {sheet_number}"
    if extraction.sheet_type:
        heading += f" ({extraction.sheet_type})"
    lines = [heading + "."]
    lines.extend(_component_line(c) for c in components)
    lines.extend(f"{p.utility_name} {p.termination_type.value} STA {p.station}." for p in points)
    lines.extend(_crossing_line(x) for x in extraction.crossings)
    if len(lines) == 1:
        lines.append("No callouts extracted.")

    stations = {c.station for c in components if c.station}
    stations.update(p.station for p in points)
    stations.update(x.station for x in extraction.crossings if is_valid_station(x.station))

    return DocumentChunk(
        content=" ".join(lines),
        project_id=project_id,
        document_id=document_id,
        sheet_number=sheet_number,
        sheet_type=extraction.sheet_type,
        chunk_type=SHEET_SUMMARY_CHUNK,
        stations=tuple(sorted(stations, key=parse_station)),
        page_number=page_number,
        # Stable id so the vector store upserts over the previous run
        chunk_id=f"{project_id}_{document_id or 'nodoc'}_{sheet_number}_{SHEET_SUMMARY_CHUNK}",
    )


class IngestionService:
    """Runs the vision service over sheets and stores what it finds"""

    def __init__(
        self,
        repository: BaseProjectRepository,
        vision: VisionInterface,
        vector_service: Optional[VectorSearchInterface] = None,
        reconciler: Optional[QuantityReconciler] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
    ):
        self.repository = repository
        self.vision = vision
        self.vector_service = vector_service
        self.reconciler = reconciler or QuantityReconciler()
        self.batch_size = batch_size or settings.INGEST_BATCH_SIZE
        self.batch_delay = settings.INGEST_BATCH_DELAY if batch_delay is None else batch_delay

    def extract_sheet(self, sheet: SheetImage) -> VisionExtraction:
        """Run every ingestion profile on one sheet and combine the replies"""
        combined: Optional[VisionExtraction] = None
        for profile in INGEST_PROFILES:
            extraction = self.vision.analyze_sheet(sheet, profile)
            if combined is None:
                combined = extraction
                continue
            combined.sheet_type = combined.sheet_type or extraction.sheet_type
            combined.components.extend(extraction.components)
            combined.termination_points.extend(extraction.termination_points)
            combined.crossings.extend(extraction.crossings)
            combined.rejected.extend(extraction.rejected)
            combined.input_tokens += extraction.input_tokens
            combined.output_tokens += extraction.output_tokens
            combined.cost_usd += extraction.cost_usd
        return combined

    def store_extraction(
        self,
        project_id: str,
        extraction: VisionExtraction,
        report: IngestionReport,
        document_id: Optional[str] = None,
        sheet: Optional[SheetImage] = None,
    ) -> None:
        """Validate, merge and write one sheet's records"""
        report.rejected += len(extraction.rejected)

        valid, excluded = self.reconciler.filter_valid(extraction.components)
        report.rejected += len(excluded)

        # Read-then-write: concurrent ingestion of one document can still
        # insert a duplicate, which query-time deduplication removes
        existing = self.repository.get_components(project_id)
        plan = self.reconciler.merge(valid, existing)
        if plan.to_insert:
            report.components_added += self.repository.add_components(
                project_id, plan.to_insert, document_id
            )
        for old, new in plan.replacements:
            if self.repository.replace_component(project_id, old, new):
                report.components_replaced += 1
        report.duplicates_skipped += len(plan.skipped)

        points = []
        for point in extraction.termination_points:
            if is_valid_station(point.station):
                points.append(point)
            else:
                logger.warning(
                    f"Skipping {point.termination_type.value} for {point.utility_name} on sheet "
                    f"{point.sheet_number}: invalid station '{point.station}'"
                )
                report.rejected += 1
        if points:
            report.termination_points += self.repository.add_termination_points(
                project_id, points, document_id
            )

        if extraction.crossings:
            report.crossings += self.repository.add_crossings(
                project_id, extraction.crossings, document_id
            )

        sheet_number = sheet.sheet_number if sheet else extraction.sheet_number
        chunk = build_sheet_chunk(
            project_id, sheet_number, extraction, valid, points,
            document_id=document_id,
            page_number=sheet.page_number if sheet else None,
        )
        self.repository.delete_sheet_chunks(project_id, sheet_number, SHEET_SUMMARY_CHUNK)
        self.index_chunks([chunk], report)

    async def ingest_project(
        self, project_id: str, sheets: List[SheetImage], document_id: Optional[str] = None
    ) -> IngestionReport:
        report = IngestionReport(project_id=project_id)
        if not sheets:
            logger.info(f"No sheets to ingest for project {project_id}")
            return report

        logger.info(
            f"Ingesting {len(sheets)} sheets for project {project_id} "
            f"in batches of {self.batch_size}"
        )

        async def worker(sheet: SheetImage) -> VisionExtraction:
            return await asyncio.to_thread(self.extract_sheet, sheet)

        outcomes = await run_in_batches(sheets, worker, self.batch_size, self.batch_delay)

        for sheet, outcome in outcomes:
            if isinstance(outcome, BaseException):
                report.sheets_failed += 1
                report.failed_sheets.append(sheet.sheet_number)
                continue
            try:
                await asyncio.to_thread(
                    self.store_extraction, project_id, outcome, report,
                    document_id or sheet.document_id, sheet,
                )
            except Exception as e:
                logger.error(f"Failed to store sheet {sheet.sheet_number}: {str(e)}")
                report.sheets_failed += 1
                report.failed_sheets.append(sheet.sheet_number)
                continue
            report.sheets_processed += 1
            report.input_tokens += outcome.input_tokens
            report.output_tokens += outcome.output_tokens
            report.cost_usd += outcome.cost_usd

        logger.info(
            f"Ingestion finished for {project_id}: {report.sheets_processed} sheets, "
            f"{report.sheets_failed} failed, {report.components_added} components added, "
            f"cost ${report.cost_usd:.4f}"
        )
        return report

    def index_chunks(self, chunks: List[DocumentChunk], report: Optional[IngestionReport] = None) -> int:
        """Store text chunks for complete-data retrieval and embed them for similarity search"""
        if not chunks:
            return 0
        stored = self.repository.add_chunks(chunks)
        if self.vector_service is not None:
            try:
                self.vector_service.add_chunks(chunks)
            except VectorServiceError as e:
                logger.warning(f"Stored {stored} chunks but could not embed them: {str(e)}")
        if report is not None:
            report.chunks_indexed += stored
        return stored
