# data_loader.py
import logging
from typing import Dict, List, Optional

from takeoff_router.core import (
    DocumentChunk,
    ExtractedComponent,
    TerminationPoint,
    UtilityCrossing,
    VectorSearchInterface,
)
from takeoff_router.data.base_repository import BaseProjectRepository

logger = logging.getLogger(__name__)

SAMPLE_DOCUMENT_ID = "sample-plan-set"


class DataLoader:
    """Handles loading and managing a sample take-off project"""

    @staticmethod
    def get_sample_components() -> List[ExtractedComponent]:
        """Returns components as the vision service would extract them"""
        sample_data = [
            {"name": "GATE VALVE", "size": "12-IN", "station": "10+50", "sheet_number": "C-101",
             "item_type": "valve", "system_name": "WATER LINE A", "confidence": 0.95},
            {"name": "GATE VALVE", "size": "12-IN", "station": "14+20", "sheet_number": "C-101",
             "item_type": "valve", "system_name": "WATER LINE A", "confidence": 0.92},
            {"name": "GATE VALVE", "size": "8-IN", "station": "18+75.50", "sheet_number": "C-102",
             "item_type": "valve", "system_name": "WATER LINE A", "confidence": 0.9},
            {"name": "FIRE HYDRANT ASSEMBLY", "size": "6-IN", "station": "12+00", "sheet_number": "C-101",
             "item_type": "hydrant", "system_name": "WATER LINE A", "confidence": 0.88},
            {"name": "TEE", "size": "12-IN X 8-IN", "station": "18+75", "sheet_number": "C-102",
             "item_type": "fitting", "system_name": "WATER LINE A", "confidence": 0.85},
            {"name": "11.25 DEG BEND", "size": "12-IN", "station": "16+10", "sheet_number": "C-102",
             "item_type": "fitting", "system_name": "WATER LINE A", "confidence": 0.86},
            {"name": "AIR RELEASE VALVE", "size": "2-IN", "station": "21+30", "sheet_number": "C-103",
             "item_type": "valve", "system_name": "WATER LINE A", "confidence": 0.8},
            {"name": "WATER PIPE", "size": "12-IN", "quantity": 1180, "unit": "LF", "sheet_number": "C-101",
             "item_type": "pipe", "system_name": "WATER LINE A", "confidence": 0.83},
            {"name": "MANHOLE", "size": "48-IN", "station": "3+40", "sheet_number": "C-201",
             "item_type": "structure", "system_name": "SANITARY SEWER", "confidence": 0.91},
            # Sheet index tallies, lower trust than drawing labels
            {"name": "GATE VALVE", "quantity": 4, "sheet_number": "G-001",
             "source_context": "index_list", "item_type": "valve", "confidence": 0.75},
        ]

        return [
            ExtractedComponent.from_dict({**data, "document_id": SAMPLE_DOCUMENT_ID})
            for data in sample_data
        ]

    @staticmethod
    def get_sample_termination_points() -> List[TerminationPoint]:
        """Returns BEGIN/END markers; SANITARY SEWER is missing its END on purpose"""
        sample_data = [
            {"utility_name": "WATER LINE A", "termination_type": "BEGIN", "station": "10+00",
             "sheet_number": "C-101", "confidence": 0.95},
            {"utility_name": "WATER LINE A", "termination_type": "END", "station": "22+50",
             "sheet_number": "C-103", "confidence": 0.9},
            {"utility_name": "SANITARY SEWER", "termination_type": "BEGIN", "station": "0+00",
             "sheet_number": "C-201", "confidence": 0.9},
        ]
        return [TerminationPoint.from_dict(data) for data in sample_data]

    @staticmethod
    def get_sample_crossings() -> List[UtilityCrossing]:
        sample_data = [
            {"crossing_utility_code": "ELEC", "full_name": "Electrical", "station": "11+25",
             "is_existing": True, "sheet_number": "C-101", "alignment_name": "WATER LINE A",
             "confidence": 0.87},
            {"crossing_utility_code": "SS", "full_name": "Sanitary Sewer", "station": "15+60",
             "elevation": 312.4, "size": "8-IN", "is_existing": True, "sheet_number": "C-102",
             "alignment_name": "WATER LINE A", "confidence": 0.9},
            {"crossing_utility_code": "STM", "full_name": "Storm Drain", "station": "19+05",
             "size": "24-IN", "is_proposed": True, "sheet_number": "C-102",
             "alignment_name": "WATER LINE A", "confidence": 0.84},
        ]
        return [UtilityCrossing.from_dict(data) for data in sample_data]

    @staticmethod
    def get_sample_chunks(project_id: str) -> List[DocumentChunk]:
        """Returns text chunks as produced by the sheet text extraction job"""
        sample_data = [
            ("C-101", "plan_profile", "callout_box", ("10+00", "10+50"),
             "WATER LINE A BEGIN STA 10+00. INSTALL 12-IN GATE VALVE STA 10+50. CONNECT TO EXIST 12-IN W."),
            ("C-101", "plan_profile", "callout_box", ("11+25", "12+00"),
             "EXIST ELEC CROSSING STA 11+25, MAINTAIN 1 FT MIN VERTICAL SEPARATION. "
             "FIRE HYDRANT ASSEMBLY STA 12+00 PER DETAIL 4/C-501."),
            ("C-102", "plan_profile", "callout_box", ("16+10", "18+75"),
             "WATER LINE A 11.25 DEG BEND STA 16+10. 12-IN X 8-IN TEE STA 18+75 WITH 8-IN GATE VALVE."),
            ("C-102", "plan_profile", "text", ("18+00",),
             "MATCH LINE STA 18+00 SEE SHEET C-103"),
            ("C-103", "plan_profile", "callout_box", ("21+30", "22+50"),
             "2-IN AIR RELEASE VALVE STA 21+30. WATER LINE A END STA 22+50."),
            ("C-501", "detail", "text", (),
             "DETAIL 4: FIRE HYDRANT ASSEMBLY. THRUST BLOCK PER STANDARD DETAIL W-12. "
             "HYDRANT BURY DEPTH 5 FT MIN."),
            ("C-001", "notes", "text", (),
             "GENERAL NOTES: ALL WATER PIPE SHALL BE PVC C900 DR18. "
             "CONTRACTOR SHALL POTHOLE ALL EXISTING UTILITY CROSSINGS PRIOR TO CONSTRUCTION."),
            ("G-001", "index", "text", (),
             "SHEET INDEX: C-101 WATER LINE A PLAN AND PROFILE STA 10+00 TO 14+50. "
             "C-102 WATER LINE A PLAN AND PROFILE. C-103 WATER LINE A PLAN AND PROFILE."),
        ]

        return [
            DocumentChunk(
                content=content,
                project_id=project_id,
                document_id=SAMPLE_DOCUMENT_ID,
                sheet_number=sheet_number,
                sheet_type=sheet_type,
                chunk_type=chunk_type,
                stations=stations,
            )
            for sheet_number, sheet_type, chunk_type, stations, content in sample_data
        ]

    @classmethod
    def load_sample_project(
        cls,
        repository: BaseProjectRepository,
        project_id: str,
        vector_service: Optional[VectorSearchInterface] = None,
    ) -> Dict[str, int]:
        """Store the sample project; returns counts of what was written"""
        logger.info(f"Loading sample take-off data into project {project_id}")
        chunks = cls.get_sample_chunks(project_id)
        counts = {
            "components": repository.add_components(
                project_id, cls.get_sample_components(), SAMPLE_DOCUMENT_ID
            ),
            "termination_points": repository.add_termination_points(
                project_id, cls.get_sample_termination_points(), SAMPLE_DOCUMENT_ID
            ),
            "crossings": repository.add_crossings(
                project_id, cls.get_sample_crossings(), SAMPLE_DOCUMENT_ID
            ),
            "chunks": repository.add_chunks(chunks),
            "embedded_chunks": 0,
        }
        if vector_service is not None:
            counts["embedded_chunks"] = vector_service.add_chunks(chunks)
        logger.info(f"Sample data loaded: {counts}")
        return counts
