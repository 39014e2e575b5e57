# base_repository.py
"""Abstract base repository interface for project take-off data."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from takeoff_router.core import (
    DocumentChunk,
    ExtractedComponent,
    SheetRef,
    SummaryRow,
    TerminationPoint,
    UtilityCrossing,
)


class BaseProjectRepository(ABC):
    """Abstract base class for take-off data repositories.

    Read paths serve the retrieval router; write paths are used only by
    ingestion.
    """

    # Read paths

    @abstractmethod
    def get_project_summary(self, project_id: str) -> List[SummaryRow]:
        """Per item type totals for a project"""
        pass

    @abstractmethod
    def search_quantities(
        self, project_id: str, search_term: str, limit: int = 20
    ) -> List[Tuple[ExtractedComponent, float]]:
        """Fuzzy item-name search returning (record, similarity) pairs"""
        pass

    @abstractmethod
    def get_components(
        self, project_id: str, item_type: Optional[str] = None
    ) -> List[ExtractedComponent]:
        """All stored components for a project"""
        pass

    @abstractmethod
    def get_termination_points(
        self, project_id: str, utility_name: Optional[str] = None
    ) -> List[TerminationPoint]:
        pass

    @abstractmethod
    def get_crossings(
        self, project_id: str, alignment_name: Optional[str] = None
    ) -> List[UtilityCrossing]:
        pass

    @abstractmethod
    def get_system_chunks(
        self,
        project_id: str,
        name_variations: Optional[List[str]] = None,
        chunk_types: Optional[List[str]] = None,
    ) -> List[DocumentChunk]:
        """Every chunk mentioning any of the variations (all chunks when none given)"""
        pass

    @abstractmethod
    def count_system_mentions(self, project_id: str, system_names: List[str]) -> Dict[str, int]:
        pass

    @abstractmethod
    def list_sheets(
        self,
        project_id: str,
        sheet_types: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[SheetRef]:
        pass

    @abstractmethod
    def get_capabilities(self, project_id: str) -> Dict[str, bool]:
        """Which kinds of data exist for a project"""
        pass

    # Write paths

    @abstractmethod
    def add_components(
        self,
        project_id: str,
        components: List[ExtractedComponent],
        document_id: Optional[str] = None,
    ) -> int:
        pass

    @abstractmethod
    def replace_component(
        self, project_id: str, existing: ExtractedComponent, replacement: ExtractedComponent
    ) -> bool:
        pass

    @abstractmethod
    def add_termination_points(
        self,
        project_id: str,
        points: List[TerminationPoint],
        document_id: Optional[str] = None,
    ) -> int:
        pass

    @abstractmethod
    def add_crossings(
        self,
        project_id: str,
        crossings: List[UtilityCrossing],
        document_id: Optional[str] = None,
    ) -> int:
        pass

    @abstractmethod
    def add_chunks(self, chunks: List[DocumentChunk]) -> int:
        pass

    @abstractmethod
    def delete_sheet_chunks(self, project_id: str, sheet_number: str, chunk_type: str) -> int:
        """Drop one sheet's chunks of a type so re-ingesting replaces them"""
        pass

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        """Remove all data for a project - USE WITH CAUTION"""
        pass
