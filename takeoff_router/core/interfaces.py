# interfaces.py
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .config import InstructionProfile
from .models import DocumentChunk, SheetImage, SheetRef, VisionExtraction


class VisionInterface(ABC):
    """Abstract interface for the vision extraction service"""

    @abstractmethod
    def analyze_sheet(
        self,
        sheet: SheetImage,
        profile: InstructionProfile,
        task_params: Optional[Dict[str, Any]] = None,
    ) -> VisionExtraction:
        pass


class VectorSearchInterface(ABC):
    """Abstract interface for embedding and similarity search"""

    @abstractmethod
    def generate_embedding(self, text: str) -> List[float]:
        pass

    @abstractmethod
    def add_chunks(self, chunks: List[DocumentChunk]) -> int:
        pass

    @abstractmethod
    def semantic_search(
        self,
        project_id: str,
        query: str,
        limit: int = 10,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[DocumentChunk]:
        pass

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        pass


class SheetImageProvider(ABC):
    """Supplies rasterized pages for on-demand visual analysis"""

    @abstractmethod
    def get_sheet_images(self, project_id: str, sheets: List[SheetRef]) -> List[SheetImage]:
        pass
