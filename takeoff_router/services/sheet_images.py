# sheet_images.py
"""Pre-rasterized drawing pages read from disk."""

import logging
import re
from pathlib import Path
from typing import List, Optional

from takeoff_router.core import SheetImage, SheetImageProvider, SheetRef, settings

logger = logging.getLogger(__name__)


def sheet_file_stem(sheet_number: str) -> str:
    """File-safe stem for a sheet number (``C-101`` stays ``C-101``)"""
    return re.sub(r"[^A-Za-z0-9._-]+", "_", sheet_number.strip())


class DirectorySheetImageProvider(SheetImageProvider):
    """Serves PNGs laid out as ``<root>/<project_id>/<sheet>.png``"""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.SHEET_IMAGE_DIR)

    def image_path(self, project_id: str, sheet_number: str) -> Path:
        return self.root / project_id / f"{sheet_file_stem(sheet_number)}.png"

    def get_sheet_images(self, project_id: str, sheets: List[SheetRef]) -> List[SheetImage]:
        images = []
        for sheet in sheets:
            path = self.image_path(project_id, sheet.sheet_number)
            if not path.exists():
                logger.warning(f"No rasterized image for sheet {sheet.sheet_number} at {path}")
                continue
            images.append(
                SheetImage(
                    sheet_number=sheet.sheet_number,
                    image=path.read_bytes(),
                    document_id=sheet.document_id,
                    page_number=sheet.page_number,
                )
            )
        logger.info(f"Loaded {len(images)} of {len(sheets)} sheet images for project {project_id}")
        return images
