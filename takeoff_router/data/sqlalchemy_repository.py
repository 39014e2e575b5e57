# sqlalchemy_repository.py
"""SQLAlchemy-based repository implementation for take-off data."""

import logging
import re
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from rapidfuzz import fuzz
from sqlalchemy import distinct, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from takeoff_router.core import (
    Config,
    DocumentChunk,
    ExtractedComponent,
    SheetRef,
    SourceContext,
    SummaryRow,
    TerminationPoint,
    TerminationType,
    UtilityCrossing,
)
from takeoff_router.core.exceptions import DatabaseError
from takeoff_router.core.normalize import (
    normalize_name,
    normalize_size,
    normalize_utility_name,
    singularize,
)
from takeoff_router.core.stations import normalize_station, parse_station
from .base_repository import BaseProjectRepository
from .models import (
    DatabaseManager,
    DocumentChunkModel,
    ProjectQuantityModel,
    TerminationPointModel,
    UtilityCrossingModel,
)

logger = logging.getLogger(__name__)

# Rows scanned per fuzzy search before scoring
FUZZY_CANDIDATE_LIMIT = 2000


def name_similarity(a: str, b: str) -> float:
    """Token-set similarity of two item names in [0, 1]"""
    if not a or not b:
        return 0.0
    return fuzz.token_set_ratio(a, b) / 100.0


class SQLAlchemyProjectRepository(BaseProjectRepository):
    """SQLAlchemy repository over quantities, terminations, crossings and chunks.

    Constructed with a session, every call shares it. Constructed with a
    ``DatabaseManager``, every call opens and closes its own session, which
    keeps calls safe to run from worker threads.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        db_manager: Optional[DatabaseManager] = None,
    ):
        self.session = session
        self.db_manager = db_manager
        if self.session is None and self.db_manager is None:
            self.db_manager = DatabaseManager()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Only sessions passed in by the caller outlive a call; those are theirs to close
        return False

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self.session is not None:
            yield self.session
            return
        session = self.db_manager.get_session()
        try:
            yield session
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    @staticmethod
    def _to_component(row: ProjectQuantityModel) -> ExtractedComponent:
        return ExtractedComponent(
            name=row.item_name,
            quantity=row.quantity,
            size=row.size,
            station=row.station,
            sheet_number=row.sheet_number,
            source_context=SourceContext(row.source_context),
            confidence=row.confidence,
            unit=row.unit,
            item_type=row.item_type,
            system_name=row.system_name,
            document_id=row.document_id,
        )

    @staticmethod
    def _to_termination(row: TerminationPointModel) -> TerminationPoint:
        return TerminationPoint(
            utility_name=row.utility_name,
            termination_type=TerminationType(row.termination_type),
            station=row.station,
            station_numeric=row.station_numeric,
            sheet_number=row.sheet_number,
            confidence=row.confidence,
            notes=row.notes,
        )

    @staticmethod
    def _to_crossing(row: UtilityCrossingModel) -> UtilityCrossing:
        return UtilityCrossing(
            crossing_utility_code=row.crossing_utility_code,
            full_name=row.full_name,
            station=row.station,
            elevation=row.elevation,
            is_existing=bool(row.is_existing),
            is_proposed=bool(row.is_proposed),
            size=row.size,
            confidence=row.confidence,
            sheet_number=row.sheet_number,
            alignment_name=row.alignment_name,
            notes=row.notes,
        )

    @staticmethod
    def _to_chunk(row: DocumentChunkModel) -> DocumentChunk:
        return DocumentChunk(
            content=row.content,
            project_id=row.project_id,
            document_id=row.document_id,
            sheet_number=row.sheet_number,
            sheet_type=row.sheet_type,
            chunk_type=row.chunk_type,
            stations=tuple(row.stations or ()),
            page_number=row.page_number,
            chunk_id=str(row.id),
        )

    @staticmethod
    def _component_row(
        project_id: str, component: ExtractedComponent, document_id: Optional[str]
    ) -> ProjectQuantityModel:
        return ProjectQuantityModel(
            project_id=project_id,
            document_id=document_id or component.document_id,
            item_name=component.name,
            item_type=component.item_type,
            size=normalize_size(component.size),
            quantity=component.quantity,
            unit=component.unit,
            station=normalize_station(component.station) or component.station,
            station_numeric=parse_station(component.station),
            sheet_number=component.sheet_number,
            source_context=component.source_context.value,
            confidence=component.confidence,
            system_name=component.system_name,
            normalized_name=normalize_name(component.name),
            normalized_size=normalize_size(component.size),
        )

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    def get_project_summary(self, project_id: str) -> List[SummaryRow]:
        """Aggregate per item type - the pre-aggregated summary view"""
        try:
            with self._session() as session:
                item_type = func.coalesce(ProjectQuantityModel.item_type, "other")
                rows = (
                    session.query(
                        item_type.label("item_type"),
                        func.sum(ProjectQuantityModel.quantity).label("total_quantity"),
                        func.count(distinct(ProjectQuantityModel.document_id)).label("document_count"),
                        func.avg(ProjectQuantityModel.confidence).label("avg_confidence"),
                        func.count(ProjectQuantityModel.id).label("item_count"),
                    )
                    .filter(ProjectQuantityModel.project_id == project_id)
                    .group_by(item_type)
                    .order_by(func.sum(ProjectQuantityModel.quantity).desc())
                    .all()
                )
                return [
                    SummaryRow(
                        item_type=row.item_type,
                        total_quantity=float(row.total_quantity or 0),
                        document_count=int(row.document_count or 0),
                        avg_confidence=round(float(row.avg_confidence or 0), 3),
                        item_count=int(row.item_count or 0),
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to get project summary: {str(e)}") from e

    def search_quantities(
        self, project_id: str, search_term: str, limit: int = 20
    ) -> List[Tuple[ExtractedComponent, float]]:
        """Fuzzy item-name search scored by token-set similarity"""
        tokens = [singularize(t) for t in re.findall(r"[a-z0-9]+", (search_term or "").lower())]
        tokens = [t for t in tokens if len(t) >= 3]
        if not tokens:
            return []

        try:
            with self._session() as session:
                rows = (
                    session.query(ProjectQuantityModel)
                    .filter(ProjectQuantityModel.project_id == project_id)
                    .filter(or_(*[ProjectQuantityModel.normalized_name.like(f"%{t}%") for t in tokens]))
                    .limit(FUZZY_CANDIDATE_LIMIT)
                    .all()
                )
                scored = []
                wanted = normalize_name(search_term)
                for row in rows:
                    similarity = name_similarity(wanted, row.normalized_name)
                    if similarity >= Config.MIN_SIMILARITY:
                        scored.append((self._to_component(row), round(similarity, 3)))
                scored.sort(key=lambda pair: (-pair[1], -pair[0].confidence))
                return scored[:limit]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to search quantities for '{search_term}': {str(e)}") from e

    def get_components(
        self, project_id: str, item_type: Optional[str] = None
    ) -> List[ExtractedComponent]:
        try:
            with self._session() as session:
                query = session.query(ProjectQuantityModel).filter(
                    ProjectQuantityModel.project_id == project_id
                )
                if item_type:
                    query = query.filter(ProjectQuantityModel.item_type == item_type)
                rows = query.order_by(
                    ProjectQuantityModel.sheet_number, ProjectQuantityModel.station_numeric
                ).all()
                return [self._to_component(row) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to get components: {str(e)}") from e

    def get_termination_points(
        self, project_id: str, utility_name: Optional[str] = None
    ) -> List[TerminationPoint]:
        try:
            with self._session() as session:
                query = session.query(TerminationPointModel).filter(
                    TerminationPointModel.project_id == project_id
                )
                if utility_name:
                    query = query.filter(
                        TerminationPointModel.normalized_utility == normalize_utility_name(utility_name)
                    )
                rows = query.order_by(TerminationPointModel.station_numeric).all()
                return [self._to_termination(row) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to get termination points: {str(e)}") from e

    def get_crossings(
        self, project_id: str, alignment_name: Optional[str] = None
    ) -> List[UtilityCrossing]:
        """Crossings on an alignment; rows with no recorded alignment are kept"""
        try:
            with self._session() as session:
                query = session.query(UtilityCrossingModel).filter(
                    UtilityCrossingModel.project_id == project_id
                )
                if alignment_name:
                    query = query.filter(
                        or_(
                            UtilityCrossingModel.normalized_alignment == normalize_utility_name(alignment_name),
                            UtilityCrossingModel.normalized_alignment.is_(None),
                        )
                    )
                rows = query.order_by(
                    UtilityCrossingModel.station_numeric, UtilityCrossingModel.sheet_number
                ).all()
                return [self._to_crossing(row) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to get crossings: {str(e)}") from e

    def get_system_chunks(
        self,
        project_id: str,
        name_variations: Optional[List[str]] = None,
        chunk_types: Optional[List[str]] = None,
    ) -> List[DocumentChunk]:
        try:
            with self._session() as session:
                query = session.query(DocumentChunkModel).filter(
                    DocumentChunkModel.project_id == project_id
                )
                if name_variations:
                    query = query.filter(
                        or_(*[DocumentChunkModel.content.ilike(f"%{v}%") for v in name_variations])
                    )
                if chunk_types:
                    query = query.filter(DocumentChunkModel.chunk_type.in_(chunk_types))
                rows = query.order_by(
                    DocumentChunkModel.sheet_number,
                    DocumentChunkModel.page_number,
                    DocumentChunkModel.id,
                ).all()
                return [self._to_chunk(row) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to get system chunks: {str(e)}") from e

    def count_system_mentions(self, project_id: str, system_names: List[str]) -> Dict[str, int]:
        """Occurrences of each system family across a sample of the project's chunks"""
        patterns = {
            name: re.compile(r"\s*".join(re.escape(part) for part in name.split()), re.IGNORECASE)
            for name in system_names
        }
        try:
            with self._session() as session:
                rows = (
                    session.query(DocumentChunkModel.content)
                    .filter(DocumentChunkModel.project_id == project_id)
                    .limit(Config.MENTION_SCAN_LIMIT)
                    .all()
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to count system mentions: {str(e)}") from e

        counts = {name: 0 for name in system_names}
        for (content,) in rows:
            for name, pattern in patterns.items():
                counts[name] += len(pattern.findall(content or ""))
        return counts

    def list_sheets(
        self,
        project_id: str,
        sheet_types: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[SheetRef]:
        try:
            with self._session() as session:
                query = (
                    session.query(
                        DocumentChunkModel.document_id,
                        DocumentChunkModel.sheet_number,
                        DocumentChunkModel.page_number,
                        DocumentChunkModel.sheet_type,
                    )
                    .filter(DocumentChunkModel.project_id == project_id)
                    .filter(DocumentChunkModel.sheet_number.isnot(None))
                )
                if sheet_types:
                    query = query.filter(DocumentChunkModel.sheet_type.in_(sheet_types))
                query = query.distinct().order_by(
                    DocumentChunkModel.sheet_number, DocumentChunkModel.page_number
                )
                if limit:
                    query = query.limit(limit)
                return [
                    SheetRef(
                        document_id=row.document_id,
                        sheet_number=row.sheet_number,
                        page_number=row.page_number,
                        sheet_type=row.sheet_type,
                    )
                    for row in query.all()
                ]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to list sheets: {str(e)}") from e

    def get_capabilities(self, project_id: str) -> Dict[str, bool]:
        try:
            with self._session() as session:
                def has(model) -> bool:
                    return (
                        session.query(model.id).filter(model.project_id == project_id).first()
                        is not None
                    )

                return {
                    "structured_quantities": has(ProjectQuantityModel),
                    "termination_points": has(TerminationPointModel),
                    "utility_crossings": has(UtilityCrossingModel),
                    "document_chunks": has(DocumentChunkModel),
                }
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to get project capabilities: {str(e)}") from e

    # ------------------------------------------------------------------
    # Write paths
    # ------------------------------------------------------------------

    def add_components(
        self,
        project_id: str,
        components: List[ExtractedComponent],
        document_id: Optional[str] = None,
    ) -> int:
        if not components:
            return 0
        with self._session() as session:
            try:
                for component in components:
                    session.add(self._component_row(project_id, component, document_id))
                session.commit()
                return len(components)
            except SQLAlchemyError as e:
                session.rollback()
                raise DatabaseError(f"Failed to add components: {str(e)}") from e

    def replace_component(
        self, project_id: str, existing: ExtractedComponent, replacement: ExtractedComponent
    ) -> bool:
        """Overwrite a stored record with a higher-confidence extraction"""
        name, size, _ = existing.identity_key()
        with self._session() as session:
            try:
                query = session.query(ProjectQuantityModel).filter(
                    ProjectQuantityModel.project_id == project_id,
                    ProjectQuantityModel.normalized_name == name,
                )
                if size is None:
                    query = query.filter(ProjectQuantityModel.normalized_size.is_(None))
                else:
                    query = query.filter(ProjectQuantityModel.normalized_size == size)
                station = normalize_station(existing.station) or existing.station
                if station is None:
                    query = query.filter(ProjectQuantityModel.station.is_(None))
                else:
                    query = query.filter(ProjectQuantityModel.station == station)

                row = query.first()
                if row is None:
                    return False

                fresh = self._component_row(project_id, replacement, row.document_id)
                for column in (
                    "item_name", "item_type", "size", "quantity", "unit", "station",
                    "station_numeric", "sheet_number", "source_context", "confidence",
                    "system_name", "normalized_name", "normalized_size",
                ):
                    setattr(row, column, getattr(fresh, column))
                session.commit()
                return True
            except SQLAlchemyError as e:
                session.rollback()
                raise DatabaseError(f"Failed to replace component: {str(e)}") from e

    def add_termination_points(
        self,
        project_id: str,
        points: List[TerminationPoint],
        document_id: Optional[str] = None,
    ) -> int:
        if not points:
            return 0
        with self._session() as session:
            try:
                for point in points:
                    session.add(
                        TerminationPointModel(
                            project_id=project_id,
                            document_id=document_id,
                            utility_name=point.utility_name,
                            normalized_utility=point.normalized_utility,
                            termination_type=point.termination_type.value,
                            station=point.station,
                            station_numeric=point.numeric,
                            sheet_number=point.sheet_number,
                            confidence=point.confidence,
                            notes=point.notes,
                        )
                    )
                session.commit()
                return len(points)
            except SQLAlchemyError as e:
                session.rollback()
                raise DatabaseError(f"Failed to add termination points: {str(e)}") from e

    def add_crossings(
        self,
        project_id: str,
        crossings: List[UtilityCrossing],
        document_id: Optional[str] = None,
    ) -> int:
        if not crossings:
            return 0
        with self._session() as session:
            try:
                for crossing in crossings:
                    session.add(
                        UtilityCrossingModel(
                            project_id=project_id,
                            document_id=document_id,
                            crossing_utility_code=crossing.crossing_utility_code,
                            full_name=crossing.full_name,
                            station=crossing.station,
                            station_numeric=parse_station(crossing.station),
                            elevation=crossing.elevation,
                            is_existing=crossing.is_existing,
                            is_proposed=crossing.is_proposed,
                            size=crossing.size,
                            confidence=crossing.confidence,
                            sheet_number=crossing.sheet_number,
                            alignment_name=crossing.alignment_name,
                            normalized_alignment=normalize_utility_name(crossing.alignment_name) or None,
                            notes=crossing.notes,
                        )
                    )
                session.commit()
                return len(crossings)
            except SQLAlchemyError as e:
                session.rollback()
                raise DatabaseError(f"Failed to add crossings: {str(e)}") from e

    def add_chunks(self, chunks: List[DocumentChunk]) -> int:
        if not chunks:
            return 0
        with self._session() as session:
            try:
                for chunk in chunks:
                    session.add(
                        DocumentChunkModel(
                            project_id=chunk.project_id,
                            document_id=chunk.document_id,
                            sheet_number=chunk.sheet_number,
                            sheet_type=chunk.sheet_type,
                            chunk_type=chunk.chunk_type,
                            page_number=chunk.page_number,
                            content=chunk.content,
                            stations=list(chunk.stations),
                        )
                    )
                session.commit()
                return len(chunks)
            except SQLAlchemyError as e:
                session.rollback()
                raise DatabaseError(f"Failed to add chunks: {str(e)}") from e

    def delete_sheet_chunks(self, project_id: str, sheet_number: str, chunk_type: str) -> int:
        with self._session() as session:
            try:
                deleted = (
                    session.query(DocumentChunkModel)
                    .filter(DocumentChunkModel.project_id == project_id)
                    .filter(DocumentChunkModel.sheet_number == sheet_number)
                    .filter(DocumentChunkModel.chunk_type == chunk_type)
                    .delete(synchronize_session=False)
                )
                session.commit()
                return deleted
            except SQLAlchemyError as e:
                session.rollback()
                raise DatabaseError(
                    f"Failed to delete {chunk_type} chunks for sheet {sheet_number}: {str(e)}"
                ) from e

    def delete_project(self, project_id: str) -> None:
        with self._session() as session:
            try:
                for model in (
                    ProjectQuantityModel,
                    TerminationPointModel,
                    UtilityCrossingModel,
                    DocumentChunkModel,
                ):
                    session.query(model).filter(model.project_id == project_id).delete()
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise DatabaseError(f"Failed to delete project {project_id}: {str(e)}") from e
