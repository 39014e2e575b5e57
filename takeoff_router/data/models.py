# models.py
"""SQLAlchemy database models for the take-off retrieval system."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from takeoff_router.core import settings

Base = declarative_base()


class ProjectQuantityModel(Base):
    """Vision-extracted component or run quantity"""

    __tablename__ = "project_quantities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False)
    document_id = Column(String(64), nullable=True)

    item_name = Column(String(255), nullable=False)
    item_type = Column(String(64), nullable=True)
    size = Column(String(32), nullable=True)
    quantity = Column(Float, nullable=False, default=1)
    unit = Column(String(16), nullable=True)
    station = Column(String(32), nullable=True)
    station_numeric = Column(Float, nullable=True)
    sheet_number = Column(String(32), nullable=True)
    source_context = Column(String(32), nullable=False, default="drawing_label")
    confidence = Column(Float, nullable=False, default=1.0)
    system_name = Column(String(128), nullable=True)

    # Dedup lookup columns
    normalized_name = Column(String(255), nullable=False)
    normalized_size = Column(String(32), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_quantities_project", "project_id"),
        Index("idx_quantities_project_type", "project_id", "item_type"),
        Index("idx_quantities_identity", "project_id", "normalized_name", "normalized_size"),
        Index("idx_quantities_project_sheet", "project_id", "sheet_number"),
    )

    def __repr__(self):
        return (
            f"<ProjectQuantityModel(id={self.id}, item_name='{self.item_name}', "
            f"size='{self.size}', station='{self.station}')>"
        )


class TerminationPointModel(Base):
    """BEGIN/END markers read off plan and profile sheets"""

    __tablename__ = "termination_points"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False)
    document_id = Column(String(64), nullable=True)

    utility_name = Column(String(128), nullable=False)
    normalized_utility = Column(String(128), nullable=False)
    termination_type = Column(String(16), nullable=False)
    station = Column(String(32), nullable=False)
    station_numeric = Column(Float, nullable=True)
    sheet_number = Column(String(32), nullable=True)
    confidence = Column(Float, nullable=False, default=1.0)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_terminations_project_utility", "project_id", "normalized_utility"),
    )

    def __repr__(self):
        return (
            f"<TerminationPointModel(id={self.id}, utility='{self.utility_name}', "
            f"type='{self.termination_type}', station='{self.station}')>"
        )


class UtilityCrossingModel(Base):
    """Other utilities crossing an alignment"""

    __tablename__ = "utility_crossings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False)
    document_id = Column(String(64), nullable=True)

    crossing_utility_code = Column(String(16), nullable=False)
    full_name = Column(String(128), nullable=False)
    station = Column(String(32), nullable=True)
    station_numeric = Column(Float, nullable=True)
    elevation = Column(Float, nullable=True)
    is_existing = Column(Boolean, default=False)
    is_proposed = Column(Boolean, default=False)
    size = Column(String(32), nullable=True)
    confidence = Column(Float, nullable=False, default=1.0)
    sheet_number = Column(String(32), nullable=True)
    alignment_name = Column(String(128), nullable=True)
    normalized_alignment = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_crossings_project", "project_id"),
        Index("idx_crossings_project_alignment", "project_id", "normalized_alignment"),
    )

    def __repr__(self):
        return (
            f"<UtilityCrossingModel(id={self.id}, code='{self.crossing_utility_code}', "
            f"station='{self.station}')>"
        )


class DocumentChunkModel(Base):
    """Text extracted from a drawing sheet, mirrored into the vector store"""

    __tablename__ = "document_chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False)
    document_id = Column(String(64), nullable=True)

    sheet_number = Column(String(32), nullable=True)
    sheet_type = Column(String(32), nullable=True)
    chunk_type = Column(String(32), nullable=False, default="text")
    page_number = Column(Integer, nullable=True)
    content = Column(Text, nullable=False)
    stations = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_chunks_project", "project_id"),
        Index("idx_chunks_project_sheet", "project_id", "sheet_number"),
    )

    def __repr__(self):
        return f"<DocumentChunkModel(id={self.id}, sheet='{self.sheet_number}', type='{self.chunk_type}')>"


class DatabaseManager:
    """Manages database connections and sessions"""

    def __init__(self, database_url: str = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.engine = None
        self.SessionLocal = None
        self._initialize()

    def _initialize(self):
        """Initialize database engine and session factory"""
        connect_args = {}
        if "sqlite" in self.database_url:
            connect_args = {
                "check_same_thread": False,  # steps run in worker threads
                "timeout": 20,
            }

        self.engine = create_engine(
            self.database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
        )

    def create_tables(self):
        """Create all tables with indexes"""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self):
        """Get a database session"""
        return self.SessionLocal()

    def drop_tables(self):
        """Drop all tables - USE WITH CAUTION"""
        Base.metadata.drop_all(bind=self.engine)

    def get_table_stats(self):
        """Get database statistics for monitoring"""
        with self.get_session() as session:
            return {
                "total_quantities": session.query(ProjectQuantityModel).count(),
                "total_termination_points": session.query(TerminationPointModel).count(),
                "total_crossings": session.query(UtilityCrossingModel).count(),
                "total_chunks": session.query(DocumentChunkModel).count(),
                "database_url": self.database_url.split("@")[-1]
                if "@" in self.database_url
                else self.database_url,
            }
