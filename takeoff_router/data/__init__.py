# Data package
"""Data layer for the take-off retrieval system."""

from .base_repository import BaseProjectRepository
from .database import DatabaseInitializer, init_database
from .models import (
    DatabaseManager,
    DocumentChunkModel,
    ProjectQuantityModel,
    TerminationPointModel,
    UtilityCrossingModel,
)
from .sqlalchemy_repository import SQLAlchemyProjectRepository, name_similarity

__all__ = [
    "BaseProjectRepository",
    "SQLAlchemyProjectRepository",
    "name_similarity",
    "ProjectQuantityModel",
    "TerminationPointModel",
    "UtilityCrossingModel",
    "DocumentChunkModel",
    "DatabaseManager",
    "DatabaseInitializer",
    "init_database",
]
