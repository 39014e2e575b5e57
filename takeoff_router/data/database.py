# database.py
"""Database initialization utilities."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .models import DatabaseManager

logger = logging.getLogger(__name__)


class DatabaseInitializer:
    """Handles database initialization"""

    @staticmethod
    def initialize_database(db_manager: Optional[DatabaseManager] = None) -> DatabaseManager:
        """Create tables and indexes, returning the ready manager"""
        db_manager = db_manager or DatabaseManager()
        try:
            logger.info("Initializing database...")
            logger.info(f"Database URL: {db_manager.database_url}")

            if db_manager.database_url.startswith("sqlite:///"):
                db_path = Path(db_manager.database_url.replace("sqlite:///", ""))
                db_path.parent.mkdir(parents=True, exist_ok=True)

            db_manager.create_tables()

            stats = db_manager.get_table_stats()
            logger.info(f"Database initialized successfully: {stats}")
            return db_manager

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    @staticmethod
    def get_database_info(db_manager: DatabaseManager) -> Dict[str, Any]:
        """Get database connection information for health checks"""
        try:
            stats = db_manager.get_table_stats()
            return {
                "database_type": "SQLite" if "sqlite" in db_manager.database_url else "Other",
                "database_path": stats["database_url"],
                "connection_status": "Connected",
                "stats": stats,
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "database_type": "Unknown",
                "connection_status": "Failed",
                "error": str(e),
            }


def init_database(db_manager: Optional[DatabaseManager] = None) -> DatabaseManager:
    """Convenience function to initialize database"""
    return DatabaseInitializer.initialize_database(db_manager)
