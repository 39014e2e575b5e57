# settings.py
"""Centralized settings and configuration management."""

import os
from pathlib import Path


class Settings:
    """Application settings and configuration"""

    # Base paths
    BASE_DIR = Path(__file__).parent.parent
    DATA_DIR = Path(os.getenv("TAKEOFF_DATA_DIR", str(BASE_DIR / "data" / "store")))
    CONFIG_DIR = BASE_DIR / "config"

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/takeoff.db")

    # Vector database
    VECTOR_DB_PATH = os.getenv("VECTOR_DB_PATH", str(DATA_DIR / "chroma_db"))
    EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
    VECTOR_COLLECTION = "document_chunks"

    # Vision provider
    VISION_PROVIDER = "groq"
    GROQ_API_KEY = os.getenv("GROQ_API_KEY")
    VISION_MODEL = os.getenv(
        "VISION_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct"
    )
    VISION_MAX_TOKENS = int(os.getenv("VISION_MAX_TOKENS", "4096"))

    # Sheet images rendered ahead of time by the rasterization job
    SHEET_IMAGE_DIR = os.getenv("SHEET_IMAGE_DIR", str(DATA_DIR / "sheets"))

    # Application settings
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    DEBUG = ENVIRONMENT == "development"

    # Routing
    STEP_TIMEOUT_SECONDS = float(os.getenv("STEP_TIMEOUT_SECONDS", "20"))
    # Whole-request budget shared by all router steps
    REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "50"))
    DEFAULT_MAX_RESULTS = 15
    DEFAULT_MIN_CONFIDENCE = 0.7
    MAX_VISUAL_SHEETS = int(os.getenv("MAX_VISUAL_SHEETS", "6"))

    # Ingestion - small batches keep us under the vision API rate limit
    INGEST_BATCH_SIZE = int(os.getenv("INGEST_BATCH_SIZE", "2"))
    INGEST_BATCH_DELAY = float(os.getenv("INGEST_BATCH_DELAY", "1.0"))

    # Entity configuration
    ENTITIES_CONFIG_PATH = os.getenv(
        "ENTITIES_CONFIG_PATH", str(CONFIG_DIR / "entities.yaml")
    )

    @classmethod
    def ensure_directories(cls):
        """Ensure required directories exist"""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
