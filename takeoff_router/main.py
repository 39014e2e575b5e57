# main.py
"""Main entry point for the take-off retrieval service."""

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path

import uvicorn

from takeoff_router.core import Config, SheetImage

logger = logging.getLogger(__name__)

# Load environment variables before anything reads settings
Config.load_env_for_development()


def serve(args):
    uvicorn.run(
        "takeoff_router.web.app:app",
        host=args.host,
        port=int(args.port),
        reload=args.reload,
    )


def ingest(args):
    """Run vision extraction over a directory of pre-rasterized sheet PNGs"""
    from takeoff_router.data import SQLAlchemyProjectRepository, init_database
    from takeoff_router.providers import create_vision_provider
    from takeoff_router.core.exceptions import VectorServiceError
    from takeoff_router.services import IngestionService
    from takeoff_router.services.vector_service import VectorService

    sheet_dir = Path(args.sheet_dir)
    sheets = [
        SheetImage(sheet_number=path.stem, image=path.read_bytes(), document_id=args.document_id)
        for path in sorted(sheet_dir.glob("*.png"))
    ]
    if not sheets:
        logger.error(f"No .png sheets found in {sheet_dir}")
        return

    try:
        vector_service = VectorService()
    except VectorServiceError as e:
        logger.warning(f"Sheets will not be embedded: {str(e)}")
        vector_service = None

    db_manager = init_database()
    with SQLAlchemyProjectRepository(db_manager=db_manager) as repository:
        service = IngestionService(repository, create_vision_provider(), vector_service)
        report = asyncio.run(service.ingest_project(args.project_id, sheets, args.document_id))
    print(json.dumps(report.to_dict(), indent=2))


def main():
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Take-off retrieval router")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", default=os.environ.get("PORT", "8000"))
    serve_parser.add_argument("--reload", action="store_true")
    serve_parser.set_defaults(func=serve)

    ingest_parser = subparsers.add_parser("ingest", help="Extract records from sheet images")
    ingest_parser.add_argument("project_id")
    ingest_parser.add_argument("sheet_dir")
    ingest_parser.add_argument("--document-id", default=None)
    ingest_parser.set_defaults(func=ingest)

    args = parser.parse_args()
    if not args.command:
        args = parser.parse_args(["serve"])
    args.func(args)


if __name__ == "__main__":
    main()
