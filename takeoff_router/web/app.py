import logging
import os
import time
from datetime import datetime

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from takeoff_router.core import settings
from takeoff_router.core.exceptions import DatabaseError, VectorServiceError
from takeoff_router.data import BaseProjectRepository, DatabaseInitializer, DatabaseManager
from takeoff_router.query_handlers import QueryClassifier, RouteOptions, SmartRetrievalRouter

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Take-off Retrieval Router",
    docs_url="/docs" if os.environ.get("ENVIRONMENT") != "production" else None,
    redoc_url="/redoc" if os.environ.get("ENVIRONMENT") != "production" else None,
)


class QueryRequest(BaseModel):
    query: str = Field(..., max_length=2000)
    max_results: int = Field(settings.DEFAULT_MAX_RESULTS, ge=1, le=100)
    min_confidence: float = Field(settings.DEFAULT_MIN_CONFIDENCE, ge=0.0, le=1.0)


class ClassifyRequest(BaseModel):
    query: str = Field(..., max_length=2000)


# --- Lazy initialization for database, collaborators and query router ---
_db_manager = None
_repository = None
_vector_service = None
_vision = None
_query_router = None


def get_db_manager() -> DatabaseManager:
    global _db_manager
    if _db_manager is None:
        logger.info("Initializing database manager...")
        _db_manager = DatabaseManager()
    return _db_manager


def get_repository() -> BaseProjectRepository:
    global _repository
    if _repository is None:
        from takeoff_router.data import SQLAlchemyProjectRepository

        _repository = SQLAlchemyProjectRepository(db_manager=get_db_manager())
        logger.info("Repository initialized successfully")
    return _repository


def get_vector_service():
    global _vector_service
    if _vector_service is None:
        logger.info("Initializing vector service...")
        from takeoff_router.services.vector_service import VectorService

        try:
            _vector_service = VectorService()
        except VectorServiceError as e:
            # Router skips similarity search when this is None
            logger.warning(f"Vector service unavailable: {str(e)}")
            return None
        logger.info("Vector service initialized successfully")
    return _vector_service


def get_vision():
    global _vision
    if _vision is None:
        logger.info(f"GROQ_API_KEY in environment: {'Yes' if os.getenv('GROQ_API_KEY') else 'No'}")
        from takeoff_router.providers import create_vision_provider

        _vision = create_vision_provider()
    return _vision


def get_query_router() -> SmartRetrievalRouter:
    global _query_router
    if _query_router is None:
        logger.info("Initializing query router...")
        from takeoff_router.services import DirectorySheetImageProvider

        _query_router = SmartRetrievalRouter(
            repository=get_repository(),
            vector_service=get_vector_service(),
            vision=get_vision(),
            image_provider=DirectorySheetImageProvider(),
        )
        logger.info("Query router initialized successfully")
    return _query_router


@app.on_event("startup")
async def startup_event():
    logger.info("FastAPI app starting up...")

    try:
        DatabaseInitializer.initialize_database(get_db_manager())
        logger.info("Database initialized with SQLAlchemy and indexes")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    try:
        from takeoff_router.core.entity_config import initialize_entity_config

        entity_config = initialize_entity_config()
        logger.info(
            f"Entity config loaded: {len(entity_config.categories)} categories, "
            f"{len(entity_config.utility_codes)} utility codes"
        )
    except Exception as e:
        logger.warning(f"Could not load entity config: {str(e)}, using defaults")

    logger.info("App startup complete!")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FastAPI app shutting down...")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.get("/health/database")
async def database_health_check(db_manager: DatabaseManager = Depends(get_db_manager)):
    db_info = DatabaseInitializer.get_database_info(db_manager)
    return {
        "status": "healthy" if db_info["connection_status"] == "Connected" else "unhealthy",
        "database_info": db_info,
        "timestamp": datetime.now().isoformat(),
    }


@app.get("/projects/{project_id}/capabilities")
def project_capabilities(
    project_id: str, repository: BaseProjectRepository = Depends(get_repository)
):
    try:
        capabilities = repository.get_capabilities(project_id)
    except DatabaseError as e:
        logger.error(f"Capability lookup failed for {project_id}: {str(e)}")
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"project_id": project_id, "capabilities": capabilities}


@app.post("/projects/{project_id}/query")
async def query_project(
    project_id: str,
    request: QueryRequest,
    router: SmartRetrievalRouter = Depends(get_query_router),
):
    options = RouteOptions(
        max_results=request.max_results,
        min_confidence=request.min_confidence,
        step_timeout=settings.STEP_TIMEOUT_SECONDS,
        deadline=time.monotonic() + settings.REQUEST_TIMEOUT_SECONDS,
    )
    logger.info(f"Query for project {project_id}: {request.query[:100]}")
    result = await router.route(request.query, project_id, options)
    return {"project_id": project_id, "query": request.query, "result": result.to_dict()}


@app.post("/classify_query")
async def classify_query(
    request: ClassifyRequest, router: SmartRetrievalRouter = Depends(get_query_router)
):
    """Debug endpoint to see how a question would be routed"""
    classifier: QueryClassifier = router.classifier
    classification = classifier.classify(request.query)
    return {
        "query": request.query,
        "classification": classification.to_dict(),
        "pattern_family": classifier.matched_family(request.query),
    }


@app.post("/projects/{project_id}/load_sample_data")
def load_sample_data(
    project_id: str,
    repository: BaseProjectRepository = Depends(get_repository),
    vector_service=Depends(get_vector_service),
):
    from takeoff_router.services import DataLoader

    try:
        counts = DataLoader.load_sample_project(repository, project_id, vector_service)
    except DatabaseError as e:
        logger.error(f"Loading sample data failed: {str(e)}")
        raise HTTPException(status_code=503, detail="Database unavailable")
    except VectorServiceError as e:
        logger.error(f"Embedding sample data failed: {str(e)}")
        raise HTTPException(status_code=503, detail="Vector store unavailable")
    return {"project_id": project_id, "loaded": counts}


@app.delete("/projects/{project_id}")
def delete_project(
    project_id: str,
    repository: BaseProjectRepository = Depends(get_repository),
    vector_service=Depends(get_vector_service),
):
    try:
        repository.delete_project(project_id)
    except DatabaseError as e:
        logger.error(f"Deleting project {project_id} failed: {str(e)}")
        raise HTTPException(status_code=503, detail="Database unavailable")
    if vector_service is not None:
        try:
            vector_service.delete_project(project_id)
        except VectorServiceError as e:
            logger.warning(f"Embedded chunks for {project_id} not removed: {str(e)}")
    return {"project_id": project_id, "deleted": True}
