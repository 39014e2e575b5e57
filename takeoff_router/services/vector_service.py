# vector_service.py
import hashlib
import logging
from typing import Any, Dict, List, Optional

import chromadb
from sentence_transformers import SentenceTransformer

from takeoff_router.core import DocumentChunk, VectorSearchInterface, settings
from takeoff_router.core.exceptions import VectorServiceError

logger = logging.getLogger(__name__)


def chunk_id_for(chunk: DocumentChunk) -> str:
    """Stable id for a chunk so re-ingesting a sheet does not duplicate it"""
    content_hash = hashlib.md5(chunk.content.encode()).hexdigest()[:12]
    location_hash = hashlib.md5(
        f"{chunk.document_id}_{chunk.sheet_number}_{chunk.page_number}_{chunk.chunk_type}".encode()
    ).hexdigest()[:8]
    return f"{chunk.project_id}_{location_hash}_{content_hash}"


def build_where_clause(project_id: str, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Chroma metadata filter scoped to a project"""
    conditions: List[Dict[str, Any]] = [{"project_id": project_id}]
    filters = filters or {}
    if filters.get("sheet_number"):
        conditions.append({"sheet_number": filters["sheet_number"]})
    if filters.get("sheet_types"):
        conditions.append({"sheet_type": {"$in": list(filters["sheet_types"])}})
    if filters.get("chunk_type"):
        conditions.append({"chunk_type": filters["chunk_type"]})
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


class VectorService(VectorSearchInterface):
    """Service for managing drawing chunk embeddings and semantic search"""

    def __init__(
        self,
        persist_directory: Optional[str] = None,
        collection_name: Optional[str] = None,
        model_name: Optional[str] = None,
    ):
        """Initialize the vector service with ChromaDB and embedding model"""
        self.persist_directory = persist_directory or settings.VECTOR_DB_PATH
        self.collection_name = collection_name or settings.VECTOR_COLLECTION
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.embedding_model = None
        self.client = None
        self.collection = None
        self._initialize()

    def _initialize(self):
        """Initialize ChromaDB client and embedding model"""
        try:
            logger.info(
                f"Initializing ChromaDB with persist directory: {self.persist_directory}"
            )
            self.client = chromadb.PersistentClient(path=self.persist_directory)

            self.collection = self.client.get_or_create_collection(
                name=self.collection_name,
                metadata={"description": "Drawing sheet text chunks with embeddings"},
            )

            # Runs locally, no API costs
            logger.info(f"Loading sentence transformer model {self.model_name}...")
            self.embedding_model = SentenceTransformer(self.model_name)
            logger.info("Vector service initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize vector service: {str(e)}")
            raise VectorServiceError(f"Failed to initialize vector service: {str(e)}") from e

    def generate_embedding(self, text: str) -> List[float]:
        """Generate embedding for a given text"""
        if not self.embedding_model:
            raise VectorServiceError("Embedding model not initialized")

        embedding = self.embedding_model.encode(text)
        return embedding.tolist()

    @staticmethod
    def _metadata(chunk: DocumentChunk) -> Dict[str, Any]:
        # Chroma metadata values must be scalars
        metadata = {
            "project_id": chunk.project_id,
            "chunk_type": chunk.chunk_type,
            "stations": ",".join(chunk.stations),
        }
        for key in ("document_id", "sheet_number", "sheet_type", "page_number"):
            value = getattr(chunk, key)
            if value is not None:
                metadata[key] = value
        return metadata

    def add_chunks(self, chunks: List[DocumentChunk]) -> int:
        """Embed and upsert chunks in one batch"""
        embeddings = []
        documents = []
        metadatas = []
        ids = []

        for chunk in chunks:
            if not chunk.content or not chunk.content.strip():
                continue
            chunk_id = chunk.chunk_id or chunk_id_for(chunk)
            if chunk_id in ids:
                logger.warning(f"Skipping duplicate chunk ID in batch: {chunk_id}")
                continue
            embeddings.append(self.generate_embedding(chunk.content))
            documents.append(chunk.content)
            metadatas.append(self._metadata(chunk))
            ids.append(chunk_id)

        if not ids:
            return 0

        try:
            self.collection.upsert(
                embeddings=embeddings,
                documents=documents,
                metadatas=metadatas,
                ids=ids,
            )
        except Exception as e:
            logger.error(f"Batch add failed: {str(e)}")
            raise VectorServiceError(f"Failed to add chunks: {str(e)}") from e

        logger.info(f"Added {len(ids)} chunks to vector DB in batch")
        return len(ids)

    def semantic_search(
        self,
        project_id: str,
        query: str,
        limit: int = 10,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[DocumentChunk]:
        """Nearest chunks of one project, most similar first"""
        try:
            query_embedding = self.generate_embedding(query)
            results = self.collection.query(
                query_embeddings=[query_embedding],
                n_results=limit,
                where=build_where_clause(project_id, filters),
                include=["documents", "metadatas", "distances"],
            )
        except VectorServiceError:
            raise
        except Exception as e:
            logger.error(f"Semantic search failed: {str(e)}")
            raise VectorServiceError(f"Semantic search failed: {str(e)}") from e

        chunks = []
        if results and results.get("documents"):
            for i, doc in enumerate(results["documents"][0]):
                metadata = results["metadatas"][0][i] or {}
                distance = results["distances"][0][i]
                stations = metadata.get("stations") or ""
                chunks.append(
                    DocumentChunk(
                        content=doc,
                        project_id=metadata.get("project_id", project_id),
                        document_id=metadata.get("document_id"),
                        sheet_number=metadata.get("sheet_number"),
                        sheet_type=metadata.get("sheet_type"),
                        chunk_type=metadata.get("chunk_type", "text"),
                        stations=tuple(s for s in stations.split(",") if s),
                        page_number=metadata.get("page_number"),
                        similarity=round(1 - distance, 4),
                        chunk_id=results["ids"][0][i] if results.get("ids") else None,
                    )
                )

        logger.info(f"Semantic search returned {len(chunks)} results")
        return chunks

    def get_collection_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector database"""
        try:
            return {
                "total_chunks": self.collection.count(),
                "collection_name": self.collection.name,
                "persist_directory": self.persist_directory,
            }
        except Exception as e:
            logger.error(f"Failed to get collection stats: {str(e)}")
            return {"error": str(e)}

    def delete_project(self, project_id: str) -> None:
        """Remove every chunk of a project"""
        try:
            self.collection.delete(where={"project_id": project_id})
            logger.info(f"Deleted vector chunks for project {project_id}")
        except Exception as e:
            raise VectorServiceError(f"Failed to delete project chunks: {str(e)}") from e
