"""
Vector store management for retrieval.

Features:
- In-process brute-force index (always available, lock-protected writes)
- Remote ChromaDB index with lazy connection and bounded call time
- Composite store that never hard-fails: writes go to both, reads fall back
- Module-scoped queries
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from ..config import RAGConfig, config
from ..errors import RetrievalDegraded
from ..models.domain import Chunk, RetrievedChunk
from .embeddings import HashingEmbedder, cosine_similarity

logger = logging.getLogger(__name__)


class VectorIndex(ABC):
    """Common interface for every index and for the composite store."""

    @abstractmethod
    async def upsert(self, chunks: Iterable[Chunk]) -> None:
        ...

    @abstractmethod
    async def query(
        self,
        text: str,
        top_k: int,
        module: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        """Return at most ``max(1, top_k)`` chunks sorted by descending score."""


class InMemoryVectorIndex(VectorIndex):
    """
    Brute-force cosine index held in process memory.

    Corpora are small (thousands of chunks), so every query rescans and
    re-ranks all candidates. Writers take a lock and swap in a new mapping;
    readers work on whatever mapping was current when they started.
    """

    def __init__(self, embedder: Optional[HashingEmbedder] = None):
        self.embedder = embedder or HashingEmbedder()
        self._entries: Dict[str, tuple[Chunk, Any]] = {}
        self._write_lock = asyncio.Lock()

    async def upsert(self, chunks: Iterable[Chunk]) -> None:
        embedded = [(chunk, self.embedder.embed(chunk.text)) for chunk in chunks]
        if not embedded:
            return

        async with self._write_lock:
            entries = dict(self._entries)
            for chunk, embedding in embedded:
                entries[chunk.id] = (chunk, embedding)
            self._entries = entries

    async def query(
        self,
        text: str,
        top_k: int,
        module: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        entries = self._entries
        query_embedding = self.embedder.embed(text)

        scored = [
            RetrievedChunk.from_chunk(chunk, cosine_similarity(query_embedding, embedding))
            for chunk, embedding in entries.values()
            if not module or chunk.module == module
        ]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[: max(1, top_k)]

    def count(self) -> int:
        return len(self._entries)


class ChromaVectorIndex(VectorIndex):
    """
    Remote index backed by a ChromaDB server.

    The chromadb client is synchronous, so every call runs in a worker thread
    and is bounded by ``remote_timeout_seconds``. The collection is created on
    first use; a failed connection is retried on the next call.
    """

    def __init__(
        self,
        url: str,
        collection_name: str = None,
        embedder: Optional[HashingEmbedder] = None,
        timeout_seconds: float = None,
        default_module: str = None,
    ):
        self.url = url
        self.collection_name = collection_name or config.rag.chroma_collection
        self.embedder = embedder or HashingEmbedder()
        self.timeout_seconds = timeout_seconds or config.rag.remote_timeout_seconds
        self.default_module = default_module or config.assessment.default_module

        self._client = None
        self._collection = None
        self._init_lock = asyncio.Lock()

    def _connect(self):
        """Create the HTTP client and collection (blocking)."""
        import chromadb
        from chromadb.config import Settings

        parsed = urlparse(self.url)
        ssl = parsed.scheme == "https"
        client = chromadb.HttpClient(
            host=parsed.hostname or "localhost",
            port=parsed.port or (443 if ssl else 8000),
            ssl=ssl,
            settings=Settings(anonymized_telemetry=False),
        )
        collection = client.get_or_create_collection(
            name=self.collection_name,
            metadata={"purpose": "sop_training_documents"},
        )
        return client, collection

    async def _call(self, func, *args, **kwargs):
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=self.timeout_seconds,
        )

    async def _get_collection(self):
        if self._collection is not None:
            return self._collection

        async with self._init_lock:
            if self._collection is None:
                self._client, self._collection = await self._call(self._connect)
                logger.info(
                    "Connected to Chroma collection %s at %s",
                    self.collection_name,
                    self.url,
                )
        return self._collection

    async def heartbeat(self) -> int:
        """Ping the server; raises on failure or timeout."""
        await self._get_collection()
        return await self._call(self._client.heartbeat)

    @staticmethod
    def _flat_metadata(chunk: Chunk) -> Dict[str, Any]:
        # Chroma metadata must be a flat dict with simple, non-null types
        metadata = {
            key: value
            for key, value in chunk.metadata.items()
            if isinstance(value, (str, int, float, bool))
        }
        metadata["module"] = chunk.module
        metadata["source"] = chunk.source
        return metadata

    async def upsert(self, chunks: Iterable[Chunk]) -> None:
        chunks = list(chunks)
        if not chunks:
            return

        collection = await self._get_collection()
        await self._call(
            collection.upsert,
            ids=[chunk.id for chunk in chunks],
            documents=[chunk.text for chunk in chunks],
            embeddings=[self.embedder.embed(chunk.text).tolist() for chunk in chunks],
            metadatas=[self._flat_metadata(chunk) for chunk in chunks],
        )

    async def query(
        self,
        text: str,
        top_k: int,
        module: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        collection = await self._get_collection()
        result = await self._call(
            collection.query,
            query_embeddings=[self.embedder.embed(text).tolist()],
            n_results=max(1, top_k),
            where={"module": module} if module else None,
        )

        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        retrieved = []
        for i, chunk_id in enumerate(ids):
            metadata = dict(metadatas[i] or {}) if i < len(metadatas) else {}
            distance = distances[i] if i < len(distances) else None
            retrieved.append(
                RetrievedChunk(
                    id=chunk_id,
                    text=documents[i] if i < len(documents) and documents[i] else "",
                    module=metadata.get("module") or module or self.default_module,
                    source=metadata.get("source") or "unknown",
                    metadata=metadata,
                    score=1.0 / (1.0 + distance) if distance is not None else 0.0,
                )
            )

        retrieved.sort(key=lambda item: item.score, reverse=True)
        return retrieved


class FallbackVectorStore(VectorIndex):
    """
    Composite store: optional remote index over a required in-process index.

    Writes always land in the fallback first, then are mirrored to the remote
    on a best-effort basis. Reads try the remote and transparently switch to
    the fallback on any failure. Remote-only writes may be lost; local reads
    never are.
    """

    def __init__(
        self,
        fallback: Optional[InMemoryVectorIndex] = None,
        remote: Optional[VectorIndex] = None,
    ):
        self.fallback = fallback or InMemoryVectorIndex()
        self.remote = remote

    async def upsert(self, chunks: Iterable[Chunk]) -> None:
        chunks = list(chunks)
        await self.fallback.upsert(chunks)

        if self.remote is None:
            return

        try:
            await self.remote.upsert(chunks)
        except Exception as e:
            degraded = RetrievalDegraded(f"remote upsert failed: {type(e).__name__}: {e}")
            logger.warning("%s; %d chunk(s) kept in-process only", degraded, len(chunks))

    async def query(
        self,
        text: str,
        top_k: int,
        module: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        if self.remote is not None:
            try:
                return await self.remote.query(text, top_k, module)
            except Exception as e:
                degraded = RetrievalDegraded(f"remote query failed: {type(e).__name__}: {e}")
                logger.warning("%s; serving from in-process index", degraded)

        return await self.fallback.query(text, top_k, module)


def create_vector_store(
    rag_config: Optional[RAGConfig] = None,
    embedder: Optional[HashingEmbedder] = None,
) -> FallbackVectorStore:
    """
    Build the application vector store.

    A Chroma remote is attached only when a URL is configured.

    Example:
        >>> store = create_vector_store()
        >>> await store.upsert(chunks)
        >>> results = await store.query("lockout tagout", top_k=4)
    """
    rag_config = rag_config or config.rag
    embedder = embedder or HashingEmbedder(rag_config.embedding_dimension)

    remote = None
    if rag_config.chroma_url:
        remote = ChromaVectorIndex(
            url=rag_config.chroma_url,
            collection_name=rag_config.chroma_collection,
            embedder=embedder,
            timeout_seconds=rag_config.remote_timeout_seconds,
        )

    return FallbackVectorStore(fallback=InMemoryVectorIndex(embedder), remote=remote)
