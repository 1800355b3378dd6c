"""
Utility modules for sopcoach.

- embeddings: deterministic hashing embedder and cosine similarity
- vector_store: in-process and Chroma indexes behind a fallback facade
- document_loader: load and chunk SOP documents for ingestion
- persistence: async data store interface and in-memory implementation
- progress: module progress accumulation and analytics
- language: response-language detection
- health: dependency health snapshot
- log: logging setup
"""

from .embeddings import HashingEmbedder, cosine_similarity
from .vector_store import (
    ChromaVectorIndex,
    FallbackVectorStore,
    InMemoryVectorIndex,
    VectorIndex,
    create_vector_store,
)
from .document_loader import DocumentLoader, ingest_path
from .persistence import DataStore, InMemoryStore
from .progress import accumulate_progress, build_analytics_snapshot, score_summary
from .language import detect_language, normalize_language

__all__ = [
    "HashingEmbedder",
    "cosine_similarity",
    "VectorIndex",
    "InMemoryVectorIndex",
    "ChromaVectorIndex",
    "FallbackVectorStore",
    "create_vector_store",
    "DocumentLoader",
    "ingest_path",
    "DataStore",
    "InMemoryStore",
    "accumulate_progress",
    "build_analytics_snapshot",
    "score_summary",
    "detect_language",
    "normalize_language",
]
