"""
Document loading and chunking for SOP ingestion.

Features:
- Load SOP documents from multiple formats (Markdown, TXT, PDF)
- Boundary-aware chunking with overlap
- Module inferred from the containing folder
- Deterministic chunk ids, so re-ingesting a file replaces its chunks
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import re
from pathlib import Path
from typing import List, Optional

from pypdf import PdfReader

from ..config import config
from ..models.domain import Chunk
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".md", ".markdown", ".txt", ".pdf")


def normalize_text(text: str) -> str:
    """Unify line endings and collapse runs of blank lines."""
    text = text.replace("\r\n", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def relative_source(filepath: Path) -> str:
    try:
        return os.path.relpath(filepath, Path.cwd())
    except ValueError:
        # Different drive on Windows
        return str(filepath)


class DocumentLoader:
    """
    Load and chunk SOP documents.

    Supports:
    - Markdown (.md, .markdown)
    - Plain text (.txt)
    - PDF (.pdf) via pypdf, chunked page by page
    """

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        default_module: str = None,
    ):
        """
        Initialize document loader.

        Args:
            chunk_size: Maximum chunk size in characters (default from config)
            chunk_overlap: Overlap between chunks (default from config)
            default_module: Module used when none can be inferred
        """
        self.chunk_size = chunk_size or config.rag.chunk_size
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else config.rag.chunk_overlap
        self.default_module = default_module or config.assessment.default_module

        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < "
                f"chunk_size ({self.chunk_size})"
            )

    def infer_module(self, filepath: Path, override: Optional[str] = None) -> str:
        if override:
            return override
        return filepath.resolve().parent.name or self.default_module

    def load_file(self, filepath: Path | str, module: Optional[str] = None) -> List[Chunk]:
        """
        Load a single file and return its chunks.

        Raises:
            ValueError: If file type is unsupported
            FileNotFoundError: If file doesn't exist
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        suffix = filepath.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            raise ValueError(
                f"Unsupported file type: {suffix}. "
                f"Supported: {', '.join(SUPPORTED_SUFFIXES)}"
            )

        module = self.infer_module(filepath, module)
        source = relative_source(filepath)

        if suffix == ".pdf":
            pages = self._read_pdf(filepath)
        else:
            with open(filepath, "r", encoding="utf-8", errors="ignore") as f:
                pages = [(None, f.read())]

        chunks = []
        for page, text in pages:
            for piece in self._chunk_text(normalize_text(text)):
                metadata = {"chunk_index": len(chunks), "type": suffix.lstrip(".")}
                if page is not None:
                    metadata["page"] = page
                chunks.append(
                    Chunk(
                        id=self._chunk_id(source, len(chunks)),
                        text=piece,
                        module=module,
                        source=source,
                        metadata=metadata,
                    )
                )

        return chunks

    def load_path(self, path: Path | str, module: Optional[str] = None) -> List[Chunk]:
        """
        Load a file, or every supported file under a directory.

        Raises:
            FileNotFoundError: If the path doesn't exist
            ValueError: If a directory holds no supported files
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Path not found: {path}")

        if path.is_file():
            return self.load_file(path, module)

        files = sorted(
            filepath
            for filepath in path.rglob("*")
            if filepath.is_file() and filepath.suffix.lower() in SUPPORTED_SUFFIXES
        )
        if not files:
            raise ValueError(
                f"No ingestible files found in {path}. "
                f"Supported: {', '.join(SUPPORTED_SUFFIXES)}"
            )

        chunks = []
        for filepath in files:
            try:
                chunks.extend(self.load_file(filepath, module))
            except ValueError as e:
                logger.warning("Skipping %s: %s", filepath, e)

        logger.info("Loaded %d chunk(s) from %d file(s) under %s", len(chunks), len(files), path)
        return chunks

    def _read_pdf(self, filepath: Path) -> List[tuple[int, str]]:
        try:
            reader = PdfReader(str(filepath))
            pages = []
            for page_num, page in enumerate(reader.pages, 1):
                text = page.extract_text() or ""
                if text.strip():
                    pages.append((page_num, text))
            return pages
        except Exception as e:
            raise ValueError(f"Failed to load PDF {filepath}: {e}") from e

    @staticmethod
    def _chunk_id(source: str, index: int) -> str:
        return hashlib.md5(f"{source}#{index}".encode()).hexdigest()

    def _chunk_text(self, text: str) -> List[str]:
        """
        Split text into overlapping chunks.

        Strategy:
        - Split on paragraph boundaries when possible
        - Otherwise avoid splitting mid-sentence
        - Respect chunk_size and chunk_overlap
        """
        if not text:
            return []

        if len(text) <= self.chunk_size:
            return [text]

        chunks = []
        start = 0
        last_start = -1

        while start < len(text):
            end = start + self.chunk_size

            if end < len(text):
                paragraph_break = text.rfind("\n\n", start, end)
                if paragraph_break > start + self.chunk_size // 2:
                    end = paragraph_break + 2
                else:
                    sentence_break = max(
                        text.rfind(". ", start, end),
                        text.rfind("! ", start, end),
                        text.rfind("? ", start, end),
                    )
                    if sentence_break > start + self.chunk_size // 2:
                        end = sentence_break + 2

            chunk = text[start:end].strip()
            if chunk:
                chunks.append(chunk)

            if end >= len(text):
                break

            start = end - self.chunk_overlap
            if start <= last_start:
                start = end
            last_start = start

        return chunks


async def ingest_path(
    path: Path | str,
    vector_store: VectorIndex,
    module: Optional[str] = None,
    loader: Optional[DocumentLoader] = None,
) -> int:
    """
    Load, chunk and upsert documents into a vector store.

    Returns:
        Number of chunks ingested

    Example:
        >>> count = await ingest_path("docs/sops", store, module="Lockout/Tagout")
    """
    loader = loader or DocumentLoader()
    chunks = await asyncio.to_thread(loader.load_path, path, module)
    await vector_store.upsert(chunks)
    logger.info("Ingested %d chunk(s) from %s", len(chunks), path)
    return len(chunks)
