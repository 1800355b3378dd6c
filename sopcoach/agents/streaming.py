"""
Streaming chat turns.

A chat turn is fully generated and persisted up front, then delivered as an
ordered event sequence: one ``meta`` event, the answer as ``token`` events, and
a final ``done`` event. A closed session stops emitting silently and never
sends ``done``; the answer and progress written before delivery are kept.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Union

from ..config import RAGConfig, StreamingConfig, config
from ..errors import SessionForbidden, ShutdownTimeout, StreamDisconnected, classify_failure
from ..models.domain import MessageRole, RetrievedChunk, TrainingSession, User
from ..utils.language import detect_language
from ..utils.persistence import DataStore
from ..utils.vector_store import VectorIndex
from .generation_client import GenerationClient

logger = logging.getLogger(__name__)

_TOKEN_SPLIT = re.compile(r"(\s+)")


# ==================== Events ====================

@dataclass(frozen=True)
class MetaEvent:
    session_id: str
    module: str
    sources: List[RetrievedChunk] = field(default_factory=list)

    name = "meta"

    def payload(self) -> dict:
        return {
            "sessionId": self.session_id,
            "module": self.module,
            "sources": [chunk.source_ref() for chunk in self.sources],
        }


@dataclass(frozen=True)
class TokenEvent:
    token: str

    name = "token"

    def payload(self) -> dict:
        return {"token": self.token}


@dataclass(frozen=True)
class DoneEvent:
    session_id: str
    answer: str

    name = "done"

    def payload(self) -> dict:
        return {"sessionId": self.session_id, "answer": self.answer}


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    category: str = "unknown"

    name = "error"

    def payload(self) -> dict:
        return {"message": self.message, "category": self.category}


StreamEvent = Union[MetaEvent, TokenEvent, DoneEvent, ErrorEvent]


def split_tokens(answer: str) -> List[str]:
    """Split on whitespace runs, keeping them; ``"".join(tokens) == answer``."""
    return [piece for piece in _TOKEN_SPLIT.split(answer) if piece]


def format_sse(event: StreamEvent) -> str:
    """Serialize one event as a Server-Sent Events frame."""
    return f"event: {event.name}\ndata: {json.dumps(event.payload())}\n\n"


# ==================== Session ====================

class StreamState(str, Enum):
    CREATED = "created"
    META_SENT = "meta_sent"
    STREAMING = "streaming"
    DONE = "done"
    ABORTED = "aborted"


class StreamingSession:
    """
    Delivery of one already-generated answer.

    ``events()`` may be consumed once. ``close()`` may be called at any time
    from any task; emission stops before the next event.
    """

    def __init__(
        self,
        session_id: str,
        module: str,
        answer: str,
        sources: Optional[List[RetrievedChunk]] = None,
        token_delay_seconds: Optional[float] = None,
    ):
        self.session_id = session_id
        self.module = module
        self.answer = answer
        self.sources = list(sources or [])
        if token_delay_seconds is None:
            token_delay_seconds = config.streaming.token_delay_seconds
        self.token_delay_seconds = token_delay_seconds

        self.state = StreamState.CREATED
        self.closed = False

    @property
    def tokens(self) -> List[str]:
        return split_tokens(self.answer)

    def close(self) -> None:
        """Stop emission (client disconnect or shutdown)."""
        self.closed = True
        if self.state is not StreamState.DONE:
            self.state = StreamState.ABORTED

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self.closed:
            return

        self.state = StreamState.META_SENT
        yield MetaEvent(session_id=self.session_id, module=self.module, sources=self.sources)

        for index, token in enumerate(self.tokens):
            if index and self.token_delay_seconds > 0:
                await asyncio.sleep(self.token_delay_seconds)
            if self.closed:
                return
            self.state = StreamState.STREAMING
            yield TokenEvent(token=token)

        if self.closed:
            return
        self.state = StreamState.DONE
        yield DoneEvent(session_id=self.session_id, answer=self.answer)


class StreamRegistry:
    """Open streams in this process, for coordinated shutdown."""

    def __init__(self):
        self._sessions: Dict[int, StreamingSession] = {}
        self._drained = asyncio.Event()
        self._drained.set()

    @property
    def count(self) -> int:
        return len(self._sessions)

    def register(self, session: StreamingSession) -> None:
        self._sessions[id(session)] = session
        self._drained.clear()

    def unregister(self, session: StreamingSession) -> None:
        self._sessions.pop(id(session), None)
        if not self._sessions:
            self._drained.set()

    def close_all(self) -> int:
        """Close every open stream; returns how many were open."""
        sessions = list(self._sessions.values())
        for session in sessions:
            session.close()
        return len(sessions)

    async def wait_drained(self) -> None:
        await self._drained.wait()


async def stream_sse(
    session: StreamingSession,
    registry: Optional[StreamRegistry] = None,
) -> AsyncIterator[str]:
    """
    Yield SSE frames for a session while it is registered as open.

    If the consumer stops early (transport failure or disconnect) the session
    is aborted and no ``done`` frame is produced.
    """
    if registry is not None:
        registry.register(session)

    events = session.events()
    try:
        async for event in events:
            yield format_sse(event)
    except Exception as e:
        session.close()
        logger.info("%s", StreamDisconnected(f"stream {session.session_id} aborted: {e}"))
        raise
    finally:
        if session.state is not StreamState.DONE:
            session.close()
            logger.debug("Stream %s closed before completion", session.session_id)
        await events.aclose()
        if registry is not None:
            registry.unregister(session)


def error_frame(error: BaseException, message: Optional[str] = None) -> str:
    """SSE ``error`` frame for a turn that failed before streaming began."""
    return format_sse(
        ErrorEvent(message=message or str(error) or type(error).__name__, category=classify_failure(error))
    )


async def shutdown(registry: StreamRegistry, timeout: Optional[float] = None) -> int:
    """
    Force-close all open streams and wait for them to drain.

    Returns:
        Number of streams that were open

    Raises:
        ShutdownTimeout: If streams are still registered after ``timeout`` seconds
    """
    if timeout is None:
        timeout = config.streaming.shutdown_timeout_seconds

    closed = registry.close_all()
    logger.info("Shutdown: closing %d open stream(s)", closed)

    try:
        await asyncio.wait_for(registry.wait_drained(), timeout=timeout)
    except asyncio.TimeoutError:
        raise ShutdownTimeout(timeout, registry.count) from None

    return closed


# ==================== Chat turns ====================

class ChatTurnService:
    """
    Runs the retrieval-augmented chat workflow behind a streaming answer.

    Workflow per turn:
    1. Resolve (or create) the training session and check ownership
    2. Persist the user message and pick the response language
    3. Retrieve module-scoped context
    4. Generate the answer to completion
    5. Persist the answer and credit time on task
    6. Hand back a StreamingSession for delivery
    """

    def __init__(
        self,
        store: DataStore,
        vector_store: VectorIndex,
        generation_client: GenerationClient,
        rag_config: Optional[RAGConfig] = None,
        streaming_config: Optional[StreamingConfig] = None,
        default_module: Optional[str] = None,
    ):
        self.store = store
        self.vector_store = vector_store
        self.generation_client = generation_client
        self.rag_config = rag_config or config.rag
        self.streaming_config = streaming_config or config.streaming
        self.default_module = default_module or config.assessment.default_module

    async def create_session(self, user: User, module: Optional[str] = None) -> TrainingSession:
        session = await self.store.create_session(user.id, module or self.default_module)
        logger.info("Created training session %s (%s)", session.id, session.module)
        return session

    async def _resolve_session(
        self,
        user: User,
        session_id: Optional[str],
        module: Optional[str],
    ) -> tuple[TrainingSession, str]:
        session = await self.store.get_session(session_id) if session_id else None
        effective_module = module or (session.module if session else None) or self.default_module

        if session is None:
            session = await self.store.create_session(user.id, effective_module, session_id=session_id)

        if session.user_id != user.id:
            raise SessionForbidden(session.id)

        await self.store.touch_session(session.id)
        return session, effective_module

    async def _response_language(self, user: User, message: str) -> str:
        detected = detect_language(message)
        if detected and detected != user.language:
            await self.store.update_user(user.id, language=detected)
            user.language = detected
        return detected or user.language

    async def start_turn(
        self,
        user: User,
        message: str,
        session_id: Optional[str] = None,
        module: Optional[str] = None,
        top_k: Optional[int] = None,
        time_seconds: Optional[float] = None,
    ) -> StreamingSession:
        """
        Answer one operator message and return its stream.

        Raises:
            SessionForbidden: If ``session_id`` belongs to another user
        """
        session, effective_module = await self._resolve_session(user, session_id, module)

        await self.store.create_message(session.id, MessageRole.USER, message)
        language = await self._response_language(user, message)

        context_chunks = await self.vector_store.query(
            message,
            self.rag_config.top_k if top_k is None else top_k,
            effective_module,
        )

        answer = await self.generation_client.generate_assistance(
            question=message,
            language=language,
            skill_level=user.skill_level,
            module=effective_module,
            context_chunks=context_chunks,
        )

        await self.store.create_message(session.id, MessageRole.ASSISTANT, answer)

        credit = self.streaming_config.default_chat_seconds if time_seconds is None else time_seconds
        await self.store.upsert_module_progress(
            user.id,
            effective_module,
            max(self.streaming_config.min_chat_seconds, math.floor(credit)),
            completed=False,
        )

        return StreamingSession(
            session_id=session.id,
            module=effective_module,
            answer=answer,
            sources=context_chunks,
            token_delay_seconds=self.streaming_config.token_delay_seconds,
        )

    async def explain(
        self,
        user: User,
        question: str,
        answer: str,
        module: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> dict:
        """
        Explain why an answer was given, grounded in retrieved context.

        The explanation is added to the chat history only when ``session_id``
        names a session owned by ``user``.
        """
        context_chunks = await self.vector_store.query(
            question,
            self.rag_config.explain_top_k,
            module,
        )

        explanation = await self.generation_client.explain_why(
            question=question,
            answer=answer,
            language=user.language,
            context_chunks=context_chunks,
        )

        if session_id:
            session = await self.store.get_session(session_id)
            if session is not None and session.user_id == user.id:
                await self.store.create_message(
                    session_id, MessageRole.ASSISTANT, f"Explain Why: {explanation}"
                )

        return {
            "explanation": explanation,
            "sources": [chunk.source_ref() for chunk in context_chunks],
        }
