"""Dependency health snapshot."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..config import Config
from ..models.domain import utcnow
from .vector_store import ChromaVectorIndex


@dataclass
class DependencyHealth:
    configured: bool
    ok: bool
    latency_ms: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"configured": self.configured, "ok": self.ok, "latencyMs": self.latency_ms}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class HealthSnapshot:
    status: str
    timestamp: datetime = field(default_factory=utcnow)
    dependencies: Dict[str, DependencyHealth] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "dependencies": {name: dep.to_dict() for name, dep in self.dependencies.items()},
        }


async def check_chroma(app_config: Config, remote_index: Optional[ChromaVectorIndex] = None) -> DependencyHealth:
    started = time.perf_counter()

    def elapsed_ms() -> int:
        return int((time.perf_counter() - started) * 1000)

    if remote_index is None:
        if not app_config.rag.chroma_url:
            return DependencyHealth(configured=False, ok=False, latency_ms=elapsed_ms())
        remote_index = ChromaVectorIndex(
            url=app_config.rag.chroma_url,
            collection_name=app_config.rag.chroma_collection,
            timeout_seconds=app_config.rag.remote_timeout_seconds,
        )

    try:
        await asyncio.wait_for(
            remote_index.heartbeat(),
            timeout=app_config.rag.remote_timeout_seconds,
        )
    except asyncio.TimeoutError:
        return DependencyHealth(
            configured=True,
            ok=False,
            latency_ms=elapsed_ms(),
            error=f"Timed out after {app_config.rag.remote_timeout_seconds}s",
        )
    except Exception as e:
        return DependencyHealth(
            configured=True, ok=False, latency_ms=elapsed_ms(), error=str(e) or type(e).__name__
        )

    return DependencyHealth(configured=True, ok=True, latency_ms=elapsed_ms())


async def get_health_snapshot(
    app_config: Config,
    remote_index: Optional[ChromaVectorIndex] = None,
) -> HealthSnapshot:
    """
    Probe external dependencies.

    Status is "ok" when every configured dependency answers (or none is
    configured), otherwise "degraded".
    """
    chroma = await check_chroma(app_config, remote_index)

    configured = [dep for dep in (chroma,) if dep.configured]
    status = "ok" if all(dep.ok for dep in configured) else "degraded"

    return HealthSnapshot(status=status, dependencies={"chroma": chroma})
