from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from tripgen.domain.schemas import ManifestPreview


class ChunkStatus(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ChunkState:
    status: ChunkStatus = ChunkStatus.PENDING
    accumulated_text: str = ""
    partial_payload: Optional[dict[str, Any]] = None
    final_payload: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    stream_progress_percent: float = 0.0
    is_streaming: bool = False
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (ChunkStatus.COMPLETED, ChunkStatus.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "accumulated_text": self.accumulated_text,
            "partial_payload": self.partial_payload,
            "final_payload": self.final_payload,
            "error_message": self.error_message,
            "stream_progress_percent": round(self.stream_progress_percent, 2),
            "is_streaming": self.is_streaming,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class Session:
    session_id: str
    manifest: Optional[ManifestPreview] = None


@dataclass(frozen=True)
class OrchestrationState:
    """
    Snapshot of one plan run. Never mutated in place: every transition
    produces a new instance (see tripgen.domain.reducer).
    """

    is_loading: bool = False
    session: Optional[Session] = None
    chunks: Mapping[int, ChunkState] = field(default_factory=dict)
    completed_count: int = 0
    total_chunks: int = 0
    overall_progress_percent: int = 0
    combined_result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    run_id: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def chunks_with_status(self, status: ChunkStatus) -> list[int]:
        return sorted(chunk_id for chunk_id, chunk in self.chunks.items() if chunk.status == status)

    def to_dict(self) -> dict[str, Any]:
        session: dict[str, Any] | None = None
        if self.session is not None:
            session = {
                "session_id": self.session.session_id,
                "manifest": (
                    self.session.manifest.model_dump(by_alias=True, mode="json")
                    if self.session.manifest is not None
                    else None
                ),
            }
        return {
            "run_id": self.run_id,
            "is_loading": self.is_loading,
            "session": session,
            "chunks": {str(chunk_id): chunk.to_dict() for chunk_id, chunk in sorted(self.chunks.items())},
            "completed_count": self.completed_count,
            "total_chunks": self.total_chunks,
            "overall_progress_percent": self.overall_progress_percent,
            "combined_result": self.combined_result,
            "error": self.error,
        }
