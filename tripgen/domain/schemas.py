from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Destination(_WireModel):
    name: str
    country: str = ""
    description: str = ""
    best_time: Optional[str] = Field(default=None, alias="bestTime")


class PlanningRequest(_WireModel):
    """Full planning request; forwarded verbatim as the body of every service call."""

    destination: Destination
    traveler_type: dict[str, Any] = Field(default_factory=dict, alias="travelerType")
    preferences: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def combiner_seed(self) -> dict[str, Any]:
        return {"destination": self.destination.model_dump(by_alias=True, exclude_none=True, mode="json")}


class ManifestOverview(_WireModel):
    duration: str = ""
    budget: str = ""
    best_for: List[str] = Field(default_factory=list, alias="bestFor")
    highlights: List[str] = Field(default_factory=list)
    vibe: str = ""


class ManifestSection(_WireModel):
    id: str
    title: str = ""
    description: str = ""
    estimated_items: int = Field(default=0, alias="estimatedItems")
    priority: int = 0
    preview: List[str] = Field(default_factory=list)


class QuickRecommendations(_WireModel):
    top_attractions: List[str] = Field(default_factory=list, alias="topAttractions")
    must_try_food: List[str] = Field(default_factory=list, alias="mustTryFood")
    neighborhoods: List[str] = Field(default_factory=list)
    budget_tips: List[str] = Field(default_factory=list, alias="budgetTips")


class ManifestPreview(_WireModel):
    """Cheap preview of the final document, available before any chunk finishes."""

    overview: Optional[ManifestOverview] = None
    sections: List[ManifestSection] = Field(default_factory=list)
    quick_recommendations: Optional[QuickRecommendations] = Field(default=None, alias="quickRecommendations")


class ChunkListing(_WireModel):
    id: int
    section: str = ""
    description: str = ""


class SessionInitResponse(_WireModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    chunks: List[ChunkListing] = Field(default_factory=list)
    total_chunks: Optional[int] = Field(default=None, alias="totalChunks")


class ChunkInfo(_WireModel):
    chunk_id: int = Field(alias="chunkId")
    total_chunks: int = Field(alias="totalChunks")
    section: str = ""
    description: str = ""


class ChunkFetchResponse(_WireModel):
    chunk: ChunkInfo
    data: dict[str, Any]
    is_complete: bool = Field(default=False, alias="isComplete")
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class StreamEventType(str, Enum):
    START = "start"
    CONTENT_DELTA = "content_delta"
    PARTIAL_JSON = "partial_json"
    COMPLETE = "complete"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One `data:` record of a chunk stream."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: StreamEventType
    chunk_id: Optional[int] = Field(default=None, alias="chunkId")
    delta: Optional[str] = None
    accumulated_text: Optional[str] = Field(default=None, alias="accumulated")
    payload: Optional[dict[str, Any]] = Field(default=None, alias="data")
    error_message: Optional[str] = Field(default=None, alias="error")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    timestamp: Optional[float] = None
