from __future__ import annotations

from typing import AsyncContextManager, AsyncIterator, Optional, Protocol

from tripgen.domain.schemas import ChunkFetchResponse, ManifestPreview, PlanningRequest, SessionInitResponse


class IGenerationService(Protocol):
    """Request/response contract of the external generation service."""

    async def init_session(self, request: PlanningRequest) -> SessionInitResponse: ...

    async def fetch_manifest(self, request: PlanningRequest) -> tuple[Optional[str], ManifestPreview]: ...

    async def fetch_chunk(self, chunk_id: int, session_id: str, request: PlanningRequest) -> ChunkFetchResponse: ...

    def open_chunk_stream(
        self, chunk_id: int, session_id: str, request: PlanningRequest
    ) -> AsyncContextManager[AsyncIterator[bytes]]: ...
