from __future__ import annotations

from typing import Any, Optional

import structlog

from tripgen.domain.state import ChunkStatus, OrchestrationState

logger = structlog.get_logger(__name__)

DEFAULT_MIN_VIABLE_CHUNKS = 2


def is_settled(state: OrchestrationState) -> bool:
    """True when no chunk is waiting for or running an attempt."""
    return all(chunk.status not in (ChunkStatus.PENDING, ChunkStatus.LOADING) for chunk in state.chunks.values())


def merge_payloads(state: OrchestrationState, chunk_ids: list[int]) -> dict[str, Any]:
    """
    Shallow merge in ascending chunk id order, seeded with the request context.
    Later chunks win on key collisions; collisions are logged because each
    chunk is expected to own disjoint top-level keys.
    """
    merged: dict[str, Any] = dict(state.context)
    owners: dict[str, int] = {}
    for chunk_id in sorted(chunk_ids):
        payload = state.chunks[chunk_id].final_payload or {}
        for key, value in payload.items():
            if key in owners:
                logger.warning(
                    "combined_result_key_collision",
                    key=key,
                    previous_chunk=owners[key],
                    winning_chunk=chunk_id,
                )
            owners[key] = chunk_id
            merged[key] = value
    return merged


def try_combine(
    state: OrchestrationState,
    min_viable_chunks: int = DEFAULT_MIN_VIABLE_CHUNKS,
) -> Optional[dict[str, Any]]:
    completed = [
        chunk_id
        for chunk_id, chunk in state.chunks.items()
        if chunk.status == ChunkStatus.COMPLETED and chunk.final_payload is not None
    ]
    total = state.total_chunks or len(state.chunks)
    if not completed or total <= 0:
        return None

    fully_complete = len(completed) == total
    minimum_viable = len(completed) >= min_viable_chunks and is_settled(state)
    if not (fully_complete or minimum_viable):
        return None

    return merge_payloads(state, completed)
