from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ChunkDefinition:
    id: int
    section: str
    weight: float
    output_category: str
    description: str = ""


CHUNK_PLAN: tuple[ChunkDefinition, ...] = (
    ChunkDefinition(1, "locations", 0.30, "info", "Neighborhoods, hotels, restaurants, and bars"),
    ChunkDefinition(2, "attractions", 0.25, "info", "Places to visit and must-try local food and drink"),
    ChunkDefinition(3, "practical", 0.25, "practical", "Weather, safety, transportation, and money"),
    ChunkDefinition(4, "cultural", 0.20, "itinerary", "Activities, history, and detailed itinerary"),
)


def validate_chunk_plan(plan: tuple[ChunkDefinition, ...]) -> tuple[ChunkDefinition, ...]:
    if not plan:
        raise ValueError("Chunk plan must define at least one chunk")
    seen: set[int] = set()
    for chunk in plan:
        if chunk.id in seen:
            raise ValueError(f"Duplicate chunk id in plan: {chunk.id}")
        if not 0.0 < chunk.weight <= 1.0:
            raise ValueError(f"Chunk {chunk.id} weight must be in (0, 1], got {chunk.weight}")
        seen.add(chunk.id)
    return tuple(sorted(plan, key=lambda c: c.id))


validate_chunk_plan(CHUNK_PLAN)


def chunk_ids(plan: tuple[ChunkDefinition, ...] = CHUNK_PLAN) -> list[int]:
    return [chunk.id for chunk in plan]


def get_chunk_definition(chunk_id: int, plan: tuple[ChunkDefinition, ...] = CHUNK_PLAN) -> ChunkDefinition:
    for chunk in plan:
        if chunk.id == chunk_id:
            return chunk
    raise KeyError(f"Unknown chunk id: {chunk_id}")
