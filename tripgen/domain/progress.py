"""
Weighted progress accounting for a plan run.

The session/manifest step owns a small fixed share of the bar; the rest is
split across chunks proportionally to their registry weight. A chunk counts
fully once its final payload is present, fractionally while it is streaming,
and not at all otherwise.
"""

from __future__ import annotations

from tripgen.domain.chunk_plan import CHUNK_PLAN, ChunkDefinition
from tripgen.domain.state import ChunkState, ChunkStatus, OrchestrationState

DEFAULT_MANIFEST_WEIGHT = 0.1
# Length of a typical finished chunk; arbitrary, kept configurable through settings.
DEFAULT_EXPECTED_STREAM_CHARS = 4000
DEFAULT_STREAM_CAP_PERCENT = 95.0


def stream_progress_percent(
    accumulated_chars: int,
    expected_chars: int = DEFAULT_EXPECTED_STREAM_CHARS,
    cap_percent: float = DEFAULT_STREAM_CAP_PERCENT,
) -> float:
    """Streaming alone never reaches 100; only a `complete` event does."""
    if accumulated_chars <= 0:
        return 0.0
    return min(accumulated_chars / max(1, expected_chars) * 100.0, cap_percent)


def chunk_completion_fraction(chunk: ChunkState | None) -> float:
    if chunk is None:
        return 0.0
    if chunk.final_payload is not None:
        return 1.0
    if chunk.status == ChunkStatus.LOADING and chunk.is_streaming:
        return max(0.0, min(chunk.stream_progress_percent, 100.0)) / 100.0
    return 0.0


def compute_progress(
    state: OrchestrationState,
    plan: tuple[ChunkDefinition, ...] = CHUNK_PLAN,
    manifest_weight: float = DEFAULT_MANIFEST_WEIGHT,
) -> int:
    # The chunked variant has no manifest; a ready session earns the same share.
    manifest_part = manifest_weight if state.session is not None else 0.0

    total_weight = sum(chunk.weight for chunk in plan)
    weighted = sum(chunk.weight * chunk_completion_fraction(state.chunks.get(chunk.id)) for chunk in plan)
    chunk_part = (1.0 - manifest_weight) * (weighted / total_weight if total_weight > 0 else 0.0)

    return max(0, min(100, int(round((manifest_part + chunk_part) * 100))))
