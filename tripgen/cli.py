"""Command line runner: generates one plan against a generation service and prints progress."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from tripgen.core.observability.logger_config import configure_structlog
from tripgen.core.settings import settings
from tripgen.domain.schemas import PlanningRequest
from tripgen.domain.state import ChunkStatus, OrchestrationState
from tripgen.infrastructure.generation_client import GenerationServiceClient
from tripgen.services.plan_orchestrator import PlanOrchestrator

_STATUS_ICONS = {
    ChunkStatus.PENDING: "·",
    ChunkStatus.LOADING: "…",
    ChunkStatus.COMPLETED: "✔",
    ChunkStatus.ERROR: "✖",
}


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a travel plan in concurrent chunks")
    parser.add_argument("--request", required=True, help="Path to the planning request JSON file")
    parser.add_argument(
        "--service-url",
        default=settings.GENERATION_SERVICE_URL,
        help="Base URL of the generation service",
    )
    parser.add_argument(
        "--mode",
        choices=("chunked", "streaming"),
        default=settings.ORCHESTRATION_MODE,
        help="Request/response chunks or streamed chunks",
    )
    parser.add_argument("--output", help="Write the combined plan JSON here instead of stdout")
    parser.add_argument("--log-level", default="WARNING", help="Log level for structured logs (stderr)")
    return parser.parse_args(argv)


def load_request(path: str) -> PlanningRequest:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return PlanningRequest.model_validate(raw)


def _render_progress(state: OrchestrationState) -> str:
    markers = " ".join(
        f"{chunk_id}{_STATUS_ICONS.get(chunk.status, '?')}" for chunk_id, chunk in sorted(state.chunks.items())
    )
    return f"[{state.overall_progress_percent:3d}%] {markers}"


class _ProgressPrinter:
    def __init__(self) -> None:
        self._last_line = ""

    def __call__(self, state: OrchestrationState) -> None:
        line = _render_progress(state)
        if line != self._last_line:
            self._last_line = line
            print(line, file=sys.stderr)


def _print_summary(state: OrchestrationState) -> None:
    print("=" * 60, file=sys.stderr)
    print(f"Chunks completed: {state.completed_count}/{state.total_chunks}", file=sys.stderr)
    for chunk_id, chunk in sorted(state.chunks.items()):
        if chunk.status == ChunkStatus.ERROR:
            print(f"  chunk {chunk_id} failed: {chunk.error_message}", file=sys.stderr)
    if state.error:
        print(f"Run failed: {state.error}", file=sys.stderr)
    elif state.combined_result is None:
        print("Not enough chunks completed to assemble a plan.", file=sys.stderr)
    print("=" * 60, file=sys.stderr)


def _write_result(result: dict[str, Any], output: Optional[str]) -> None:
    rendered = json.dumps(result, ensure_ascii=False, indent=2)
    if output:
        Path(output).write_text(rendered + "\n", encoding="utf-8")
        print(f"Plan written to {output}", file=sys.stderr)
    else:
        print(rendered)


async def run(args: argparse.Namespace) -> int:
    try:
        request = load_request(args.request)
    except (OSError, ValueError, ValidationError) as exc:
        print(f"Invalid request file: {exc}", file=sys.stderr)
        return 2

    async with GenerationServiceClient(base_url=args.service_url) as client:
        orchestrator = PlanOrchestrator(client, mode=args.mode)
        orchestrator.subscribe(_ProgressPrinter())
        state = await orchestrator.generate_plan(request)

    _print_summary(state)
    if state.combined_result is None:
        return 1
    _write_result(state.combined_result, args.output)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_structlog(level=args.log_level)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
