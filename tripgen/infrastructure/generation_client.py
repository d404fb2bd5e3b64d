from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import structlog
from pydantic import ValidationError

from tripgen.core.settings import settings
from tripgen.domain.exceptions import GenerationServiceError, InvalidChunkResponse
from tripgen.domain.schemas import ChunkFetchResponse, ManifestPreview, PlanningRequest, SessionInitResponse

logger = structlog.get_logger(__name__)


def _build_headers(api_key: Optional[str], default_headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    headers = dict(default_headers or {})
    if api_key and "Authorization" not in headers:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _raise_from_http_error(status_code: int, response_text: str, response_headers: Dict[str, str], payload: Any) -> None:
    request_id = response_headers.get("X-Correlation-ID") or response_headers.get("x-correlation-id") or "unknown"
    error = payload.get("error") if isinstance(payload, dict) else None

    if isinstance(error, dict):
        code = str(error.get("code") or "UNKNOWN_ERROR")
        message = str(error.get("message") or "Request failed")
        details = error.get("details")
        request_id = str(error.get("request_id") or request_id)
    elif isinstance(error, str):
        # Flat envelope: {"error": "...", "details": "..."}
        code = "GENERATION_FAILED" if status_code >= 500 else "REQUEST_REJECTED"
        message = error
        details = payload.get("details")
    else:
        code = "UNPARSEABLE_ERROR"
        message = response_text or f"HTTP {status_code}"
        details = None

    raise GenerationServiceError(
        status=status_code,
        code=code,
        message=message,
        details=details,
        request_id=request_id,
    )


def _raise_for_response(response: httpx.Response) -> None:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    _raise_from_http_error(response.status_code, response.text, dict(response.headers), payload)


class GenerationServiceClient:
    """
    Async client for the trip-planning generation service.
    Uses a shared httpx.AsyncClient for connection reuse.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: float = 60.0,
        default_headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = str(base_url or settings.GENERATION_SERVICE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.GENERATION_SERVICE_API_KEY
        self.timeout_seconds = timeout_seconds
        self.default_headers = default_headers or {}
        self._managed_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds, connect=10.0))

    async def __aenter__(self) -> "GenerationServiceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._managed_client:
            await self.client.aclose()

    async def init_session(self, request: PlanningRequest) -> SessionInitResponse:
        data = await self._post_json(settings.SESSION_INIT_PATH, request)
        try:
            return SessionInitResponse.model_validate(data)
        except ValidationError as exc:
            raise InvalidChunkResponse(f"Malformed session response: {exc.error_count()} validation errors") from exc

    async def fetch_manifest(self, request: PlanningRequest) -> tuple[Optional[str], ManifestPreview]:
        data = await self._post_json(settings.MANIFEST_PATH, request)
        try:
            manifest = ManifestPreview.model_validate(data)
        except ValidationError as exc:
            raise InvalidChunkResponse(f"Malformed manifest: {exc.error_count()} validation errors") from exc
        session_id = data.get("sessionId")
        return (str(session_id) if session_id else None), manifest

    async def fetch_chunk(self, chunk_id: int, session_id: str, request: PlanningRequest) -> ChunkFetchResponse:
        data = await self._post_json(
            settings.CHUNK_FETCH_PATH,
            request,
            params={"chunk": chunk_id, "sessionId": session_id},
        )
        try:
            return ChunkFetchResponse.model_validate(data)
        except ValidationError as exc:
            raise InvalidChunkResponse(
                f"Malformed response for chunk {chunk_id}: {exc.error_count()} validation errors"
            ) from exc

    @asynccontextmanager
    async def open_chunk_stream(
        self, chunk_id: int, session_id: str, request: PlanningRequest
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        headers = _build_headers(self.api_key, self.default_headers)
        headers["Accept"] = "text/event-stream"
        async with self.client.stream(
            "POST",
            self.base_url + settings.CHUNK_STREAM_PATH,
            params={"chunk": chunk_id, "sessionId": session_id},
            json=request.to_wire(),
            headers=headers,
        ) as response:
            if not response.is_success:
                await response.aread()
                _raise_for_response(response)
            yield response.aiter_bytes()

    async def _post_json(
        self,
        path: str,
        request: PlanningRequest,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = await self.client.post(
            self.base_url + path,
            params=params,
            json=request.to_wire(),
            headers=_build_headers(self.api_key, self.default_headers),
        )
        if not response.is_success:
            _raise_for_response(response)

        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidChunkResponse(f"Non-JSON response from {path}") from exc
        if not isinstance(data, dict):
            raise InvalidChunkResponse(f"Unexpected response shape from {path}")
        return data
