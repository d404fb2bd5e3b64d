from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse

from tripgen.api.v1.api_router import v1_router
from tripgen.api.v1.errors import ApiError, api_error_exception_handler
from tripgen.core.observability.correlation import CorrelationMiddleware, get_correlation_id
from tripgen.core.observability.logger_config import configure_structlog
from tripgen.core.settings import settings
from tripgen.infrastructure.generation_client import GenerationServiceClient
from tripgen.services.plan_orchestrator import PlanOrchestrator
from tripgen.services.run_registry import PlanRunRegistry

# Configure Structlog (JSON Logging)
configure_structlog()
logger = structlog.get_logger(__name__)
logger.info(
    "orchestration_runtime_mode",
    mode=settings.ORCHESTRATION_MODE,
    generation_service_url=settings.GENERATION_SERVICE_URL,
    api_key_configured=bool(str(settings.GENERATION_SERVICE_API_KEY or "").strip()),
    environment=settings.ENVIRONMENT,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = GenerationServiceClient(timeout_seconds=settings.SESSION_INIT_TIMEOUT_SECONDS)
    app.state.run_registry = PlanRunRegistry(lambda: PlanOrchestrator(client))
    try:
        yield
    finally:
        await app.state.run_registry.shutdown()
        await client.aclose()


app = FastAPI(
    title="tripgen Plan Orchestrator API",
    description="Chunked, concurrent generation of travel plans against an external generation service.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(CorrelationMiddleware)


@app.exception_handler(ResponseValidationError)
async def response_validation_exception_handler(request: Request, exc: ResponseValidationError):
    """
    Handles errors when the backend fails to match the output contract (response_model).
    """
    logger.error(
        "backend_contract_breach",
        type="contract_violation",
        direction="outbound_backend",
        endpoint=str(request.url),
        validation_errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "BACKEND_CONTRACT_BREACH",
                "message": "Internal Server Error: Data Contract Breach",
                "details": exc.errors(),
                "request_id": get_correlation_id(),
            }
        },
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(
        "frontend_contract_breach",
        type="contract_violation",
        direction="inbound_backend",
        endpoint=str(request.url),
        validation_errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "code": "FRONTEND_CONTRACT_BREACH",
                "message": "Request validation failed",
                "details": exc.errors(),
                "request_id": get_correlation_id(),
            }
        },
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return await api_error_exception_handler(request, exc)


app.include_router(v1_router)


@app.get("/health")
def health_check():
    """
    Service health check.
    """
    return {"status": "ok", "service": "tripgen", "mode": settings.ORCHESTRATION_MODE}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.API_PORT)
