"""FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from localchat.api import admin, chat
from localchat.config import settings
from localchat.exceptions import (
    EmbeddingError,
    LocalChatError,
    ModelServiceError,
    ModelServiceUnavailable,
    NeedPermission,
    VectorStoreError,
    VectorStoreStartupError,
)
from localchat.runtime import Runtime, build_runtime
from localchat.schemas.admin import HealthCheckResponse
from localchat.utils.validation import ValidationError

# Initialize OpenTelemetry if enabled
if settings.OTEL_ENABLED:
    from localchat.observability import init_telemetry
    init_telemetry(
        service_name=settings.OTEL_SERVICE_NAME,
        service_version=settings.OTEL_SERVICE_VERSION,
        environment=os.getenv("ENVIRONMENT", "development")
    )

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (NeedPermission, status.HTTP_403_FORBIDDEN),
    (VectorStoreStartupError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ModelServiceUnavailable, status.HTTP_502_BAD_GATEWAY),
    (ModelServiceError, status.HTTP_502_BAD_GATEWAY),
    (EmbeddingError, status.HTTP_502_BAD_GATEWAY),
    (VectorStoreError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(error: LocalChatError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the runtime unless one was supplied, and on shutdown waits for
    background indexing and optionally stops a supervised vector store.
    """
    # ==================== STARTUP ====================
    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} starting...")
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = build_runtime(settings)
    runtime: Runtime = app.state.runtime

    if await runtime.model_client.ping():
        logger.info(f"Model service reachable at {runtime.model_client.base_url}")
    else:
        logger.warning(f"Model service not reachable at {runtime.model_client.base_url}")

    yield  # Application runs here

    # ==================== SHUTDOWN ====================
    logger.info(f"{settings.APP_NAME} shutting down gracefully...")
    await runtime.retrieval.drain()

    if runtime.settings.VECTOR_STORE_STOP_ON_SHUTDOWN:
        try:
            await runtime.supervisor.stop()
        except Exception:
            logger.exception("Error stopping the vector store")

    logger.info("Shutdown complete")


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Create the FastAPI application, optionally around a prepared runtime."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Local LLM agent runtime with tools, retrieval and vector store supervision",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LocalChatError)
    async def localchat_error_handler(request: Request, exc: LocalChatError) -> JSONResponse:
        code = status_for(exc)
        if code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"code": "ValidationError", "message": str(exc)},
        )

    app.include_router(chat.router)
    app.include_router(admin.router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running",
            "docs": "/docs",
            "endpoints": {
                "chat": {
                    "turn": "POST /chat",
                    "models": "GET /chat/models",
                    "tools": "GET /chat/tools",
                },
                "admin": {
                    "vector_store": "GET /admin/vector-store/status",
                    "thread_settings": "GET|PUT /admin/threads/{id}/settings",
                    "audit": "GET /admin/threads/{id}/audit",
                    "weight": "PUT /admin/points/{collection}/{point_id}/weight",
                },
            },
        }

    @app.get("/health", response_model=HealthCheckResponse)
    async def health_check(request: Request) -> HealthCheckResponse:
        """
        Health check endpoint.

        Checks:
        - Model service reachability
        - Vector store health (cached probe)
        """
        runtime: Runtime = request.app.state.runtime

        model_healthy = await runtime.model_client.ping()
        store_healthy = await runtime.supervisor.is_running()

        return HealthCheckResponse(
            status="healthy" if model_healthy and store_healthy else "degraded",
            service=settings.APP_NAME,
            version=settings.APP_VERSION,
            model_service=model_healthy,
            vector_store=store_healthy,
        )

    @app.get("/live")
    async def liveness_check() -> dict:
        """Liveness probe."""
        return {"status": "alive", "service": settings.APP_NAME}

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "localchat.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
