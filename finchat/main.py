from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from finchat.agents.tools.registry import ToolRegistry
from finchat.api.router import api_router
from finchat.api.routers.health import router as health_router
from finchat.api.schemas.chat import ChatErrorResponse
from finchat.core.errors import ChatTurnError
from finchat.core.logging import configure_logging
from finchat.core.settings import get_settings
from finchat.dependency_injection import build_container
from finchat.services.contracts import ChatServiceProtocol, DatabaseServiceProtocol, SessionStoreProtocol

settings = get_settings()
configure_logging(settings.effective_log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("starting finchat backend", extra={"app_env": settings.app_env, "app_mode": settings.app_mode})
    container = build_container(settings)

    database_service = None
    if settings.chat_store_backend.lower() != "memory":
        database_service = container.resolve(DatabaseServiceProtocol)
        await database_service.connect()
        logger.info("database connection pool initialized")

    tool_registry = container.resolve(ToolRegistry)
    session_store = container.resolve(SessionStoreProtocol)
    await session_store.ping()
    logger.info("session cache connection initialized")

    app.state.settings = settings
    app.state.container = container

    try:
        yield
    finally:
        await container.resolve(ChatServiceProtocol).aclose()
        await tool_registry.aclose()
        await session_store.close()
        if database_service is not None:
            await database_service.disconnect()
        logger.info("finchat backend shutdown complete")


app = FastAPI(
    title="Finchat Assistant Backend",
    version="0.1.0",
    docs_url="/docs" if settings.enable_swagger else None,
    redoc_url="/redoc" if settings.enable_swagger else None,
    openapi_url="/openapi.json" if settings.enable_swagger else None,
    lifespan=lifespan,
)


@app.exception_handler(ChatTurnError)
async def chat_turn_error_handler(request: Request, exc: ChatTurnError) -> JSONResponse:
    logger.info(
        "request rejected",
        extra={"path": request.url.path, "error_code": exc.code, "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ChatErrorResponse.model_validate(exc.to_payload()).model_dump(by_alias=True, exclude_none=True),
    )


app.include_router(health_router)
app.include_router(api_router, prefix="/api")
