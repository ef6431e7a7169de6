from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from agent_chat.agents.factory import build_chat_agent
from agent_chat.api.router import api_router
from agent_chat.api.routers.health import router as health_router
from agent_chat.core.logging import configure_logging
from agent_chat.core.settings import get_settings
from agent_chat.dependency_injection import build_container, register_chat_agent
from agent_chat.services.cancellation import SHUTDOWN
from agent_chat.services.contracts import ChatCacheProtocol, ChatStoreProtocol, DatabaseServiceProtocol
from agent_chat.services.session_registry import SessionRegistry

settings = get_settings()
configure_logging(settings.effective_log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("starting agent chat backend", extra={"app_env": settings.app_env})
    container = build_container(settings)

    database_service = container.resolve(DatabaseServiceProtocol)
    await database_service.connect()
    await container.resolve(ChatStoreProtocol).ensure_schema()
    logger.info("database connection pool initialized")

    cache = container.resolve(ChatCacheProtocol)
    await cache.ping()
    logger.info("chat cache connection initialized")

    chat_agent = await build_chat_agent(settings)
    register_chat_agent(container, chat_agent)
    logger.info("chat agent initialized", extra={"use_mock_agent": settings.chat_agent_use_mock})

    app.state.settings = settings
    app.state.container = container

    try:
        yield
    finally:
        container.resolve(SessionRegistry).cancel_all(SHUTDOWN)
        aclose = getattr(chat_agent, "aclose", None)
        if aclose is not None:
            await aclose()
        await cache.close()
        await database_service.disconnect()
        logger.info("agent chat backend shutdown complete")


app = FastAPI(
    title="Agent Chat Backend",
    version="0.1.0",
    docs_url="/docs" if settings.enable_swagger else None,
    redoc_url="/redoc" if settings.enable_swagger else None,
    openapi_url="/openapi.json" if settings.enable_swagger else None,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(api_router, prefix="/api")
