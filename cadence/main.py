"""cadence entry point.

Initializes all components and starts the server:
  Settings -> Database -> MessageStore -> ToolService -> Provider -> Orchestrator -> App -> Uvicorn

Uses Starlette lifespan to manage component lifecycle on the same
event loop as uvicorn.

Tools come from the remote service at CADENCE_TOOL_SERVICE_URL. Without
it the server starts with an empty ToolRegistry: nothing registers
handlers here, so the model is offered no tools and turns are text-only.
Embedders that want in-process tools call create_components() and
register on components["tools"] before serving.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette

from cadence.agent.orchestrator import TurnOrchestrator
from cadence.agent.provider import AnthropicProvider
from cadence.agent.tools import HttpToolService, ToolDispatchAdapter, ToolRegistry
from cadence.config import Settings
from cadence.storage.database import Database
from cadence.storage.store import MessageStore

logger = logging.getLogger(__name__)


async def create_components(settings: Settings) -> dict:
    """Initialize all components in dependency order.

    1. Database - connection pool + tables
    2. MessageStore - conversation/message records
    3. Tool service - remote (tool_service_url) or in-process registry
    4. AnthropicProvider - streamed model calls
    5. TurnOrchestrator - the turn loop
    """
    database = Database(settings)
    await database.connect()
    store = MessageStore(database)

    tool_http = None
    if settings.tool_service_url:
        tool_http = httpx.AsyncClient(
            base_url=settings.tool_service_url,
            timeout=httpx.Timeout(connect=10, read=settings.tool_service_timeout, write=10, pool=10),
        )
        tools = HttpToolService(tool_http)
        await tools.load_manifest()
    else:
        tools = ToolRegistry()
        logger.warning("CADENCE_TOOL_SERVICE_URL not set -- empty in-process registry, model runs without tools")

    provider = AnthropicProvider(settings)
    await provider.start()

    orchestrator = TurnOrchestrator(
        provider=provider,
        dispatcher=ToolDispatchAdapter(tools),
        store=store,
        round_timeout=settings.round_timeout,
    )

    return {
        "database": database,
        "store": store,
        "tools": tools,
        "tool_http": tool_http,
        "provider": provider,
        "orchestrator": orchestrator,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down cadence...")

    provider = components.get("provider")
    if provider:
        await provider.close()

    tool_http = components.get("tool_http")
    if tool_http:
        await tool_http.aclose()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("cadence shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app; components come up in the lifespan."""
    components: dict = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings))
        app.state.components = components
        logger.info("cadence started: model=%s, max_rounds=%d", settings.model, settings.max_rounds)
        yield
        await shutdown_components(components)

    from cadence.api.rest import create_app

    return create_app(
        orchestrator=_lazy_component(components, "orchestrator"),
        store=_lazy_component(components, "store"),
        tools=_lazy_component(components, "tools"),
        database=_lazy_component(components, "database"),
        settings=settings,
        lifespan=lifespan,
    )


class _LazyProxy:
    """Proxy that defers attribute access to a dict-backed component.

    Lets create_app() receive component references before the lifespan
    has initialized them.
    """

    def __init__(self, components: dict, key: str) -> None:
        object.__setattr__(self, "_components", components)
        object.__setattr__(self, "_key", key)

    def _resolve(self):
        components = object.__getattribute__(self, "_components")
        key = object.__getattribute__(self, "_key")
        obj = components.get(key)
        if obj is None:
            raise RuntimeError(f"Component '{key}' not yet initialized: lifespan hasn't started")
        return obj

    def __getattr__(self, name):
        return getattr(self._resolve(), name)


def _lazy_component(components: dict, key: str) -> _LazyProxy:
    """Create a lazy proxy for a component that will be initialized in lifespan."""
    return _LazyProxy(components, key)


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting cadence (%s)", settings.assistant_name)
    logger.info("Model: %s", settings.model)
    if settings.database_url:
        logger.info("Database: %s", settings.database_url.split("@")[-1])
    else:
        logger.info("Database: %s:%s/%s", settings.db_host, settings.db_port, settings.db_name)

    if not settings.anthropic_api_key and not settings.anthropic_auth_token:
        logger.warning(
            "Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set, "
            "send endpoints will fail"
        )

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
