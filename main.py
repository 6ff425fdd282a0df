"""
Connector Hub — application entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.chat import router as chat_router
from api.middleware import register_middleware
from cache.engine import ConnectorCache
from cache.preloader import CachePreloader
from cache.routes import router as cache_router
from config.settings import Settings, config
from connectors.base import HttpClientFactory
from connectors.encryption import CredentialVault
from connectors.registry import build_default_registry
from connectors.routes import auth_router, router as connectors_router
from connectors.store import ConnectorStore
from connectors.token_manager import OAuthLifecycleManager
from core.background import BackgroundTaskRunner
from core.chat_service import ChatService
from database.session import build_engine, build_session_factory, create_tables
from utils.llm_providers import BaseLLMProvider, get_llm_provider

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "openai", "anthropic", "urllib3", "googleapiclient.discovery_cache"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    llm: Optional[BaseLLMProvider] = None,
    http_client_factory: HttpClientFactory = httpx.AsyncClient,
) -> FastAPI:
    """
    Build every component once and attach it to ``app.state``.

    Raises ``ConfigurationError`` immediately when the encryption key is
    missing or malformed.
    """
    settings = settings or config
    vault = CredentialVault.from_base64_key(settings.encryption_key)

    engine = None
    if session_factory is None:
        engine = build_engine(settings.database_url)
        session_factory = build_session_factory(engine)

    registry = build_default_registry(settings)
    manager = OAuthLifecycleManager(
        registry=registry,
        store=ConnectorStore(session_factory),
        vault=vault,
        settings=settings,
        http_client_factory=http_client_factory,
    )
    cache = ConnectorCache(
        default_ttl=settings.cache_default_ttl_seconds,
        ttl_by_connector={d.type: d.cache_ttl for d in registry.all() if d.cache_ttl},
    )
    preloader = CachePreloader(cache, registry, manager)
    runner = BackgroundTaskRunner()
    if llm is None:
        api_key = settings.openai_api_key if settings.llm_provider == "openai" else settings.anthropic_api_key
        llm = get_llm_provider(settings.llm_provider, api_key=api_key, default_model=settings.llm_model)

    app = FastAPI(
        title="Connector Hub",
        version="1.0.0",
        description="Chat assistant with OAuth connectors, cached provider data and tool calling.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Chat-Id", "X-User-Message-Id"],
    )

    register_middleware(app)

    app.state.settings = settings
    app.state.registry = registry
    app.state.manager = manager
    app.state.cache = cache
    app.state.preloader = preloader
    app.state.runner = runner
    app.state.chat_service = ChatService(
        session_factory=session_factory,
        registry=registry,
        manager=manager,
        cache=cache,
        llm=llm,
        runner=runner,
        settings=settings,
    )

    # Routes
    app.include_router(auth_router)
    app.include_router(connectors_router)
    app.include_router(cache_router)
    app.include_router(chat_router)

    @app.on_event("startup")
    async def on_startup():
        if engine is not None and settings.auto_create_tables:
            logger.info("Creating database tables…")
            await create_tables(engine)

        if settings.preload_on_startup:
            runner.submit("cache-preload", preloader.preload_all())

        logger.info("Application ready (%d connectors registered).", len(registry))

    @app.on_event("shutdown")
    async def on_shutdown():
        await runner.shutdown()
        if engine is not None:
            await engine.dispose()

    return app


if __name__ == "__main__":
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
