"""
FastAPI dependencies (shared across routes).

Components are built once by ``create_app`` and live on ``app.state``;
routes reach them through these accessors instead of module globals.
"""

from __future__ import annotations

from fastapi import Request

from cache.engine import ConnectorCache
from cache.preloader import CachePreloader
from connectors.registry import ConnectorRegistry
from connectors.token_manager import OAuthLifecycleManager
from core.chat_service import ChatService


def get_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.registry


def get_manager(request: Request) -> OAuthLifecycleManager:
    return request.app.state.manager


def get_cache(request: Request) -> ConnectorCache:
    return request.app.state.cache


def get_preloader(request: Request) -> CachePreloader:
    return request.app.state.preloader


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service
