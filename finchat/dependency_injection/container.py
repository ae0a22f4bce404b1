from __future__ import annotations

import punq
from fastapi import Request

from finchat.agents.factory import build_tool_registry
from finchat.agents.model_resolver import ModelResolver
from finchat.agents.tools.registry import ToolRegistry
from finchat.core.settings import Settings
from finchat.services.auth_service import AuthService
from finchat.services.chat_service import ChatService
from finchat.services.chat_store import CHAT_STORE_SCHEMA, InMemoryChatStore, PostgresChatStore
from finchat.services.contracts import (
    AuthServiceProtocol,
    ChatServiceProtocol,
    ChatStoreProtocol,
    DatabaseServiceProtocol,
    SessionStoreProtocol,
)
from finchat.services.database_service import DatabaseService
from finchat.services.session_store import RedisSessionStore


def build_container(settings: Settings) -> punq.Container:
    container = punq.Container()
    container.register(Settings, instance=settings)

    container.register(
        DatabaseServiceProtocol,
        factory=lambda: DatabaseService(
            dsn=settings.assistant_db_dsn,
            bootstrap_schema_query=CHAT_STORE_SCHEMA if settings.chat_store_bootstrap_schema else None,
        ),
        scope=punq.Scope.singleton,
    )
    container.register(
        SessionStoreProtocol,
        factory=lambda: RedisSessionStore(
            redis_url=settings.assistant_cache_redis_url,
            key_prefix=settings.assistant_cache_key_prefix,
        ),
        scope=punq.Scope.singleton,
    )
    if settings.chat_store_backend.lower() == "memory":
        container.register(ChatStoreProtocol, instance=InMemoryChatStore())
    else:
        container.register(
            ChatStoreProtocol,
            factory=lambda: PostgresChatStore(database=container.resolve(DatabaseServiceProtocol)),
            scope=punq.Scope.singleton,
        )
    container.register(
        ToolRegistry,
        factory=lambda: build_tool_registry(settings, artifact_sink=container.resolve(ChatStoreProtocol)),
        scope=punq.Scope.singleton,
    )
    container.register(ModelResolver, factory=lambda: ModelResolver(settings), scope=punq.Scope.singleton)
    container.register(
        AuthServiceProtocol,
        factory=lambda: AuthService(settings=settings, session_store=container.resolve(SessionStoreProtocol)),
        scope=punq.Scope.singleton,
    )
    container.register(
        ChatServiceProtocol,
        factory=lambda: ChatService(
            settings=settings,
            model_resolver=container.resolve(ModelResolver),
            tool_registry=container.resolve(ToolRegistry),
            chat_store=container.resolve(ChatStoreProtocol),
        ),
        scope=punq.Scope.singleton,
    )

    return container


def get_container(request: Request) -> punq.Container:
    return request.app.state.container
