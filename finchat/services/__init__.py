"""Service layer orchestrating application use-cases."""

from finchat.services.auth_service import AuthService
from finchat.services.chat_service import ChatService
from finchat.services.chat_store import InMemoryChatStore, PostgresChatStore
from finchat.services.chat_stream import ChatStreamEncoder, TurnResult
from finchat.services.database_service import DatabaseService
from finchat.services.persistence import TurnPersistence
from finchat.services.session_store import RedisSessionStore

__all__ = [
    "AuthService",
    "ChatService",
    "ChatStreamEncoder",
    "DatabaseService",
    "InMemoryChatStore",
    "PostgresChatStore",
    "RedisSessionStore",
    "TurnPersistence",
    "TurnResult",
]
