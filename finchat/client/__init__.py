from finchat.client.message_store import KNOWN_TOOLS, ChatStatus, MessageStore
from finchat.client.render import ErrorBanner, MessageView, error_banner, render_message
from finchat.client.scroll import ScrollContainer, ScrollStickiness
from finchat.client.session import ChatSession
from finchat.client.transport import ChatTransport
from finchat.client.virtualization import VirtualWindow, VisibleRange

__all__ = [
    "ChatSession",
    "ChatStatus",
    "ChatTransport",
    "ErrorBanner",
    "KNOWN_TOOLS",
    "MessageStore",
    "MessageView",
    "ScrollContainer",
    "ScrollStickiness",
    "VirtualWindow",
    "VisibleRange",
    "error_banner",
    "render_message",
]
