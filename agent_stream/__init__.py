"""Streaming client for CRM agent copilot replies."""

from agent_stream.core.errors import (
    AuthenticationError,
    ServerStreamError,
    StreamError,
    StreamTimeoutError,
    TransportError,
)
from agent_stream.core.events import ConversationKey, Message, Role, StreamRequest
from agent_stream.stream.client import StreamingClient
from agent_stream.stream.sink import ConversationStore

__all__ = [
    "AuthenticationError",
    "ConversationKey",
    "ConversationStore",
    "Message",
    "Role",
    "ServerStreamError",
    "StreamError",
    "StreamRequest",
    "StreamTimeoutError",
    "StreamingClient",
    "TransportError",
]
