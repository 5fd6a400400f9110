"""Per-conversation message state.

ConversationStore is the keyed map from ConversationKey to Conversation. It is
owned by whoever composes the client and passed in, never module state.
ConversationSink is the writer for one key's in-flight assistant message:
while a session is active it exclusively owns the last message of that
conversation and always addresses it as ``messages[-1]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator

from agent_stream.core.events import ConversationKey, Message, Role

logger = logging.getLogger(__name__)

ERROR_ANNOTATION = "\n\n[error] "


@dataclass
class Conversation:
    messages: list[Message] = field(default_factory=list)
    streaming: bool = False


class ConversationStore:
    """Keyed conversations. Sessions on different keys share nothing but this map."""

    def __init__(self) -> None:
        self._conversations: dict[ConversationKey, Conversation] = {}

    def get(self, key: ConversationKey) -> Conversation:
        conv = self._conversations.get(key)
        if conv is None:
            conv = self._conversations[key] = Conversation()
        return conv

    def messages(self, key: ConversationKey) -> list[Message]:
        """Snapshot copy; callers cannot append to the live list."""
        return list(self.get(key).messages)

    def is_streaming(self, key: ConversationKey) -> bool:
        conv = self._conversations.get(key)
        return bool(conv and conv.streaming)

    def clear(self, key: ConversationKey) -> None:
        if self.is_streaming(key):
            raise RuntimeError(f"conversation {key} has an active stream")
        self._conversations.pop(key, None)

    def keys(self) -> Iterator[ConversationKey]:
        return iter(list(self._conversations))

    def last_user_message(self, key: ConversationKey) -> Message | None:
        for msg in reversed(self.get(key).messages):
            if msg.role == Role.USER:
                return msg
        return None


class ConversationSink:
    """Applies one session's events to ``store[key]``. Every method is synchronous."""

    def __init__(self, store: ConversationStore, key: ConversationKey) -> None:
        self._key = key
        self._conversation = store.get(key)
        self._finalized = False

    @property
    def key(self) -> ConversationKey:
        return self._key

    @property
    def finalized(self) -> bool:
        return self._finalized

    def begin(self, user_text: str | None = None) -> None:
        conv = self._conversation
        if user_text is not None:
            conv.messages.append(Message(role=Role.USER, content=user_text, final=True))
        conv.messages.append(Message(role=Role.ASSISTANT))
        conv.streaming = True
        logger.debug("stream started", extra={"conversation": str(self._key)})

    def append_token(self, text: str) -> None:
        if self._finalized:
            logger.debug("token after finalize ignored", extra={"conversation": str(self._key)})
            return
        self._conversation.messages[-1].content += text

    def restart(self) -> None:
        """New attempt after a transport failure.

        Partial content from the failed attempt stays in the conversation as a
        finalized message and the new attempt writes into a fresh assistant
        message. An attempt that produced nothing keeps its empty message.
        """
        if self._finalized:
            return
        current = self._conversation.messages[-1]
        if not current.content:
            return
        current.final = True
        self._conversation.messages.append(Message(role=Role.ASSISTANT))
        logger.debug(
            "partial reply kept, new attempt started",
            extra={"conversation": str(self._key), "partial_chars": len(current.content)},
        )

    def complete(self) -> None:
        if self._finalize():
            logger.debug("stream completed", extra={"conversation": str(self._key)})

    def cancel(self) -> None:
        if self._finalize():
            logger.debug("stream cancelled", extra={"conversation": str(self._key)})

    def fail(self, error: str) -> None:
        """Keep partial content and annotate it; an empty reply becomes a system message."""
        if self._finalized:
            return
        messages = self._conversation.messages
        current = messages[-1]
        if current.content:
            current.content += ERROR_ANNOTATION + error
        else:
            messages.pop()
            messages.append(Message(role=Role.SYSTEM, content=error))
        self._finalize()
        logger.debug("stream failed", extra={"conversation": str(self._key), "error": error})

    def _finalize(self) -> bool:
        if self._finalized:
            return False
        self._finalized = True
        self._conversation.messages[-1].final = True
        self._conversation.streaming = False
        return True
