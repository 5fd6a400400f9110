"""Public streaming API: callback style (start) and pull style (stream).

Both go through the same engine: a TransportController drives one session,
its parser yields events, and a ConversationSink writes them into the store.
The adapters only differ in how tokens and the outcome reach the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import httpx

from agent_stream.config.loader import Config, StreamSettings
from agent_stream.core.credentials import CredentialProvider, EnvCredentials, credentials_from_settings
from agent_stream.core.errors import StreamError
from agent_stream.core.events import ConversationKey, Message, StreamRequest
from agent_stream.stream.sink import ConversationSink, ConversationStore
from agent_stream.stream.transport import StreamSession, TransportController

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Any]
CompleteCallback = Callable[[], Any]
ErrorCallback = Callable[[BaseException], Any]
RetryCallback = Callable[[int, int], Any]

_END = object()


@dataclass
class _Handlers:
    on_token: Optional[TokenCallback] = None
    on_complete: Optional[CompleteCallback] = None
    on_error: Optional[ErrorCallback] = None
    on_retry: Optional[RetryCallback] = None


@dataclass
class _ActiveStream:
    session: StreamSession
    sink: ConversationSink
    task: Optional[asyncio.Task] = None


def _as_request(request: Union[StreamRequest, str]) -> StreamRequest:
    if isinstance(request, StreamRequest):
        return request
    return StreamRequest(message=request)


class StreamingClient:
    """Streams copilot replies into a ConversationStore, one session per conversation key.

    A second start() on a key that is still streaming cancels the running
    session and replaces it.
    """

    def __init__(
        self,
        settings: Optional[StreamSettings] = None,
        credentials: Optional[CredentialProvider] = None,
        store: Optional[ConversationStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or StreamSettings()
        self._store = store if store is not None else ConversationStore()
        self._transport = TransportController(
            self._settings, credentials or EnvCredentials(), http_client=http_client, sleep=sleep
        )
        self._active: dict[ConversationKey, _ActiveStream] = {}
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> "StreamingClient":
        return cls(config.stream, credentials_from_settings(config.auth), **kwargs)

    @property
    def store(self) -> ConversationStore:
        return self._store

    def messages(self, key: ConversationKey) -> list[Message]:
        return self._store.messages(key)

    def is_streaming(self, key: ConversationKey) -> bool:
        return key in self._active

    def start(
        self,
        key: ConversationKey,
        request: Union[StreamRequest, str],
        *,
        on_token: Optional[TokenCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> Callable[[], None]:
        """Begin streaming; return a function that cancels this session.

        Exactly one of on_complete / on_error fires, after every on_token of
        the session. Cancellation fires neither. Callbacks may be plain
        functions or coroutine functions. Must be called with a running
        event loop.
        """
        active = self._launch(key, _as_request(request), _Handlers(on_token, on_complete, on_error, on_retry))
        return lambda: self._cancel_active(active)

    async def stream(self, key: ConversationKey, request: Union[StreamRequest, str]) -> AsyncIterator[str]:
        """Yield tokens as they arrive. Raises the StreamError on failure; ends quietly on done or cancel.

        Closing the iterator early cancels the session.
        """
        queue: asyncio.Queue = asyncio.Queue()
        active = self._launch(
            key,
            _as_request(request),
            _Handlers(on_token=queue.put_nowait, on_error=queue.put_nowait),
        )
        active.task.add_done_callback(lambda _task: queue.put_nowait(_END))
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self._cancel_active(active)

    def retry_last(self, key: ConversationKey, **handlers: Any) -> Callable[[], None]:
        """Send the conversation's last user message again."""
        last = self._store.last_user_message(key)
        if last is None:
            raise ValueError(f"conversation {key} has no user message to retry")
        return self.start(key, StreamRequest(message=last.content), **handlers)

    def cancel(self, key: ConversationKey) -> bool:
        active = self._active.get(key)
        if active is None:
            return False
        self._cancel_active(active)
        return True

    async def aclose(self) -> None:
        """Cancel live sessions, wait for every session task, close an owned HTTP client."""
        for active in list(self._active.values()):
            self._cancel_active(active)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._transport.aclose()

    async def __aenter__(self) -> "StreamingClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def _launch(self, key: ConversationKey, request: StreamRequest, handlers: _Handlers) -> _ActiveStream:
        previous = self._active.get(key)
        if previous is not None:
            logger.info("replacing active stream", extra={"conversation": str(key)})
            self._cancel_active(previous)
        session = StreamSession(key=key, request=request)
        sink = ConversationSink(self._store, key)
        sink.begin(request.message)
        active = _ActiveStream(session=session, sink=sink)
        self._active[key] = active
        active.task = asyncio.create_task(self._drive(active, handlers), name=f"agent-stream:{key}")
        self._tasks.add(active.task)
        active.task.add_done_callback(self._tasks.discard)
        logger.info("stream started", extra={"conversation": str(key)})
        return active

    def _cancel_active(self, active: _ActiveStream) -> None:
        if active.session.cancelled or active.sink.finalized:
            return
        active.session.cancelled = True
        active.sink.cancel()
        self._release(active)
        if active.task is not None and active.task is not asyncio.current_task():
            active.task.cancel()
        logger.info("stream cancelled", extra={"conversation": str(active.session.key)})

    def _release(self, active: _ActiveStream) -> None:
        if self._active.get(active.session.key) is active:
            del self._active[active.session.key]

    async def _drive(self, active: _ActiveStream, handlers: _Handlers) -> None:
        session, sink = active.session, active.sink

        async def handle_token(text: str) -> None:
            sink.append_token(text)
            if handlers.on_token is not None:
                await _call(handlers.on_token, text)

        async def handle_retry(retried: StreamSession, error: StreamError) -> None:
            sink.restart()
            if handlers.on_retry is not None:
                await _call(handlers.on_retry, retried.attempt, retried.backoff_ms)

        try:
            await self._transport.run(session, handle_token, handle_retry)
        except asyncio.CancelledError:
            self._release(active)
            sink.cancel()
            if not session.cancelled:
                raise
            return
        except Exception as e:
            self._release(active)
            if session.cancelled:
                return
            sink.fail(e.message if isinstance(e, StreamError) else str(e))
            logger.warning(
                "stream ended with error",
                extra={"conversation": str(session.key), "error_type": type(e).__name__},
            )
            await self._notify(handlers.on_error, e)
            return
        self._release(active)
        if session.cancelled:
            return
        sink.complete()
        logger.info(
            "stream completed", extra={"conversation": str(session.key), "attempts": session.attempt + 1}
        )
        await self._notify(handlers.on_complete)

    async def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            await _call(callback, *args)
        except Exception as e:
            logger.exception("stream callback failed: %s", e)


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    """Invoke a plain or coroutine callback."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
