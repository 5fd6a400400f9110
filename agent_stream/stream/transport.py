"""Transport Controller: one HTTP exchange per attempt, recovery across attempts.

States: IDLE -> CONNECTING -> STREAMING -> COMPLETED | CANCELLED | FAILED,
with STREAMING/CONNECTING -> RETRYING -> CONNECTING on transport failures.
The retry path is a loop over attempts, bounded by max_retries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from agent_stream.config.loader import StreamSettings
from agent_stream.core.credentials import CredentialProvider
from agent_stream.core.errors import (
    AuthenticationError,
    ServerStreamError,
    StreamTimeoutError,
    TransportError,
)
from agent_stream.core.events import ConversationKey, DoneEvent, ErrorEvent, StreamRequest, TokenEvent
from agent_stream.stream.parser import FrameParser

logger = logging.getLogger(__name__)

TokenHandler = Callable[[str], Awaitable[None]]
RetryHandler = Callable[["StreamSession", TransportError], Awaitable[None]]


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RETRYING = "retrying"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class StreamSession:
    """Transient state of one streaming call. Never persisted."""

    key: ConversationKey
    request: StreamRequest
    attempt: int = 0
    backoff_ms: int = 0
    cancelled: bool = False
    state: SessionState = SessionState.IDLE
    parser: FrameParser = field(default_factory=FrameParser)

    @property
    def buffer(self) -> str:
        return self.parser.buffer


def backoff_delay_ms(attempt: int, base_ms: int = 1000, max_ms: int = 10000) -> int:
    return min(base_ms * 2**attempt, max_ms)


class TransportController:
    """Connect, read, time out, retry. Knows nothing about conversations.

    Without an injected http_client the controller builds one and owns it;
    aclose() closes only an owned client.
    """

    def __init__(
        self,
        settings: StreamSettings,
        credentials: CredentialProvider,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._credentials = credentials
        self._owns_client = http_client is None
        # The inactivity deadline in _attempt governs; the transport itself never times out
        self._client = http_client if http_client is not None else httpx.AsyncClient(timeout=None)
        self._sleep = sleep

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._client

    def url_for(self, key: ConversationKey) -> str:
        path = self._settings.stream_path.format(workspace_id=key.workspace_id, agent_id=key.agent_id)
        return self._settings.api_base_url.rstrip("/") + path

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def run(
        self,
        session: StreamSession,
        on_token: TokenHandler,
        on_retry: Optional[RetryHandler] = None,
    ) -> None:
        """Drive the session to a terminal state.

        Returns on a done frame or once the session is cancelled; raises for
        everything else. Server error frames and missing credentials end the
        session at once. Transport failures are retried with exponential
        backoff until max_retries is spent.
        """
        max_retries = self._settings.max_retries
        while True:
            session.state = SessionState.CONNECTING
            try:
                await self._attempt(session, on_token)
            except TransportError as e:
                if session.cancelled:
                    break
                if session.attempt >= max_retries:
                    session.state = SessionState.FAILED
                    logger.warning(
                        "stream failed after %s attempts",
                        session.attempt + 1,
                        extra={"conversation": str(session.key), "error": e.message},
                    )
                    raise
                delay_ms = backoff_delay_ms(
                    session.attempt, self._settings.backoff_base_ms, self._settings.backoff_max_ms
                )
                session.backoff_ms = delay_ms
                session.state = SessionState.RETRYING
                logger.warning(
                    "stream attempt failed, retry in %sms",
                    delay_ms,
                    extra={"conversation": str(session.key), "attempt": session.attempt, "error": e.message},
                )
                await self._sleep(delay_ms / 1000)
                if session.cancelled:
                    break
                session.attempt += 1
                session.parser.reset()
                if on_retry is not None:
                    await on_retry(session, e)
                continue
            except Exception:
                session.state = SessionState.FAILED
                raise
            break
        session.state = SessionState.CANCELLED if session.cancelled else SessionState.COMPLETED

    async def _attempt(self, session: StreamSession, on_token: TokenHandler) -> None:
        token = self._credentials.get_token()
        if not token:
            raise AuthenticationError("no credential available for streaming request")
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        timeout = self._settings.timeout_seconds or None
        url = self.url_for(session.key)
        request = self._client.build_request(
            "POST", url, json=session.request.model_dump(), headers=headers, timeout=None
        )
        logger.debug("connecting", extra={"url": url, "attempt": session.attempt})
        try:
            response = await asyncio.wait_for(self._client.send(request, stream=True), timeout)
        except asyncio.TimeoutError:
            raise StreamTimeoutError(f"no response within {timeout}s") from None
        except httpx.HTTPError as e:
            raise TransportError(f"connect failed: {e}") from e
        try:
            if not response.is_success:
                raise TransportError(
                    f"stream request returned HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            session.state = SessionState.STREAMING
            await self._read(session, response, on_token, timeout)
        finally:
            await response.aclose()

    async def _read(
        self,
        session: StreamSession,
        response: httpx.Response,
        on_token: TokenHandler,
        timeout: Optional[float],
    ) -> None:
        chunks = response.aiter_bytes()
        while True:
            try:
                chunk = await asyncio.wait_for(chunks.__anext__(), timeout)
            except StopAsyncIteration:
                break
            except asyncio.TimeoutError:
                raise StreamTimeoutError(f"no data within {timeout}s") from None
            except httpx.HTTPError as e:
                raise TransportError(f"read failed: {e}") from e
            for event in session.parser.feed(chunk):
                if session.cancelled:
                    return
                if isinstance(event, TokenEvent):
                    await on_token(event.text)
                    # on_token may have cancelled this session; stop before the next read
                    if session.cancelled:
                        return
                elif isinstance(event, DoneEvent):
                    return
                elif isinstance(event, ErrorEvent):
                    raise ServerStreamError(event.message)
        session.parser.flush()
        raise TransportError("stream ended before a terminal frame")
