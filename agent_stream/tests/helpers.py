"""Shared builders for streaming tests: canned SSE bodies over httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Union

import httpx

from agent_stream.config.loader import StreamSettings
from agent_stream.core.credentials import StaticCredentials
from agent_stream.stream.client import StreamingClient

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


def frame(payload: Any) -> bytes:
    return b"data: " + json.dumps(payload, ensure_ascii=False).encode("utf-8") + b"\n\n"


def sse(*payloads: Any) -> bytes:
    return b"".join(frame(p) for p in payloads)


def chunked(*chunks: bytes, hang: bool = False, status: int = 200) -> httpx.Response:
    """Response whose body arrives as the given chunks; hang=True keeps it open afterwards."""

    async def body():
        for chunk in chunks:
            yield chunk
            await asyncio.sleep(0)
        if hang:
            await asyncio.sleep(3600)

    return httpx.Response(status, content=body())


class FakeSleep:
    """Records backoff delays instead of waiting them out."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class ScriptedServer:
    """MockTransport handler replaying one scripted reply per request."""

    def __init__(self, *replies: Reply) -> None:
        self._replies = list(replies)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self._replies[min(len(self.requests), len(self._replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        return reply

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def make_settings(**overrides: Any) -> StreamSettings:
    values = {"api_base_url": "http://crm.test/api", "timeout_seconds": 5.0}
    values.update(overrides)
    return StreamSettings(**values)


def make_client(
    server: ScriptedServer, sleep=None, token: str = "tok-123", store=None, **overrides: Any
) -> StreamingClient:
    kwargs: dict[str, Any] = {"store": store}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return StreamingClient(
        make_settings(**overrides),
        StaticCredentials(token),
        http_client=server.http_client(),
        **kwargs,
    )
