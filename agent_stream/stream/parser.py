"""Incremental decoder for the copilot event stream.

The body is a sequence of frames, each one or more ``data: <json>`` lines
terminated by a blank line::

    data: {"token":"Hel"}\\n\\n
    data: {"done":true}\\n\\n
    data: {"error":"Response timeout"}\\n\\n

Chunk boundaries carry no meaning: a frame, a UTF-8 sequence or the
delimiter itself may be split anywhere. Malformed payloads are logged and
skipped; they never abort the stream.
"""

from __future__ import annotations

import codecs
import logging
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from agent_stream.core.events import DoneEvent, ErrorEvent, ProtocolEvent, TokenEvent

logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"
DATA_PREFIX = "data:"


class _FramePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: Optional[str] = None
    done: bool = False
    error: Optional[Union[str, dict[str, Any]]] = None


def _error_message(error: Union[str, dict[str, Any]]) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return error


class FrameParser:
    """Turns raw chunks into ProtocolEvents. Holds nothing but the unterminated tail."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def buffer(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[ProtocolEvent]:
        """Consume one chunk; return the events of every frame it completed, in order."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []
        # A lone trailing "\r" stays put until the next chunk shows whether "\n" follows
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        events: list[ProtocolEvent] = []
        while FRAME_DELIMITER in self._buffer:
            frame, self._buffer = self._buffer.split(FRAME_DELIMITER, 1)
            events.extend(self._parse_frame(frame))
        return events

    def flush(self) -> str:
        """End of body: drop and return whatever never got its delimiter."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        if tail.strip():
            logger.debug("discarding unterminated frame", extra={"length": len(tail)})
        return tail

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""

    def _parse_frame(self, frame: str) -> list[ProtocolEvent]:
        data_lines = []
        for line in frame.split("\n"):
            if not line or line.startswith(":"):
                continue
            if line.startswith(DATA_PREFIX):
                value = line[len(DATA_PREFIX):]
                data_lines.append(value[1:] if value.startswith(" ") else value)
        if not data_lines:
            return []
        raw = "\n".join(data_lines)
        try:
            payload = _FramePayload.model_validate_json(raw)
        except ValidationError as e:
            errors = e.errors()
            logger.warning(
                "skipping malformed frame",
                extra={"frame_bytes": len(raw), "error_type": errors[0]["type"] if errors else "invalid"},
            )
            return []
        if payload.error is not None:
            return [ErrorEvent(message=_error_message(payload.error))]
        events: list[ProtocolEvent] = []
        if payload.token is not None:
            events.append(TokenEvent(text=payload.token))
        if payload.done:
            events.append(DoneEvent())
        if not events:
            logger.warning("skipping frame without token, done or error", extra={"frame_bytes": len(raw)})
        return events
