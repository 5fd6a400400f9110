"""Credential sources. The client only reads a stored token; issuing one is someone else's job."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from agent_stream.config.loader import AuthSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class CredentialProvider(Protocol):
    """Anything that can hand out the current bearer token, or None."""

    def get_token(self) -> Optional[str]:
        ...


class StaticCredentials:
    def __init__(self, token: Optional[str]) -> None:
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token or None


class EnvCredentials:
    """Token from an environment variable, read on every call."""

    def __init__(self, var: str = "AGENT_STREAM_TOKEN") -> None:
        self._var = var

    def get_token(self) -> Optional[str]:
        return (os.getenv(self._var) or "").strip() or None


class FileCredentials:
    """Token from a JSON file shaped like {"token": "..."}, re-read on every call."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def get_token(self) -> Optional[str]:
        if not self._path.exists():
            return None
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("credential file unreadable", extra={"path": str(self._path), "error": str(e)})
            return None
        if not isinstance(data, dict):
            return None
        token = data.get("token")
        if not isinstance(token, str):
            return None
        return token.strip() or None


def credentials_from_settings(auth: AuthSettings) -> CredentialProvider:
    """Configured token wins; then the token file; then the environment."""
    if auth.token:
        return StaticCredentials(auth.token)
    if auth.token_file:
        return FileCredentials(auth.token_file)
    return EnvCredentials()
