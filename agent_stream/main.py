"""Entry point: stream one copilot reply to stdout."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from agent_stream.config import get_config
from agent_stream.config.loader import Config
from agent_stream.core.errors import StreamError
from agent_stream.core.events import ConversationKey
from agent_stream.core.logging_config import setup_logging
from agent_stream.stream.client import StreamingClient

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="agent-stream", description="Stream a copilot reply")
    parser.add_argument("message", help="Message to send")
    parser.add_argument("--workspace", required=True, help="Workspace id")
    parser.add_argument("--agent", required=True, help="Agent id")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    return parser.parse_args(argv)


async def run_stream(config: Config, key: ConversationKey, message: str, out=None) -> int:
    if out is None:
        out = sys.stdout
    async with StreamingClient.from_config(config) as client:
        try:
            async for token in client.stream(key, message):
                out.write(token)
                out.flush()
        except StreamError as e:
            out.write("\n")
            logger.error("stream failed: %s", e.message, extra={"error_type": type(e).__name__})
            return 1
    out.write("\n")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    config = get_config(args.config)
    setup_logging(level=config.logging.level, use_json=config.logging.json_format)
    key = ConversationKey(args.workspace, args.agent)
    sys.exit(asyncio.run(run_stream(config, key, args.message)))


if __name__ == "__main__":
    main()
