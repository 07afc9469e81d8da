"""Loguru sinks for the CLI.

``LogConsumers`` entries in config.json look like
``{"type": "file", "level": "DEBUG", "path": "logs/chat.log"}``.
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_PATH = ".db_chat_agent/db-chat-agent.log"

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"

# The REPL owns the terminal, so the console only shows warnings by default.
_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


@dataclass(frozen=True)
class LogSink:
    kind: str
    level: str
    path: str | None = None
    rotation: str = "5 MB"
    retention: int = 5

    def add(self) -> None:
        if self.kind == "console":
            # stdout carries the streamed answer
            logger.add(sys.stderr, level=self.level, format=_CONSOLE_FORMAT)
            return
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self.path,
            level=self.level,
            format=_FILE_FORMAT,
            rotation=self.rotation,
            retention=self.retention,
            enqueue=True,
        )

    def describe(self) -> str:
        if self.kind == "console":
            return f"console (stderr, {self.level})"
        return f"file ({self.path}, {self.level})"


def parse_sinks(consumers: list[dict[str, Any]], level: str) -> list[LogSink]:
    sinks: list[LogSink] = []
    for entry in consumers:
        kind = str(entry.get("type", "")).strip().lower()
        if kind not in ("console", "file"):
            logger.warning(f"Unknown log consumer type: {kind!r}")
            continue
        sinks.append(
            LogSink(
                kind=kind,
                level=str(entry.get("level", level)).upper(),
                path=str(entry.get("path", DEFAULT_LOG_PATH)) if kind == "file" else None,
                rotation=str(entry.get("rotation", "5 MB")),
                retention=int(entry.get("retention", 5)),
            )
        )
    return sinks


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's default sink with the configured ones and describe them."""
    sinks = parse_sinks(consumers if consumers is not None else _DEFAULT_CONSUMERS, level)

    logger.remove()
    for sink in sinks:
        sink.add()
    return [sink.describe() for sink in sinks]
