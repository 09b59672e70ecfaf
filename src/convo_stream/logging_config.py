import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

# Records emitted inside a stream task carry its id (see logger.contextualize
# in the connection manager); everything else logs "-".
_NO_STREAM = "-"

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> <level>{level:<8}</level> "
    "<magenta>[{extra[streaming_id]}]</magenta> "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[streaming_id]} | {name}:{function}:{line} - {message}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(
        self,
        path: str = "logs/convo_stream.log",
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        # enqueue keeps file writes off the event loop thread
        logger.add(
            self._path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
            enqueue=True,
        )

    def describe(self, level: str) -> str:
        kind = "jsonl" if self._serialize else "file"
        return f"{kind} ({self._path}, {level})"


def _jsonl_consumer(path: str = "logs/convo_stream.jsonl", **kwargs: Any) -> FileLogConsumer:
    return FileLogConsumer(path=path, serialize=True, **kwargs)


_CONSUMER_TYPES: dict[str, Any] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
    "jsonl": _jsonl_consumer,
}

_DEFAULT_CONSUMERS = [{"type": "console"}]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's sinks with the configured consumers.

    Returns a description of each registered consumer.
    """
    logger.remove()
    logger.configure(extra={"streaming_id": _NO_STREAM})

    descriptions: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        sink_type = config.get("type", "")
        factory = _CONSUMER_TYPES.get(sink_type)
        if factory is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)
        consumer = factory(**kwargs)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
