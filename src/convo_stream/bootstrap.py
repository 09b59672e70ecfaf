from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from convo_stream.app_config import AppConfig, RuntimeEnv
from convo_stream.history import convert_history
from convo_stream.hub import ConversationHub
from convo_stream.logging_config import setup_logging
from convo_stream.models import ChatMessage, StreamStatus
from convo_stream.transport import HttpStreamTransport


@dataclass
class AppRuntime:
    hub: ConversationHub
    transport: HttpStreamTransport
    log_descriptions: list[str]

    async def load_history(self, session_id: str) -> list[ChatMessage]:
        details = await self.transport.fetch_history(session_id)
        messages = convert_history(details)
        logger.info(f"Loaded {len(messages)} history messages for session {session_id}")
        return messages

    async def close(self) -> None:
        await self.hub.close()
        await self.transport.aclose()


async def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    on_status: Callable[[str, StreamStatus], None] | None = None,
    on_error: Callable[[str, Exception], None] | None = None,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    transport = HttpStreamTransport(app.base_url, token=env.token, timeout=app.request_timeout)
    hub = ConversationHub(
        transport,
        max_concurrent_connections=app.max_concurrent_connections,
        max_retries=app.max_retries,
        initial_retry_delay=app.initial_retry_delay,
        on_status=on_status,
        on_error=on_error,
    )
    await hub.start()

    return AppRuntime(hub=hub, transport=transport, log_descriptions=log_descriptions)
