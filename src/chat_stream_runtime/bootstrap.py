from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import httpx
from dotenv import load_dotenv
from loguru import logger

from chat_stream_runtime.app_config import ChatRuntimeConfig, load_json_config, parse_app_config
from chat_stream_runtime.logging_config import setup_logging
from chat_stream_runtime.persistence.store import SnapshotStore
from chat_stream_runtime.services.chat_service import ChatService
from chat_stream_runtime.services.metadata_cache import MetadataCache
from chat_stream_runtime.services.session_controller import SessionController


@dataclass
class ChatRuntime:
    controller: SessionController
    service: ChatService
    metadata_cache: MetadataCache
    snapshot_store: SnapshotStore | None
    log_descriptions: list[str]

    async def aclose(self) -> None:
        await self.controller.close()
        if self.snapshot_store is not None:
            self.snapshot_store.close()


def build_runtime(
    config: ChatRuntimeConfig,
    *,
    metadata_cache: MetadataCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChatRuntime:
    """Wire a session controller from config.

    Pass the same `metadata_cache` to runtimes that should share fetched
    metadata; by default each runtime gets its own.
    """
    log_descriptions = setup_logging(level=config.log_level, consumers=config.log_consumers)

    cache = metadata_cache or MetadataCache(config.metadata_ttl_seconds)
    service = ChatService(
        config.url,
        default_agent=config.agent or "",
        default_model=config.model or "",
        timeout=config.request_timeout_seconds,
        metadata_cache=cache,
        transport=transport,
    )

    store: SnapshotStore | None = None
    if config.storage_key and config.storage_db_path:
        db_path = Path(config.storage_db_path)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        store = SnapshotStore(str(db_path))

    controller = SessionController(
        service,
        agent=config.agent,
        model=config.model,
        thread_id=config.thread_id,
        user_id=config.user_id,
        stream_tokens=config.stream_tokens,
        starter_message=config.starter_message,
        starter_suggestions=config.starter_suggestions,
        store=store,
        storage_key=config.storage_key,
    )
    if store is not None:
        controller.restore()

    logger.info(f"Chat runtime ready for {service.base_url} (logging: {', '.join(log_descriptions) or 'none'})")
    return ChatRuntime(
        controller=controller,
        service=service,
        metadata_cache=cache,
        snapshot_store=store,
        log_descriptions=log_descriptions,
    )


async def bootstrap_runtime(config_path: str | Path | None = None) -> ChatRuntime:
    """Load `.env` and `config.json`, build the runtime and fetch service metadata."""
    load_dotenv()
    config = parse_app_config(load_json_config(config_path))
    runtime = build_runtime(config)
    await runtime.controller.load_metadata()
    return runtime
