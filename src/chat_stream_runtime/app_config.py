from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class ChatRuntimeConfig:
    url: str
    agent: str | None = None
    model: str | None = None
    thread_id: str | None = None
    user_id: str | None = None
    stream_tokens: bool = True
    starter_message: str | None = None
    starter_suggestions: list[str] = field(default_factory=list)
    storage_key: str | None = None
    storage_db_path: str | None = None
    request_timeout_seconds: float = 60.0
    metadata_ttl_seconds: float = 300.0
    log_level: str = "INFO"
    log_consumers: list | None = None


def load_json_config(path: str | Path | None = None) -> dict:
    config_path = Path(path) if path is not None else Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_app_config(config: dict) -> ChatRuntimeConfig:
    """Build the runtime config from `config.json` keys, falling back to the environment.

    The service URL is required; everything else has a default.
    """
    url = _optional_str(config.get("Url")) or _optional_str(os.environ.get("CHAT_SERVICE_URL"))
    if not url:
        raise ValueError("A chat service URL is required (config 'Url' or CHAT_SERVICE_URL)")

    suggestions = config.get("StarterSuggestions") or []
    return ChatRuntimeConfig(
        url=url,
        agent=_optional_str(config.get("Agent")),
        model=_optional_str(config.get("Model")),
        thread_id=_optional_str(config.get("ThreadId")),
        user_id=_optional_str(config.get("UserId")) or _optional_str(os.environ.get("CHAT_USER_ID")),
        stream_tokens=_to_bool(config.get("Stream", True), default=True),
        starter_message=_optional_str(config.get("StarterMessage")),
        starter_suggestions=[str(s) for s in suggestions],
        storage_key=_optional_str(config.get("StorageKey")),
        storage_db_path=_optional_str(config.get("StorageDbPath")),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 60.0)),
        metadata_ttl_seconds=float(config.get("MetadataTtlSeconds", 300.0)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )
