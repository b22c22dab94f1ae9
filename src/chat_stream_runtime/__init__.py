from loguru import logger

from chat_stream_runtime.errors import ChatRuntimeError, ChatServiceError, SessionBusyError
from chat_stream_runtime.models import (
    Message,
    ServiceMetadata,
    SessionSnapshot,
    ToolInvocation,
    ToolState,
)
from chat_stream_runtime.services import ChatService, MetadataCache, SessionController

logger.disable("chat_stream_runtime")

__all__ = [
    "ChatRuntimeError",
    "ChatService",
    "ChatServiceError",
    "Message",
    "MetadataCache",
    "ServiceMetadata",
    "SessionBusyError",
    "SessionController",
    "SessionSnapshot",
    "ToolInvocation",
    "ToolState",
]
