from chat_stream_runtime.services.chat_service import ChatService, build_stream_request
from chat_stream_runtime.services.metadata_cache import MetadataCache
from chat_stream_runtime.services.session_controller import SessionController

__all__ = [
    "ChatService",
    "MetadataCache",
    "SessionController",
    "build_stream_request",
]
