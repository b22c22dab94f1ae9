from chat_stream_runtime.stream.cancellation import CancellationHandle
from chat_stream_runtime.stream.events import (
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    StreamEvent,
    TokenEvent,
    UpdateEvent,
    interpret_frame,
)
from chat_stream_runtime.stream.frame_decoder import FrameDecoder, FrameStream

__all__ = [
    "CancellationHandle",
    "DoneEvent",
    "ErrorEvent",
    "FrameDecoder",
    "FrameStream",
    "MessageEvent",
    "StreamEvent",
    "TokenEvent",
    "UpdateEvent",
    "interpret_frame",
]
