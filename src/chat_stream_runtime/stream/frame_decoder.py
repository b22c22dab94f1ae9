from __future__ import annotations

import codecs
from collections import deque
from collections.abc import AsyncIterable, AsyncIterator

from loguru import logger

from chat_stream_runtime.stream.cancellation import CancellationHandle

FRAME_DELIMITER = "\n\n"
DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class FrameDecoder:
    """Incremental decoder from response-body bytes to text frames.

    Chunks carry no alignment guarantee: a frame, the blank-line delimiter or
    a multi-byte character may be split across any number of reads.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        if not chunk:
            return []
        # only the tail of the old buffer can complete a delimiter
        start = max(len(self._buffer) - len(FRAME_DELIMITER) + 1, 0)
        self._buffer += self._decoder.decode(chunk)
        if self._buffer.find(FRAME_DELIMITER, start) < 0:
            return []
        parts = self._buffer.split(FRAME_DELIMITER)
        self._buffer = parts.pop()
        return [part for part in parts if part]

    def flush(self) -> list[str]:
        """Finish decoding at end of stream; a non-blank remainder is the last frame."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            return [remainder]
        return []

    @property
    def buffered_text(self) -> str:
        return self._buffer


def frame_payload(frame: str) -> str | None:
    """Return the payload of a `data: ` frame, or None for anything else."""
    if not frame.startswith(DATA_PREFIX):
        return None
    return frame[len(DATA_PREFIX):]


class FrameStream:
    """Lazy, single-consumer sequence of frames read from a byte stream.

    The only suspension point is the read of the next chunk. The cancellation
    handle is checked before every read; frames already decoded stay in the
    queue until they are consumed or drained.
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        handle: CancellationHandle | None = None,
        *,
        decoder: FrameDecoder | None = None,
    ):
        self._chunks = chunks
        self._handle = handle or CancellationHandle()
        self._decoder = decoder or FrameDecoder()
        self._pending: deque[str] = deque()
        self._handle.bind(self)

    def drain(self) -> list[str]:
        frames = list(self._pending)
        self._pending.clear()
        return frames

    async def __aiter__(self) -> AsyncIterator[str]:
        iterator = aiter(self._chunks)
        exhausted = False
        while True:
            while self._pending:
                yield self._pending.popleft()
            if exhausted or self._handle.cancelled:
                return
            try:
                chunk = await anext(iterator)
            except StopAsyncIteration:
                exhausted = True
                self._pending.extend(self._decoder.flush())
                continue
            if self._handle.cancelled:
                logger.debug("Stream cancelled; discarding chunk read after the signal")
                return
            self._pending.extend(self._decoder.feed(chunk))
