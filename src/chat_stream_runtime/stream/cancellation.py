from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_stream_runtime.stream.frame_decoder import FrameStream


class CancellationHandle:
    """Single-owner token saying whether the in-flight turn may still run.

    The frame stream reading the response body binds itself to the handle so
    that a cancelling caller can collect the frames that were decoded before
    the signal but not yet consumed.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._frames: FrameStream | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, frames: FrameStream) -> None:
        self._frames = frames

    def cancel(self) -> None:
        self._cancelled = True

    def take_buffered_frames(self) -> list[str]:
        if self._frames is None:
            return []
        return self._frames.drain()

    def release(self) -> None:
        self._cancelled = True
        self._frames = None
