import asyncio
import unittest

from chat_stream_runtime.stream.cancellation import CancellationHandle
from chat_stream_runtime.stream.frame_decoder import FrameDecoder, FrameStream, frame_payload

BODY = (
    'data: {"type":"token","content":"café "}\n\n'
    ": keep-alive\n\n"
    'data: {"type":"token","content":"☃"}\n\n'
    "data: [DONE]\n\n"
).encode("utf-8")


async def _chunks(parts: list[bytes]):
    for part in parts:
        yield part


def _collect(parts: list[bytes], handle: CancellationHandle | None = None) -> list[str]:
    async def run() -> list[str]:
        return [frame async for frame in FrameStream(_chunks(parts), handle)]

    return asyncio.run(run())


class FrameDecoderTests(unittest.TestCase):
    def test_frames_are_independent_of_chunk_boundaries(self) -> None:
        expected = FrameDecoder().feed(BODY)
        self.assertEqual(4, len(expected))

        for size in (1, 2, 3, 5, 7, 13):
            decoder = FrameDecoder()
            frames: list[str] = []
            for start in range(0, len(BODY), size):
                frames.extend(decoder.feed(BODY[start:start + size]))
            frames.extend(decoder.flush())
            self.assertEqual(expected, frames, f"chunk size {size}")

    def test_multibyte_character_split_across_chunks(self) -> None:
        encoded = 'data: {"content":"☃"}\n\n'.encode("utf-8")
        split = encoded.index("☃".encode("utf-8")) + 1
        decoder = FrameDecoder()
        self.assertEqual([], decoder.feed(encoded[:split]))
        self.assertEqual(['data: {"content":"☃"}'], decoder.feed(encoded[split:]))

    def test_delimiter_split_across_chunks(self) -> None:
        decoder = FrameDecoder()
        self.assertEqual([], decoder.feed(b"data: one\n"))
        self.assertEqual(["data: one"], decoder.feed(b"\ndata: tw"))
        self.assertEqual("data: tw", decoder.buffered_text)

    def test_long_frame_in_small_chunks(self) -> None:
        frame = "data: " + "x" * 5000
        decoder = FrameDecoder()
        encoded = frame.encode("utf-8")
        for start in range(0, len(encoded), 10):
            self.assertEqual([], decoder.feed(encoded[start:start + 10]))
        self.assertEqual(frame, decoder.buffered_text)
        self.assertEqual([], decoder.feed(b"\n"))
        self.assertEqual([frame], decoder.feed(b"\ndata: next"))
        self.assertEqual("data: next", decoder.buffered_text)

    def test_flush_returns_non_blank_remainder(self) -> None:
        decoder = FrameDecoder()
        decoder.feed(b"data: [DONE]")
        self.assertEqual(["data: [DONE]"], decoder.flush())
        self.assertEqual([], decoder.flush())

    def test_flush_drops_whitespace_remainder(self) -> None:
        decoder = FrameDecoder()
        decoder.feed(b"data: a\n\n\n")
        self.assertEqual([], decoder.flush())

    def test_frame_payload_requires_data_prefix(self) -> None:
        self.assertEqual("[DONE]", frame_payload("data: [DONE]"))
        self.assertIsNone(frame_payload(": comment"))
        self.assertIsNone(frame_payload("event: ping"))


class FrameStreamTests(unittest.TestCase):
    def test_stream_yields_frames_then_trailing_remainder(self) -> None:
        frames = _collect([b"data: a\n\nda", b"ta: b\n\ndata: c"])
        self.assertEqual(["data: a", "data: b", "data: c"], frames)

    def test_cancelled_handle_stops_before_first_read(self) -> None:
        handle = CancellationHandle()
        handle.cancel()
        self.assertEqual([], _collect([b"data: a\n\n"], handle))

    def test_cancel_leaves_buffered_frames_for_drain(self) -> None:
        async def run() -> tuple[list[str], list[str]]:
            handle = CancellationHandle()
            stream = FrameStream(_chunks([b"data: a\n\ndata: b\n\ndata: c\n\n", b"data: d\n\n"]), handle)
            seen: list[str] = []
            async for frame in stream:
                seen.append(frame)
                handle.cancel()
                drained = handle.take_buffered_frames()
            return seen, drained

        seen, drained = asyncio.run(run())
        self.assertEqual(["data: a"], seen)
        self.assertEqual(["data: b", "data: c"], drained)

    def test_released_handle_has_nothing_to_drain(self) -> None:
        handle = CancellationHandle()
        FrameStream(_chunks([]), handle)
        handle.release()
        self.assertTrue(handle.cancelled)
        self.assertEqual([], handle.take_buffered_frames())


if __name__ == "__main__":
    unittest.main()
