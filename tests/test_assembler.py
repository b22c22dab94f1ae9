import unittest

from chat_stream_runtime.assembler import MessageAssembler, Turn
from chat_stream_runtime.follow_up import format_follow_ups
from chat_stream_runtime.models import Message, ToolState
from chat_stream_runtime.stream.cancellation import CancellationHandle
from chat_stream_runtime.stream.events import (
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    TokenEvent,
    UpdateEvent,
)


class MessageAssemblerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._assembler = MessageAssembler()
        self._turn = Turn(Message("user", "hi"), Message("assistant"), CancellationHandle())

    @property
    def _message(self) -> Message:
        return self._turn.assistant_message

    def _apply(self, *events) -> None:
        for event in events:
            self._assembler.apply(self._turn, event)

    def test_tokens_accumulate_in_order(self) -> None:
        self._apply(*(TokenEvent(t) for t in ["a", "b", "c", "d"]))
        self.assertEqual("abcd", self._message.content)

    def test_full_message_supersedes_tokens(self) -> None:
        self._apply(TokenEvent("Hel"), TokenEvent("lo"), MessageEvent({"type": "ai", "content": "Hello there"}))
        self.assertEqual("Hello there", self._message.content)

    def test_message_records_run_id_and_custom_data(self) -> None:
        self._apply(MessageEvent({"type": "ai", "content": "x", "run_id": "r1", "custom_data": {"k": 1}}))
        self.assertEqual({"k": 1, "run_id": "r1"}, self._message.custom_data)
        self.assertEqual("r1", self._message.run_id)

    def test_plain_string_message_replaces_content(self) -> None:
        self._apply(TokenEvent("draft"), MessageEvent("final"))
        self.assertEqual("final", self._message.content)

    def test_tool_calls_and_results_are_routed(self) -> None:
        self._apply(
            MessageEvent({"type": "ai", "content": "", "tool_calls": [
                {"id": "t1", "name": "search", "args": {"q": "x"}},
                {"id": "t2", "name": "calculator", "args": {}},
            ]}),
            MessageEvent({"type": "tool", "tool_call_id": "t1", "name": "search", "content": "found"}),
        )
        states = {inv.tool_call_id: inv.state for inv in self._message.tool_invocations}
        self.assertEqual({"t1": ToolState.RESULT, "t2": ToolState.CALL}, states)
        self.assertEqual("", self._message.content)

    def test_tool_calls_with_text_route_then_replace(self) -> None:
        self._apply(
            TokenEvent("thinking"),
            MessageEvent({"type": "ai", "content": "Let me check", "tool_calls": [{"id": "t1", "name": "search"}]}),
        )
        self.assertEqual("Let me check", self._message.content)
        self.assertEqual(1, len(self._message.tool_invocations))

    def test_update_follow_ups_attach_to_final_message_once(self) -> None:
        self._apply(
            UpdateEvent(updates={"follow_up": ["More?"]}),
            MessageEvent({"type": "ai", "content": "Answer"}),
        )
        self.assertEqual("Answer" + format_follow_ups(["More?"]), self._message.content)
        self.assertEqual([], self._turn.pending_follow_ups)
        self.assertEqual(["More?"], self._turn.follow_up_prompts)

    def test_custom_record_sets_pending_follow_ups(self) -> None:
        self._apply(
            MessageEvent({"type": "custom", "custom_data": {"follow_up": ["a", "b"]}}),
            MessageEvent({"type": "ai", "content": "Answer"}),
        )
        self.assertEqual("Answer" + format_follow_ups(["a", "b"]), self._message.content)

    def test_error_event_becomes_content(self) -> None:
        self._apply(TokenEvent("partial"), ErrorEvent("backend down"))
        self.assertEqual("Error: backend down", self._message.content)
        self.assertEqual("backend down", self._turn.error)
        self.assertFalse(self._turn.closed)

    def test_done_closes_turn_and_later_events_are_dropped(self) -> None:
        self._apply(TokenEvent("a"), DoneEvent(), TokenEvent("b"))
        self.assertTrue(self._turn.closed)
        self.assertTrue(self._turn.handle.cancelled)
        self.assertEqual("a", self._message.content)

    def test_cancel_forces_open_tools_to_cancelled(self) -> None:
        self._apply(MessageEvent({"type": "ai", "content": "", "tool_calls": [{"id": "t1", "name": "search"}]}))
        self._assembler.cancel(self._turn)
        self.assertTrue(self._turn.cancelled)
        self.assertTrue(self._turn.closed)
        self.assertEqual(ToolState.CANCELLED, self._message.tool_invocations[0].state)


if __name__ == "__main__":
    unittest.main()
