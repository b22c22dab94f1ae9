from datetime import datetime, timedelta, timezone

from chat_stream_runtime.models import Message, ToolInvocation, ToolState
from chat_stream_runtime.persistence.store import thread_messages_key
from chat_stream_runtime.tool_tracker import cancelled_result
from tests.persistence.base import SnapshotStoreTestCase


class SnapshotStoreTests(SnapshotStoreTestCase):
    def test_messages_round_trip_losslessly(self) -> None:
        created = datetime(2024, 5, 1, 9, 30, 15, 123456, tzinfo=timezone(timedelta(hours=2)))
        messages = [
            Message("user", "weather?", created_at=created),
            Message(
                "assistant",
                "It is sunny.",
                created_at=created,
                custom_data={"run_id": "r1"},
                tool_invocations=[
                    ToolInvocation("weather", "t1", {"city": "Oslo"}, ToolState.RESULT, "sunny"),
                    ToolInvocation("search", "t2", None, ToolState.CANCELLED, cancelled_result()),
                ],
            ),
        ]

        self._store.save_messages("widget", messages)
        loaded = self._store.load_messages("widget")

        self.assertEqual(messages, loaded)
        self.assertEqual(created, loaded[0].created_at)
        self.assertEqual(ToolState.CANCELLED, loaded[1].tool_invocations[1].state)

    def test_save_overwrites_previous_snapshot(self) -> None:
        self._store.save_messages("widget", [Message("user", "one")])
        self._store.save_messages("widget", [Message("user", "two")])
        loaded = self._store.load_messages("widget")
        self.assertEqual(["two"], [m.content for m in loaded])

    def test_missing_or_cleared_snapshot_loads_none(self) -> None:
        self.assertIsNone(self._store.load_messages("widget"))
        self._store.save_messages("widget", [Message("user", "one")])
        self._store.clear_messages("widget")
        self.assertIsNone(self._store.load_messages("widget"))

    def test_unreadable_snapshot_is_ignored(self) -> None:
        self._store.execute(
            "INSERT INTO message_snapshots (storage_key, payload_json, updated_at) VALUES (?, ?, ?)",
            ("widget", '[{"role": "system", "content": "x"}]', "2024-01-01T00:00:00+00:00"),
        )
        self._store.commit()
        self.assertIsNone(self._store.load_messages("widget"))

    def test_empty_key_is_a_no_op(self) -> None:
        self._store.save_messages("", [Message("user", "one")])
        self.assertIsNone(self._store.load_messages(""))
        row = self._store.execute("SELECT COUNT(*) AS c FROM message_snapshots").fetchone()
        self.assertEqual(0, int(row["c"]))

    def test_current_thread_id(self) -> None:
        self.assertIsNone(self._store.load_current_thread_id("widget"))
        self._store.save_current_thread_id("widget", "t1")
        self._store.save_current_thread_id("widget", "t2")
        self.assertEqual("t2", self._store.load_current_thread_id("widget"))
        self._store.save_current_thread_id("widget", None)
        self.assertIsNone(self._store.load_current_thread_id("widget"))

    def test_thread_messages_key(self) -> None:
        self.assertEqual("chatui-messages:widget:t1", thread_messages_key("widget", "t1"))
        self.assertEqual("", thread_messages_key("", "t1"))
