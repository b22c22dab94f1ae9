import unittest

from chat_stream_runtime.follow_up import attach_follow_ups, format_follow_ups, parse_follow_ups


class FollowUpTests(unittest.TestCase):
    def test_attach_appends_block_and_clears_pending(self) -> None:
        content, pending = attach_follow_ups("Answer", ["a", "b"])
        self.assertEqual("Answer\n\n**Follow-up suggestions:**\n- a\n- b", content)
        self.assertEqual([], pending)

    def test_attach_is_idempotent(self) -> None:
        once, _ = attach_follow_ups("Answer", ["a"])
        twice, pending = attach_follow_ups(once, ["a"])
        self.assertEqual(once, twice)
        self.assertEqual([], pending)

    def test_empty_pending_leaves_content(self) -> None:
        self.assertEqual(("Answer", []), attach_follow_ups("Answer", []))

    def test_parse_reads_back_suggestions(self) -> None:
        content = "Answer" + format_follow_ups(["first", "second"])
        self.assertEqual(["first", "second"], parse_follow_ups(content))
        self.assertEqual([], parse_follow_ups("Answer"))


if __name__ == "__main__":
    unittest.main()
