import unittest

from convo_stream.history import convert_history, is_local_command_message


class HistoryConversionTests(unittest.TestCase):
    def test_converts_records_in_order(self) -> None:
        details = {
            "messages": [
                {
                    "uuid": "u1",
                    "type": "user",
                    "timestamp": "2026-01-01T00:00:00Z",
                    "message": {"role": "user", "content": "hello"},
                },
                {
                    "uuid": "a1",
                    "type": "assistant",
                    "timestamp": "2026-01-01T00:00:01Z",
                    "message": {"content": [{"type": "text", "text": "hi"}]},
                },
                {
                    "uuid": "a2",
                    "type": "assistant",
                    "parent_tool_use_id": "t1",
                    "message": {"content": []},
                },
            ]
        }
        messages = convert_history(details)

        self.assertEqual(["u1", "a1", "a2"], [m.id for m in messages])
        self.assertEqual("hello", messages[0].content)
        self.assertEqual("2026-01-01T00:00:00Z", messages[0].timestamp)
        self.assertEqual([{"type": "text", "text": "hi"}], messages[1].content)
        self.assertEqual("t1", messages[2].parent_tool_use_id)
        self.assertFalse(any(m.is_streaming for m in messages))

    def test_skips_sidechain_and_local_command_records(self) -> None:
        details = {
            "messages": [
                {"uuid": "s1", "type": "assistant", "isSidechain": True, "message": {"content": "x"}},
                {"uuid": "c1", "type": "user", "message": {"content": "<command-name>/clear</command-name>"}},
                {
                    "uuid": "c2",
                    "type": "user",
                    "message": {"content": [{"type": "text", "text": "Caveat: generated locally"}]},
                },
                {"uuid": "u1", "type": "user", "message": {"content": "real prompt"}},
            ]
        }
        self.assertEqual(["u1"], [m.id for m in convert_history(details)])

    def test_local_command_check_only_applies_to_user_records(self) -> None:
        self.assertFalse(
            is_local_command_message({"type": "assistant", "message": {"content": "<local-command-stdout>"}})
        )
        self.assertTrue(
            is_local_command_message({"type": "user", "message": {"content": "  <local-command-stdout>ok"}})
        )

    def test_empty_details(self) -> None:
        self.assertEqual([], convert_history({}))


if __name__ == "__main__":
    unittest.main()
