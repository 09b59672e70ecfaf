import unittest

from convo_stream.grouping import count_messages, flatten_messages, group_messages
from convo_stream.models import ChatMessage


def _msg(message_id: str, type_: str, content: object = "", parent: str | None = None) -> ChatMessage:
    return ChatMessage(
        id=message_id,
        message_id=message_id,
        type=type_,
        content=content,
        parent_tool_use_id=parent,
    )


def _tool_use(tool_id: str, name: str = "Task") -> dict:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": {}}


def _tool_result(tool_id: str) -> dict:
    return {"type": "tool_result", "tool_use_id": tool_id, "content": "ok"}


class GroupMessagesTests(unittest.TestCase):
    def test_empty_input(self) -> None:
        self.assertEqual([], group_messages([]))

    def test_parent_tool_use_id_nests_under_owner(self) -> None:
        messages = [
            _msg("u1", "user", "run the task"),
            _msg("a1", "assistant", [_tool_use("t1")]),
            _msg("a2", "assistant", [{"type": "text", "text": "sub agent"}], parent="t1"),
            _msg("a3", "assistant", [{"type": "text", "text": "done"}]),
        ]
        grouped = group_messages(messages)

        self.assertEqual(["u1", "a1", "a3"], [m.id for m in grouped])
        self.assertEqual(["a2"], [m.id for m in grouped[1].sub_messages])

    def test_tool_result_nests_under_latest_assistant(self) -> None:
        messages = [
            _msg("a1", "assistant", [_tool_use("t1")]),
            _msg("a2", "assistant", [{"type": "text", "text": "thinking"}]),
            _msg("u1", "user", [_tool_result("t1")]),
        ]
        grouped = group_messages(messages)

        self.assertEqual(["a1", "a2"], [m.id for m in grouped])
        self.assertIsNone(grouped[0].sub_messages)
        self.assertEqual(["u1"], [m.id for m in grouped[1].sub_messages])

    def test_parent_rule_takes_priority_over_proximity(self) -> None:
        messages = [
            _msg("a1", "assistant", [_tool_use("t1")]),
            _msg("a2", "assistant", [_tool_use("t2")]),
            _msg("u1", "user", [_tool_result("t2")], parent="t1"),
        ]
        grouped = group_messages(messages)
        self.assertEqual(["u1"], [m.id for m in grouped[0].sub_messages])
        self.assertIsNone(grouped[1].sub_messages)

    def test_unknown_parent_falls_back_to_proximity(self) -> None:
        messages = [
            _msg("a1", "assistant", [_tool_use("t1")]),
            _msg("u1", "user", [_tool_result("t1")], parent="nope"),
        ]
        grouped = group_messages(messages)
        self.assertEqual(["u1"], [m.id for m in grouped[0].sub_messages])

    def test_tool_result_before_any_assistant_stays_top_level(self) -> None:
        messages = [
            _msg("u1", "user", [_tool_result("t0")]),
            _msg("a1", "assistant", "hi"),
        ]
        self.assertEqual(["u1", "a1"], [m.id for m in group_messages(messages)])

    def test_inputs_are_not_mutated_and_regrouping_is_stable(self) -> None:
        messages = [
            _msg("a1", "assistant", [_tool_use("t1")]),
            _msg("u1", "user", [_tool_result("t1")]),
        ]
        first = group_messages(messages)
        second = group_messages(messages)

        self.assertIsNone(messages[0].sub_messages)
        self.assertEqual(1, len(first[0].sub_messages))
        self.assertEqual(1, len(second[0].sub_messages))

    def test_nested_assistant_can_own_further_children(self) -> None:
        messages = [
            _msg("a1", "assistant", [_tool_use("t1")]),
            _msg("a2", "assistant", [_tool_use("t2", "Read")], parent="t1"),
            _msg("u1", "user", [_tool_result("t2")], parent="t2"),
        ]
        grouped = group_messages(messages)

        self.assertEqual(["a1"], [m.id for m in grouped])
        nested = grouped[0].sub_messages[0]
        self.assertEqual("a2", nested.id)
        self.assertEqual(["u1"], [m.id for m in nested.sub_messages])

    def test_flatten_preserves_order_and_count_includes_nested(self) -> None:
        messages = [
            _msg("u0", "user", "go"),
            _msg("a1", "assistant", [_tool_use("t1")]),
            _msg("a2", "assistant", "sub", parent="t1"),
            _msg("u1", "user", [_tool_result("t1")]),
            _msg("a3", "assistant", "final"),
        ]
        grouped = group_messages(messages)

        self.assertEqual(3, len(grouped))
        self.assertEqual(5, count_messages(grouped))
        self.assertEqual([m.id for m in messages], [m.id for m in flatten_messages(grouped)])


if __name__ == "__main__":
    unittest.main()
