import pytest

from meow.history import (
    COMPACT_ACKNOWLEDGEMENT,
    HistoryStore,
    Role,
    estimate_tokens,
    message_tokens,
)


def test_estimate_tokens_rounds_bytes_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    # Four bytes in UTF-8.
    assert estimate_tokens("\U0001f431") == 1


def test_append_tracks_sequence_and_token_estimate():
    history = HistoryStore()
    first = history.append(Role.USER, "hello")
    second = history.append("assistant", "hi there")

    assert second.sequence > first.sequence
    assert second.role is Role.ASSISTANT
    assert history.token_estimate == message_tokens(Role.USER, "hello") + message_tokens(Role.ASSISTANT, "hi there")
    assert history.last() is second


def test_message_bound_evicts_oldest_non_system():
    history = HistoryStore(max_messages=3)
    history.append(Role.SYSTEM, "be helpful")
    for i in range(5):
        history.append(Role.USER, f"message {i}")

    contents = [m.content for m in history]
    assert contents == ["be helpful", "message 3", "message 4"]
    assert history.token_estimate == history.recompute_tokens()


def test_token_bound_never_evicts_system_or_newest():
    history = HistoryStore(max_messages=100, max_tokens=20)
    history.append(Role.SYSTEM, "s" * 40)
    history.append(Role.USER, "old question")
    history.append(Role.USER, "x" * 200)

    roles = [m.role for m in history]
    assert roles == [Role.SYSTEM, Role.USER]
    assert history.last().content == "x" * 200
    assert history.token_estimate > history.max_tokens


def test_invalid_message_bound_is_rejected():
    with pytest.raises(ValueError):
        HistoryStore(max_messages=0)


def test_tool_results_travel_as_user_messages():
    history = HistoryStore()
    history.append(Role.TOOL, "[Tool Result]\nok\n[End Tool Result]")

    assert history.to_wire() == [{"role": "user", "content": "[Tool Result]\nok\n[End Tool Result]"}]
    assert history.last().role is Role.TOOL


def test_compact_replaces_conversation_with_summary():
    history = HistoryStore()
    history.append(Role.SYSTEM, "system prompt")
    for i in range(10):
        history.append(Role.USER, f"question {i} " * 20)
        history.append(Role.ASSISTANT, f"answer {i} " * 20)

    before, after = history.compact("User asked ten questions.", system_prompt="system prompt")

    assert after < before
    assert after == history.token_estimate
    wire = history.to_wire()
    assert [m["role"] for m in wire] == ["system", "user", "assistant"]
    assert "User asked ten questions." in wire[1]["content"]
    assert wire[1]["content"].startswith("[Previous Conversation Summary]")
    assert wire[2]["content"] == COMPACT_ACKNOWLEDGEMENT


def test_clear_keeps_system_prompt():
    history = HistoryStore()
    history.append(Role.SYSTEM, "system prompt")
    history.append(Role.USER, "hi")

    history.clear()
    assert [m.content for m in history] == ["system prompt"]
    assert history.token_estimate == message_tokens(Role.SYSTEM, "system prompt")

    history.clear(keep_system=False)
    assert len(history) == 0
    assert history.token_estimate == 0
