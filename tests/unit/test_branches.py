import pytest

from agentrelay.engine.branches import (
    conversation_text,
    extract_list,
    format_bound_value,
    is_list_type,
)
from agentrelay.gateway import ConversationMessage


@pytest.mark.parametrize(
    "bind_type", ["List_Integer", "List<String>", "list[int]", "List_Boolean", "List_"]
)
def test_is_list_type_accepts_list_types(bind_type):
    assert is_list_type(bind_type)


@pytest.mark.parametrize("bind_type", [None, "", "Integer", "Map_String", "List_Widget"])
def test_is_list_type_rejects_other_types(bind_type):
    assert not is_list_type(bind_type)


def test_conversation_text_skips_user_messages():
    messages = [
        ConversationMessage(id="1", type="user_message", text="Reply with [9, 9]"),
        ConversationMessage(id="2", type="assistant_message", text="Here: [1, 2, 3]"),
        ConversationMessage(id="3", type="assistant_message", text=None),
    ]
    assert conversation_text(messages) == "Here: [1, 2, 3]"


def test_extract_list_prefers_last_list():
    text = "First guess [1, 2]. After checking, the answer is [3, 4, 5]."
    assert extract_list(text, "List_Integer") == [3, 4, 5]


def test_extract_list_prefers_fenced_block():
    text = 'Result:\n```json\n["a", "b"]\n```\nIgnore ["z"] in the notes.'
    assert extract_list(text, "List_String") == ["a", "b"]


def test_extract_list_accepts_wrapping_object():
    assert extract_list('{"result": [7, 8]}', "List_Integer") == [7, 8]


def test_extract_list_skips_lists_of_wrong_type():
    text = 'Numbers: [1, 2] and later ["x", "y"]'
    assert extract_list(text, "List_Integer") == [1, 2]


def test_extract_list_coerces_elements():
    assert extract_list('["1", "2"]', "List_Integer") == [1, 2]
    assert extract_list('["true", false]', "List_Boolean") == [True, False]


def test_extract_list_returns_empty_list():
    assert extract_list("Nothing to do: []", "List_Integer") == []


def test_extract_list_without_any_list():
    assert extract_list("I could not find any issues.", "List_Integer") is None


def test_format_bound_value():
    assert format_bound_value(True) == "true"
    assert format_bound_value(42) == "42"
    assert format_bound_value({"id": 1}) == '{"id": 1}'
    assert format_bound_value("text") == "text"
