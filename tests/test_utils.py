from dataclasses import dataclass
from enum import Enum

import pytest
from pydantic import BaseModel

from evermore_agents.utils import (
    AgentError,
    estimate_tokens,
    make_json_serializable,
    parse_json_array,
    parse_json_blob,
    populate_template,
    stringify,
    truncate_content,
)


class TestEstimateTokens:
    @pytest.mark.parametrize("text, expected", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2), ("a" * 400, 100)])
    def test_four_characters_per_token(self, text, expected):
        assert estimate_tokens(text) == expected


class TestParseJsonBlob:
    def test_extracts_object_from_surrounding_text(self):
        text = 'Sure! Here it is:\n{"thought": "ok", "action": "Final Answer", "actionInput": "done"}\nThanks'
        assert parse_json_blob(text) == {"thought": "ok", "action": "Final Answer", "actionInput": "done"}

    def test_nested_braces(self):
        assert parse_json_blob('{"a": {"b": 1}}') == {"a": {"b": 1}}

    def test_no_object(self):
        with pytest.raises(ValueError, match="No JSON object"):
            parse_json_blob("no json here")

    def test_invalid_json(self):
        with pytest.raises(ValueError, match="invalid"):
            parse_json_blob('{"a": }')

    def test_multiple_steps_hint(self):
        with pytest.raises(ValueError, match="ONLY ONE STEP"):
            parse_json_blob('{"action": "a"},\n{"action": "b"}')


class TestParseJsonArray:
    def test_extracts_array(self):
        assert parse_json_array('Subgoals: ["find hours", "find bus"]') == ["find hours", "find bus"]

    def test_no_array(self):
        with pytest.raises(ValueError, match="No JSON array"):
            parse_json_array("I cannot split this")

    def test_invalid_array(self):
        with pytest.raises(ValueError, match="invalid"):
            parse_json_array("[1, 2,,]")


class TestSerialization:
    def test_make_json_serializable(self):
        class Color(Enum):
            RED = "red"

        @dataclass
        class Point:
            x: int
            color: Color

        class Item(BaseModel):
            name: str

        value = {"point": Point(1, Color.RED), "items": (Item(name="cup"),), 3: None}
        assert make_json_serializable(value) == {
            "point": {"x": 1, "color": "red"},
            "items": [{"name": "cup"}],
            "3": None,
        }

    def test_stringify(self):
        assert stringify("plain text") == "plain text"
        assert stringify({"echoed": "hi"}) == '{"echoed": "hi"}'
        assert stringify(["café"]) == '["café"]'


class TestTemplatesAndText:
    def test_populate_template(self):
        assert populate_template("Goal: {{ goal }}", {"goal": "rest"}) == "Goal: rest"

    def test_missing_variable_raises(self):
        with pytest.raises(Exception, match="UndefinedError"):
            populate_template("Goal: {{ goal }}", {})

    def test_truncate_content(self):
        assert truncate_content("short", max_length=10) == "short"
        truncated = truncate_content("a" * 50 + "b" * 50, max_length=20)
        assert truncated.startswith("a" * 10)
        assert truncated.endswith("b" * 10)
        assert "truncated" in truncated


class TestAgentError:
    def test_dict(self):
        error = AgentError("bad things")
        assert error.dict() == {"type": "AgentError", "message": "bad things"}
        assert str(error) == "bad things"
