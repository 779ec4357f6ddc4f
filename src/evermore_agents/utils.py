#!/usr/bin/env python
# coding=utf-8

# Copyright 2024 The HuggingFace Inc. team. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import json
import math
import re
from collections.abc import Callable
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from jinja2 import StrictUndefined, Template
from pydantic import BaseModel


if TYPE_CHECKING:
    from evermore_agents.monitoring import AgentLogger


__all__ = [
    "AgentError",
    "AgentParsingError",
    "AgentGenerationError",
    "IllegalTransitionError",
    "TokenEstimator",
    "estimate_tokens",
]

MAX_LENGTH_TRUNCATE_CONTENT = 20000

TokenEstimator = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


class AgentError(Exception):
    """Base class for other agent-related exceptions"""

    def __init__(self, message, logger: "AgentLogger | None" = None):
        super().__init__(message)
        self.message = message
        if logger is not None:
            logger.log_error(message)

    def dict(self) -> dict[str, str]:
        return {"type": self.__class__.__name__, "message": str(self.message)}


class AgentParsingError(AgentError):
    """Exception raised for errors in parsing model output in the agent"""

    pass


class AgentGenerationError(AgentError):
    """Exception raised for errors in generation in the agent"""

    pass


class IllegalTransitionError(AgentError):
    """Exception raised when a phase handler fires an event that has no declared edge from the current phase"""

    def __init__(self, phase: str, event: str, logger: "AgentLogger | None" = None):
        super().__init__(f"Illegal transition '{event}' from phase '{phase}'", logger)
        self.phase = phase
        self.event = event


def parse_json_blob(json_blob: str) -> dict[str, Any]:
    try:
        first_accolade_index = json_blob.find("{")
        last_accolade_index = [a.start() for a in list(re.finditer("}", json_blob))][-1]
        json_blob = json_blob[first_accolade_index : last_accolade_index + 1]
        json_data = json.loads(json_blob, strict=False)
        if not isinstance(json_data, dict):
            raise ValueError(f"Expected a JSON object, got {type(json_data).__name__}")
        return json_data
    except json.JSONDecodeError as e:
        place = e.pos
        if json_blob[place - 1 : place + 2] == "},\n":
            raise ValueError(
                "JSON is invalid: you probably tried to provide multiple steps in one answer. PROVIDE ONLY ONE STEP."
            )
        raise ValueError(
            f"The JSON blob you used is invalid due to the following error: {e}.\n"
            f"JSON blob was: {json_blob}, decoding failed on that specific part of the blob:\n"
            f"'{json_blob[place - 4 : place + 5]}'."
        )
    except IndexError:
        raise ValueError(f"No JSON object found in model output: {json_blob!r}")


def parse_json_array(json_blob: str) -> list[Any]:
    start, end = json_blob.find("["), json_blob.rfind("]")
    if start == -1 or end < start:
        raise ValueError(f"No JSON array found in model output: {json_blob!r}")
    try:
        json_data = json.loads(json_blob[start : end + 1], strict=False)
    except json.JSONDecodeError as e:
        raise ValueError(f"The JSON array in model output is invalid: {e}")
    if not isinstance(json_data, list):
        raise ValueError(f"Expected a JSON array, got {type(json_data).__name__}")
    return json_data


def truncate_content(content: str, max_length: int = MAX_LENGTH_TRUNCATE_CONTENT) -> str:
    if len(content) <= max_length:
        return content
    else:
        return (
            content[: max_length // 2]
            + f"\n..._This content has been truncated to stay below {max_length} characters_...\n"
            + content[-max_length // 2 :]
        )


def make_json_serializable(obj: Any) -> Any:
    """Recursively turn dataclasses, pydantic models and enums into plain JSON-compatible values."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if is_dataclass(obj) and not isinstance(obj, type):
        return make_json_serializable(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): make_json_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [make_json_serializable(item) for item in obj]
    return str(obj)


def stringify(data: Any) -> str:
    if isinstance(data, str):
        return data
    return json.dumps(make_json_serializable(data), ensure_ascii=False)


def populate_template(template: str, variables: dict[str, Any]) -> str:
    compiled_template = Template(template, undefined=StrictUndefined)
    try:
        return compiled_template.render(**variables)
    except Exception as e:
        raise Exception(f"Error during jinja template rendering: {type(e).__name__}: {e}")
