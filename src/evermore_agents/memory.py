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
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from evermore_agents.utils import make_json_serializable


if TYPE_CHECKING:
    from evermore_agents.monitoring import Timing, TokenUsage


__all__ = [
    "FINAL_ANSWER_ACTION",
    "AgentContext",
    "AgentStep",
    "MemoryItem",
    "Observation",
    "ObservationKind",
    "ProcessedObservation",
]

FINAL_ANSWER_ACTION = "Final Answer"


@dataclass(frozen=True)
class MemoryItem:
    text: str
    id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentContext:
    """
    Per-run input supplied by the caller. The agent core never mutates it.

    Args:
        user_id (`str`): Id of the user talking to the agent.
        session_id (`str`): Id of the conversation session.
        memories (`tuple[MemoryItem, ...]`): Prior memories known to the caller.
        recent_history (`tuple[dict, ...]`): Recent conversation turns, oldest first.
    """

    user_id: str
    session_id: str
    memories: tuple[MemoryItem, ...] = ()
    recent_history: tuple[dict[str, Any], ...] = ()


class ObservationKind(str, Enum):
    OK = "OK"
    TOOL_ERROR = "TOOL_ERROR"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class Observation:
    kind: ObservationKind
    payload: str

    @classmethod
    def ok(cls, payload: str) -> "Observation":
        return cls(kind=ObservationKind.OK, payload=payload)

    @classmethod
    def error(cls, message: str, timeout: bool = False) -> "Observation":
        return cls(kind=ObservationKind.TIMEOUT if timeout else ObservationKind.TOOL_ERROR, payload=message)

    @property
    def is_error(self) -> bool:
        return self.kind != ObservationKind.OK

    def __str__(self) -> str:
        if self.is_error:
            return f"Error: {self.payload}"
        return self.payload


@dataclass(frozen=True)
class AgentStep:
    """
    One thought/action/observation cycle of the execution phase. Immutable once appended.
    """

    step_number: int
    thought: str
    action: str
    action_input: Any = None
    observation: Observation | None = None
    timing: "Timing | None" = None
    token_usage: "TokenUsage | None" = None

    @property
    def is_final_answer(self) -> bool:
        return self.action == FINAL_ANSWER_ACTION

    def dict(self):
        return {
            "step": self.step_number,
            "thought": self.thought,
            "action": self.action,
            "action_input": make_json_serializable(self.action_input),
            "observation": str(self.observation) if self.observation is not None else None,
            "observation_kind": self.observation.kind.value if self.observation is not None else None,
            "timing": self.timing.dict() if self.timing else None,
            "token_usage": self.token_usage.dict() if self.token_usage else None,
        }


@dataclass(frozen=True)
class ProcessedObservation:
    step_id: str
    type: str
    insight: str
    confidence: float
    invalidates_plan: bool
    raw_step: AgentStep

    @classmethod
    def from_step(cls, step: AgentStep) -> "ProcessedObservation":
        observation = step.observation
        is_error = observation is not None and observation.is_error
        return cls(
            step_id=f"step-{step.step_number}",
            type="ERROR" if is_error else "INFORMATION",
            insight=str(observation) if observation is not None else "",
            confidence=1.0,
            invalidates_plan=is_error,
            raw_step=step,
        )
