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
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from logging import getLogger
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from evermore_agents.utils import IllegalTransitionError


if TYPE_CHECKING:
    from evermore_agents.memory import AgentContext, AgentStep


__all__ = [
    "AgentPhase",
    "AgentEvent",
    "AgentStateMachine",
    "DecompositionOutput",
    "HaltReason",
    "IntentOutput",
    "IntentType",
    "PlanningOutput",
    "RecognizedIntent",
    "StateMachineContext",
]

logger = getLogger(__name__)


class AgentPhase(str, Enum):
    IDLE = "IDLE"
    RECOGNIZING_INTENT = "RECOGNIZING_INTENT"
    DECOMPOSING_TASK = "DECOMPOSING_TASK"
    PLANNING = "PLANNING"
    EXECUTING = "EXECUTING"
    OBSERVING = "OBSERVING"
    REFLECTING = "REFLECTING"
    SYNTHESIZING = "SYNTHESIZING"
    REPLANNING = "REPLANNING"
    DONE = "DONE"
    HALTED = "HALTED"


TERMINAL_PHASES = frozenset({AgentPhase.DONE, AgentPhase.HALTED})


class HaltReason(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"
    TOKEN_LIMIT = "TOKEN_LIMIT"
    COST_LIMIT = "COST_LIMIT"
    REPLAN_LIMIT = "REPLAN_LIMIT"
    STEP_LIMIT = "STEP_LIMIT"
    INTERRUPTED = "INTERRUPTED"


class AgentEvent(str, Enum):
    START = "START"
    SIMPLE_INTENT = "SIMPLE_INTENT"
    INTENT_RECOGNIZED = "INTENT_RECOGNIZED"
    INTENT_ERROR = "INTENT_ERROR"
    TASK_DECOMPOSED = "TASK_DECOMPOSED"
    PLAN_READY = "PLAN_READY"
    STEP_COMPLETE = "STEP_COMPLETE"
    STEP_ERROR = "STEP_ERROR"
    STEP_LIMIT = "STEP_LIMIT"
    PLAN_COMPLETE = "PLAN_COMPLETE"
    CONTINUE_PLAN = "CONTINUE_PLAN"
    OBSERVATION_INVALIDATES = "OBSERVATION_INVALIDATES"
    REFLECTION_COMPLETE = "REFLECTION_COMPLETE"
    REFLECTION_INSUFFICIENT = "REFLECTION_INSUFFICIENT"
    REPLAN_READY = "REPLAN_READY"
    REPLAN_LIMIT = "REPLAN_LIMIT"
    ANSWER_READY = "ANSWER_READY"
    UNRECOVERABLE = "UNRECOVERABLE"


TRANSITIONS: dict[tuple[AgentPhase, AgentEvent], AgentPhase] = {
    (AgentPhase.IDLE, AgentEvent.START): AgentPhase.RECOGNIZING_INTENT,
    (AgentPhase.RECOGNIZING_INTENT, AgentEvent.SIMPLE_INTENT): AgentPhase.SYNTHESIZING,
    (AgentPhase.RECOGNIZING_INTENT, AgentEvent.INTENT_RECOGNIZED): AgentPhase.DECOMPOSING_TASK,
    (AgentPhase.RECOGNIZING_INTENT, AgentEvent.INTENT_ERROR): AgentPhase.HALTED,
    (AgentPhase.DECOMPOSING_TASK, AgentEvent.TASK_DECOMPOSED): AgentPhase.PLANNING,
    (AgentPhase.PLANNING, AgentEvent.PLAN_READY): AgentPhase.EXECUTING,
    (AgentPhase.EXECUTING, AgentEvent.STEP_COMPLETE): AgentPhase.OBSERVING,
    (AgentPhase.EXECUTING, AgentEvent.STEP_ERROR): AgentPhase.HALTED,
    (AgentPhase.EXECUTING, AgentEvent.STEP_LIMIT): AgentPhase.HALTED,
    (AgentPhase.OBSERVING, AgentEvent.PLAN_COMPLETE): AgentPhase.REFLECTING,
    (AgentPhase.OBSERVING, AgentEvent.CONTINUE_PLAN): AgentPhase.EXECUTING,
    (AgentPhase.OBSERVING, AgentEvent.OBSERVATION_INVALIDATES): AgentPhase.REPLANNING,
    (AgentPhase.REFLECTING, AgentEvent.REFLECTION_COMPLETE): AgentPhase.SYNTHESIZING,
    (AgentPhase.REFLECTING, AgentEvent.REFLECTION_INSUFFICIENT): AgentPhase.REPLANNING,
    (AgentPhase.REPLANNING, AgentEvent.REPLAN_READY): AgentPhase.PLANNING,
    (AgentPhase.REPLANNING, AgentEvent.REPLAN_LIMIT): AgentPhase.HALTED,
    (AgentPhase.SYNTHESIZING, AgentEvent.ANSWER_READY): AgentPhase.DONE,
}
# UNRECOVERABLE is declared from every non-terminal phase.
TRANSITIONS.update(
    {(phase, AgentEvent.UNRECOVERABLE): AgentPhase.HALTED for phase in AgentPhase if phase not in TERMINAL_PHASES}
)


class IntentType(str, Enum):
    SHARE_MEMORY = "SHARE_MEMORY"
    RECALL_MEMORY = "RECALL_MEMORY"
    SHARE_EMOTION = "SHARE_EMOTION"
    ASK_QUESTION = "ASK_QUESTION"
    CLARIFY = "CLARIFY"
    CHANGE_TOPIC = "CHANGE_TOPIC"
    GREETING = "GREETING"
    END_SESSION = "END_SESSION"
    CONFUSED = "CONFUSED"
    UNKNOWN = "UNKNOWN"


class RecognizedIntent(BaseModel):
    """Intent classification as returned by the model. Accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    primary_intent: IntentType = IntentType.UNKNOWN
    confidence: float = 0.0
    entities: dict[str, Any] | list[Any] = Field(default_factory=dict)
    requires_memory_lookup: bool = False
    requires_safety_check: bool = False
    reasoning: str = ""

    @field_validator("primary_intent", mode="before")
    @classmethod
    def _normalize_intent(cls, value: Any) -> Any:
        if isinstance(value, str):
            name = value.strip().upper().replace(" ", "_")
            return IntentType(name) if name in IntentType.__members__ else IntentType.UNKNOWN
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class IntentOutput:
    intent: RecognizedIntent
    skipped_llm: bool = False


@dataclass(frozen=True)
class DecompositionOutput:
    subgoals: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PlanningOutput:
    tool_descriptions: str
    context_content: str


PhaseOutputT = TypeVar("PhaseOutputT")


@dataclass(frozen=True)
class TransitionRecord:
    from_phase: AgentPhase
    to_phase: AgentPhase
    event: AgentEvent
    timestamp: float


@dataclass
class StateMachineContext:
    """Mutable state of one run. Only `AgentStateMachine` mutates it."""

    goal: str
    agent_context: "AgentContext"
    phase: AgentPhase = AgentPhase.IDLE
    steps: list["AgentStep"] = field(default_factory=list)
    outputs: dict[type, Any] = field(default_factory=dict)
    replan_count: int = 0
    tokens_used: int = 0
    cost_cents: float = 0.0
    final_answer: str | None = None
    last_error: str | None = None
    halt_reason: HaltReason | None = None
    started_at: float = 0.0
    transitions: list[TransitionRecord] = field(default_factory=list)


class AgentStateMachine:
    """
    Finite-state controller over one run. The only component allowed to change the phase.

    Args:
        goal (`str`): The user goal for this run.
        agent_context (`AgentContext`): Caller-supplied, read-only run context.
        max_steps (`int`): Step ceiling used by `check_budget_limits`.
        timeout_ms (`float`): Wall-clock ceiling in milliseconds.
        token_budget (`int`): Token ceiling.
        cost_budget_cents (`float`): Cost ceiling in cents.
        on_transition (`Callable`, *optional*): Called with `(from_phase, to_phase, event)` after each transition.
        clock (`Callable[[], float]`, default `time.monotonic`): Clock returning seconds.
    """

    def __init__(
        self,
        goal: str,
        agent_context: "AgentContext",
        max_steps: int,
        timeout_ms: float,
        token_budget: int,
        cost_budget_cents: float,
        on_transition: Callable[[AgentPhase, AgentPhase, AgentEvent], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_steps = max_steps
        self.timeout_ms = timeout_ms
        self.token_budget = token_budget
        self.cost_budget_cents = cost_budget_cents
        self.on_transition = on_transition
        self.clock = clock
        self.context = StateMachineContext(goal=goal, agent_context=agent_context, started_at=clock())

    @property
    def phase(self) -> AgentPhase:
        return self.context.phase

    @property
    def steps(self) -> list["AgentStep"]:
        return self.context.steps

    def transition(self, event: AgentEvent | str) -> AgentPhase:
        current = self.context.phase
        if not isinstance(event, AgentEvent):
            if event not in AgentEvent.__members__:
                raise IllegalTransitionError(current.value, str(event))
            event = AgentEvent[event]
        target = TRANSITIONS.get((current, event))
        if target is None:
            raise IllegalTransitionError(current.value, event.value)

        self.context.phase = target
        self.context.transitions.append(
            TransitionRecord(from_phase=current, to_phase=target, event=event, timestamp=self.clock())
        )
        if target == AgentPhase.DONE and self.context.halt_reason is None:
            self.context.halt_reason = HaltReason.SUCCESS
        elif target == AgentPhase.HALTED and self.context.halt_reason is None:
            self.context.halt_reason = HaltReason.ERROR
        logger.debug("Transition %s --%s--> %s", current.value, event.value, target.value)
        if self.on_transition is not None:
            self.on_transition(current, target, event)
        return target

    def is_terminal(self) -> bool:
        return self.context.phase in TERMINAL_PHASES

    def set_halt_reason(self, reason: HaltReason):
        self.context.halt_reason = reason

    def set_final_answer(self, answer: str):
        self.context.final_answer = answer

    def record_usage(self, tokens: int, cost_cents: float):
        self.context.tokens_used += tokens
        self.context.cost_cents += cost_cents

    def record_replan(self) -> int:
        self.context.replan_count += 1
        return self.context.replan_count

    def record_error(self, message: str):
        self.context.last_error = message

    def add_step(self, step: "AgentStep"):
        self.context.steps.append(step)

    def record_output(self, output: Any):
        self.context.outputs[type(output)] = output

    def get_output(self, output_type: type[PhaseOutputT]) -> PhaseOutputT | None:
        return self.context.outputs.get(output_type)

    @property
    def elapsed_ms(self) -> float:
        return (self.clock() - self.context.started_at) * 1000

    def check_budget_limits(self, include_steps: bool = True) -> HaltReason | None:
        """Returns the first ceiling already reached, or None.

        The step ceiling is reached once `max_steps` steps exist, so that no further step gets recorded.
        Phases that never record a step pass `include_steps=False`.
        """
        if self.elapsed_ms > self.timeout_ms:
            return HaltReason.TIMEOUT
        if self.context.cost_cents > self.cost_budget_cents:
            return HaltReason.COST_LIMIT
        if self.context.tokens_used > self.token_budget:
            return HaltReason.TOKEN_LIMIT
        if include_steps and len(self.context.steps) >= self.max_steps:
            return HaltReason.STEP_LIMIT
        return None

    def history(self) -> list[TransitionRecord]:
        return list(self.context.transitions)
