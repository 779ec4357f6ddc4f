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
import uuid
from collections import defaultdict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from logging import getLogger
from typing import Any

from evermore_agents.state import AgentEvent, AgentPhase, HaltReason


__all__ = ["AgentTracer", "Span", "SpanStatus", "TraceEvent", "TraceSummary"]

logger = getLogger(__name__)


class SpanStatus(str, Enum):
    UNSET = "UNSET"
    OK = "OK"
    ERROR = "ERROR"


@dataclass
class TraceEvent:
    name: str
    timestamp: float
    attributes: dict[str, Any] = field(default_factory=dict)
    span_id: str | None = None


@dataclass
class Span:
    span_id: str
    name: str
    start_time: float
    parent_id: str | None = None
    end_time: float | None = None
    status: SpanStatus = SpanStatus.UNSET
    status_message: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float | None:
        return None if self.end_time is None else (self.end_time - self.start_time) * 1000


@dataclass(frozen=True)
class ModelUsage:
    input_tokens: int
    output_tokens: int
    cost_cents: float
    calls: int


@dataclass(frozen=True)
class TraceSummary:
    trace_id: str
    session_id: str
    user_id: str
    goal: str
    success: bool
    halt_reason: HaltReason | None
    final_answer: str | None
    duration_ms: float
    span_count: int
    error_span_count: int
    event_count: int
    transitions: tuple[tuple[str, str, str], ...]
    total_input_tokens: int
    total_output_tokens: int
    total_cost_cents: float
    usage_by_model: dict[str, ModelUsage]


class AgentTracer:
    """
    In-process span and event recorder for one run.

    Spans nest: `start_span` pushes onto a stack and `end_span` closes the innermost open span.
    Everything recorded is also emitted to the module logger at DEBUG level.

    Args:
        session_id (`str`): Session of the run.
        user_id (`str`): User of the run.
        goal (`str`): Goal of the run.
        clock (`Callable[[], float]`, default `time.monotonic`): Clock returning seconds.
    """

    def __init__(self, session_id: str, user_id: str, goal: str, clock: Callable[[], float] = time.monotonic):
        self.trace_id = str(uuid.uuid4())
        self.session_id = session_id
        self.user_id = user_id
        self.goal = goal
        self.clock = clock
        self.start_time = clock()
        self.spans: list[Span] = []
        self.events: list[TraceEvent] = []
        self.transitions: list[tuple[str, str, str]] = []
        self._open_spans: list[Span] = []
        self._tokens: dict[str, list[int]] = defaultdict(lambda: [0, 0, 0])
        self._costs: dict[str, float] = defaultdict(float)
        self.summary: TraceSummary | None = None

    @property
    def current_span(self) -> Span | None:
        return self._open_spans[-1] if self._open_spans else None

    def start_span(self, name: str, attributes: dict[str, Any] | None = None) -> Span:
        parent = self.current_span
        span = Span(
            span_id=uuid.uuid4().hex[:16],
            name=name,
            start_time=self.clock(),
            parent_id=parent.span_id if parent else None,
            attributes=dict(attributes or {}),
        )
        self.spans.append(span)
        self._open_spans.append(span)
        logger.debug("[%s] span start %s %s", self.trace_id, name, span.attributes)
        return span

    def end_span(self, status: SpanStatus | str = SpanStatus.OK, message: str | None = None) -> Span | None:
        if not self._open_spans:
            logger.debug("[%s] end_span called with no open span", self.trace_id)
            return None
        span = self._open_spans.pop()
        span.end_time = self.clock()
        span.status = SpanStatus(status)
        span.status_message = message
        logger.debug(
            "[%s] span end %s status=%s duration=%.1fms", self.trace_id, span.name, span.status.value, span.duration_ms
        )
        return span

    @contextmanager
    def span(self, name: str, **attributes) -> Iterator[Span]:
        span = self.start_span(name, attributes)
        try:
            yield span
        except BaseException as e:
            if span in self._open_spans:
                self._close_up_to(span, SpanStatus.ERROR, str(e))
            raise
        else:
            if span in self._open_spans:
                self._close_up_to(span, SpanStatus.OK, None)

    def _close_up_to(self, span: Span, status: SpanStatus, message: str | None):
        while self._open_spans:
            closed = self.end_span(status if self._open_spans[-1] is span else SpanStatus.ERROR, message)
            if closed is span:
                break

    def record_event(self, name: str, attributes: dict[str, Any] | None = None):
        current = self.current_span
        event = TraceEvent(
            name=name,
            timestamp=self.clock(),
            attributes=dict(attributes or {}),
            span_id=current.span_id if current else None,
        )
        self.events.append(event)
        logger.debug("[%s] event %s %s", self.trace_id, name, event.attributes)

    def log_transition(self, from_phase: AgentPhase, to_phase: AgentPhase, event: AgentEvent | str):
        event_name = event.value if isinstance(event, AgentEvent) else str(event)
        self.transitions.append((from_phase.value, to_phase.value, event_name))
        self.record_event("transition", {"from": from_phase.value, "to": to_phase.value, "event": event_name})

    def record_token_usage(self, input_tokens: int, output_tokens: int, model: str | None = None):
        usage = self._tokens[model or "unknown"]
        usage[0] += input_tokens
        usage[1] += output_tokens
        usage[2] += 1

    def record_cost(self, cost_cents: float, model: str | None = None):
        self._costs[model or "unknown"] += cost_cents

    def finalize(self, success: bool, final_answer: str | None, halt_reason: HaltReason | None) -> TraceSummary:
        while self._open_spans:
            self.end_span(SpanStatus.ERROR, "span left open at end of run")
        models = set(self._tokens) | set(self._costs)
        usage_by_model = {
            model: ModelUsage(
                input_tokens=self._tokens[model][0] if model in self._tokens else 0,
                output_tokens=self._tokens[model][1] if model in self._tokens else 0,
                cost_cents=self._costs.get(model, 0.0),
                calls=self._tokens[model][2] if model in self._tokens else 0,
            )
            for model in models
        }
        self.summary = TraceSummary(
            trace_id=self.trace_id,
            session_id=self.session_id,
            user_id=self.user_id,
            goal=self.goal,
            success=success,
            halt_reason=halt_reason,
            final_answer=final_answer,
            duration_ms=(self.clock() - self.start_time) * 1000,
            span_count=len(self.spans),
            error_span_count=sum(1 for span in self.spans if span.status == SpanStatus.ERROR),
            event_count=len(self.events),
            transitions=tuple(self.transitions),
            total_input_tokens=sum(usage.input_tokens for usage in usage_by_model.values()),
            total_output_tokens=sum(usage.output_tokens for usage in usage_by_model.values()),
            total_cost_cents=sum(usage.cost_cents for usage in usage_by_model.values()),
            usage_by_model=usage_by_model,
        )
        logger.debug(
            "[%s] trace finalized: success=%s halt_reason=%s spans=%d",
            self.trace_id,
            success,
            halt_reason.value if halt_reason else None,
            len(self.spans),
        )
        return self.summary
