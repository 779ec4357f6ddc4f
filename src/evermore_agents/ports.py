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
"""Interfaces of the collaborators the agent depends on, and the interaction signal it emits."""

import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Protocol, runtime_checkable


__all__ = [
    "ImplicitFeedback",
    "InteractionSignal",
    "LLMPort",
    "MemoryRecord",
    "MemoryStorePort",
    "MemoryType",
    "SignalCollectorPort",
    "compute_satisfaction_score",
    "create_interaction_signal",
]


@runtime_checkable
class LLMPort(Protocol):
    """Text generation backend. Failures surface as raised exceptions."""

    async def generate_text(
        self, prompt: str, *, model: str | None = None, max_tokens: int | None = None, temperature: float = 0.7
    ) -> str: ...

    async def generate_json(self, prompt: str, schema: dict[str, Any] | None = None, **options) -> Any: ...


class MemoryType(str, Enum):
    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PREFERENCE = "preference"


@dataclass(frozen=True)
class MemoryRecord:
    content: str
    type: MemoryType = MemoryType.EPISODIC
    importance: float = 0.5
    tags: tuple[str, ...] = ()
    source: str = "agent"
    id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class MemoryStorePort(Protocol):
    async def query(self, query: str, limit: int = 5) -> list[MemoryRecord]: ...

    async def store(self, record: MemoryRecord) -> None: ...


@dataclass(frozen=True)
class ImplicitFeedback:
    session_continued: bool = True
    follow_up_questions: int = 0
    topic_change: bool = False
    conversation_ended_by: Literal["user", "system", "timeout", "ongoing"] = "ongoing"
    response_delay_ms: float = 0.0
    next_message_length: int = 0


@dataclass(frozen=True)
class InteractionSignal:
    id: str
    timestamp: float
    user_id: str
    session_id: str
    input_text: str
    detected_emotion: str
    emotion_confidence: float
    intent_category: str
    response_id: str
    response_latency_ms: float
    model_used: str
    response_preview: str
    agent_step_count: int
    implicit_feedback: ImplicitFeedback | None
    satisfaction_score: float
    explicit_feedback: int | None = None


@runtime_checkable
class SignalCollectorPort(Protocol):
    async def record_signal(self, signal: InteractionSignal) -> None: ...


def _implicit_score(feedback: ImplicitFeedback) -> float:
    score = 0.5
    if feedback.session_continued:
        score += 0.15
    if feedback.follow_up_questions > 0:
        score += min(0.15, feedback.follow_up_questions * 0.05)
    if feedback.next_message_length > 20:
        score += 0.1

    if feedback.topic_change:
        score -= 0.1
    if feedback.conversation_ended_by == "user":
        score -= 0.05
    if feedback.conversation_ended_by == "timeout":
        score -= 0.15
    if feedback.response_delay_ms > 30000:
        score -= 0.1
    return max(0.0, min(1.0, score))


def compute_satisfaction_score(explicit: int | None = None, implicit: ImplicitFeedback | None = None) -> float:
    """Blends an explicit 1-5 rating (70%) with implicit engagement cues (30%). No feedback at all scores 0.5."""
    if explicit is not None:
        explicit_normalized = (explicit - 1) / 4
        if implicit is not None:
            return explicit_normalized * 0.7 + _implicit_score(implicit) * 0.3
        return explicit_normalized
    if implicit is not None:
        return _implicit_score(implicit)
    return 0.5


def create_interaction_signal(
    *,
    user_id: str,
    session_id: str,
    input_text: str,
    response_id: str,
    response_latency_ms: float,
    model_used: str,
    response_preview: str,
    agent_step_count: int,
    detected_emotion: str = "neutral",
    emotion_confidence: float = 0.5,
    intent_category: str = "general",
    implicit_feedback: ImplicitFeedback | None = None,
    explicit_feedback: int | None = None,
) -> InteractionSignal:
    return InteractionSignal(
        id=f"sig-{int(time.time() * 1000)}-{secrets.token_hex(5)}",
        timestamp=time.time(),
        user_id=user_id,
        session_id=session_id,
        input_text=input_text,
        detected_emotion=detected_emotion,
        emotion_confidence=emotion_confidence,
        intent_category=intent_category,
        response_id=response_id,
        response_latency_ms=response_latency_ms,
        model_used=model_used,
        response_preview=response_preview[:500],
        agent_step_count=agent_step_count,
        implicit_feedback=implicit_feedback,
        explicit_feedback=explicit_feedback,
        satisfaction_score=compute_satisfaction_score(explicit_feedback, implicit_feedback),
    )
