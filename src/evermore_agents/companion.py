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
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from .empathy import CognitiveAdapter, EmotionalState, EmpathyEngine, ExplanationCertainty, ExplanationEngine
from .safety import SCAM_WARNING, RiskSeverity, ScamAssessment, WellbeingAssessment, WellbeingGuard


if TYPE_CHECKING:
    from .memory import AgentStep


__all__ = ["CompanionSystem", "SafetyCheck", "SessionContinuity"]

logger = getLogger(__name__)

INTERVENTION_RISKS = frozenset({RiskSeverity.HIGH, RiskSeverity.CRITICAL})
MIN_SCAM_RED_FLAGS = 2


@dataclass
class SessionRecord:
    session_id: str
    started_at: float
    topics: list[str] = field(default_factory=list)


class SessionContinuity:
    """Remembers a user's sessions and the topics discussed in them, so later turns can refer back."""

    MAX_RECENT_TOPICS = 20
    MAX_TOPIC_CHARS = 80

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.sessions: dict[str, SessionRecord] = {}
        self.current_session_id: str | None = None
        self.recent_topics: deque[str] = deque(maxlen=self.MAX_RECENT_TOPICS)
        self.topic_counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def start_session(self, session_id: str) -> SessionRecord:
        with self._lock:
            record = self.sessions.get(session_id)
            if record is None:
                record = SessionRecord(session_id=session_id, started_at=time.time())
                self.sessions[session_id] = record
            self.current_session_id = session_id
            return record

    def track_topic_discussion(self, topic: str, session_id: str | None = None):
        topic = " ".join(topic.split())[: self.MAX_TOPIC_CHARS].lower()
        if not topic:
            return
        with self._lock:
            self.recent_topics.append(topic)
            self.topic_counts[topic] += 1
            record = self.sessions.get(session_id or self.current_session_id or "")
            if record is not None:
                record.topics.append(topic)

    def times_discussed(self, topic: str) -> int:
        return self.topic_counts[" ".join(topic.split())[: self.MAX_TOPIC_CHARS].lower()]


@dataclass(frozen=True)
class SafetyCheck:
    """Outcome of the per-turn safety gate. `response` is set only when `intervened` is true."""

    emotion: EmotionalState
    assessment: WellbeingAssessment
    scam: ScamAssessment
    intervened: bool
    response: str | None = None


class CompanionSystem:
    """
    Senior-companion layer around the ReAct loop: a safety gate run on every input, and the shaping of
    every final answer (empathy, explanation, plain language).

    Args:
        user_id (`str`): Owner of the session history.
        wellbeing_guard (`WellbeingGuard`, *optional*): Risk assessment; a default guard is built if omitted.
    """

    def __init__(
        self,
        user_id: str,
        wellbeing_guard: WellbeingGuard | None = None,
        empathy_engine: EmpathyEngine | None = None,
        explanation_engine: ExplanationEngine | None = None,
        cognitive_adapter: CognitiveAdapter | None = None,
        session_continuity: SessionContinuity | None = None,
    ):
        self.user_id = user_id
        self.wellbeing_guard = wellbeing_guard or WellbeingGuard()
        self.empathy_engine = empathy_engine or EmpathyEngine()
        self.explanation_engine = explanation_engine or ExplanationEngine()
        self.cognitive_adapter = cognitive_adapter or CognitiveAdapter()
        self.session_continuity = session_continuity or SessionContinuity(user_id)

    def start_session(self, session_id: str):
        self.session_continuity.start_session(session_id)

    def check_safety(self, text: str) -> SafetyCheck:
        emotion = self.empathy_engine.detect_emotion(text)
        assessment = self.wellbeing_guard.assess_wellbeing(text, emotion)
        scam = self.wellbeing_guard.detect_scam(text)

        if assessment.overall_risk in INTERVENTION_RISKS:
            return SafetyCheck(emotion, assessment, scam, intervened=True, response=assessment.suggested_response)
        if (
            scam.is_scam_detected
            and scam.risk_level in INTERVENTION_RISKS
            and len(scam.red_flags) >= MIN_SCAM_RED_FLAGS
        ):
            logger.info("Scam warning issued (%s): %s", scam.scam_type, ", ".join(scam.red_flags))
            response = scam.suggested_response or SCAM_WARNING
            return SafetyCheck(emotion, assessment, scam, intervened=True, response=response)
        return SafetyCheck(emotion, assessment, scam, intervened=False)

    @staticmethod
    def _certainty_for(steps: list["AgentStep"]) -> ExplanationCertainty:
        if any(step.observation is not None and step.observation.is_error for step in steps):
            return ExplanationCertainty.LOW
        return ExplanationCertainty.HIGH

    def adapt_response(
        self, draft: str, emotion: EmotionalState | None, steps: list["AgentStep"], goal: str
    ) -> str:
        """
        Applies empathy tone, then an explanation when the answer is not fully certain, then plain-language
        simplification. On any failure the draft is returned unchanged.
        """
        try:
            response = draft
            if emotion is not None:
                response = self.empathy_engine.adapt_response(response, emotion)

            sources = [
                f"the {step.action} tool"
                for step in steps
                if step.observation is not None and not step.is_final_answer
            ]
            explainable = self.explanation_engine.create_explainable_response(
                response, sources, self._certainty_for(steps)
            )
            if explainable.should_offer_explanation:
                response += "\n\n" + " ".join(explanation.text for explanation in explainable.explanations)

            response = self.cognitive_adapter.adapt_response(response).text
            self.session_continuity.track_topic_discussion(goal)
            return response
        except Exception as e:
            logger.warning("Response adaptation failed, returning the draft unchanged: %s", e)
            return draft
