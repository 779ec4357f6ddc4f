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
from collections import deque
from dataclasses import dataclass
from enum import Enum
from logging import getLogger

from evermore_agents.empathy import EmotionalState, EmotionCategory, EmotionIntensity


__all__ = [
    "ConcernDetector",
    "DetectedConcern",
    "EscalationContact",
    "RiskSeverity",
    "SafetyResponseGenerator",
    "ScamAssessment",
    "ScamDetector",
    "WellbeingAssessment",
    "WellbeingConcern",
    "WellbeingGuard",
]

logger = getLogger(__name__)


class RiskSeverity(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)


SEVERITY_ORDER = [RiskSeverity.NONE, RiskSeverity.LOW, RiskSeverity.MODERATE, RiskSeverity.HIGH, RiskSeverity.CRITICAL]


class WellbeingConcern(str, Enum):
    LONELINESS = "LONELINESS"
    DEPRESSION = "DEPRESSION"
    SELF_HARM = "SELF_HARM"
    SUICIDAL_IDEATION = "SUICIDAL_IDEATION"
    COGNITIVE_DECLINE = "COGNITIVE_DECLINE"
    DISORIENTATION = "DISORIENTATION"
    MEDICAL_EMERGENCY = "MEDICAL_EMERGENCY"
    SUBSTANCE_ABUSE = "SUBSTANCE_ABUSE"
    ABUSE = "ABUSE"
    FINANCIAL_EXPLOITATION = "FINANCIAL_EXPLOITATION"
    FALL_RISK = "FALL_RISK"
    DISTRESS = "DISTRESS"


CRITICAL_CONCERNS = frozenset(
    {
        WellbeingConcern.SUICIDAL_IDEATION,
        WellbeingConcern.MEDICAL_EMERGENCY,
        WellbeingConcern.SELF_HARM,
        WellbeingConcern.ABUSE,
    }
)
EMERGENCY_CONCERNS = frozenset({WellbeingConcern.SUICIDAL_IDEATION, WellbeingConcern.MEDICAL_EMERGENCY})


class ScamType(str, Enum):
    MONEY_REQUEST = "MONEY_REQUEST"
    GOVERNMENT_IMPERSONATION = "GOVERNMENT_IMPERSONATION"
    TECH_SUPPORT = "TECH_SUPPORT"
    ROMANCE = "ROMANCE"
    LOTTERY = "LOTTERY"
    GRANDPARENT = "GRANDPARENT"
    MEDICARE = "MEDICARE"
    INVESTMENT = "INVESTMENT"
    CHARITY = "CHARITY"
    PHISHING = "PHISHING"


class ResponseType(str, Enum):
    SUPPORTIVE = "SUPPORTIVE"
    COMFORT = "COMFORT"
    ENCOURAGE_HELP = "ENCOURAGE_HELP"
    SUGGEST_CONTACT = "SUGGEST_CONTACT"
    ESCALATE = "ESCALATE"
    EMERGENCY = "EMERGENCY"


class ActionType(str, Enum):
    LOG = "LOG"
    NOTIFY_CAREGIVER = "NOTIFY_CAREGIVER"
    NOTIFY_FAMILY = "NOTIFY_FAMILY"
    SCHEDULE_FOLLOWUP = "SCHEDULE_FOLLOWUP"
    PROVIDE_RESOURCES = "PROVIDE_RESOURCES"
    RECOMMEND_PROFESSIONAL = "RECOMMEND_PROFESSIONAL"
    CALL_EMERGENCY = "CALL_EMERGENCY"
    WARN_SCAM = "WARN_SCAM"


@dataclass(frozen=True)
class ConcernPattern:
    keywords: tuple[str, ...]
    phrases: tuple[str, ...]
    weight: float


CONCERN_PATTERNS: dict[WellbeingConcern, ConcernPattern] = {
    WellbeingConcern.LONELINESS: ConcernPattern(
        keywords=("lonely", "alone", "isolated", "forgotten", "nobody", "abandoned"),
        phrases=(
            "no one calls",
            "no one visits",
            "all alone",
            "nobody cares",
            "no friends left",
            "everyone is gone",
            "no one to talk to",
            "wish someone would",
            "feel invisible",
            "nobody remembers",
            "nobody calls",
        ),
        weight=0.6,
    ),
    WellbeingConcern.DEPRESSION: ConcernPattern(
        keywords=("depressed", "hopeless", "worthless", "pointless", "empty", "numb"),
        phrases=(
            "don't care anymore",
            "nothing matters",
            "can't get out of bed",
            "no energy",
            "no motivation",
            "everything is dark",
            "don't enjoy anything",
            "lost interest",
        ),
        weight=0.8,
    ),
    WellbeingConcern.SELF_HARM: ConcernPattern(
        keywords=("hurt myself", "cutting", "harm"),
        phrases=(
            "want to hurt myself",
            "hurting myself",
            "don't want to feel",
            "physical pain helps",
            "deserve to suffer",
        ),
        weight=1.0,
    ),
    WellbeingConcern.SUICIDAL_IDEATION: ConcernPattern(
        keywords=("suicide", "kill myself", "end it"),
        phrases=(
            "want to die",
            "don't want to live",
            "don't want to live anymore",
            "better off dead",
            "end my life",
            "not be here",
            "give up on life",
            "no reason to go on",
            "can't take it anymore",
            "what's the point",
            "everyone would be better without me",
            "want to kill myself",
        ),
        weight=1.0,
    ),
    WellbeingConcern.COGNITIVE_DECLINE: ConcernPattern(
        keywords=("forget", "confused", "lost", "memory"),
        phrases=(
            "keep forgetting",
            "can't remember",
            "what day is it",
            "don't know where i am",
            "getting confused",
            "who are you",
            "can't find my way",
            "lost again",
        ),
        weight=0.7,
    ),
    WellbeingConcern.DISORIENTATION: ConcernPattern(
        keywords=("confused", "lost", "where am i", "disoriented"),
        phrases=(
            "don't know where i am",
            "how did i get here",
            "don't recognize",
            "what happened",
            "who am i",
        ),
        weight=0.8,
    ),
    WellbeingConcern.MEDICAL_EMERGENCY: ConcernPattern(
        keywords=("pain", "hurt", "blood", "breathing", "chest", "heart"),
        phrases=(
            "can't breathe",
            "chest pain",
            "heart attack",
            "stroke",
            "fell down",
            "hit my head",
            "can't move",
            "bleeding badly",
            "need ambulance",
            "need help now",
            "call 911",
        ),
        weight=1.0,
    ),
    WellbeingConcern.SUBSTANCE_ABUSE: ConcernPattern(
        keywords=("drinking", "drunk", "pills", "overdose"),
        phrases=(
            "too many drinks",
            "took too many pills",
            "need alcohol",
            "can't stop drinking",
            "drinking alone",
        ),
        weight=0.8,
    ),
    WellbeingConcern.ABUSE: ConcernPattern(
        keywords=("hit me", "hurts me", "threatens", "scared of"),
        phrases=(
            "they hit me",
            "hurts me",
            "threatens me",
            "takes my money",
            "locks me in",
            "won't let me",
            "scared of them",
            "makes me afraid",
            "punishes me",
        ),
        weight=1.0,
    ),
    WellbeingConcern.FINANCIAL_EXPLOITATION: ConcernPattern(
        keywords=("money", "bank", "sent", "gave"),
        phrases=(
            "sent them money",
            "gave my bank details",
            "they took",
            "won't give me my money",
            "controls my finances",
            "made me sign",
            "forces me to pay",
        ),
        weight=0.9,
    ),
    WellbeingConcern.FALL_RISK: ConcernPattern(
        keywords=("fell", "fall", "tripped", "balance"),
        phrases=(
            "fell down",
            "keep falling",
            "losing my balance",
            "almost fell",
            "can't get up",
            "fell again",
        ),
        weight=0.7,
    ),
    WellbeingConcern.DISTRESS: ConcernPattern(
        keywords=("upset", "crying", "scared", "worried", "terrible"),
        phrases=(
            "so upset",
            "can't stop crying",
            "very scared",
            "terrible day",
            "awful",
            "overwhelming",
        ),
        weight=0.5,
    ),
}


@dataclass(frozen=True)
class ScamPattern:
    keywords: tuple[str, ...]
    phrases: tuple[str, ...]
    severity: RiskSeverity


SCAM_PATTERNS: dict[ScamType, ScamPattern] = {
    ScamType.MONEY_REQUEST: ScamPattern(
        keywords=("send money", "wire", "gift card", "western union"),
        phrases=("asked me to send money", "wants me to wire", "buy gift cards"),
        severity=RiskSeverity.HIGH,
    ),
    ScamType.GOVERNMENT_IMPERSONATION: ScamPattern(
        keywords=("irs", "social security", "arrest"),
        phrases=("irs is calling", "owe back taxes", "arrest warrant"),
        severity=RiskSeverity.HIGH,
    ),
    ScamType.TECH_SUPPORT: ScamPattern(
        keywords=("virus", "computer problem", "remote access"),
        phrases=("computer has virus", "give me remote access", "calling from microsoft"),
        severity=RiskSeverity.MODERATE,
    ),
    ScamType.ROMANCE: ScamPattern(
        keywords=("love you", "soulmate", "send money"),
        phrases=("fallen in love online", "never met in person", "needs money to visit"),
        severity=RiskSeverity.HIGH,
    ),
    ScamType.LOTTERY: ScamPattern(
        keywords=("winner", "lottery", "prize"),
        phrases=("you've won", "lottery winner", "claim your prize"),
        severity=RiskSeverity.MODERATE,
    ),
    ScamType.GRANDPARENT: ScamPattern(
        keywords=("grandchild", "jail", "accident"),
        phrases=("grandchild is in jail", "had an accident", "needs bail money"),
        severity=RiskSeverity.CRITICAL,
    ),
    ScamType.MEDICARE: ScamPattern(
        keywords=("medicare", "benefits"),
        phrases=("new medicare card", "verify your medicare"),
        severity=RiskSeverity.MODERATE,
    ),
    ScamType.INVESTMENT: ScamPattern(
        keywords=("investment", "guaranteed returns", "crypto"),
        phrases=("guaranteed returns", "once in a lifetime", "get rich quick"),
        severity=RiskSeverity.HIGH,
    ),
    ScamType.CHARITY: ScamPattern(
        keywords=("donation", "charity"),
        phrases=("donate now", "urgent charity"),
        severity=RiskSeverity.MODERATE,
    ),
    ScamType.PHISHING: ScamPattern(
        keywords=("password", "verify account"),
        phrases=("verify your account", "password expired", "confirm your identity"),
        severity=RiskSeverity.MODERATE,
    ),
}

SCAM_WARNING = "This looks like a potential scam. Please do not send money or share personal information."


@dataclass(frozen=True)
class DetectedConcern:
    type: WellbeingConcern
    severity: RiskSeverity
    evidence: tuple[str, ...]
    confidence: float
    is_recurring: bool


@dataclass(frozen=True)
class ScamAssessment:
    is_scam_detected: bool
    risk_level: RiskSeverity
    red_flags: tuple[str, ...] = ()
    suggested_response: str = ""
    confidence: float = 1.0
    scam_type: ScamType | None = None


@dataclass(frozen=True)
class RecommendedAction:
    type: ActionType
    priority: int
    description: str
    requires_consent: bool
    target: str | None = None


@dataclass(frozen=True)
class EscalationContact:
    name: str
    relationship: str
    priority: int
    escalation_level: RiskSeverity
    phone: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class WellbeingAssessment:
    overall_risk: RiskSeverity
    concerns: tuple[DetectedConcern, ...]
    requires_immediate_action: bool
    response_type: ResponseType
    suggested_response: str
    recommended_actions: tuple[RecommendedAction, ...]
    confidence: float
    timestamp: float
    risk_justification: str

    @classmethod
    def safe(cls) -> "WellbeingAssessment":
        return cls(
            overall_risk=RiskSeverity.NONE,
            concerns=(),
            requires_immediate_action=False,
            response_type=ResponseType.SUPPORTIVE,
            suggested_response="",
            recommended_actions=(),
            confidence=0.0,
            timestamp=time.time(),
            risk_justification="Safe",
        )


def score_to_severity(score: float) -> RiskSeverity:
    if score >= 0.9:
        return RiskSeverity.CRITICAL
    if score >= 0.7:
        return RiskSeverity.HIGH
    if score >= 0.5:
        return RiskSeverity.MODERATE
    if score >= 0.3:
        return RiskSeverity.LOW
    return RiskSeverity.NONE


class ConcernDetector:
    """
    Scores each wellbeing concern from keyword (+0.3) and phrase (+0.5) matches, scaled by the concern weight.

    The detected emotion adds a bonus: loneliness to LONELINESS, intense sadness to DEPRESSION.
    A concern is reported once it has evidence and its score reaches `min_confidence`.
    """

    def __init__(
        self, min_confidence: float, recurrence_threshold: int, concern_history: dict[WellbeingConcern, deque]
    ):
        self.min_confidence = min_confidence
        self.recurrence_threshold = recurrence_threshold
        self.concern_history = concern_history

    def detect(self, text: str, emotional_state: EmotionalState | None = None) -> list[DetectedConcern]:
        concerns = []
        lowered = text.lower()
        for concern, pattern in CONCERN_PATTERNS.items():
            evidence = []
            score = 0.0
            for keyword in pattern.keywords:
                if keyword in lowered:
                    evidence.append(keyword)
                    score += 0.3
            for phrase in pattern.phrases:
                if phrase in lowered:
                    evidence.append(phrase)
                    score += 0.5
            score *= pattern.weight

            if emotional_state is not None:
                if (
                    concern == WellbeingConcern.LONELINESS
                    and emotional_state.primary_emotion == EmotionCategory.LONELINESS
                ):
                    score += 0.3
                if (
                    concern == WellbeingConcern.DEPRESSION
                    and emotional_state.primary_emotion == EmotionCategory.SADNESS
                    and emotional_state.intensity >= EmotionIntensity.HIGH
                ):
                    score += 0.2

            if evidence and score >= self.min_confidence:
                history = self.concern_history.get(concern, ())
                concerns.append(
                    DetectedConcern(
                        type=concern,
                        severity=score_to_severity(score),
                        evidence=tuple(evidence),
                        confidence=min(1.0, score),
                        is_recurring=len(history) >= self.recurrence_threshold - 1,
                    )
                )
        return concerns


class ScamDetector:
    """Returns the first scam type whose patterns match, matching case-insensitively."""

    def detect(self, text: str) -> ScamAssessment:
        lowered = text.lower()
        for scam_type, pattern in SCAM_PATTERNS.items():
            red_flags = [keyword for keyword in pattern.keywords if keyword in lowered]
            red_flags += [phrase for phrase in pattern.phrases if phrase in lowered]
            if red_flags:
                return ScamAssessment(
                    is_scam_detected=True,
                    scam_type=scam_type,
                    risk_level=pattern.severity,
                    red_flags=tuple(red_flags),
                    suggested_response=SCAM_WARNING,
                    confidence=min(0.95, 0.6 + 0.1 * len(red_flags)),
                )
        return ScamAssessment(is_scam_detected=False, risk_level=RiskSeverity.NONE)


class SafetyResponseGenerator:
    def generate_response(self, concerns: list[DetectedConcern], response_type: ResponseType) -> str:
        if not concerns:
            return ""
        primary = concerns[0].type

        if response_type == ResponseType.EMERGENCY:
            if primary == WellbeingConcern.SUICIDAL_IDEATION:
                return (
                    "I'm really concerned about what you're sharing. Your life matters. Please call the National "
                    "Suicide Prevention Lifeline at 988, or 911 if in immediate danger."
                )
            if primary == WellbeingConcern.MEDICAL_EMERGENCY:
                return (
                    "This sounds like a medical emergency. Please call 911 right away. "
                    "Your safety is the most important thing."
                )

        if response_type == ResponseType.ESCALATE:
            if primary == WellbeingConcern.ABUSE:
                return (
                    "I'm very concerned about your safety. What you're describing is not okay. "
                    "Please consider calling the Elder Abuse Hotline at 1-800-677-1116. "
                    "Would you like to talk to someone who can help?"
                )
            return (
                "I'm concerned about what you're sharing. It might be helpful to talk to someone who can provide "
                "more support. Would you like to reach out to a trusted contact?"
            )

        if response_type == ResponseType.SUGGEST_CONTACT:
            return (
                "This sounds difficult. I think talking to someone you trust, like a doctor or family member, "
                "would be a good next step."
            )

        if response_type == ResponseType.COMFORT:
            if primary == WellbeingConcern.LONELINESS:
                return "I understand that feeling lonely is painful. I'm here, and our conversations matter to me."
            return "I hear you, and I'm here for you. You don't have to face this alone."

        return "I'm here for you."

    def build_actions(self, concerns: list[DetectedConcern], risk: RiskSeverity) -> list[RecommendedAction]:
        actions = [
            RecommendedAction(
                type=ActionType.LOG, priority=3, description="Log concern for monitoring", requires_consent=False
            )
        ]
        if risk == RiskSeverity.CRITICAL:
            actions.append(
                RecommendedAction(
                    type=ActionType.NOTIFY_CAREGIVER,
                    priority=1,
                    description="Notify primary caregiver immediately",
                    requires_consent=False,
                )
            )
        if risk == RiskSeverity.HIGH:
            actions.append(
                RecommendedAction(
                    type=ActionType.NOTIFY_FAMILY,
                    priority=2,
                    description="Notify family contact",
                    requires_consent=True,
                )
            )
        return actions


class WellbeingGuard:
    """
    Risk assessment for vulnerable users.

    Args:
        min_confidence (`float`, default `0.4`): Minimum score for a concern to be reported.
        recurrence_threshold (`int`, default `3`): Occurrences after which a concern counts as recurring.
        escalation_contacts (`list[EscalationContact]`, *optional*): Contacts, kept sorted by priority.
    """

    MAX_HISTORY_PER_CONCERN = 10
    MAX_ASSESSMENT_LOG = 100
    TRIMMED_ASSESSMENT_LOG = 50

    def __init__(
        self,
        min_confidence: float = 0.4,
        recurrence_threshold: int = 3,
        escalation_contacts: list[EscalationContact] | None = None,
    ):
        self.concern_history: dict[WellbeingConcern, deque] = {}
        self.assessment_log: list[WellbeingAssessment] = []
        self.escalation_contacts = sorted(escalation_contacts or [], key=lambda contact: contact.priority)
        self.concern_detector = ConcernDetector(min_confidence, recurrence_threshold, self.concern_history)
        self.scam_detector = ScamDetector()
        self.response_generator = SafetyResponseGenerator()

    def assess_wellbeing(self, text: str, emotional_state: EmotionalState | None = None) -> WellbeingAssessment:
        concerns = self.concern_detector.detect(text, emotional_state)
        # The concern that drives the response goes first.
        concerns.sort(
            key=lambda c: (c.type not in CRITICAL_CONCERNS, c.type not in EMERGENCY_CONCERNS, -c.severity.rank)
        )

        now = time.time()
        for concern in concerns:
            history = self.concern_history.setdefault(concern.type, deque(maxlen=self.MAX_HISTORY_PER_CONCERN))
            history.append(now)

        overall_risk = self._calculate_overall_risk(concerns)
        response_type = self._determine_response_type(overall_risk, concerns)
        assessment = WellbeingAssessment(
            overall_risk=overall_risk,
            concerns=tuple(concerns),
            requires_immediate_action=overall_risk == RiskSeverity.CRITICAL,
            response_type=response_type,
            suggested_response=self.response_generator.generate_response(concerns, response_type),
            recommended_actions=tuple(self.response_generator.build_actions(concerns, overall_risk)),
            confidence=sum(c.confidence for c in concerns) / len(concerns) if concerns else 0.0,
            timestamp=now,
            risk_justification=f"Detected: {', '.join(c.type.value for c in concerns)}" if concerns else "Safe",
        )
        if concerns:
            logger.info("Wellbeing risk %s: %s", overall_risk.value, assessment.risk_justification)

        self.assessment_log.append(assessment)
        if len(self.assessment_log) > self.MAX_ASSESSMENT_LOG:
            self.assessment_log = self.assessment_log[-self.TRIMMED_ASSESSMENT_LOG :]
        return assessment

    def detect_scam(self, text: str) -> ScamAssessment:
        return self.scam_detector.detect(text)

    @staticmethod
    def _calculate_overall_risk(concerns: list[DetectedConcern]) -> RiskSeverity:
        if not concerns:
            return RiskSeverity.NONE
        if any(concern.type in CRITICAL_CONCERNS for concern in concerns):
            return RiskSeverity.CRITICAL
        return max((concern.severity for concern in concerns), key=lambda severity: severity.rank)

    @staticmethod
    def _determine_response_type(risk: RiskSeverity, concerns: list[DetectedConcern]) -> ResponseType:
        if risk == RiskSeverity.CRITICAL:
            if any(concern.type in EMERGENCY_CONCERNS for concern in concerns):
                return ResponseType.EMERGENCY
            return ResponseType.ESCALATE
        if risk == RiskSeverity.HIGH:
            return ResponseType.SUGGEST_CONTACT
        if risk == RiskSeverity.MODERATE:
            return ResponseType.ENCOURAGE_HELP
        if risk == RiskSeverity.LOW:
            return ResponseType.COMFORT
        return ResponseType.SUPPORTIVE

    def add_escalation_contact(self, contact: EscalationContact):
        self.escalation_contacts.append(contact)
        self.escalation_contacts.sort(key=lambda c: c.priority)

    def get_concern_history(self) -> dict[WellbeingConcern, int]:
        return {concern: len(timestamps) for concern, timestamps in self.concern_history.items()}

    def clear_history(self):
        self.concern_history.clear()
        self.assessment_log = []
