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
"""Keyword-based emotion detection and the response shaping passes used for senior users."""

import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum


__all__ = [
    "CognitiveAdapter",
    "EmotionCategory",
    "EmotionIntensity",
    "EmotionalState",
    "EmpathyEngine",
    "ExplanationCertainty",
    "ExplanationEngine",
]


class EmotionCategory(str, Enum):
    JOY = "JOY"
    SADNESS = "SADNESS"
    LONELINESS = "LONELINESS"
    ANXIETY = "ANXIETY"
    FEAR = "FEAR"
    ANGER = "ANGER"
    FRUSTRATION = "FRUSTRATION"
    CONFUSION = "CONFUSION"
    NOSTALGIA = "NOSTALGIA"
    GRATITUDE = "GRATITUDE"
    NEUTRAL = "NEUTRAL"


class EmotionIntensity(IntEnum):
    LOW = 1
    MODERATE = 2
    HIGH = 3


@dataclass(frozen=True)
class EmotionalState:
    primary_emotion: EmotionCategory
    intensity: EmotionIntensity
    confidence: float
    indicators: tuple[str, ...] = ()

    @classmethod
    def neutral(cls) -> "EmotionalState":
        return cls(primary_emotion=EmotionCategory.NEUTRAL, intensity=EmotionIntensity.LOW, confidence=0.5)


EMOTION_LEXICON: dict[EmotionCategory, tuple[str, ...]] = {
    EmotionCategory.JOY: ("happy", "glad", "wonderful", "delighted", "excited", "great news", "joy", "love it"),
    EmotionCategory.SADNESS: ("sad", "unhappy", "miss her", "miss him", "grief", "heartbroken", "crying", "tears"),
    EmotionCategory.LONELINESS: ("lonely", "alone", "isolated", "no one", "nobody", "by myself"),
    EmotionCategory.ANXIETY: ("worried", "anxious", "nervous", "uneasy", "stressed", "concerned"),
    EmotionCategory.FEAR: ("scared", "afraid", "frightened", "terrified", "fear"),
    EmotionCategory.ANGER: ("angry", "furious", "mad at", "outraged", "hate"),
    EmotionCategory.FRUSTRATION: ("frustrated", "annoyed", "fed up", "doesn't work", "can't figure"),
    EmotionCategory.CONFUSION: ("confused", "don't understand", "not sure what", "what do you mean", "lost track"),
    EmotionCategory.NOSTALGIA: ("remember when", "back in", "used to", "those days", "when i was young", "growing up"),
    EmotionCategory.GRATITUDE: ("thank you", "thanks", "grateful", "appreciate"),
}

INTENSIFIERS = ("very", "so ", "really", "extremely", "terribly", "incredibly", "completely")

EMPATHY_OPENERS: dict[EmotionCategory, str] = {
    EmotionCategory.JOY: "That's wonderful to hear!",
    EmotionCategory.SADNESS: "I'm sorry you're going through this.",
    EmotionCategory.LONELINESS: "I'm really glad you're talking with me.",
    EmotionCategory.ANXIETY: "It's understandable to feel worried.",
    EmotionCategory.FEAR: "It's understandable to feel scared, and you're not alone in this.",
    EmotionCategory.ANGER: "I can hear how upsetting this is.",
    EmotionCategory.FRUSTRATION: "That sounds really frustrating.",
    EmotionCategory.CONFUSION: "Let's take this one step at a time.",
    EmotionCategory.NOSTALGIA: "What a lovely memory to share.",
    EmotionCategory.GRATITUDE: "You're very welcome.",
}


class EmpathyEngine:
    """Detects the dominant emotion in a message and softens responses accordingly."""

    def detect_emotion(self, text: str) -> EmotionalState:
        lowered = text.lower()
        best: EmotionCategory | None = None
        best_hits: list[str] = []
        for emotion, cues in EMOTION_LEXICON.items():
            hits = [cue for cue in cues if cue in lowered]
            if len(hits) > len(best_hits):
                best, best_hits = emotion, hits

        if best is None:
            return EmotionalState.neutral()

        intensified = any(word in lowered for word in INTENSIFIERS) or "!" in text
        if len(best_hits) >= 3 or (len(best_hits) >= 2 and intensified):
            intensity = EmotionIntensity.HIGH
        elif len(best_hits) >= 2 or intensified:
            intensity = EmotionIntensity.MODERATE
        else:
            intensity = EmotionIntensity.LOW
        return EmotionalState(
            primary_emotion=best,
            intensity=intensity,
            confidence=min(1.0, 0.4 + 0.2 * len(best_hits)),
            indicators=tuple(best_hits),
        )

    def adapt_response(self, response: str, state: EmotionalState) -> str:
        if state.primary_emotion == EmotionCategory.NEUTRAL or state.intensity < EmotionIntensity.MODERATE:
            return response
        opener = EMPATHY_OPENERS.get(state.primary_emotion)
        if not opener or response.startswith(opener):
            return response
        return f"{opener} {response}"


class ExplanationCertainty(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class Explanation:
    text: str


@dataclass(frozen=True)
class ExplainableResponse:
    text: str
    certainty: ExplanationCertainty
    sources: tuple[str, ...]
    should_offer_explanation: bool
    explanations: tuple[Explanation, ...] = ()


class ExplanationEngine:
    def create_explainable_response(
        self, text: str, sources: list[str], certainty: ExplanationCertainty
    ) -> ExplainableResponse:
        if certainty == ExplanationCertainty.HIGH:
            return ExplainableResponse(
                text=text, certainty=certainty, sources=tuple(sources), should_offer_explanation=False
            )

        explanations = []
        if sources:
            explanations.append(Explanation(f"I based this on {', '.join(sources)}."))
        if certainty == ExplanationCertainty.LOW:
            explanations.append(
                Explanation("I'm not completely sure about this, so please double-check anything important.")
            )
        else:
            explanations.append(Explanation("I may have missed something, so feel free to ask me to look again."))
        return ExplainableResponse(
            text=text,
            certainty=certainty,
            sources=tuple(sources),
            should_offer_explanation=True,
            explanations=tuple(explanations),
        )


PLAIN_WORDS = {
    "utilize": "use",
    "approximately": "about",
    "subsequently": "later",
    "commence": "start",
    "terminate": "end",
    "assistance": "help",
    "purchase": "buy",
    "sufficient": "enough",
    "additional": "more",
    "prior to": "before",
    "in order to": "to",
    "regarding": "about",
    "obtain": "get",
    "facilitate": "help",
    "numerous": "many",
}

SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class CognitiveAdaptation:
    text: str
    changes: tuple[str, ...] = field(default_factory=tuple)


class CognitiveAdapter:
    """Lowers reading load: plain words, tidy whitespace, and short paragraphs."""

    def __init__(self, max_sentences_per_paragraph: int = 3):
        self.max_sentences_per_paragraph = max_sentences_per_paragraph
        self._patterns = [
            (re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE), word, plain)
            for word, plain in PLAIN_WORDS.items()
        ]

    @staticmethod
    def _match_case(original: str, replacement: str) -> str:
        return replacement[0].upper() + replacement[1:] if original[0].isupper() else replacement

    def adapt_response(self, text: str) -> CognitiveAdaptation:
        changes = []
        for pattern, word, plain in self._patterns:
            text, count = pattern.subn(lambda match, plain=plain: self._match_case(match.group(0), plain), text)
            if count:
                changes.append(f"simplified '{word}'")

        paragraphs = []
        for paragraph in re.split(r"\n\s*\n", text.strip()):
            paragraph = re.sub(r"[ \t]+", " ", paragraph).strip()
            sentences = SENTENCE_SPLIT.split(paragraph)
            if len(sentences) > self.max_sentences_per_paragraph:
                changes.append("split long paragraph")
                step = self.max_sentences_per_paragraph
                paragraphs.extend(" ".join(sentences[i : i + step]) for i in range(0, len(sentences), step))
            elif paragraph:
                paragraphs.append(paragraph)
        return CognitiveAdaptation(text="\n\n".join(paragraphs), changes=tuple(changes))
