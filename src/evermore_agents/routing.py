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
from dataclasses import dataclass
from enum import Enum
from logging import getLogger
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


__all__ = [
    "DEFAULT_MODELS",
    "ModelProfile",
    "ModelRouter",
    "ModelSpec",
    "ModelTier",
    "RoutingBudget",
    "RoutingDecision",
    "TaskComplexity",
]

logger = getLogger(__name__)


class TaskComplexity(str, Enum):
    CLASSIFICATION = "classification"
    EXTRACTION = "extraction"
    SUMMARIZATION = "summarization"
    REASONING = "reasoning"
    CREATIVE = "creative"


class ModelTier(str, Enum):
    ECONOMY = "economy"
    STANDARD = "standard"
    PREMIUM = "premium"


class ModelProfile(str, Enum):
    COST_OPTIMIZED = "cost_optimized"
    BALANCED = "balanced"
    QUALITY_OPTIMIZED = "quality_optimized"


class ModelSpec(BaseModel):
    """A routable model. Costs are in cents per thousand tokens."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    provider: str
    tier: ModelTier
    cost_per_1k_input_tokens: float = Field(alias="costPer1KInputTokens", ge=0)
    cost_per_1k_output_tokens: float = Field(alias="costPer1KOutputTokens", ge=0)
    max_context_tokens: int = 8192
    max_output_tokens: int = 1024
    latency_p50_ms: float = 0.0
    latency_p95_ms: float = 0.0
    capabilities: tuple[TaskComplexity, ...] = ()
    quality_scores: dict[TaskComplexity, float] = Field(default_factory=dict)
    available: bool = True

    def quality_for(self, complexity: TaskComplexity) -> float:
        return self.quality_scores.get(complexity, 0.0)


@dataclass(frozen=True)
class RoutingBudget:
    total_cost_remaining: float = 100.0
    max_request_cost_cents: float = 5.0
    preferred_tier: ModelTier | None = None
    expected_input_tokens: int = 1000
    expected_output_tokens: int = 500


@dataclass(frozen=True)
class RoutingDecision:
    model_id: str
    model: ModelSpec
    complexity: TaskComplexity
    reason: str
    estimated_cost_cents: float


ALL_COMPLEXITIES = tuple(TaskComplexity)

DEFAULT_MODELS: tuple[ModelSpec, ...] = (
    ModelSpec(
        id="economy-small",
        name="Economy Small",
        provider="default",
        tier=ModelTier.ECONOMY,
        cost_per_1k_input_tokens=0.015,
        cost_per_1k_output_tokens=0.06,
        max_context_tokens=128000,
        max_output_tokens=4096,
        latency_p50_ms=400,
        latency_p95_ms=1200,
        capabilities=(TaskComplexity.CLASSIFICATION, TaskComplexity.EXTRACTION, TaskComplexity.SUMMARIZATION),
        quality_scores={
            TaskComplexity.CLASSIFICATION: 0.85,
            TaskComplexity.EXTRACTION: 0.8,
            TaskComplexity.SUMMARIZATION: 0.75,
        },
    ),
    ModelSpec(
        id="standard-medium",
        name="Standard Medium",
        provider="default",
        tier=ModelTier.STANDARD,
        cost_per_1k_input_tokens=0.25,
        cost_per_1k_output_tokens=1.0,
        max_context_tokens=128000,
        max_output_tokens=8192,
        latency_p50_ms=900,
        latency_p95_ms=2500,
        capabilities=ALL_COMPLEXITIES,
        quality_scores={
            TaskComplexity.CLASSIFICATION: 0.9,
            TaskComplexity.EXTRACTION: 0.88,
            TaskComplexity.SUMMARIZATION: 0.86,
            TaskComplexity.REASONING: 0.82,
            TaskComplexity.CREATIVE: 0.84,
        },
    ),
    ModelSpec(
        id="premium-large",
        name="Premium Large",
        provider="default",
        tier=ModelTier.PREMIUM,
        cost_per_1k_input_tokens=1.5,
        cost_per_1k_output_tokens=6.0,
        max_context_tokens=200000,
        max_output_tokens=8192,
        latency_p50_ms=2000,
        latency_p95_ms=6000,
        capabilities=ALL_COMPLEXITIES,
        quality_scores={
            TaskComplexity.CLASSIFICATION: 0.93,
            TaskComplexity.EXTRACTION: 0.92,
            TaskComplexity.SUMMARIZATION: 0.92,
            TaskComplexity.REASONING: 0.95,
            TaskComplexity.CREATIVE: 0.95,
        },
    ),
)

COMPLEXITY_KEYWORDS = [
    (TaskComplexity.CLASSIFICATION, ("classify", "intent", "categorize", "which category", "yes or no")),
    (TaskComplexity.EXTRACTION, ("extract", "list the", "find all", "pull out")),
    (TaskComplexity.SUMMARIZATION, ("summarize", "summary", "provide final answer", "tl;dr")),
    (TaskComplexity.CREATIVE, ("write a story", "chapter", "poem", "narrative", "creative")),
]

SHORT_PROMPT_CHARS = 200


class ModelRouter:
    """
    Chooses a model for a task given its complexity and the remaining cost budget.

    Read-only once constructed, so a single router can serve concurrent runs.

    Args:
        models (`list[ModelSpec]`, *optional*): Initial registry. Defaults to `DEFAULT_MODELS`.
        profile (`ModelProfile`, default `ModelProfile.BALANCED`): Selection strategy among affordable candidates.
    """

    def __init__(
        self,
        models: list[ModelSpec] | tuple[ModelSpec, ...] | None = None,
        profile: ModelProfile = ModelProfile.BALANCED,
    ):
        self.profile = profile
        self._models: dict[str, ModelSpec] = {}
        for model in DEFAULT_MODELS if models is None else models:
            self.register_model(model)

    @property
    def models(self) -> list[ModelSpec]:
        return list(self._models.values())

    def register_model(self, model: ModelSpec):
        self._models[model.id] = model

    def get_model(self, model_id: str) -> ModelSpec | None:
        return self._models.get(model_id)

    def load_registry(self, path: str | Path) -> int:
        """Merges models from a JSON list file. A missing or malformed file leaves the registry unchanged."""
        path = Path(path)
        if not path.exists():
            logger.warning("Model registry %s not found, keeping %d models", path, len(self._models))
            return 0
        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(entries, list):
                raise ValueError("registry must be a JSON list")
            loaded = [ModelSpec.model_validate(entry) for entry in entries]
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Could not load model registry %s: %s", path, e)
            return 0
        for model in loaded:
            self.register_model(model)
        logger.info("Loaded %d models from %s", len(loaded), path)
        return len(loaded)

    def analyze_complexity(self, prompt: str) -> TaskComplexity:
        lowered = prompt.lower()
        for complexity, keywords in COMPLEXITY_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return complexity
        if len(prompt) < SHORT_PROMPT_CHARS:
            return TaskComplexity.CLASSIFICATION
        return TaskComplexity.REASONING

    @staticmethod
    def estimate_request_cost(model: ModelSpec, input_tokens: int, output_tokens: int) -> float:
        return (
            model.cost_per_1k_input_tokens * (input_tokens / 1000)
            + model.cost_per_1k_output_tokens * (output_tokens / 1000)
        )

    def route(self, complexity: TaskComplexity, budget: RoutingBudget | None = None) -> RoutingDecision:
        budget = budget or RoutingBudget()
        available = [model for model in self._models.values() if model.available]
        if not available:
            raise ValueError("No available model to route to.")

        def cost_of(model: ModelSpec) -> float:
            return self.estimate_request_cost(model, budget.expected_input_tokens, budget.expected_output_tokens)

        cost_limit = min(budget.max_request_cost_cents, budget.total_cost_remaining)
        capable = [model for model in available if complexity in model.capabilities]
        affordable = [model for model in capable if cost_of(model) <= cost_limit]

        if not affordable:
            cheapest = min(available, key=cost_of)
            return RoutingDecision(
                model_id=cheapest.id,
                model=cheapest,
                complexity=complexity,
                reason="fallback",
                estimated_cost_cents=cost_of(cheapest),
            )

        if budget.preferred_tier is not None:
            in_tier = [model for model in affordable if model.tier == budget.preferred_tier]
            if in_tier:
                chosen = max(in_tier, key=lambda m: (m.quality_for(complexity), -cost_of(m)))
                return RoutingDecision(
                    model_id=chosen.id,
                    model=chosen,
                    complexity=complexity,
                    reason="preferred_tier",
                    estimated_cost_cents=cost_of(chosen),
                )

        if self.profile == ModelProfile.COST_OPTIMIZED:
            chosen = min(affordable, key=lambda m: (cost_of(m), -m.quality_for(complexity)))
        elif self.profile == ModelProfile.QUALITY_OPTIMIZED:
            chosen = max(affordable, key=lambda m: (m.quality_for(complexity), -cost_of(m)))
        else:
            chosen = max(affordable, key=lambda m: (m.quality_for(complexity) / (1.0 + cost_of(m)), -cost_of(m)))
        return RoutingDecision(
            model_id=chosen.id,
            model=chosen,
            complexity=complexity,
            reason=self.profile.value,
            estimated_cost_cents=cost_of(chosen),
        )
