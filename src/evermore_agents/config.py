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
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .routing import ModelProfile
from .tools import ToolPermission


__all__ = ["AgentConfig", "ENV_PREFIX"]

ENV_PREFIX = "EVERMORE_"


class AgentConfig(BaseModel):
    """
    Limits and policies of a single agent.

    Args:
        max_steps (`int`): Maximum number of recorded execution steps.
        timeout_ms (`int`): Wall-clock budget of one run.
        token_budget (`int`): Tokens a run may spend; also the context window budget.
        cost_budget_cents (`float`): Cost a run may spend.
        max_replan_attempts (`int`): Replans allowed before the run halts.
        skip_intent_for_simple (`bool`): Classify short goals with a cheap heuristic instead of the LLM.
        simple_query_threshold (`int`): Goal length (chars) under which a goal is "short".
        long_goal_threshold (`int`): Goal length (chars) over which the task is decomposed.
        intent_confidence_threshold (`float`): Intents below this confidence are treated as unknown.
        enable_companion_features (`bool`): Apply empathy, explanation and simplification to answers.
        tool_permissions (`dict[str, ToolPermission]`): Per-tool overrides of the default permission.
    """

    model_config = ConfigDict(validate_assignment=True)

    max_steps: int = Field(default=5, ge=1)
    timeout_ms: int = Field(default=30000, gt=0)
    token_budget: int = Field(default=8000, gt=0)
    cost_budget_cents: float = Field(default=20, ge=0)
    max_replan_attempts: int = Field(default=2, ge=0)
    skip_intent_for_simple: bool = True
    simple_query_threshold: int = Field(default=50, ge=0)
    long_goal_threshold: int = Field(default=200, ge=0)
    intent_confidence_threshold: float = Field(default=0.3, ge=0, le=1)
    enable_companion_features: bool = True
    user_id: str = "default-user"
    model_profile: ModelProfile = ModelProfile.BALANCED
    max_thought_length: int = Field(default=1000, gt=0)
    max_request_cost_cents: float = Field(default=5, ge=0)
    recent_steps_in_prompt: int = Field(default=5, ge=0)
    memory_retrieval_limit: int = Field(default=5, ge=0)
    system_prompt: str | None = None
    tool_permissions: dict[str, ToolPermission] = Field(default_factory=dict)

    @field_validator("tool_permissions", mode="before")
    @classmethod
    def _parse_permissions(cls, value):
        if isinstance(value, str):
            return json.loads(value) if value.strip() else {}
        return value

    @classmethod
    def from_env(cls, dotenv_path: str | None = None, **overrides) -> "AgentConfig":
        """
        Builds a config from `EVERMORE_<FIELD>` environment variables, after loading a `.env` file if present.
        Keyword overrides take precedence over the environment.
        """
        load_dotenv(dotenv_path)
        values = {}
        for name in cls.model_fields:
            env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None:
                values[name] = env_value
        values.update(overrides)
        return cls(**values)
