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
import hashlib
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from logging import getLogger

from evermore_agents.utils import TokenEstimator, estimate_tokens


__all__ = ["ContextBudgetManager", "ContextSource", "ContextSourceType", "OptimizedContext", "StablePrefixTracker"]

logger = getLogger(__name__)

SOURCE_SEPARATOR = "\n\n"


class ContextSourceType(str, Enum):
    SYSTEM_PROMPT = "system_prompt"
    USER_INPUT = "user_input"
    MEMORIES = "memories"
    CONVERSATION_HISTORY = "conversation_history"
    TOOL_OUTPUT = "tool_output"


@dataclass(frozen=True)
class ContextSource:
    id: str
    type: ContextSourceType
    content: str
    priority: int
    required: bool = False

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class OptimizedContext:
    included_sources: tuple[ContextSource, ...]
    excluded_sources: tuple[ContextSource, ...]
    content: str
    total_tokens: int
    over_budget: bool


class ContextBudgetManager:
    """
    Assembles one prompt body out of prioritized sources under a token ceiling.

    Sources are ordered by descending priority, ties keeping insertion order. Required sources are
    always included, even when they alone exceed the budget. Optional sources are added greedily
    while the running estimate stays within the budget.

    Args:
        max_tokens (`int`): Token budget for the assembled body.
        token_estimator (`TokenEstimator`, default `estimate_tokens`): Maps text to an approximate token count.
    """

    def __init__(self, max_tokens: int, token_estimator: TokenEstimator = estimate_tokens):
        self.max_tokens = max_tokens
        self.token_estimator = token_estimator
        self._sources: dict[str, ContextSource] = {}

    @property
    def sources(self) -> list[ContextSource]:
        return list(self._sources.values())

    def add_source(self, source: ContextSource):
        # Replacing keeps the original insertion slot.
        self._sources[source.id] = source

    def remove_source(self, source_id: str) -> bool:
        return self._sources.pop(source_id, None) is not None

    def optimize(self) -> OptimizedContext:
        ordered = sorted(enumerate(self._sources.values()), key=lambda item: (-item[1].priority, item[0]))
        included: list[ContextSource] = []
        excluded: list[ContextSource] = []
        running_tokens = 0
        for _, source in ordered:
            source_tokens = self.token_estimator(source.content)
            if source.required or running_tokens + source_tokens <= self.max_tokens:
                included.append(source)
                running_tokens += source_tokens
            else:
                excluded.append(source)

        if running_tokens > self.max_tokens:
            logger.warning(
                "Required context uses %d tokens, above the %d token budget", running_tokens, self.max_tokens
            )
        return OptimizedContext(
            included_sources=tuple(included),
            excluded_sources=tuple(excluded),
            content=SOURCE_SEPARATOR.join(source.content for source in included),
            total_tokens=running_tokens,
            over_budget=running_tokens > self.max_tokens,
        )


@dataclass(frozen=True)
class StablePrefix:
    stable_index: int
    stable_hash: str
    total_sources: int


class StablePrefixTracker:
    """
    Remembers, per key (usually the session id), the source fingerprints of the previous call and reports
    how many leading sources are unchanged. Only a caching hint for the model provider.

    At most `max_keys` keys are remembered; the least recently used one is forgotten first.
    """

    def __init__(self, max_keys: int = 1024):
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1.")
        self.max_keys = max_keys
        self._previous: OrderedDict[str, list[tuple[str, str]]] = OrderedDict()
        self._lock = threading.Lock()

    def identify(self, key: str, sources: list[ContextSource] | tuple[ContextSource, ...]) -> StablePrefix:
        fingerprints = [(source.id, source.content_hash) for source in sources]
        with self._lock:
            previous = self._previous.pop(key, [])
            self._previous[key] = fingerprints
            while len(self._previous) > self.max_keys:
                self._previous.popitem(last=False)

        stable_index = 0
        for current, before in zip(fingerprints, previous):
            if current != before:
                break
            stable_index += 1

        digest = hashlib.sha256()
        for source_id, content_hash in fingerprints[:stable_index]:
            digest.update(source_id.encode("utf-8"))
            digest.update(content_hash.encode("utf-8"))
        return StablePrefix(stable_index=stable_index, stable_hash=digest.hexdigest(), total_sources=len(fingerprints))
