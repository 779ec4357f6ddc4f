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
import importlib.resources
import json
import threading
from collections import OrderedDict
from collections.abc import Sequence
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any

import yaml
from rich.text import Text

from .background import BackgroundTasks
from .companion import CompanionSystem
from .config import AgentConfig
from .context import ContextBudgetManager, ContextSource, ContextSourceType, StablePrefixTracker
from .memory import AgentContext, AgentStep, ProcessedObservation
from .monitoring import YELLOW_HEX, AgentLogger, LogLevel, LoopMonitor
from .phases import PhaseHandlers, RunSession
from .ports import LLMPort, MemoryRecord, MemoryStorePort, MemoryType, SignalCollectorPort, create_interaction_signal
from .routing import ModelRouter
from .state import AgentEvent, AgentStateMachine, HaltReason, IntentOutput
from .tools import Tool, ToolRegistry
from .tracing import AgentTracer, TraceSummary
from .utils import TokenEstimator, estimate_tokens, populate_template


__all__ = ["CompanionReActAgent", "RunResult"]

logger = getLogger(__name__)

DEFAULT_ANSWER = "I couldn't complete your request."
FATAL_ERROR_ANSWER = "I'm sorry, I encountered an error processing your request."

PROMPT_TEMPLATE_KEYS = ("system_prompt", "intent_recognition", "task_decomposition", "execution", "synthesis")

MAX_CONTEXT_MEMORIES = 5
MAX_HISTORY_TURNS = 3
MAX_TRACKED_USERS = 256


@dataclass
class RunResult:
    """Holds the outcome of a run: the answer plus its accounting.

    Args:
        final_answer (`str`): Natural-language answer, never empty.
        steps (`list[AgentStep]`): Execution steps in order.
        success (`bool`): True iff the run ended with `HaltReason.SUCCESS`.
        halt_reason (`HaltReason | None`): Why the run stopped.
        total_tokens (`int`): Tokens spent by the run.
        total_cost_cents (`float`): Cost of the run.
        duration_ms (`float`): Wall-clock duration.
        trace_id (`str`): Id of the run trace.
        observations (`list[ProcessedObservation]`): One per step carrying an observation.
        trace_summary (`TraceSummary | None`): Final summary of the trace.
    """

    final_answer: str
    steps: list[AgentStep]
    success: bool
    halt_reason: HaltReason | None
    total_tokens: int
    total_cost_cents: float
    duration_ms: float
    trace_id: str
    observations: list[ProcessedObservation] = field(default_factory=list)
    trace_summary: TraceSummary | None = None

    def dict(self):
        return {
            "final_answer": self.final_answer,
            "steps": [step.dict() for step in self.steps],
            "success": self.success,
            "halt_reason": self.halt_reason.value if self.halt_reason else None,
            "total_tokens": self.total_tokens,
            "total_cost_cents": self.total_cost_cents,
            "duration_ms": self.duration_ms,
            "trace_id": self.trace_id,
            "observations": [
                {"step_id": o.step_id, "type": o.type, "insight": o.insight, "invalidates_plan": o.invalidates_plan}
                for o in self.observations
            ],
        }


class CompanionReActAgent:
    """
    ReAct agent for a senior-facing companion: a state machine drives intent recognition, decomposition,
    planning, tool execution, observation, reflection, replanning and synthesis under step, time, token and
    cost ceilings, behind a safety gate that can answer directly.

    The tool registry and model router may be shared between agents and concurrent runs. Unless a companion
    system is passed in, every user gets their own, so concern history and session topics never mix users.
    Everything else (state machine, monitor, tracer, context manager) is built fresh for every run.

    Args:
        llm (`LLMPort`): Text generation backend.
        model_router (`ModelRouter`, *optional*): Chooses the model for every LLM call.
            Built with `config.model_profile` if omitted.
        tools (`Sequence[Tool]`, default `()`): Tools available in addition to the registry.
        config (`AgentConfig`, *optional*): Limits and policies. Defaults to `AgentConfig()`.
        memory_store (`MemoryStorePort`, *optional*): Long-term memory; absence or failure means no memories.
        tool_registry (`ToolRegistry`, *optional*): Shared registry, looked up before `tools`.
        signal_collector (`SignalCollectorPort`, *optional*): Receives one interaction signal per run.
        companion (`CompanionSystem`, *optional*): Safety gate and answer shaping, shared by every user.
            If omitted, one is built per user id.
        prompt_templates (`dict[str, str]`, *optional*): Replaces the packaged prompt templates.
        logger (`AgentLogger`, *optional*): Console logger. Built from `verbosity_level` if omitted.
        verbosity_level (`LogLevel`, default `LogLevel.INFO`): Level of the default console logger.
        token_estimator (`TokenEstimator`, default `estimate_tokens`): Maps text to an approximate token count.
    """

    def __init__(
        self,
        llm: LLMPort,
        model_router: ModelRouter | None = None,
        tools: Sequence[Tool] = (),
        config: AgentConfig | None = None,
        memory_store: MemoryStorePort | None = None,
        tool_registry: ToolRegistry | None = None,
        signal_collector: SignalCollectorPort | None = None,
        companion: CompanionSystem | None = None,
        prompt_templates: dict[str, str] | None = None,
        logger: AgentLogger | None = None,
        verbosity_level: LogLevel = LogLevel.INFO,
        token_estimator: TokenEstimator = estimate_tokens,
    ):
        self.llm = llm
        self.config = config or AgentConfig()
        self.model_router = model_router or ModelRouter(profile=self.config.model_profile)
        self.memory_store = memory_store
        self.tool_registry = tool_registry
        self.tools = ToolRegistry(list(tools))
        self.signal_collector = signal_collector
        self._shared_companion = companion
        self._companions: OrderedDict[str, CompanionSystem] = OrderedDict()
        self._companions_lock = threading.Lock()
        self.companion = self.companion_for(self.config.user_id)
        self.logger = logger or AgentLogger(level=verbosity_level)
        self.token_estimator = token_estimator

        self.prompt_templates = prompt_templates or yaml.safe_load(
            importlib.resources.files("evermore_agents.prompts").joinpath("react_agent.yaml").read_text()
        )
        missing_keys = set(PROMPT_TEMPLATE_KEYS) - set(self.prompt_templates.keys())
        assert not missing_keys, (
            f"Some prompt templates are missing from your custom `prompt_templates`: {missing_keys}"
        )

        self.phase_handlers = PhaseHandlers(
            llm=llm,
            model_router=self.model_router,
            config=self.config,
            prompt_templates=self.prompt_templates,
            tool_registry=tool_registry,
            direct_tools=self.tools,
            logger=self.logger,
            token_estimator=token_estimator,
        )
        self.background_tasks = BackgroundTasks()
        self.stable_prefix_tracker = StablePrefixTracker()
        self._sessions: dict[int, RunSession] = {}

    def companion_for(self, user_id: str) -> CompanionSystem:
        """Returns the companion system of a user. The least recently seen users are forgotten first."""
        if self._shared_companion is not None:
            return self._shared_companion
        with self._companions_lock:
            companion = self._companions.pop(user_id, None) or CompanionSystem(user_id)
            self._companions[user_id] = companion
            while len(self._companions) > MAX_TRACKED_USERS:
                self._companions.popitem(last=False)
        return companion

    @property
    def system_prompt(self) -> str:
        if self.config.system_prompt:
            return self.config.system_prompt
        return populate_template(self.prompt_templates["system_prompt"], variables={})

    @system_prompt.setter
    def system_prompt(self, value: str):
        raise AttributeError(
            "The 'system_prompt' property is read-only. "
            "Use 'self.config.system_prompt' or 'self.prompt_templates[\"system_prompt\"]' instead."
        )

    def interrupt(self, session_id: str | None = None):
        """Asks active runs to stop at their next iteration, with `HaltReason.INTERRUPTED`."""
        self.halt(HaltReason.INTERRUPTED, session_id=session_id)

    def halt(self, reason: HaltReason = HaltReason.INTERRUPTED, session_id: str | None = None) -> int:
        """
        Asks active runs to stop at their next iteration. An in-flight LLM or tool call is not cancelled.

        Args:
            reason (`HaltReason`, default `HaltReason.INTERRUPTED`): Reason recorded on the halted runs.
            session_id (`str`, *optional*): Only halt runs of this session. Every active run if omitted.

        Returns:
            `int`: Number of runs that were asked to stop.
        """
        requested = 0
        for session in list(self._sessions.values()):
            if session_id is not None and session.agent_context.session_id != session_id:
                continue
            if session.halt_request is None:
                session.halt_request = reason
                requested += 1
        return requested

    def _new_session(self, goal: str, context: AgentContext) -> RunSession:
        tracer = AgentTracer(session_id=context.session_id, user_id=context.user_id, goal=goal)
        state_machine = AgentStateMachine(
            goal=goal,
            agent_context=context,
            max_steps=self.config.max_steps,
            timeout_ms=self.config.timeout_ms,
            token_budget=self.config.token_budget,
            cost_budget_cents=self.config.cost_budget_cents,
            on_transition=tracer.log_transition,
        )
        monitor = LoopMonitor(
            max_steps=self.config.max_steps,
            max_time_ms=self.config.timeout_ms,
            max_tokens=self.config.token_budget,
            max_cost_cents=self.config.cost_budget_cents,
            max_replan_attempts=self.config.max_replan_attempts,
        )
        return RunSession(
            goal=goal,
            agent_context=context,
            state_machine=state_machine,
            monitor=monitor,
            tracer=tracer,
            context_manager=ContextBudgetManager(self.config.token_budget, self.token_estimator),
            system_prompt=self.system_prompt,
            companion=self.companion_for(context.user_id or self.config.user_id),
        )

    def _setup_context(self, session: RunSession):
        context_manager, context = session.context_manager, session.agent_context
        context_manager.add_source(
            ContextSource(
                id="system-prompt",
                type=ContextSourceType.SYSTEM_PROMPT,
                content=session.system_prompt,
                priority=100,
                required=True,
            )
        )
        context_manager.add_source(
            ContextSource(
                id="user-goal",
                type=ContextSourceType.USER_INPUT,
                content=f"GOAL: {session.goal}",
                priority=90,
                required=True,
            )
        )
        if context.memories:
            memories = "\n".join(memory.text for memory in context.memories[:MAX_CONTEXT_MEMORIES])
            context_manager.add_source(
                ContextSource(
                    id="memories",
                    type=ContextSourceType.MEMORIES,
                    content=f"RELEVANT MEMORIES:\n{memories}",
                    priority=60,
                )
            )
        if context.recent_history:
            history = json.dumps(list(context.recent_history[-MAX_HISTORY_TURNS:]), ensure_ascii=False, default=str)
            context_manager.add_source(
                ContextSource(
                    id="conversation-history",
                    type=ContextSourceType.CONVERSATION_HISTORY,
                    content=f"RECENT CONVERSATION:\n{history}",
                    priority=50,
                )
            )

    async def _retrieve_memories(self, session: RunSession):
        if self.memory_store is None or self.config.memory_retrieval_limit == 0:
            return
        try:
            records = await self.memory_store.query(session.goal, limit=self.config.memory_retrieval_limit)
        except Exception as e:
            logger.warning("Memory retrieval failed, continuing without long-term memories: %s", e)
            session.tracer.record_event("long_term_memory_failed", {"error": str(e)})
            return
        if not records:
            return
        memory_context = "\n".join(f"[Memory ({_memory_type(record)})]: {record.content}" for record in records)
        session.context_manager.add_source(
            ContextSource(
                id="long-term-memories",
                type=ContextSourceType.MEMORIES,
                content=f"RELEVANT MEMORIES:\n{memory_context}",
                priority=55,
            )
        )
        session.tracer.record_event("long_term_memory_retrieved", {"count": len(records)})

    async def run(self, goal: str, context: AgentContext) -> RunResult:
        """
        Runs the agent on a goal and always returns a well-formed result. Internal failures end the run with
        `HaltReason.ERROR` and a generic apology instead of raising.

        Args:
            goal (`str`): What the user said or asked.
            context (`AgentContext`): Caller-supplied, read-only context of the turn.
        """
        session = self._new_session(goal, context)
        sm, monitor, tracer = session.state_machine, session.monitor, session.tracer
        run_key = id(session)
        self._sessions[run_key] = session
        self.logger.log_task(
            content=goal.strip(),
            subtitle=f"{type(self.llm).__name__} - {self.config.model_profile.value}",
            title=f"{context.user_id} / {context.session_id}",
            level=LogLevel.INFO,
        )

        try:
            with tracer.span("agent_run", goal=goal[:100]):
                self._setup_context(session)
                await self._retrieve_memories(session)

                optimized = session.context_manager.optimize()
                stability = self.stable_prefix_tracker.identify(context.session_id, optimized.included_sources)
                tracer.record_event(
                    "context_stabilized",
                    {"stable_index": stability.stable_index, "total_sources": stability.total_sources},
                )
                session.companion.start_session(context.session_id)

                sm.transition(AgentEvent.START)
                dispatch_table = self.phase_handlers.dispatch_table()
                while not sm.is_terminal():
                    if session.halt_request is not None or monitor.should_halt():
                        break
                    self.logger.log_rule(sm.phase.value, level=LogLevel.DEBUG)
                    await dispatch_table[sm.phase](session)

                if not sm.is_terminal():
                    reason = session.halt_request or monitor.get_halt_reason() or HaltReason.ERROR
                    self.logger.log(Text(f"Run halted: {reason.value}", style=YELLOW_HEX), level=LogLevel.INFO)
                    sm.set_halt_reason(reason)
                    sm.transition(AgentEvent.UNRECOVERABLE)
        except Exception as e:
            logger.exception("Agent run failed")
            self.logger.log_error(f"Error in run: {e}")
            sm.record_error(str(e))
            sm.set_halt_reason(HaltReason.ERROR)
            sm.set_final_answer(FATAL_ERROR_ANSWER)
            if not sm.is_terminal():
                sm.transition(AgentEvent.UNRECOVERABLE)
        finally:
            self._sessions.pop(run_key, None)

        return await self._finalize(session)

    async def _finalize(self, session: RunSession) -> RunResult:
        sm, tracer = session.state_machine, session.tracer
        smc = sm.context
        success = smc.halt_reason == HaltReason.SUCCESS
        final_answer = smc.final_answer or DEFAULT_ANSWER
        check = session.safety_check
        intervened = check is not None and check.intervened

        if success and not intervened and self.memory_store is not None:
            self.background_tasks.submit(
                self.memory_store.store(
                    MemoryRecord(
                        content=f"Goal: {session.goal}\nResult: {final_answer}",
                        type=MemoryType.EPISODIC,
                        importance=0.5,
                        tags=("task_outcome", "agent"),
                        source="agent_reflection",
                        metadata={"session_id": session.agent_context.session_id, "trace_id": tracer.trace_id},
                    )
                ),
                name=f"episodic-memory-{tracer.trace_id}",
            )
            tracer.record_event("interaction_learned", {"goal": session.goal[:50]})

        summary = tracer.finalize(success=success, final_answer=final_answer, halt_reason=smc.halt_reason)
        metrics = session.monitor.get_metrics()
        self.logger.log_metrics(metrics)
        self.logger.log_markdown(final_answer, title="Final answer", level=LogLevel.INFO)

        if self.signal_collector is not None:
            await self._emit_signal(session, final_answer)

        return RunResult(
            final_answer=final_answer,
            steps=list(smc.steps),
            success=success,
            halt_reason=smc.halt_reason,
            total_tokens=smc.tokens_used,
            total_cost_cents=smc.cost_cents,
            duration_ms=summary.duration_ms,
            trace_id=tracer.trace_id,
            observations=[ProcessedObservation.from_step(step) for step in smc.steps if step.observation is not None],
            trace_summary=summary,
        )

    async def _emit_signal(self, session: RunSession, final_answer: str):
        sm, tracer = session.state_machine, session.tracer
        check = session.safety_check
        intent = sm.get_output(IntentOutput)
        try:
            signal = create_interaction_signal(
                user_id=session.agent_context.user_id or "anonymous",
                session_id=session.agent_context.session_id or "unknown",
                input_text=session.goal,
                detected_emotion=check.emotion.primary_emotion.value.lower() if check else "neutral",
                emotion_confidence=check.emotion.confidence if check else 0.5,
                intent_category=intent.intent.primary_intent.value.lower() if intent else "general",
                response_id=tracer.trace_id,
                response_latency_ms=sm.elapsed_ms,
                model_used=self.config.model_profile.value,
                response_preview=final_answer,
                agent_step_count=len(sm.steps),
            )
            await self.signal_collector.record_signal(signal)
        except Exception as e:
            logger.warning("Failed to emit interaction signal: %s", e)
            return
        logger.debug("Interaction signal %s emitted for trace %s", signal.id, tracer.trace_id)


def _memory_type(record: Any) -> str:
    memory_type = getattr(record, "type", None)
    return memory_type.value if isinstance(memory_type, MemoryType) else str(memory_type or "memory")
