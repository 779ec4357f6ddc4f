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
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from logging import getLogger
from typing import Any

from .companion import CompanionSystem, SafetyCheck
from .config import AgentConfig
from .context import ContextBudgetManager, ContextSource, ContextSourceType
from .memory import FINAL_ANSWER_ACTION, AgentContext, AgentStep, Observation, ProcessedObservation
from .monitoring import AgentLogger, LogLevel, LoopMonitor, StepMetrics, Timing, TokenUsage
from .ports import LLMPort
from .routing import ModelRouter, RoutingBudget, RoutingDecision, TaskComplexity
from .state import (
    AgentEvent,
    AgentPhase,
    AgentStateMachine,
    DecompositionOutput,
    HaltReason,
    IntentOutput,
    IntentType,
    PlanningOutput,
    RecognizedIntent,
)
from .tools import ExecutionContext, ToolRegistry, ToolResult
from .tracing import AgentTracer, SpanStatus
from .utils import (
    AgentError,
    AgentGenerationError,
    AgentParsingError,
    TokenEstimator,
    estimate_tokens,
    parse_json_array,
    parse_json_blob,
    populate_template,
    stringify,
    truncate_content,
)


__all__ = ["PhaseHandlers", "RunSession"]

logger = getLogger(__name__)

PhaseHandler = Callable[["RunSession"], Awaitable[None]]


@dataclass
class RunSession:
    """Everything that belongs to exactly one run. Only `companion` is shared with the same user's other runs."""

    goal: str
    agent_context: AgentContext
    state_machine: AgentStateMachine
    monitor: LoopMonitor
    tracer: AgentTracer
    context_manager: ContextBudgetManager
    system_prompt: str
    companion: CompanionSystem
    halt_request: HaltReason | None = None

    @property
    def safety_check(self) -> SafetyCheck | None:
        return self.state_machine.get_output(SafetyCheck)


class PhaseHandlers:
    """
    One handler per non-terminal phase. Each handler does its phase's work, checks the budget before any paid
    call, and fires exactly one transition on the state machine before returning.

    LLM and tool failures are turned into transitions here; only programmer errors propagate.
    """

    def __init__(
        self,
        llm: LLMPort,
        model_router: ModelRouter,
        config: AgentConfig,
        prompt_templates: dict[str, str],
        tool_registry: ToolRegistry | None = None,
        direct_tools: ToolRegistry | None = None,
        logger: AgentLogger | None = None,
        token_estimator: TokenEstimator = estimate_tokens,
    ):
        self.llm = llm
        self.model_router = model_router
        self.config = config
        self.prompt_templates = prompt_templates
        self.tool_registry = tool_registry
        self.direct_tools = direct_tools or ToolRegistry()
        self.logger = logger or AgentLogger(LogLevel.OFF)
        self.token_estimator = token_estimator

    def dispatch_table(self) -> dict[AgentPhase, PhaseHandler]:
        return {
            AgentPhase.RECOGNIZING_INTENT: self.recognize_intent,
            AgentPhase.DECOMPOSING_TASK: self.decompose_task,
            AgentPhase.PLANNING: self.plan,
            AgentPhase.EXECUTING: self.execute_step,
            AgentPhase.OBSERVING: self.observe,
            AgentPhase.REFLECTING: self.reflect,
            AgentPhase.SYNTHESIZING: self.synthesize,
            AgentPhase.REPLANNING: self.replan,
        }

    async def _call_llm(
        self,
        session: RunSession,
        prompt: str,
        complexity: TaskComplexity,
        step_name: str,
        counts_as_step: bool = False,
        max_tokens: int | None = None,
    ) -> tuple[str, RoutingDecision, TokenUsage, Timing]:
        """Routes, calls the LLM and records usage on the monitor, the state machine and the tracer."""
        sm = session.state_machine
        input_tokens = self.token_estimator(prompt)
        budget = RoutingBudget(
            total_cost_remaining=max(0.0, self.config.cost_budget_cents - sm.context.cost_cents),
            max_request_cost_cents=self.config.max_request_cost_cents,
            expected_input_tokens=input_tokens,
            expected_output_tokens=max_tokens or RoutingBudget.expected_output_tokens,
        )
        decision = self.model_router.route(complexity, budget)
        session.tracer.record_event(
            "model_routed", {"model": decision.model_id, "reason": decision.reason, "complexity": complexity.value}
        )

        timing = Timing(start_time=time.time())
        try:
            text = await self.llm.generate_text(prompt, model=decision.model_id, max_tokens=max_tokens)
        except Exception as e:
            raise AgentGenerationError(f"Error while generating output with {decision.model_id}: {e}") from e
        timing.end_time = time.time()
        text = text if isinstance(text, str) else stringify(text)

        output_tokens = self.token_estimator(text)
        cost_cents = self.model_router.estimate_request_cost(decision.model, input_tokens, output_tokens)
        session.monitor.record_step(
            StepMetrics(
                step_id=f"{step_name}-{len(session.monitor.step_metrics)}",
                step_name=step_name,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_cents=cost_cents,
                duration_ms=timing.duration * 1000,
                model=decision.model_id,
                counts_as_step=counts_as_step,
            )
        )
        sm.record_usage(input_tokens + output_tokens, cost_cents)
        session.tracer.record_token_usage(input_tokens, output_tokens, decision.model_id)
        session.tracer.record_cost(cost_cents, decision.model_id)
        return text, decision, TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens), timing

    async def recognize_intent(self, session: RunSession):
        sm, tracer, goal = session.state_machine, session.tracer, session.goal
        with tracer.span("intent_recognition"):
            # The safety gate runs on every turn, before any task-oriented LLM call.
            check = session.companion.check_safety(goal)
            sm.record_output(check)
            if check.intervened:
                sm.set_final_answer(check.response or "")
                tracer.record_event(
                    "safety_intervention",
                    {"risk": check.assessment.overall_risk.value, "scam": check.scam.is_scam_detected},
                )
                sm.transition(AgentEvent.SIMPLE_INTENT)
                return

            if self.config.skip_intent_for_simple and len(goal) < self.config.simple_query_threshold:
                intent = RecognizedIntent(primary_intent=IntentType.GREETING, confidence=0.9, reasoning="Simple query")
                sm.record_output(IntentOutput(intent=intent, skipped_llm=True))
                sm.transition(AgentEvent.SIMPLE_INTENT)
                return

            budget_limit = sm.check_budget_limits(include_steps=False)
            if budget_limit is not None:
                sm.set_halt_reason(budget_limit)
                tracer.end_span(SpanStatus.ERROR, f"Budget limit: {budget_limit.value}")
                sm.transition(AgentEvent.INTENT_ERROR)
                return

            agent_context = session.agent_context
            prompt = populate_template(
                self.prompt_templates["intent_recognition"],
                variables={
                    "user_input": goal,
                    "context": f"User ID: {agent_context.user_id}, Session: {agent_context.session_id}",
                },
            )
            try:
                text, _, _, _ = await self._call_llm(
                    session, prompt, TaskComplexity.CLASSIFICATION, "intent_recognition"
                )
                try:
                    intent = RecognizedIntent.model_validate(parse_json_blob(text))
                except ValueError as e:
                    raise AgentParsingError(f"Could not parse the intent classification: {e}") from e
            except AgentError as e:
                logger.warning("Intent recognition failed: %s", e)
                sm.record_error(str(e))
                tracer.end_span(SpanStatus.ERROR, str(e))
                sm.transition(AgentEvent.INTENT_ERROR)
                return

            sm.record_output(IntentOutput(intent=intent))
            tracer.record_event(
                "intent_recognized", {"intent": intent.primary_intent.value, "confidence": intent.confidence}
            )
            if (
                intent.primary_intent == IntentType.GREETING
                or intent.confidence < self.config.intent_confidence_threshold
            ):
                sm.transition(AgentEvent.SIMPLE_INTENT)
            else:
                sm.transition(AgentEvent.INTENT_RECOGNIZED)

    async def decompose_task(self, session: RunSession):
        sm, tracer, goal = session.state_machine, session.tracer, session.goal
        with tracer.span("task_decomposition"):
            if len(goal) > self.config.long_goal_threshold:
                budget_limit = sm.check_budget_limits(include_steps=False)
                if budget_limit is not None:
                    tracer.record_event("task_decomposition_skipped", {"reason": budget_limit.value})
                else:
                    prompt = populate_template(self.prompt_templates["task_decomposition"], variables={"goal": goal})
                    # Decomposition only helps planning: a failure here never stops the run.
                    try:
                        text, _, _, _ = await self._call_llm(
                            session, prompt, TaskComplexity.REASONING, "task_decomposition"
                        )
                        subgoals = [str(subgoal) for subgoal in parse_json_array(text)]
                        sm.record_output(DecompositionOutput(subgoals=subgoals))
                        tracer.record_event("task_decomposed", {"count": len(subgoals)})
                    except (AgentError, ValueError) as e:
                        logger.warning("Task decomposition failed, continuing without subgoals: %s", e)
                        tracer.record_event("task_decomposition_failed", {"error": str(e)})
            sm.transition(AgentEvent.TASK_DECOMPOSED)

    def _describe_tools(self) -> str:
        descriptions = []
        if self.tool_registry is not None and len(self.tool_registry):
            descriptions.append(self.tool_registry.describe())
        for tool in self.direct_tools.list_tools():
            if tool.enabled and (self.tool_registry is None or not self.tool_registry.has(tool.id)):
                descriptions.append(self.direct_tools.get(tool.id).describe())
        return "\n".join(description for description in descriptions if description)

    async def plan(self, session: RunSession):
        sm, tracer = session.state_machine, session.tracer
        with tracer.span("planning"):
            optimized = session.context_manager.optimize()
            context_content = optimized.content
            decomposition = sm.get_output(DecompositionOutput)
            if decomposition is not None and decomposition.subgoals:
                subgoals = "\n".join(f"{i}. {subgoal}" for i, subgoal in enumerate(decomposition.subgoals, start=1))
                context_content += f"\n\nSUBGOALS:\n{subgoals}"
            sm.record_output(PlanningOutput(tool_descriptions=self._describe_tools(), context_content=context_content))
            tracer.record_event(
                "context_optimized",
                {
                    "included": len(optimized.included_sources),
                    "excluded": len(optimized.excluded_sources),
                    "tokens": optimized.total_tokens,
                    "over_budget": optimized.over_budget,
                },
            )
            sm.transition(AgentEvent.PLAN_READY)

    def _parse_step(self, text: str) -> tuple[str, str, Any]:
        try:
            step_data = parse_json_blob(text)
        except ValueError as e:
            raise AgentParsingError(f"Could not parse the model step: {e}") from e
        action = step_data.get("action")
        if not isinstance(action, str) or not action.strip():
            raise AgentParsingError(f"Model step is missing an 'action': {text!r}")
        thought = str(step_data.get("thought") or "")
        if len(thought) > self.config.max_thought_length:
            thought = thought[: self.config.max_thought_length]
        action_input = step_data.get("actionInput", step_data.get("action_input"))
        return thought, action.strip(), action_input

    async def execute_step(self, session: RunSession):
        sm, tracer = session.state_machine, session.tracer
        step_number = len(sm.steps) + 1
        with tracer.span("execute_step", step=step_number):
            budget_limit = sm.check_budget_limits()
            if budget_limit is not None:
                sm.set_halt_reason(budget_limit)
                tracer.end_span(SpanStatus.ERROR, f"Budget limit: {budget_limit.value}")
                sm.transition(AgentEvent.STEP_LIMIT)
                return

            plan = sm.get_output(PlanningOutput) or PlanningOutput(tool_descriptions="", context_content="")
            recent = self.config.recent_steps_in_prompt
            past_steps = [step.dict() for step in sm.steps[-recent:]] if recent else []
            prompt = populate_template(
                self.prompt_templates["execution"],
                variables={
                    "system_prompt": session.system_prompt,
                    "tools": plan.tool_descriptions,
                    "context": plan.context_content,
                    "goal": session.goal,
                    "past_steps": json.dumps(past_steps, ensure_ascii=False) if past_steps else "[]",
                },
            )
            try:
                text, _, token_usage, timing = await self._call_llm(
                    session, prompt, TaskComplexity.REASONING, "execution", counts_as_step=True
                )
                thought, action, action_input = self._parse_step(text)
            except AgentError as e:
                logger.warning("Execution step %d failed: %s", step_number, e)
                sm.record_error(str(e))
                self.logger.log_error(f"Step {step_number} failed: {e}")
                tracer.end_span(SpanStatus.ERROR, str(e))
                sm.transition(AgentEvent.STEP_ERROR)
                return

            if action == FINAL_ANSWER_ACTION:
                answer = action_input if isinstance(action_input, str) else stringify(action_input or "")
                step = AgentStep(step_number, thought, action, action_input, timing=timing, token_usage=token_usage)
                sm.add_step(step)
                sm.set_final_answer(answer)
                self.logger.log_step(step_number, thought, action, action_input, None)
                sm.transition(AgentEvent.STEP_COMPLETE)
                return

            observation = await self._run_tool(session, action, action_input, step_number)
            step = AgentStep(
                step_number,
                thought,
                action,
                action_input,
                observation=observation,
                timing=timing,
                token_usage=token_usage,
            )
            sm.add_step(step)
            self.logger.log_step(step_number, thought, action, action_input, truncate_content(str(observation)))
            sm.transition(AgentEvent.STEP_COMPLETE)

    async def _run_tool(self, session: RunSession, tool_id: str, tool_input: Any, step_number: int) -> Observation:
        tracer = session.tracer
        if self.tool_registry is not None and self.tool_registry.has(tool_id):
            registry = self.tool_registry
        elif self.direct_tools.has(tool_id):
            registry = self.direct_tools
        else:
            tracer.record_event("tool_not_found", {"tool": tool_id})
            return Observation.error(f"Tool {tool_id} not found.")

        context = ExecutionContext(
            user_id=session.agent_context.user_id,
            session_id=session.agent_context.session_id,
            request_id=f"{tracer.trace_id}-{step_number}",
            permissions=dict(self.config.tool_permissions),
        )
        with tracer.span("tool_execution", tool=tool_id):
            result = await registry.execute(tool_id, tool_input, context)
            self._record_tool_usage(session, tool_id, registry, result)
            tracer.record_event(
                "tool_result",
                {"tool": tool_id, "success": result.success, "code": result.error.code if result.error else None},
            )
            if result.success:
                return Observation.ok(stringify(result.data))
            tracer.end_span(SpanStatus.ERROR, result.error.message)
            return Observation.error(result.error.message)

    def _record_tool_usage(self, session: RunSession, tool_id: str, registry: ToolRegistry, result: ToolResult):
        tool = registry.get(tool_id)
        cost_cents = tool.estimated_cost_cents if tool is not None and result.success else 0.0
        input_tokens = result.token_usage.input_tokens if result.token_usage else 0
        output_tokens = result.token_usage.output_tokens if result.token_usage else 0
        if not (cost_cents or input_tokens or output_tokens):
            return
        model = f"tool:{tool_id}"
        session.monitor.record_step(
            StepMetrics(
                step_id=f"tool-{tool_id}-{len(session.monitor.step_metrics)}",
                step_name=tool_id,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_cents=cost_cents,
                duration_ms=result.duration_ms,
                model=model,
                counts_as_step=False,
            )
        )
        session.state_machine.record_usage(input_tokens + output_tokens, cost_cents)
        session.tracer.record_token_usage(input_tokens, output_tokens, model)
        session.tracer.record_cost(cost_cents, model)

    async def observe(self, session: RunSession):
        sm, tracer = session.state_machine, session.tracer
        with tracer.span("observation_processing"):
            last_step = sm.steps[-1] if sm.steps else None
            if last_step is None or last_step.is_final_answer:
                sm.transition(AgentEvent.PLAN_COMPLETE)
                return

            processed = ProcessedObservation.from_step(last_step)
            tracer.record_event("observation", {"step_id": processed.step_id, "type": processed.type})
            if processed.invalidates_plan and sm.context.replan_count < self.config.max_replan_attempts:
                sm.transition(AgentEvent.OBSERVATION_INVALIDATES)
            else:
                sm.transition(AgentEvent.CONTINUE_PLAN)

    async def reflect(self, session: RunSession):
        sm = session.state_machine
        with session.tracer.span("reflection"):
            if sm.context.final_answer or sm.context.replan_count >= self.config.max_replan_attempts:
                sm.transition(AgentEvent.REFLECTION_COMPLETE)
            else:
                sm.transition(AgentEvent.REFLECTION_INSUFFICIENT)

    async def synthesize(self, session: RunSession):
        sm, tracer, goal = session.state_machine, session.tracer, session.goal
        with tracer.span("synthesis"):
            check = session.safety_check
            intervened = check is not None and check.intervened
            response = sm.context.final_answer

            if not response:
                budget_limit = sm.check_budget_limits(include_steps=False)
                if budget_limit is not None:
                    sm.set_halt_reason(budget_limit)
                    tracer.end_span(SpanStatus.ERROR, f"Budget limit: {budget_limit.value}")
                    sm.transition(AgentEvent.UNRECOVERABLE)
                    return
                observations = "\n".join(str(step.observation) for step in sm.steps if step.observation is not None)
                prompt = populate_template(
                    self.prompt_templates["synthesis"], variables={"goal": goal, "observations": observations}
                )
                try:
                    response, _, _, _ = await self._call_llm(
                        session, prompt, TaskComplexity.SUMMARIZATION, "synthesis"
                    )
                except AgentError as e:
                    logger.warning("Synthesis failed: %s", e)
                    sm.record_error(str(e))
                    sm.set_halt_reason(HaltReason.ERROR)
                    tracer.end_span(SpanStatus.ERROR, str(e))
                    sm.transition(AgentEvent.UNRECOVERABLE)
                    return

            # A safety response is returned verbatim.
            if self.config.enable_companion_features and not intervened:
                response = session.companion.adapt_response(
                    response, check.emotion if check else None, sm.steps, goal
                )

            sm.set_final_answer(response)
            sm.transition(AgentEvent.ANSWER_READY)

    async def replan(self, session: RunSession):
        sm, tracer = session.state_machine, session.tracer
        with tracer.span("replanning"):
            replan_count = sm.record_replan()
            session.monitor.record_replan()
            tracer.record_event("replan", {"count": replan_count})

            last_step = sm.steps[-1] if sm.steps else None
            if last_step is not None and last_step.observation is not None and last_step.observation.is_error:
                session.context_manager.add_source(
                    ContextSource(
                        id="replan-feedback",
                        type=ContextSourceType.TOOL_OUTPUT,
                        content=f"PREVIOUS ATTEMPT FAILED:\n{last_step.action}: {last_step.observation}",
                        priority=70,
                    )
                )

            if replan_count >= self.config.max_replan_attempts:
                # Set before the transition, which would otherwise default the reason to ERROR.
                sm.set_halt_reason(HaltReason.REPLAN_LIMIT)
                sm.transition(AgentEvent.REPLAN_LIMIT)
            else:
                sm.transition(AgentEvent.REPLAN_READY)
