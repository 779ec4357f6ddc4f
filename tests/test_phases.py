import pytest

from evermore_agents.agents import CompanionReActAgent
from evermore_agents.config import AgentConfig
from evermore_agents.memory import AgentStep, Observation
from evermore_agents.state import AgentEvent, AgentPhase, HaltReason
from evermore_agents.utils import AgentParsingError
from tests.fixtures.models import ScriptedLLM


def new_session(agent, agent_context, goal="Please look up the opening hours of the public library downtown"):
    session = agent._new_session(goal, agent_context)
    agent._setup_context(session)
    return session


class TestStepParsing:
    def test_action_input_aliases(self):
        handlers = CompanionReActAgent(llm=ScriptedLLM()).phase_handlers
        thought, action, action_input = handlers._parse_step(
            '{"thought": "echo it", "action": " echo ", "action_input": {"text": "x"}}'
        )
        assert (thought, action, action_input) == ("echo it", "echo", {"text": "x"})

    def test_missing_action(self):
        handlers = CompanionReActAgent(llm=ScriptedLLM()).phase_handlers
        with pytest.raises(AgentParsingError, match="action"):
            handlers._parse_step('{"thought": "hmm"}')

    def test_long_thought_is_truncated(self):
        agent = CompanionReActAgent(llm=ScriptedLLM(), config=AgentConfig(max_thought_length=10))
        thought, _, _ = agent.phase_handlers._parse_step('{"thought": "' + "t" * 50 + '", "action": "echo"}')
        assert thought == "t" * 10


class TestReplanning:
    @pytest.mark.asyncio
    async def test_failed_step_feeds_back_into_context(self, agent_context):
        agent = CompanionReActAgent(llm=ScriptedLLM())
        session = new_session(agent, agent_context)
        sm = session.state_machine
        for event in [
            AgentEvent.START,
            AgentEvent.INTENT_RECOGNIZED,
            AgentEvent.TASK_DECOMPOSED,
            AgentEvent.PLAN_READY,
            AgentEvent.STEP_COMPLETE,
            AgentEvent.OBSERVATION_INVALIDATES,
        ]:
            sm.transition(event)
        sm.add_step(AgentStep(1, "try", "flaky_lookup", observation=Observation.error("down")))

        await agent.phase_handlers.replan(session)

        assert sm.phase == AgentPhase.PLANNING
        assert sm.context.replan_count == 1
        assert session.monitor.replan_count == 1
        feedback = [source for source in session.context_manager.sources if source.id == "replan-feedback"]
        assert feedback[0].content == "PREVIOUS ATTEMPT FAILED:\nflaky_lookup: Error: down"

    @pytest.mark.asyncio
    async def test_replan_limit_sets_reason(self, agent_context):
        agent = CompanionReActAgent(llm=ScriptedLLM(), config=AgentConfig(max_replan_attempts=0))
        session = new_session(agent, agent_context)
        sm = session.state_machine
        for event in [
            AgentEvent.START,
            AgentEvent.INTENT_RECOGNIZED,
            AgentEvent.TASK_DECOMPOSED,
            AgentEvent.PLAN_READY,
            AgentEvent.STEP_COMPLETE,
            AgentEvent.PLAN_COMPLETE,
            AgentEvent.REFLECTION_INSUFFICIENT,
        ]:
            sm.transition(event)

        await agent.phase_handlers.replan(session)

        assert sm.phase == AgentPhase.HALTED
        assert sm.context.halt_reason == HaltReason.REPLAN_LIMIT


class TestDispatchTable:
    def test_every_active_phase_has_a_handler(self):
        table = CompanionReActAgent(llm=ScriptedLLM()).phase_handlers.dispatch_table()
        active = {phase for phase in AgentPhase if phase not in (AgentPhase.IDLE, AgentPhase.DONE, AgentPhase.HALTED)}
        assert set(table) == active
