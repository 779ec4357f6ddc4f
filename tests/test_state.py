import pytest

from evermore_agents.memory import AgentContext, AgentStep
from evermore_agents.state import (
    TRANSITIONS,
    AgentEvent,
    AgentPhase,
    AgentStateMachine,
    HaltReason,
    IntentOutput,
    IntentType,
    RecognizedIntent,
)
from evermore_agents.utils import IllegalTransitionError


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_state_machine(clock=None, **limits):
    params = dict(max_steps=3, timeout_ms=1000, token_budget=100, cost_budget_cents=1.0)
    params.update(limits)
    return AgentStateMachine(
        goal="look up the weather",
        agent_context=AgentContext(user_id="user-1", session_id="session-1"),
        clock=clock or FakeClock(),
        **params,
    )


class TestTransitions:
    def test_starts_idle(self):
        sm = make_state_machine()
        assert sm.phase == AgentPhase.IDLE
        assert not sm.is_terminal()
        assert sm.history() == []

    def test_happy_path(self):
        sm = make_state_machine()
        for event in [
            AgentEvent.START,
            AgentEvent.INTENT_RECOGNIZED,
            AgentEvent.TASK_DECOMPOSED,
            AgentEvent.PLAN_READY,
            AgentEvent.STEP_COMPLETE,
            AgentEvent.PLAN_COMPLETE,
            AgentEvent.REFLECTION_COMPLETE,
            AgentEvent.ANSWER_READY,
        ]:
            sm.transition(event)
        assert sm.phase == AgentPhase.DONE
        assert sm.is_terminal()
        assert sm.context.halt_reason == HaltReason.SUCCESS
        assert len(sm.history()) == 8

    def test_event_names_are_accepted(self):
        sm = make_state_machine()
        assert sm.transition("START") == AgentPhase.RECOGNIZING_INTENT

    def test_illegal_transition_raises(self):
        sm = make_state_machine()
        with pytest.raises(IllegalTransitionError) as excinfo:
            sm.transition(AgentEvent.PLAN_READY)
        assert excinfo.value.phase == "IDLE"
        assert excinfo.value.event == "PLAN_READY"
        assert sm.phase == AgentPhase.IDLE
        assert sm.history() == []

    def test_unknown_event_raises(self):
        sm = make_state_machine()
        with pytest.raises(IllegalTransitionError):
            sm.transition("TELEPORT")

    def test_terminal_phases_have_no_outgoing_edges(self):
        assert not any(phase in (AgentPhase.DONE, AgentPhase.HALTED) for phase, _ in TRANSITIONS)

    @pytest.mark.parametrize(
        "phase", [phase for phase in AgentPhase if phase not in (AgentPhase.DONE, AgentPhase.HALTED)]
    )
    def test_unrecoverable_from_every_active_phase(self, phase):
        assert TRANSITIONS[(phase, AgentEvent.UNRECOVERABLE)] == AgentPhase.HALTED

    def test_halt_defaults_to_error(self):
        sm = make_state_machine()
        sm.transition(AgentEvent.START)
        sm.transition(AgentEvent.INTENT_ERROR)
        assert sm.phase == AgentPhase.HALTED
        assert sm.context.halt_reason == HaltReason.ERROR

    def test_explicit_halt_reason_is_kept(self):
        sm = make_state_machine()
        sm.transition(AgentEvent.START)
        sm.set_halt_reason(HaltReason.TIMEOUT)
        sm.transition(AgentEvent.UNRECOVERABLE)
        assert sm.context.halt_reason == HaltReason.TIMEOUT

    def test_no_transition_after_terminal(self):
        sm = make_state_machine()
        sm.transition(AgentEvent.START)
        sm.transition(AgentEvent.UNRECOVERABLE)
        with pytest.raises(IllegalTransitionError):
            sm.transition(AgentEvent.UNRECOVERABLE)

    def test_on_transition_callback(self):
        seen = []
        sm = AgentStateMachine(
            goal="hi",
            agent_context=AgentContext(user_id="u", session_id="s"),
            max_steps=1,
            timeout_ms=1000,
            token_budget=10,
            cost_budget_cents=1,
            on_transition=lambda *args: seen.append(args),
        )
        sm.transition(AgentEvent.START)
        assert seen == [(AgentPhase.IDLE, AgentPhase.RECOGNIZING_INTENT, AgentEvent.START)]


class TestBudgetLimits:
    def test_within_budget(self):
        assert make_state_machine().check_budget_limits() is None

    def test_timeout_checked_first(self):
        clock = FakeClock()
        sm = make_state_machine(clock=clock)
        sm.record_usage(1000, 50.0)
        clock.now = 5.0
        assert sm.check_budget_limits() == HaltReason.TIMEOUT

    def test_cost_before_tokens(self):
        sm = make_state_machine()
        sm.record_usage(1000, 50.0)
        assert sm.check_budget_limits() == HaltReason.COST_LIMIT

    def test_tokens(self):
        sm = make_state_machine()
        sm.record_usage(101, 0.0)
        assert sm.check_budget_limits() == HaltReason.TOKEN_LIMIT

    def test_limits_are_strict(self):
        sm = make_state_machine()
        sm.record_usage(100, 1.0)
        assert sm.check_budget_limits() is None

    def test_steps_reached_at_max(self):
        sm = make_state_machine(max_steps=2)
        sm.add_step(AgentStep(1, "t", "echo"))
        assert sm.check_budget_limits() is None
        sm.add_step(AgentStep(2, "t", "echo"))
        assert sm.check_budget_limits() == HaltReason.STEP_LIMIT
        assert sm.check_budget_limits(include_steps=False) is None


class TestContextMutation:
    def test_usage_accumulates(self):
        sm = make_state_machine()
        sm.record_usage(10, 0.25)
        sm.record_usage(5, 0.25)
        assert sm.context.tokens_used == 15
        assert sm.context.cost_cents == pytest.approx(0.5)

    def test_replans_are_counted(self):
        sm = make_state_machine()
        assert sm.record_replan() == 1
        assert sm.record_replan() == 2
        assert sm.context.replan_count == 2

    def test_outputs_are_keyed_by_type(self):
        sm = make_state_machine()
        assert sm.get_output(IntentOutput) is None
        output = IntentOutput(intent=RecognizedIntent(primary_intent=IntentType.GREETING, confidence=0.9))
        sm.record_output(output)
        assert sm.get_output(IntentOutput) is output

    def test_elapsed_uses_clock(self):
        clock = FakeClock(10.0)
        sm = make_state_machine(clock=clock)
        clock.now = 10.25
        assert sm.elapsed_ms == pytest.approx(250.0)


class TestRecognizedIntent:
    def test_camel_case_payload(self):
        intent = RecognizedIntent.model_validate(
            {"primaryIntent": "ask_question", "confidence": 0.8, "requiresMemoryLookup": True}
        )
        assert intent.primary_intent == IntentType.ASK_QUESTION
        assert intent.requires_memory_lookup

    def test_unknown_intent_and_clamped_confidence(self):
        intent = RecognizedIntent.model_validate({"primaryIntent": "DANCE", "confidence": 3})
        assert intent.primary_intent == IntentType.UNKNOWN
        assert intent.confidence == 1.0

    def test_entities_may_be_a_list(self):
        intent = RecognizedIntent.model_validate({"primaryIntent": "GREETING", "entities": ["Maya"]})
        assert intent.entities == ["Maya"]
