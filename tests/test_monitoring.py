import pytest
from rich.console import Console

from evermore_agents.monitoring import AgentLogger, LogLevel, LoopMonitor, StepMetrics, Timing, TokenUsage
from evermore_agents.state import HaltReason


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_monitor(clock=None, **limits):
    params = dict(max_steps=2, max_time_ms=1000, max_tokens=100, max_cost_cents=1.0, max_replan_attempts=1)
    params.update(limits)
    return LoopMonitor(clock=clock or FakeClock(), **params)


class TestLoopMonitor:
    def test_fresh_monitor_does_not_halt(self):
        monitor = make_monitor()
        assert not monitor.should_halt()
        assert monitor.get_halt_reason() is None

    def test_only_counted_steps_reach_the_step_ceiling(self):
        monitor = make_monitor()
        for i in range(3):
            monitor.record_step(StepMetrics(step_id=f"intent-{i}", step_name="intent", counts_as_step=False))
        assert monitor.step_count == 0
        for i in range(3):
            monitor.record_step(StepMetrics(step_id=f"execution-{i}", step_name="execution"))
        assert monitor.step_count == 3
        assert monitor.get_halt_reason() == HaltReason.STEP_LIMIT

    def test_ceilings_are_strict(self):
        monitor = make_monitor()
        monitor.record_step(StepMetrics(step_id="a", step_name="execution", input_tokens=60, output_tokens=40))
        monitor.record_step(StepMetrics(step_id="b", step_name="execution", cost_cents=1.0))
        assert monitor.total_tokens == 100
        assert not monitor.should_halt()

    def test_halt_reason_order(self):
        clock = FakeClock()
        monitor = make_monitor(clock=clock)
        for i in range(3):
            monitor.record_step(StepMetrics(step_id=str(i), step_name="execution", input_tokens=200, cost_cents=2.0))
        monitor.record_replan()
        monitor.record_replan()
        assert monitor.get_halt_reason() == HaltReason.COST_LIMIT
        clock.now = 2.0
        assert monitor.get_halt_reason() == HaltReason.TIMEOUT

    def test_token_ceiling(self):
        monitor = make_monitor()
        monitor.record_step(StepMetrics(step_id="a", step_name="intent", output_tokens=101, counts_as_step=False))
        assert monitor.get_halt_reason() == HaltReason.TOKEN_LIMIT

    def test_replan_ceiling(self):
        monitor = make_monitor()
        monitor.record_replan()
        assert not monitor.should_halt()
        monitor.record_replan()
        assert monitor.get_halt_reason() == HaltReason.REPLAN_LIMIT

    def test_metrics_and_reset(self):
        clock = FakeClock()
        monitor = make_monitor(clock=clock)
        monitor.record_step(
            StepMetrics(step_id="a", step_name="execution", input_tokens=3, output_tokens=4, cost_cents=0.1)
        )
        clock.now = 0.5
        metrics = monitor.get_metrics()
        assert metrics.step_count == 1
        assert metrics.input_tokens == 3
        assert metrics.output_tokens == 4
        assert metrics.total_tokens == 7
        assert metrics.cost_cents == pytest.approx(0.1)
        assert metrics.elapsed_ms == pytest.approx(500.0)
        assert len(metrics.steps) == 1

        monitor.reset()
        assert monitor.step_metrics == []
        assert monitor.total_tokens == 0
        assert monitor.elapsed_ms == 0.0


class TestUsageRecords:
    def test_token_usage_total(self):
        usage = TokenUsage(input_tokens=5, output_tokens=7)
        assert usage.total_tokens == 12
        assert usage.dict() == {"input_tokens": 5, "output_tokens": 7, "total_tokens": 12}

    def test_timing_duration(self):
        assert Timing(start_time=1.0).duration is None
        assert Timing(start_time=1.0, end_time=3.5).duration == 2.5


class TestAgentLogger:
    def test_respects_level(self):
        console = Console(record=True, width=80)
        logger = AgentLogger(level=LogLevel.ERROR, console=console)
        logger.log("shown only at info", level=LogLevel.INFO)
        logger.log_error("something broke")
        output = console.export_text()
        assert "something broke" in output
        assert "shown only at info" not in output

    def test_off_prints_nothing(self):
        console = Console(record=True, width=80)
        logger = AgentLogger(level=LogLevel.OFF, console=console)
        logger.log_error("hidden")
        logger.log_task("task", subtitle="sub")
        assert console.export_text() == ""

    def test_log_step_and_metrics(self):
        console = Console(record=True, width=120)
        logger = AgentLogger(level=LogLevel.DEBUG, console=console)
        logger.log_step(1, "I should echo.", "echo", {"text": "hello"}, "hello")
        monitor = make_monitor()
        monitor.record_step(StepMetrics(step_id="a", step_name="execution", input_tokens=1234))
        logger.log_metrics(monitor.get_metrics())
        output = console.export_text()
        assert "Step 1" in output
        assert "Thought: I should echo." in output
        assert "Observation: hello" in output
        assert "1,234" in output

    def test_level_names(self):
        console = Console(record=True, width=80)
        logger = AgentLogger(level=LogLevel.INFO, console=console)
        logger.log("by name", level="info")
        assert "by name" in console.export_text()
