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
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import IntEnum
from logging import getLogger

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from evermore_agents.state import HaltReason


__all__ = ["AgentLogger", "LogLevel", "LoopMonitor", "StepMetrics", "TokenUsage", "Timing"]

logger = getLogger(__name__)

YELLOW_HEX = "#d4b702"


@dataclass
class TokenUsage:
    """
    Contains the token usage information for a given step or run.
    """

    input_tokens: int
    output_tokens: int
    total_tokens: int = field(init=False)

    def __post_init__(self):
        self.total_tokens = self.input_tokens + self.output_tokens

    def dict(self):
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Timing:
    """
    Contains the timing information for a given step or run.
    """

    start_time: float
    end_time: float | None = None

    @property
    def duration(self):
        return None if self.end_time is None else self.end_time - self.start_time

    def dict(self):
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
        }

    def __repr__(self) -> str:
        return f"Timing(start_time={self.start_time}, end_time={self.end_time}, duration={self.duration})"


@dataclass(frozen=True)
class StepMetrics:
    """Usage recorded for one paid call.

    Only calls with `counts_as_step=True` (the execution phase) count toward the step ceiling;
    intent, decomposition and synthesis calls still count toward tokens and cost.
    """

    step_id: str
    step_name: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: float = 0.0
    duration_ms: float = 0.0
    model: str | None = None
    counts_as_step: bool = True

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class LoopMetrics:
    step_count: int
    replan_count: int
    total_tokens: int
    input_tokens: int
    output_tokens: int
    cost_cents: float
    elapsed_ms: float
    steps: tuple[StepMetrics, ...]


class LoopMonitor:
    """
    Enforces run-wide ceilings independently of the state machine.

    The orchestrator polls `should_halt()` at every loop iteration. A ceiling is breached once
    the tracked value strictly exceeds its maximum. When several are breached at once,
    `get_halt_reason()` reports them in the fixed order time, cost, tokens, steps, replans.

    Args:
        max_steps (`int`): Maximum number of counted steps.
        max_time_ms (`float`): Maximum wall-clock time in milliseconds.
        max_tokens (`int`): Maximum number of tokens.
        max_cost_cents (`float`): Maximum cost in cents.
        max_replan_attempts (`int`): Maximum number of replans.
        clock (`Callable[[], float]`, default `time.monotonic`): Clock returning seconds.
    """

    def __init__(
        self,
        max_steps: int,
        max_time_ms: float,
        max_tokens: int,
        max_cost_cents: float,
        max_replan_attempts: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_steps = max_steps
        self.max_time_ms = max_time_ms
        self.max_tokens = max_tokens
        self.max_cost_cents = max_cost_cents
        self.max_replan_attempts = max_replan_attempts
        self.clock = clock
        self.reset()

    def reset(self):
        self.start_time = self.clock()
        self.step_metrics: list[StepMetrics] = []
        self.step_count = 0
        self.replan_count = 0
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_cost_cents = 0.0

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    @property
    def elapsed_ms(self) -> float:
        return (self.clock() - self.start_time) * 1000

    def record_step(self, metrics: StepMetrics):
        self.step_metrics.append(metrics)
        if metrics.counts_as_step:
            self.step_count += 1
        self.total_input_tokens += metrics.input_tokens
        self.total_output_tokens += metrics.output_tokens
        self.total_cost_cents += metrics.cost_cents
        logger.debug(
            "Recorded %s: %d tokens, %.4f cents, %.1f ms",
            metrics.step_name,
            metrics.total_tokens,
            metrics.cost_cents,
            metrics.duration_ms,
        )

    def record_replan(self):
        self.replan_count += 1

    def get_halt_reason(self) -> HaltReason | None:
        if self.elapsed_ms > self.max_time_ms:
            return HaltReason.TIMEOUT
        if self.total_cost_cents > self.max_cost_cents:
            return HaltReason.COST_LIMIT
        if self.total_tokens > self.max_tokens:
            return HaltReason.TOKEN_LIMIT
        if self.step_count > self.max_steps:
            return HaltReason.STEP_LIMIT
        if self.replan_count > self.max_replan_attempts:
            return HaltReason.REPLAN_LIMIT
        return None

    def should_halt(self) -> bool:
        return self.get_halt_reason() is not None

    def get_metrics(self) -> LoopMetrics:
        return LoopMetrics(
            step_count=self.step_count,
            replan_count=self.replan_count,
            total_tokens=self.total_tokens,
            input_tokens=self.total_input_tokens,
            output_tokens=self.total_output_tokens,
            cost_cents=self.total_cost_cents,
            elapsed_ms=self.elapsed_ms,
            steps=tuple(self.step_metrics),
        )


class LogLevel(IntEnum):
    OFF = -1  # No output
    ERROR = 0  # Only errors
    INFO = 1  # Normal output (default)
    DEBUG = 2  # Detailed output


class AgentLogger:
    def __init__(self, level: LogLevel = LogLevel.INFO, console: Console | None = None):
        self.level = level
        if console is None:
            self.console = Console(highlight=False)
        else:
            self.console = console

    def log(self, *args, level: int | str | LogLevel = LogLevel.INFO, **kwargs) -> None:
        """Logs a message to the console.

        Args:
            level (LogLevel, optional): Defaults to LogLevel.INFO.
        """
        if isinstance(level, str):
            level = LogLevel[level.upper()]
        if level <= self.level:
            self.console.print(*args, **kwargs)

    def log_error(self, error_message: str) -> None:
        self.log(Text(str(error_message), style="bold red"), level=LogLevel.ERROR)

    def log_markdown(self, content: str, title: str | None = None, level=LogLevel.INFO, style=YELLOW_HEX) -> None:
        markdown_content = Syntax(
            content,
            lexer="markdown",
            theme="github-dark",
            word_wrap=True,
        )
        if title:
            self.log(
                Group(
                    Rule(
                        "[bold italic]" + title,
                        align="left",
                        style=style,
                    ),
                    markdown_content,
                ),
                level=level,
            )
        else:
            self.log(markdown_content, level=level)

    def log_rule(self, title: str, level: int = LogLevel.INFO) -> None:
        self.log(
            Rule(
                "[bold]" + title,
                characters="━",
                style=YELLOW_HEX,
            ),
            level=level,
        )

    def log_task(self, content: str, subtitle: str, title: str | None = None, level: LogLevel = LogLevel.INFO) -> None:
        self.log(
            Panel(
                f"\n[bold]{Text(content).plain}\n",
                title="[bold]New run" + (f" - {title}" if title else ""),
                subtitle=subtitle,
                border_style=YELLOW_HEX,
                subtitle_align="left",
            ),
            level=level,
        )

    def log_step(self, step_number: int, thought: str, action: str, action_input, observation: str | None) -> None:
        self.log_rule(f"Step {step_number}", level=LogLevel.INFO)
        self.log(Text(f"Thought: {thought}", style="italic"), level=LogLevel.INFO)
        self.log(
            Panel(
                Text(f"Calling '{action}' with: {json.dumps(action_input, ensure_ascii=False, default=str)}"),
                box=box.HORIZONTALS,
            ),
            level=LogLevel.INFO,
        )
        if observation is not None:
            self.log(f"Observation: {observation}", level=LogLevel.INFO)

    def log_metrics(self, metrics: LoopMetrics, level: LogLevel = LogLevel.DEBUG) -> None:
        table = Table(title="Run metrics", box=box.SIMPLE)
        table.add_column("Metric")
        table.add_column("Value", justify="right")
        table.add_row("Steps", str(metrics.step_count))
        table.add_row("Replans", str(metrics.replan_count))
        table.add_row("Input tokens", f"{metrics.input_tokens:,}")
        table.add_row("Output tokens", f"{metrics.output_tokens:,}")
        table.add_row("Cost (cents)", f"{metrics.cost_cents:.4f}")
        table.add_row("Elapsed (ms)", f"{metrics.elapsed_ms:.0f}")
        self.log(table, level=level)
