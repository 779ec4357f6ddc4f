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
import asyncio
import inspect
import json
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from logging import getLogger
from typing import Any

from pydantic import BaseModel, ValidationError, model_validator


__all__ = [
    "ExecutionContext",
    "Tool",
    "ToolCapability",
    "ToolError",
    "ToolErrorCode",
    "ToolMetadata",
    "ToolPermission",
    "ToolRegistry",
    "ToolResult",
]

logger = getLogger(__name__)


class ToolCapability(str, Enum):
    READ = "READ"
    WRITE = "WRITE"


class ToolPermission(str, Enum):
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"


class ToolErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_OUTPUT = "INVALID_OUTPUT"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_DISABLED = "TOOL_DISABLED"
    PERMISSION_DENIED = "PERMISSION_DENIED"


class ToolError(BaseModel):
    code: str
    message: str
    retryable: bool = False


class ToolTokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ToolResult(BaseModel):
    """Uniform outcome of a tool call: either successful with data, or failed with a structured error."""

    success: bool
    data: Any = None
    error: ToolError | None = None
    duration_ms: float = 0.0
    token_usage: ToolTokenUsage | None = None

    @model_validator(mode="after")
    def _check_envelope(self) -> "ToolResult":
        if self.success and self.error is not None:
            raise ValueError("A successful ToolResult cannot carry an error")
        if not self.success and self.error is None:
            raise ValueError("A failed ToolResult must carry an error")
        return self

    @classmethod
    def ok(cls, data: Any = None, duration_ms: float = 0.0, token_usage: ToolTokenUsage | None = None) -> "ToolResult":
        return cls(success=True, data=data, duration_ms=duration_ms, token_usage=token_usage)

    @classmethod
    def fail(
        cls, code: ToolErrorCode | str, message: str, retryable: bool = False, duration_ms: float = 0.0
    ) -> "ToolResult":
        code = code.value if isinstance(code, ToolErrorCode) else code
        error = ToolError(code=code, message=message, retryable=retryable)
        return cls(success=False, error=error, duration_ms=duration_ms)


@dataclass(frozen=True)
class ExecutionContext:
    """
    Per-call execution scope. Created fresh for every tool invocation and never persisted.
    """

    user_id: str
    session_id: str
    agent_id: str = "companion-agent"
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    permissions: Mapping[str, ToolPermission] = field(default_factory=dict)
    dry_run: bool = False

    def permission_for(self, tool_id: str, default: ToolPermission) -> ToolPermission:
        return self.permissions.get(tool_id, default)


@dataclass(frozen=True)
class ToolMetadata:
    id: str
    name: str
    description: str
    usage_hint: str = ""
    version: str = "1.0.0"
    capabilities: tuple[ToolCapability, ...] = (ToolCapability.READ,)
    default_permission: ToolPermission = ToolPermission.ALLOWED
    estimated_cost_cents: float = 0.0
    estimated_latency_ms: float = 0.0
    enabled: bool = True


class Tool:
    """
    A base class for the tools the agent can call.

    Subclasses set the following class attributes:
    - **id** (`str`) -- Stable identifier the model uses as its action.
    - **name** (`str`) -- Human-readable name.
    - **description** (`str`) -- What the tool does; shown to the model.
    - **input_schema** (`type[BaseModel]`) -- Pydantic model that validates the raw input.
    - **output_schema** (`type[BaseModel]`, *optional*) -- Pydantic model that validates the output.

    and implement `forward(self, inputs, context)`, sync or async. `execute` wraps `forward` so it never raises.
    """

    id: str
    name: str
    description: str
    input_schema: type[BaseModel]
    output_schema: type[BaseModel] | None = None
    usage_hint: str = ""
    version: str = "1.0.0"
    capabilities: tuple[ToolCapability, ...] = (ToolCapability.READ,)
    default_permission: ToolPermission = ToolPermission.ALLOWED
    estimated_cost_cents: float = 0.0
    estimated_latency_ms: float = 0.0
    enabled: bool = True

    def __init__(self, *args, **kwargs):
        self.validate_arguments()

    def validate_arguments(self):
        required_attributes = {
            "id": str,
            "name": str,
            "description": str,
        }
        for attr, expected_type in required_attributes.items():
            attr_value = getattr(self, attr, None)
            if attr_value is None:
                raise TypeError(f"You must set an attribute {attr}.")
            if not isinstance(attr_value, expected_type):
                raise TypeError(
                    f"Attribute {attr} should have type {expected_type.__name__}, got {type(attr_value)} instead."
                )
        input_schema = getattr(self, "input_schema", None)
        if not (isinstance(input_schema, type) and issubclass(input_schema, BaseModel)):
            raise TypeError(f"Tool '{self.id}' must define `input_schema` as a pydantic model class.")
        if self.output_schema is not None and not (
            isinstance(self.output_schema, type) and issubclass(self.output_schema, BaseModel)
        ):
            raise TypeError(f"Tool '{self.id}' `output_schema` must be a pydantic model class.")
        if not self.id.strip():
            raise ValueError("Tool id must not be empty.")

    @property
    def metadata(self) -> ToolMetadata:
        return ToolMetadata(
            id=self.id,
            name=self.name,
            description=self.description,
            usage_hint=self.usage_hint,
            version=self.version,
            capabilities=tuple(self.capabilities),
            default_permission=self.default_permission,
            estimated_cost_cents=self.estimated_cost_cents,
            estimated_latency_ms=self.estimated_latency_ms,
            enabled=self.enabled,
        )

    def forward(self, inputs: BaseModel, context: ExecutionContext) -> Any:
        raise NotImplementedError("Write this method in your subclass of `Tool`.")

    def describe(self) -> str:
        description = f"- {self.id}: {self.description}"
        if self.usage_hint:
            description += f" ({self.usage_hint})"
        schema = self.input_schema.model_json_schema()
        description += f"\n  Input: {json.dumps(schema.get('properties', {}), ensure_ascii=False)}"
        return description

    async def execute(self, raw_input: Any, context: ExecutionContext) -> ToolResult:
        start_time = time.perf_counter()

        def elapsed_ms() -> float:
            return (time.perf_counter() - start_time) * 1000

        try:
            inputs = self.input_schema.model_validate(raw_input if raw_input is not None else {})
        except ValidationError as e:
            return ToolResult.fail(
                ToolErrorCode.INVALID_INPUT,
                f"Invalid input for tool '{self.id}': {e}",
                retryable=False,
                duration_ms=elapsed_ms(),
            )

        if context.dry_run:
            dry_run_data = {"dry_run": True, "input": inputs.model_dump(mode="json")}
            return ToolResult.ok(data=dry_run_data, duration_ms=elapsed_ms())

        try:
            output = self.forward(inputs, context)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            logger.warning("Tool '%s' raised %s: %s", self.id, type(e).__name__, e)
            return ToolResult.fail(
                ToolErrorCode.EXECUTION_FAILED,
                f"Tool '{self.id}' failed: {e}",
                retryable=True,
                duration_ms=elapsed_ms(),
            )

        if isinstance(output, ToolResult):
            return output.model_copy(update={"duration_ms": output.duration_ms or elapsed_ms()})

        if self.output_schema is not None:
            try:
                output = self.output_schema.model_validate(output).model_dump(mode="json")
            except ValidationError as e:
                return ToolResult.fail(
                    ToolErrorCode.INVALID_OUTPUT,
                    f"Tool '{self.id}' returned invalid output: {e}",
                    retryable=False,
                    duration_ms=elapsed_ms(),
                )
        elif isinstance(output, BaseModel):
            output = output.model_dump(mode="json")
        return ToolResult.ok(data=output, duration_ms=elapsed_ms())


class ToolRegistry:
    """
    Id-keyed set of tools. Registration happens at construction time; afterwards the registry is only read,
    so one instance can be shared by concurrent runs.
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool):
        if tool.id in self._tools:
            logger.debug("Replacing registered tool '%s'", tool.id)
        self._tools[tool.id] = tool

    def unregister(self, tool_id: str) -> bool:
        return self._tools.pop(tool_id, None) is not None

    def has(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def get(self, tool_id: str) -> Tool | None:
        return self._tools.get(tool_id)

    def list_tools(self) -> list[ToolMetadata]:
        return [tool.metadata for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def describe(self) -> str:
        return "\n".join(tool.describe() for tool in self._tools.values() if tool.enabled)

    async def execute(self, tool_id: str, raw_input: Any, context: ExecutionContext) -> ToolResult:
        tool = self._tools.get(tool_id)
        if tool is None:
            return ToolResult.fail(ToolErrorCode.TOOL_NOT_FOUND, f"Tool '{tool_id}' is not registered.")
        if not tool.enabled:
            return ToolResult.fail(ToolErrorCode.TOOL_DISABLED, f"Tool '{tool_id}' is disabled.")
        permission = context.permission_for(tool_id, tool.default_permission)
        if permission != ToolPermission.ALLOWED:
            return ToolResult.fail(
                ToolErrorCode.PERMISSION_DENIED, f"Permission to run tool '{tool_id}' was denied."
            )
        try:
            return await tool.execute(raw_input, context)
        except Exception as e:
            logger.exception("Unexpected failure while executing tool '%s'", tool_id)
            return ToolResult.fail(ToolErrorCode.EXECUTION_FAILED, f"Tool '{tool_id}' failed: {e}", retryable=True)

    async def execute_concurrently(
        self, calls: list[tuple[str, Any]], context: ExecutionContext
    ) -> list[ToolResult]:
        """Runs independent calls together and returns their results in call order."""
        return list(await asyncio.gather(*(self.execute(tool_id, raw_input, context) for tool_id, raw_input in calls)))
