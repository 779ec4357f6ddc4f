import asyncio

import pytest
from pydantic import BaseModel

from evermore_agents.tools import (
    ExecutionContext,
    Tool,
    ToolErrorCode,
    ToolPermission,
    ToolRegistry,
    ToolResult,
)
from tests.fixtures.tools import EchoInput


@pytest.fixture
def context():
    return ExecutionContext(user_id="user-1", session_id="session-1")


class TestToolDefinition:
    def test_missing_attributes_are_rejected(self):
        class NamelessTool(Tool):
            id = "nameless"
            description = "No name"
            input_schema = EchoInput

        with pytest.raises(TypeError, match="name"):
            NamelessTool()

    def test_input_schema_must_be_a_model(self):
        class BadSchemaTool(Tool):
            id = "bad"
            name = "Bad"
            description = "Bad schema"
            input_schema = dict

        with pytest.raises(TypeError, match="input_schema"):
            BadSchemaTool()

    def test_blank_id_is_rejected(self):
        class BlankIdTool(Tool):
            id = "   "
            name = "Blank"
            description = "No id"
            input_schema = EchoInput

        with pytest.raises(ValueError, match="id"):
            BlankIdTool()

    def test_metadata(self, paid_search_tool):
        metadata = paid_search_tool.metadata
        assert metadata.id == "paid_search"
        assert metadata.estimated_cost_cents == 0.5
        assert metadata.default_permission == ToolPermission.ALLOWED

    def test_describe_lists_inputs(self, echo_tool):
        description = echo_tool.describe()
        assert description.startswith("- echo: Repeats the given text back.")
        assert '"text"' in description


class TestToolExecution:
    @pytest.mark.asyncio
    async def test_success(self, echo_tool, context):
        result = await echo_tool.execute({"text": "hello"}, context)
        assert result.success
        assert result.data == {"echoed": "hello"}
        assert result.error is None
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_invalid_input(self, echo_tool, context):
        result = await echo_tool.execute({"wrong": 1}, context)
        assert not result.success
        assert result.error.code == ToolErrorCode.INVALID_INPUT.value
        assert result.error.message.startswith("Invalid input for tool 'echo'")
        assert not result.error.retryable

    @pytest.mark.asyncio
    async def test_execution_failure_is_captured(self, failing_tool, context):
        result = await failing_tool.execute({"text": "x"}, context)
        assert not result.success
        assert result.error.code == ToolErrorCode.EXECUTION_FAILED.value
        assert result.error.message == "Tool 'flaky_lookup' failed: service unavailable"
        assert result.error.retryable

    @pytest.mark.asyncio
    async def test_invalid_output(self, context):
        class StrictOutput(BaseModel):
            count: int

        class WrongOutputTool(Tool):
            id = "wrong_output"
            name = "Wrong output"
            description = "Returns the wrong shape"
            input_schema = EchoInput
            output_schema = StrictOutput

            def forward(self, inputs, context):
                return {"count": "many"}

        result = await WrongOutputTool().execute({"text": "x"}, context)
        assert result.error.code == ToolErrorCode.INVALID_OUTPUT.value

    @pytest.mark.asyncio
    async def test_async_forward_returning_a_result(self, paid_search_tool, context):
        result = await paid_search_tool.execute({"query": "parks", "max_results": 2}, context)
        assert result.data == ["parks result 1", "parks result 2"]
        assert result.token_usage.total_tokens == 40

    @pytest.mark.asyncio
    async def test_dry_run_skips_forward(self, failing_tool):
        context = ExecutionContext(user_id="u", session_id="s", dry_run=True)
        result = await failing_tool.execute({"text": "x"}, context)
        assert result.success
        assert result.data == {"dry_run": True, "input": {"text": "x"}}


class TestToolResult:
    def test_envelope_is_checked(self):
        with pytest.raises(ValueError):
            ToolResult(success=False)

    def test_fail_accepts_codes(self):
        result = ToolResult.fail(ToolErrorCode.TOOL_DISABLED, "off")
        assert result.error.code == "TOOL_DISABLED"


class TestToolRegistry:
    def test_register_and_lookup(self, echo_tool, failing_tool):
        registry = ToolRegistry([echo_tool])
        registry.register(failing_tool)
        assert len(registry) == 2
        assert registry.has("echo")
        assert registry.get("flaky_lookup") is failing_tool
        assert [metadata.id for metadata in registry.list_tools()] == ["echo", "flaky_lookup"]
        assert registry.unregister("echo")
        assert not registry.has("echo")
        assert not registry.unregister("echo")

    def test_registering_the_same_id_replaces_the_tool(self, echo_tool):
        class LoudEchoTool(type(echo_tool)):
            def forward(self, inputs, context):
                return {"echoed": inputs.text.upper()}

        louder = LoudEchoTool()
        registry = ToolRegistry([echo_tool])
        registry.register(louder)
        assert len(registry) == 1
        assert registry.get("echo") is louder

        registry.register(louder)
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self, context):
        result = await ToolRegistry().execute("nope", {}, context)
        assert result.error.code == ToolErrorCode.TOOL_NOT_FOUND.value
        assert result.error.message == "Tool 'nope' is not registered."

    @pytest.mark.asyncio
    async def test_disabled_tool(self, context):
        class DisabledTool(Tool):
            id = "disabled"
            name = "Disabled"
            description = "Turned off"
            input_schema = EchoInput
            enabled = False

        registry = ToolRegistry([DisabledTool()])
        result = await registry.execute("disabled", {"text": "x"}, context)
        assert result.error.code == ToolErrorCode.TOOL_DISABLED.value
        assert "disabled" not in registry.describe()

    @pytest.mark.asyncio
    async def test_permission_denied(self, echo_tool):
        registry = ToolRegistry([echo_tool])
        context = ExecutionContext(user_id="u", session_id="s", permissions={"echo": ToolPermission.DENIED})
        result = await registry.execute("echo", {"text": "x"}, context)
        assert result.error.code == ToolErrorCode.PERMISSION_DENIED.value
        assert result.error.message == "Permission to run tool 'echo' was denied."

    @pytest.mark.asyncio
    async def test_default_permission_can_deny(self, context):
        class SensitiveTool(Tool):
            id = "sensitive"
            name = "Sensitive"
            description = "Needs explicit permission"
            input_schema = EchoInput
            default_permission = ToolPermission.DENIED

            def forward(self, inputs, context):
                return "done"

        registry = ToolRegistry([SensitiveTool()])
        denied = await registry.execute("sensitive", {"text": "x"}, context)
        allowed_context = ExecutionContext(
            user_id="u", session_id="s", permissions={"sensitive": ToolPermission.ALLOWED}
        )
        allowed = await registry.execute("sensitive", {"text": "x"}, allowed_context)
        assert denied.error.code == ToolErrorCode.PERMISSION_DENIED.value
        assert allowed.success and allowed.data == "done"

    @pytest.mark.asyncio
    async def test_concurrent_execution_keeps_call_order(self, context):
        class SlowEchoTool(Tool):
            id = "slow_echo"
            name = "Slow echo"
            description = "Echo after a delay"
            input_schema = EchoInput

            async def forward(self, inputs, context):
                await asyncio.sleep(0.02 if inputs.text == "first" else 0)
                return inputs.text

        registry = ToolRegistry([SlowEchoTool()])
        results = await registry.execute_concurrently(
            [("slow_echo", {"text": "first"}), ("missing", {}), ("slow_echo", {"text": "third"})], context
        )
        assert [result.success for result in results] == [True, False, True]
        assert results[0].data == "first"
        assert results[2].data == "third"
