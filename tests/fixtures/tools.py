import pytest
from pydantic import BaseModel

from evermore_agents.tools import Tool, ToolResult, ToolTokenUsage


class EchoInput(BaseModel):
    text: str


class EchoOutput(BaseModel):
    echoed: str


class EchoTool(Tool):
    id = "echo"
    name = "Echo"
    description = "Repeats the given text back."
    input_schema = EchoInput
    output_schema = EchoOutput

    def forward(self, inputs, context):
        return {"echoed": inputs.text}


class FailingTool(Tool):
    id = "flaky_lookup"
    name = "Flaky lookup"
    description = "Looks something up in a service that is currently down."
    input_schema = EchoInput

    def forward(self, inputs, context):
        raise RuntimeError("service unavailable")


class PaidSearchInput(BaseModel):
    query: str
    max_results: int = 3


class PaidSearchTool(Tool):
    id = "paid_search"
    name = "Paid search"
    description = "Searches a paid index."
    input_schema = PaidSearchInput
    estimated_cost_cents = 0.5

    async def forward(self, inputs, context):
        results = [f"{inputs.query} result {i}" for i in range(1, inputs.max_results + 1)]
        return ToolResult.ok(data=results, token_usage=ToolTokenUsage(input_tokens=10, output_tokens=30))


@pytest.fixture
def echo_tool():
    return EchoTool()


@pytest.fixture
def failing_tool():
    return FailingTool()


@pytest.fixture
def paid_search_tool():
    return PaidSearchTool()
