"""Tests for the tool contract."""

import json
from typing import List

import pytest
from pydantic import BaseModel

from llm_orchestra.errors import ValidationError
from llm_orchestra.tool import TOOL_ERROR_MARKER, FunctionTool, Tool, tool, tool_error


class AddArgs(BaseModel):
    a: int
    b: int


class Sum(BaseModel):
    total: int


@tool(AddArgs, int, description="Add two numbers")
def add(agent, args: AddArgs) -> int:
    return args.a + args.b


class TestInvoke:
    """Input and output validation around the call."""

    @pytest.mark.asyncio
    async def test_valid_call(self):
        assert await add.invoke(None, {"a": 2, "b": 3}) == 5

    @pytest.mark.asyncio
    async def test_json_string_arguments(self):
        assert await add.invoke(None, '{"a": 1, "b": 1}') == 2

    @pytest.mark.asyncio
    async def test_invalid_input(self):
        with pytest.raises(ValidationError) as exc_info:
            await add.invoke(None, {"a": "not a number"})
        assert exc_info.value.errors

    @pytest.mark.asyncio
    async def test_invalid_output(self):
        broken = FunctionTool("broken", lambda agent, args: "nope", args_type=AddArgs, returns_type=int)
        with pytest.raises(ValidationError):
            await broken.invoke(None, {"a": 1, "b": 2})

    @pytest.mark.asyncio
    async def test_async_function(self):
        async def total(agent, args: AddArgs):
            return {"total": args.a + args.b}

        t = FunctionTool("total", total, args_type=AddArgs, returns_type=Sum)
        result = await t.invoke(None, {"a": 4, "b": 5})
        assert result == Sum(total=9)
        assert json.loads(t.serialize(result)) == {"total": 9}

    @pytest.mark.asyncio
    async def test_subclass_tool_receives_agent(self):
        class WhoAmI(Tool):
            name = "whoami"
            description = "Return the caller id"
            returns_type = str

            async def execute(self, agent, args):
                return agent

        assert await WhoAmI().invoke("Agent#1", {}) == "Agent#1"


class TestDescribe:
    """Schema export for provider request shaping."""

    def test_describe_exports_object_schema(self):
        schema = add.describe()
        assert schema.name == "add"
        assert schema.description == "Add two numbers"
        assert schema.parameters["type"] == "object"
        assert set(schema.parameters["properties"]) == {"a", "b"}
        assert set(schema.parameters["required"]) == {"a", "b"}

    def test_description_defaults_to_docstring(self):
        def lookup(agent, args):
            """Look something up."""
            return args

        assert FunctionTool("lookup", lookup).description == "Look something up."

    def test_output_schema(self):
        t = FunctionTool("items", lambda agent, args: [], returns_type=List[int])
        assert t.output_schema() == {"type": "array", "items": {"type": "integer"}}


def test_serialize_strings_unchanged():
    assert add.serialize("plain") == "plain"
    assert add.serialize(7) == "7"


def test_tool_error_marker():
    assert tool_error("boom") == f"{TOOL_ERROR_MARKER} boom"
    assert tool_error("boom").startswith("TOOL ERROR:")
