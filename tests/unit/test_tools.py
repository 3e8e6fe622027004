import inspect

import pytest

from parley.tools import (
    Tool,
    ToolCallResult,
    ToolRegistry,
    _build_parameters_schema,
    _parse_param_descriptions,
    tool,
)


# ---------------------------------------------------------------------------
# Schema generation
# ---------------------------------------------------------------------------


class TestBuildParametersSchema:
    def test_annotations_map_to_json_types(self):
        def func(title: str, revisions: int, score: float, passed: bool, tags: list, meta: dict):
            pass

        schema, _ = _build_parameters_schema(func)
        types = {k: v["type"] for k, v in schema["properties"].items()}
        assert types == {
            "title": "string",
            "revisions": "integer",
            "score": "number",
            "passed": "boolean",
            "tags": "array",
            "meta": "object",
        }

    def test_context_is_never_exposed(self):
        def func(context, post_id: str):
            pass

        schema, required = _build_parameters_schema(func)
        assert list(schema["properties"]) == ["post_id"]
        assert required == ["post_id"]

    def test_defaults_make_params_optional(self):
        def func(topic_id: str, limit: int = 5):
            pass

        _, required = _build_parameters_schema(func)
        assert required == ["topic_id"]

    def test_unannotated_param_is_string(self):
        def func(x):
            pass

        schema, _ = _build_parameters_schema(func)
        assert schema["properties"]["x"]["type"] == "string"


# ---------------------------------------------------------------------------
# Docstring parameter descriptions
# ---------------------------------------------------------------------------


class TestParseParamDescriptions:
    def test_google_style(self):
        def func(title: str, content: str):
            """Write a proposal.

            Args:
                title: The proposal title
                content (str): The full proposal content
            """

        assert _parse_param_descriptions(func) == {
            "title": "The proposal title",
            "content": "The full proposal content",
        }

    def test_rest_style(self):
        def func(post_id: str):
            """Summarize revisions.

            :param post_id: The ID of the post
            """

        assert _parse_param_descriptions(func) == {"post_id": "The ID of the post"}

    def test_numpy_style(self):
        def func(topic_id: str):
            """Summarize a discussion.

            Parameters
            ----------
            topic_id : str
                The ID of the topic
            """

        assert _parse_param_descriptions(func) == {"topic_id": "The ID of the topic"}

    def test_multiline_google_description(self):
        def func(content: str):
            """Screen.

            Args:
                content: The proposal content,
                    in markdown.
            """

        assert _parse_param_descriptions(func) == {
            "content": "The proposal content,\nin markdown.",
        }

    @pytest.mark.parametrize("doc", [None, "Only a summary."])
    def test_no_params_section(self, doc):
        def func(x: str):
            pass

        func.__doc__ = doc
        assert _parse_param_descriptions(func) == {}


# ---------------------------------------------------------------------------
# @tool decorator and schema export
# ---------------------------------------------------------------------------


class TestToolDecorator:
    def test_bare_decorator_uses_docstring_summary(self):
        @tool
        def write_draft(title: str):
            """Write a draft.

            Longer explanation that stays out of the description.
            """

        assert isinstance(write_draft, Tool)
        assert write_draft.name == "write_draft"
        assert write_draft.description == "Write a draft."

    def test_overrides(self):
        @tool(name="screen", description="Screen a proposal")
        def screen_it(title: str):
            """Ignored."""

        assert screen_it.name == "screen"
        assert screen_it.description == "Screen a proposal"

    def test_model_dump_is_openai_function_schema(self):
        @tool
        def summarize(post_id: str):
            """Summarize a post.

            Args:
                post_id: The post to summarize
            """

        assert summarize.model_dump() == {
            "type": "function",
            "function": {
                "name": "summarize",
                "description": "Summarize a post.",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "post_id": {"type": "string", "description": "The post to summarize"},
                    },
                    "required": ["post_id"],
                },
            },
        }


class TestToolCall:
    @pytest.mark.asyncio
    async def test_sync_function(self):
        @tool
        def count(words: str):
            """Count words."""
            return len(words.split())

        result = await count(words="a b c")
        assert isinstance(result, ToolCallResult)
        assert result.tool_name == "count"
        assert result.output == 3

    @pytest.mark.asyncio
    async def test_async_function_keeps_structured_output(self):
        @tool
        async def evaluate(title: str):
            """Evaluate."""
            return {"overallPass": True, "title": title}

        result = await evaluate(title="Grant")
        assert result.output == {"overallPass": True, "title": "Grant"}


# ---------------------------------------------------------------------------
# Tool.bind
# ---------------------------------------------------------------------------


class TestToolBind:
    def test_bound_param_hidden_from_model(self):
        @tool
        def fetch(client: str, post_id: str, limit: int = 3):
            """Fetch."""

        bound = fetch.bind(client="c")
        assert list(bound.parameters_schema["properties"]) == ["post_id", "limit"]
        assert bound.parameters_schema["required"] == ["post_id"]
        assert bound.name == "fetch"
        # original untouched
        assert "client" in fetch.parameters_schema["properties"]

    @pytest.mark.asyncio
    async def test_bound_tool_receives_value(self):
        @tool
        async def fetch(base_url: str, path: str):
            """Fetch."""
            return f"{base_url}/{path}"

        result = await fetch.bind(base_url="http://host").bind()(path="api")
        assert result.output == "http://host/api"

    @pytest.mark.asyncio
    async def test_bound_value_not_overridden_by_caller(self):
        @tool
        async def fetch(client: str, post_id: str):
            """Fetch."""
            return client

        result = await fetch.bind(client="REAL_CLIENT")(post_id="1", client="evil")
        assert result.output == "REAL_CLIENT"

    def test_context_stays_in_signature(self):
        @tool
        def patcher(context, client: str, title: str):
            """Patch."""

        bound = patcher.bind(client="c")
        assert "context" in inspect.signature(bound.func).parameters
        assert "context" not in bound.parameters_schema["properties"]


# ---------------------------------------------------------------------------
# ToolRegistry
# ---------------------------------------------------------------------------


class TestToolRegistry:
    def test_lookup_and_schemas(self, sample_tool, sample_async_tool):
        registry = ToolRegistry([sample_tool, sample_async_tool])

        assert registry.get("greet") is sample_tool
        assert registry.get("missing") is None
        assert "async_greet" in registry
        assert len(registry) == 2
        assert [s["function"]["name"] for s in registry.schemas()] == ["greet", "async_greet"]
        assert list(registry) == [sample_tool, sample_async_tool]

    def test_duplicate_name_rejected(self, sample_tool):
        registry = ToolRegistry([sample_tool])
        with pytest.raises(ValueError, match="Duplicate tool name: 'greet'"):
            registry.register(sample_tool)

    def test_empty_registry(self):
        registry = ToolRegistry()
        assert len(registry) == 0
        assert registry.schemas() == []
