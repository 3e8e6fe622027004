import functools
import inspect
import re
from collections.abc import Iterator
from typing import Any, Callable

from pydantic import BaseModel, Field

# Parameters injected by the Runner and never shown to the model.
_INJECTED_PARAMS = {"context"}

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
    type(None): "null",
}


class ToolCallResult(BaseModel):
    tool_name: str
    output: Any


def _json_type(annotation) -> str:
    if annotation is inspect.Parameter.empty:
        return "string"
    origin = getattr(annotation, "__origin__", None)
    return _JSON_TYPES.get(origin or annotation, "string")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Extract parameter descriptions from a Google, reST or NumPy docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}
    lines = doc.splitlines()
    descriptions: dict[str, str] = {}

    # reST: ":param name: description"
    for line in lines:
        match = re.match(r"\s*:param\s+(?:\w+\s+)?(\w+):\s*(.*)", line)
        if match:
            descriptions[match.group(1)] = match.group(2).strip()
    if descriptions:
        return descriptions

    # Google: "Args:" followed by indented "name (type): description"
    for i, line in enumerate(lines):
        if line.strip() in ("Args:", "Arguments:", "Parameters:"):
            current = None
            base_indent = None
            for entry in lines[i + 1:]:
                if not entry.strip():
                    current = None
                    continue
                indent = len(entry) - len(entry.lstrip())
                if base_indent is None:
                    base_indent = indent
                if indent < base_indent:
                    break
                match = re.match(r"(\w+)(?:\s*\([^)]*\))?:\s*(.*)", entry.strip())
                if indent == base_indent and match:
                    current = match.group(1)
                    descriptions[current] = match.group(2).strip()
                elif current is not None:
                    descriptions[current] += "\n" + entry.strip()
            return descriptions

    # NumPy: "Parameters" underlined with dashes
    for i, line in enumerate(lines[:-1]):
        if line.strip() == "Parameters" and set(lines[i + 1].strip()) == {"-"}:
            current = None
            for entry in lines[i + 2:]:
                if not entry.strip():
                    continue
                if set(entry.strip()) == {"-"}:
                    break
                if not entry.startswith((" ", "\t")):
                    current = entry.split(":")[0].strip()
                    descriptions[current] = ""
                elif current is not None:
                    text = entry.strip()
                    descriptions[current] = (
                        f"{descriptions[current]}\n{text}" if descriptions[current] else text
                    )
            return descriptions
    return descriptions


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    signature = inspect.signature(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in signature.parameters.items():
        if name in _INJECTED_PARAMS:
            continue
        properties[name] = {
            "type": _json_type(param.annotation),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    schema = {"type": "object", "properties": properties, "required": required}
    return schema, required


class Tool(BaseModel):
    """A function the model may call, plus its JSON schema."""

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict = Field(default_factory=dict)

    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        """Return the OpenAI-compatible function tool schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    def bind(self, **bound_kwargs) -> "Tool":
        """Return a copy with some arguments fixed and hidden from the model."""
        properties = {
            k: v for k, v in self.parameters_schema.get("properties", {}).items()
            if k not in bound_kwargs
        }
        required = [
            r for r in self.parameters_schema.get("required", [])
            if r not in bound_kwargs
        ]
        func = self.func

        # Bound values win over anything the model sends under the same name.
        @functools.wraps(func)
        def bound(*args, **kwargs):
            return func(*args, **{**kwargs, **bound_kwargs})

        return Tool(
            func=bound,
            name=self.name,
            description=self.description,
            parameters_schema={
                **self.parameters_schema,
                "properties": properties,
                "required": required,
            },
        )

    async def __call__(self, **kwargs) -> ToolCallResult:
        output = self.func(**kwargs)
        if inspect.isawaitable(output):
            output = await output
        return ToolCallResult(tool_name=self.name, output=output)


def tool(func: Callable | None = None, *, name: str | None = None, description: str | None = None):
    """Turn a function into a :class:`Tool`.

    Usable bare (``@tool``) or with overrides
    (``@tool(name="lookup", description="...")``).  The description defaults
    to the function's docstring summary.
    """

    def wrap(f: Callable) -> Tool:
        schema, _ = _build_parameters_schema(f)
        doc = inspect.getdoc(f) or ""
        return Tool(
            func=f,
            name=name or f.__name__,
            description=description if description is not None else doc.split("\n\n")[0].strip(),
            parameters_schema=schema,
        )

    if func is not None:
        return wrap(func)
    return wrap


class ToolRegistry:
    """Static name -> tool table consulted by the dispatch loop."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, t: Tool) -> Tool:
        if t.name in self._tools:
            raise ValueError(f"Duplicate tool name: '{t.name}'")
        self._tools[t.name] = t
        return t

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
