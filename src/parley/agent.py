from typing import Any, Callable

from parley.history import ConversationHistory
from parley.provider import ModelProvider
from parley.tools import Tool, ToolRegistry

PromptBuilder = Callable[[dict[str, Any]], str]
ToolChoicePolicy = Callable[[ConversationHistory, int], Any]


class Agent:
    """
    What the Runner needs to drive a conversation: a model behind a
    provider, a system prompt and the tools the model may call.

    Args:
        name: Name used in logs and trace spans.
        model: Model identifier sent to the provider.
        provider: Provider that streams completions.
        system_prompt: Either a fixed prompt or a function building one from
            the current shared state. The prompt is injected at call time and
            never stored in the history.
        tools: Tools exposed to the model.
        tool_choice: Optional policy ``(history, round_number) -> tool_choice``.
            Defaults to ``"auto"`` whenever tools exist.
    """

    def __init__(
        self,
        model: str,
        provider: ModelProvider,
        system_prompt: str | PromptBuilder = "",
        tools: list[Tool] | ToolRegistry | None = None,
        tool_choice: ToolChoicePolicy | None = None,
        name: str = "assistant",
    ):
        self.name = name
        self.model = model
        self.provider = provider
        self.system_prompt = system_prompt
        if isinstance(tools, ToolRegistry):
            self.tool_registry = tools
        else:
            self.tool_registry = ToolRegistry(tools or [])
        self._tool_choice = tool_choice

    def render_prompt(self, state: dict[str, Any]) -> str:
        if callable(self.system_prompt):
            return self.system_prompt(state)
        return self.system_prompt

    def tool_choice(self, history: ConversationHistory, round_number: int) -> Any:
        if not len(self.tool_registry):
            return None
        if self._tool_choice is None:
            return "auto"
        return self._tool_choice(history, round_number)
