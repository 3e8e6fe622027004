import itertools
from enum import Enum

from pydantic import BaseModel, Field, field_serializer

from parley.context import new_id
from parley.streaming import ToolCall

_creation_order = itertools.count()


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    id: str = Field(default_factory=lambda: new_id("msg"))
    role: MessageRole
    content: str = ""
    created: int = Field(default_factory=lambda: next(_creation_order))

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    def to_upstream(self) -> dict:
        """Return the chat-completions form of this message."""
        return self.model_dump(exclude={"id", "created"})


class ToolCallRequestMessage(Message):
    tool_calls: list[ToolCall]

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list[ToolCall]) -> list[dict]:
        return [
            {
                "id": t.id,
                "type": "function",
                "function": {
                    "arguments": t.arguments,
                    "name": t.name
                }
            }
            for t in tool_calls
        ]


class ToolCallResultMessage(Message):
    tool_call_id: str
