from pydantic import BaseModel, Field

from parley.message import (
    Message,
    MessageRole,
    ToolCallRequestMessage,
    ToolCallResultMessage,
)


class ConversationHistory(BaseModel):
    """Ordered messages of one conversation.

    The dispatch loop is the only writer during a run.  Messages are only
    appended.
    """

    thread_id: str
    transcript: list[ToolCallResultMessage | ToolCallRequestMessage | Message] = Field(
        default_factory=list
    )

    def append(self, message: Message) -> Message:
        self.transcript.append(message)
        return message

    def last_user_content(self) -> str:
        for message in reversed(self.transcript):
            if message.role == MessageRole.USER:
                return message.content
        return ""

    def to_upstream(self, system_prompt: str | None = None) -> list[dict]:
        """Build the ``messages`` array of a completion request."""
        messages = [m.to_upstream() for m in self.transcript]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        return messages

    def __len__(self) -> int:
        return len(self.transcript)
