from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from parley.state import StateOperation, apply_operations

if TYPE_CHECKING:
    from parley.history import ConversationHistory


def new_id(prefix: str) -> str:
    """Return a fresh identifier such as ``run_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class RunContext:
    """Correlation ids attached to the lifecycle events of one run.

    Clients may supply either id; missing ones are generated once per
    request.
    """

    thread_id: str = field(default_factory=lambda: new_id("thread"))
    run_id: str = field(default_factory=lambda: new_id("run"))

    @classmethod
    def create(cls, thread_id: str | None = None, run_id: str | None = None) -> RunContext:
        return cls(
            thread_id=thread_id or new_id("thread"),
            run_id=run_id or new_id("run"),
        )


@dataclass
class Context:
    """Runtime context injected into tools that declare a ``context`` parameter.

    Gives tools read access to the conversation and the shared state. Tools
    change the shared state only through :meth:`patch`; the Runner drains
    the recorded operations after each call and streams them to the client
    as a ``STATE_DELTA``.

    Args:
        history: The conversation history of the current run.
        state: The shared key/value state, as last patched.
        run: Correlation ids of the current run.
    """

    history: ConversationHistory
    state: dict[str, Any]
    run: RunContext
    _pending: list[StateOperation] = field(default_factory=list, repr=False)

    def patch(self, path: str, value: Any, op: str = "replace") -> None:
        """Record a change to the shared state and apply it immediately."""
        operation = StateOperation(op=op, path=path, value=value)
        self.state = apply_operations(self.state, [operation])
        self._pending.append(operation)

    def drain(self) -> list[StateOperation]:
        """Return and forget the operations recorded since the last drain."""
        pending, self._pending = self._pending, []
        return pending
