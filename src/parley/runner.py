import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from parley.agent import Agent
from parley.context import Context, RunContext
from parley.errors import MaxRoundsExceededError, NoMessageError, ParleyError
from parley.events import (
    BaseEvent,
    RunError,
    RunFinished,
    RunStarted,
    StateDelta,
    StateSnapshot,
    StepFinished,
    StepStarted,
    TextMessageContent,
    ToolCallArgs,
    ToolCallResult,
)
from parley.history import ConversationHistory
from parley.instrumentation import completion_span, record_error, run_span, tool_span
from parley.message import Message, MessageRole, ToolCallRequestMessage, ToolCallResultMessage
from parley.reducer import fold
from parley.state import StateOperation
from parley.streaming import DeltaAccumulator, ToolCall
from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """The result of a single Runner.run() invocation."""

    history: ConversationHistory
    state: dict[str, Any]
    last_message: Message | None = None
    error: RunError | None = None


@dataclass
class _ToolOutcome:
    """Result of executing a single tool call."""

    output: str
    is_error: bool
    operations: list[StateOperation] = field(default_factory=list)


class Runner:
    """Executes the multi-round tool-calling loop of one run.

    Each round streams one completion, forwarding text and tool-call deltas
    as protocol events. A round without tool calls ends the run; otherwise
    the calls are executed one after another, their results are appended to
    the history and the next round starts. The Runner is the only writer of
    the history while a run is in progress.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point.

    Args:
        max_rounds: Maximum number of completion rounds before the run
            fails with ``MAX_ROUNDS_EXCEEDED``.
        chunk_size: When positive, text and argument deltas longer than
            this are re-sent as several smaller deltas.
        chunk_delay: Seconds to wait between such sub-chunks.
    """

    def __init__(
        self,
        max_rounds: int = 10,
        chunk_size: int = 0,
        chunk_delay: float = 0.0,
    ):
        self.max_rounds = max_rounds
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay

    async def run(
        self, agent: Agent, history: ConversationHistory,
        state: dict[str, Any] | None = None, run: RunContext | None = None,
    ) -> RunResult:
        """Run to completion and return the final history and state."""
        events = [event async for event in self.iter(agent, history, state, run)]
        conversation = fold(events)
        last_message = None
        if conversation.error is None and history.transcript:
            last_message = history.transcript[-1]
        return RunResult(
            history=history,
            state=conversation.shared,
            last_message=last_message,
            error=conversation.error,
        )

    async def iter(
        self, agent: Agent, history: ConversationHistory,
        state: dict[str, Any] | None = None, run: RunContext | None = None,
    ) -> AsyncIterator[BaseEvent]:
        """Run the loop, yielding protocol events as execution proceeds."""
        run = run or RunContext.create(thread_id=history.thread_id)
        ctx = Context(history=history, state=dict(state or {}), run=run)

        yield RunStarted(thread_id=run.thread_id, run_id=run.run_id)
        yield StateSnapshot(snapshot=ctx.state)

        async with run_span(agent.name, agent.model, run.thread_id, run.run_id) as span:
            try:
                async for event in self._rounds(agent, history, ctx):
                    yield event
            except ParleyError as e:
                logger.warning(f"Run {run.run_id} failed: {e}")
                record_error(span, e)
                yield RunError(message=str(e), code=e.code)
            except Exception as e:
                logger.exception(f"Run {run.run_id} crashed")
                record_error(span, e)
                yield RunError(message=str(e) or type(e).__name__, code=ParleyError.code)

    async def _rounds(
        self, agent: Agent, history: ConversationHistory, ctx: Context,
    ) -> AsyncIterator[BaseEvent]:
        tool_schemas = agent.tool_registry.schemas() or None

        for round_number in range(1, self.max_rounds + 1):
            step_name = f"round_{round_number}"
            yield StepStarted(step_name=step_name)
            logger.info(f"Run {ctx.run.run_id}: starting {step_name} ({len(history)} messages)")

            acc = DeltaAccumulator()
            messages = history.to_upstream(agent.render_prompt(ctx.state))
            async with completion_span(agent.provider.system, agent.model, round_number):
                async for payload in agent.provider.stream_complete(
                    model=agent.model,
                    messages=messages,
                    tools=tool_schemas,
                    tool_choice=agent.tool_choice(history, round_number),
                ):
                    for event in acc.feed(payload):
                        async for paced in self._pace(event):
                            yield paced
            for event in acc.finish():
                yield event

            result = acc.result()
            if not result.saw_message:
                raise NoMessageError()

            # No tool calls: final text response
            if not result.tool_calls:
                message = history.append(Message(
                    id=result.message_id, role=MessageRole.ASSISTANT, content=result.content,
                ))
                yield StepFinished(step_name=step_name)
                yield RunFinished(
                    thread_id=ctx.run.thread_id, run_id=ctx.run.run_id, result=message.content,
                )
                return

            history.append(ToolCallRequestMessage(
                id=result.message_id, role=MessageRole.ASSISTANT,
                content=result.content, tool_calls=result.tool_calls,
            ))
            for tc in result.tool_calls:
                outcome = await self._execute_one(tc, agent.tool_registry, ctx)
                tool_message = history.append(ToolCallResultMessage(
                    role=MessageRole.TOOL, content=outcome.output, tool_call_id=tc.id,
                ))
                if outcome.operations:
                    yield StateDelta(delta=outcome.operations)
                yield ToolCallResult(
                    message_id=tool_message.id, tool_call_id=tc.id, content=outcome.output,
                )
            yield StepFinished(step_name=step_name)

        raise MaxRoundsExceededError(self.max_rounds)

    async def _pace(self, event: BaseEvent) -> AsyncIterator[BaseEvent]:
        """Split long deltas into smaller ones for a smoother typing effect."""
        if (
            self.chunk_size <= 0
            or not isinstance(event, (TextMessageContent, ToolCallArgs))
            or len(event.delta) <= self.chunk_size
        ):
            yield event
            return
        for start in range(0, len(event.delta), self.chunk_size):
            if start:
                await asyncio.sleep(self.chunk_delay)
            yield event.model_copy(update={"delta": event.delta[start:start + self.chunk_size]})

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_one(self, tc: ToolCall, tool_registry: ToolRegistry, ctx: Context) -> _ToolOutcome:
        tool_obj = tool_registry.get(tc.name)
        if tool_obj is None:
            logger.warning(f"Tool not found: {tc.name}")
            return _ToolOutcome(output=f"Unknown tool: {tc.name}", is_error=True)

        try:
            params = json.loads(tc.arguments) if tc.arguments.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in arguments for {tc.name}: {e}")
            return _ToolOutcome(
                output=f"Error executing {tc.name}: invalid arguments ({e})", is_error=True,
            )
        if not isinstance(params, dict):
            return _ToolOutcome(
                output=f"Error executing {tc.name}: arguments must be a JSON object",
                is_error=True,
            )

        logger.info(f"Calling {tc.name} with {params}")
        if "context" in inspect.signature(tool_obj.func).parameters:
            params["context"] = ctx

        async with tool_span(tc.name, tc.id) as span:
            try:
                result = await tool_obj(**params)
            except Exception as e:
                logger.error(f"Tool {tc.name} raised: {e}")
                record_error(span, e)
                return _ToolOutcome(
                    output=f"Error executing {tc.name}: {e}", is_error=True,
                    operations=ctx.drain(),
                )

        output = result.output
        if not isinstance(output, str):
            output = json.dumps(output, indent=2, default=str)
        return _ToolOutcome(output=output, is_error=False, operations=ctx.drain())
