"""OpenTelemetry spans around runs, completion rounds and tool calls.

Tracing is off until :func:`instrument` is called; every span helper then
yields ``None`` and costs nothing.  ``opentelemetry-api`` comes with the
``otel`` extra.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "parley") -> None:
    """Start emitting spans through the globally configured TracerProvider.

    Example::

        trace.set_tracer_provider(TracerProvider())
        instrument()
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is not installed; use pip install parley[otel]"
        )
    from opentelemetry import trace

    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info("No TracerProvider configured; spans will be discarded.")
    else:
        logger.info(f"Tracing runs with tracer {tracer_name!r}")


def uninstrument() -> None:
    global _tracer
    _tracer = None


@asynccontextmanager
async def _span(operation: str, target: str, attributes: dict, client: bool = False):
    if _tracer is None:
        yield None
        return
    options = {"attributes": {"gen_ai.operation.name": operation, **attributes}}
    if client:
        from opentelemetry.trace import SpanKind

        options["kind"] = SpanKind.CLIENT
    with _tracer.start_as_current_span(f"{operation} {target}", **options) as span:
        yield span


def run_span(agent_name: str, model: str, thread_id: str, run_id: str):
    """Span for a whole run, tagged with the thread and run ids."""
    return _span("invoke_agent", agent_name, {
        "gen_ai.agent.name": agent_name,
        "gen_ai.request.model": model,
        "gen_ai.conversation.id": thread_id,
        "parley.run.id": run_id,
    })


def completion_span(system: str, model: str, round_number: int):
    """Client span for one streamed completion round."""
    return _span("chat", model, {
        "gen_ai.provider.name": system,
        "gen_ai.request.model": model,
        "parley.round": round_number,
    }, client=True)


def tool_span(tool_name: str, call_id: str):
    return _span("execute_tool", tool_name, {
        "gen_ai.tool.name": tool_name,
        "gen_ai.tool.call.id": call_id,
    })


def record_error(span, exception: BaseException) -> None:
    """Mark *span* as failed; a ``None`` span is ignored."""
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)
