"""HTTP surface: the agent event stream, a completion proxy and a health check."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

import httpx
from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.routing import APIRouter
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sse_starlette.sse import EventSourceResponse
from starlette.background import BackgroundTask

from parley.agent import Agent
from parley.context import RunContext
from parley.errors import UpstreamUnavailableError
from parley.history import ConversationHistory
from parley.log import setup_logging
from parley.message import Message
from parley.proposals import build_tools, intent_tool_choice, system_prompt
from parley.provider import ModelProvider, NearAICloudProvider
from parley.runner import Runner
from parley.settings import ParleySettings, get_settings
from parley.sse import sse_generator

logger = logging.getLogger(__name__)

MISSING_KEY_ERROR = "Missing upstream API key (set PARLEY_UPSTREAM_API_KEY or NEAR_AI_CLOUD_API_KEY)"


class InputMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str | None = None


class AgentRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    thread_id: str | None = None
    run_id: str | None = None
    messages: list[InputMessage]
    state: dict[str, Any] | None = None


def default_state() -> dict[str, Any]:
    return {"title": "", "content": "", "evaluation": None}


def configure(
    app: FastAPI,
    settings: ParleySettings,
    provider: ModelProvider | None = None,
    services: httpx.AsyncClient | None = None,
) -> None:
    """Attach provider, tool backends and runner to ``app.state``.

    Without an explicit ``provider`` one is built from the settings; it stays
    ``None`` when no upstream key is configured.
    """
    if provider is None and settings.upstream_api_key is not None:
        provider = NearAICloudProvider(
            api_key=settings.upstream_api_key.get_secret_value(),
            base_url=settings.upstream_base_url,
            timeout=settings.request_timeout,
        )
    if services is None:
        services = httpx.AsyncClient(
            base_url=settings.services_base_url, timeout=settings.request_timeout,
        )
    app.state.settings = settings
    app.state.provider = provider
    app.state.services = services
    app.state.tools = build_tools(services)
    app.state.runner = Runner(
        max_rounds=settings.max_rounds,
        chunk_size=settings.stream_chunk_size,
        chunk_delay=settings.stream_chunk_delay,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)
    configure(_app, settings)

    logger.info(f"Parley starting (host={settings.host}, port={settings.port})")
    logger.info(f"Upstream: {settings.upstream_base_url} (model={settings.model})")
    if _app.state.provider is None:
        logger.warning("No upstream API key set -- /api/agent and the proxy will answer 500")

    yield

    # -- Shutdown --------------------------------------------------------------
    if _app.state.provider is not None:
        await _app.state.provider.aclose()
    await _app.state.services.aclose()
    logger.info("Parley stopped")


app = FastAPI(title="Parley", lifespan=lifespan)

# ---------------------------------------------------------------------------
# API router -- all endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@api.post("/agent")
async def run_agent(body: AgentRequest, request: Request):
    """Run the proposal assistant and stream protocol events back."""
    state = request.app.state
    if state.provider is None:
        return JSONResponse(status_code=500, content={"error": MISSING_KEY_ERROR})

    run = RunContext.create(thread_id=body.thread_id, run_id=body.run_id)
    history = ConversationHistory(
        thread_id=run.thread_id,
        transcript=[Message(role=m.role, content=m.content or "") for m in body.messages],
    )
    agent = Agent(
        name="proposal_assistant",
        model=state.settings.model,
        provider=state.provider,
        system_prompt=system_prompt,
        tools=state.tools,
        tool_choice=intent_tool_choice,
    )
    shared = body.state if body.state is not None else default_state()
    logger.info(f"Run {run.run_id} on thread {run.thread_id} ({len(history)} messages)")
    return EventSourceResponse(
        sse_generator(state.runner.iter(agent, history, shared, run)),
        headers={"Cache-Control": "no-cache"},
    )


@api.post("/chat/completions")
async def proxy_completions(request: Request, body: dict[str, Any] = Body(...)):
    """Forward a completion request upstream unchanged."""
    provider = request.app.state.provider
    if provider is None:
        return JSONResponse(status_code=500, content={"error": MISSING_KEY_ERROR})

    model, messages = body.get("model"), body.get("messages")
    if not model or not isinstance(messages, list):
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})
    stream = bool(body.get("stream"))

    try:
        response = await provider.proxy({"model": model, "messages": messages, "stream": stream})
    except UpstreamUnavailableError as e:
        logger.error(f"Proxy request failed: {e}")
        return JSONResponse(
            status_code=500, content={"error": "Internal server error", "details": str(e)},
        )

    if not response.is_success:
        details = (await response.aread()).decode("utf-8", errors="replace")
        await response.aclose()
        logger.error(f"Upstream API error {response.status_code}: {details[:500]}")
        return JSONResponse(
            status_code=response.status_code,
            content={"error": f"API Error: {response.status_code}", "details": details},
        )

    if stream:
        return StreamingResponse(
            response.aiter_bytes(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
            background=BackgroundTask(response.aclose),
        )
    await response.aread()
    await response.aclose()
    return JSONResponse(content=response.json())


app.include_router(api)
