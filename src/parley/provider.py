"""Upstream chat-completion providers.

Providers open a streaming completion request and yield the raw ``data:``
payloads of the response, already demultiplexed but not yet parsed.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from typing import Any

import httpx

from parley.demux import iter_payloads
from parley.errors import UpstreamHTTPError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

NEAR_AI_CLOUD_URL = "https://cloud-api.near.ai/v1"


class ModelProvider:
    """Interface every completion provider implements."""

    system = "unknown"

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
            tool_choice: Any = None,
    ) -> AsyncIterator[str]:
        raise NotImplementedError
        yield  # pragma: no cover

    async def aclose(self) -> None:
        pass


class OpenAICompatibleProvider(ModelProvider):
    """Any endpoint speaking the OpenAI chat-completions streaming format.

    Args:
        base_url: API root, e.g. ``https://api.openai.com/v1``.
        api_key: Bearer token sent with every request.
        timeout: Seconds allowed per network operation.
        transport: Optional ``httpx`` transport, used by tests.
    """

    system = "openai"

    def __init__(
            self,
            base_url: str,
            api_key: str | None = None,
            timeout: float = 600.0,
            transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def build_payload(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
            tool_choice: Any = None,
            stream: bool = True,
    ) -> dict:
        payload: dict[str, Any] = {"model": model, "messages": messages}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice or "auto"
        payload["stream"] = stream
        return payload

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
            tool_choice: Any = None,
    ) -> AsyncIterator[str]:
        payload = self.build_payload(model, messages, tools, tool_choice)
        logger.debug(f"POST {self.base_url}/chat/completions model={model} messages={len(messages)}")
        try:
            async with self.client.stream(
                "POST", "/chat/completions", json=payload,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Upstream API error {response.status_code}: {body[:500]}")
                    raise UpstreamHTTPError(response.status_code, body)
                async for data in iter_payloads(response.aiter_bytes()):
                    yield data
        except httpx.TransportError as e:
            logger.error(f"Upstream unreachable: {e!r}")
            raise UpstreamUnavailableError(
                f"Failed to reach completion endpoint: {e}"
            ) from e

    async def proxy(self, body: dict) -> httpx.Response:
        """Forward a raw completion request and return the open response.

        The caller must close the response.  Streaming responses are left
        unread so their bytes can be relayed as they arrive.
        """
        request = self.client.build_request(
            "POST", "/chat/completions", json=body,
        )
        try:
            return await self.client.send(request, stream=True)
        except httpx.TransportError as e:
            raise UpstreamUnavailableError(
                f"Failed to reach completion endpoint: {e}"
            ) from e

    async def aclose(self) -> None:
        await self.client.aclose()


class NearAICloudProvider(OpenAICompatibleProvider):

    system = "near_ai_cloud"

    def __init__(
            self,
            api_key: str | None = None,
            base_url: str = NEAR_AI_CLOUD_URL,
            timeout: float = 600.0,
            transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            api_key = os.getenv("NEAR_AI_CLOUD_API_KEY")
        super().__init__(
            base_url=base_url, api_key=api_key,
            timeout=timeout, transport=transport,
        )
