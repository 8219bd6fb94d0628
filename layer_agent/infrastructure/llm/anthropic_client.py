from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from layer_agent.domain.models.agent_state import Message
from layer_agent.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)


class AnthropicMessagesClient:
    """Streaming client for the upstream Messages API.

    One ``httpx.AsyncClient`` is shared across requests. A client passed in by
    the caller is not closed by ``aclose``.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.upstream_timeout_seconds)
        )

    def build_payload(
        self,
        messages: List[Message],
        system: str,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.settings.anthropic_model,
            "max_tokens": self.settings.anthropic_max_tokens,
            "system": system,
            "messages": [message.to_api() for message in messages],
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        return payload

    def _headers(self) -> Dict[str, str]:
        return {
            "content-type": "application/json",
            "x-api-key": self.settings.anthropic_api_key or "",
            "anthropic-version": self.settings.anthropic_version,
        }

    @asynccontextmanager
    async def stream(self, payload: Dict[str, Any]) -> AsyncIterator[httpx.Response]:
        """Open one streaming POST; the response body is read by the caller"""

        logger.debug(
            "Opening upstream stream",
            url=self.settings.anthropic_api_url,
            model=payload.get("model"),
            message_count=len(payload.get("messages", [])),
        )
        async with self._client.stream(
            "POST",
            self.settings.anthropic_api_url,
            json=payload,
            headers=self._headers(),
            timeout=httpx.Timeout(self.settings.upstream_timeout_seconds),
        ) as response:
            yield response

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
