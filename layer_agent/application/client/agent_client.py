from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional
import json

import httpx
import structlog
from pydantic import ValidationError

from layer_agent.application.api.schema.events import AgentEvent, AgentRequest, parse_agent_event
from layer_agent.domain.models.errors import AgentServiceError
from layer_agent.domain.streaming.abort import AbortHandle
from layer_agent.domain.streaming.event_stream import EventStreamBuffer
from layer_agent.infrastructure.config.settings import get_settings

logger = structlog.get_logger(__name__)


class AgentEventDecoder:
    """Decodes the local endpoint's event stream into typed agent events.

    Malformed records and unknown event types are logged and skipped.
    """

    def __init__(self):
        self._frames = EventStreamBuffer()

    def feed(self, chunk: bytes) -> List[AgentEvent]:
        return self._parse(self._frames.feed(chunk))

    def flush(self) -> List[AgentEvent]:
        """Decode whatever is still buffered when the stream ends"""
        return self._parse(self._frames.flush())

    @property
    def pending(self) -> str:
        return self._frames.pending

    @staticmethod
    def _parse(payloads: List[str]) -> List[AgentEvent]:
        events = []
        for payload in payloads:
            try:
                data = json.loads(payload)
            except json.JSONDecodeError:
                logger.warning("Failed to parse agent event", payload=payload[:200])
                continue
            try:
                events.append(parse_agent_event(data))
            except ValidationError:
                logger.debug("Skipping unknown agent event", payload=payload[:200])
        return events


class AgentTransport(ABC):
    """Opens one agent request and yields the raw event-stream bytes"""

    @abstractmethod
    def open(self, request: AgentRequest, abort: AbortHandle) -> AsyncIterator[bytes]:
        pass


class HttpAgentTransport(AgentTransport):
    """Talks to the local agent endpoint over HTTP"""

    def __init__(self, url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.url = url or get_settings().agent_api_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(None))

    async def open(self, request: AgentRequest, abort: AbortHandle) -> AsyncIterator[bytes]:
        async with self._client.stream("POST", self.url, json=request.to_api()) as response:
            if not response.is_success:
                await response.aread()
                logger.error("Agent endpoint error", status_code=response.status_code, url=self.url)
                raise AgentServiceError(response.status_code)
            async for chunk in response.aiter_bytes():
                yield chunk

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()


class InProcessAgentTransport(AgentTransport):
    """Runs the orchestrator in the same event loop, encoding events as the endpoint would"""

    def __init__(self, orchestrator):
        self.orchestrator = orchestrator

    async def open(self, request: AgentRequest, abort: AbortHandle) -> AsyncIterator[bytes]:
        events = self.orchestrator.stream(
            request.prompt or "",
            request.conversation_history,
            abort=abort,
            mode=request.mode,
        )
        try:
            async for event in events:
                yield event.to_sse().encode("utf-8")
        finally:
            await events.aclose()
