"""
Pytest configuration and shared fixtures
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from layer_agent.application.api.schema.events import AgentRequest
from layer_agent.application.client.agent_client import AgentTransport
from layer_agent.domain.context.memory.transcript_store import TranscriptStore
from layer_agent.domain.orchestration.core.main_agent import AgentOrchestrator
from layer_agent.domain.streaming.abort import AbortHandle
from layer_agent.domain.streaming.session_registry import (
    RenderSink, SessionPresenter, SessionStreamRegistry
)
from layer_agent.domain.tool.tool_registry import ToolDefinition, ToolRegistry
from layer_agent.infrastructure.config.settings import Settings
from layer_agent.infrastructure.llm.anthropic_client import AnthropicMessagesClient


# Wire helpers

def sse(*records: Any) -> bytes:
    """Encode records as ``data:`` lines; strings are sent verbatim"""
    lines = []
    for record in records:
        payload = record if isinstance(record, str) else json.dumps(record)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode("utf-8")


def text_records(*parts: str) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = [
        {"type": "message_start", "message": {"id": "msg_1"}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    ]
    for part in parts:
        records.append({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": part}})
    records.append({"type": "content_block_stop", "index": 0})
    return records


def tool_records(tool_id: str, name: str, input_json: str, index: int = 1) -> List[Dict[str, Any]]:
    return [
        {"type": "content_block_start", "index": index,
         "content_block": {"type": "tool_use", "id": tool_id, "name": name, "input": {}}},
        {"type": "content_block_delta", "index": index,
         "delta": {"type": "input_json_delta", "partial_json": input_json}},
        {"type": "content_block_stop", "index": index},
    ]


def finish_records() -> List[Dict[str, Any]]:
    return [
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}},
        {"type": "message_stop"},
    ]


def text_response(*parts: str) -> bytes:
    return sse(*text_records(*parts), *finish_records())


def tool_response(tool_id: str, name: str, tool_input: Dict[str, Any], text: str = "") -> bytes:
    records = text_records(text) if text else []
    records += tool_records(tool_id, name, json.dumps(tool_input))
    return sse(*records, *finish_records())


class ScriptedUpstream:
    """httpx.MockTransport handler replaying canned provider responses.

    Once the script runs out the last response is repeated.
    """

    def __init__(self, responses: List[Any]):
        self.responses = responses
        self.requests: List[Dict[str, Any]] = []
        self.headers: List[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, content=response, headers={"content-type": "text/event-stream"})

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {"anthropic_api_key": "test-key", "max_turns": 10}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_orchestrator(
    upstream: ScriptedUpstream,
    settings: Optional[Settings] = None,
    tool_registry: Optional[ToolRegistry] = None,
) -> AgentOrchestrator:
    settings = settings or make_settings()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return AgentOrchestrator(
        settings=settings,
        llm_client=AnthropicMessagesClient(settings, http_client=http_client),
        tool_registry=tool_registry,
    )


def echo_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_tool(
        ToolDefinition(
            name="echo",
            description="Echo a value back",
            input_schema={"type": "object", "properties": {"value": {"type": "string"}}, "required": []},
        ),
        lambda tool_input: f"echo: {tool_input.get('value', '')}",
    )
    return registry


async def wait_until(predicate: Callable[[], Any], timeout: float = 2.0):
    """Poll ``predicate`` until it is truthy"""

    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


# Client-side doubles

class RecordingSink(RenderSink):
    def __init__(self, session_id: str):
        self.session_id = session_id
        self.writes: List[str] = []
        self.ended = False

    def write(self, chunk: str):
        assert not self.ended, "write after end"
        self.writes.append(chunk)

    def end(self):
        self.ended = True

    @property
    def text(self) -> str:
        return "".join(self.writes)


class RecordingPresenter(SessionPresenter):
    def __init__(self):
        self.sinks: List[RecordingSink] = []
        self.shown: List[str] = []
        self.events: List[Any] = []
        self.errors: List[Any] = []
        self.actions: List[Any] = []

    def show_session(self, session):
        self.shown.append(session.id)

    def create_sink(self, session_id: str) -> RecordingSink:
        sink = RecordingSink(session_id)
        self.sinks.append(sink)
        return sink

    def show_event(self, session_id: str, event):
        self.events.append((session_id, event))

    def show_error(self, session_id: str, message: str):
        self.errors.append((session_id, message))

    def execute_action(self, action):
        self.actions.append(action)

    def sinks_for(self, session_id: str) -> List[RecordingSink]:
        return [sink for sink in self.sinks if sink.session_id == session_id]


class ScriptedTransport(AgentTransport):
    """Agent transport whose streams are fed by the test, one channel per request"""

    def __init__(self):
        self.requests: List[AgentRequest] = []
        self.channels: List[asyncio.Queue] = []

    def open(self, request: AgentRequest, abort: AbortHandle):
        channel: asyncio.Queue = asyncio.Queue()
        self.requests.append(request)
        self.channels.append(channel)
        return self._drain(channel)

    @staticmethod
    async def _drain(channel: asyncio.Queue):
        while True:
            item = await channel.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, index: int, *events: Dict[str, Any]):
        self.channels[index].put_nowait(sse(*events))

    def push_raw(self, index: int, chunk: bytes):
        self.channels[index].put_nowait(chunk)

    def close(self, index: int):
        self.channels[index].put_nowait(None)

    def fail(self, index: int, error: Exception):
        self.channels[index].put_nowait(error)


@pytest.fixture
def presenter() -> RecordingPresenter:
    return RecordingPresenter()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def transcript_store() -> TranscriptStore:
    return TranscriptStore()


@pytest.fixture
def registry(transport, presenter, transcript_store) -> SessionStreamRegistry:
    return SessionStreamRegistry(transport, presenter, transcript_store)
