import asyncio

import httpx
import pytest

from conftest import (
    ScriptedUpstream, echo_registry, finish_records, make_orchestrator, make_settings,
    sse, text_records, text_response, tool_records, tool_response
)

from layer_agent.application.api.schema.events import (
    DoneEvent, ErrorEvent, TextDeltaEvent, ToolResultEvent, ToolUseEvent
)
from layer_agent.domain.models.agent_state import Message, MessageRole, SessionMode
from layer_agent.domain.models.errors import ErrorCode
from layer_agent.domain.streaming.abort import AbortHandle
from layer_agent.domain.tool.tool_registry import ToolDefinition
from layer_agent.infrastructure.observability.logging import agent_logger


async def collect(orchestrator, prompt="hello", **kwargs):
    return [event async for event in orchestrator.stream(prompt, **kwargs)]


@pytest.mark.asyncio
async def test_response_without_tools_finishes_with_one_done():
    upstream = ScriptedUpstream([text_response("Hi ", "there")])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    events = await collect(orchestrator)

    assert [event.text for event in events if isinstance(event, TextDeltaEvent)] == ["Hi ", "there"]
    assert sum(isinstance(event, DoneEvent) for event in events) == 1
    assert not any(isinstance(event, ToolUseEvent) for event in events)
    assert isinstance(events[-1], DoneEvent)
    assert upstream.calls == 1


@pytest.mark.asyncio
async def test_request_carries_history_system_and_tools():
    upstream = ScriptedUpstream([text_response("ok")])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())
    history = [
        Message(role=MessageRole.USER, content="earlier"),
        Message(role=MessageRole.ASSISTANT, content="reply"),
    ]

    await collect(orchestrator, "now", history=history)

    [body] = upstream.requests
    assert body["stream"] is True
    assert body["model"] == orchestrator.settings.anthropic_model
    assert body["max_tokens"] == orchestrator.settings.anthropic_max_tokens
    assert "Layer" in body["system"]
    assert [tool["name"] for tool in body["tools"]] == ["echo"]
    assert body["messages"] == [
        {"role": "user", "content": "earlier"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "now"},
    ]
    headers = upstream.headers[0]
    assert headers["x-api-key"] == "test-key"
    assert headers["anthropic-version"] == "2023-06-01"


@pytest.mark.asyncio
async def test_ask_mode_sends_no_tools():
    upstream = ScriptedUpstream([text_response("answer")])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    events = await collect(orchestrator, mode=SessionMode.ASK)

    assert "tools" not in upstream.requests[0]
    assert "Ask mode" in upstream.requests[0]["system"]
    assert isinstance(events[-1], DoneEvent)


@pytest.mark.asyncio
async def test_tools_run_in_declared_order_before_next_request():
    first = sse(
        *text_records("Let me check"),
        *tool_records("toolu_a", "echo", '{"value": "one"}', index=1),
        *tool_records("toolu_b", "echo", '{"value": "two"}', index=2),
        *finish_records()
    )
    upstream = ScriptedUpstream([first, text_response("Done.")])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    events = await collect(orchestrator)

    tool_events = [event for event in events if isinstance(event, (ToolUseEvent, ToolResultEvent))]
    assert [(type(event).__name__, getattr(event, "id", None) or event.tool.id) for event in tool_events] == [
        ("ToolUseEvent", "toolu_a"),
        ("ToolResultEvent", "toolu_a"),
        ("ToolUseEvent", "toolu_b"),
        ("ToolResultEvent", "toolu_b"),
    ]
    assert isinstance(events[-1], DoneEvent)

    second_request = upstream.requests[1]["messages"]
    assert second_request[-2]["role"] == "assistant"
    assert second_request[-2]["content"][0] == {"type": "text", "text": "Let me check"}
    assert second_request[-1] == {
        "role": "user",
        "content": [
            {"type": "tool_result", "tool_use_id": "toolu_a", "content": "echo: one"},
            {"type": "tool_result", "tool_use_id": "toolu_b", "content": "echo: two"},
        ],
    }


@pytest.mark.asyncio
async def test_unknown_tool_is_fed_back_to_the_model():
    upstream = ScriptedUpstream([tool_response("toolu_x", "teleport", {}), text_response("Sorry")])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    events = await collect(orchestrator)

    results = [event for event in events if isinstance(event, ToolResultEvent)]
    assert results[0].result == "Unknown tool: teleport"
    assert isinstance(events[-1], DoneEvent)
    assert upstream.requests[1]["messages"][-1]["content"][0]["content"] == "Unknown tool: teleport"


@pytest.mark.asyncio
async def test_turn_budget_stops_after_tenth_request():
    upstream = ScriptedUpstream([tool_response("toolu_loop", "echo", {"value": "again"})])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    events = await collect(orchestrator)

    assert upstream.calls == 10
    assert sum(isinstance(event, ToolResultEvent) for event in events) == 10
    assert not any(isinstance(event, DoneEvent) for event in events)
    assert isinstance(events[-1], ErrorEvent)
    assert events[-1].message == "Max turns reached"
    assert events[-1].code == ErrorCode.TURN_BUDGET_EXCEEDED


@pytest.mark.asyncio
async def test_turn_budget_is_configurable():
    upstream = ScriptedUpstream([tool_response("toolu_loop", "echo", {})])
    orchestrator = make_orchestrator(upstream, settings=make_settings(max_turns=3), tool_registry=echo_registry())

    events = await collect(orchestrator)

    assert upstream.calls == 3
    assert events[-1].message == "Max turns reached"


@pytest.mark.asyncio
async def test_non_2xx_fails_without_retry():
    upstream = ScriptedUpstream([httpx.Response(529, text='{"error": "overloaded"}')])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    events = await collect(orchestrator)

    assert upstream.calls == 1
    assert events == [ErrorEvent(message="API error: 529", code=ErrorCode.UPSTREAM_HTTP_ERROR, status=529)]


@pytest.mark.asyncio
async def test_error_record_in_stream_is_terminal():
    data = sse(*text_records("par"), {"type": "error", "error": {"message": "Overloaded"}})
    upstream = ScriptedUpstream([data])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    events = await collect(orchestrator)

    assert events[0] == TextDeltaEvent(text="par")
    assert events[-1].message == "Overloaded"
    assert events[-1].code == ErrorCode.UPSTREAM_PROTOCOL_ERROR


@pytest.mark.asyncio
async def test_network_failure_is_terminal():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    settings = make_settings()
    orchestrator = make_orchestrator(ScriptedUpstream([b""]), settings=settings, tool_registry=echo_registry())
    orchestrator.llm_client._client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))

    events = await collect(orchestrator)

    assert len(events) == 1
    assert events[0].message == "connection refused"


@pytest.mark.asyncio
async def test_missing_credential_fails_before_any_request():
    upstream = ScriptedUpstream([text_response("unreachable")])
    orchestrator = make_orchestrator(upstream, settings=make_settings(anthropic_api_key=None))

    events = await collect(orchestrator)

    assert not orchestrator.is_ready()
    assert upstream.calls == 0
    assert events == [ErrorEvent(message="ANTHROPIC_API_KEY not configured", code=ErrorCode.CONFIGURATION_ERROR)]


@pytest.mark.asyncio
async def test_aborted_before_request_ends_silently():
    upstream = ScriptedUpstream([text_response("unreachable")])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())
    abort = AbortHandle()
    abort.abort()

    events = await collect(orchestrator, abort=abort)

    assert events == []
    assert upstream.calls == 0


@pytest.mark.asyncio
async def test_abort_between_turns_prevents_next_request():
    abort = AbortHandle()
    registry = echo_registry()
    registry.register_tool(
        ToolDefinition(name="stop", description="Abort the run"),
        lambda tool_input: abort.abort("stopped by tool") or "stopping",
    )
    upstream = ScriptedUpstream([tool_response("toolu_1", "stop", {}), text_response("never")])
    orchestrator = make_orchestrator(upstream, tool_registry=registry)

    events = await collect(orchestrator, "go", abort=abort)

    assert upstream.calls == 1
    assert [event.result for event in events if isinstance(event, ToolResultEvent)] == ["stopping"]
    assert not any(isinstance(event, (DoneEvent, ErrorEvent)) for event in events)


@pytest.mark.asyncio
async def test_closing_the_stream_cancels_the_worker():
    upstream = ScriptedUpstream([text_response("a", "b", "c")])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    events = orchestrator.stream("hello")
    first = await events.__anext__()
    await events.aclose()
    await asyncio.sleep(0)

    assert first == TextDeltaEvent(text="a")


@pytest.mark.asyncio
async def test_run_summary_reports_each_turn(monkeypatch):
    summaries = []
    monkeypatch.setattr(agent_logger, "log_run_summary", lambda outcome, turns: summaries.append((outcome, turns)))
    upstream = ScriptedUpstream([
        tool_response("toolu_1", "echo", {"value": "x"}, text="Checking"),
        text_response("All set"),
    ])
    orchestrator = make_orchestrator(upstream, tool_registry=echo_registry())

    await collect(orchestrator)

    [(outcome, turns)] = summaries
    assert outcome == "done"
    assert [turn.index for turn in turns] == [1, 2]
    assert [turn.text for turn in turns] == ["Checking", "All set"]
    assert [[invocation.name for invocation in turn.tool_invocations] for turn in turns] == [["echo"], []]
