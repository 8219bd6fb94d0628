from typing import TypedDict, List, Dict, Any, Optional, Literal, AsyncIterator, Callable, Awaitable
from langgraph.graph import StateGraph, END
import asyncio
import contextlib
import time
import httpx
import structlog

from layer_agent.application.api.schema.events import (
    AgentEvent, DoneEvent, ErrorEvent, TextDeltaEvent
)
from layer_agent.domain.models.agent_state import (
    AgentStatus, Message, MessageRole, SessionMode, ToolInvocation, Turn
)
from layer_agent.domain.models.errors import (
    AgentError, ErrorCode, TurnBudgetExceeded, UpstreamHTTPError
)
from layer_agent.domain.orchestration.prompts import system_prompt_for
from layer_agent.domain.streaming.abort import AbortHandle
from layer_agent.domain.streaming.stream_decoder import StreamDecoder
from layer_agent.domain.tool.builtin.note_tools import build_tool_registry
from layer_agent.domain.tool.tool_executor import ToolDispatcher
from layer_agent.domain.tool.tool_registry import ToolRegistry
from layer_agent.infrastructure.config.settings import Settings, get_settings
from layer_agent.infrastructure.llm.anthropic_client import AnthropicMessagesClient
from layer_agent.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

MISSING_KEY_MESSAGE = "ANTHROPIC_API_KEY not configured"


class WorkflowState(TypedDict):
    """State for the agent loop graph"""
    messages: List[Message]
    system: str
    tools: Optional[List[Dict[str, Any]]]
    turn_count: int
    max_turns: int
    turns: List[Turn]
    pending_tools: List[ToolInvocation]
    outcome: Optional[AgentStatus]
    error: Optional[str]
    error_code: Optional[ErrorCode]
    error_status: Optional[int]
    abort: AbortHandle
    emit: Callable[[Any], Awaitable[None]]


class AgentOrchestrator:
    """Bounded request / tool-execution loop using LangGraph.

    Each request cycle streams one upstream response, forwards its text as it
    arrives and runs the requested tools in declared order before asking
    again. Events reach the caller through ``stream``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm_client: Optional[AnthropicMessagesClient] = None,
        tool_registry: Optional[ToolRegistry] = None,
    ):
        self.settings = settings or get_settings()
        self.llm_client = llm_client or AnthropicMessagesClient(self.settings)
        self.tool_registry = tool_registry if tool_registry is not None else build_tool_registry()
        self.dispatcher = ToolDispatcher(self.tool_registry)
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the agent loop graph"""

        workflow = StateGraph(WorkflowState)

        workflow.add_node("requester", self.request_node)
        workflow.add_node("tool_executor", self.tool_execution_node)
        workflow.add_node("finisher", self.finish_node)
        workflow.add_node("error_handler", self.error_handler_node)
        workflow.add_node("turn_limiter", self.turn_limit_node)

        workflow.set_entry_point("requester")

        workflow.add_conditional_edges(
            "requester",
            self.route_after_request,
            {
                "tools": "tool_executor",
                "done": "finisher",
                "error": "error_handler",
                "cancelled": END
            }
        )

        workflow.add_conditional_edges(
            "tool_executor",
            self.route_after_tools,
            {
                "continue": "requester",
                "turn_limit": "turn_limiter",
                "cancelled": END
            }
        )

        workflow.add_edge("finisher", END)
        workflow.add_edge("error_handler", END)
        workflow.add_edge("turn_limiter", END)

        return workflow.compile()

    def is_ready(self) -> bool:
        """Whether the upstream credential is configured"""
        return self.settings.has_credentials

    async def request_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Issue one streaming request and decode the response"""

        abort = state["abort"]
        if abort.aborted:
            return {"outcome": AgentStatus.CANCELLED}

        emit = state["emit"]
        turn_index = state["turn_count"] + 1
        payload = self.llm_client.build_payload(state["messages"], state["system"], state["tools"])

        async def on_text(text: str):
            await emit(TextDeltaEvent(text=text))

        started = time.perf_counter()
        try:
            async with self.llm_client.stream(payload) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "Upstream API error",
                        status_code=response.status_code,
                        body=body[:2000],
                        turn=turn_index
                    )
                    raise UpstreamHTTPError(response.status_code, body)
                decoded = await StreamDecoder().decode(abort.guard(response.aiter_bytes()), on_text)
        except AgentError as e:
            return {
                "outcome": AgentStatus.FAILED,
                "error": e.message,
                "error_code": e.code,
                "error_status": getattr(e, "status_code", None)
            }
        except httpx.HTTPError as e:
            logger.error("Upstream request failed", error=str(e), turn=turn_index)
            return {
                "outcome": AgentStatus.FAILED,
                "error": str(e) or e.__class__.__name__,
                "error_code": ErrorCode.INTERNAL_ERROR
            }
        finally:
            metrics.record_latency("upstream_request", (time.perf_counter() - started) * 1000)

        if abort.aborted:
            logger.info("Request cycle aborted", turn=turn_index)
            return {"outcome": AgentStatus.CANCELLED}

        metrics.increment_counter("agent.turns")
        turn = Turn(index=turn_index, text=decoded.text, tool_invocations=decoded.tool_invocations)

        return {
            "messages": state["messages"] + [decoded.to_message()],
            "turn_count": turn_index,
            "turns": state["turns"] + [turn],
            "pending_tools": decoded.tool_invocations,
            "outcome": AgentStatus.TOOLS if decoded.tool_invocations else AgentStatus.DONE
        }

    async def tool_execution_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Run every requested tool sequentially, in declared order"""

        abort = state["abort"]
        executed: List[ToolInvocation] = []
        for invocation in state["pending_tools"]:
            if abort.aborted:
                break
            executed.append(await self.dispatcher.dispatch(invocation, state["emit"]))

        results = Message(
            role=MessageRole.USER,
            content=[invocation.to_result_block() for invocation in executed]
        )
        return {
            "messages": state["messages"] + [results],
            "pending_tools": []
        }

    async def finish_node(self, state: WorkflowState) -> Dict[str, Any]:
        logger.info("Agent loop finished", turns=state["turn_count"])
        await state["emit"](DoneEvent())
        return {"outcome": AgentStatus.DONE}

    async def error_handler_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Emit the terminal error; there is no retry"""

        logger.error(
            "Agent loop failed",
            error=state.get("error"),
            error_code=state.get("error_code"),
            turns=state["turn_count"]
        )
        await state["emit"](ErrorEvent(
            message=state.get("error") or "Unknown error",
            code=state.get("error_code") or ErrorCode.INTERNAL_ERROR,
            status=state.get("error_status")
        ))
        return {"outcome": AgentStatus.FAILED}

    async def turn_limit_node(self, state: WorkflowState) -> Dict[str, Any]:
        error = TurnBudgetExceeded(state["max_turns"])
        logger.warning("Turn budget exhausted", max_turns=state["max_turns"])
        await state["emit"](ErrorEvent(message=error.message, code=error.code))
        return {"outcome": AgentStatus.TURN_LIMIT_EXCEEDED, "error": error.message, "error_code": error.code}

    def route_after_request(self, state: WorkflowState) -> Literal["tools", "done", "error", "cancelled"]:
        outcome = state.get("outcome")

        if outcome == AgentStatus.FAILED:
            route = "error"
        elif outcome == AgentStatus.CANCELLED:
            route = "cancelled"
        elif outcome == AgentStatus.TOOLS:
            route = "tools"
        else:
            route = "done"

        agent_logger.log_turn_transition("requester", route, state["turn_count"], condition=str(outcome))
        return route

    def route_after_tools(self, state: WorkflowState) -> Literal["continue", "turn_limit", "cancelled"]:
        if state["abort"].aborted:
            route = "cancelled"
        elif state["turn_count"] >= state["max_turns"]:
            route = "turn_limit"
        else:
            route = "continue"

        agent_logger.log_turn_transition("tool_executor", route, state["turn_count"])
        return route

    async def stream(
        self,
        prompt: str,
        history: Optional[List[Message]] = None,
        abort: Optional[AbortHandle] = None,
        mode: SessionMode = SessionMode.AGENT,
    ) -> AsyncIterator[AgentEvent]:
        """Run the loop for one prompt, yielding events as they are produced.

        Closing the iterator cancels the worker task.
        """

        if not self.is_ready():
            logger.error("Agent not configured", error=MISSING_KEY_MESSAGE)
            yield ErrorEvent(message=MISSING_KEY_MESSAGE, code=ErrorCode.CONFIGURATION_ERROR)
            return

        queue: asyncio.Queue = asyncio.Queue()

        async def emit(event: Any):
            await queue.put(event)

        messages = list(history or []) + [Message(role=MessageRole.USER, content=prompt)]
        tools = self.tool_registry.get_tool_schemas() if mode == SessionMode.AGENT else None
        initial_state: WorkflowState = {
            "messages": messages,
            "system": system_prompt_for(mode),
            "tools": tools or None,
            "turn_count": 0,
            "max_turns": self.settings.max_turns,
            "turns": [],
            "pending_tools": [],
            "outcome": AgentStatus.REQUESTING,
            "error": None,
            "error_code": None,
            "error_status": None,
            "abort": abort or AbortHandle(),
            "emit": emit
        }

        task = asyncio.create_task(self._drive(initial_state, queue))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _drive(self, state: WorkflowState, queue: asyncio.Queue):
        try:
            final_state = await self.workflow.ainvoke(
                state,
                config={"recursion_limit": state["max_turns"] * 2 + 5}
            )
            outcome = final_state.get("outcome")
            agent_logger.log_run_summary(
                outcome.value if isinstance(outcome, AgentStatus) else outcome,
                final_state.get("turns", [])
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Agent loop crashed", error=str(e), exc_info=True)
            await queue.put(ErrorEvent(message=str(e) or e.__class__.__name__, code=ErrorCode.INTERNAL_ERROR))
        finally:
            queue.put_nowait(None)

    async def aclose(self):
        await self.llm_client.aclose()
