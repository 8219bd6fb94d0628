from typing import Any, Awaitable, Callable, Optional
import inspect
import json
import time
import structlog

from layer_agent.application.api.schema.events import (
    ToolCall, ToolResultEvent, ToolUseEvent
)
from layer_agent.domain.models.agent_state import ToolInvocation, ToolStatus
from layer_agent.domain.tool.tool_registry import ToolRegistry
from layer_agent.domain.tool.tool_validator import ToolInputValidator
from layer_agent.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

EventEmitter = Callable[[Any], Awaitable[None]]


class ToolDispatcher:
    """Resolves tool invocations to registered handlers.

    Failures never propagate: an unknown tool or a raising handler becomes a
    textual result so the model can adapt on its next turn.
    """

    def __init__(self, registry: ToolRegistry, validator: Optional[ToolInputValidator] = None):
        self.registry = registry
        self.validator = validator or ToolInputValidator()

    async def dispatch(self, invocation: ToolInvocation, emit: Optional[EventEmitter] = None) -> ToolInvocation:
        """Execute one invocation, notifying ``emit`` before and after"""

        if emit:
            await emit(ToolUseEvent(tool=ToolCall.from_invocation(invocation)))

        started = time.perf_counter()
        handler = self.registry.get_handler(invocation.name)

        if handler is None:
            logger.warning("Unknown tool requested", tool_name=invocation.name)
            invocation.fail(f"Unknown tool: {invocation.name}")
        else:
            try:
                definition = self.registry.get_tool_info(invocation.name)
                self.validator.validate_tool_call(definition, invocation.input)
                result = handler(invocation.input)
                if inspect.isawaitable(result):
                    result = await result
                invocation.complete(self._to_text(result))
            except Exception as e:
                logger.warning("Tool execution failed", tool_name=invocation.name, error=str(e))
                invocation.fail(f"Error executing tool: {e}")

        duration_ms = (time.perf_counter() - started) * 1000
        success = invocation.status == ToolStatus.COMPLETE
        agent_logger.log_tool_execution(
            tool_name=invocation.name,
            tool_use_id=invocation.id,
            input_data=invocation.input,
            result=invocation.result,
            duration_ms=duration_ms,
            success=success,
        )
        metrics.record_latency("tool_execution", duration_ms, tags={"tool": invocation.name})
        metrics.increment_counter("tool.calls")
        if not success:
            metrics.increment_counter("tool.failures")

        if emit:
            await emit(ToolResultEvent(id=invocation.id, result=invocation.result or ""))

        return invocation

    @staticmethod
    def _to_text(result: Any) -> str:
        if isinstance(result, str):
            return result
        if result is None:
            return ""
        try:
            return json.dumps(result, indent=2, default=str)
        except (TypeError, ValueError):
            return str(result)
