from typing import Any, AsyncIterable, Awaitable, Callable, Dict, List, Optional
import json
import structlog
from pydantic import BaseModel, Field

from layer_agent.domain.models.agent_state import (
    Message, MessageRole, TextBlock, ToolInvocation
)
from layer_agent.domain.models.errors import UpstreamProtocolError
from layer_agent.domain.streaming.event_stream import EventStreamBuffer

logger = structlog.get_logger(__name__)

DONE_SENTINEL = "[DONE]"

TextCallback = Callable[[str], Awaitable[None]]


class DecodedMessage(BaseModel):
    """Final result of decoding one provider response"""
    text: str = ""
    tool_invocations: List[ToolInvocation] = Field(default_factory=list)

    def to_message(self) -> Message:
        """Assistant message with a text block followed by tool_use blocks"""
        content = []
        if self.text:
            content.append(TextBlock(text=self.text))
        for invocation in self.tool_invocations:
            content.append(invocation.to_block())
        return Message(role=MessageRole.ASSISTANT, content=content)


class StreamDecoder:
    """Decodes the provider's streaming wire format for a single network call"""

    def __init__(self):
        self._frames = EventStreamBuffer()
        self._text_parts: List[str] = []
        self._tool_invocations: List[ToolInvocation] = []
        self._current_tool: Optional[ToolInvocation] = None
        self._input_json = ""
        self._finished = False

    def feed(self, chunk: bytes) -> List[str]:
        """Consume raw bytes and return the text deltas they produced"""

        self._check_open()
        return [delta for delta in map(self._handle_payload, self._frames.feed(chunk)) if delta]

    def finish(self) -> List[str]:
        """Flush the trailing record and close the decoder"""

        if self._finished:
            return []
        deltas = [delta for delta in map(self._handle_payload, self._frames.flush()) if delta]
        self._finished = True
        return deltas

    @property
    def result(self) -> DecodedMessage:
        return DecodedMessage(
            text="".join(self._text_parts),
            tool_invocations=list(self._tool_invocations)
        )

    async def decode(
        self,
        chunks: AsyncIterable[bytes],
        on_text: Optional[TextCallback] = None
    ) -> DecodedMessage:
        """Decode a whole response body, forwarding each text delta as its record is handled.

        Deltas that precede an ``error`` record in the same read are forwarded
        before the error is raised.
        """

        async for chunk in chunks:
            self._check_open()
            for payload in self._frames.feed(chunk):
                await self._forward(self._handle_payload(payload), on_text)
        for payload in self._frames.flush():
            await self._forward(self._handle_payload(payload), on_text)
        self._finished = True
        return self.result

    def _check_open(self):
        if self._finished:
            raise RuntimeError("StreamDecoder cannot be reused after finish()")

    @staticmethod
    async def _forward(delta: Optional[str], on_text: Optional[TextCallback]):
        if delta and on_text:
            await on_text(delta)

    def _handle_payload(self, payload: str) -> Optional[str]:
        if payload == DONE_SENTINEL:
            return None

        try:
            event = json.loads(payload)
        except (ValueError, RecursionError):
            logger.warning("Failed to parse stream record", payload=payload[:200])
            return None

        if not isinstance(event, dict):
            return None

        event_type = event.get("type")

        if event_type == "content_block_start":
            block = event.get("content_block")
            if isinstance(block, dict):
                self._start_block(block)
            elif block is not None:
                logger.warning("Skipping malformed content block", block_type=type(block).__name__)
        elif event_type == "content_block_delta":
            delta = event.get("delta")
            if isinstance(delta, dict):
                return self._apply_delta(delta)
            if delta is not None:
                logger.warning("Skipping malformed delta", delta_type=type(delta).__name__)
        elif event_type == "content_block_stop":
            self._stop_block()
        elif event_type == "error":
            error = event.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else None
            raise UpstreamProtocolError(message if isinstance(message, str) and message else "API error")
        return None

    def _start_block(self, block: Dict[str, Any]):
        if block.get("type") == "tool_use":
            self._current_tool = ToolInvocation(
                id=_as_text(block.get("id")),
                name=_as_text(block.get("name"))
            )
            self._input_json = ""

    def _apply_delta(self, delta: Dict[str, Any]) -> Optional[str]:
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text")
            if isinstance(text, str) and text:
                self._text_parts.append(text)
                return text
            if text is not None and not isinstance(text, str):
                logger.warning("Skipping non-string text delta", value_type=type(text).__name__)
        elif delta_type == "input_json_delta":
            partial = delta.get("partial_json")
            if isinstance(partial, str):
                self._input_json += partial
            elif partial is not None:
                logger.warning("Skipping non-string tool input fragment", value_type=type(partial).__name__)
        return None

    def _stop_block(self):
        if self._current_tool is None:
            return

        tool = self._current_tool
        tool.input = self._parse_input(tool, self._input_json)
        self._tool_invocations.append(tool)
        self._current_tool = None
        self._input_json = ""

    @staticmethod
    def _parse_input(tool: ToolInvocation, raw: str) -> Dict[str, Any]:
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except (ValueError, RecursionError):
            logger.warning("Malformed tool input, using empty input",
                           tool_name=tool.name, tool_use_id=tool.id)
            return {}
        return parsed if isinstance(parsed, dict) else {}


def _as_text(value: Any) -> str:
    """Coerce an identifier field to text; missing or null becomes empty"""
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
