from typing import Dict, Any, Optional, List, Literal, Union, Annotated
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from enum import Enum
import json

from layer_agent.domain.models.agent_state import Message, SessionMode, ToolInvocation
from layer_agent.domain.models.errors import ErrorCode


class AgentEventType(str, Enum):
    """Agent stream event types"""
    TEXT_DELTA = "text_delta"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    DONE = "done"
    ERROR = "error"


class BaseEvent(BaseModel):
    """Base event model for all agent stream records"""
    type: str

    def to_sse(self) -> str:
        """Encode as one ``data:`` event-stream record"""
        payload = self.model_dump(mode="json", exclude_none=True)
        return f"data: {json.dumps(payload)}\n\n"


class TextDeltaEvent(BaseEvent):
    """Incremental assistant text"""
    type: Literal["text_delta"] = AgentEventType.TEXT_DELTA.value
    text: str


class ToolCall(BaseModel):
    """Tool call as announced to the client"""
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_invocation(cls, invocation: ToolInvocation) -> "ToolCall":
        return cls(id=invocation.id, name=invocation.name, input=invocation.input)


class ToolUseEvent(BaseEvent):
    """A tool is about to run"""
    type: Literal["tool_use"] = AgentEventType.TOOL_USE.value
    tool: ToolCall


class ToolResultEvent(BaseEvent):
    """A tool finished with a textual result"""
    type: Literal["tool_result"] = AgentEventType.TOOL_RESULT.value
    id: str
    result: str


class DoneEvent(BaseEvent):
    """The agent loop finished normally"""
    type: Literal["done"] = AgentEventType.DONE.value


class ErrorEvent(BaseEvent):
    """Terminal error"""
    type: Literal["error"] = AgentEventType.ERROR.value
    message: str
    code: Optional[ErrorCode] = None
    status: Optional[int] = None


AgentEvent = Annotated[
    Union[TextDeltaEvent, ToolUseEvent, ToolResultEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type")
]

agent_event_adapter: TypeAdapter = TypeAdapter(AgentEvent)


def parse_agent_event(data: Dict[str, Any]) -> Union[TextDeltaEvent, ToolUseEvent, ToolResultEvent, DoneEvent, ErrorEvent]:
    """Validate a decoded record into its typed event; raises ValidationError"""
    return agent_event_adapter.validate_python(data)


class AgentRequest(BaseModel):
    """Body of the local agent endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    conversation_history: List[Message] = Field(default_factory=list, alias="conversationHistory")
    mode: SessionMode = SessionMode.AGENT

    def to_api(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "conversationHistory": [message.to_api() for message in self.conversation_history],
            "mode": self.mode.value,
        }


class ToolAction(BaseModel):
    """Client-side action returned by a tool result"""
    action: Literal["open_note_tab", "open_url_tab"]
    note_id: Optional[str] = Field(None, alias="noteId")
    note_name: Optional[str] = Field(None, alias="noteName")
    url: Optional[str] = None
    title: Optional[str] = None

    @classmethod
    def from_result(cls, result: str) -> Optional["ToolAction"]:
        """Parse a tool result into an action, or None if it is not one"""
        try:
            data = json.loads(result)
        except (TypeError, json.JSONDecodeError):
            return None
        if not isinstance(data, dict) or "action" not in data:
            return None
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None
