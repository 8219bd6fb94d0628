from typing import Dict, Any, List, Optional, Union, Literal, Annotated
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import uuid


DEFAULT_SESSION_TITLE = "New Chat"
TITLE_MAX_LENGTH = 30


class AgentStatus(str, Enum):
    """Agent loop outcome for a single invocation"""
    REQUESTING = "requesting"
    TOOLS = "tools"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TURN_LIMIT_EXCEEDED = "turn_limit_exceeded"


class MessageRole(str, Enum):
    """Conversation message role"""
    USER = "user"
    ASSISTANT = "assistant"


class SessionMode(str, Enum):
    """Chat session mode"""
    AGENT = "Agent"
    ASK = "Ask"


class ToolStatus(str, Enum):
    """Tool invocation status"""
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type")
]


class Message(BaseModel):
    """A single conversation message"""
    role: MessageRole
    content: Union[str, List[ContentBlock]]

    def to_api(self) -> Dict[str, Any]:
        """Wire representation for the provider and the local endpoint"""
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [block.model_dump(mode="json") for block in self.content]
        return {"role": self.role.value, "content": content}

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))


class ToolInvocation(BaseModel):
    """A model-requested call to a named tool"""
    id: str = Field(description="Provider-assigned tool use id")
    name: str = Field(description="Registered tool name")
    input: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[str] = Field(None, description="Textual tool result")
    status: ToolStatus = Field(default=ToolStatus.PENDING)

    def complete(self, result: str):
        self.result = result
        self.status = ToolStatus.COMPLETE

    def fail(self, result: str):
        self.result = result
        self.status = ToolStatus.FAILED

    def to_block(self) -> ToolUseBlock:
        return ToolUseBlock(id=self.id, name=self.name, input=self.input)

    def to_result_block(self) -> ToolResultBlock:
        return ToolResultBlock(tool_use_id=self.id, content=self.result or "")


class Turn(BaseModel):
    """One request/response cycle of the agent loop"""
    index: int
    text: str = ""
    tool_invocations: List[ToolInvocation] = Field(default_factory=list)


class ContextItem(BaseModel):
    """An item the user attached to a session as extra prompt context"""
    id: str
    type: Literal["Objective", "Note", "Folder"]
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """An independent conversation (chat tab)"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str = DEFAULT_SESSION_TITLE
    messages: List[Message] = Field(default_factory=list)
    mode: SessionMode = Field(default=SessionMode.AGENT)
    selected_context: List[ContextItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def append(self, message: Message):
        """Append a message to the conversation history"""
        self.messages.append(message)
        self.updated_at = datetime.utcnow()

    def refresh_title(self):
        """Derive a title from the first user message while still untitled"""
        if self.title != DEFAULT_SESSION_TITLE:
            return
        for message in self.messages:
            if message.role == MessageRole.USER:
                text = message.text
                suffix = "..." if len(text) > TITLE_MAX_LENGTH else ""
                self.title = text[:TITLE_MAX_LENGTH] + suffix
                return

    def clear(self):
        self.messages = []
        self.title = DEFAULT_SESSION_TITLE
        self.updated_at = datetime.utcnow()
