from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Error codes carried on terminal error events"""
    CONFIGURATION_ERROR = "configuration_error"
    UPSTREAM_HTTP_ERROR = "upstream_http_error"
    UPSTREAM_PROTOCOL_ERROR = "upstream_protocol_error"
    TOOL_EXECUTION_ERROR = "tool_execution_error"
    TURN_BUDGET_EXCEEDED = "turn_budget_exceeded"
    AGENT_SERVICE_ERROR = "agent_service_error"
    INTERNAL_ERROR = "internal_error"


class AgentError(Exception):
    """Base class for agent loop errors"""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(AgentError):
    """Missing or invalid configuration, raised before any network call"""
    code = ErrorCode.CONFIGURATION_ERROR


class UpstreamHTTPError(AgentError):
    """Non-2xx response from the provider"""
    code = ErrorCode.UPSTREAM_HTTP_ERROR

    def __init__(self, status_code: int, body: Optional[str] = None):
        super().__init__(f"API error: {status_code}")
        self.status_code = status_code
        self.body = body


class UpstreamProtocolError(AgentError):
    """Explicit error record inside the provider event stream"""
    code = ErrorCode.UPSTREAM_PROTOCOL_ERROR


class ToolExecutionError(AgentError):
    """Tool failure; always recovered into a textual tool result"""
    code = ErrorCode.TOOL_EXECUTION_ERROR


class TurnBudgetExceeded(AgentError):
    """The agent loop hit its request cycle limit"""
    code = ErrorCode.TURN_BUDGET_EXCEEDED

    def __init__(self, max_turns: int):
        super().__init__("Max turns reached")
        self.max_turns = max_turns


class AgentServiceError(AgentError):
    """Non-2xx response from the local agent endpoint"""
    code = ErrorCode.AGENT_SERVICE_ERROR

    def __init__(self, status_code: int):
        super().__init__(f"Server error: {status_code}")
        self.status_code = status_code
