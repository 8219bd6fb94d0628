from typing import Any, Dict

import jsonschema

from layer_agent.domain.models.errors import ToolExecutionError
from layer_agent.domain.tool.tool_registry import ToolDefinition


# Parameter validation against the advertised input schema
class ToolInputValidator:
    @staticmethod
    def validate_tool_call(definition: ToolDefinition, tool_input: Dict[str, Any]) -> None:
        try:
            jsonschema.validate(tool_input, definition.input_schema)
        except jsonschema.ValidationError as e:
            raise ToolExecutionError(f"Invalid input: {e.message}") from e
