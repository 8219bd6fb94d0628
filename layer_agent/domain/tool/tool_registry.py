from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from pydantic import BaseModel, Field


ToolHandler = Callable[[Dict[str, Any]], Union[Awaitable[Any], Any]]


class ToolDefinition(BaseModel):
    """Tool schema as advertised to the model"""
    name: str
    description: str
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    category: str = "general"

    def to_api(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self):
        self.tools: Dict[str, ToolDefinition] = {}
        self.handlers: Dict[str, ToolHandler] = {}
        self.tool_categories: Dict[str, List[str]] = {}

    def register_tool(self, definition: ToolDefinition, handler: ToolHandler):
        """Register a new tool"""

        name = definition.name
        if name in self.tools:
            raise ValueError(f"Tool already registered: {name}")

        self.tools[name] = definition
        self.handlers[name] = handler

        if definition.category not in self.tool_categories:
            self.tool_categories[definition.category] = []
        self.tool_categories[definition.category].append(name)

    def get_handler(self, name: str) -> Optional[ToolHandler]:
        return self.handlers.get(name)

    def get_tool_info(self, name: str) -> Optional[ToolDefinition]:
        """Get information about a specific tool"""

        return self.tools.get(name)

    def get_tool_schemas(self) -> List[Dict[str, Any]]:
        """Tool schema list in the provider's request format"""

        return [definition.to_api() for definition in self.tools.values()]

    def get_tools_by_category(self, category: str) -> List[ToolDefinition]:
        """Get tools by category"""

        names = self.tool_categories.get(category, [])
        return [self.tools[name] for name in names if name in self.tools]

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def __len__(self) -> int:
        return len(self.tools)
