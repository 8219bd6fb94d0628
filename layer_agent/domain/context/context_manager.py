from typing import Any, Dict, List

from layer_agent.domain.models.agent_state import ContextItem

CONTEXT_HEADER = "--- Selected Context ---\n"
CONTEXT_FOOTER = "\n--- End Context ---\n\n"


def _describe(item: ContextItem) -> str:
    lines = [f"[{item.type}: {item.name}]"]
    data: Dict[str, Any] = item.data or {}

    if item.type == "Objective":
        if data.get("description"):
            lines.append(f"Description: {data['description']}")
        priorities = data.get("priorities") or []
        if priorities:
            lines.append("Priorities:")
            for priority in priorities:
                detail = f": {priority['description']}" if priority.get("description") else ""
                lines.append(f"  - {priority.get('name', '')}{detail}")
        steps = data.get("steps") or []
        if steps:
            lines.append("Steps:")
            for step in steps:
                status = f" ({step['status']})" if step.get("status") else ""
                lines.append(f"  - {step.get('name', '')}{status}")
    elif item.type == "Note":
        if data.get("content"):
            lines.append(f"Content: {data['content']}")
    elif item.type == "Folder":
        if data.get("name"):
            lines.append(f"Folder: {data['name']}")

    return "\n".join(lines)


def serialize_context_for_prompt(items: List[ContextItem]) -> str:
    """Render selected context items as a prompt prefix; empty when none"""

    if not items:
        return ""
    blocks = [_describe(item) for item in items]
    return CONTEXT_HEADER + "\n\n".join(blocks) + CONTEXT_FOOTER


def build_prompt(prompt: str, items: List[ContextItem]) -> str:
    return serialize_context_for_prompt(items) + prompt
