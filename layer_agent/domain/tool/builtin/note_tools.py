from typing import Any, Dict, List, Optional
import json

from layer_agent.domain.context.memory.note_store import Folder, Item, NoteStore
from layer_agent.domain.tool.tool_registry import ToolDefinition, ToolRegistry


def _schema(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


def _string(description: str, **extra: Any) -> Dict[str, Any]:
    return {"type": "string", "description": description, **extra}


NOTE_TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        name="list_notes",
        description="List all notes with their id, name, folder_id, and timestamps",
        input_schema=_schema({}),
        category="notes",
    ),
    ToolDefinition(
        name="get_note",
        description="Get a note by ID with full content",
        input_schema=_schema({"note_id": _string("The UUID of the note to retrieve")}, ["note_id"]),
        category="notes",
    ),
    ToolDefinition(
        name="create_note",
        description="Create a new note with markdown content",
        input_schema=_schema(
            {
                "name": _string("Name/title of the note"),
                "content": _string(
                    "Markdown content for the note body. Do NOT include the title as a "
                    "heading - the name field is the title."
                ),
                "folder_id": _string("Optional folder ID to place the note in"),
            },
            ["name", "content"],
        ),
        category="notes",
    ),
    ToolDefinition(
        name="update_note",
        description=(
            "Update an existing note (name and/or content). Use get_note first to read "
            "current content before editing."
        ),
        input_schema=_schema(
            {
                "note_id": _string("The UUID of the note to update"),
                "name": _string("New name/title for the note"),
                "content": _string(
                    "New markdown content for the note body. Replaces all existing content."
                ),
            },
            ["note_id"],
        ),
        category="notes",
    ),
    ToolDefinition(
        name="append_to_note",
        description=(
            "Append markdown content to the end of an existing note "
            "(does not overwrite existing content)"
        ),
        input_schema=_schema(
            {
                "note_id": _string("The UUID of the note to append to"),
                "content": _string("Markdown content to append to the end of the note"),
            },
            ["note_id", "content"],
        ),
        category="notes",
    ),
    ToolDefinition(
        name="delete_note",
        description="Delete a note by ID",
        input_schema=_schema({"note_id": _string("The UUID of the note to delete")}, ["note_id"]),
        category="notes",
    ),
    ToolDefinition(
        name="open_note_tab",
        description="Open a note in a new browser tab. Returns an action for the frontend to execute.",
        input_schema=_schema(
            {
                "note_id": _string("The UUID of the note to open"),
                "note_name": _string("The name of the note (for display)"),
            },
            ["note_id"],
        ),
        category="actions",
    ),
    ToolDefinition(
        name="open_url_tab",
        description="Open a URL in a new browser tab. Returns an action for the frontend to execute.",
        input_schema=_schema(
            {
                "url": _string("The URL to open"),
                "title": _string("Title for the tab"),
            },
            ["url"],
        ),
        category="actions",
    ),
    ToolDefinition(
        name="list_folders",
        description="List all folders with hierarchy info (id, name, parent_id, order_index)",
        input_schema=_schema({}),
        category="folders",
    ),
    ToolDefinition(
        name="create_folder",
        description="Create a new folder",
        input_schema=_schema(
            {
                "name": _string("Folder name"),
                "parent_id": _string("Optional parent folder ID for nesting"),
            },
            ["name"],
        ),
        category="folders",
    ),
    ToolDefinition(
        name="move_folder",
        description="Move a folder to a different parent (or to root)",
        input_schema=_schema(
            {
                "folder_id": _string("Folder to move"),
                "parent_id": _string("Target parent folder ID (omit for root)"),
            },
            ["folder_id"],
        ),
        category="folders",
    ),
    ToolDefinition(
        name="move_item_to_folder",
        description="Move a note, objective, or task_list into a folder",
        input_schema=_schema(
            {
                "item_type": _string("Type of item to move", enum=["note", "objective", "task_list"]),
                "item_id": _string("Item UUID"),
                "folder_id": _string("Target folder ID (omit for unfiled)"),
            },
            ["item_type", "item_id"],
        ),
        category="folders",
    ),
    ToolDefinition(
        name="delete_folder",
        description="Delete a folder. Contents (items and child folders) move up to the parent folder.",
        input_schema=_schema({"folder_id": _string("Folder to delete")}, ["folder_id"]),
        category="folders",
    ),
]


def _dump(record: Any) -> str:
    if isinstance(record, list):
        data = [item.model_dump(mode="json") for item in record]
    else:
        data = record.model_dump(mode="json")
    return json.dumps(data, indent=2)


def _summary(note: Item) -> Dict[str, Any]:
    return note.model_dump(mode="json", include={"id", "name", "folder_id", "created_at", "updated_at"})


def _folder_summary(folder: Folder) -> Dict[str, Any]:
    return folder.model_dump(
        mode="json", include={"id", "name", "parent_id", "order_index", "created_at", "updated_at"}
    )


class NoteTools:
    """Tool handlers for note and folder management backed by a NoteStore"""

    def __init__(self, store: NoteStore):
        self.store = store

    async def list_notes(self, tool_input: Dict[str, Any]) -> str:
        notes = await self.store.list_notes()
        return json.dumps([_summary(note) for note in notes], indent=2)

    async def get_note(self, tool_input: Dict[str, Any]) -> str:
        note = await self.store.get_note(tool_input["note_id"])
        data = _summary(note)
        data["content"] = note.content
        return json.dumps(data, indent=2)

    async def create_note(self, tool_input: Dict[str, Any]) -> str:
        note = await self.store.create_note(
            tool_input["name"], tool_input["content"], tool_input.get("folder_id")
        )
        return f"Note created successfully:\n{_dump(note)}"

    async def update_note(self, tool_input: Dict[str, Any]) -> str:
        note = await self.store.update_note(
            tool_input["note_id"], tool_input.get("name"), tool_input.get("content")
        )
        return f"Note updated successfully:\n{_dump(note)}"

    async def append_to_note(self, tool_input: Dict[str, Any]) -> str:
        await self.store.append_to_note(tool_input["note_id"], tool_input["content"])
        return "Content appended to note successfully."

    async def delete_note(self, tool_input: Dict[str, Any]) -> str:
        await self.store.delete_note(tool_input["note_id"])
        return f"Note deleted successfully: {tool_input['note_id']}"

    async def open_note_tab(self, tool_input: Dict[str, Any]) -> str:
        return json.dumps({
            "action": "open_note_tab",
            "noteId": tool_input["note_id"],
            "noteName": tool_input.get("note_name") or "Note",
        })

    async def open_url_tab(self, tool_input: Dict[str, Any]) -> str:
        return json.dumps({
            "action": "open_url_tab",
            "url": tool_input["url"],
            "title": tool_input.get("title") or "Web",
        })

    async def list_folders(self, tool_input: Dict[str, Any]) -> str:
        folders = await self.store.list_folders()
        return json.dumps([_folder_summary(folder) for folder in folders], indent=2)

    async def create_folder(self, tool_input: Dict[str, Any]) -> str:
        folder = await self.store.create_folder(tool_input["name"], tool_input.get("parent_id"))
        return f"Folder created successfully:\n{_dump(folder)}"

    async def move_folder(self, tool_input: Dict[str, Any]) -> str:
        folder = await self.store.move_folder(tool_input["folder_id"], tool_input.get("parent_id"))
        return f"Folder moved successfully:\n{_dump(folder)}"

    async def move_item_to_folder(self, tool_input: Dict[str, Any]) -> str:
        item_type = tool_input["item_type"]
        folder_id = tool_input.get("folder_id")
        item = await self.store.move_item(item_type, tool_input["item_id"], folder_id)
        location = f"into folder {folder_id}" if folder_id else "to unfiled"
        return f"{item_type} moved {location}:\n{_dump(item)}"

    async def delete_folder(self, tool_input: Dict[str, Any]) -> str:
        folder_id = tool_input["folder_id"]
        parent_id = await self.store.delete_folder(folder_id)
        location = f"parent folder {parent_id}" if parent_id else "root"
        return f"Folder deleted successfully: {folder_id}. Contents moved to {location}."

    def register(self, registry: ToolRegistry):
        """Register every note and folder tool on ``registry``"""
        for definition in NOTE_TOOLS:
            registry.register_tool(definition, getattr(self, definition.name))


def build_tool_registry(store: Optional[NoteStore] = None) -> ToolRegistry:
    """Registry preloaded with the builtin note and folder tools"""
    registry = ToolRegistry()
    NoteTools(store or NoteStore()).register(registry)
    return registry
