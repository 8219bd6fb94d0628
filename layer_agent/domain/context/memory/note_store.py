from typing import Dict, List, Optional
from datetime import datetime
import asyncio
import uuid

from pydantic import BaseModel, Field


ITEM_TYPES = ("note", "objective", "task_list")


class NotFoundError(LookupError):
    """Requested record does not exist"""


class Folder(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    parent_id: Optional[str] = None
    order_index: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Item(BaseModel):
    """A note, objective or task list; notes carry markdown content"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    item_type: str = "note"
    name: str
    content: str = ""
    folder_id: Optional[str] = None
    order_index: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class NoteStore:
    """In-memory note and folder store reached only through tool handlers"""

    def __init__(self):
        self.items: Dict[str, Dict[str, Item]] = {item_type: {} for item_type in ITEM_TYPES}
        self.folders: Dict[str, Folder] = {}
        self._lock = asyncio.Lock()

    # Notes

    async def list_notes(self) -> List[Item]:
        async with self._lock:
            return sorted(self.items["note"].values(), key=lambda n: n.order_index)

    async def get_note(self, note_id: str) -> Item:
        async with self._lock:
            return self._get_item("note", note_id)

    async def create_note(self, name: str, content: str, folder_id: Optional[str] = None) -> Item:
        async with self._lock:
            if folder_id:
                self._get_folder(folder_id)
            note = Item(item_type="note", name=name, content=content, folder_id=folder_id)
            self.items["note"][note.id] = note
            return note

    async def update_note(self, note_id: str, name: Optional[str] = None, content: Optional[str] = None) -> Item:
        async with self._lock:
            note = self._get_item("note", note_id)
            if name is not None:
                note.name = name
            if content is not None:
                note.content = content
            note.updated_at = datetime.utcnow()
            return note

    async def append_to_note(self, note_id: str, content: str) -> Item:
        async with self._lock:
            note = self._get_item("note", note_id)
            note.content = f"{note.content}\n\n{content}" if note.content else content
            note.updated_at = datetime.utcnow()
            return note

    async def delete_note(self, note_id: str) -> None:
        async with self._lock:
            self._get_item("note", note_id)
            del self.items["note"][note_id]

    async def add_item(self, item_type: str, name: str, folder_id: Optional[str] = None) -> Item:
        """Add an objective or task list; these are managed elsewhere in the app"""
        async with self._lock:
            if item_type not in ITEM_TYPES:
                raise ValueError(f"Invalid item_type \"{item_type}\"")
            item = Item(item_type=item_type, name=name, folder_id=folder_id)
            self.items[item_type][item.id] = item
            return item

    async def move_item(self, item_type: str, item_id: str, folder_id: Optional[str]) -> Item:
        async with self._lock:
            if item_type not in ITEM_TYPES:
                raise ValueError(
                    f"Invalid item_type \"{item_type}\". Must be one of: {', '.join(ITEM_TYPES)}"
                )
            if folder_id:
                self._get_folder(folder_id)
            item = self._get_item(item_type, item_id)
            item.folder_id = folder_id or None
            item.updated_at = datetime.utcnow()
            return item

    # Folders

    async def list_folders(self) -> List[Folder]:
        async with self._lock:
            return sorted(self.folders.values(), key=lambda f: f.order_index)

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        async with self._lock:
            if parent_id:
                self._get_folder(parent_id)
            folder = Folder(name=name, parent_id=parent_id)
            self.folders[folder.id] = folder
            return folder

    async def move_folder(self, folder_id: str, parent_id: Optional[str] = None) -> Folder:
        async with self._lock:
            if folder_id == parent_id:
                raise ValueError("Cannot move a folder into itself")
            folder = self._get_folder(folder_id)
            if parent_id:
                if parent_id not in self.folders:
                    raise NotFoundError(f"Target parent folder not found: {parent_id}")
                current_id: Optional[str] = parent_id
                while current_id:
                    current = self.folders.get(current_id)
                    if current is None:
                        break
                    if current.parent_id == folder_id:
                        raise ValueError("Cannot move a folder into one of its descendants")
                    current_id = current.parent_id
            folder.parent_id = parent_id or None
            folder.updated_at = datetime.utcnow()
            return folder

    async def delete_folder(self, folder_id: str) -> Optional[str]:
        """Delete a folder, moving its children and items up; returns the parent id"""
        async with self._lock:
            folder = self._get_folder(folder_id)
            parent_id = folder.parent_id
            now = datetime.utcnow()

            for child in self.folders.values():
                if child.parent_id == folder_id:
                    child.parent_id = parent_id
                    child.updated_at = now

            for items in self.items.values():
                for item in items.values():
                    if item.folder_id == folder_id:
                        item.folder_id = parent_id
                        item.updated_at = now

            del self.folders[folder_id]
            return parent_id

    def _get_item(self, item_type: str, item_id: str) -> Item:
        item = self.items[item_type].get(item_id)
        if item is None:
            label = "Note" if item_type == "note" else item_type
            raise NotFoundError(f"{label} not found: {item_id}")
        return item

    def _get_folder(self, folder_id: str) -> Folder:
        folder = self.folders.get(folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder
