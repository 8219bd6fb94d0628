from typing import Any, Dict, List, Optional
import asyncio

from layer_agent.domain.models.agent_state import Session


class TranscriptStore:
    """In-memory key-value store for per-session transcripts.

    Sessions are stored as plain JSON-compatible dicts so a loaded session
    never shares mutable state with the live one. Stream state is never
    persisted: a reloaded session always comes back idle.
    """

    def __init__(self):
        self.transcripts: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def save(self, session: Session) -> None:
        """Save a session transcript"""

        async with self._lock:
            self.transcripts[session.id] = session.model_dump(mode="json")

    async def load(self, session_id: str) -> Optional[Session]:
        """Load a session transcript, or None if unknown"""

        async with self._lock:
            data = self.transcripts.get(session_id)
            if data is None:
                return None
            return Session.model_validate(data)

    async def delete(self, session_id: str) -> bool:
        """Delete a session transcript"""

        async with self._lock:
            if session_id in self.transcripts:
                del self.transcripts[session_id]
                return True
            return False

    async def list_ids(self) -> List[str]:
        async with self._lock:
            return list(self.transcripts.keys())
