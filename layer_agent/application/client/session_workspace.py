from typing import List, Optional
import structlog

from layer_agent.domain.context.memory.transcript_store import TranscriptStore
from layer_agent.domain.models.agent_state import (
    ContextItem, DEFAULT_SESSION_TITLE, Session, SessionMode
)
from layer_agent.domain.streaming.session_registry import SessionStreamRegistry, StreamState

logger = structlog.get_logger(__name__)


class SessionWorkspace:
    """Chat tabs: an ordered set of sessions with exactly one focused"""

    def __init__(self, registry: SessionStreamRegistry, transcript_store: Optional[TranscriptStore] = None):
        self.registry = registry
        self.transcript_store = transcript_store or registry.transcript_store or TranscriptStore()
        if registry.transcript_store is None:
            registry.transcript_store = self.transcript_store
        self.session_order: List[str] = []
        self.focused_session_id: Optional[str] = None
        self.default_mode = SessionMode.AGENT

    @property
    def sessions(self) -> List[Session]:
        return [self.registry.sessions[session_id] for session_id in self.session_order]

    @property
    def focused_session(self) -> Optional[Session]:
        if self.focused_session_id is None:
            return None
        return self.registry.sessions.get(self.focused_session_id)

    def get_session(self, session_id: str) -> Session:
        session = self.registry.sessions.get(session_id)
        if session is None or session_id not in self.session_order:
            raise KeyError(f"Unknown session: {session_id}")
        return session

    async def new_chat(self, title: str = DEFAULT_SESSION_TITLE) -> Session:
        """Create a session, persist it and focus it"""

        session = Session(title=title, mode=self.default_mode)
        self.registry.register_session(session)
        self.session_order.append(session.id)
        await self.transcript_store.save(session)

        logger.info("Session created", session_id=session.id, mode=session.mode.value)
        self.focus(session.id)
        return session

    async def restore(self, session_id: str) -> Optional[Session]:
        """Reopen a persisted session; it always comes back idle"""

        session = await self.transcript_store.load(session_id)
        if session is None:
            return None
        if session_id not in self.session_order:
            self.registry.register_session(session)
            self.session_order.append(session_id)
        return session

    async def restore_all(self) -> List[Session]:
        """Reopen every persisted session and focus the most recently updated one"""

        restored = []
        for session_id in await self.transcript_store.list_ids():
            session = await self.restore(session_id)
            if session is not None:
                restored.append(session)

        if restored and self.focused_session_id is None:
            latest = max(restored, key=lambda session: session.updated_at)
            self.focus(latest.id)

        logger.info("Sessions restored", count=len(restored))
        return restored

    def focus(self, session_id: str):
        session = self.get_session(session_id)
        previous = self.focused_session_id
        self.focused_session_id = session_id
        self.registry.presenter.show_session(session)
        self.registry.focus_change(previous, session_id)

    async def close(self, session_id: str):
        """Destroy a session; the last remaining session is cleared instead"""

        self.get_session(session_id)

        if len(self.session_order) == 1:
            await self.clear_messages(session_id)
            return

        index = self.session_order.index(session_id)
        was_focused = session_id == self.focused_session_id

        await self.registry.destroy(session_id)
        self.session_order.remove(session_id)

        if was_focused:
            self.focused_session_id = None
            neighbour = self.session_order[min(index, len(self.session_order) - 1)]
            self.focus(neighbour)

        logger.info("Session closed", session_id=session_id)

    async def send(self, prompt: str) -> Optional[StreamState]:
        """Start a turn on the focused session; None if it is already streaming"""

        session = self.focused_session
        if session is None or not prompt.strip():
            return None

        state = await self.registry.start_turn(session.id, prompt)
        if state is not None:
            session.refresh_title()
            await self.transcript_store.save(session)
        return state

    async def cancel(self) -> bool:
        if self.focused_session_id is None:
            return False
        return await self.registry.cancel(self.focused_session_id)

    async def set_mode(self, mode: SessionMode, session_id: Optional[str] = None):
        """Set the mode for a session; also becomes the default for new chats"""

        session = self.get_session(session_id or self.focused_session_id)
        session.mode = mode
        self.default_mode = mode
        await self.transcript_store.save(session)

    async def add_context(self, item: ContextItem, session_id: Optional[str] = None) -> bool:
        session = self.get_session(session_id or self.focused_session_id)
        if any(existing.id == item.id and existing.type == item.type for existing in session.selected_context):
            return False
        session.selected_context.append(item)
        await self.transcript_store.save(session)
        return True

    async def remove_context(self, item_id: str, session_id: Optional[str] = None) -> bool:
        session = self.get_session(session_id or self.focused_session_id)
        remaining = [item for item in session.selected_context if item.id != item_id]
        if len(remaining) == len(session.selected_context):
            return False
        session.selected_context = remaining
        await self.transcript_store.save(session)
        return True

    async def rename(self, session_id: str, title: str):
        session = self.get_session(session_id)
        session.title = title.strip() or DEFAULT_SESSION_TITLE
        await self.transcript_store.save(session)

    async def clear_messages(self, session_id: Optional[str] = None):
        """Cancel any live turn and reset the transcript"""

        session = self.get_session(session_id or self.focused_session_id)
        await self.registry.cancel(session.id)
        session.clear()
        await self.transcript_store.save(session)
        if session.id == self.focused_session_id:
            self.registry.presenter.show_session(session)

    async def aclose(self):
        await self.registry.aclose()
