from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import asyncio
import contextlib

import httpx
import structlog

from layer_agent.application.api.schema.events import (
    AgentEvent, AgentRequest, DoneEvent, ErrorEvent, TextDeltaEvent,
    ToolAction, ToolResultEvent, ToolUseEvent
)
from layer_agent.application.client.agent_client import AgentEventDecoder, AgentTransport
from layer_agent.domain.context.context_manager import build_prompt
from layer_agent.domain.context.memory.transcript_store import TranscriptStore
from layer_agent.domain.models.agent_state import Message, MessageRole, Session
from layer_agent.domain.models.errors import AgentError, ErrorCode
from layer_agent.domain.streaming.abort import AbortHandle
from layer_agent.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

NO_API_KEY_MESSAGE = "No API key configured. Set ANTHROPIC_API_KEY and restart the agent server."
INVALID_KEY_MESSAGE = "Invalid API key. Check your ANTHROPIC_API_KEY configuration."
RATE_LIMITED_MESSAGE = "Rate limited. Please wait a moment and try again."
NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."
GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


def describe_error(message: Optional[str], code: Optional[ErrorCode] = None, status: Optional[int] = None) -> str:
    """User-facing text for a terminal error"""

    if code == ErrorCode.CONFIGURATION_ERROR:
        return NO_API_KEY_MESSAGE
    if status == 401:
        return INVALID_KEY_MESSAGE
    if status == 429:
        return RATE_LIMITED_MESSAGE
    return message or GENERIC_ERROR_MESSAGE


def describe_exception(error: Exception) -> str:
    if isinstance(error, AgentError):
        return describe_error(error.message, error.code, getattr(error, "status_code", None))
    if isinstance(error, httpx.TransportError):
        return NETWORK_ERROR_MESSAGE
    return describe_error(str(error))


class RenderSink(ABC):
    """Stateful incremental renderer for one attachment of a session"""

    @abstractmethod
    def write(self, chunk: str):
        pass

    @abstractmethod
    def end(self):
        pass


class SessionPresenter(ABC):
    """Renders the focused session"""

    @abstractmethod
    def show_session(self, session: Session):
        """Render a session's transcript when it gains focus"""
        pass

    @abstractmethod
    def create_sink(self, session_id: str) -> RenderSink:
        pass

    @abstractmethod
    def show_event(self, session_id: str, event: AgentEvent):
        """Tool activity and completion indicators"""
        pass

    @abstractmethod
    def show_error(self, session_id: str, message: str):
        pass

    @abstractmethod
    def execute_action(self, action: ToolAction):
        pass


class StreamState:
    """Live network and decode state for one turn of one session"""

    def __init__(self, abort_handle: Optional[AbortHandle] = None, decoder: Optional[AgentEventDecoder] = None):
        self.abort_handle = abort_handle
        self.decoder = decoder
        self.is_streaming = False
        self.closed = False
        self.sink: Optional[RenderSink] = None
        self.task: Optional[asyncio.Task] = None
        self._chunks: List[str] = []

    def append(self, text: str):
        self._chunks.append(text)

    @property
    def accumulated_text(self) -> str:
        return "".join(self._chunks)


class SessionStreamRegistry:
    """Owns per-session stream state across focus changes.

    At most one turn streams per session. Text always accumulates in the
    session's StreamState, but only the focused session writes to a render
    sink. Operations on one session id are serialized by a per-session lock.
    """

    def __init__(
        self,
        transport: AgentTransport,
        presenter: SessionPresenter,
        transcript_store: Optional[TranscriptStore] = None,
    ):
        self.transport = transport
        self.presenter = presenter
        self.transcript_store = transcript_store
        self.sessions: Dict[str, Session] = {}
        self.streams: Dict[str, StreamState] = {}
        self.focused_session_id: Optional[str] = None
        self._locks: Dict[str, asyncio.Lock] = {}

    def register_session(self, session: Session):
        self.sessions[session.id] = session

    def get_stream(self, session_id: str) -> StreamState:
        if session_id not in self.streams:
            self.streams[session_id] = StreamState()
        return self.streams[session_id]

    def is_streaming(self, session_id: str) -> bool:
        state = self.streams.get(session_id)
        return bool(state and state.is_streaming)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    async def start_turn(self, session_id: str, prompt: str) -> Optional[StreamState]:
        """Start a turn; returns None without side effects if one is already streaming"""

        async with self._lock_for(session_id):
            session = self.sessions.get(session_id)
            if session is None:
                raise KeyError(f"Unknown session: {session_id}")

            if self.is_streaming(session_id):
                logger.info("Turn already streaming, ignoring", session_id=session_id)
                return None

            history = list(session.messages)
            session.append(Message(role=MessageRole.USER, content=prompt))
            await self._save(session)

            state = StreamState(abort_handle=AbortHandle(), decoder=AgentEventDecoder())
            state.is_streaming = True
            self.streams[session_id] = state

            request = AgentRequest(
                prompt=build_prompt(prompt, session.selected_context),
                conversation_history=history,
                mode=session.mode,
            )
            state.task = asyncio.create_task(self._pump(session_id, state, request))
            self._update_gauge()

            logger.info("Turn started", session_id=session_id, mode=session.mode.value,
                        history_length=len(history))
            return state

    async def cancel(self, session_id: str) -> bool:
        """Abort the live turn, keeping any partial text as an assistant message"""

        async with self._lock_for(session_id):
            state = self.streams.get(session_id)
            if state is None or not state.is_streaming:
                return False

            state.abort_handle.abort("cancelled")
            for event in state.decoder.flush():
                if isinstance(event, TextDeltaEvent):
                    self._write_text(session_id, state, event.text)

            state.closed = True
            text = state.accumulated_text
            self._teardown(state)

            session = self.sessions.get(session_id)
            if session is not None and text.strip():
                session.append(Message(role=MessageRole.ASSISTANT, content=text))
                await self._save(session)

            logger.info("Turn cancelled", session_id=session_id, partial_length=len(text))

        await self._stop_task(state)
        return True

    def focus_change(self, from_id: Optional[str], to_id: Optional[str]):
        """Move the render surface from one session to another.

        Leaving a session only detaches its sink; its network call continues.
        Entering a streaming session attaches a fresh sink and replays the
        accumulated text in a single write.
        """

        if from_id == to_id:
            self.focused_session_id = to_id
            return

        if from_id is not None:
            state = self.streams.get(from_id)
            if state is not None and state.sink is not None:
                state.sink.end()
                state.sink = None

        self.focused_session_id = to_id

        if to_id is not None:
            state = self.streams.get(to_id)
            if state is not None and state.is_streaming:
                state.sink = self.presenter.create_sink(to_id)
                text = state.accumulated_text
                if text:
                    state.sink.write(text)

    async def destroy(self, session_id: str):
        """Cancel if streaming, then discard all state for the session"""

        await self.cancel(session_id)

        async with self._lock_for(session_id):
            self.streams.pop(session_id, None)
            self.sessions.pop(session_id, None)
            if self.transcript_store is not None:
                await self.transcript_store.delete(session_id)

        self._locks.pop(session_id, None)
        if self.focused_session_id == session_id:
            self.focused_session_id = None
        logger.info("Session destroyed", session_id=session_id)

    async def wait(self, session_id: str):
        """Wait for the session's current turn to finish"""

        state = self.streams.get(session_id)
        if state is not None and state.task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await state.task

    async def aclose(self):
        for session_id in list(self.streams):
            await self.cancel(session_id)

    async def _pump(self, session_id: str, state: StreamState, request: AgentRequest):
        abort = state.abort_handle
        decoder = state.decoder
        chunks = self.transport.open(request, abort)
        try:
            async for chunk in abort.guard(chunks):
                for event in decoder.feed(chunk):
                    if await self._apply(session_id, state, event):
                        return
            if state.closed or abort.aborted:
                return
            for event in decoder.flush():
                if await self._apply(session_id, state, event):
                    return
            # stream closed without a terminal event
            await self._complete(session_id, state)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Agent stream failed", session_id=session_id, error=str(e))
            await self._fail(session_id, state, describe_exception(e))
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

    async def _apply(self, session_id: str, state: StreamState, event: AgentEvent) -> bool:
        """Route one event; returns True once the turn is over"""

        if state.closed:
            return True

        focused = session_id == self.focused_session_id

        if isinstance(event, TextDeltaEvent):
            self._write_text(session_id, state, event.text)
        elif isinstance(event, ToolUseEvent):
            if focused:
                self.presenter.show_event(session_id, event)
        elif isinstance(event, ToolResultEvent):
            if focused:
                self.presenter.show_event(session_id, event)
                action = ToolAction.from_result(event.result)
                if action is not None:
                    self.presenter.execute_action(action)
        elif isinstance(event, DoneEvent):
            await self._complete(session_id, state)
            return True
        elif isinstance(event, ErrorEvent):
            await self._fail(session_id, state, describe_error(event.message, event.code, event.status))
            return True
        return False

    def _write_text(self, session_id: str, state: StreamState, text: str):
        state.append(text)
        if session_id == self.focused_session_id:
            if state.sink is None:
                state.sink = self.presenter.create_sink(session_id)
            state.sink.write(text)

    async def _complete(self, session_id: str, state: StreamState):
        async with self._lock_for(session_id):
            if state.closed:
                return
            state.closed = True
            text = state.accumulated_text
            self._teardown(state)

            session = self.sessions.get(session_id)
            if session is None:
                return
            if text.strip():
                session.append(Message(role=MessageRole.ASSISTANT, content=text))
                await self._save(session)
            if session_id == self.focused_session_id:
                self.presenter.show_event(session_id, DoneEvent())

            logger.info("Turn completed", session_id=session_id, text_length=len(text))

    async def _fail(self, session_id: str, state: StreamState, message: str):
        async with self._lock_for(session_id):
            if state.closed:
                return
            state.closed = True
            self._teardown(state)

            if session_id not in self.sessions:
                logger.debug("Dropping error for destroyed session", session_id=session_id)
                return
            if session_id == self.focused_session_id:
                self.presenter.show_error(session_id, message)

            logger.warning("Turn failed", session_id=session_id, error=message)

    def _teardown(self, state: StreamState):
        state.is_streaming = False
        state.abort_handle = None
        state.decoder = None
        if state.sink is not None:
            state.sink.end()
            state.sink = None
        self._update_gauge()

    async def _stop_task(self, state: StreamState):
        task = state.task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _save(self, session: Session):
        if self.transcript_store is not None:
            await self.transcript_store.save(session)

    def _update_gauge(self):
        streaming = sum(1 for state in self.streams.values() if state.is_streaming)
        metrics.set_gauge("sessions.streaming", streaming)
