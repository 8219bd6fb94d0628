from datetime import datetime

import pytest

from conftest import wait_until

from layer_agent.application.client.session_workspace import SessionWorkspace
from layer_agent.domain.models.agent_state import ContextItem, DEFAULT_SESSION_TITLE, Session, SessionMode


@pytest.fixture
def workspace(registry, transcript_store):
    return SessionWorkspace(registry, transcript_store)


@pytest.mark.asyncio
async def test_new_chat_is_persisted_and_focused(workspace, presenter, transcript_store):
    session = await workspace.new_chat()

    assert workspace.focused_session_id == session.id
    assert workspace.registry.focused_session_id == session.id
    assert presenter.shown == [session.id]
    assert (await transcript_store.load(session.id)).title == DEFAULT_SESSION_TITLE


@pytest.mark.asyncio
async def test_send_titles_the_session_from_first_prompt(workspace, transport):
    session = await workspace.new_chat()

    await workspace.send("Plan a trip to the mountains next weekend")
    await wait_until(lambda: len(transport.requests) == 1)
    transport.close(0)
    await workspace.registry.wait(session.id)

    assert session.title == "Plan a trip to the mountains n..."

    short = await workspace.new_chat()
    await workspace.send("Hi")
    assert short.title == "Hi"

    await workspace.aclose()


@pytest.mark.asyncio
async def test_send_ignores_blank_prompt(workspace, transport):
    await workspace.new_chat()

    assert await workspace.send("   ") is None
    assert transport.requests == []


@pytest.mark.asyncio
async def test_focus_switch_replays_streaming_tab(workspace, transport, presenter):
    first = await workspace.new_chat()
    state = await workspace.send("first question")
    await wait_until(lambda: len(transport.requests) == 1)
    transport.push(0, {"type": "text_delta", "text": "streaming..."})
    await wait_until(lambda: state.accumulated_text == "streaming...")

    second = await workspace.new_chat()
    workspace.focus(first.id)

    assert presenter.shown == [first.id, second.id, first.id]
    assert [sink.writes for sink in presenter.sinks_for(first.id)] == [["streaming..."], ["streaming..."]]

    await workspace.cancel()
    assert first.messages[-1].content == "streaming..."


@pytest.mark.asyncio
async def test_closing_last_session_clears_it(workspace):
    session = await workspace.new_chat()
    session.title = "Old"
    await workspace.send("hello")
    await workspace.cancel()

    await workspace.close(session.id)

    assert workspace.sessions == [session]
    assert session.messages == []
    assert session.title == DEFAULT_SESSION_TITLE


@pytest.mark.asyncio
async def test_closing_focused_session_focuses_neighbour(workspace, transcript_store):
    first = await workspace.new_chat()
    second = await workspace.new_chat()
    third = await workspace.new_chat()

    workspace.focus(second.id)
    await workspace.close(second.id)

    assert workspace.focused_session_id == third.id
    assert [session.id for session in workspace.sessions] == [first.id, third.id]
    assert await transcript_store.load(second.id) is None

    await workspace.close(third.id)
    assert workspace.focused_session_id == first.id


@pytest.mark.asyncio
async def test_closing_background_session_keeps_focus(workspace):
    first = await workspace.new_chat()
    second = await workspace.new_chat()

    await workspace.close(first.id)

    assert workspace.focused_session_id == second.id


@pytest.mark.asyncio
async def test_mode_and_context_are_persisted(workspace, transcript_store):
    session = await workspace.new_chat()
    item = ContextItem(id="f1", type="Folder", name="Work", data={"name": "Work"})

    await workspace.set_mode(SessionMode.ASK)
    assert await workspace.add_context(item)
    assert not await workspace.add_context(item)

    saved = await transcript_store.load(session.id)
    assert saved.mode == SessionMode.ASK
    assert [context.id for context in saved.selected_context] == ["f1"]

    newer = await workspace.new_chat()
    assert newer.mode == SessionMode.ASK

    assert await workspace.remove_context("f1", session.id)
    assert not await workspace.remove_context("f1", session.id)
    assert (await transcript_store.load(session.id)).selected_context == []


@pytest.mark.asyncio
async def test_rename_and_restore(workspace, registry, transcript_store):
    session = await workspace.new_chat()
    await workspace.rename(session.id, "  Weekly review ")

    registry.sessions.pop(session.id)
    workspace.session_order.remove(session.id)
    restored = await workspace.restore(session.id)

    assert restored.title == "Weekly review"
    assert not registry.is_streaming(session.id)
    assert session.id in workspace.session_order


@pytest.mark.asyncio
async def test_unknown_session_raises(workspace):
    with pytest.raises(KeyError):
        workspace.focus("missing")


@pytest.mark.asyncio
async def test_restore_all_reopens_persisted_sessions(registry, presenter, transcript_store):
    older = Session(title="Older", updated_at=datetime(2024, 1, 1))
    newer = Session(title="Newer", updated_at=datetime(2024, 6, 1))
    await transcript_store.save(older)
    await transcript_store.save(newer)
    workspace = SessionWorkspace(registry, transcript_store)

    restored = await workspace.restore_all()

    assert {session.id for session in restored} == {older.id, newer.id}
    assert set(workspace.session_order) == {older.id, newer.id}
    assert workspace.focused_session_id == newer.id
    assert presenter.shown == [newer.id]
    assert not any(registry.is_streaming(session.id) for session in restored)


@pytest.mark.asyncio
async def test_restore_all_with_empty_store(workspace, presenter):
    assert await workspace.restore_all() == []
    assert workspace.focused_session_id is None
    assert presenter.shown == []
