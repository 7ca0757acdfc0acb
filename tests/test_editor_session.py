"""Tests for the visual editor session state machine."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from pageeditor.models.block import BlockDraft
from pageeditor.services.block_store import BlockStore
from pageeditor.services.editor import ChangeDebouncer, EditorSession, InvalidTransition, SessionRegistry
from pageeditor.services.gateway import GatewayError, InMemoryGateway
from pageeditor.services.procedures import LOCAL_FUNCTIONS


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _backend():
    gateway = InMemoryGateway(functions=LOCAL_FUNCTIONS)
    return gateway, BlockStore(gateway)


def _session(gateway, store, page_path="/eyecare", legacy=True, clock=None):
    return EditorSession(
        page_path,
        store,
        gateway,
        legacy_editor=legacy,
        clock=clock or FakeClock(),
        wall_clock=FakeClock(1000.0),
    )


def _heading(text):
    return BlockDraft(type="heading", properties={"text": text, "level": 1})


async def _previewing(session):
    await session.mount()
    session.frame_loaded()
    return session


class TestChangeDebouncer:
    def test_first_call_accepted(self):
        assert ChangeDebouncer(window=1.0, clock=FakeClock()).accept() is True

    def test_burst_collapses(self):
        clock = FakeClock()
        debouncer = ChangeDebouncer(window=1.0, clock=clock)
        results = []
        for now in (0.0, 0.3, 0.6, 1.0, 1.5):
            clock.now = now
            results.append(debouncer.accept())
        assert results == [True, False, False, False, True]


class TestLifecycle:
    def test_mount_then_frame_loaded(self):
        gateway, store = _backend()
        session = _session(gateway, store)

        async def scenario():
            await session.mount()
            assert session.state == "loading"
            attached = session.frame_loaded()
            return attached

        assert asyncio.run(scenario()) is True
        assert session.state == "preview"
        assert session.listeners_attached is True

    def test_element_listeners_off_when_disabled(self):
        gateway, store = _backend()
        session = _session(gateway, store, legacy=False)
        asyncio.run(_previewing(session))
        assert session.listeners_attached is False

    def test_edit_requires_preview(self):
        gateway, store = _backend()
        session = _session(gateway, store)

        async def scenario():
            await session.mount()
            with pytest.raises(InvalidTransition):
                await session.enter_edit()

        asyncio.run(scenario())
        assert session.state == "loading"

    def test_close_unsubscribes(self):
        gateway, store = _backend()
        session = _session(gateway, store)
        asyncio.run(session.mount())
        assert gateway.realtime.subscriber_count() == 1
        session.close()
        assert gateway.realtime.subscriber_count() == 0

    def test_preview_url_is_the_live_page(self):
        gateway, store = _backend()
        session = _session(gateway, store)
        with patch("pageeditor.config.SITE_BASE_URL", "https://clinic.test"):
            assert session.preview_url == "https://clinic.test/eyecare?key=1000000"
            session._remount()
            assert session.preview_url == "https://clinic.test/eyecare?key=1000001"

    def test_load_failure_posts_notice(self):
        gateway, store = _backend()
        store.fetch_page = AsyncMock(side_effect=GatewayError("down"))
        session = _session(gateway, store)
        asyncio.run(session.mount())
        assert session.notices[-1].variant == "destructive"
        assert session.blocks == []


class TestEditing:
    def test_enter_edit_copies_blocks_and_remounts_once(self):
        gateway, store = _backend()
        session = _session(gateway, store)

        async def scenario():
            await store.save_page_blocks("/eyecare", [_heading("Eye Care")])
            await _previewing(session)
            key = session.preview_key
            await session.enter_edit()
            return key

        previous_key = asyncio.run(scenario())
        assert session.state == "editing"
        assert session.remounts == 1
        assert session.preview_key > previous_key
        assert session.base_version == 1
        assert [d.properties["text"] for d in session.draft] == ["Eye Care"]
        assert session.listeners_attached is False

    def test_changes_are_debounced_but_draft_tracks_latest(self):
        gateway, store = _backend()
        clock = FakeClock()
        session = _session(gateway, store, clock=clock)

        async def scenario():
            await _previewing(session)
            await session.enter_edit()

        asyncio.run(scenario())
        accepted = []
        for now, text in ((0.0, "a"), (0.4, "ab"), (0.8, "abc"), (2.0, "abcd")):
            clock.now = now
            accepted.append(session.blocks_changed([_heading(text)]))

        assert accepted == [True, False, False, True]
        assert session.change_count == 2
        assert session.draft[0].properties["text"] == "abcd"

    def test_changes_outside_editing_rejected(self):
        gateway, store = _backend()
        session = _session(gateway, store)
        asyncio.run(_previewing(session))
        with pytest.raises(InvalidTransition):
            session.blocks_changed([_heading("x")])

    def test_save_publishes_and_returns_to_preview(self):
        gateway, store = _backend()
        session = _session(gateway, store)

        async def scenario():
            await _previewing(session)
            await session.enter_edit()
            session.blocks_changed([_heading("New title")])
            key = session.preview_key
            saved = await session.save()
            return saved, key, await store.fetch_page_blocks("/eyecare")

        saved, key, stored = asyncio.run(scenario())
        assert saved is True
        assert session.state == "preview"
        assert session.remounts == 2
        assert session.preview_key == key + 1
        assert session.draft is None
        assert session.version == 1
        assert [b.properties["text"] for b in stored] == ["New title"]
        assert session.notices[-1].title == "Changes saved"

    def test_save_with_explicit_blocks(self):
        gateway, store = _backend()
        session = _session(gateway, store)

        async def scenario():
            await _previewing(session)
            await session.enter_edit()
            await session.save([_heading("Given")])

        asyncio.run(scenario())
        assert [b.properties["text"] for b in session.blocks] == ["Given"]

    def test_failed_save_keeps_editing(self):
        gateway, store = _backend()
        session = _session(gateway, store)

        async def scenario():
            await _previewing(session)
            await session.enter_edit()
            session.blocks_changed([_heading("Draft")])
            store.save_page_blocks = AsyncMock(side_effect=GatewayError("timeout"))
            return await session.save()

        assert asyncio.run(scenario()) is False
        assert session.state == "editing"
        assert session.draft[0].properties["text"] == "Draft"
        assert session.remounts == 1
        assert session.notices[-1].variant == "destructive"
        assert session.draft_stale is False
        assert session.save_failure == "error"

    def test_backend_failure_after_remote_change_is_an_error(self):
        gateway, store = _backend()
        session = _session(gateway, store)

        async def scenario():
            await _previewing(session)
            await session.enter_edit()
            await store.save_page_blocks("/eyecare", [_heading("Elsewhere")])
            assert session.draft_stale is True
            store.save_page_blocks = AsyncMock(side_effect=GatewayError("timeout"))
            return await session.save([_heading("Mine")])

        assert asyncio.run(scenario()) is False
        assert session.save_failure == "error"

    def test_cancel_discards_draft(self):
        gateway, store = _backend()
        session = _session(gateway, store)

        async def scenario():
            await store.save_page_blocks("/eyecare", [_heading("Original")])
            await _previewing(session)
            await session.enter_edit()
            session.blocks_changed([_heading("Changed")])
            await session.cancel()
            return await store.fetch_page_blocks("/eyecare")

        stored = asyncio.run(scenario())
        assert session.state == "preview"
        assert session.draft is None
        assert session.remounts == 2
        assert [b.properties["text"] for b in stored] == ["Original"]


class TestConcurrentSessions:
    def test_second_save_is_rejected_as_stale(self):
        gateway, store = _backend()
        first = _session(gateway, store)
        second = _session(gateway, store)

        async def scenario():
            await store.save_page_blocks("/eyecare", [_heading("Start")])
            for session in (first, second):
                await _previewing(session)
                await session.enter_edit()
            assert await first.save([_heading("First wins")]) is True
            assert second.draft_stale is True
            assert second.state == "editing"
            return await second.save([_heading("Second loses")])

        assert asyncio.run(scenario()) is False
        assert second.state == "editing"
        assert second.save_failure == "stale"
        assert second.notices[-1].variant == "destructive"
        assert [b.properties["text"] for b in first.blocks] == ["First wins"]
        assert first.draft_stale is False

    def test_previewing_session_reloads_on_remote_save(self):
        gateway, store = _backend()
        editor = _session(gateway, store)
        viewer = _session(gateway, store)

        async def scenario():
            await _previewing(editor)
            await _previewing(viewer)
            await editor.enter_edit()
            await editor.save([_heading("Published")])

        asyncio.run(scenario())
        assert viewer.state == "loading"
        assert viewer.remounts == 1
        assert viewer.listeners_attached is False
        assert viewer.version == 1
        assert [b.properties["text"] for b in viewer.blocks] == ["Published"]

    def test_other_pages_do_not_notify(self):
        gateway, store = _backend()
        viewer = _session(gateway, store, page_path="/gynecology")

        async def scenario():
            await _previewing(viewer)
            await store.save_page_blocks("/eyecare", [_heading("Eye")])

        asyncio.run(scenario())
        assert viewer.state == "preview"
        assert viewer.remounts == 0

    def test_block_moved_away_notifies_old_page(self):
        gateway, store = _backend()
        editor = _session(gateway, store)
        viewer = _session(gateway, store)

        async def scenario():
            saved = await store.save_page_blocks("/eyecare", [_heading("Moving"), _heading("Staying")])
            await _previewing(editor)
            await _previewing(viewer)
            await editor.enter_edit()
            moved = saved.blocks[0].model_copy(update={"page_path": "/gynecology"})
            await store.save_single_block(moved)
            return await editor.save([_heading("Stale edit")])

        assert asyncio.run(scenario()) is False
        assert viewer.state == "loading"
        assert viewer.remounts == 1
        assert viewer.version == 2
        assert [b.properties["text"] for b in viewer.blocks] == ["Staying"]
        assert editor.draft_stale is True
        assert editor.save_failure == "stale"


class TestSessionRegistry:
    def test_open_get_close(self):
        gateway, store = _backend()
        registry = SessionRegistry(store, gateway)
        session = asyncio.run(registry.open("/eyecare"))
        assert registry.get(session.id) is session
        registry.close(session.id)
        with pytest.raises(KeyError):
            registry.get(session.id)
        assert gateway.realtime.subscriber_count() == 0

    def test_close_unknown(self):
        gateway, store = _backend()
        with pytest.raises(KeyError):
            SessionRegistry(store, gateway).close("nope")
