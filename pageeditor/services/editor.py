"""Visual page editor sessions.

A session gives the operator one page in two mutually exclusive modes:
``preview`` (the rendered page in a frame) and ``editing`` (the block list
on a drag-and-drop surface), with ``loading`` in between whenever blocks are
being fetched for the frame.  Sessions follow the persisted block list
through the gateway's change feed, so several operators looking at the same
page converge on the last saved version.

Saves carry the page version the draft was based on; a save made against a
version that someone else has since replaced is rejected instead of
silently overwriting their work.
"""

import logging
import time
import uuid
from typing import Callable, Dict, List, Optional, Sequence

from pageeditor import config
from pageeditor.models.block import BlockDraft, ContentBlock
from pageeditor.models.editor import Notice, SessionState, SessionView
from pageeditor.services.block_store import BlockStore, StaleVersionError
from pageeditor.services.fetcher import page_url_for
from pageeditor.services.gateway import ChangeEvent, Gateway, GatewayError, Subscription

logger = logging.getLogger(__name__)

_MAX_NOTICES = 20


class InvalidTransition(Exception):
    """The requested action is not available in the session's current state."""


class ChangeDebouncer:
    """Accept a call only when *window* seconds passed since the last accepted one."""

    def __init__(self, window: float = config.CHANGE_DEBOUNCE_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._last: Optional[float] = None

    def accept(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last <= self.window:
            return False
        self._last = now
        return True


class EditorSession:
    def __init__(
        self,
        page_path: str,
        store: BlockStore,
        gateway: Gateway,
        legacy_editor: bool = config.LEGACY_ELEMENT_EDITOR,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.page_path = page_path
        self.store = store
        self.gateway = gateway
        self.legacy_editor = legacy_editor
        self._wall_clock = wall_clock
        self._debouncer = ChangeDebouncer(clock=clock)

        self.state: SessionState = "loading"
        self.blocks: List[ContentBlock] = []
        self.version = 0
        self.base_version: Optional[int] = None
        self.draft: Optional[List[BlockDraft]] = None
        self.draft_stale = False
        self.save_failure: Optional[str] = None
        self.listeners_attached = False
        self.change_count = 0
        self.remounts = 0
        self.notices: List[Notice] = []
        self.preview_key = self._now_ms()

        self._subscription: Optional[Subscription] = None
        self._saving = False
        self._closed = False

    # -- helpers ------------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._wall_clock() * 1000)

    def _remount(self) -> None:
        """Give the preview frame a new key so it is recreated from scratch."""
        self.preview_key = max(self._now_ms(), self.preview_key + 1)
        self.remounts += 1

    def notify(self, title: str, description: str, variant: str = "default") -> None:
        self.notices.append(Notice(title=title, description=description, variant=variant))
        del self.notices[:-_MAX_NOTICES]

    def _require(self, *states: str) -> None:
        if self.state not in states:
            raise InvalidTransition(f"Not available while the session is {self.state}.")

    async def _load(self) -> bool:
        try:
            page = await self.store.fetch_page(self.page_path)
        except GatewayError as exc:
            logger.error("Error loading blocks for %s: %s", self.page_path, exc)
            self.notify("Error", "Failed to load page blocks", "destructive")
            return False
        if self._closed:
            return False
        self.version, self.blocks = page.version, page.blocks
        return True

    @property
    def preview_url(self) -> str:
        """The live site page, with the preview key as a cache-buster."""
        url = page_url_for(self.page_path)
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}key={self.preview_key}"

    # -- lifecycle ----------------------------------------------------------

    async def mount(self) -> None:
        """Subscribe to changes of this page and load its blocks."""
        self._subscription = self.gateway.subscribe(
            config.BLOCKS_TABLE, "page_path", self.page_path, self.handle_change
        )
        self.state = "loading"
        await self._load()

    def frame_loaded(self) -> bool:
        """The preview frame finished loading; return whether element listeners are attached."""
        if self.state == "loading":
            self.state = "preview"
        self.listeners_attached = self.legacy_editor and self.state == "preview"
        return self.listeners_attached

    def close(self) -> None:
        self._closed = True
        if self._subscription is not None:
            self.gateway.unsubscribe(self._subscription)
            self._subscription = None

    # -- editing ------------------------------------------------------------

    async def enter_edit(self) -> None:
        self._require("preview")
        await self._load()
        self.draft = [BlockDraft(id=block.id, type=block.type, properties=block.properties) for block in self.blocks]
        self.base_version = self.version
        self.draft_stale = False
        self.listeners_attached = False
        self.state = "editing"
        self._remount()

    def blocks_changed(self, blocks: Sequence[BlockDraft]) -> bool:
        """Record the surface's latest blocks; return whether the change is reported upward.

        The draft always follows the surface, but only the first change of
        a burst (nothing accepted within the debounce window) counts.
        """
        self._require("editing")
        self.draft = list(blocks)
        if not self._debouncer.accept():
            return False
        self.change_count += 1
        return True

    async def save(self, blocks: Optional[Sequence[BlockDraft]] = None) -> bool:
        """Publish the draft; on failure stay in editing with everything untouched.

        After a failed save :attr:`save_failure` is ``"stale"`` when someone
        else saved the page first and ``"error"`` when the backend failed.
        """
        self._require("editing")
        self.save_failure = None
        payload = list(blocks) if blocks is not None else list(self.draft or [])

        self._saving = True
        try:
            saved = await self.store.save_page_blocks(self.page_path, payload, base_version=self.base_version)
        except StaleVersionError as exc:
            logger.warning("Rejected stale save for %s: %s", self.page_path, exc)
            self.draft_stale = True
            self.save_failure = "stale"
            self.notify(
                "Page changed elsewhere",
                "Someone else saved this page after you started editing. Cancel to reload it, then redo your changes.",
                "destructive",
            )
            return False
        except GatewayError as exc:
            logger.error("Error saving blocks for %s: %s", self.page_path, exc)
            self.save_failure = "error"
            self.notify("Error saving changes", "Could not save changes. Please try again.", "destructive")
            return False
        finally:
            self._saving = False

        if self._closed:
            return True

        self.version, self.blocks = saved.version, saved.blocks
        self.draft = None
        self.base_version = None
        self.draft_stale = False
        self.state = "preview"
        await self._load()
        self._remount()
        self.notify("Changes saved", "Your changes have been saved successfully.")
        return True

    async def cancel(self) -> None:
        self._require("editing")
        self.draft = None
        self.base_version = None
        self.draft_stale = False
        self.state = "preview"
        await self._load()
        self._remount()

    # -- realtime -----------------------------------------------------------

    async def handle_change(self, event: ChangeEvent) -> None:
        """Refetch after a change to this page made by any session."""
        if self._closed or self._saving:
            return
        previous = self.version
        if not await self._load() or self.version == previous:
            return

        logger.info(
            "Page %s changed elsewhere (%s)",
            self.page_path,
            event.event_type,
            extra={"session": self.id, "version": self.version},
        )
        if self.state == "editing":
            self.draft_stale = True
            self.notify("Page updated", "This page was saved from another session while you were editing.")
        else:
            self.state = "loading"
            self.listeners_attached = False
            self._remount()

    def view(self) -> SessionView:
        return SessionView(
            id=self.id,
            page_path=self.page_path,
            state=self.state,
            preview_key=self.preview_key,
            preview_url=self.preview_url,
            version=self.version,
            base_version=self.base_version,
            blocks=self.blocks,
            draft=self.draft,
            draft_stale=self.draft_stale,
            save_failure=self.save_failure,
            listeners_attached=self.listeners_attached,
            change_count=self.change_count,
            notices=self.notices,
        )


class SessionRegistry:
    """Open editor sessions of this process, by id."""

    def __init__(self, store: BlockStore, gateway: Gateway) -> None:
        self.store = store
        self.gateway = gateway
        self._sessions: Dict[str, EditorSession] = {}

    async def open(self, page_path: str) -> EditorSession:
        session = EditorSession(page_path, self.store, self.gateway)
        await session.mount()
        self._sessions[session.id] = session
        logger.info("Opened editor session %s for %s", session.id, page_path)
        return session

    def get(self, session_id: str) -> EditorSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Unknown editor session {session_id}")

    def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise KeyError(f"Unknown editor session {session_id}")
        session.close()

    def close_all(self) -> None:
        for session in list(self._sessions.values()):
            session.close()
        self._sessions.clear()
