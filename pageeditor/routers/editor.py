"""Visual editor sessions and the block-rendered page preview."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import HTMLResponse

from pageeditor.dependencies import get_gateway, get_sessions, get_store
from pageeditor.models.editor import (
    BlocksChangedRequest,
    ChangeAccepted,
    OpenSessionRequest,
    SaveRequest,
    SessionView,
)
from pageeditor.models.legacy import ElementClick, LegacyContentItem
from pageeditor.services.block_store import BlockStore
from pageeditor.services.editor import EditorSession, InvalidTransition, SessionRegistry
from pageeditor.services.gateway import Gateway, GatewayError
from pageeditor.services.legacy import record_element_click
from pageeditor.services.page_renderer import render_page

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Editor"])


def _session(session_id: str, sessions: SessionRegistry) -> EditorSession:
    try:
        return sessions.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Editor session not found.")


@router.post("/editor/sessions", response_model=SessionView, status_code=201, summary="Open a page in the editor")
async def open_session(
    body: OpenSessionRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionView:
    session = await sessions.open(body.page_path)
    return session.view()


@router.get("/editor/sessions/{session_id}", response_model=SessionView, summary="Current session state")
async def get_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)) -> SessionView:
    return _session(session_id, sessions).view()


@router.delete("/editor/sessions/{session_id}", status_code=204, summary="Close a session")
async def close_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)) -> Response:
    try:
        sessions.close(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Editor session not found.")
    return Response(status_code=204)


@router.post("/editor/sessions/{session_id}/frame-loaded", response_model=SessionView)
async def frame_loaded(session_id: str, sessions: SessionRegistry = Depends(get_sessions)) -> SessionView:
    session = _session(session_id, sessions)
    session.frame_loaded()
    return session.view()


@router.post("/editor/sessions/{session_id}/edit", response_model=SessionView, summary="Switch to edit mode")
async def enter_edit(session_id: str, sessions: SessionRegistry = Depends(get_sessions)) -> SessionView:
    session = _session(session_id, sessions)
    try:
        await session.enter_edit()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return session.view()


@router.post("/editor/sessions/{session_id}/changes", response_model=ChangeAccepted)
async def blocks_changed(
    session_id: str,
    body: BlocksChangedRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> ChangeAccepted:
    session = _session(session_id, sessions)
    try:
        accepted = session.blocks_changed(body.blocks)
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return ChangeAccepted(accepted=accepted)


@router.post("/editor/sessions/{session_id}/save", response_model=SessionView, summary="Publish the draft")
async def save(
    session_id: str,
    body: Optional[SaveRequest] = None,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionView:
    session = _session(session_id, sessions)
    try:
        saved = await session.save(body.blocks if body else None)
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if not saved:
        notice = session.notices[-1]
        raise HTTPException(status_code=409 if session.save_failure == "stale" else 502, detail=notice.description)
    return session.view()


@router.post("/editor/sessions/{session_id}/cancel", response_model=SessionView, summary="Discard the draft")
async def cancel(session_id: str, sessions: SessionRegistry = Depends(get_sessions)) -> SessionView:
    session = _session(session_id, sessions)
    try:
        await session.cancel()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return session.view()


@router.post(
    "/editor/sessions/{session_id}/elements",
    response_model=LegacyContentItem,
    summary="Record a click on a rendered element (element editor)",
)
async def element_clicked(
    session_id: str,
    body: ElementClick,
    sessions: SessionRegistry = Depends(get_sessions),
    gateway: Gateway = Depends(get_gateway),
) -> LegacyContentItem:
    session = _session(session_id, sessions)
    if not session.listeners_attached:
        raise HTTPException(status_code=409, detail="Element editing is not active for this session.")
    click = body.model_copy(update={"page_path": session.page_path})
    try:
        return await record_element_click(click, gateway)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except GatewayError as exc:
        logger.error("Error saving element edit on %s: %s", session.page_path, exc)
        session.notify("Error saving", "Could not save changes", "destructive")
        raise HTTPException(status_code=502, detail="Could not save changes.")


@router.get("/preview", response_class=HTMLResponse, summary="Render a page from its blocks")
async def preview(
    page_path: str = Query(..., min_length=1),
    key: Optional[int] = Query(default=None, description="Cache-busting key; ignored by the server."),
    store: BlockStore = Depends(get_store),
) -> HTMLResponse:
    try:
        blocks = await store.fetch_page_blocks(page_path)
    except GatewayError as exc:
        logger.error("Error rendering preview of %s: %s", page_path, exc)
        raise HTTPException(status_code=502, detail="Failed to load page blocks.")
    return HTMLResponse(render_page(page_path, blocks), headers={"Cache-Control": "no-store"})
