"""Websocket feed of block changes for one page."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pageeditor import config
from pageeditor.services.gateway import ChangeEvent

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


@router.websocket("/realtime")
async def page_changes(websocket: WebSocket, page_path: str) -> None:
    gateway = websocket.app.state.gateway
    await websocket.accept()

    queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()

    async def enqueue(event: ChangeEvent) -> None:
        queue.put_nowait(event)

    subscription = gateway.subscribe(config.BLOCKS_TABLE, "page_path", page_path, enqueue)
    await websocket.send_json({"event": "subscribed", "page_path": page_path})

    async def pump() -> None:
        while True:
            event = await queue.get()
            await websocket.send_json(
                {"event": event.event_type, "table": event.table, "new": event.new, "old": event.old}
            )

    sender = asyncio.create_task(pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Realtime client for %s disconnected", page_path)
    finally:
        sender.cancel()
        gateway.unsubscribe(subscription)
