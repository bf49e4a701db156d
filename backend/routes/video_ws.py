from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from services.video_hub import Connection, VideoRoomHub

router = APIRouter(tags=["video-status"])
logger = logging.getLogger(__name__)

JOIN_EVENT = "join-video"
LEAVE_EVENT = "leave-video"


async def _forward(websocket: WebSocket, conn: Connection) -> None:
    while True:
        frame: dict[str, Any] = await conn.queue.get()
        await websocket.send_json(frame)


@router.websocket("/ws/videos")
async def ws_video_status(websocket: WebSocket) -> None:
    """
    Live status channel.

    Client frames:
      {"event": "join-video" | "leave-video", "videoId": str}

    Server frames:
      {"event": "joined" | "left", "data": {"videoId": str}}
      {"event": "video-status", "data": {"videoId", "status", "timestamp", ...}}
      {"event": "processing-progress", "data": {"videoId", "progress", "timestamp"}}
      {"event": "error", "data": {"message": str}}
    """
    hub: VideoRoomHub = websocket.app.state.video_hub
    try:
        await websocket.accept()
    except Exception as e:
        logger.warning("[video_ws] accept() failed: %s", e)
        return
    conn = await hub.connect()
    sender = asyncio.create_task(_forward(websocket, conn))
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except (ValueError, KeyError, TypeError):
                hub.send(conn, "error", {"message": "Frames must be JSON objects"})
                continue
            if not isinstance(message, dict):
                hub.send(conn, "error", {"message": "Frames must be JSON objects"})
                continue
            event = message.get("event")
            video_id = message.get("videoId")
            if not isinstance(video_id, str) or not video_id:
                hub.send(conn, "error", {"message": "videoId is required"})
                continue
            if event == JOIN_EVENT:
                await hub.join(conn, video_id)
                hub.send(conn, "joined", {"videoId": video_id})
            elif event == LEAVE_EVENT:
                await hub.leave(conn, video_id)
                hub.send(conn, "left", {"videoId": video_id})
            else:
                hub.send(conn, "error", {"message": f"Unknown event {event!r}"})
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        with suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError, OSError):
            await sender
        await hub.disconnect(conn)
