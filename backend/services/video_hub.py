from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

CONNECTION_QUEUE_SIZE = 16


def _offer(q: asyncio.Queue[dict[str, Any]], frame: dict[str, Any]) -> None:
    if q.full():
        try:
            _ = q.get_nowait()
        except asyncio.QueueEmpty:
            pass
    try:
        q.put_nowait(frame)
    except asyncio.QueueFull:
        # Raced between full-check and put; drop.
        pass


@dataclass(eq=False)
class Connection:
    id: str
    queue: asyncio.Queue[dict[str, Any]]
    rooms: set[str] = field(default_factory=set)


class VideoRoomHub:
    """
    In-memory pubsub for live video status updates.

    A connection joins zero or more rooms, one per video id. publish() fans a frame out to
    every connection currently in the room; with nobody in the room it is a no-op, nothing
    is kept for late subscribers. Each connection has a bounded queue; when it is full the
    oldest frame is dropped.
    """

    def __init__(self, *, queue_size: int = CONNECTION_QUEUE_SIZE) -> None:
        self._lock = asyncio.Lock()
        self._queue_size = queue_size
        self._rooms: dict[str, set[Connection]] = defaultdict(set)
        self._connections: dict[str, Connection] = {}
        self._ids = itertools.count(1)

    async def connect(self) -> Connection:
        conn = Connection(id=f"conn-{next(self._ids)}", queue=asyncio.Queue(maxsize=self._queue_size))
        async with self._lock:
            self._connections[conn.id] = conn
        logger.info("[video_hub] Client connected: %s", conn.id)
        return conn

    async def join(self, conn: Connection, video_id: str) -> None:
        async with self._lock:
            self._rooms[video_id].add(conn)
            conn.rooms.add(video_id)
        logger.info("[video_hub] %s joined room video-%s", conn.id, video_id)

    async def leave(self, conn: Connection, video_id: str) -> None:
        async with self._lock:
            self._discard(conn, video_id)
            conn.rooms.discard(video_id)

    async def disconnect(self, conn: Connection) -> None:
        async with self._lock:
            for video_id in list(conn.rooms):
                self._discard(conn, video_id)
            conn.rooms.clear()
            self._connections.pop(conn.id, None)
        logger.info("[video_hub] Client disconnected: %s", conn.id)

    def _discard(self, conn: Connection, video_id: str) -> None:
        members = self._rooms.get(video_id)
        if not members:
            return
        members.discard(conn)
        if not members:
            self._rooms.pop(video_id, None)

    async def publish(self, video_id: str, event: str, payload: dict[str, Any]) -> int:
        """Send {"event": event, "data": payload} to the room; returns how many connections got it."""
        async with self._lock:
            members = list(self._rooms.get(video_id, set()))
        if not members:
            return 0
        frame = {"event": event, "data": payload}
        for conn in members:
            _offer(conn.queue, frame)
        logger.debug("[video_hub] %s -> room video-%s (%d connections)", event, video_id, len(members))
        return len(members)

    def send(self, conn: Connection, event: str, payload: dict[str, Any]) -> None:
        """Queue a frame for one connection only (acks, errors)."""
        _offer(conn.queue, {"event": event, "data": payload})

    def room_size(self, video_id: str) -> int:
        return len(self._rooms.get(video_id, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)
