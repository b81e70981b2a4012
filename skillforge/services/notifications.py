# skillforge/services/notifications.py
# Real-time fan-out: live SSE connections grouped by user id.
import asyncio
import itertools
import json
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Iterable, List, Optional, Set

from skillforge.models.entities import utcnow
from skillforge.models.enums import EventType
from skillforge.services.leveling import ProgressUpdate
from skillforge.utils.config import settings
from skillforge.utils.logger import logger

_connection_ids = itertools.count(1)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_sse(event_type: str, data: dict) -> str:
    """Serializes one event in the `event: <type>\\ndata: <json>\\n\\n` wire format."""
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"


class Connection:
    """One open client stream. Events are buffered in a bounded queue."""

    def __init__(self, user_id: str, queue_size: int):
        self.id = next(_connection_ids)
        self.user_id = user_id
        self.connected_at = utcnow()
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    def send(self, event_type: str, payload: dict) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(format_sse(event_type, payload))
        except asyncio.QueueFull:
            logger.warning(f"Dropping '{event_type}' event for connection {self.id} (user {self.user_id}): queue full.")
            return False
        return True

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)  # wakes a waiting reader
        except asyncio.QueueFull:
            pass

    async def events(self, heartbeat_seconds: float = settings.sse_heartbeat_seconds) -> AsyncIterator[str]:
        """
        Yields queued messages, or a heartbeat after `heartbeat_seconds` of
        silence. After close, whatever is still queued is drained first.
        """
        while True:
            if self.closed and self._queue.empty():
                break
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                yield format_sse(EventType.HEARTBEAT.value, {"timestamp": _timestamp()})
                continue
            if message is None:
                break
            yield message


class NotificationHub:
    """
    Process-scoped registry of live connections. Publishing is fire-and-forget:
    users without an open connection simply miss the event.
    """

    def __init__(self, queue_size: int = settings.sse_queue_size):
        self.queue_size = queue_size
        self._connections: Dict[str, Set[Connection]] = {}

    def subscribe(self, user_id: str) -> Connection:
        connection = Connection(user_id, self.queue_size)
        self._connections.setdefault(user_id, set()).add(connection)
        connection.send(EventType.CONNECTED.value, {
            "message": "SSE connection established",
            "user_id": user_id,
            "timestamp": _timestamp(),
        })
        logger.info(f"SSE connection {connection.id} opened for user {user_id} ({len(self._connections[user_id])} open).")
        return connection

    def unsubscribe(self, connection: Connection):
        connection.close()
        user_connections = self._connections.get(connection.user_id)
        if user_connections is None:
            return
        user_connections.discard(connection)
        if not user_connections:
            del self._connections[connection.user_id]
        logger.info(f"SSE connection {connection.id} closed for user {connection.user_id}.")

    def publish(self, user_id: str, event_type: EventType | str, payload: Optional[dict] = None) -> int:
        """Sends a timestamped event to every open connection of the user. Returns deliveries."""
        user_connections = self._connections.get(user_id)
        if not user_connections:
            return 0
        event_name = event_type.value if isinstance(event_type, EventType) else event_type
        data = {**(payload or {}), "timestamp": _timestamp()}
        delivered = 0
        # Iterate a snapshot: subscribers may come and go while we send
        for connection in list(user_connections):
            if connection.send(event_name, data):
                delivered += 1
        logger.debug(f"Published '{event_name}' to {delivered} connection(s) of user {user_id}.")
        return delivered

    def connection_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, ()))

    def stats(self) -> dict:
        users = [
            {"user_id": user_id, "connection_count": len(conns)}
            for user_id, conns in self._connections.items()
        ]
        return {
            "total_users": len(users),
            "total_connections": sum(u["connection_count"] for u in users),
            "users": users,
        }

    def close_all(self):
        for user_connections in list(self._connections.values()):
            for connection in list(user_connections):
                connection.close()
        self._connections.clear()


def announce_progress(hub: NotificationHub, update: ProgressUpdate, skill_name: str | None,
                      milestones: Iterable[dict] = (), unlocked: Iterable = ()) -> List[str]:
    """Publishes the events that follow a progress update. Returns the event names sent."""
    sent = []
    hub.publish(update.user_id, EventType.PROGRESS_UPDATE, {
        "skill_id": update.skill_id,
        "skill_name": skill_name,
        "xp_gained": update.xp_gained,
        "streak": update.new_streak,
        "total_xp": update.total_xp,
    })
    sent.append(EventType.PROGRESS_UPDATE.value)

    if update.level_up:
        hub.publish(update.user_id, EventType.LEVEL_UP, {
            "skill_id": update.skill_id,
            "skill_name": skill_name,
            "old_level": update.old_level,
            "new_level": update.new_level,
            "xp": update.total_xp,
        })
        sent.append(EventType.LEVEL_UP.value)

    for milestone in milestones:
        if milestone.get("type") != "streak":
            continue
        hub.publish(update.user_id, EventType.STREAK_MILESTONE, {
            "skill_id": update.skill_id,
            "skill_name": skill_name,
            "streak_count": milestone["streak"],
        })
        sent.append(EventType.STREAK_MILESTONE.value)

    for achievement in unlocked:
        hub.publish(update.user_id, EventType.ACHIEVEMENT_UNLOCKED, {
            "achievement": {
                "id": achievement.id,
                "name": achievement.name,
                "description": achievement.description,
                "icon": achievement.icon,
                "points": achievement.points,
            },
        })
        sent.append(EventType.ACHIEVEMENT_UNLOCKED.value)

    return sent
