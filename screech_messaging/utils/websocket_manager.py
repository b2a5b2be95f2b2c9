"""In-memory reachability map from user id to one live connection.

The map is a cache of who is connected to this process; it is rebuilt from
scratch on restart and never holds conversation or message data. Pushes are
best-effort: no queueing, no retries, no acknowledgement from the peer.
"""
import asyncio
import logging
import threading
from typing import Any, Dict, Optional, Protocol


logger = logging.getLogger(__name__)

DEFAULT_PUSH_TIMEOUT = 1.0


class ConnectionHandle(Protocol):
    """Anything that can push a JSON frame to one client (a FastAPI WebSocket fits)."""

    async def send_json(self, data: Any) -> None: ...


class DeliveryCoordinator:

    def __init__(self, push_timeout: float = DEFAULT_PUSH_TIMEOUT) -> None:
        self._connections: Dict[str, ConnectionHandle] = {}
        # never held across an await
        self._lock = threading.Lock()
        self._push_timeout = push_timeout

    def register(self, user_id: str, handle: ConnectionHandle) -> None:
        """Track ``handle`` for ``user_id``, superseding any previous one."""
        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = handle
        if previous is not None and previous is not handle:
            logger.info("Connection for user %s superseded", user_id)
        else:
            logger.info("Connection registered for user %s", user_id)

    def unregister(self, user_id: str, handle: Optional[ConnectionHandle] = None) -> bool:
        """Drop the mapping; with ``handle`` given, only if it is still the current one."""
        with self._lock:
            current = self._connections.get(user_id)
            if current is None or (handle is not None and current is not handle):
                return False
            del self._connections[user_id]
        logger.info("Connection unregistered for user %s", user_id)
        return True

    def is_reachable(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._connections

    def online_count(self) -> int:
        with self._lock:
            return len(self._connections)

    async def push(self, user_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """Send ``event`` to the user's connection if one is registered.

        Returns whether the frame was handed to a live connection in time, not
        whether the peer received it. Timed-out and failed sends count as
        undelivered; a failed send also drops the handle.
        """
        with self._lock:
            handle = self._connections.get(user_id)
        if handle is None:
            return False
        try:
            await asyncio.wait_for(handle.send_json({"event": event, "data": payload}), timeout=self._push_timeout)
        except asyncio.TimeoutError:
            logger.warning("Push of %s to user %s timed out", event, user_id)
            return False
        except Exception as exc:
            logger.warning("Push of %s to user %s failed: %s", event, user_id, exc)
            self.unregister(user_id, handle)
            return False
        return True
