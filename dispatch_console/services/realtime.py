"""Real-time incoming call events.

`EventSource` keeps the listener registry; `SocketIOEventSource` feeds it from
the call-center backend's Socket.IO connection.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, List, Optional

import socketio

from dispatch_console.core.config import get_settings

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventSource:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def on(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Register a listener; returns the callable that detaches it."""
        self._handlers[event].append(handler)

        def _off() -> None:
            self.off(event, handler)

        return _off

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event) or []
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event) or [])

    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event) or []):
            try:
                await handler(payload)
            except Exception as e:
                logger.error(f"Listener for {event!r} failed: {e}")

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None


class SocketIOEventSource(EventSource):
    def __init__(self, url: str, *, events: List[str]) -> None:
        super().__init__()
        self.url = url
        self._events = list(events)
        self._sio: Optional[socketio.AsyncClient] = None

    async def connect(self) -> None:
        if self._sio is not None and self._sio.connected:
            return
        sio = socketio.AsyncClient(reconnection=True)
        for event in self._events:
            sio.on(event, self._forwarder(event))
        await sio.connect(self.url)
        self._sio = sio
        logger.info(f"Realtime connected: {self.url} events={self._events}")

    async def disconnect(self) -> None:
        if self._sio is not None:
            await self._sio.disconnect()
            self._sio = None
            logger.info("Realtime disconnected")

    def _forwarder(self, event: str) -> Callable[[Any], Awaitable[None]]:
        async def _forward(data: Any) -> None:
            payload = data if isinstance(data, dict) else {"data": data}
            await self.emit(event, payload)

        return _forward


@lru_cache
def get_event_source() -> EventSource:
    settings = get_settings()
    if settings.realtime_url:
        return SocketIOEventSource(settings.realtime_url, events=[settings.realtime_incoming_call_event])
    logger.warning("REALTIME_URL not configured, incoming calls are disabled")
    return EventSource()
