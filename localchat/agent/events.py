"""
Event sinks for streaming a turn to its caller.

Every emission is best-effort: a sink whose consumer has gone away drops
events silently and never fails the turn.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CHAT_TOKEN = "chat-token"
TOOL_MESSAGE = "tool-message"
TOOL_STREAM = "tool-stream"
CHAT_END = "chat-end"
CHAT_ERROR = "chat-error"


class EventSink:
    """
    Receiver of turn events.

    Subclasses override ``emit``; the typed helpers build the event names.
    """

    def emit(self, event: str, data: Any) -> None:
        pass

    def token(self, text: str) -> None:
        self.emit(CHAT_TOKEN, text)

    def tool_message(self, name: str, content: str) -> None:
        self.emit(TOOL_MESSAGE, {"name": name, "content": content})

    def tool_stream(self, text: str) -> None:
        self.emit(TOOL_STREAM, text)

    def turn_complete(self) -> None:
        self.emit(CHAT_END, None)

    def turn_failed(self, error: Dict[str, Any]) -> None:
        self.emit(CHAT_ERROR, error)


class NullEventSink(EventSink):
    """Discards every event."""


class QueueEventSink(EventSink):
    """
    Buffers events in an asyncio queue for a streaming HTTP response.

    ``close`` enqueues a sentinel; after it, events are dropped.
    """

    _SENTINEL = None

    def __init__(self, maxsize: int = 0):
        self.queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def emit(self, event: str, data: Any) -> None:
        if self.closed:
            return
        try:
            self.queue.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logger.debug(f"Event queue full, dropping {event}")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(self._SENTINEL)
        except asyncio.QueueFull:
            logger.debug("Event queue full, consumer will stop on its own")

    async def events(self):
        """Yield queued events until the sink is closed."""
        while True:
            item = await self.queue.get()
            if item is self._SENTINEL:
                return
            yield item
