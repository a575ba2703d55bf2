"""
Client-side transports for the search channels.

The session controller only sees the ``Transport`` protocol, so it can run
against the worker process, an in-process host, or a test double.
"""

import threading
import uuid
from collections.abc import Callable
from typing import Any, Protocol

from content_search.background_worker import BaseController, Envelope
from content_search.logger import logging
from content_search.search.host import HostConnection, SearchHost
from content_search.search.messages import ChannelClosedError, decode_payload, encode_payload

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]


class Transport(Protocol):
    def send(self, channel: str, payload: Any = None) -> None: ...

    def subscribe(self, channel: str, handler: MessageHandler) -> None: ...

    def unsubscribe(self, channel: str, handler: MessageHandler) -> None: ...

    def close(self) -> None: ...


class ChannelRouter:
    """Handler bookkeeping shared by the transports."""

    def __init__(self):
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, channel: str, handler: MessageHandler):
        with self._lock:
            self._handlers.setdefault(channel, []).append(handler)

    def unsubscribe(self, channel: str, handler: MessageHandler):
        with self._lock:
            handlers = self._handlers.get(channel, [])
            if handler in handlers:
                handlers.remove(handler)

    def handler_count(self, channel: str | None = None) -> int:
        with self._lock:
            if channel is not None:
                return len(self._handlers.get(channel, []))
            return sum(len(h) for h in self._handlers.values())

    def deliver(self, channel: str, payload: dict[str, Any] | None):
        """Decode a wire payload and hand it to every subscriber of ``channel``."""
        try:
            message = decode_payload(channel, payload)
        except ValueError as e:
            logger.warning("Dropping malformed %s message: %s", channel, e)
            return
        with self._lock:
            handlers = list(self._handlers.get(channel, []))
        for handler in handlers:
            try:
                handler(message)
            except Exception as e:
                name = getattr(handler, "__name__", repr(handler))
                logger.error("Handler %s failed for %s: %s", name, channel, e)


class LocalTransport(ChannelRouter):
    """Talks to a ``SearchHost`` in the same process."""

    host: SearchHost
    connection: HostConnection

    def __init__(self, host: SearchHost, connection_id: str | None = None):
        super().__init__()
        self.host = host
        self.connection = HostConnection(connection_id or str(uuid.uuid4()), self._receive)

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    def _receive(self, connection_id: str, channel: str, payload: dict[str, Any] | None):
        self.deliver(channel, payload)

    def send(self, channel: str, payload: Any = None):
        if self.connection.closed:
            raise ChannelClosedError("Transport is closed")
        self.host.dispatch(self.connection, channel, encode_payload(payload))

    def close(self):
        if not self.connection.closed:
            self.connection.close()
            self.host.connection_closed(self.connection_id)


class ProcessTransport(ChannelRouter):
    """One connection to the search worker process."""

    controller: BaseController
    connection_id: str

    def __init__(self, controller: BaseController, connection_id: str | None = None):
        super().__init__()
        self.controller = controller
        self.connection_id = connection_id or str(uuid.uuid4())
        self._closed = False
        controller.register_connection(self.connection_id, self._receive)

    def _receive(self, envelope: Envelope):
        self.deliver(envelope.channel, envelope.payload)

    def send(self, channel: str, payload: Any = None):
        if self._closed:
            raise ChannelClosedError("Transport is closed")
        self.controller.send(Envelope(self.connection_id, channel, encode_payload(payload)))

    def close(self):
        if not self._closed:
            self._closed = True
            self.controller.unregister_connection(self.connection_id)
