import threading
import time
from collections.abc import Callable
from typing import Any

from content_search.background_worker import BaseWorker, Envelope
from content_search.logger import logging
from content_search.search.executor import CancellationToken, SearchExecutor, SearchSessionTable
from content_search.search.messages import (
    HOST_CHANNELS,
    ChannelClosedError,
    ConnectionClosedMessage,
    SearchChannel,
    SearchRequest,
    decode_payload,
    encode_payload,
)

logger = logging.getLogger(__name__)

PostFunction = Callable[[str, str, dict[str, Any] | None], None]


class HostConnection:
    """The client connection a message arrived on. Results are routed back through it."""

    connection_id: str

    def __init__(self, connection_id: str, post: PostFunction):
        self.connection_id = connection_id
        self._post = post
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        self._closed = True

    def send(self, channel: str, payload: Any):
        if self._closed:
            raise ChannelClosedError(f"Connection {self.connection_id} is closed")
        self._post(self.connection_id, channel, encode_payload(payload))


class SearchHost:
    """
    Accepts ``search:start`` / ``search:cancel`` and runs one executor thread per request.

    The session table is owned here, so its lifetime is the host's.
    """

    sessions: SearchSessionTable

    def __init__(self):
        self.sessions = SearchSessionTable()
        self._threads: set[threading.Thread] = set()
        self._lock = threading.Lock()

    def dispatch(self, connection: HostConnection, channel: str, payload: Any):
        """
        Handle one inbound message.

        Raises:
            ValueError: If the channel is not a host channel or the payload is malformed.
        """
        if channel not in HOST_CHANNELS:
            raise ValueError(f"Unsupported host channel: {channel}")

        if channel == SearchChannel.START:
            request = payload if isinstance(payload, SearchRequest) else decode_payload(channel, payload)
            self.start_search(connection, request)
        else:
            self.cancel_search(connection.connection_id)

    def start_search(self, connection: HostConnection, request: SearchRequest) -> threading.Thread:
        # Overwriting the live id is what supersedes any older search
        self.sessions.activate(connection.connection_id, request.search_id)
        token = CancellationToken(self.sessions, connection.connection_id, request.search_id)
        executor = SearchExecutor(request, connection, token)

        thread = threading.Thread(
            target=self._run_executor,
            args=(executor,),
            daemon=True,
            name=f"search-{request.search_id}",
        )
        with self._lock:
            self._threads.add(thread)
        thread.start()
        return thread

    def cancel_search(self, connection_id: str):
        logger.debug("Cancel requested by connection %s", connection_id)
        self.sessions.deactivate(connection_id)

    def connection_closed(self, connection_id: str):
        self.sessions.remove_connection(connection_id)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """
        Wait for running searches to finish, including ones started meanwhile.

        Returns False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                running = [t for t in self._threads if t.is_alive()]
            if not running:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            running[0].join(remaining)

    def _run_executor(self, executor: SearchExecutor):
        try:
            executor.run()
        finally:
            with self._lock:
                self._threads.discard(threading.current_thread())


class SearchWorker(BaseWorker):
    """Hosts a ``SearchHost`` inside the worker process."""

    host: SearchHost
    connections: dict[str, HostConnection]

    def initialize(self):
        logger.info("Initializing search worker")
        self.host = SearchHost()
        self.connections = {}

    def _connection(self, connection_id: str) -> HostConnection:
        connection = self.connections.get(connection_id)
        if connection is None:
            connection = HostConnection(connection_id, self._post_envelope)
            self.connections[connection_id] = connection
        return connection

    def _post_envelope(self, connection_id: str, channel: str, payload: dict[str, Any] | None):
        self.post(Envelope(connection_id, channel, payload))

    def process_message(self, message: Envelope | ConnectionClosedMessage):
        if isinstance(message, ConnectionClosedMessage):
            connection = self.connections.pop(message.connection_id, None)
            if connection is not None:
                connection.close()
            self.host.connection_closed(message.connection_id)
            return
        self.host.dispatch(self._connection(message.connection_id), message.channel, message.payload)

    def shutdown(self):
        for connection_id, connection in self.connections.items():
            connection.close()
            self.host.connection_closed(connection_id)
        if not self.host.wait_idle(timeout=1.0):
            logger.warning("Searches still running at shutdown")
