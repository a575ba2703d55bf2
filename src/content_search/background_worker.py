"""
Run a worker in a child process and talk to it through queues.

The controller side lives in the client process. It forwards envelopes to the
worker and runs a listener thread that routes every envelope the worker posts
back to the callback registered for its connection id. One request may produce
any number of envelopes.
"""

import multiprocessing
import threading
from collections.abc import Callable
from dataclasses import dataclass
from multiprocessing.process import BaseProcess
from typing import Any

from content_search.logger import logging
from content_search.search.messages import ConnectionClosedMessage, ExitMessage

logger = logging.getLogger(__name__)

EnvelopeCallback = Callable[["Envelope"], None]


@dataclass
class Envelope:
    connection_id: str
    channel: str
    payload: dict[str, Any] | None = None


class BaseWorker:
    """
    Base class for work that runs inside the child process.

    Subclasses must be picklable before ``initialize`` runs, since they are
    handed to a freshly spawned interpreter.
    """

    _outbound: Any = None

    def initialize(self):
        pass

    def process_message(self, message: Envelope | ConnectionClosedMessage):
        raise NotImplementedError

    def shutdown(self):
        pass

    def post(self, envelope: Envelope):
        """Send an envelope back to the controller. Safe to call from any thread."""
        self._outbound.put(envelope)

    def run(self, inbound, outbound):
        self._outbound = outbound
        self.initialize()
        try:
            while True:
                message = inbound.get()
                if isinstance(message, ExitMessage):
                    break
                try:
                    self.process_message(message)
                except Exception as e:
                    logger.warning("Dropping message %r: %s", message, e)
        finally:
            self.shutdown()
            outbound.put(ExitMessage())


def _run_worker(worker: BaseWorker, inbound, outbound):
    worker.run(inbound, outbound)


class BaseController:
    worker: BaseWorker
    start_method: str

    def __init__(self, worker: BaseWorker, start_method: str = "spawn"):
        self.worker = worker
        self.start_method = start_method
        self._connections: dict[str, EnvelopeCallback] = {}
        self._lock = threading.Lock()
        self._process: BaseProcess | None = None
        self._listener: threading.Thread | None = None
        self._inbound = None
        self._outbound = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def start(self):
        context = multiprocessing.get_context(self.start_method)
        self._inbound = context.Queue()
        self._outbound = context.Queue()
        self._process = context.Process(
            target=_run_worker,
            args=(self.worker, self._inbound, self._outbound),
            daemon=True,
            name=type(self.worker).__name__,
        )
        self._process.start()
        self._listener = threading.Thread(
            target=self._listen,
            daemon=True,
            name=f"{type(self.worker).__name__}-listener",
        )
        self._listener.start()
        logger.info("Started worker process %s", self._process.pid)

    def stop(self, timeout: float = 5.0):
        if self._process is None:
            return
        try:
            self._inbound.put(ExitMessage())  # type: ignore[union-attr]
        except (OSError, ValueError) as e:
            logger.warning("Failed to signal worker exit: %s", e)
        self._process.join(timeout)
        if self._process.is_alive():
            logger.warning("Worker did not exit in %.1fs, terminating", timeout)
            self._process.terminate()
            self._process.join()
            self._outbound.put(ExitMessage())  # type: ignore[union-attr]
        if self._listener is not None:
            self._listener.join(timeout)
        logger.info("Stopped worker process")
        self._process = None
        self._listener = None

    def register_connection(self, connection_id: str, callback: EnvelopeCallback):
        with self._lock:
            self._connections[connection_id] = callback

    def unregister_connection(self, connection_id: str):
        """Forget a connection and let the worker drop its state."""
        with self._lock:
            self._connections.pop(connection_id, None)
        if self.running:
            self._inbound.put(ConnectionClosedMessage(connection_id))  # type: ignore[union-attr]

    def send(self, envelope: Envelope):
        if self._inbound is None:
            raise RuntimeError("Controller has not been started")
        self._inbound.put(envelope)

    def _listen(self):
        while True:
            message = self._outbound.get()  # type: ignore[union-attr]
            if isinstance(message, ExitMessage):
                break
            with self._lock:
                callback = self._connections.get(message.connection_id)
            if callback is None:
                logger.debug("No connection %s for %s, dropping", message.connection_id, message.channel)
                continue
            try:
                callback(message)
            except Exception as e:
                logger.error("Handler for %s failed: %s", message.channel, e)
