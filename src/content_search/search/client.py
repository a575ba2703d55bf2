import threading
import uuid
from collections.abc import Callable

from content_search.search.messages import (
    SearchChannel,
    SearchComplete,
    SearchError,
    SearchFileResult,
    SearchProgress,
    SearchRequest,
)
from content_search.search.transport import Transport


class SearchFailedError(Exception):
    """The host reported ``search:error`` for the request."""


def new_search_id() -> str:
    return f"search-{uuid.uuid4().hex[:12]}"


def run_search(
    transport: Transport,
    request: SearchRequest,
    on_result: Callable[[SearchFileResult], None] | None = None,
    on_progress: Callable[[SearchProgress], None] | None = None,
    timeout: float | None = None,
) -> SearchComplete:
    """
    Send one request and block until its terminal message arrives.

    Messages for other search ids are ignored. On timeout the search is
    cancelled and ``TimeoutError`` is raised.

    Raises:
        SearchFailedError: If the host reports an error.
        TimeoutError: If no terminal message arrives within ``timeout``.
    """
    done = threading.Event()
    outcome: list[SearchComplete | SearchError] = []

    def handle_result(message: SearchFileResult):
        if message.search_id == request.search_id and on_result is not None:
            on_result(message)

    def handle_progress(message: SearchProgress):
        if message.search_id == request.search_id and on_progress is not None:
            on_progress(message)

    def handle_terminal(message: SearchComplete | SearchError):
        if message.search_id == request.search_id and not done.is_set():
            outcome.append(message)
            done.set()

    handlers = [
        (SearchChannel.RESULT, handle_result),
        (SearchChannel.PROGRESS, handle_progress),
        (SearchChannel.COMPLETE, handle_terminal),
        (SearchChannel.ERROR, handle_terminal),
    ]
    for channel, handler in handlers:
        transport.subscribe(channel, handler)

    try:
        transport.send(SearchChannel.START, request)
        if not done.wait(timeout):
            transport.send(SearchChannel.CANCEL)
            raise TimeoutError(f"Search {request.search_id} timed out after {timeout}s")
    finally:
        for channel, handler in handlers:
            transport.unsubscribe(channel, handler)

    message = outcome[0]
    if isinstance(message, SearchError):
        raise SearchFailedError(message.message)
    return message
