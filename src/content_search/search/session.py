"""
Client-side search state.

Tracks the query and filters, turns edits into debounced requests, and
accumulates streamed results. Every inbound message is checked against the
current search id first, so results of superseded or cancelled searches never
reach the state.
"""

import dataclasses
import itertools
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from content_search.logger import logging
from content_search.search.messages import (
    CLIENT_CHANNELS,
    ChannelClosedError,
    SearchChannel,
    SearchComplete,
    SearchError,
    SearchFileResult,
    SearchMatch,
    SearchProgress,
    SearchRequest,
)
from content_search.search.transport import MessageHandler, Transport
from content_search.settings import SearchSettings, get_search_settings

logger = logging.getLogger(__name__)

DEBOUNCE_DELAY = 0.5  # seconds

StateListener = Callable[["SearchState"], None]


@dataclass
class FileSearchResult:
    file_path: str
    matches: list[SearchMatch] = field(default_factory=list)


@dataclass
class SearchState:
    search_open: bool = False
    query: str = ""
    include_pattern: str = ""
    exclude_pattern: str = ""
    show_filters: bool = False
    is_searching: bool = False
    results: list[FileSearchResult] = field(default_factory=list)
    total_matches: int = 0
    total_files: int = 0
    files_searched: int = 0

    def reset_results(self):
        self.results = []
        self.total_matches = 0
        self.total_files = 0
        self.files_searched = 0


class Debouncer:
    """
    A single restartable timer.

    Arming it again before it fires replaces the pending call, so a burst of
    edits turns into one trailing call.
    """

    delay: float

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.delay = delay
        self._callback = callback
        self._timer_factory = timer_factory
        self._timer = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def arm(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            generation = self._generation
            timer = self._timer_factory(self.delay, lambda: self._fire(generation))
            timer.daemon = True
            self._timer = timer
        timer.start()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1

    def _fire(self, generation: int):
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self._callback()


class SearchSessionController:
    transport: Transport
    current_search_id: str | None

    def __init__(
        self,
        transport: Transport,
        get_root_path: Callable[[], str],
        get_settings: Callable[[], SearchSettings] = get_search_settings,
        debounce_delay: float = DEBOUNCE_DELAY,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.transport = transport
        self.current_search_id = None
        self._get_root_path = get_root_path
        self._get_settings = get_settings
        self._state = SearchState()
        self._lock = threading.RLock()
        self._listeners: list[StateListener] = []
        self._search_ids = itertools.count(1)
        self._subscriptions: list[tuple[str, MessageHandler]] = []
        self._debouncer = Debouncer(debounce_delay, self._send_search, timer_factory)
        self._subscribe()

    # State

    @property
    def state(self) -> SearchState:
        """A snapshot of the current state."""
        with self._lock:
            return dataclasses.replace(self._state, results=list(self._state.results))

    def add_listener(self, listener: StateListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _update(self, change: Callable[[SearchState], None]):
        with self._lock:
            change(self._state)
        self._notify()

    def _notify(self):
        if not self._listeners:
            return
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("State listener failed: %s", e)

    @property
    def has_active_search(self) -> bool:
        """A query is entered and there is at least one result, searching or not."""
        with self._lock:
            return bool(self._state.query.strip()) and bool(self._state.results)

    @property
    def matching_file_paths(self) -> set[str]:
        with self._lock:
            return {r.file_path for r in self._state.results}

    # Inbound messages

    def _on(self, channel: str, handler: MessageHandler):
        self.transport.subscribe(channel, handler)
        self._subscriptions.append((channel, handler))

    def _subscribe(self):
        handlers = {
            SearchChannel.RESULT: self._on_result,
            SearchChannel.PROGRESS: self._on_progress,
            SearchChannel.COMPLETE: self._on_complete,
            SearchChannel.ERROR: self._on_error,
        }
        for channel in CLIENT_CHANNELS:
            self._on(channel, handlers[channel])

    def _on_result(self, message: SearchFileResult):
        with self._lock:
            if message.search_id != self.current_search_id:
                return
            self._state.results.append(FileSearchResult(message.file_path, list(message.matches)))
            self._state.total_matches += len(message.matches)
            self._state.total_files += 1
        self._notify()

    def _on_progress(self, message: SearchProgress):
        with self._lock:
            if message.search_id != self.current_search_id:
                return
            self._state.files_searched = message.files_searched
        self._notify()

    def _on_complete(self, message: SearchComplete):
        with self._lock:
            if message.search_id != self.current_search_id:
                return
            self._state.is_searching = False
            self._state.files_searched = message.files_searched
            self._state.total_matches = message.total_matches
            self._state.total_files = message.total_files
        self._notify()

    def _on_error(self, message: SearchError):
        with self._lock:
            if message.search_id != self.current_search_id:
                return
            self._state.is_searching = False
        logger.error("Search error: %s", message.message)
        self._notify()

    # Outbound requests

    def _send(self, channel: str, payload: Any = None) -> bool:
        try:
            self.transport.send(channel, payload)
        except ChannelClosedError as e:
            logger.warning("Could not send %s: %s", channel, e)
            return False
        return True

    def _send_search(self):
        with self._lock:
            query = self._state.query.strip()
        if not query:
            self.cancel_search()
            return

        try:
            settings = self._get_settings()
        except ValueError as e:
            logger.error("Invalid search settings: %s", e)
            self._update(lambda s: setattr(s, "is_searching", False))
            return

        with self._lock:
            search_id = f"search-{next(self._search_ids)}"
            self.current_search_id = search_id
            self._state.is_searching = True
            self._state.reset_results()

            request = SearchRequest(
                search_id=search_id,
                root_path=self._get_root_path(),
                query=query,
                include_pattern=self._state.include_pattern,
                exclude_pattern=self._state.exclude_pattern,
                case_sensitive=False,
                max_file_size=settings.max_file_size,
                extensions=list(settings.extensions),
            )
        self._notify()

        if not self._send(SearchChannel.START, request):
            self._update(lambda s: setattr(s, "is_searching", False))

    def cancel_search(self):
        """Stop the current search. Accumulated results are kept."""
        with self._lock:
            if self.current_search_id is None:
                return
            self.current_search_id = None
            self._state.is_searching = False
        self._send(SearchChannel.CANCEL)
        self._notify()

    def _schedule_if_query(self):
        with self._lock:
            has_query = bool(self._state.query.strip())
        if has_query:
            self._debouncer.arm()

    # User actions

    def set_query(self, query: str):
        self._update(lambda s: setattr(s, "query", query))
        if query.strip():
            self._debouncer.arm()
        else:
            self._debouncer.cancel()
            self.cancel_search()
            self._update(SearchState.reset_results)

    def set_include_pattern(self, pattern: str):
        self._update(lambda s: setattr(s, "include_pattern", pattern))
        self._schedule_if_query()

    def set_exclude_pattern(self, pattern: str):
        self._update(lambda s: setattr(s, "exclude_pattern", pattern))
        self._schedule_if_query()

    def trigger_search(self):
        """Search now, e.g. on Enter, without waiting for the debounce."""
        with self._lock:
            has_query = bool(self._state.query.strip())
        if has_query:
            self._debouncer.cancel()
            self._send_search()

    def toggle_search_open(self):
        with self._lock:
            is_open = self._state.search_open
        if is_open:
            # Closing the panel throws the search away
            self.clear_search()
            self._update(lambda s: setattr(s, "search_open", False))
        else:
            self._update(lambda s: setattr(s, "search_open", True))

    def toggle_filters(self):
        self._update(lambda s: setattr(s, "show_filters", not s.show_filters))

    def clear_search(self):
        self._debouncer.cancel()
        self.cancel_search()

        def clear(s: SearchState):
            s.query = ""
            s.include_pattern = ""
            s.exclude_pattern = ""
            s.is_searching = False
            s.reset_results()

        self._update(clear)

    def dispose(self):
        self._debouncer.cancel()
        self.cancel_search()
        for channel, handler in self._subscriptions:
            self.transport.unsubscribe(channel, handler)
        self._subscriptions = []
