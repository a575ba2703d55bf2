"""Host-side search execution.

A search is an iterative walk over an explicit directory stack. Cancellation is
cooperative: the walk polls a token before each directory, before each entry,
and immediately before every outbound message. Supersession needs no signal at
all, since starting a new search for a connection simply makes the old search
id stop being the live one.
"""

import os
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from content_search.logger import logging
from content_search.search.classifier import is_likely_text_file
from content_search.search.messages import (
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_SEARCHABLE_EXTENSIONS,
    ChannelClosedError,
    SearchChannel,
    SearchComplete,
    SearchError,
    SearchFileResult,
    SearchProgress,
    SearchRequest,
)
from content_search.search.patterns import (
    build_exclude_matcher,
    build_include_matcher,
    merge_exclude_patterns,
    parse_patterns,
)
from content_search.search.scanner import search_file_content

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 0.2  # seconds between progress messages


class Connection(Protocol):
    connection_id: str

    def send(self, channel: str, payload: Any) -> None: ...


class SearchSessionTable:
    """
    Live search id per client connection.

    At most one search is live per connection. Activating a new id overwrites
    the previous one, which is how older searches learn they were superseded.
    """

    def __init__(self):
        self._live: dict[str, str] = {}
        self._lock = threading.Lock()

    def activate(self, connection_id: str, search_id: str):
        with self._lock:
            self._live[connection_id] = search_id

    def deactivate(self, connection_id: str):
        with self._lock:
            self._live.pop(connection_id, None)

    def remove_connection(self, connection_id: str):
        """Drop all state for a connection that has gone away."""
        self.deactivate(connection_id)

    def live_search(self, connection_id: str) -> str | None:
        with self._lock:
            return self._live.get(connection_id)

    def is_live(self, connection_id: str, search_id: str) -> bool:
        return self.live_search(connection_id) == search_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._live)


class CancellationToken:
    table: SearchSessionTable
    connection_id: str
    search_id: str

    def __init__(self, table: SearchSessionTable, connection_id: str, search_id: str):
        self.table = table
        self.connection_id = connection_id
        self.search_id = search_id

    @property
    def cancelled(self) -> bool:
        return not self.table.is_live(self.connection_id, self.search_id)


class ExecutorState(Enum):
    WALKING = "walking"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERRORED = "errored"


class SearchExecutor:
    request: SearchRequest
    connection: Connection
    token: CancellationToken
    clock: Callable[[], float]

    state: ExecutorState
    files_searched: int
    total_matches: int
    total_files: int

    def __init__(
        self,
        request: SearchRequest,
        connection: Connection,
        token: CancellationToken,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.request = request
        self.connection = connection
        self.token = token
        self.clock = clock

        self.state = ExecutorState.WALKING
        self.files_searched = 0
        self.total_matches = 0
        self.total_files = 0

    def run(self) -> ExecutorState:
        """
        Run the search to completion, cancellation or failure.

        Never raises: a failure is reported once on ``search:error``.
        """
        try:
            self._walk()
        except Exception as e:
            self.state = ExecutorState.ERRORED
            message = str(e) or "Search failed"
            logger.warning("Search %s failed: %s", self.request.search_id, message)
            self._emit(SearchChannel.ERROR, SearchError(self.request.search_id, message))
        return self.state

    def _emit(self, channel: str, payload: Any) -> bool:
        """Send unless cancelled. Returns False if the search is no longer live."""
        if self.token.cancelled:
            return False
        try:
            self.connection.send(channel, payload)
        except ChannelClosedError:
            logger.debug("Connection %s closed, dropping %s", self.connection.connection_id, channel)
        return True

    def _cancel(self) -> ExecutorState:
        self.state = ExecutorState.CANCELLED
        logger.info(
            "Search %s cancelled after %d files",
            self.request.search_id,
            self.files_searched,
        )
        return self.state

    def _walk(self):
        request = self.request
        root_path = request.root_path

        include_patterns = parse_patterns(request.include_pattern)
        exclude_patterns = parse_patterns(merge_exclude_patterns(request.exclude_pattern))
        include_matcher = build_include_matcher(include_patterns)
        exclude_matcher = build_exclude_matcher(exclude_patterns)

        extension_set = set(request.extensions or DEFAULT_SEARCHABLE_EXTENSIONS)
        max_file_size = request.max_file_size or DEFAULT_MAX_FILE_SIZE

        logger.info("Search %s started in %s", request.search_id, root_path)
        last_progress_time = self.clock()

        # Explicit stack so depth is not bounded by recursion
        dir_stack = [root_path]

        while dir_stack:
            if self.token.cancelled:
                return self._cancel()

            current_dir = dir_stack.pop()
            try:
                with os.scandir(current_dir) as it:
                    entries = list(it)
            except OSError as e:
                logger.debug("Skipping unreadable directory %s: %s", current_dir, e)
                continue

            for entry in entries:
                if self.token.cancelled:
                    return self._cancel()

                full_path = os.path.join(current_dir, entry.name)

                try:
                    is_dir = entry.is_dir(follow_symlinks=False)
                    is_file = entry.is_file(follow_symlinks=False)
                except OSError:
                    continue

                if is_dir:
                    if not exclude_matcher.match_dir(entry.name):
                        dir_stack.append(full_path)
                    continue

                if not is_file:
                    continue

                rel_path = os.path.relpath(full_path, root_path).replace("\\", "/")

                if exclude_matcher.match_file(rel_path):
                    continue

                ext = os.path.splitext(entry.name)[1].lower()

                # Include patterns replace the extension list entirely
                if include_patterns:
                    if not include_matcher(rel_path):
                        continue
                elif not (ext and ext in extension_set):
                    if ext:
                        continue
                    if not is_likely_text_file(full_path):
                        continue

                try:
                    size = os.stat(full_path).st_size
                except OSError:
                    continue
                if size > max_file_size or size == 0:
                    continue

                try:
                    matches = search_file_content(full_path, request.query, request.case_sensitive)
                except OSError as e:
                    logger.debug("Skipping unreadable file %s: %s", full_path, e)
                    continue
                self.files_searched += 1

                if matches:
                    self.total_matches += len(matches)
                    self.total_files += 1
                    result = SearchFileResult(request.search_id, full_path, matches)
                    if not self._emit(SearchChannel.RESULT, result):
                        return self._cancel()

                now = self.clock()
                if now - last_progress_time > PROGRESS_INTERVAL:
                    last_progress_time = now
                    progress = SearchProgress(request.search_id, self.files_searched)
                    if not self._emit(SearchChannel.PROGRESS, progress):
                        return self._cancel()

        complete = SearchComplete(
            search_id=request.search_id,
            total_matches=self.total_matches,
            total_files=self.total_files,
            files_searched=self.files_searched,
        )
        if not self._emit(SearchChannel.COMPLETE, complete):
            return self._cancel()

        self.state = ExecutorState.COMPLETED
        logger.info(
            "Search %s complete: %d matches in %d files (%d searched)",
            request.search_id,
            self.total_matches,
            self.total_files,
            self.files_searched,
        )
        return self.state
