import itertools
import os

import pytest
from conftest import RecordingConnection, write_file

from content_search.search import executor as executor_module
from content_search.search.executor import (
    CancellationToken,
    ExecutorState,
    SearchExecutor,
    SearchSessionTable,
)
from content_search.search.messages import ChannelClosedError, SearchChannel, SearchRequest


def make_executor(root, query, connection=None, table=None, clock=None, **overrides):
    connection = connection or RecordingConnection()
    table = table if table is not None else SearchSessionTable()
    request = SearchRequest(search_id="s1", root_path=str(root), query=query, **overrides)
    table.activate(connection.connection_id, "s1")
    token = CancellationToken(table, connection.connection_id, "s1")
    kwargs = {"clock": clock} if clock else {}
    return SearchExecutor(request, connection, token, **kwargs), connection, table


def result_paths(connection):
    return {os.path.relpath(r.file_path, connection.root) for r in connection.payloads(SearchChannel.RESULT)}


@pytest.fixture
def project(tmp_path):
    write_file(tmp_path, "src/app.py", "import needle\nprint('needle needle')\n")
    write_file(tmp_path, "src/lib/util.ts", "export const needle = 1;\n")
    write_file(tmp_path, "docs/readme.md", "No match here\n")
    write_file(tmp_path, "notes.txt", "NEEDLE in caps\n")
    return tmp_path


def run(root, query, **kwargs):
    executor, connection, table = make_executor(root, query, **kwargs)
    connection.root = str(root)
    state = executor.run()
    return state, executor, connection


def test_complete_totals_match_streamed_results(project):
    state, executor, connection = run(project, "needle")

    assert state is ExecutorState.COMPLETED
    results = connection.payloads(SearchChannel.RESULT)
    (complete,) = connection.payloads(SearchChannel.COMPLETE)

    assert complete.search_id == "s1"
    assert complete.total_files == len({r.file_path for r in results}) == 3
    assert complete.total_matches == sum(len(r.matches) for r in results) == 5
    assert complete.files_searched == 4
    assert connection.channels[-1] == SearchChannel.COMPLETE
    assert all(os.path.isabs(r.file_path) for r in results)


def test_files_without_matches_produce_no_message(project):
    _, _, connection = run(project, "needle")
    assert "docs/readme.md" not in {p.replace(os.sep, "/") for p in result_paths(connection)}


def test_case_sensitive_request(project):
    _, _, connection = run(project, "NEEDLE", case_sensitive=True)
    assert result_paths(connection) == {"notes.txt"}


def test_default_excludes_always_apply(tmp_path):
    write_file(tmp_path, "node_modules/pkg/index.js", "needle\n")
    write_file(tmp_path, "packages/a/node_modules/dep.js", "needle\n")
    write_file(tmp_path, ".git/config", "needle\n")
    write_file(tmp_path, "index.js", "needle\n")

    _, executor, connection = run(tmp_path, "needle", exclude_pattern="")

    assert result_paths(connection) == {"index.js"}
    assert executor.files_searched == 1


def test_user_excludes_add_to_defaults(tmp_path):
    write_file(tmp_path, "node_modules/a.js", "needle\n")
    write_file(tmp_path, "build/out.js", "needle\n")
    write_file(tmp_path, "dist/bundle.js", "needle\n")
    write_file(tmp_path, "app.min.js", "needle\n")
    write_file(tmp_path, "src/main.js", "needle\n")

    _, _, connection = run(tmp_path, "needle", exclude_pattern="build, dist/**, *.min.js")

    assert {p.replace(os.sep, "/") for p in result_paths(connection)} == {"src/main.js"}


def test_file_size_boundaries(tmp_path):
    write_file(tmp_path, "exact.txt", "needle1234")  # 10 bytes
    write_file(tmp_path, "over.txt", "needle12345")  # 11 bytes
    write_file(tmp_path, "empty.txt", "")

    _, executor, connection = run(tmp_path, "needle", max_file_size=10)

    assert result_paths(connection) == {"exact.txt"}
    assert executor.files_searched == 1


def test_extension_filtering(tmp_path):
    write_file(tmp_path, "a.py", "needle\n")
    write_file(tmp_path, "b.unknown", "needle\n")
    write_file(tmp_path, "Makefile", "needle:\n")
    write_file(tmp_path, "firmware", b"needle\x00\x01")
    write_file(tmp_path, ".gitignore", "needle\n")

    _, _, connection = run(tmp_path, "needle")

    # ".gitignore" has no extension in the splitext sense and is sniffed as text
    assert result_paths(connection) == {"a.py", "Makefile", ".gitignore"}


def test_request_extensions_replace_defaults(tmp_path):
    write_file(tmp_path, "a.py", "needle\n")
    write_file(tmp_path, "b.custom", "needle\n")

    _, _, connection = run(tmp_path, "needle", extensions=[".custom"])

    assert result_paths(connection) == {"b.custom"}


def test_include_patterns_override_extension_list(tmp_path):
    write_file(tmp_path, "data.bin", "needle\n")
    write_file(tmp_path, "main.py", "needle\n")
    write_file(tmp_path, "src/deep/x.bin", "needle\n")

    _, _, connection = run(tmp_path, "needle", include_pattern="*.bin")
    assert {p.replace(os.sep, "/") for p in result_paths(connection)} == {"data.bin", "src/deep/x.bin"}

    _, _, connection = run(tmp_path, "needle", include_pattern="src/**")
    assert {p.replace(os.sep, "/") for p in result_paths(connection)} == {"src/deep/x.bin"}


def test_symlinks_are_skipped(tmp_path):
    target = write_file(tmp_path, "real/file.txt", "needle\n")
    os.symlink(target, tmp_path / "link.txt")
    os.symlink(tmp_path / "real", tmp_path / "linked_dir")

    _, _, connection = run(tmp_path, "needle")

    assert {p.replace(os.sep, "/") for p in result_paths(connection)} == {"real/file.txt"}


def test_deep_trees_do_not_recurse(tmp_path):
    deep = tmp_path
    for i in range(200):
        deep = deep / f"d{i}"
    write_file(deep, "leaf.txt", "needle\n")

    state, _, connection = run(tmp_path, "needle")

    assert state is ExecutorState.COMPLETED
    assert len(connection.payloads(SearchChannel.RESULT)) == 1


def test_long_line_offsets_are_not_rebased(tmp_path):
    write_file(tmp_path, "long.txt", "x" * 550 + "needle\n")

    _, _, connection = run(tmp_path, "needle")

    (result,) = connection.payloads(SearchChannel.RESULT)
    (match,) = result.matches
    assert len(match.line_text) == 500
    assert match.match_start == 550


def test_unreadable_directory_is_skipped(tmp_path, monkeypatch):
    write_file(tmp_path, "locked/secret.txt", "needle\n")
    write_file(tmp_path, "open/visible.txt", "needle\n")
    real_scandir = os.scandir
    locked = str(tmp_path / "locked")

    def scandir(path):
        if str(path) == locked:
            raise PermissionError("denied")
        return real_scandir(path)

    monkeypatch.setattr(executor_module.os, "scandir", scandir)

    state, _, connection = run(tmp_path, "needle")

    assert state is ExecutorState.COMPLETED
    assert {p.replace(os.sep, "/") for p in result_paths(connection)} == {"open/visible.txt"}


def test_unreadable_file_is_skipped(tmp_path, monkeypatch):
    write_file(tmp_path, "a.txt", "needle\n")
    write_file(tmp_path, "b.txt", "needle\n")
    real_search = executor_module.search_file_content

    def search_file_content(path, query, case_sensitive):
        if path.endswith("a.txt"):
            raise OSError("I/O error")
        return real_search(path, query, case_sensitive)

    monkeypatch.setattr(executor_module, "search_file_content", search_file_content)

    state, executor, connection = run(tmp_path, "needle")

    assert state is ExecutorState.COMPLETED
    assert result_paths(connection) == {"b.txt"}
    assert executor.files_searched == 1


def test_cancel_silences_everything_after(tmp_path):
    for i in range(5):
        write_file(tmp_path, f"f{i}.txt", "needle\n")
    table = SearchSessionTable()

    def cancel_on_first_result(channel, payload):
        if channel == SearchChannel.RESULT:
            table.deactivate("conn-1")

    connection = RecordingConnection(before_send=cancel_on_first_result)
    state, _, connection = run(tmp_path, "needle", connection=connection, table=table)

    assert state is ExecutorState.CANCELLED
    assert connection.channels == [SearchChannel.RESULT]


def test_superseded_search_stops_emitting(tmp_path):
    for i in range(5):
        write_file(tmp_path, f"f{i}.txt", "needle\n")
    table = SearchSessionTable()

    def supersede(channel, payload):
        table.activate("conn-1", "s2")

    connection = RecordingConnection(before_send=supersede)
    state, _, connection = run(tmp_path, "needle", connection=connection, table=table)

    assert state is ExecutorState.CANCELLED
    assert len(connection.sent) == 1
    assert table.live_search("conn-1") == "s2"


def test_cancelled_before_start_emits_nothing(project):
    executor, connection, table = make_executor(project, "needle")
    table.deactivate(connection.connection_id)

    assert executor.run() is ExecutorState.CANCELLED
    assert connection.sent == []


def test_progress_is_throttled(tmp_path):
    for i in range(4):
        write_file(tmp_path, f"f{i}.txt", "nothing\n")

    _, _, connection = run(tmp_path, "needle", clock=lambda: 0.0)
    assert connection.payloads(SearchChannel.PROGRESS) == []

    ticks = itertools.count(step=0.25)
    _, _, connection = run(tmp_path, "needle", clock=lambda: next(ticks))
    progress = connection.payloads(SearchChannel.PROGRESS)
    assert [p.files_searched for p in progress] == [1, 2, 3, 4]
    assert all(p.search_id == "s1" for p in progress)


def test_closed_connection_does_not_abort_search(project):
    class ClosedConnection(RecordingConnection):
        def send(self, channel, payload):
            raise ChannelClosedError("gone")

    state, executor, _ = run(project, "needle", connection=ClosedConnection())

    assert state is ExecutorState.COMPLETED
    assert executor.total_files == 3


def test_unexpected_failure_becomes_one_error(project, monkeypatch):
    def broken(patterns):
        raise RuntimeError("pattern compiler exploded")

    monkeypatch.setattr(executor_module, "build_include_matcher", broken)

    state, _, connection = run(project, "needle")

    assert state is ExecutorState.ERRORED
    assert connection.channels == [SearchChannel.ERROR]
    (error,) = connection.payloads(SearchChannel.ERROR)
    assert error.search_id == "s1"
    assert error.message == "pattern compiler exploded"


def test_failure_without_message_uses_default(project, monkeypatch):
    def broken(patterns):
        raise RuntimeError()

    monkeypatch.setattr(executor_module, "build_include_matcher", broken)

    _, _, connection = run(project, "needle")

    (error,) = connection.payloads(SearchChannel.ERROR)
    assert error.message == "Search failed"


def test_session_table_keeps_one_live_search_per_connection():
    table = SearchSessionTable()
    table.activate("a", "s1")
    table.activate("a", "s2")
    table.activate("b", "s3")

    assert table.live_search("a") == "s2"
    assert not table.is_live("a", "s1")
    assert len(table) == 2

    table.remove_connection("a")
    assert table.live_search("a") is None
    assert len(table) == 1


def test_include_star_does_not_descend(tmp_path):
    write_file(tmp_path, "src/top.ts", "needle\n")
    write_file(tmp_path, "src/nested/deep.ts", "needle\n")

    _, _, connection = run(tmp_path, "needle", include_pattern="src/*")

    assert {p.replace(os.sep, "/") for p in result_paths(connection)} == {"src/top.ts"}
