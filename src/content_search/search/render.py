"""Text rendering of grouped search results."""

import os

import click

from content_search.search.messages import SearchComplete, SearchMatch

ELLIPSIS = "…"
CONTEXT_CHARS = 60


def group_matches_by_line(matches: list[SearchMatch]) -> list[tuple[int, list[SearchMatch]]]:
    """Each line once, in first-seen order, with all of its matches."""
    groups: dict[int, list[SearchMatch]] = {}
    for match in matches:
        groups.setdefault(match.line_number, []).append(match)
    return list(groups.items())


def match_line_window(match: SearchMatch, context_chars: int = CONTEXT_CHARS) -> tuple[str, str, str]:
    """
    Split a match line into (before, match, after) for display.

    Leading indentation is dropped. When the match sits further than
    ``context_chars`` into the line, the head is replaced by an ellipsis so
    the match stays in view.
    """
    display = match.line_text.lstrip()
    trimmed = len(match.line_text) - len(display)
    start = max(match.match_start - trimmed, 0)

    if start > context_chars:
        offset = start - context_chars
        display = ELLIPSIS + display[offset + 1 :]
        start = context_chars

    end = start + match.match_length
    return display[:start], display[start:end], display[end:]


def format_match_line(line_number: int, match: SearchMatch, color: bool = True) -> str:
    before, text, after = match_line_window(match)
    if color:
        text = click.style(text, fg="black", bg="yellow")
        number = click.style(f"{line_number:>6}", dim=True)
    else:
        number = f"{line_number:>6}"
    return f"{number}  {before}{text}{after}"


def format_file_header(
    file_path: str,
    match_count: int,
    root_path: str | None = None,
    color: bool = True,
) -> str:
    name = os.path.basename(file_path)
    directory = os.path.dirname(file_path)
    if root_path:
        directory = os.path.relpath(directory, root_path)
        if directory == ".":
            directory = ""
    else:
        directory = os.path.basename(directory)

    if color:
        name = click.style(name, bold=True)
        directory = click.style(directory, dim=True)
    return f"{name}  {directory}  ({match_count})"


def format_file_result(
    file_path: str,
    matches: list[SearchMatch],
    root_path: str | None = None,
    color: bool = True,
) -> list[str]:
    lines = [format_file_header(file_path, len(matches), root_path, color)]
    for line_number, line_matches in group_matches_by_line(matches):
        lines.append(format_match_line(line_number, line_matches[0], color))
    return lines


def format_summary(complete: SearchComplete) -> str:
    files = "file" if complete.total_files == 1 else "files"
    matches = "match" if complete.total_matches == 1 else "matches"
    return (
        f"{complete.total_matches} {matches} in {complete.total_files} {files} "
        f"({complete.files_searched} searched)"
    )


def format_results_text(
    results: list[tuple[str, list[SearchMatch]]],
    complete: SearchComplete,
    root_path: str | None = None,
) -> str:
    """Plain-text report of a finished search, one block per file."""
    blocks = []
    for file_path, matches in results:
        blocks.append("\n".join(format_file_result(file_path, matches, root_path, color=False)))
    blocks.append(format_summary(complete))
    return "\n\n".join(blocks)
