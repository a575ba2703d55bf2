import re
from pathlib import Path

from content_search.search.messages import SearchMatch

MAX_LINE_TEXT_LENGTH = 500  # chars reported per matching line

LINE_SPLIT_RE = re.compile(r"\r?\n")


def find_line_matches(
    line: str,
    query: str,
    line_number: int,
    case_sensitive: bool = False,
) -> list[SearchMatch]:
    """
    Find every occurrence of ``query`` in one line.

    The scan resumes one character past each hit, so matches may overlap:
    "aa" in "aaaa" is found at 0, 1 and 2. Offsets refer to the full line even
    when the reported text is truncated.
    """
    if not query:
        return []

    search_query = query if case_sensitive else query.lower()
    search_line = line if case_sensitive else line.lower()
    line_text = line[:MAX_LINE_TEXT_LENGTH]

    matches = []
    start = 0
    while True:
        index = search_line.find(search_query, start)
        if index == -1:
            break
        matches.append(
            SearchMatch(
                line_number=line_number,
                line_text=line_text,
                match_start=index,
                match_length=len(query),
            )
        )
        start = index + 1
    return matches


def search_text(text: str, query: str, case_sensitive: bool = False) -> list[SearchMatch]:
    """Search ``text`` line by line."""
    matches: list[SearchMatch] = []
    if not query:
        return matches
    for i, line in enumerate(LINE_SPLIT_RE.split(text)):
        matches.extend(find_line_matches(line, query, i + 1, case_sensitive))
    return matches


def search_file_content(path: str | Path, query: str, case_sensitive: bool = False) -> list[SearchMatch]:
    """
    Read a file as UTF-8 and search it.

    Undecodable bytes are replaced rather than failing the file. Raises
    ``OSError`` if the file cannot be read.
    """
    with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
        content = f.read()
    return search_text(content, query, case_sensitive)
