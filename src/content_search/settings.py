"""Externally-owned search settings."""

import os
from dataclasses import dataclass, field

from content_search.search.messages import (
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_SEARCHABLE_EXTENSIONS,
)

MAX_FILE_SIZE_ENV_VAR = "CONTENT_SEARCH_MAX_FILE_SIZE"
EXTENSIONS_ENV_VAR = "CONTENT_SEARCH_EXTENSIONS"


@dataclass
class SearchSettings:
    """Settings the session controller copies into every request."""

    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_SEARCHABLE_EXTENSIONS))


def parse_extensions(value: str) -> list[str]:
    """Parse a comma-separated extension list, e.g. ``".py, .md"``."""
    return [ext.strip() for ext in value.split(",") if ext.strip()]


def get_search_settings(
    max_file_size: int | None = None,
    extensions: list[str] | None = None,
) -> SearchSettings:
    """
    Build the search settings.

    Args:
        max_file_size: Overrides the CONTENT_SEARCH_MAX_FILE_SIZE env var.
        extensions: Overrides the CONTENT_SEARCH_EXTENSIONS env var.

    Raises:
        ValueError: If the max file size is not a positive integer.
    """
    if max_file_size is None:
        raw_size = os.environ.get(MAX_FILE_SIZE_ENV_VAR)
        if raw_size is None or not raw_size.strip():
            max_file_size = DEFAULT_MAX_FILE_SIZE
        else:
            try:
                max_file_size = int(raw_size)
            except ValueError:
                raise ValueError(
                    f"Invalid {MAX_FILE_SIZE_ENV_VAR}: {raw_size!r} is not an integer"
                ) from None

    if max_file_size <= 0:
        raise ValueError(f"Max file size must be positive, got {max_file_size}")

    if extensions is None:
        raw_extensions = os.environ.get(EXTENSIONS_ENV_VAR)
        if raw_extensions:
            extensions = parse_extensions(raw_extensions)
        else:
            extensions = list(DEFAULT_SEARCHABLE_EXTENSIONS)

    return SearchSettings(max_file_size=max_file_size, extensions=extensions)
