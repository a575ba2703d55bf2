"""
Channel names and payloads for the streamed content search.

A search is one ``search:start`` from the client followed by any number of
``search:result`` / ``search:progress`` messages from the host and exactly one
terminal ``search:complete`` or ``search:error``. Payloads cross the process
boundary as plain dicts with camelCase keys.
"""

from dataclasses import dataclass, field, fields
from typing import Any


class SearchChannel:
    START = "search:start"
    CANCEL = "search:cancel"
    RESULT = "search:result"
    PROGRESS = "search:progress"
    COMPLETE = "search:complete"
    ERROR = "search:error"


HOST_CHANNELS = (SearchChannel.START, SearchChannel.CANCEL)
CLIENT_CHANNELS = (
    SearchChannel.RESULT,
    SearchChannel.PROGRESS,
    SearchChannel.COMPLETE,
    SearchChannel.ERROR,
)

DEFAULT_SEARCHABLE_EXTENSIONS: tuple[str, ...] = (
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    ".json", ".jsonc", ".json5",
    ".html", ".htm", ".xml", ".svg",
    ".css", ".scss", ".sass", ".less",
    ".md", ".mdx", ".txt", ".log",
    ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf",
    ".env", ".gitignore", ".editorconfig",
    ".sh", ".bash", ".zsh", ".bat", ".cmd", ".ps1",
    ".py", ".rb", ".java", ".c", ".cpp", ".h", ".hpp", ".cs", ".go", ".rs", ".swift", ".kt",
    ".sql", ".graphql", ".gql",
    ".vue", ".svelte", ".astro",
    ".csv",
    ".todo.json",
)  # fmt: skip

DEFAULT_EXCLUDE_PATTERNS = "node_modules,.git"

DEFAULT_MAX_FILE_SIZE = 1024 * 1024  # 1 MiB


@dataclass
class SearchRequest:
    search_id: str
    root_path: str
    query: str
    include_pattern: str = ""  # comma-separated globs, e.g. "*.py,docs/**"
    exclude_pattern: str = ""  # comma-separated, added after DEFAULT_EXCLUDE_PATTERNS
    case_sensitive: bool = False
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_SEARCHABLE_EXTENSIONS))


@dataclass
class SearchMatch:
    line_number: int  # 1-based
    line_text: str  # first 500 chars of the line
    match_start: int  # offset into the untruncated line
    match_length: int


@dataclass
class SearchFileResult:
    search_id: str
    file_path: str  # absolute
    matches: list[SearchMatch] = field(default_factory=list)


@dataclass
class SearchProgress:
    search_id: str
    files_searched: int


@dataclass
class SearchComplete:
    search_id: str
    total_matches: int
    total_files: int
    files_searched: int


@dataclass
class SearchError:
    search_id: str
    message: str


@dataclass
class ConnectionClosedMessage:
    connection_id: str


@dataclass
class ExitMessage:
    pass


CHANNEL_PAYLOAD_TYPES: dict[str, type | None] = {
    SearchChannel.START: SearchRequest,
    SearchChannel.CANCEL: None,
    SearchChannel.RESULT: SearchFileResult,
    SearchChannel.PROGRESS: SearchProgress,
    SearchChannel.COMPLETE: SearchComplete,
    SearchChannel.ERROR: SearchError,
}


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def encode_payload(message: Any) -> dict[str, Any] | None:
    """Convert a payload dataclass into its wire dict."""
    if message is None:
        return None
    payload = {}
    for f in fields(message):
        value = getattr(message, f.name)
        if f.name == "matches":
            value = [encode_payload(m) for m in value]
        elif isinstance(value, (list, tuple)):
            value = list(value)
        payload[_camel_case(f.name)] = value
    return payload


def _decode(cls: type, payload: dict[str, Any]) -> Any:
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a dict payload for {cls.__name__}, got {type(payload).__name__}")
    kwargs = {}
    for f in fields(cls):
        key = _camel_case(f.name)
        if key in payload:
            kwargs[f.name] = payload[key]
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ValueError(f"Invalid {cls.__name__} payload: {e}") from e


def decode_payload(channel: str, payload: dict[str, Any] | None) -> Any:
    """
    Convert a wire dict received on ``channel`` back into its dataclass.

    Raises:
        ValueError: If the channel is unknown or the payload is malformed.
    """
    if channel not in CHANNEL_PAYLOAD_TYPES:
        raise ValueError(f"Unknown search channel: {channel}")

    cls = CHANNEL_PAYLOAD_TYPES[channel]
    if cls is None:
        return None

    message = _decode(cls, payload)  # type: ignore[arg-type]
    if isinstance(message, SearchFileResult):
        message.matches = [_decode(SearchMatch, m) for m in message.matches]
    return message


class ChannelClosedError(Exception):
    """Raised when sending on a connection or transport that has been closed."""
