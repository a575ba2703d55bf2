import asyncio
from pathlib import Path

import mcp.server.stdio
import mcp.types as types
import pydantic
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from content_search.background_worker import BaseController
from content_search.logger import logging
from content_search.search.client import SearchFailedError, new_search_id, run_search
from content_search.search.host import SearchWorker
from content_search.search.messages import SearchFileResult, SearchRequest
from content_search.search.render import format_results_text
from content_search.search.transport import ProcessTransport
from content_search.settings import get_search_settings

logger = logging.getLogger(__name__)

TOOL_NAME = "search-content"


class SearchContentArguments(pydantic.BaseModel):
    query: str = pydantic.Field(min_length=1)
    include: str = ""
    exclude: str = ""
    case_sensitive: bool = False


def build_request(root_path: Path, arguments: dict | None) -> SearchRequest:
    """
    Turn tool arguments into a search request.

    Raises:
        ValueError: If the arguments are missing or invalid.
    """
    if not arguments:
        raise ValueError("Missing arguments")

    try:
        args = SearchContentArguments.model_validate(arguments)
    except pydantic.ValidationError as e:
        raise ValueError(f"Invalid arguments: {e}") from e

    query = args.query.strip()
    if not query:
        raise ValueError("Missing query")

    settings = get_search_settings()
    return SearchRequest(
        search_id=new_search_id(),
        root_path=str(root_path),
        query=query,
        include_pattern=args.include,
        exclude_pattern=args.exclude,
        case_sensitive=args.case_sensitive,
        max_file_size=settings.max_file_size,
        extensions=settings.extensions,
    )


def run_server(root_path: Path):
    server = Server("content-search")
    worker_controller = BaseController(SearchWorker())

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        """
        List available tools.
        Each tool specifies its arguments using JSON Schema validation.
        """
        return [
            types.Tool(
                name=TOOL_NAME,
                description=f"Search the contents of files under {root_path} for a literal string",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string"},
                        "include": {
                            "type": "string",
                            "description": "Comma-separated globs, e.g. '*.py,docs/**'",
                        },
                        "exclude": {
                            "type": "string",
                            "description": "Comma-separated directory names or globs to skip",
                        },
                        "case_sensitive": {"type": "boolean"},
                    },
                    "required": ["query"],
                },
            )
        ]

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict | None) -> list[types.TextContent]:
        """
        Run one search to completion and return the grouped results.
        """
        if name != TOOL_NAME:
            raise ValueError(f"Unknown tool: {name}")

        request = build_request(root_path, arguments)
        logger.info("Tool search for %r in %s", request.query, root_path)

        results: list[tuple[str, list]] = []

        def collect(result: SearchFileResult):
            results.append((result.file_path, result.matches))

        transport = ProcessTransport(worker_controller)
        try:
            complete = await asyncio.to_thread(run_search, transport, request, on_result=collect)
        except SearchFailedError as e:
            raise ValueError(f"Search failed: {e}") from e
        finally:
            transport.close()

        return [
            types.TextContent(
                type="text",
                text=format_results_text(results, complete, str(root_path)),
            )
        ]

    async def run_server():
        worker_controller.start()
        # Run the server using stdin/stdout streams
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="content-search",
                    server_version="0.1.0",
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )

        worker_controller.stop()

    logger.info("Starting server for %s", root_path)

    asyncio.run(run_server())
