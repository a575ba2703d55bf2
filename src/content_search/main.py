from pathlib import Path

import click

from content_search.search.messages import DEFAULT_EXCLUDE_PATTERNS


@click.group("content-search")
def main():
    """
    CLI for Content Search.
    """
    pass


@main.command("search")
@click.argument(
    "root",
    type=click.Path(exists=True, dir_okay=True, file_okay=False, path_type=Path),
)
@click.argument("query")
@click.option(
    "--include",
    "-i",
    "include_pattern",
    default="",
    help="Comma-separated globs; only matching files are searched.",
)
@click.option(
    "--exclude",
    "-e",
    "exclude_pattern",
    default="",
    help=f"Comma-separated excludes, added to the defaults ({DEFAULT_EXCLUDE_PATTERNS}).",
)
@click.option("--case-sensitive", is_flag=True, help="Match case exactly.")
@click.option(
    "--max-file-size",
    type=click.IntRange(min=1),
    default=None,
    help="Skip files larger than this many bytes. Overrides CONTENT_SEARCH_MAX_FILE_SIZE.",
)
@click.option("--color/--no-color", default=None, help="Highlight matches.")
def search_cmd(
    root: Path,
    query: str,
    include_pattern: str,
    exclude_pattern: str,
    case_sensitive: bool,
    max_file_size: int | None,
    color: bool | None,
):
    """
    Search file contents under ROOT for QUERY.

    Results are printed per file as they stream in from the search worker.
    """
    from content_search.background_worker import BaseController
    from content_search.search.client import SearchFailedError, new_search_id, run_search
    from content_search.search.host import SearchWorker
    from content_search.search.messages import SearchFileResult, SearchRequest
    from content_search.search.render import format_file_result, format_summary
    from content_search.search.transport import ProcessTransport
    from content_search.settings import get_search_settings

    query = query.strip()
    if not query:
        raise click.BadParameter("must not be empty", param_hint="QUERY")

    try:
        settings = get_search_settings(max_file_size=max_file_size)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    root_path = str(root.resolve())
    request = SearchRequest(
        search_id=new_search_id(),
        root_path=root_path,
        query=query,
        include_pattern=include_pattern,
        exclude_pattern=exclude_pattern,
        case_sensitive=case_sensitive,
        max_file_size=settings.max_file_size,
        extensions=settings.extensions,
    )

    def print_result(result: SearchFileResult):
        for line in format_file_result(result.file_path, result.matches, root_path):
            click.echo(line, color=color)
        click.echo()

    controller = BaseController(SearchWorker())
    controller.start()
    transport = ProcessTransport(controller)
    try:
        complete = run_search(transport, request, on_result=print_result)
    except SearchFailedError as e:
        raise click.ClickException(f"Search failed: {e}") from e
    finally:
        transport.close()
        controller.stop()

    click.echo(format_summary(complete))


@main.command("mcp")
@click.option(
    "--root",
    "-r",
    "root_path",
    help="Directory to search.",
    required=True,
    type=click.Path(exists=True, dir_okay=True, file_okay=False, path_type=Path),
)
def mcp_cmd(root_path: Path):
    """
    Run the Content Search MCP server.
    """
    from content_search.mcp_server import run_server

    run_server(root_path.resolve())


if __name__ == "__main__":
    main()
