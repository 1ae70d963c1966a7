"""Entry point for the doc-search MCP server."""

from doc_search.server import create_server


def main() -> None:
    """Run the doc-search MCP server."""
    server = create_server()
    server.run(transport="stdio")


if __name__ == "__main__":
    main()
