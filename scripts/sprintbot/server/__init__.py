"""Sprint Bot MCP server."""
