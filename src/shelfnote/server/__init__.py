"""MCP server for the Shelfnote content store."""
