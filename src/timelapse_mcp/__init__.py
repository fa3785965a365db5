"""Time-lapse capture controller with an MCP server interface."""

__version__ = "0.1.0"
