"""MCP tool modules."""

from timelapse_mcp.tools import timelapse

__all__ = ["timelapse"]
