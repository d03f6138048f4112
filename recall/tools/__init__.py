"""
Recall Tools

Agent tool executors and the MCP server that exposes them.
"""

from .handlers import RecallTools

__all__ = ["RecallTools"]
