"""Tool implementations and executor."""

from .base import BaseTool, ToolResult
from .executor import ToolExecutor

__all__ = [
    "BaseTool",
    "ToolResult",
    "ToolExecutor",
]
