"""Concrete tools exposed to the model."""

from .file_tools import FileReadTool, FileWriteTool, resolve_workspace_path
from .shell_exec import ShellExecTool
from .web_search import WebSearchTool, format_search_results

__all__ = [
    "FileReadTool",
    "FileWriteTool",
    "resolve_workspace_path",
    "ShellExecTool",
    "WebSearchTool",
    "format_search_results",
]
