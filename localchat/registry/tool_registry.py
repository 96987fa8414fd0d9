"""
Tool Registry - name-addressed map of the tools the model may call.

Populated once at startup and read on every turn. Registration takes an
exclusive lock; lookups read a snapshot and never wait on writers.
"""
import logging
import threading
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from localchat.config import Settings, settings as default_settings
from localchat.schemas.chat import ToolSpec
from localchat.tools.base import BaseTool
from localchat.utils.validation import ValidationError, validate_json_schema

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Main tool registry class.

    Provides:
    - Registration of tool instances under their name
    - Lookup by name
    - Tool catalogue rendering for the model request and system prompt
    """

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None):
        self._lock = threading.Lock()
        self._tools: Mapping[str, BaseTool] = MappingProxyType({})
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        """
        Register a tool.

        Raises:
            ValueError: If a tool with the same name exists or its schema is invalid
        """
        try:
            validate_json_schema(tool.get_input_schema())
        except ValidationError as e:
            raise ValueError(f"Tool '{tool.name}' has an invalid schema: {e}")

        with self._lock:
            if tool.name in self._tools:
                raise ValueError(f"Tool with name '{tool.name}' already exists")
            updated = dict(self._tools)
            updated[tool.name] = tool
            self._tools = MappingProxyType(updated)

        logger.debug(f"Registered tool '{tool.name}'")

    def get(self, name: str) -> Optional[BaseTool]:
        """Look up a tool by name."""
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        return sorted(self._tools)

    def list_specs(self) -> List[ToolSpec]:
        """Specs of every registered tool, sorted by name."""
        tools = self._tools
        return [tools[name].get_spec() for name in sorted(tools)]

    def specs_for(self, names: Iterable[str]) -> List[ToolSpec]:
        """Specs for the given names, in the given order, skipping unknown names."""
        tools = self._tools
        return [tools[name].get_spec() for name in names if name in tools]

    def render_catalogue(self, names: Iterable[str]) -> str:
        """Markdown table of the given tools for the system prompt."""
        rows = ["| tool | description |", "| --- | --- |"]
        for spec in self.specs_for(names):
            rows.append(f"| {spec.name} | {spec.description} |")
        return "\n".join(rows) + "\n"


def create_default_registry(config: Optional[Settings] = None) -> ToolRegistry:
    """Build the registry with the built-in tools configured from settings."""
    from localchat.tools.implementations import (
        FileReadTool,
        FileWriteTool,
        ShellExecTool,
        WebSearchTool,
    )

    config = config or default_settings
    tools: Dict[str, BaseTool] = {
        "web_search": WebSearchTool(
            endpoint=config.WEB_SEARCH_ENDPOINT,
            timeout=config.WEB_SEARCH_TIMEOUT,
            max_results=config.WEB_SEARCH_MAX_RESULTS,
        ),
        "file_read": FileReadTool(
            workspace_root=config.WORKSPACE_DIR,
            max_chars=config.FILE_READ_MAX_CHARS,
        ),
        "file_write": FileWriteTool(workspace_root=config.WORKSPACE_DIR),
        "shell_exec": ShellExecTool(
            workspace_root=config.WORKSPACE_DIR,
            whitelist=config.SHELL_WHITELIST,
            timeout=config.SHELL_TIMEOUT,
            output_limit=config.SHELL_OUTPUT_LIMIT,
        ),
    }
    return ToolRegistry(tools.values())
