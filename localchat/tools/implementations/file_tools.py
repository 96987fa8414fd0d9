"""
Workspace file tools.

Both tools are confined to a workspace root: the requested path is joined
onto the root, canonicalised, and rejected if the result leaves the root.
"""
from pathlib import Path
from typing import Any, Dict, Optional

from localchat.config import settings
from localchat.exceptions import ToolError
from localchat.tools.base import BaseTool


def resolve_workspace_path(root: Path, relative: str) -> Path:
    """
    Resolve ``relative`` inside ``root``.

    Args:
        root: Workspace root directory
        relative: Path supplied by the model

    Returns:
        Canonical absolute path inside the root

    Raises:
        ToolError: If the resolved path escapes the root
    """
    if not relative or not relative.strip():
        raise ToolError("missing path")

    base = root.resolve()
    candidate = (base / relative).resolve()
    if candidate != base and base not in candidate.parents:
        raise ToolError("Path traversal detected")
    return candidate


class _WorkspaceTool(BaseTool):
    def __init__(self, workspace_root: Optional[str] = None):
        self.workspace_root = Path(workspace_root or settings.WORKSPACE_DIR)


class FileReadTool(_WorkspaceTool):
    """Read a UTF-8 text file from the workspace."""

    def __init__(self, workspace_root: Optional[str] = None, max_chars: Optional[int] = None):
        super().__init__(workspace_root)
        self.max_chars = max_chars or settings.FILE_READ_MAX_CHARS

    @property
    def name(self) -> str:
        return "file_read"

    @property
    def description(self) -> str:
        return "Read a UTF-8 text file from the workspace"

    def get_input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path inside workspace"}
            },
            "required": ["path"],
        }

    async def execute(self, arguments: Dict[str, Any], sink=None) -> str:
        rel = arguments["path"]
        path = resolve_workspace_path(self.workspace_root, rel)

        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ToolError(f"reading {rel}: file not found")
        except IsADirectoryError:
            raise ToolError(f"reading {rel}: is a directory")
        except UnicodeDecodeError:
            raise ToolError(f"reading {rel}: file is not valid UTF-8 text")
        except OSError as e:
            raise ToolError(f"reading {rel}: {e.strerror or e}")

        if len(data) > self.max_chars:
            return f"(truncated) {data[:self.max_chars]}"
        return data


class FileWriteTool(_WorkspaceTool):
    """Write text content to a file in the workspace."""

    @property
    def name(self) -> str:
        return "file_write"

    @property
    def description(self) -> str:
        return "Write text content to a file in the workspace"

    def get_input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "content": {"type": "string"},
                "mode": {
                    "type": "string",
                    "enum": ["overwrite", "append"],
                    "default": "overwrite",
                },
            },
            "required": ["path", "content"],
        }

    async def execute(self, arguments: Dict[str, Any], sink=None) -> str:
        rel = arguments["path"]
        content = arguments["content"]
        mode = arguments.get("mode", "overwrite")
        path = resolve_workspace_path(self.workspace_root, rel)

        if path.is_dir():
            raise ToolError(f"writing {rel}: is a directory")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a" if mode == "append" else "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise ToolError(f"writing {rel}: {e.strerror or e}")

        return f"Wrote {len(content.encode('utf-8'))} bytes to {rel}"
