"""Error types shared across the runtime.

Turn-level failures derive from LocalChatError so the API layer can map
them to a single structured response. Tool failures use ToolError, which
never escapes a tool: it becomes the tool's result text instead.
"""
from typing import Any, Dict


class LocalChatError(Exception):
    """Base class for errors surfaced to the caller of a turn.

    Attributes:
        code: Machine-readable error code (e.g. "NeedPermission")
        message: Human-readable description
        extra: Additional structured fields
    """

    code = "LocalChatError"

    def __init__(self, message: str, code: str | None = None, **extra: Any):
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class NeedPermission(LocalChatError):
    """A tool was enabled for the turn without being allowed."""

    code = "NeedPermission"

    def __init__(self, tool: str):
        super().__init__(f"Tool '{tool}' requires permission", tool=tool)
        self.tool = tool


class ToolLoopExceeded(LocalChatError):
    """The model kept requesting tools past the per-turn round limit."""

    code = "ToolLoopExceeded"

    def __init__(self, max_rounds: int):
        super().__init__(
            f"Model requested more than {max_rounds} tool calls in one turn",
            max_rounds=max_rounds,
        )
        self.max_rounds = max_rounds


class ModelServiceUnavailable(LocalChatError):
    """The model service could not be reached."""

    code = "ModelServiceUnavailable"


class ModelServiceError(LocalChatError):
    """The model service answered with a non-success status."""

    code = "ModelServiceError"

    def __init__(self, status_code: int, body: str):
        super().__init__(
            f"Model service returned {status_code}: {body}",
            status_code=status_code,
            body=body,
        )
        self.status_code = status_code
        self.body = body


class EmbeddingError(LocalChatError):
    """The embedding service failed or returned an unusable response."""

    code = "EmbeddingError"


class VectorStoreError(LocalChatError):
    """A vector store request failed."""

    code = "VectorStoreError"


class VectorStoreStartupError(LocalChatError):
    """The vector store could not be launched or never became ready."""

    code = "VectorStoreStartupError"
    retryable = False


class ToolError(Exception):
    """Raised by a tool when it cannot complete; rendered as a warning result."""
    pass
