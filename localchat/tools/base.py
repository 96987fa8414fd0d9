"""
Base tool interface for tool implementations.

Every tool the model may call implements the same capability set: a name,
a description, a JSON schema for its arguments, and an async ``execute``.
Failures inside a tool never escape ``safe_execute``; they become a
warning string that is handed back to the model as the tool's result.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging
import time

from pydantic import BaseModel

from localchat.exceptions import ToolError
from localchat.schemas.chat import ToolSpec
from localchat.utils.validation import ValidationError, validate_tool_arguments

logger = logging.getLogger(__name__)

WARNING_PREFIX = "⚠️ "


class ToolResult(BaseModel):
    """Standard result format for tool execution."""

    ok: bool
    text: str
    execution_time_ms: Optional[int] = None

    @property
    def content(self) -> str:
        """Text folded into the conversation as the tool message."""
        return self.text if self.ok else f"{WARNING_PREFIX}{self.text}"


class BaseTool(ABC):
    """
    Abstract base class for all tools.

    Tool instances are stateless after construction and may be shared by
    concurrent turns.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @abstractmethod
    def get_input_schema(self) -> Dict[str, Any]:
        """
        Get the JSON schema for input validation.

        Returns:
            JSON schema dictionary
        """
        pass

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any], sink=None) -> str:
        """
        Execute the tool with validated arguments.

        Args:
            arguments: Dictionary of input arguments
            sink: Optional event sink for incremental output

        Returns:
            Result text

        Raises:
            ToolError: If the tool cannot complete
        """
        pass

    def get_spec(self) -> ToolSpec:
        """Describe the tool for the model's tool catalogue."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            input_schema=self.get_input_schema(),
        )

    def validate_input(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate input arguments against the input schema.

        Raises:
            ValidationError: If arguments are invalid
        """
        return validate_tool_arguments(arguments, self.get_input_schema())

    async def safe_execute(self, arguments: Dict[str, Any], sink=None) -> ToolResult:
        """
        Execute the tool with error handling and timing.

        Args:
            arguments: Input arguments
            sink: Optional event sink for incremental output

        Returns:
            ToolResult; ``ok`` is False for invalid arguments, sandbox
            violations and execution failures
        """
        start_time = time.time()

        try:
            validated_args = self.validate_input(arguments)
            text = await self.execute(validated_args, sink=sink)
            return ToolResult(
                ok=True,
                text=text,
                execution_time_ms=int((time.time() - start_time) * 1000),
            )

        except ValidationError as e:
            return ToolResult(
                ok=False,
                text=f"Input validation error: {e}",
                execution_time_ms=int((time.time() - start_time) * 1000),
            )
        except ToolError as e:
            return ToolResult(
                ok=False,
                text=str(e),
                execution_time_ms=int((time.time() - start_time) * 1000),
            )
        except Exception as e:
            logger.warning(f"Tool '{self.name}' failed unexpectedly: {e}", exc_info=True)
            return ToolResult(
                ok=False,
                text=f"Execution error: {e}",
                execution_time_ms=int((time.time() - start_time) * 1000),
            )

    def __repr__(self) -> str:
        """String representation of the tool."""
        return f"<{self.__class__.__name__}(name='{self.name}')>"
