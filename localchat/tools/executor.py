"""
Tool execution engine.

Dispatches a model-requested tool call to the registered implementation,
records it in the audit log, and emits execution metrics. Nothing raised
by a tool escapes: every outcome is a ToolResult.
"""
import logging
import time
from typing import TYPE_CHECKING, Optional

from localchat.observability import record_tool_execution
from localchat.schemas.chat import ToolCall
from localchat.services.audit import AuditLog
from localchat.tools.base import ToolResult

if TYPE_CHECKING:
    from localchat.registry.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    """
    Tool execution engine.

    Handles lookup and execution of tools with error handling, audit
    recording and instrumentation.
    """

    def __init__(self, registry: "ToolRegistry", audit_log: Optional[AuditLog] = None):
        self.registry = registry
        self.audit_log = audit_log or AuditLog()

    async def execute(self, call: ToolCall, thread_id: str, sink=None) -> ToolResult:
        """
        Execute a tool call.

        Args:
            call: Tool name and arguments requested by the model
            thread_id: Conversation thread the call belongs to
            sink: Optional event sink for incremental tool output

        Returns:
            Tool execution result; unknown tools yield ``ok=False``
        """
        start_time = time.time()
        tool = self.registry.get(call.name)

        if tool is None:
            logger.warning(f"Model requested unknown tool '{call.name}'")
            result = ToolResult(ok=False, text=f"unknown tool: {call.name}", execution_time_ms=0)
        else:
            result = await tool.safe_execute(call.arguments, sink=sink)

        self.audit_log.record(thread_id, call.name, call.arguments, result.ok)

        record_tool_execution(
            tool_name=call.name,
            execution_time=time.time() - start_time,
            success=result.ok,
            error_type=None if result.ok else ("unknown_tool" if tool is None else "tool_error"),
        )

        logger.info(
            f"Tool '{call.name}' finished for thread {thread_id}: "
            f"ok={result.ok} in {result.execution_time_ms or 0}ms"
        )
        return result
