"""In-memory audit trail of tool invocations, keyed by thread."""
import threading
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from localchat.schemas.admin import AuditEntry

MAX_ENTRIES_PER_THREAD = 500


class AuditLog:
    """Bounded per-thread record of every tool the model invoked."""

    def __init__(self, max_entries_per_thread: int = MAX_ENTRIES_PER_THREAD):
        self._lock = threading.Lock()
        self._max = max_entries_per_thread
        self._entries: Dict[str, Deque[AuditEntry]] = defaultdict(
            lambda: deque(maxlen=self._max)
        )

    def record(
        self,
        thread_id: str,
        tool: str,
        args: Optional[Dict[str, Any]],
        ok: bool,
    ) -> AuditEntry:
        entry = AuditEntry(
            when=datetime.now(timezone.utc),
            thread_id=thread_id,
            tool=tool,
            args=dict(args or {}),
            ok=ok,
        )
        with self._lock:
            self._entries[thread_id].append(entry)
        return entry

    def for_thread(self, thread_id: str) -> List[AuditEntry]:
        """Entries for a thread, oldest first."""
        with self._lock:
            return list(self._entries.get(thread_id, ()))

    def clear(self, thread_id: str) -> None:
        with self._lock:
            self._entries.pop(thread_id, None)
