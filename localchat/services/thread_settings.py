"""Per-thread retrieval settings."""
import threading
from typing import Dict, Optional

from localchat.config import Settings, settings as default_settings
from localchat.schemas.chat import ThreadSettings


class ThreadSettingsStore:
    """
    In-memory store of retrieval settings per thread.

    Threads that were never configured read the configured defaults.
    """

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self._default = ThreadSettings(
            top_k=config.DEFAULT_TOP_K,
            context_tokens=config.DEFAULT_CONTEXT_TOKENS,
        )
        self._lock = threading.Lock()
        self._settings: Dict[str, ThreadSettings] = {}

    @property
    def default(self) -> ThreadSettings:
        return self._default

    def get(self, thread_id: str) -> ThreadSettings:
        with self._lock:
            return self._settings.get(thread_id, self._default)

    def set(self, thread_id: str, value: ThreadSettings) -> ThreadSettings:
        with self._lock:
            self._settings[thread_id] = value
        return value
