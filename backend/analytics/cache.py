"""
Request-scoped result cache.

The caller creates a QueryCache, hands it to an AnalyticsEngine for the
lifetime of one request, and drops it afterwards. Entries expire after
`ttl_seconds`.
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel

from config import AnalyticsSettings


def make_key(operation: str, **params) -> str:
    """Stable key from an operation name and its query parameters."""
    normalized = {
        k: v.model_dump(mode="json") if isinstance(v, BaseModel) else v
        for k, v in params.items()
    }
    return f"{operation}:{json.dumps(normalized, sort_keys=True, default=str)}"


class QueryCache:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_settings(cls, settings: AnalyticsSettings) -> "QueryCache":
        return cls(ttl_seconds=settings.cache_ttl_seconds)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        stored_at, value = entry
        if self.clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return None

        self.hits += 1
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self.clock(), value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
