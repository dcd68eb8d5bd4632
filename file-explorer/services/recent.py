"""Bounded in-memory recent-files list.

One instance lives in ``app.extensions`` and is handed to the local file
API; it is the only in-process mutable state of the hub.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional


MAX_RECENT = 50


class RecentFiles:
    def __init__(self, capacity: int = MAX_RECENT) -> None:
        self.capacity = max(1, int(capacity))
        self._lock = threading.Lock()
        self._items: List[Dict[str, Any]] = []

    def track(self, path: str, name: str, type_: Optional[str] = None, size: Optional[int] = None) -> Dict[str, Any]:
        entry = {
            "path": path,
            "name": name,
            "accessedAt": int(time.time() * 1000),
            "type": type_,
            "size": size,
        }
        with self._lock:
            self._items = [f for f in self._items if f["path"] != path]
            self._items.insert(0, entry)
            del self._items[self.capacity:]
        return entry

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(f) for f in self._items]
