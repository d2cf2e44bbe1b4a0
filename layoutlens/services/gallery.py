from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional

from layoutlens.settings import get_settings

LOGGER = logging.getLogger("layoutlens.gallery")

SHOTS_LOADED = "shots:loaded"
SHOTS_FAILED = "shots:failed"

Listener = Callable[[str, Dict[str, object]], None]


def _utcnow() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class GalleryNotifier:
    """Hand run results to the presentation layer.

    Delivery is best effort: listener errors are logged and swallowed so the
    workspace path stays the authoritative result of an operation.
    """

    def __init__(self, history_limit: Optional[int] = None) -> None:
        limit = history_limit or get_settings().gallery_history_limit
        self._events: Deque[Dict[str, object]] = deque(maxlen=limit)
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def publish(self, event: str, payload: Dict[str, object]) -> bool:
        record = {"event": event, "payload": payload, "published_at": _utcnow()}
        with self._lock:
            self._events.append(record)
            listeners = list(self._listeners)
        delivered = True
        for listener in listeners:
            try:
                listener(event, payload)
            except Exception as exc:
                delivered = False
                LOGGER.warning("Gallery listener failed for %s: %s", event, exc)
        return delivered

    def history(self) -> List[Dict[str, object]]:
        with self._lock:
            return list(self._events)

    def latest(self, event: Optional[str] = None) -> Optional[Dict[str, object]]:
        with self._lock:
            for record in reversed(self._events):
                if event is None or record["event"] == event:
                    return record
        return None


_notifier: Optional[GalleryNotifier] = None


def get_notifier() -> GalleryNotifier:
    global _notifier
    if _notifier is None:
        _notifier = GalleryNotifier()
    return _notifier
