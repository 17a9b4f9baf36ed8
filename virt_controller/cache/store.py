"""
Object Cache — local, eventually-consistent mirror of one object kind.

Updated by: informers (list + watch) or tests
Queried by: the node controller and key extraction

Handlers run synchronously on the thread that applied the change, after the
cache itself was updated. The cache is read-only for the controller: all
mutations of cluster state go through the remote API.
"""

import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional


class EventHandler:
    """Callbacks for add / update / delete notifications. Any may be None."""

    def __init__(
        self,
        on_add: Optional[Callable[[Any], None]] = None,
        on_update: Optional[Callable[[Any, Any], None]] = None,
        on_delete: Optional[Callable[[Any], None]] = None,
    ):
        self.on_add = on_add
        self.on_update = on_update
        self.on_delete = on_delete


class ObjectCache:
    """Thread-safe keyed store that notifies subscribers of every change."""

    def __init__(self, kind: str, key_func: Callable[[Any], str]):
        self.kind = kind
        self.key_func = key_func
        self._objects: Dict[str, Any] = {}
        self._handlers: List[EventHandler] = []
        self._lock = threading.RLock()
        self._synced = threading.Event()

    def add_event_handler(self, handler: EventHandler) -> None:
        """Subscribe to notifications for this kind."""
        with self._lock:
            self._handlers.append(handler)

    # --- Mutations (informer side) ---

    def add(self, obj: Any) -> None:
        """Insert or update an object, notifying as add or update."""
        key = self.key_func(obj)
        with self._lock:
            old = self._objects.get(key)
            self._objects[key] = obj
            handlers = list(self._handlers)
        if old is None:
            self._notify_add(handlers, obj)
        else:
            self._notify_update(handlers, old, obj)

    def update(self, obj: Any) -> None:
        self.add(obj)

    def delete(self, obj: Any) -> None:
        """Remove an object; handlers receive the last known state."""
        key = self.key_func(obj)
        with self._lock:
            last = self._objects.pop(key, None)
            handlers = list(self._handlers)
        self._notify_delete(handlers, last if last is not None else obj)

    def replace(self, objects: Iterable[Any]) -> None:
        """Sync to a full listing and mark the cache as synced."""
        fresh = {self.key_func(obj): obj for obj in objects}
        with self._lock:
            previous = self._objects
            self._objects = dict(fresh)
            handlers = list(self._handlers)

        for key, obj in previous.items():
            if key not in fresh:
                self._notify_delete(handlers, obj)
        for key, obj in fresh.items():
            old = previous.get(key)
            if old is None:
                self._notify_add(handlers, obj)
            elif old != obj:
                self._notify_update(handlers, old, obj)
        self._synced.set()

    def mark_synced(self) -> None:
        self._synced.set()

    # --- Reads (controller side) ---

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._objects.get(key)

    def list(self) -> List[Any]:
        with self._lock:
            return list(self._objects.values())

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._objects.keys())

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    # --- Notification ---

    @staticmethod
    def _notify_add(handlers: List[EventHandler], obj: Any) -> None:
        for handler in handlers:
            if handler.on_add:
                handler.on_add(obj)

    @staticmethod
    def _notify_update(handlers: List[EventHandler], old: Any, new: Any) -> None:
        for handler in handlers:
            if handler.on_update:
                handler.on_update(old, new)

    @staticmethod
    def _notify_delete(handlers: List[EventHandler], obj: Any) -> None:
        for handler in handlers:
            if handler.on_delete:
                handler.on_delete(obj)


def wait_for_cache_sync(
    stop_event: threading.Event,
    *caches: ObjectCache,
    timeout: Optional[float] = None,
    poll_interval: float = 0.1,
) -> bool:
    """
    Block until every cache completed its initial listing.

    Returns False if ``stop_event`` is set or ``timeout`` expires first.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while not all(cache.has_synced() for cache in caches):
        if stop_event.is_set():
            return False
        if deadline is not None and time.monotonic() >= deadline:
            return False
        stop_event.wait(poll_interval)
    return True
