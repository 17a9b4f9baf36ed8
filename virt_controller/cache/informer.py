"""
Informer — keeps an ObjectCache in step with the API server.

Lists the collection once to seed the cache (marking it synced), then
watches from the listing's resourceVersion. ``410 Gone`` re-lists;
``401``/``403`` are configuration errors and end the informer; any other
failure backs off with jitter (1 s doubling up to 30 s).
"""

import logging
import random
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from kubernetes import watch
from kubernetes.client import ApiException

from virt_controller.cache.store import ObjectCache
from virt_controller.client.cluster import to_dict

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30


def _items_and_version(response: Any) -> Tuple[list, Optional[str]]:
    """Items and resourceVersion of a list response (model object or dict)."""
    if isinstance(response, dict):
        metadata = response.get("metadata") or {}
        return response.get("items") or [], metadata.get("resourceVersion")
    metadata = getattr(response, "metadata", None)
    return response.items or [], getattr(metadata, "resource_version", None)


class Informer:
    """List-then-watch feeder for one object kind."""

    def __init__(
        self,
        cache: ObjectCache,
        list_func: Callable[..., Any],
        converter: Callable[[dict], Any],
        list_kwargs: Optional[Dict[str, Any]] = None,
        watch_timeout_seconds: int = 300,
    ):
        self.cache = cache
        self.list_func = list_func
        self.converter = converter
        self.list_kwargs = list_kwargs or {}
        self.watch_timeout_seconds = watch_timeout_seconds
        self.resource_version: Optional[str] = None
        self._active_watcher: Optional[watch.Watch] = None
        self._watcher_lock = threading.Lock()

    def _convert(self, data: dict) -> Optional[Any]:
        try:
            return self.converter(data)
        except Exception:
            name = (data.get("metadata") or {}).get("name")
            logger.exception(f"Skipping {self.cache.kind} {name!r}: cannot be converted")
            return None

    def list_and_replace(self) -> Optional[str]:
        """Full re-list into the cache; returns the listing's resourceVersion."""
        response = self.list_func(**self.list_kwargs)
        items, resource_version = _items_and_version(response)
        objects = [self._convert(to_dict(item)) for item in items]
        self.cache.replace([obj for obj in objects if obj is not None])
        self.resource_version = resource_version
        return resource_version

    def handle_event(self, event: dict) -> None:
        """Apply one watch event to the cache."""
        event_type = str(event.get("type", ""))
        raw = event.get("object")
        if raw is None:
            return

        if event_type == "ERROR":
            status = to_dict(raw)
            raise ApiException(status=status.get("code"), reason=status.get("message"))

        data = to_dict(raw)
        resource_version = (data.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            self.resource_version = resource_version

        if event_type == "BOOKMARK":
            return
        obj = self._convert(data)
        if obj is None:
            return
        if event_type in ("ADDED", "MODIFIED"):
            self.cache.add(obj)
        elif event_type == "DELETED":
            self.cache.delete(obj)
        else:
            logger.debug(f"Ignoring {self.cache.kind} watch event of type {event_type!r}")

    def run(self, stop_event: threading.Event) -> None:
        """List, then watch until ``stop_event`` is set."""
        backoff_seconds = 1
        while not stop_event.is_set():
            try:
                self.list_and_replace()
                logger.info(
                    f"Synced {len(self.cache)} {self.cache.kind} object(s) "
                    f"at resourceVersion {self.resource_version}"
                )
                break
            except ApiException as e:
                if e.status in (401, 403):
                    logger.error(
                        f"Access denied listing {self.cache.kind} (status={e.status}); "
                        "check the controller's RBAC permissions"
                    )
                    return
                logger.exception(f"Initial {self.cache.kind} list failed")
            except Exception:
                logger.exception(f"Unexpected error listing {self.cache.kind}")
            stop_event.wait(timeout=backoff_seconds * (0.5 + random.random()))
            backoff_seconds = min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)

        backoff_seconds = 1
        while not stop_event.is_set():
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watcher = watcher
            try:
                for event in watcher.stream(
                    self.list_func,
                    resource_version=self.resource_version,
                    timeout_seconds=self.watch_timeout_seconds,
                    **self.list_kwargs,
                ):
                    if stop_event.is_set():
                        break
                    self.handle_event(event)
                backoff_seconds = 1
            except ApiException as e:
                if e.status == 410:
                    logger.warning(f"{self.cache.kind} watch expired, re-listing")
                    try:
                        self.list_and_replace()
                    except Exception:
                        logger.exception(f"Re-listing {self.cache.kind} after 410 failed")
                        self.resource_version = None
                    continue
                if e.status in (401, 403):
                    logger.error(
                        f"Access denied watching {self.cache.kind} (status={e.status}); "
                        "check the controller's RBAC permissions"
                    )
                    return
                logger.exception(f"{self.cache.kind} watch failed")
                stop_event.wait(timeout=backoff_seconds * (0.5 + random.random()))
                backoff_seconds = min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)
            except Exception:
                logger.exception(f"Unexpected {self.cache.kind} watch error")
                stop_event.wait(timeout=backoff_seconds * (0.5 + random.random()))
                backoff_seconds = min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None

    def stop(self) -> None:
        """Interrupt the active watch stream."""
        with self._watcher_lock:
            if self._active_watcher is not None:
                self._active_watcher.stop()
