"""Change notification for the external policy source.

The store only depends on `ChangeNotifier.subscribe`; the transport behind it
(a ConfigMap watch, an in-process publisher) is swappable.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

ChangeCallback = Callable[["ChangeEvent"], None]


@dataclass(frozen=True)
class ChangeEvent:
    namespace: str
    name: str
    event_type: str = "MODIFIED"


@runtime_checkable
class ChangeNotifier(Protocol):
    def subscribe(self, callback: ChangeCallback) -> None: ...


class _Subscribers:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._callbacks: List[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def _dispatch(self, event: ChangeEvent) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for cb in callbacks:
            cb(event)


class LocalChangeNotifier(_Subscribers):
    """In-process publisher (file-backed deployments, tests)."""

    def notify(self, event: ChangeEvent) -> None:
        self._dispatch(event)


class ConfigMapWatcher(_Subscribers):
    """
    Watch a single ConfigMap and dispatch MODIFIED events to subscribers.

    Runs in a daemon thread; the watch is re-established with backoff when the
    stream ends or fails. Events for other ConfigMaps are ignored.
    """

    def __init__(
        self,
        namespace: str,
        name: str,
        *,
        core_v1=None,  # type: ignore[no-untyped-def]
        timeout_seconds: int = 300,
        max_backoff_seconds: float = 30.0,
    ) -> None:
        super().__init__()
        self.namespace = namespace
        self.name = name
        self.timeout_seconds = timeout_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._core_v1 = core_v1
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _api(self):  # type: ignore[no-untyped-def]
        if self._core_v1 is None:
            from admission.providers.fleet import get_core_v1

            self._core_v1 = get_core_v1()
        return self._core_v1

    def handle_raw_event(self, raw: dict) -> None:
        obj = raw.get("object")
        meta = getattr(obj, "metadata", None)
        name = getattr(meta, "name", None)
        if raw.get("type") != "MODIFIED" or name != self.name:
            return
        self._dispatch(ChangeEvent(namespace=self.namespace, name=name, event_type="MODIFIED"))

    def _watch_once(self) -> None:
        from kubernetes import watch

        w = watch.Watch()
        try:
            for raw in w.stream(
                self._api().list_namespaced_config_map,
                namespace=self.namespace,
                field_selector=f"metadata.name={self.name}",
                timeout_seconds=self.timeout_seconds,
            ):
                if self._stop.is_set():
                    break
                self.handle_raw_event(raw)
        finally:
            w.stop()

    def _run(self) -> None:
        backoff = 1.0
        while not self._stop.is_set():
            try:
                self._watch_once()
                backoff = 1.0
            except Exception as e:
                logger.warning(f"RBAC ConfigMap watch failed for {self.namespace}/{self.name}: {e}")
                self._stop.wait(backoff)
                backoff = min(backoff * 2, self.max_backoff_seconds)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="rbac-configmap-watch", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
