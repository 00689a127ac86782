# src/kubeboot/observers/dispatcher.py
from __future__ import annotations
import logging
import threading
from typing import List, Optional
from .events import BaseEvent
from .interface import Observer

log = logging.getLogger("kubeboot")


class EventBus:
    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers: List[Observer] = []
        # machines emit from their own threads
        self._lock = threading.Lock()
        for ob in observers or []:
            self.subscribe(ob)

    def subscribe(self, observer: Observer) -> None:
        if not isinstance(observer, Observer):
            raise TypeError(f"{observer!r} has no notify(event)")
        with self._lock:
            self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            for ob in self._observers:
                try:
                    ob.notify(event)
                except Exception:
                    # observers must not break runs
                    log.debug("observer %r failed on %s", ob, type(event).__name__, exc_info=True)
