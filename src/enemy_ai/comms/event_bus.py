# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""EventBus — topic pub/sub for governance and simulation events.

Subscribers receive a bounded queue.  A subscriber may listen to one topic
or to everything (``topic=None``).  Messages are plain dicts::

    {"type": "performance_warning", "data": {...}}

Publishing never blocks: a full subscriber queue drops the message.
"""

from __future__ import annotations

import queue
import threading

_ALL = "__all__"


class EventBus:
    """Simple thread-safe pub/sub for pushing events to subscribers."""

    def __init__(self, maxsize: int = 1000) -> None:
        self._lock = threading.Lock()
        self._maxsize = maxsize
        self._subscribers: dict[str, list[queue.Queue]] = {}

    def subscribe(self, topic: str | None = None) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._maxsize)
        with self._lock:
            self._subscribers.setdefault(topic or _ALL, []).append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            for subs in self._subscribers.values():
                if q in subs:
                    subs.remove(q)

    def publish(self, event_type: str, data: dict | None = None) -> None:
        msg = {"type": event_type}
        if data is not None:
            msg["data"] = data
        with self._lock:
            targets = list(self._subscribers.get(event_type, []))
            targets.extend(self._subscribers.get(_ALL, []))
        for q in targets:
            try:
                q.put_nowait(msg)
            except queue.Full:
                pass


def drain(q: queue.Queue) -> list[dict]:
    """Pop every pending message from *q* without blocking."""
    out: list[dict] = []
    while True:
        try:
            out.append(q.get_nowait())
        except queue.Empty:
            return out
