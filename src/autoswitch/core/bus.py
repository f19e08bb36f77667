"""
CONTRACT: inline
ROLE: In-process pub/sub with bounded queues.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - bus.max_queue_depth: default per-subscriber queue depth
  - bus.levels_queue_depth: depth for switcher.levels subscribers

PERF / TIMING:
  - preserve per-topic ordering
  - publish never blocks the caller (switcher callback threads publish here)

FAILURE MODES:
  - queue full -> drop oldest -> on_drop(topic, depth)

LOG EVENTS:
  - module=core.bus, event=queue_full, payload keys=topic, depth

TESTS:
  - tests/test_runtime.py covers drop-oldest and per-topic depth

CONTRACT DETAILS:
# Bus contract

- Topics used by the runtime:
  switcher.levels, switch.commands, switch.decisions, runtime.health, log.events
- Backpressure via bounded queues per subscriber; the oldest message goes first.
"""

from __future__ import annotations

import queue
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, Iterator, List, Optional


DropHandler = Callable[[str, int], None]


class Bus:
    """Simple in-process pub/sub bus with bounded queues."""

    def __init__(
        self,
        max_queue_depth: int = 8,
        topic_depths: Optional[Dict[str, int]] = None,
        on_drop: Optional[DropHandler] = None,
    ) -> None:
        self._max_queue_depth = max_queue_depth
        self._topic_depths = dict(topic_depths or {})
        self._on_drop = on_drop
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._subscribers: Dict[str, List[queue.Queue[Any]]] = defaultdict(list)
        self._drop_counts: Dict[str, int] = defaultdict(int)

    @classmethod
    def from_config(cls, config: Dict[str, Any], on_drop: Optional[DropHandler] = None) -> "Bus":
        bus_cfg = config.get("bus", {})
        if not isinstance(bus_cfg, dict):
            bus_cfg = {}
        depths = {"switcher.levels": int(bus_cfg.get("levels_queue_depth", 256))}
        return cls(max_queue_depth=int(bus_cfg.get("max_queue_depth", 8)), topic_depths=depths, on_drop=on_drop)

    def set_drop_handler(self, on_drop: Optional[DropHandler]) -> None:
        self._on_drop = on_drop

    def get_drop_counts(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._drop_counts)

    def subscribe(self, topic: str, maxsize: Optional[int] = None) -> queue.Queue[Any]:
        """Subscribe to a topic and return a queue of messages."""
        depth = maxsize if maxsize is not None else self._topic_depths.get(topic, self._max_queue_depth)
        q: queue.Queue[Any] = queue.Queue(maxsize=depth)
        with self._lock:
            self._subscribers[topic].append(q)
        return q

    def publish(self, topic: str, msg: Any) -> None:
        """Publish a message to all subscribers without blocking."""
        with self._lock:
            subscribers = list(self._subscribers.get(topic, []))
        for q in subscribers:
            if self._put_with_drop_oldest(q, msg):
                with self._stats_lock:
                    self._drop_counts[topic] += 1
                if self._on_drop:
                    self._on_drop(topic, q.maxsize)

    @staticmethod
    def _put_with_drop_oldest(q: queue.Queue[Any], msg: Any) -> bool:
        """Enqueue, dropping the oldest item on overflow.

        Returns True when a drop occurred (even if enqueue succeeds).
        """
        try:
            q.put_nowait(msg)
            return False
        except queue.Full:
            try:
                q.get_nowait()
            except queue.Empty:
                pass
            try:
                q.put_nowait(msg)
            except queue.Full:
                pass
            return True


def drain_latest(q: queue.Queue[Any]) -> Optional[Any]:
    """Empty the queue and return only its newest item."""
    item = None
    try:
        while True:
            item = q.get_nowait()
    except queue.Empty:
        pass
    return item


def drain_all(q: queue.Queue[Any]) -> Iterator[Any]:
    """Yield every queued item in publish order without blocking."""
    while True:
        try:
            yield q.get_nowait()
        except queue.Empty:
            return
