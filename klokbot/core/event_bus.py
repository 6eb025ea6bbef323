"""In-process event bus for klokbot telemetry.

Decouples the access layer from whatever renders its progress (a dashboard,
a log tail, a test).  publish() NEVER blocks the caller: each subscriber gets
a bounded queue and events are dropped when it is full.
"""

from __future__ import annotations

import collections
import json
import logging
import os
import queue
import threading
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# ── Event data model ─────────────────────────────────────────────────

K_MSG = "msg"  # single-line message
K_BLOCK_START = "bs"  # block start (label)
K_BLOCK_LINE = "bl"  # block line (content)
K_BLOCK_END = "be"  # block end


@dataclass(frozen=True)
class Event:
    """Immutable telemetry event."""

    kind: str  # K_MSG, K_BLOCK_START, etc.
    code: str  # M enum value (RRTY, CROT, ...)
    ts: str  # HH:MM:SS
    msg: str = ""
    label: str = ""

    def to_json(self) -> str:
        d: dict[str, str] = {"k": self.kind, "c": self.code, "t": self.ts}
        if self.msg:
            d["m"] = self.msg
        if self.label:
            d["l"] = self.label
        return json.dumps(d, ensure_ascii=False)


# Sentinel to signal listener shutdown
_SENTINEL: Event | None = None

_MAX_QUEUE = 10_000
_REPLAY_BUFFER_SIZE = 100


class EventBus:
    """Non-blocking fan-out bus with replay for late subscribers."""

    def __init__(self) -> None:
        self._listeners: list[queue.Queue[Event | None]] = []
        self._listeners_lock = threading.Lock()
        self._replay_buffer: collections.deque[Event] = collections.deque(maxlen=_REPLAY_BUFFER_SIZE)
        self._replay_lock = threading.Lock()
        self._running = True

    def publish(self, event: Event) -> None:
        """Enqueue event to all listeners and remember it for replay."""
        if not self._running:
            return
        with self._replay_lock:
            self._replay_buffer.append(event)

        with self._listeners_lock:
            for listener in self._listeners:
                try:
                    listener.put_nowait(event)
                except queue.Full:
                    pass  # drop rather than stall the caller

    def subscribe(self) -> queue.Queue[Event | None]:
        """Create a listener queue, pre-filled with recent events.

        A None sentinel in the queue signals shutdown.
        """
        q: queue.Queue[Event | None] = queue.Queue(maxsize=_MAX_QUEUE)

        with self._replay_lock:
            for event in self._replay_buffer:
                try:
                    q.put_nowait(event)
                except queue.Full:
                    break

        with self._listeners_lock:
            self._listeners.append(q)
        return q

    def unsubscribe(self, q: queue.Queue[Event | None]) -> None:
        with self._listeners_lock:
            try:
                self._listeners.remove(q)
            except ValueError:
                pass

    def stop(self) -> None:
        """Signal every listener to stop. Idempotent."""
        if not self._running:
            return
        self._running = False
        with self._listeners_lock:
            for listener in self._listeners:
                try:
                    listener.put(_SENTINEL, timeout=5.0)
                except queue.Full:
                    pass
        logger.debug("EventBus stopped")


# ── Module-level singleton ────────────────────────────────────────────

_bus: EventBus | None = None
_bus_lock = threading.Lock()


def init_bus() -> EventBus:
    """Initialize the module-level EventBus singleton."""
    global _bus
    with _bus_lock:
        if _bus is None:
            _bus = EventBus()
        return _bus


def get_bus() -> EventBus | None:
    """Return the current EventBus, or None if not initialized."""
    return _bus


def shutdown_bus() -> None:
    """Stop and clear the module-level EventBus."""
    global _bus
    with _bus_lock:
        if _bus is not None:
            _bus.stop()
            _bus = None


# ── Consumers ─────────────────────────────────────────────────────────


class JsonLinesSink:
    """Append every bus event to a file, one ``Event.to_json()`` per line.

    Runs on a daemon thread and stops on the bus sentinel or on close().
    Events published before start() are picked up from the replay buffer.
    """

    def __init__(self, bus: EventBus, path: str | os.PathLike[str]):
        self._bus = bus
        self.path = Path(path)
        self._queue: queue.Queue[Event | None] | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> JsonLinesSink:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._queue = self._bus.subscribe()
        self._thread = threading.Thread(target=self._run, name="klokbot-event-sink", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        assert self._queue is not None
        with self.path.open("a", encoding="utf-8") as f:
            while True:
                event = self._queue.get()
                if event is _SENTINEL:
                    break
                f.write(event.to_json() + "\n")
                f.flush()

    def close(self, timeout: float = 5.0) -> None:
        """Drain what is queued, then stop. Idempotent."""
        if self._queue is None or self._thread is None:
            return
        self._bus.unsubscribe(self._queue)
        try:
            self._queue.put(_SENTINEL, timeout=timeout)
        except queue.Full:
            logger.warning("Event sink queue full on close; %s may be incomplete", self.path)
        self._thread.join(timeout=timeout)
        self._queue = None
        self._thread = None
