from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Literal, Optional

from concall.common.logging import log_event

logger = logging.getLogger(__name__)

ANALYTICS_UPDATE_TYPE = "analytics_update"


class ObserverConnection:
    """
    Outbound side of one subscribed stream.

    The hub pushes with `offer()`; the transport's writer loop pulls with
    `next_message()` until it returns None (queue closed by the hub).
    """

    def __init__(self, *, capacity: int = 256, conn_id: str | None = None) -> None:
        self.conn_id = conn_id or uuid.uuid4().hex[:12]
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max(1, int(capacity)))
        self._closed = asyncio.Event()
        self.dropped_for_overflow = False

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, message: str) -> bool:
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        self._closed.set()

    async def next_message(self) -> Optional[str]:
        # Messages already queued are still drained after close.
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._closed.is_set():
            return None
        getter = asyncio.ensure_future(self._queue.get())
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in (getter, closer):
                if not t.done():
                    t.cancel()
        if getter in done:
            return getter.result()
        return None

    def __repr__(self) -> str:
        return f"ObserverConnection(conn_id={self.conn_id!r}, closed={self.closed})"


@dataclass(frozen=True)
class _HubEvent:
    kind: Literal["register", "unregister", "broadcast"]
    conn: ObserverConnection | None = None
    message: str | None = None


@dataclass
class HubStats:
    registered: int = 0
    unregistered: int = 0
    broadcasts: int = 0
    broadcasts_dropped: int = 0
    deliveries: int = 0
    observers_dropped: int = 0
    publishes_skipped: int = 0
    last_message: str | None = field(default=None, repr=False)


class BroadcastHub:
    """
    Single-owner fan-out of text messages to observers.

    All mutation of the observer set happens inside `run()`, which consumes one
    inbox of register/unregister/broadcast events in arrival order. Producers
    never block: a broadcast submitted while `broadcast_capacity` broadcasts are
    already pending is dropped. An observer whose queue is full when a message
    arrives is dropped and its queue closed.
    """

    def __init__(self, *, send_capacity: int = 256, broadcast_capacity: int = 256) -> None:
        self.send_capacity = max(1, int(send_capacity))
        self.broadcast_capacity = max(1, int(broadcast_capacity))
        self._inbox: asyncio.Queue[_HubEvent] = asyncio.Queue()
        self._pending_broadcasts = 0
        self._observers: set[ObserverConnection] = set()
        self._observer_count = 0
        self.stats = HubStats()

    @property
    def observer_count(self) -> int:
        return self._observer_count

    def new_connection(self) -> ObserverConnection:
        return ObserverConnection(capacity=self.send_capacity)

    def register(self, conn: ObserverConnection) -> None:
        self._inbox.put_nowait(_HubEvent("register", conn=conn))

    def unregister(self, conn: ObserverConnection) -> None:
        self._inbox.put_nowait(_HubEvent("unregister", conn=conn))

    def broadcast(self, message: str) -> bool:
        if self._pending_broadcasts >= self.broadcast_capacity:
            self.stats.broadcasts_dropped += 1
            log_event(
                logger,
                "hub.broadcast_dropped",
                severity="WARNING",
                pending=self._pending_broadcasts,
                capacity=self.broadcast_capacity,
            )
            return False
        self._pending_broadcasts += 1
        self._inbox.put_nowait(_HubEvent("broadcast", message=message))
        return True

    def publish_analytics(self, total_visits: int) -> bool:
        """Returns False when nothing was submitted (no observers, or broadcast backlog full)."""
        if self._observer_count == 0:
            self.stats.publishes_skipped += 1
            logger.debug("hub.publish_skipped (no observers)")
            return False
        message = json.dumps(
            {"type": ANALYTICS_UPDATE_TYPE, "total_visits": int(total_visits)},
            separators=(",", ":"),
        )
        return self.broadcast(message)

    async def run(self) -> None:
        log_event(logger, "hub.started", send_capacity=self.send_capacity, broadcast_capacity=self.broadcast_capacity)
        try:
            while True:
                ev = await self._inbox.get()
                try:
                    self._handle(ev)
                finally:
                    self._inbox.task_done()
        finally:
            for conn in list(self._observers):
                conn.close()
            self._observers.clear()
            self._observer_count = 0
            log_event(logger, "hub.stopped", **self.stats_dict())

    async def join(self) -> None:
        """Wait until every event submitted so far has been handled."""
        await self._inbox.join()

    def stats_dict(self) -> dict[str, int]:
        s = self.stats
        return {
            "observers": self._observer_count,
            "registered": s.registered,
            "unregistered": s.unregistered,
            "broadcasts": s.broadcasts,
            "broadcasts_dropped": s.broadcasts_dropped,
            "deliveries": s.deliveries,
            "observers_dropped": s.observers_dropped,
        }

    def _handle(self, ev: _HubEvent) -> None:
        if ev.kind == "register" and ev.conn is not None:
            if ev.conn.closed:
                return
            self._observers.add(ev.conn)
            self._observer_count = len(self._observers)
            self.stats.registered += 1
            log_event(logger, "hub.registered", conn_id=ev.conn.conn_id, observers=self._observer_count)
        elif ev.kind == "unregister" and ev.conn is not None:
            if ev.conn in self._observers:
                self._forget(ev.conn)
            ev.conn.close()
        elif ev.kind == "broadcast" and ev.message is not None:
            self._pending_broadcasts = max(0, self._pending_broadcasts - 1)
            self._fan_out(ev.message)

    def _forget(self, conn: ObserverConnection) -> None:
        self._observers.discard(conn)
        self._observer_count = len(self._observers)
        self.stats.unregistered += 1
        log_event(logger, "hub.unregistered", conn_id=conn.conn_id, observers=self._observer_count)

    def _fan_out(self, message: str) -> None:
        self.stats.broadcasts += 1
        self.stats.last_message = message
        for conn in list(self._observers):
            # Endpoint already closed its side; the unregister event is still queued.
            if conn.closed:
                self._forget(conn)
                continue
            if conn.offer(message):
                self.stats.deliveries += 1
                continue
            self._observers.discard(conn)
            conn.dropped_for_overflow = True
            conn.close()
            self.stats.observers_dropped += 1
            log_event(
                logger,
                "hub.observer_dropped",
                severity="WARNING",
                conn_id=conn.conn_id,
                pending=conn.pending(),
            )
        self._observer_count = len(self._observers)
