"""Real-time fan-out of order events to administrative subscribers.

Admin dashboards keep a persistent server-sent-events connection open on
``/api/orders/events/``. Each open connection is a ``SubscriberConnection``
joined to a named broadcast group in the process-wide ``REGISTRY``; it is
removed from the group when the connection closes.

Publishing is best-effort and never blocks the publisher:

- each connection owns a bounded outbox; ``publish`` does a non-blocking
  put and silently drops the event if the outbox is full or closed,
- only connections joined at call time receive the event (no replay),
- events reach one connection in the order they were published to the
  group, since the outbox is FIFO and drained by a single stream.
"""

import json
import logging
import queue
import threading
import uuid
from typing import Dict, Iterator, Set, Tuple

from django.core.serializers.json import DjangoJSONEncoder

from .domain import NewOrderNotification, NotificationPublisherPort

logger = logging.getLogger("orders.notifications")


class SubscriberConnection:
    """Handle for one connected subscriber.

    Attributes:
        id: Random identifier, used in logs only.
        outbox: Bounded FIFO of events waiting to be streamed.
    """

    def __init__(self, maxsize: int = 100):
        self.id = uuid.uuid4().hex
        self.outbox: "queue.Queue[NewOrderNotification]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, event: NewOrderNotification) -> bool:
        """Enqueue ``event`` without blocking. Returns False if it was dropped."""
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(event)
        except queue.Full:
            logger.warning("subscriber outbox full, event dropped", extra={"subscriber": self.id})
            return False
        return True

    def next_event(self, timeout: float) -> NewOrderNotification | None:
        try:
            return self.outbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed.set()


class BroadcastRegistry:
    """Membership of broadcast groups: group name -> set of connections.

    Thread-safe. Empty groups are dropped so nothing lingers after the last
    subscriber leaves.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._groups: Dict[str, Set[SubscriberConnection]] = {}

    def join(self, group: str, conn: SubscriberConnection) -> None:
        with self._lock:
            self._groups.setdefault(group, set()).add(conn)
        logger.info("subscriber joined", extra={"group": group, "subscriber": conn.id})

    def leave(self, group: str, conn: SubscriberConnection) -> None:
        with self._lock:
            members = self._groups.get(group)
            if members is None or conn not in members:
                return
            members.discard(conn)
            if not members:
                del self._groups[group]
        logger.info("subscriber left", extra={"group": group, "subscriber": conn.id})

    def members(self, group: str) -> Tuple[SubscriberConnection, ...]:
        """Snapshot of the connections joined to ``group`` right now."""
        with self._lock:
            return tuple(self._groups.get(group, ()))

    def count(self, group: str) -> int:
        with self._lock:
            return len(self._groups.get(group, ()))

    def clear(self) -> None:
        with self._lock:
            self._groups.clear()


REGISTRY = BroadcastRegistry()


class GroupPublisher(NotificationPublisherPort):
    """Publisher that hands events to the registry's current members."""

    def __init__(self, registry: BroadcastRegistry = REGISTRY):
        self.registry = registry

    def publish(self, group: str, event: NewOrderNotification) -> int:
        delivered = 0
        for conn in self.registry.members(group):
            if conn.deliver(event):
                delivered += 1
        logger.info(
            "event published",
            extra={"group": group, "event": event.event_name, "delivered": delivered},
        )
        return delivered


def format_sse(event: NewOrderNotification) -> str:
    """Render an event as a server-sent-events frame."""
    data = json.dumps(event.as_payload(), cls=DjangoJSONEncoder)
    return f"event: {event.event_name}\ndata: {data}\n\n"


class EventStream:
    """Streaming body of one SSE connection, joined to ``group`` on creation.

    Django's ``StreamingHttpResponse`` calls ``close()`` when the client
    goes away or the response is finished, which removes the connection
    from the registry even if the body was never iterated.
    """

    def __init__(
        self,
        group: str,
        registry: BroadcastRegistry = REGISTRY,
        heartbeat: float = 15.0,
        maxsize: int = 100,
    ):
        self.group = group
        self.registry = registry
        self.heartbeat = heartbeat
        self.conn = SubscriberConnection(maxsize=maxsize)
        self.registry.join(group, self.conn)

    def __iter__(self) -> Iterator[str]:
        yield ": connected\n\n"
        while not self.conn.closed:
            event = self.conn.next_event(self.heartbeat)
            if event is None:
                yield ": heartbeat\n\n"
            else:
                yield format_sse(event)

    def close(self) -> None:
        if self.conn.closed:
            return
        self.conn.close()
        self.registry.leave(self.group, self.conn)
