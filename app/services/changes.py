from __future__ import annotations

import json
import queue
import threading
from datetime import timedelta

from app.extensions import db
from app.models import ChangeEvent, utcnow


CHANGE_INSERT = "insert"
CHANGE_UPDATE = "update"
CHANGE_DELETE = "delete"

CHANGE_TYPES = {CHANGE_INSERT, CHANGE_UPDATE, CHANGE_DELETE}

SUBSCRIPTION_QUEUE_SIZE = 500


class Subscription:
    """A single owner-scoped listener on the change feed.

    Events are buffered in a bounded queue. When the buffer overflows the
    subscription is flagged as lagged so the consumer can catch up from the
    durable log instead of silently losing events.
    """

    def __init__(self, feed: "ChangeFeed", owner_id: int, maxsize: int):
        self.feed = feed
        self.owner_id = owner_id
        self.closed = False
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._lagged = False
        self._lock = threading.Lock()

    def deliver(self, event: dict) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            with self._lock:
                self._lagged = True

    def get(self, timeout: float | None = None) -> dict | None:
        return self._queue.get(timeout=timeout)

    def consume_lag(self) -> bool:
        with self._lock:
            lagged, self._lagged = self._lagged, False
        if lagged:
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
        return lagged

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed.unsubscribe(self)
        try:
            # Wake a consumer blocked in get().
            self._queue.put_nowait(None)
        except queue.Full:
            pass


class ChangeFeed:
    def __init__(self, queue_size: int = SUBSCRIPTION_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscriptions: dict[int, set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, owner_id: int) -> Subscription:
        subscription = Subscription(self, owner_id, self.queue_size)
        with self._lock:
            self._subscriptions.setdefault(owner_id, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            owned = self._subscriptions.get(subscription.owner_id)
            if not owned:
                return
            owned.discard(subscription)
            if not owned:
                del self._subscriptions[subscription.owner_id]

    def publish(self, owner_id: int, event: dict) -> int:
        with self._lock:
            targets = list(self._subscriptions.get(owner_id, ()))
        for subscription in targets:
            subscription.deliver(event)
        return len(targets)

    def subscriber_count(self, owner_id: int | None = None) -> int:
        with self._lock:
            if owner_id is not None:
                return len(self._subscriptions.get(owner_id, ()))
            return sum(len(items) for items in self._subscriptions.values())


change_feed = ChangeFeed()


def log_change_event(
    owner_id: int, action: str, bookmark_id: str, payload: dict
) -> ChangeEvent:
    event = ChangeEvent(
        user_id=owner_id,
        action=action,
        bookmark_id=bookmark_id,
        payload=payload,
    )
    db.session.add(event)
    db.session.flush()
    return event


def events_since(owner_id: int, cursor: int = 0, limit: int = 200) -> list[dict]:
    rows = (
        ChangeEvent.query.filter_by(user_id=owner_id)
        .filter(ChangeEvent.id > cursor)
        .order_by(ChangeEvent.id.asc())
        .limit(limit)
        .all()
    )
    return [row.as_dict() for row in rows]


def latest_cursor(owner_id: int) -> int:
    return (
        db.session.query(db.func.max(ChangeEvent.id))
        .filter_by(user_id=owner_id)
        .scalar()
        or 0
    )


def format_sse(event: dict) -> str:
    data = json.dumps(event, separators=(",", ":"))
    return f"id: {event['cursor']}\nevent: change\ndata: {data}\n\n"


def _replay(owner_id: int, cursor: int, page_limit: int):
    while True:
        page = events_since(owner_id, cursor, limit=page_limit)
        yield from page
        if len(page) < page_limit:
            return
        cursor = page[-1]["cursor"]


def iter_change_stream(
    owner_id: int,
    since: int | None,
    subscription: Subscription,
    keepalive_seconds: float,
    page_limit: int = 200,
):
    """Yield Server-Sent Events for one owner.

    The subscription must be opened before this generator starts so nothing
    committed in between is missed. A live delivery only wakes the stream up:
    what gets sent is always read back from the durable log in cursor order,
    so notifications published out of order cannot hide an event.
    """
    last_cursor = latest_cursor(owner_id) if since is None else since
    try:
        yield "retry: 3000\n\n"
        for event in _replay(owner_id, last_cursor, page_limit):
            yield format_sse(event)
            last_cursor = event["cursor"]

        while not subscription.closed:
            if subscription.consume_lag():
                for event in _replay(owner_id, last_cursor, page_limit):
                    yield format_sse(event)
                    last_cursor = event["cursor"]
                continue
            try:
                event = subscription.get(timeout=keepalive_seconds)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            if event is None:
                break
            if event["cursor"] <= last_cursor:
                continue
            for logged in _replay(owner_id, last_cursor, page_limit):
                yield format_sse(logged)
                last_cursor = logged["cursor"]
    finally:
        subscription.close()


def prune_change_events(max_age: timedelta) -> int:
    cutoff = utcnow() - max_age
    removed = ChangeEvent.query.filter(ChangeEvent.created_at < cutoff).delete(
        synchronize_session=False
    )
    db.session.commit()
    return removed
