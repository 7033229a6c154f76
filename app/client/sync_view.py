from __future__ import annotations

import logging
import threading
from typing import Callable

from app.services.changes import CHANGE_DELETE, CHANGE_INSERT, CHANGE_UPDATE
from app.services.errors import BookmarkError
from app.services.search import filter_bookmarks


logger = logging.getLogger(__name__)

STATE_LOADING = "loading"
STATE_LIVE = "live"
STATE_DETACHED = "detached"

SYNC_INTERRUPTED_NOTICE = "Live sync interrupted, reconnecting..."


def _index_of(records: list[dict], record_id) -> int | None:
    for index, existing in enumerate(records):
        if existing.get("id") == record_id:
            return index
    return None


def apply_change(records: list[dict], event: dict) -> list[dict]:
    """Return a new list with one change event applied.

    Inserts replace a record already holding the same id (duplicate
    delivery) and otherwise go to the front. Updates merge in place; an
    update for an unknown id is prepended. Deletes drop the id if present.
    """
    kind = event.get("type")
    record = event.get("record") or {}
    record_id = record.get("id")
    if record_id is None or kind not in {CHANGE_INSERT, CHANGE_UPDATE, CHANGE_DELETE}:
        return list(records)

    if kind == CHANGE_DELETE:
        return [existing for existing in records if existing.get("id") != record_id]

    index = _index_of(records, record_id)
    if index is None:
        return [dict(record), *records]

    updated = list(records)
    if kind == CHANGE_UPDATE:
        updated[index] = {**records[index], **record}
    else:
        updated[index] = dict(record)
    return updated


class SyncView:
    """Live, materialized list of one owner's bookmarks.

    ``fetch`` returns a snapshot ``{"items": [...], "cursor": int}``.
    ``subscribe(callback, since=cursor)`` opens the change subscription and
    returns an object with ``close()``. Event callbacks are applied
    synchronously; the lock only guards against the transport thread and
    the caller touching state at the same time.
    """

    def __init__(
        self,
        on_change: Callable[[list[dict]], None] | None = None,
        on_error: Callable[[BookmarkError], None] | None = None,
        on_notice: Callable[[str | None], None] | None = None,
    ):
        self.state = STATE_LOADING
        self.records: list[dict] = []
        self.query = ""
        self.visible: list[dict] = []
        self.notice: str | None = None
        self.cursor: int | None = None
        self._on_change = on_change
        self._on_error = on_error
        self._on_notice = on_notice
        self._subscription = None
        self._lock = threading.RLock()

    def start(self, fetch, subscribe) -> "SyncView":
        snapshot = {}
        try:
            snapshot = fetch() or {}
        except BookmarkError as exc:
            logger.warning("Initial bookmark fetch failed: %s", exc)
            if self._on_error:
                self._on_error(exc)

        with self._lock:
            if self.state == STATE_DETACHED:
                return self
            self.cursor = snapshot.get("cursor")
            self.state = STATE_LIVE
            self._set_records(list(snapshot.get("items") or []))

        subscription = subscribe(
            self.handle_event,
            since=self.cursor,
            on_interrupted=self.handle_interrupted,
            on_resumed=self.handle_resumed,
        )
        with self._lock:
            if self.state == STATE_DETACHED:
                subscription.close()
            else:
                self._subscription = subscription
        return self

    def handle_event(self, event: dict) -> None:
        with self._lock:
            if self.state != STATE_LIVE:
                return
            self._set_records(apply_change(self.records, event))
            cursor = event.get("cursor")
            if isinstance(cursor, int) and (self.cursor is None or cursor > self.cursor):
                self.cursor = cursor

    def handle_interrupted(self) -> None:
        with self._lock:
            if self.state == STATE_DETACHED:
                return
            self._set_notice(SYNC_INTERRUPTED_NOTICE)

    def handle_resumed(self) -> None:
        with self._lock:
            if self.state == STATE_DETACHED:
                return
            self._set_notice(None)

    def set_query(self, query: str | None) -> list[dict]:
        with self._lock:
            self.query = query or ""
            self._recompute()
            return self.visible

    def dispose(self) -> None:
        with self._lock:
            if self.state == STATE_DETACHED:
                return
            self.state = STATE_DETACHED
            subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()

    def _set_records(self, records: list[dict]) -> None:
        self.records = records
        self._recompute()

    def _set_notice(self, notice: str | None) -> None:
        if notice == self.notice:
            return
        self.notice = notice
        if self._on_notice:
            self._on_notice(notice)

    def _recompute(self) -> None:
        self.visible = filter_bookmarks(self.records, self.query)
        if self._on_change:
            self._on_change(self.visible)
