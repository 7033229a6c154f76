from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Iterable, Iterator

import httpx

from app.services.errors import BookmarkError, Unavailable, error_for_status


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
STREAM_READ_TIMEOUT = 60.0
RECONNECT_INITIAL_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0
CLOSE_JOIN_TIMEOUT = 2.0


def _raise_for_response(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    message = None
    try:
        payload = response.json()
        if isinstance(payload, dict):
            message = payload.get("error")
    except ValueError:
        pass
    raise error_for_status(response.status_code, message)


def parse_sse(lines: Iterable[str]) -> Iterator[dict]:
    """Decode Server-Sent Events from an iterable of text lines.

    Yields ``{"id", "event", "data"}`` per dispatched event. Comment lines
    (keepalives) and events without data are skipped.
    """
    event_id = None
    event_name = "message"
    data_lines: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data_lines:
                yield {"id": event_id, "event": event_name, "data": "\n".join(data_lines)}
            event_name = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data_lines.append(value)
        elif field == "event":
            event_name = value
        elif field == "id":
            event_id = value
    if data_lines:
        yield {"id": event_id, "event": event_name, "data": "\n".join(data_lines)}


class ChangeStream:
    """Background consumer of ``/changes/stream`` with automatic reconnect.

    Reconnects resume from the last cursor seen via ``Last-Event-ID``, so a
    dropped connection costs latency, not events.
    """

    def __init__(
        self,
        client: httpx.Client,
        on_event: Callable[[dict], None],
        since: int | None = None,
        on_interrupted: Callable[[], None] | None = None,
        on_resumed: Callable[[], None] | None = None,
        initial_delay: float = RECONNECT_INITIAL_DELAY,
        max_delay: float = RECONNECT_MAX_DELAY,
    ):
        self.client = client
        self.cursor = since
        self._on_event = on_event
        self._on_interrupted = on_interrupted
        self._on_resumed = on_resumed
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._response: httpx.Response | None = None
        self._interrupted = False

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def start(self) -> "ChangeStream":
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="smartmark-change-stream"
        )
        self._thread.start()
        return self

    def close(self, timeout: float = CLOSE_JOIN_TIMEOUT) -> None:
        self._stop.set()
        response = self._response
        if response is not None:
            # Unblocks the worker waiting on the next line of the stream.
            response.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _headers(self) -> dict:
        if self.cursor is None:
            return {}
        return {"Last-Event-ID": str(self.cursor)}

    def _run(self) -> None:
        delay = self._initial_delay
        while not self._stop.is_set():
            try:
                self._consume_once()
                delay = self._initial_delay
            except (httpx.HTTPError, BookmarkError) as exc:
                if self._stop.is_set():
                    break
                logger.warning("Change stream disconnected: %s", exc)
            if self._stop.is_set():
                break
            self._mark_interrupted()
            self._stop.wait(delay)
            delay = min(delay * 2, self._max_delay)

    def _consume_once(self) -> None:
        timeout = httpx.Timeout(DEFAULT_TIMEOUT, read=STREAM_READ_TIMEOUT)
        with self.client.stream(
            "GET", "/api/v1/changes/stream", headers=self._headers(), timeout=timeout
        ) as response:
            if response.status_code >= 400:
                response.read()
            _raise_for_response(response)
            self._response = response
            try:
                if self._stop.is_set():
                    return
                self._mark_resumed()
                for message in parse_sse(response.iter_lines()):
                    if self._stop.is_set():
                        return
                    if message["event"] != "change":
                        continue
                    self.dispatch(message)
            except (httpx.HTTPError, httpx.StreamError):
                if self._stop.is_set():
                    return
                raise
            finally:
                self._response = None

    def dispatch(self, message: dict) -> None:
        try:
            event = json.loads(message["data"])
        except ValueError:
            logger.warning("Skipping malformed change event: %r", message["data"])
            return
        cursor = event.get("cursor")
        if isinstance(cursor, int):
            if self.cursor is not None and cursor <= self.cursor:
                return
            self.cursor = cursor
        self._on_event(event)

    def _mark_interrupted(self) -> None:
        if self._interrupted:
            return
        self._interrupted = True
        if self._on_interrupted:
            self._on_interrupted()

    def _mark_resumed(self) -> None:
        if not self._interrupted:
            return
        self._interrupted = False
        if self._on_resumed:
            self._on_resumed()


class BookmarkApiClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.client = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise Unavailable() from exc
        _raise_for_response(response)
        return response.json()

    def fetch_snapshot(self, query: str | None = None) -> dict:
        params = {"q": query} if query else None
        return self._request("GET", "/api/v1/bookmarks", params=params)

    def create_bookmark(self, url: str, title: str | None = None, fetch_title=False) -> dict:
        payload = {"url": url, "title": title, "fetch_title": fetch_title}
        return self._request("POST", "/api/v1/bookmarks", json=payload)

    def update_bookmark(self, bookmark_id: str, title=None, url=None) -> dict:
        patch = {}
        if title is not None:
            patch["title"] = title
        if url is not None:
            patch["url"] = url
        data = self._request("PATCH", f"/api/v1/bookmarks/{bookmark_id}", json=patch)
        return data["bookmark"]

    def delete_bookmark(self, bookmark_id: str) -> None:
        self._request("DELETE", f"/api/v1/bookmarks/{bookmark_id}")

    def fetch_title(self, url: str) -> str:
        return self._request("GET", "/api/v1/fetch-title", params={"url": url})["title"]

    def subscribe(
        self,
        on_event: Callable[[dict], None],
        since: int | None = None,
        on_interrupted: Callable[[], None] | None = None,
        on_resumed: Callable[[], None] | None = None,
    ) -> ChangeStream:
        return ChangeStream(
            self.client,
            on_event,
            since=since,
            on_interrupted=on_interrupted,
            on_resumed=on_resumed,
        ).start()
