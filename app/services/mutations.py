from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from app.extensions import db
from app.models import Bookmark, utcnow
from app.services.changes import (
    CHANGE_DELETE,
    CHANGE_INSERT,
    CHANGE_UPDATE,
    change_feed,
    log_change_event,
)
from app.services.common import clean_text, is_valid_http_url
from app.services.errors import (
    DuplicateURL,
    InvalidRequest,
    InvalidURL,
    NotFound,
    Unavailable,
)


def _require_url(value) -> str:
    url = clean_text(value)
    if not url:
        raise InvalidRequest("URL is required")
    if not is_valid_http_url(url):
        raise InvalidURL()
    return url


def _require_title(value) -> str:
    title = clean_text(value)
    if not title:
        raise InvalidRequest("Title is required")
    return title


def _patch_value(patch: dict, field: str) -> str | None:
    if field not in patch or patch[field] is None:
        return None
    value = patch[field]
    if not isinstance(value, str):
        raise InvalidRequest(f"{field} must be a string")
    return value.strip()


def _commit_or_unavailable(action: str) -> None:
    try:
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        current_app.logger.warning("Store unavailable during %s: %s", action, exc)
        raise Unavailable() from exc


def _owned_bookmark(owner_id: int, bookmark_id: str) -> Bookmark:
    try:
        bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=owner_id).first()
    except OperationalError as exc:
        db.session.rollback()
        raise Unavailable() from exc
    if not bookmark:
        raise NotFound()
    return bookmark


def list_bookmarks(owner_id: int) -> list[Bookmark]:
    try:
        return (
            Bookmark.query.filter_by(user_id=owner_id)
            .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
            .all()
        )
    except OperationalError as exc:
        db.session.rollback()
        raise Unavailable() from exc


def get_bookmark(owner_id: int, bookmark_id: str) -> Bookmark:
    return _owned_bookmark(owner_id, bookmark_id)


def find_bookmark_by_url(owner_id: int, url: str) -> Bookmark | None:
    try:
        return Bookmark.query.filter_by(user_id=owner_id, url=url).first()
    except OperationalError as exc:
        db.session.rollback()
        raise Unavailable() from exc


def create_bookmark(owner_id: int, url, title) -> Bookmark:
    url = _require_url(url)
    title = _require_title(title)

    # Fast feedback only; the unique constraint below is the real guard.
    if find_bookmark_by_url(owner_id, url) is not None:
        raise DuplicateURL()

    now = utcnow()
    bookmark = Bookmark(
        user_id=owner_id, url=url, title=title, created_at=now, updated_at=now
    )
    db.session.add(bookmark)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise DuplicateURL() from exc
    except OperationalError as exc:
        db.session.rollback()
        raise Unavailable() from exc

    event = log_change_event(owner_id, CHANGE_INSERT, bookmark.id, bookmark.as_dict())
    payload = event.as_dict()
    _commit_or_unavailable("create")
    change_feed.publish(owner_id, payload)
    return bookmark


def update_bookmark(owner_id: int, bookmark_id: str, patch: dict) -> Bookmark:
    if not isinstance(patch, dict):
        raise InvalidRequest("At least one of title or url is required")
    title = _patch_value(patch, "title")
    url = _patch_value(patch, "url")

    if title is None and url is None:
        raise InvalidRequest("At least one of title or url is required")
    if title == "" or url == "":
        raise InvalidRequest("Title and URL cannot be empty")
    if url is not None and not is_valid_http_url(url):
        raise InvalidURL()

    bookmark = _owned_bookmark(owner_id, bookmark_id)
    if title is not None:
        bookmark.title = title
    if url is not None:
        bookmark.url = url
    bookmark.updated_at = utcnow()
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise DuplicateURL() from exc
    except OperationalError as exc:
        db.session.rollback()
        raise Unavailable() from exc

    event = log_change_event(owner_id, CHANGE_UPDATE, bookmark.id, bookmark.as_dict())
    payload = event.as_dict()
    _commit_or_unavailable("update")
    change_feed.publish(owner_id, payload)
    return bookmark


def delete_bookmark(owner_id: int, bookmark_id: str) -> dict:
    bookmark = _owned_bookmark(owner_id, bookmark_id)
    snapshot = bookmark.as_dict()
    db.session.delete(bookmark)
    event = log_change_event(owner_id, CHANGE_DELETE, snapshot["id"], snapshot)
    payload = event.as_dict()
    _commit_or_unavailable("delete")
    change_feed.publish(owner_id, payload)
    return snapshot
