from __future__ import annotations

from flask import Response, current_app, g, jsonify, request, stream_with_context
from sqlalchemy.exc import SQLAlchemyError

from app.api import api_bp
from app.extensions import db
from app.models import ApiToken, utcnow
from app.services.changes import (
    change_feed,
    events_since,
    iter_change_stream,
    latest_cursor,
)
from app.services.content import resolve_title
from app.services.errors import BookmarkError, InvalidRequest
from app.services.mutations import (
    create_bookmark,
    delete_bookmark,
    get_bookmark,
    list_bookmarks,
    update_bookmark,
)
from app.services.search import filter_bookmarks
from app.services.security import api_auth_required


def _to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _owner_id() -> int:
    return g.api_user.id


def _json_payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {}
    return payload


def _parse_cursor(raw) -> int | None:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        cursor = int(str(raw).strip())
    except ValueError:
        raise InvalidRequest("cursor must be an integer")
    if cursor < 0:
        raise InvalidRequest("cursor must not be negative")
    return cursor


@api_bp.errorhandler(BookmarkError)
def handle_bookmark_error(error: BookmarkError):
    return jsonify({"error": error.message}), error.status_code


@api_bp.errorhandler(SQLAlchemyError)
def handle_store_error(error: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.error("Unexpected store error on %s: %s", request.path, error)
    return jsonify({"error": "Failed to process bookmark request"}), 500


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Smartmark"})


@api_bp.route("/me")
@api_auth_required()
def me():
    return jsonify(g.api_user.as_dict())


@api_bp.route("/tokens", methods=["POST"])
@api_auth_required(session_only=True)
def tokens_create():
    user = g.api_user
    payload = _json_payload()
    token_name = (payload.get("token_name") or "Smartmark API Token").strip()

    token, token_hash = ApiToken.issue_token()
    row = ApiToken(user_id=user.id, name=token_name, token_hash=token_hash)
    db.session.add(row)
    db.session.commit()
    return jsonify({"id": row.id, "token": token, "token_name": token_name}), 201


@api_bp.route("/tokens/<int:token_id>", methods=["DELETE"])
@api_auth_required()
def tokens_revoke(token_id: int):
    user = g.api_user
    row = ApiToken.query.filter_by(id=token_id, user_id=user.id).first()
    if not row:
        return jsonify({"error": "token not found"}), 404
    if row.revoked_at is None:
        row.revoked_at = utcnow()
        db.session.commit()
    return jsonify({"status": "revoked", "token": row.as_dict()})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required()
def bookmarks_list_api():
    owner_id = _owner_id()
    # Read the cursor first: anything committed after it is replayed by the stream.
    cursor = latest_cursor(owner_id)
    items = [bookmark.as_dict() for bookmark in list_bookmarks(owner_id)]
    query = request.args.get("q")
    if query:
        items = filter_bookmarks(items, query)
    return jsonify({"items": items, "cursor": cursor})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required()
def bookmarks_create_api():
    owner_id = _owner_id()
    payload = _json_payload()
    url = payload.get("url")
    title = payload.get("title")

    missing_title = not isinstance(title, str) or not title.strip()
    if missing_title and _to_bool(payload.get("fetch_title"), default=False):
        if isinstance(url, str):
            title = resolve_title(
                url,
                timeout=current_app.config["TITLE_FETCH_TIMEOUT"],
                max_bytes=current_app.config["TITLE_FETCH_MAX_BYTES"],
            )

    bookmark = create_bookmark(owner_id, url, title)
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/<bookmark_id>", methods=["GET"])
@api_auth_required()
def bookmarks_get_api(bookmark_id: str):
    bookmark = get_bookmark(_owner_id(), bookmark_id)
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<bookmark_id>", methods=["PATCH"])
@api_auth_required()
def bookmarks_update_api(bookmark_id: str):
    payload = _json_payload()
    patch = {field: payload[field] for field in ("title", "url") if field in payload}
    bookmark = update_bookmark(_owner_id(), bookmark_id, patch)
    return jsonify({"bookmark": bookmark.as_dict()})


@api_bp.route("/bookmarks/<bookmark_id>", methods=["DELETE"])
@api_auth_required()
def bookmarks_delete_api(bookmark_id: str):
    snapshot = delete_bookmark(_owner_id(), bookmark_id)
    return jsonify({"status": "deleted", "bookmark": snapshot})


@api_bp.route("/fetch-title", methods=["GET"])
@api_auth_required()
def fetch_title_api():
    url = (request.args.get("url") or "").strip()
    if not url:
        return jsonify({"error": "URL is required"}), 400
    title = resolve_title(
        url,
        timeout=current_app.config["TITLE_FETCH_TIMEOUT"],
        max_bytes=current_app.config["TITLE_FETCH_MAX_BYTES"],
    )
    return jsonify({"title": title})


@api_bp.route("/changes", methods=["GET"])
@api_auth_required()
def changes_pull():
    owner_id = _owner_id()
    since = _parse_cursor(request.args.get("since")) or 0
    page_limit = current_app.config["CHANGES_PAGE_LIMIT"]
    limit = request.args.get("limit", default=page_limit, type=int)
    limit = max(1, min(limit, page_limit))
    events = events_since(owner_id, since, limit=limit)
    cursor = events[-1]["cursor"] if events else since
    return jsonify(
        {"events": events, "cursor": cursor, "has_more": len(events) == limit}
    )


@api_bp.route("/changes/stream", methods=["GET"])
@api_auth_required()
def changes_stream():
    owner_id = _owner_id()
    since = _parse_cursor(
        request.headers.get("Last-Event-ID", request.args.get("since"))
    )
    subscription = change_feed.subscribe(owner_id)
    current_app.logger.debug(
        "Change stream opened for user %s (since=%s)", owner_id, since
    )
    stream = iter_change_stream(
        owner_id,
        since,
        subscription,
        keepalive_seconds=current_app.config["CHANGE_STREAM_KEEPALIVE_SECONDS"],
        page_limit=current_app.config["CHANGES_PAGE_LIMIT"],
    )
    response = Response(stream_with_context(stream), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.call_on_close(subscription.close)
    return response
