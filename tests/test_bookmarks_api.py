from dateutil import parser as dt_parser
from sqlalchemy.exc import SQLAlchemyError

from app.api import routes as api_routes
from app.extensions import db
from app.models import ApiToken, Bookmark, User


def _create_user(subject: str):
    user = User(provider="test", subject=subject, email=f"{subject}@example.com")
    db.session.add(user)
    db.session.commit()
    return user


def _auth(app, subject: str) -> dict:
    with app.app_context():
        user = _create_user(subject)
        token, token_hash = ApiToken.issue_token()
        db.session.add(ApiToken(user_id=user.id, name="pytest", token_hash=token_hash))
        db.session.commit()
    return {"Authorization": f"Bearer {token}"}


def test_health_is_public(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_bookmark_routes_require_authentication(client):
    assert client.get("/api/v1/bookmarks").status_code == 401
    assert client.post("/api/v1/bookmarks", json={}).status_code == 401
    assert client.patch("/api/v1/bookmarks/abc", json={}).status_code == 401
    assert client.delete("/api/v1/bookmarks/abc").status_code == 401
    response = client.get(
        "/api/v1/bookmarks", headers={"Authorization": "Bearer sm_bogus"}
    )
    assert response.status_code == 401


def test_bookmark_lifecycle_scenario(client, app):
    auth = _auth(app, "alice")

    response = client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={"url": "https://example.com", "title": "Example"},
    )
    assert response.status_code == 201
    created = response.get_json()

    response = client.get("/api/v1/bookmarks", headers=auth)
    items = response.get_json()["items"]
    assert [(row["url"], row["title"]) for row in items] == [
        ("https://example.com", "Example")
    ]

    response = client.patch(
        f"/api/v1/bookmarks/{created['id']}",
        headers=auth,
        json={"title": "Example Renamed"},
    )
    assert response.status_code == 200
    response = client.get(f"/api/v1/bookmarks/{created['id']}", headers=auth)
    fetched = response.get_json()
    assert fetched["id"] == created["id"]
    assert fetched["title"] == "Example Renamed"
    assert dt_parser.isoparse(fetched["updated_at"]) > dt_parser.isoparse(
        created["updated_at"]
    )

    response = client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={"url": "https://example.com", "title": "Dup"},
    )
    assert response.status_code == 409
    assert response.get_json()["error"] == "This URL is already bookmarked"
    items = client.get("/api/v1/bookmarks", headers=auth).get_json()["items"]
    assert len([row for row in items if row["url"] == "https://example.com"]) == 1

    response = client.delete(f"/api/v1/bookmarks/{created['id']}", headers=auth)
    assert response.status_code == 200
    assert client.get("/api/v1/bookmarks", headers=auth).get_json()["items"] == []


def test_create_rejects_invalid_input(client, app):
    auth = _auth(app, "alice")

    response = client.post(
        "/api/v1/bookmarks", headers=auth, json={"url": "example.com", "title": "X"}
    )
    assert response.status_code == 400
    assert "http" in response.get_json()["error"]

    response = client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={"url": "https://example.com", "title": "  "},
    )
    assert response.status_code == 400

    response = client.post("/api/v1/bookmarks", headers=auth, data="not json")
    assert response.status_code == 400


def test_create_can_resolve_missing_title(client, app, monkeypatch):
    auth = _auth(app, "alice")
    seen = []

    def _fake_resolve(url, timeout, max_bytes):
        seen.append((url, timeout))
        return "Resolved Title"

    monkeypatch.setattr(api_routes, "resolve_title", _fake_resolve)

    response = client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={"url": "https://example.com/article", "fetch_title": True},
    )
    assert response.status_code == 201
    assert response.get_json()["title"] == "Resolved Title"
    assert seen == [("https://example.com/article", 5.0)]


def test_update_status_codes(client, app):
    alice = _auth(app, "alice")
    bob = _auth(app, "bob")
    first = client.post(
        "/api/v1/bookmarks", headers=alice, json={"url": "https://one.example", "title": "One"}
    ).get_json()
    second = client.post(
        "/api/v1/bookmarks", headers=alice, json={"url": "https://two.example", "title": "Two"}
    ).get_json()

    url = f"/api/v1/bookmarks/{second['id']}"
    assert client.patch(url, headers=alice, json={}).status_code == 400
    response = client.patch(url, headers=alice, json={"title": ""})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Title and URL cannot be empty"
    assert client.patch(url, headers=alice, json={"url": "nope"}).status_code == 400
    assert (
        client.patch(url, headers=alice, json={"url": first["url"]}).status_code == 409
    )
    assert client.patch(url, headers=bob, json={"title": "Mine"}).status_code == 404
    assert (
        client.patch("/api/v1/bookmarks/missing", headers=alice, json={"title": "X"})
        .status_code
        == 404
    )

    response = client.patch(
        url, headers=alice, json={"url": "https://three.example", "title": "Three"}
    )
    assert response.status_code == 200
    bookmark = response.get_json()["bookmark"]
    assert (bookmark["url"], bookmark["title"]) == ("https://three.example", "Three")


def test_update_reports_unexpected_store_errors_as_500(client, app, monkeypatch):
    auth = _auth(app, "alice")

    def _broken(*args, **kwargs):
        raise SQLAlchemyError("boom")

    monkeypatch.setattr(api_routes, "update_bookmark", _broken)
    response = client.patch("/api/v1/bookmarks/any", headers=auth, json={"title": "X"})
    assert response.status_code == 500
    assert "boom" not in response.get_json()["error"]


def test_delete_of_foreign_bookmark_is_404_and_keeps_it(client, app):
    alice = _auth(app, "alice")
    bob = _auth(app, "bob")
    created = client.post(
        "/api/v1/bookmarks", headers=alice, json={"url": "https://example.com", "title": "Ex"}
    ).get_json()

    response = client.delete(f"/api/v1/bookmarks/{created['id']}", headers=bob)
    assert response.status_code == 404
    assert client.get(f"/api/v1/bookmarks/{created['id']}", headers=bob).status_code == 404

    with app.app_context():
        assert db.session.get(Bookmark, created["id"]) is not None


def test_list_is_owner_scoped_and_filterable(client, app):
    alice = _auth(app, "alice")
    bob = _auth(app, "bob")
    client.post(
        "/api/v1/bookmarks",
        headers=alice,
        json={"url": "https://google.com", "title": "Google Search"},
    )
    client.post(
        "/api/v1/bookmarks",
        headers=alice,
        json={"url": "https://developer.mozilla.org", "title": "MDN"},
    )
    client.post(
        "/api/v1/bookmarks",
        headers=bob,
        json={"url": "https://google.com", "title": "Bob's Google"},
    )

    payload = client.get("/api/v1/bookmarks", headers=alice).get_json()
    assert [row["title"] for row in payload["items"]] == ["MDN", "Google Search"]
    assert payload["cursor"] >= 2

    payload = client.get("/api/v1/bookmarks?q=MOZ", headers=alice).get_json()
    assert [row["title"] for row in payload["items"]] == ["MDN"]

    payload = client.get("/api/v1/bookmarks", headers=bob).get_json()
    assert [row["title"] for row in payload["items"]] == ["Bob's Google"]
