import time

from smartmark.extensions import db
from smartmark.models import User


def _create_user(username: str, password: str, is_active=True):
    user = User(username=username, is_active=is_active)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def _token(client, username: str, password: str):
    response = client.post(
        "/api/v1/auth/token",
        json={"username": username, "password": password, "token_name": "pytest"},
    )
    assert response.status_code == 200
    return response.get_json()["token"]


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_token_requires_valid_credentials(client, app):
    with app.app_context():
        _create_user("alice", "secret")
        _create_user("dormant", "secret", is_active=False)

    response = client.post(
        "/api/v1/auth/token", json={"username": "alice", "password": "wrong"}
    )
    assert response.status_code == 401

    response = client.post(
        "/api/v1/auth/token", json={"username": "dormant", "password": "secret"}
    )
    assert response.status_code == 401


def test_endpoints_require_bearer_token(client):
    for path in ("/me", "/bookmarks", "/feed", "/feed/head"):
        response = client.get(f"/api/v1{path}")
        assert response.status_code == 401
        assert response.get_json()["error"] == "authentication required"

    response = client.get("/api/v1/bookmarks", headers=_auth("sm_not-a-token"))
    assert response.status_code == 401


def test_whoami_returns_token_owner(client, app):
    with app.app_context():
        user_id = _create_user("alice", "secret").id
    token = _token(client, "alice", "secret")

    response = client.get("/api/v1/me", headers=_auth(token))
    assert response.status_code == 200
    assert response.get_json() == {"id": user_id, "username": "alice"}


def test_create_bookmark_defaults_scheme(client, app):
    with app.app_context():
        user_id = _create_user("alice", "secret").id
    token = _token(client, "alice", "secret")

    response = client.post(
        "/api/v1/bookmarks",
        headers=_auth(token),
        json={"title": "  Example ", "url": "example.com"},
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["url"] == "https://example.com"
    assert body["title"] == "Example"
    assert body["user_id"] == user_id

    response = client.post(
        "/api/v1/bookmarks",
        headers=_auth(token),
        json={"title": "Plain", "url": "HTTP://plain.example"},
    )
    assert response.get_json()["url"] == "HTTP://plain.example"


def test_create_bookmark_validation(client, app):
    with app.app_context():
        _create_user("alice", "secret")
    token = _token(client, "alice", "secret")

    response = client.post(
        "/api/v1/bookmarks", headers=_auth(token), json={"title": "", "url": "a.com"}
    )
    assert response.status_code == 400
    assert response.get_json()["error"] == "title is required"

    response = client.post(
        "/api/v1/bookmarks", headers=_auth(token), json={"title": "A", "url": " "}
    )
    assert response.status_code == 400
    assert response.get_json()["error"] == "url is required"

    listing = client.get("/api/v1/bookmarks", headers=_auth(token)).get_json()
    assert listing["items"] == []


def test_list_is_newest_first_and_scoped_to_owner(client, app):
    with app.app_context():
        _create_user("alice", "secret")
        _create_user("bob", "secret")
    alice = _token(client, "alice", "secret")
    bob = _token(client, "bob", "secret")

    for title in ("first", "second", "third"):
        client.post(
            "/api/v1/bookmarks",
            headers=_auth(alice),
            json={"title": title, "url": f"{title}.example"},
        )
        time.sleep(0.002)
    client.post(
        "/api/v1/bookmarks",
        headers=_auth(bob),
        json={"title": "bob's", "url": "bob.example"},
    )

    items = client.get("/api/v1/bookmarks", headers=_auth(alice)).get_json()["items"]
    assert [item["title"] for item in items] == ["third", "second", "first"]


def test_delete_only_own_bookmarks(client, app):
    with app.app_context():
        _create_user("alice", "secret")
        _create_user("bob", "secret")
    alice = _token(client, "alice", "secret")
    bob = _token(client, "bob", "secret")

    created = client.post(
        "/api/v1/bookmarks",
        headers=_auth(alice),
        json={"title": "Docs", "url": "docs.python.org"},
    ).get_json()

    response = client.delete(f"/api/v1/bookmarks/{created['id']}", headers=_auth(bob))
    assert response.status_code == 404

    response = client.delete(
        f"/api/v1/bookmarks/{created['id']}", headers=_auth(alice)
    )
    assert response.status_code == 200
    assert response.get_json() == {"status": "deleted", "id": created["id"]}

    response = client.delete(
        f"/api/v1/bookmarks/{created['id']}", headers=_auth(alice)
    )
    assert response.status_code == 404


def test_feed_reports_changes_after_cursor(client, app):
    with app.app_context():
        user_id = _create_user("alice", "secret").id
        _create_user("bob", "secret")
    alice = _token(client, "alice", "secret")
    bob = _token(client, "bob", "secret")

    head = client.get("/api/v1/feed/head", headers=_auth(alice)).get_json()
    assert head == {"user_id": user_id, "cursor": 0}

    first = client.post(
        "/api/v1/bookmarks",
        headers=_auth(alice),
        json={"title": "A", "url": "a.example"},
    ).get_json()
    second = client.post(
        "/api/v1/bookmarks",
        headers=_auth(alice),
        json={"title": "B", "url": "b.example"},
    ).get_json()
    client.delete(f"/api/v1/bookmarks/{first['id']}", headers=_auth(alice))
    client.post(
        "/api/v1/bookmarks", headers=_auth(bob), json={"title": "C", "url": "c.example"}
    )

    page = client.get(
        "/api/v1/feed?since=0&limit=2", headers=_auth(alice)
    ).get_json()
    assert [event["action"] for event in page["events"]] == ["insert", "insert"]
    assert page["events"][0]["record"]["id"] == first["id"]
    assert page["events"][1]["record"]["url"] == "https://b.example"
    assert page["has_more"] is True

    rest = client.get(
        f"/api/v1/feed?since={page['cursor']}&limit=2", headers=_auth(alice)
    ).get_json()
    assert [event["action"] for event in rest["events"]] == ["delete"]
    assert rest["events"][0]["bookmark_id"] == first["id"]
    assert rest["has_more"] is False

    head = client.get("/api/v1/feed/head", headers=_auth(alice)).get_json()
    assert head["cursor"] == rest["cursor"]
    assert second["id"] != first["id"]


def test_feed_long_poll_times_out_without_changes(client, app):
    with app.app_context():
        _create_user("alice", "secret")
    alice = _token(client, "alice", "secret")

    started = time.monotonic()
    response = client.get("/api/v1/feed?since=0&wait=0.2", headers=_auth(alice))
    elapsed = time.monotonic() - started

    assert response.status_code == 200
    assert response.get_json() == {"events": [], "cursor": 0, "has_more": False}
    assert 0.15 <= elapsed < 2


def test_feed_long_poll_returns_immediately_when_events_exist(client, app):
    with app.app_context():
        _create_user("alice", "secret")
    alice = _token(client, "alice", "secret")
    client.post(
        "/api/v1/bookmarks",
        headers=_auth(alice),
        json={"title": "A", "url": "a.example"},
    )

    started = time.monotonic()
    response = client.get("/api/v1/feed?since=0&wait=30", headers=_auth(alice))

    assert time.monotonic() - started < 1
    assert len(response.get_json()["events"]) == 1
