"""
Accounts, catalog, library and activity endpoints.
"""
from sqlalchemy import select

from storify.core.config import settings
from storify.core.database import activity_log, get_db_session
from storify.features.catalog.service import list_books


def test_signup_signin_signout(client):
    signup = client.post("/api/auth/signup", json={"email": " Reader@Example.com ", "password": "secret123", "name": "Reader"})
    assert signup.status_code == 200
    assert signup.json()["user"]["email"] == "reader@example.com"
    assert settings.SESSION_COOKIE_NAME in signup.cookies

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["name"] == "Reader"

    assert client.post("/api/auth/signout").status_code == 200
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401

    signin = client.post("/api/auth/signin", json={"email": "reader@example.com", "password": "secret123"})
    assert signin.status_code == 200
    assert client.get("/api/auth/me").status_code == 200


def test_duplicate_email_and_bad_password(client, make_user):
    make_user("reader@example.com")

    dup = client.post("/api/auth/signup", json={"email": "reader@example.com", "password": "secret123"})
    assert dup.status_code == 400

    bad = client.post("/api/auth/signin", json={"email": "reader@example.com", "password": "wrong-pass"})
    assert bad.status_code == 401
    assert bad.json()["error"]["code"] == "invalid_credentials"


def test_signout_invalidates_session_token(client, make_user, login):
    user = make_user()
    token = login(user.id)
    client.post("/api/auth/signout")

    client.cookies.set(settings.SESSION_COOKIE_NAME, token)
    assert client.get("/api/auth/me").status_code == 401


def test_catalog_filters(client):
    assert len(client.get("/api/books").json()) == 5
    finance = client.get("/api/books", params={"category": "Finance"}).json()
    assert {b["title"] for b in finance} == {"The Psychology of Money", "Rich Dad Poor Dad"}
    featured = client.get("/api/books", params={"featured": "true"}).json()
    assert all(b["isFeatured"] for b in featured)
    search = client.get("/api/books", params={"search": "atomic"}).json()
    assert [b["title"] for b in search] == ["Atomic Habits"]

    assert client.get("/api/books/99999").status_code == 404
    assert "History" in client.get("/api/categories").json()


def test_create_book_requires_admin(client, admin_headers):
    book = {
        "title": "Thinking, Fast and Slow",
        "author": "Daniel Kahneman",
        "description": "Two systems of thought.",
        "coverUrl": "https://example.com/cover.jpg",
        "audioUrl": "https://example.com/audio.mp3",
        "duration": 960,
        "category": "Psychology",
    }
    assert client.post("/api/books", json=book).status_code == 401

    created = client.post("/api/books", json=book, headers=admin_headers)
    assert created.status_code == 201
    assert client.get(f"/api/books/{created.json()['id']}").json()["author"] == "Daniel Kahneman"


def test_favorites_toggle(client, make_user, login):
    login(make_user().id)
    book_id = list_books()[0].id

    assert client.post(f"/api/favorites/{book_id}").json() == {"isFavorite": True}
    assert client.get(f"/api/favorites/{book_id}/check").json() == {"isFavorite": True}
    assert [b["id"] for b in client.get("/api/favorites").json()] == [book_id]

    assert client.post(f"/api/favorites/{book_id}").json() == {"isFavorite": False}
    assert client.get("/api/favorites").json() == []


def test_playback_progress(client, make_user, login):
    login(make_user().id)
    book_id = list_books()[0].id

    assert client.get(f"/api/playback/{book_id}").status_code == 404

    saved = client.post(f"/api/playback/{book_id}", json={"progress": 25.0, "currentTime": 180})
    assert saved.status_code == 200
    client.post(f"/api/playback/{book_id}", json={"progress": 50.0, "currentTime": 360})

    progress = client.get(f"/api/playback/{book_id}").json()
    assert progress["progress"] == 50.0
    assert progress["currentTime"] == 360

    recent = client.get("/api/playback/recent").json()
    assert recent[0]["id"] == book_id
    assert recent[0]["currentTime"] == 360

    assert client.post(f"/api/playback/{book_id}", json={"progress": 150, "currentTime": 1}).status_code == 422


def test_activity_log_is_written_after_response(client, make_user, login):
    user = make_user()
    login(user.id)

    response = client.post("/api/activity/log", json={
        "action": "play",
        "resourceType": "book",
        "resourceId": 3,
        "metadata": {"source": "home"},
    })
    assert response.status_code == 202

    with get_db_session() as session:
        rows = session.execute(select(activity_log)).fetchall()
    assert len(rows) == 1
    assert rows[0].user_id == user.id
    assert rows[0].resource_id == "3"
    assert rows[0]._mapping["metadata"] == {"source": "home"}
