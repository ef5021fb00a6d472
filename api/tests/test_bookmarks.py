from __future__ import annotations

from conftest import create_comment, create_thread, register


def toggle(client, target_id: str, target_type: str = "thread"):
    return client.post("/api/bookmarks", json={"targetType": target_type, "targetId": target_id})


def test_bookmark_toggle(client):
    user = register(client, "u@example.com")
    thread = create_thread(client)

    response = toggle(client, thread["id"])
    assert response.status_code == 201
    assert response.json()["action"] == "created"
    assert response.json()["bookmark"]["user_id"] == user["id"]
    assert client.get(f"/api/bookmarks/thread/{thread['id']}").json() == {"bookmarked": True}

    response = toggle(client, thread["id"])
    assert response.status_code == 200
    assert response.json()["action"] == "removed"
    assert client.get(f"/api/bookmarks/thread/{thread['id']}").json() == {"bookmarked": False}
    assert client.get("/api/bookmarks").json() == []


def test_bookmarks_are_per_user_and_newest_first(client, other_client):
    register(client, "u@example.com")
    register(other_client, "other@example.com")
    thread = create_thread(client)
    comment = create_comment(client, thread["id"])

    toggle(client, thread["id"])
    toggle(client, comment["id"], "comment")
    toggle(other_client, thread["id"])

    mine = client.get("/api/bookmarks").json()
    assert [(b["target_type"], b["target_id"]) for b in mine] == [
        ("comment", comment["id"]),
        ("thread", thread["id"]),
    ]
    assert len(other_client.get("/api/bookmarks").json()) == 1


def test_bookmark_requires_session_and_target(client):
    missing = "00000000-0000-0000-0000-000000000000"
    assert toggle(client, missing).status_code == 401
    assert client.get("/api/bookmarks").status_code == 401

    register(client, "u@example.com")
    assert toggle(client, missing).status_code == 404
    assert client.post("/api/bookmarks", json={"targetType": "thread"}).status_code == 400
