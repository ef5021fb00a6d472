from __future__ import annotations

from conftest import create_comment, create_thread, register


def test_comments_listed_oldest_first(client):
    register(client, "u@example.com")
    thread = create_thread(client)
    first = create_comment(client, thread["id"], "Первый")
    second = create_comment(client, thread["id"], "Второй")

    response = client.get(f"/api/threads/{thread['id']}/comments")
    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [first["id"], second["id"]]
    assert response.json()[0]["thread_id"] == thread["id"]
    assert response.json()[0]["upvotes"] == 0


def test_comment_on_unknown_thread_is_404(client):
    register(client, "u@example.com")
    missing = "00000000-0000-0000-0000-000000000000"
    assert client.post(f"/api/threads/{missing}/comments", json={"content": "x"}).status_code == 404
    assert client.get(f"/api/threads/{missing}/comments").status_code == 404


def test_comment_validation(client):
    register(client, "u@example.com")
    thread = create_thread(client)
    url = f"/api/threads/{thread['id']}/comments"

    assert client.post(url, json={"content": ""}).status_code == 400
    assert client.post(url, json={"content": "x" * 5001}).status_code == 400
    assert client.post(url, json={"content": "ok", "threadId": thread["id"]}).status_code == 400


def test_deleting_thread_removes_its_comments(client):
    register(client, "u@example.com")
    thread = create_thread(client)
    other = create_thread(client, title="Другая тема")
    doomed = [create_comment(client, thread["id"]) for _ in range(3)]
    survivor = create_comment(client, other["id"])
    client.post("/api/bookmarks", json={"targetType": "comment", "targetId": doomed[0]["id"]})

    assert client.delete(f"/api/threads/{thread['id']}").status_code == 204

    for comment in doomed:
        assert client.get(f"/api/comments/{comment['id']}").status_code == 404
    assert client.get(f"/api/comments/{survivor['id']}").status_code == 200
    assert client.get("/api/bookmarks").json() == []


def test_update_and_delete_comment(client, other_client):
    register(client, "author@example.com")
    register(other_client, "other@example.com")
    thread = create_thread(client)
    comment = create_comment(client, thread["id"])
    url = f"/api/comments/{comment['id']}"

    assert client.patch(url, json={}).status_code == 400
    assert other_client.patch(url, json={"content": "чужое"}).status_code == 403

    response = client.patch(url, json={"content": "Исправлено"})
    assert response.status_code == 200
    assert response.json()["content"] == "Исправлено"

    assert other_client.delete(url).status_code == 403
    assert client.delete(url).status_code == 204
    assert client.get(url).status_code == 404
    assert client.get(f"/api/threads/{thread['id']}/comments").json() == []


def test_comment_upvote_overwrite(client):
    register(client, "u@example.com")
    thread = create_thread(client)
    comment = create_comment(client, thread["id"])

    response = client.patch(f"/api/comments/{comment['id']}/upvotes", json={"upvotes": 7})
    assert response.status_code == 200
    assert client.get(f"/api/comments/{comment['id']}").json()["upvotes"] == 7
    assert client.patch(f"/api/comments/{comment['id']}/upvotes", json={"upvotes": -3}).status_code == 400
