"""HTTP surface: messages, conversations, users and presence."""
import pytest

from tests.conftest import auth, make_token


def send(client, sender, receiver, text, **extra):
    return client.post(f"/messages/send/{receiver}", json={"message": text, **extra}, headers=auth(sender))


# =============================================================================
# auth
# =============================================================================


def test_requests_without_token_are_rejected(client, bob):
    response = client.post(f"/messages/send/{bob}", json={"message": "hi"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthorized - no token provided"


def test_garbage_token_is_rejected(client, bob):
    response = client.get(f"/messages/{bob}", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_unknown_user_is_rejected(client, bob):
    response = client.get(f"/messages/{bob}", headers=auth("0123456789abcdef01234567"))
    assert response.status_code == 401


def test_cookie_token_is_accepted(client, alice, bob):
    client.cookies.set("jwt", make_token(alice))
    response = client.get(f"/messages/{bob}")
    client.cookies.clear()
    assert response.status_code == 200


# =============================================================================
# messages
# =============================================================================


def test_send_returns_created_message(client, store, alice, bob):
    response = send(client, alice, bob, "hello", client_message_id="c-9")

    assert response.status_code == 201
    body = response.json()
    assert body["sender_id"] == alice
    assert body["receiver_id"] == bob
    assert body["message"] == "hello"
    assert body["read"] is False
    assert body["client_message_id"] == "c-9"
    assert body["id"] in store.messages


@pytest.mark.parametrize("text", ["", "   "])
def test_blank_message_is_400(client, store, alice, bob, text):
    response = send(client, alice, bob, text)

    assert response.status_code == 400
    assert response.json()["detail"] == "Message cannot be empty"
    assert store.messages == {}


def test_sending_to_yourself_is_400(client, alice):
    assert send(client, alice, alice, "me").status_code == 400


def test_store_outage_is_500_without_internals(client, store, alice, bob):
    store.broken.add("save_message")

    response = send(client, alice, bob, "hi")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


def test_fetching_conversation_marks_it_read(client, store, alice, bob):
    sent = send(client, alice, bob, "one").json()
    send(client, bob, alice, "two")

    assert client.get(f"/messages/unread/{alice}", headers=auth(bob)).json() == {"sender_id": alice, "count": 1}

    response = client.get(f"/messages/{alice}", headers=auth(bob))

    assert response.status_code == 200
    assert [m["message"] for m in response.json()] == ["one", "two"]
    assert store.messages[sent["id"]]["read"] is True
    assert client.get(f"/messages/unread/{alice}", headers=auth(bob)).json()["count"] == 0


def test_empty_conversation_is_an_empty_list(client, alice, bob):
    response = client.get(f"/messages/{bob}", headers=auth(alice))
    assert response.status_code == 200
    assert response.json() == []


def test_edit_by_sender(client, alice, bob):
    sent = send(client, alice, bob, "helo").json()

    response = client.patch(f"/messages/message/{sent['id']}", json={"message": "hello"}, headers=auth(alice))

    assert response.status_code == 200
    assert response.json()["message"] == "hello"


def test_edit_by_receiver_is_403(client, store, alice, bob):
    sent = send(client, alice, bob, "mine").json()

    response = client.patch(f"/messages/message/{sent['id']}", json={"message": "x"}, headers=auth(bob))

    assert response.status_code == 403
    assert store.messages[sent["id"]]["message"] == "mine"


def test_edit_missing_message_is_404(client, alice):
    response = client.patch("/messages/message/0123456789abcdef01234567", json={"message": "x"}, headers=auth(alice))
    assert response.status_code == 404


def test_delete_message(client, store, alice, bob):
    sent = send(client, alice, bob, "oops").json()

    assert client.delete(f"/messages/message/{sent['id']}", headers=auth(bob)).status_code == 403
    response = client.delete(f"/messages/message/{sent['id']}", headers=auth(alice))

    assert response.status_code == 200
    assert sent["id"] not in store.messages


def test_delete_conversation(client, store, alice, bob):
    send(client, alice, bob, "one")
    send(client, bob, alice, "two")

    response = client.delete(f"/messages/conversation/{alice}", headers=auth(bob))

    assert response.status_code == 200
    assert response.json()["deleted_messages"] == 2
    assert store.conversations == {}
    assert client.get(f"/messages/{bob}", headers=auth(alice)).json() == []
    assert client.delete(f"/messages/conversation/{alice}", headers=auth(bob)).status_code == 404


# =============================================================================
# conversations / users / presence
# =============================================================================


def test_conversations_are_listed_for_participants_only(client, store, alice, bob):
    carol = store.add_user("Carol", "carol")
    send(client, alice, bob, "hi")

    mine = client.get("/conversations", headers=auth(alice)).json()
    theirs = client.get("/conversations", headers=auth(carol)).json()

    assert len(mine["items"]) == 1
    assert mine["items"][0]["last_message_preview"] == "hi"
    assert theirs["items"] == []


def test_sidebar_lists_other_users_with_unread_counts(client, store, alice, bob):
    store.users[alice]["password"] = "secret"
    send(client, alice, bob, "1")
    send(client, alice, bob, "2")

    response = client.get("/users", headers=auth(bob))

    assert response.status_code == 200
    [row] = response.json()
    assert row["id"] == alice
    assert row["full_name"] == "Alice Liddell"
    assert row["unread_count"] == 2
    assert "password" not in row


def test_unread_counts_endpoint(client, alice, bob):
    send(client, alice, bob, "1")

    assert client.get("/users/unread", headers=auth(bob)).json() == {alice: 1}
    assert client.get("/users/unread", headers=auth(alice)).json() == {}


def test_presence_reflects_live_connections(client, alice, bob):
    assert client.get(f"/presence/{alice}").json() == {"user_id": alice, "online": False}

    with client.websocket_connect(f"/ws?token={make_token(alice)}") as ws:
        assert ws.receive_json()["data"] == [alice]
        assert client.get(f"/presence/{alice}").json()["online"] is True
        assert client.get("/presence").json() == {"online_users": [alice]}

    assert client.get(f"/presence/{alice}").json()["online"] is False


def test_root_reports_status(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["online"] == 0
