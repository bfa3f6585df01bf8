"""
End-to-end chat scenarios over the /ws socket and the chat REST endpoints,
driven through FastAPI's TestClient.
"""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from bazaar.core.config import settings
from bazaar.core.main import app
from bazaar.core.memory.db import db_session
from bazaar.core.memory.repository import ChatRepository, ListingRepository, MessageRepository


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _auth(ws, token):
    ws.send_json({"type": "auth", "token": token})
    return ws.receive_json()


def _headers(user):
    return {"Authorization": f"Bearer {user['access']}"}


def test_buyer_message_reaches_online_seller(client, marketplace):
    with client.websocket_connect("/ws") as buyer, client.websocket_connect("/ws") as seller:
        assert _auth(buyer, marketplace["a"]["refresh"]) == {"type": "auth", "status": "success"}
        assert _auth(seller, marketplace["b"]["refresh"]) == {"type": "auth", "status": "success"}

        buyer.send_json({"type": "chat_message", "chatId": "chat-1", "content": "hello"})
        sent = buyer.receive_json()
        delivered = seller.receive_json()

    assert sent["type"] == "message_sent"
    assert delivered["type"] == "new_message"
    assert delivered["chatId"] == "chat-1"
    assert delivered["message"] == sent["message"]
    assert sent["message"]["senderId"] == "user-a"
    assert sent["message"]["message"] == "hello"
    assert sent["message"]["isRead"] is False

    with db_session() as db:
        rows = MessageRepository.list_for_chat(db, "chat-1")
        assert [(r.sender_id, r.message) for r in rows] == [("user-a", "hello")]
        assert ChatRepository.get_by_id(db, "chat-1").last_message_at == rows[0].created_at


def test_message_to_offline_seller_is_stored(client, marketplace):
    with client.websocket_connect("/ws") as buyer:
        _auth(buyer, marketplace["a"]["refresh"])
        buyer.send_json({"type": "chat_message", "chatId": "chat-1", "content": "are you there?"})
        assert buyer.receive_json()["type"] == "message_sent"

    response = client.get("/api/chats/chat-1/messages", headers=_headers(marketplace["b"]))
    assert response.status_code == 200
    assert [m["message"] for m in response.json()] == ["are you there?"]


def test_chat_message_before_auth_gets_error(client, marketplace):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "chat_message", "chatId": "chat-1", "content": "sneaky"})
        assert ws.receive_json() == {"type": "error", "message": "Not authenticated"}
        # Connection stays usable
        assert _auth(ws, marketplace["a"]["refresh"])["status"] == "success"

    with db_session() as db:
        assert MessageRepository.list_for_chat(db, "chat-1") == []


def test_bad_token_gets_failed_status_and_close(client, marketplace):
    with client.websocket_connect("/ws") as ws:
        assert _auth(ws, "forged-token") == {"type": "auth", "status": "failed"}
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4001


def test_malformed_frames_keep_connection_open(client, marketplace):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("definitely not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}
        ws.send_json({"type": "teleport"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown message type: teleport"}
        ws.send_bytes(b"\x00\x01")
        assert ws.receive_json()["type"] == "error"
        assert _auth(ws, marketplace["a"]["refresh"])["status"] == "success"


def test_outsider_cannot_post_into_chat(client, marketplace):
    with client.websocket_connect("/ws") as outsider:
        _auth(outsider, marketplace["c"]["refresh"])
        outsider.send_json({"type": "chat_message", "chatId": "chat-1", "content": "hi"})
        assert outsider.receive_json() == {
            "type": "error",
            "message": "Not authorized to send messages in this chat",
        }
        outsider.send_json({"type": "chat_message", "chatId": "chat-404", "content": "hi"})
        assert outsider.receive_json() == {"type": "error", "message": "Chat not found"}

    with db_session() as db:
        assert MessageRepository.list_for_chat(db, "chat-1") == []


def test_second_device_takes_over_routing(client, marketplace):
    with client.websocket_connect("/ws") as phone, \
            client.websocket_connect("/ws") as laptop, \
            client.websocket_connect("/ws") as seller:
        _auth(phone, marketplace["a"]["refresh"])
        _auth(laptop, marketplace["a"]["refresh"])
        _auth(seller, marketplace["b"]["refresh"])

        seller.send_json({"type": "chat_message", "chatId": "chat-1", "content": "yes, available"})
        assert seller.receive_json()["type"] == "message_sent"
        assert laptop.receive_json()["type"] == "new_message"

        # The superseded device is still open; its next frame is its own confirmation,
        # so no new_message was routed to it.
        phone.send_json({"type": "chat_message", "chatId": "chat-1", "content": "great"})
        assert phone.receive_json()["type"] == "message_sent"
        assert seller.receive_json()["message"]["message"] == "great"


def test_reauth_on_same_connection_is_rejected(client, marketplace):
    with client.websocket_connect("/ws") as ws:
        _auth(ws, marketplace["a"]["refresh"])
        assert _auth(ws, marketplace["b"]["refresh"]) == {"type": "error", "message": "Already authenticated"}


def test_disconnect_unbinds_user(client, marketplace):
    with client.websocket_connect("/ws") as seller:
        _auth(seller, marketplace["b"]["refresh"])
        assert client.get("/health").json()["live_connections"] == 1
    with client.websocket_connect("/ws") as buyer:
        _auth(buyer, marketplace["a"]["refresh"])
        buyer.send_json({"type": "chat_message", "chatId": "chat-1", "content": "ping"})
        assert buyer.receive_json()["type"] == "message_sent"
        assert not app.state.connection_registry.is_connected("user-b")


def test_unauthenticated_connection_times_out_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "ws_auth_timeout_seconds", 0.2)
    with client.websocket_connect("/ws") as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4001


def test_create_chat_is_get_or_create(client, marketplace):
    headers = _headers(marketplace["a"])
    existing = client.post("/api/chats", json={"sellerId": "user-b", "listingId": "listing-1"}, headers=headers)
    assert existing.status_code == 200
    assert existing.json()["id"] == "chat-1"

    with db_session() as db:
        ListingRepository.create(db, user_id="user-b", title="Desk", listing_id="listing-2")
    created = client.post("/api/chats", json={"sellerId": "user-b", "listingId": "listing-2"}, headers=headers)
    assert created.status_code == 201
    body = created.json()
    assert body["buyerId"] == "user-a" and body["sellerId"] == "user-b" and body["listingId"] == "listing-2"
    again = client.post("/api/chats", json={"sellerId": "user-b", "listingId": "listing-2"}, headers=headers)
    assert again.status_code == 200
    assert again.json()["id"] == body["id"]


def test_create_chat_validation(client, marketplace):
    headers = _headers(marketplace["b"])
    own = client.post("/api/chats", json={"sellerId": "user-b", "listingId": "listing-1"}, headers=headers)
    assert own.status_code == 400
    wrong_owner = client.post(
        "/api/chats", json={"sellerId": "user-c", "listingId": "listing-1"}, headers=_headers(marketplace["a"])
    )
    assert wrong_owner.status_code == 400
    assert client.post("/api/chats", json={"sellerId": "user-b", "listingId": "listing-1"}).status_code in (401, 403)


def test_list_chats_and_history_permissions(client, marketplace):
    listed = client.get("/api/chats", headers=_headers(marketplace["b"]))
    assert [c["id"] for c in listed.json()] == ["chat-1"]
    assert client.get("/api/chats", headers=_headers(marketplace["c"])).json() == []
    assert client.get("/api/chats/chat-1/messages", headers=_headers(marketplace["c"])).status_code == 403
    assert client.get("/api/chats/nope/messages", headers=_headers(marketplace["a"])).status_code == 404


def test_mark_read_endpoint(client, marketplace):
    with client.websocket_connect("/ws") as buyer:
        _auth(buyer, marketplace["a"]["refresh"])
        buyer.send_json({"type": "chat_message", "chatId": "chat-1", "content": "is it new?"})
        buyer.receive_json()

    read = client.post("/api/chats/chat-1/read", headers=_headers(marketplace["b"]))
    assert read.status_code == 200
    assert read.json() == {"updated": 1}
    history = client.get("/api/chats/chat-1/messages", headers=_headers(marketplace["a"])).json()
    assert history[0]["isRead"] is True


def test_pathological_json_keeps_connection_open(client, marketplace):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("[" * 5000)
        assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}
        ws.send_text('{"type":"auth","token":"x","n":' + "1" * 5000 + "}")
        assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}
        assert _auth(ws, marketplace["a"]["refresh"])["status"] == "success"


def test_empty_token_gets_failed_status_and_close(client):
    with client.websocket_connect("/ws") as ws:
        assert _auth(ws, "") == {"type": "auth", "status": "failed"}
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4001
