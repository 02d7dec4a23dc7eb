from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.api.dependencies import get_user_service
from app.core.security import create_access_token
from app.models.user import User

from conftest import auth, wait_for_connections


@pytest.fixture
def admin_token(register, login):
    register("Admin", "admin@x.com")
    return login("admin@x.com")


def test_list_requires_token(client):
    response = client.get("/api/users")

    assert response.status_code == 401
    assert response.json()["detail"] == "Access denied. No token provided."


def test_list_rejects_non_bearer_scheme(client, admin_token):
    response = client.get("/api/users", headers={"Authorization": f"Token {admin_token}"})
    assert response.status_code == 401


def test_list_rejects_invalid_token(client):
    response = client.get("/api/users", headers=auth("garbage"))

    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid token."


def test_list_rejects_expired_token(client, admin_token, user_id, settings):
    expired = create_access_token(
        {"sub": str(user_id("admin@x.com")), "email": "admin@x.com"},
        expires_delta=timedelta(seconds=-1),
        secret_key=settings.SECRET_KEY,
    )

    assert client.get("/api/users", headers=auth(admin_token)).status_code == 200
    assert client.get("/api/users", headers=auth(expired)).status_code == 403


def test_list_returns_users_without_password_hash(client, register, admin_token):
    register("Alice", "alice@x.com")

    response = client.get("/api/users", headers=auth(admin_token))

    assert response.status_code == 200
    users = response.json()["users"]
    assert {u["email"] for u in users} == {"admin@x.com", "alice@x.com"}
    for entry in users:
        assert set(entry) == {"id", "name", "email", "last_login", "status"}
        assert entry["status"] == "active"


def test_list_orders_by_most_recent_login(client, register, login, admin_token):
    register("Alice", "alice@x.com")
    register("Bob", "bob@x.com")
    login("alice@x.com")

    users = client.get("/api/users", headers=auth(admin_token)).json()["users"]

    assert [u["email"] for u in users] == ["alice@x.com", "bob@x.com", "admin@x.com"]


def test_block_and_unblock_change_status(client, register, admin_token, user_id, db, broadcaster):
    register("Alice", "alice@x.com")
    alice_id = user_id("alice@x.com")

    response = client.put(f"/api/users/block/{alice_id}", headers=auth(admin_token))
    assert response.status_code == 200
    assert response.json()["message"] == "User has been blocked."
    assert db.get(User, alice_id).status == "blocked"

    response = client.put(f"/api/users/unblock/{alice_id}", headers=auth(admin_token))
    assert response.status_code == 200
    assert response.json()["message"] == "User has been unblocked."
    db.expire_all()
    assert db.get(User, alice_id).status == "active"
    assert broadcaster.events == ["usersUpdated", "usersUpdated"]


def test_block_is_idempotent(client, register, admin_token, user_id, broadcaster):
    register("Alice", "alice@x.com")
    alice_id = user_id("alice@x.com")

    first = client.put(f"/api/users/block/{alice_id}", headers=auth(admin_token))
    second = client.put(f"/api/users/block/{alice_id}", headers=auth(admin_token))

    assert first.status_code == second.status_code == 200
    assert broadcaster.events == ["usersUpdated", "usersUpdated"]


@pytest.mark.parametrize("path", ["/api/users/block/9999", "/api/users/unblock/9999"])
def test_status_change_on_missing_user_is_404(client, admin_token, broadcaster, path):
    response = client.put(path, headers=auth(admin_token))

    assert response.status_code == 404
    assert response.json()["detail"] == "User not found."
    assert broadcaster.events == []


def test_non_integer_id_is_400(client, admin_token):
    response = client.put("/api/users/block/abc", headers=auth(admin_token))
    assert response.status_code == 400


def test_delete_missing_user_leaves_store_unchanged(client, register, admin_token, db):
    register("Alice", "alice@x.com")

    response = client.delete("/api/users/9999", headers=auth(admin_token))

    assert response.status_code == 404
    assert db.query(User).count() == 2


def test_delete_removes_only_target(client, register, admin_token, user_id, db, broadcaster):
    register("Alice", "alice@x.com")
    register("Bob", "bob@x.com")
    alice_id = user_id("alice@x.com")

    response = client.delete(f"/api/users/{alice_id}", headers=auth(admin_token))

    assert response.status_code == 200
    assert response.json()["message"] == "User has been deleted."
    remaining = {u.email for u in db.query(User).all()}
    assert remaining == {"admin@x.com", "bob@x.com"}
    assert broadcaster.events == ["usersUpdated"]


def test_blocked_caller_with_valid_token_cannot_act(client, register, login, admin_token, user_id):
    register("Bob", "bob@x.com")
    bob_token = login("bob@x.com")
    admin_id = user_id("admin@x.com")
    bob_id = user_id("bob@x.com")

    client.put(f"/api/users/block/{bob_id}", headers=auth(admin_token))

    for method, path in [
        ("put", f"/api/users/block/{admin_id}"),
        ("put", f"/api/users/unblock/{bob_id}"),
        ("delete", f"/api/users/{admin_id}"),
        ("get", "/api/users"),
    ]:
        response = getattr(client, method)(path, headers=auth(bob_token))
        assert response.status_code == 403, path
        assert response.json()["detail"] == "You are blocked. Action not allowed."


def test_blocking_yourself_locks_you_out(client, admin_token, user_id):
    admin_id = user_id("admin@x.com")

    assert client.put(f"/api/users/block/{admin_id}", headers=auth(admin_token)).status_code == 200
    assert client.put(f"/api/users/unblock/{admin_id}", headers=auth(admin_token)).status_code == 403


def test_deleted_caller_token_no_longer_works(client, register, login, admin_token, user_id):
    register("Alice", "alice@x.com")
    alice_token = login("alice@x.com")

    client.delete(f"/api/users/{user_id('alice@x.com')}", headers=auth(alice_token))

    response = client.get("/api/users", headers=auth(alice_token))
    assert response.status_code == 404


def test_websocket_connect_and_disconnect(client, broadcaster):
    with client.websocket_connect("/ws"):
        wait_for_connections(broadcaster, 1)
    wait_for_connections(broadcaster, 0)


def test_binary_and_text_frames_are_ignored(client, register, admin_token, user_id, broadcaster):
    register("Alice", "alice@x.com")

    with client.websocket_connect("/ws") as ws:
        ws.send_bytes(b"ping")
        ws.send_text("hello")
        wait_for_connections(broadcaster, 1)

        response = client.put(f"/api/users/block/{user_id('alice@x.com')}", headers=auth(admin_token))

        assert response.status_code == 200
        assert ws.receive_json() == {"event": "usersUpdated"}
        assert broadcaster.connection_count == 1


def test_block_scenario_notifies_every_open_channel(client, register, login, user_id, broadcaster):
    assert register("Alice", "alice@x.com").status_code == 201
    assert register("Admin", "admin@x.com").status_code == 201
    token = login("alice@x.com")

    users = client.get("/api/users", headers=auth(token)).json()["users"]
    alice = next(u for u in users if u["email"] == "alice@x.com")
    assert alice["status"] == "active"

    admin_token = login("admin@x.com")
    with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
        wait_for_connections(broadcaster, 2)

        response = client.put(f"/api/users/block/{alice['id']}", headers=auth(admin_token))

        assert response.status_code == 200
        assert first.receive_json() == {"event": "usersUpdated"}
        assert second.receive_json() == {"event": "usersUpdated"}

    users = client.get("/api/users", headers=auth(admin_token)).json()["users"]
    assert next(u for u in users if u["id"] == alice["id"])["status"] == "blocked"


def test_store_failure_is_generic_500(app, client, admin_token):
    failing = MagicMock()
    failing.list_users.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
    failing.set_status.side_effect = OperationalError("UPDATE", {}, Exception("connection refused"))
    app.dependency_overrides[get_user_service] = lambda: failing
    try:
        listed = client.get("/api/users", headers=auth(admin_token))
        blocked = client.put("/api/users/block/1", headers=auth(admin_token))
    finally:
        app.dependency_overrides.clear()

    assert listed.status_code == 500
    assert listed.json()["detail"] == "Could not fetch users."
    assert blocked.status_code == 500
    assert blocked.json()["detail"] == "Could not block user."
    assert "connection refused" not in listed.text
