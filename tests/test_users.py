# tests/test_users.py
from datetime import datetime, timezone


def test_list_users_empty(client):
    r = client.get("/api/usuarios")
    assert r.status_code == 404
    assert r.json() == {"message": "No hay usuarios registrados"}


def test_list_users(client, store, registered_user):
    store.collections["users"]["legacy"] = {"email": "viejo@example.com"}

    r = client.get("/api/usuarios")
    assert r.status_code == 200
    users = {u["id"]: u for u in r.json()}

    assert users[registered_user["uid"]]["rol"] == "Empleado"
    assert users[registered_user["uid"]]["last_login"].endswith("Z")
    assert "password" not in users[registered_user["uid"]]
    assert users["legacy"]["username"] == "No disponible"
    assert users["legacy"]["last_login"] == "No disponible"


def test_update_user(client, store, registered_user):
    r = client.put(f"/api/usuarios/{registered_user['uid']}", json={
        "email": "nuevo@example.com",
        "username": "nuevo",
        "rol": "Administrador",
    })

    assert r.status_code == 200
    doc = store.collections["users"][registered_user["uid"]]
    assert doc["email"] == "nuevo@example.com"
    assert doc["rol"] == "Administrador"


def test_update_unknown_user(client):
    r = client.put("/api/usuarios/nope", json={"email": "a@example.com", "username": "a", "rol": "Empleado"})
    assert r.status_code == 404


def test_unhandled_error_returns_500_with_message(client, store, monkeypatch):
    async def broken_find(collection, **equals):
        raise RuntimeError("deadline exceeded")

    monkeypatch.setattr(store, "find", broken_find)
    r = client.get("/api/usuarios")

    assert r.status_code == 500
    assert r.json() == {"message": "deadline exceeded"}


def test_health_and_metrics(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["database"] == "ok"

    client.get("/api/groups/abc123", params={})
    r = client.get("/metrics")
    assert r.status_code == 200
    assert 'endpoint="/api/groups/{id}"' in r.text


def test_unknown_route_uses_message_body(client):
    r = client.get("/api/no-existe")
    assert r.status_code == 404
    assert "message" in r.json()


def test_last_login_timestamp_serialized(client, store):
    store.collections["users"]["u1"] = {
        "email": "a@example.com",
        "username": "a",
        "rol": "Empleado",
        "last_login": datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc),
    }
    r = client.get("/api/usuarios")
    assert r.json()[0]["last_login"] == "2024-03-01T12:30:00.000Z"


def test_malformed_document_does_not_leak_details(client, store):
    """Un documento con una forma inesperada produce un 500 sin detalles internos."""
    store.collections["groups"]["legacy"] = {"name": "Viejo", "created_by": "u1", "members": [1, 2]}

    r = client.get("/api/groups/legacy")
    assert r.status_code == 500
    assert r.json() == {"message": "Error interno al construir la respuesta"}
