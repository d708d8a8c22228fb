# tests/test_db.py
"""Pruebas de FirestoreStore y FirebaseIdentityProvider con clientes simulados."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from firebase_admin import auth
from google.api_core import exceptions as google_exceptions

from task_service import db
from task_service.db import DocumentNotFound, FirestoreStore, FirebaseIdentityProvider
from task_service.errors import ConflictError


def snapshot(doc_id, data, exists=True):
    return SimpleNamespace(id=doc_id, exists=exists, to_dict=lambda: data)


@pytest.fixture
def firestore_client():
    """Cliente de Firestore simulado: cada cadena collection().where()... devuelve el mismo mock."""
    return MagicMock()


@pytest.fixture
def passthrough_transaction(monkeypatch):
    """Ejecuta la función transaccional una sola vez con la transacción recibida."""
    monkeypatch.setattr(db, "async_transactional", lambda func: func)


def test_get_returns_document_with_id(firestore_client):
    document = firestore_client.collection.return_value.document.return_value
    document.get = AsyncMock(return_value=snapshot("t1", {"nameTask": "Informe"}))

    result = asyncio.run(FirestoreStore(firestore_client).get("task", "t1"))

    assert result == {"id": "t1", "nameTask": "Informe"}
    firestore_client.collection.assert_called_with("task")
    firestore_client.collection.return_value.document.assert_called_with("t1")


def test_get_missing_document(firestore_client):
    document = firestore_client.collection.return_value.document.return_value
    document.get = AsyncMock(return_value=snapshot("t1", None, exists=False))

    assert asyncio.run(FirestoreStore(firestore_client).get("task", "t1")) is None


def test_find_builds_equality_filters(firestore_client):
    query = firestore_client.collection.return_value.where.return_value
    query.get = AsyncMock(return_value=[snapshot("u1", {"email": "a@example.com"})])

    result = asyncio.run(FirestoreStore(firestore_client).find("users", email="a@example.com"))

    assert result == [{"id": "u1", "email": "a@example.com"}]
    field_filter = firestore_client.collection.return_value.where.call_args.kwargs["filter"]
    assert (field_filter.field_path, field_filter.op_string, field_filter.value) == ("email", "==", "a@example.com")


def test_find_containing_uses_array_filter(firestore_client):
    query = firestore_client.collection.return_value.where.return_value
    query.get = AsyncMock(return_value=[])

    assert asyncio.run(FirestoreStore(firestore_client).find_containing("groups", "members", "m1")) == []
    field_filter = firestore_client.collection.return_value.where.call_args.kwargs["filter"]
    assert field_filter.op_string == "array_contains"


def test_update_missing_document_raises(firestore_client):
    document = firestore_client.collection.return_value.document.return_value
    document.update = AsyncMock(side_effect=google_exceptions.NotFound("no document to update"))

    with pytest.raises(DocumentNotFound) as exc_info:
        asyncio.run(FirestoreStore(firestore_client).update("users", "nope", {"rol": "Empleado"}))

    assert exc_info.value.collection == "users"
    assert exc_info.value.doc_id == "nope"


def test_create_unique_skips_existing(firestore_client, passthrough_transaction):
    """Si la consulta dentro de la transacción encuentra un documento no se crea otro."""
    transaction = firestore_client.transaction.return_value
    query = firestore_client.collection.return_value.where.return_value.where.return_value.limit.return_value
    query.get = AsyncMock(return_value=[snapshot("t1", {"nameTask": "Informe"})])

    result = asyncio.run(FirestoreStore(firestore_client).create_unique(
        "task", {"nameTask": "Informe", "userId": "user-1"}, {"nameTask": "Informe"},
    ))

    assert result is None
    query.get.assert_awaited_once_with(transaction=transaction)
    transaction.create.assert_not_called()


def test_create_unique_creates_in_transaction(firestore_client, passthrough_transaction):
    transaction = firestore_client.transaction.return_value
    query = firestore_client.collection.return_value.where.return_value.where.return_value.limit.return_value
    query.get = AsyncMock(return_value=[])
    new_ref = firestore_client.collection.return_value.document.return_value
    new_ref.id = "nuevo"
    data = {"nameTask": "Informe", "userId": "user-1"}

    result = asyncio.run(FirestoreStore(firestore_client).create_unique(
        "task", {"nameTask": "Informe", "userId": "user-1"}, data,
    ))

    assert result == "nuevo"
    query.get.assert_awaited_once_with(transaction=transaction)
    transaction.create.assert_called_once_with(new_ref, data)


def test_identity_provider_maps_duplicate_email(monkeypatch):
    def create_user(**kwargs):
        raise auth.EmailAlreadyExistsError("The user with the provided email already exists", None, None)

    monkeypatch.setattr(db.auth, "create_user", create_user)
    provider = FirebaseIdentityProvider(app=None)

    with pytest.raises(ConflictError):
        asyncio.run(provider.create_user("a@example.com", "secreta1", "ana"))


def test_identity_provider_create_and_delete(monkeypatch):
    calls = {}

    def create_user(**kwargs):
        calls["create"] = kwargs
        return SimpleNamespace(uid="uid-1")

    def delete_user(uid, app=None):
        calls["delete"] = uid

    monkeypatch.setattr(db.auth, "create_user", create_user)
    monkeypatch.setattr(db.auth, "delete_user", delete_user)
    provider = FirebaseIdentityProvider(app=None)

    assert asyncio.run(provider.create_user("a@example.com", "secreta1", "ana")) == "uid-1"
    assert calls["create"]["display_name"] == "ana"
    asyncio.run(provider.delete_user("uid-1"))
    assert calls["delete"] == "uid-1"
