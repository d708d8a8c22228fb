# tests/conftest.py
import copy
import itertools
import uuid
from collections import defaultdict
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from task_service.db import SERVER_TIMESTAMP, DocumentNotFound, get_store, get_identity_provider
from task_service.errors import ConflictError
from task_service.main import app

TEST_PASSWORD = "password123"


class InMemoryStore:
    """Sustituto de FirestoreStore que guarda los documentos en diccionarios."""

    def __init__(self):
        self.collections = defaultdict(dict)
        self._ids = itertools.count(1)

    @staticmethod
    def _resolve(data):
        now = datetime.now(timezone.utc)
        return copy.deepcopy({k: (now if v is SERVER_TIMESTAMP else v) for k, v in data.items()})

    def _docs(self, collection):
        return [{"id": doc_id, **copy.deepcopy(data)} for doc_id, data in self.collections[collection].items()]

    async def get(self, collection, doc_id):
        data = self.collections[collection].get(doc_id)
        if data is None:
            return None
        return {"id": doc_id, **copy.deepcopy(data)}

    async def find(self, collection, **equals):
        return [d for d in self._docs(collection) if all(d.get(k) == v for k, v in equals.items())]

    async def find_containing(self, collection, field, value):
        return [d for d in self._docs(collection) if value in (d.get(field) or [])]

    async def _insert(self, collection, data):
        doc_id = f"doc{next(self._ids)}"
        self.collections[collection][doc_id] = self._resolve(data)
        return doc_id

    async def set(self, collection, doc_id, data):
        self.collections[collection][doc_id] = self._resolve(data)

    async def update(self, collection, doc_id, data):
        if doc_id not in self.collections[collection]:
            raise DocumentNotFound(collection, doc_id)
        self.collections[collection][doc_id].update(self._resolve(data))

    async def delete(self, collection, doc_id):
        self.collections[collection].pop(doc_id, None)

    async def create_unique(self, collection, unique, data):
        if await self.find(collection, **unique):
            return None
        return await self._insert(collection, data)

    async def ping(self):
        return None


class FakeIdentityProvider:
    """Sustituto de Firebase Auth que registra altas y bajas."""

    def __init__(self):
        self.users = {}
        self.deleted = []

    async def create_user(self, email, password, display_name):
        if any(u["email"] == email for u in self.users.values()):
            raise ConflictError("El correo electrónico ya está registrado")
        uid = uuid.uuid4().hex
        self.users[uid] = {"email": email, "display_name": display_name}
        return uid

    async def delete_user(self, uid):
        self.users.pop(uid, None)
        self.deleted.append(uid)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def client(store, identity_provider):
    """Cliente HTTP contra la app con Firestore y Firebase Auth sustituidos."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def registered_user(client):
    """Registra un usuario único y devuelve sus credenciales junto con su uid."""
    email = f"testuser_{uuid.uuid4().hex[:8]}@example.com"
    payload = {"username": "tester", "email": email, "password": TEST_PASSWORD}
    r = client.post("/api/register", json=payload)
    assert r.status_code == 201, r.text
    return {**payload, "uid": r.json()["uid"]}


@pytest.fixture
def task_payload():
    return {
        "category": "Urgente",
        "deadline": "2030-01-15T10:00:00Z",
        "description": "Preparar el informe mensual",
        "nameTask": "Informe",
        "status": "Pendiente",
        "userId": "user-1",
    }
