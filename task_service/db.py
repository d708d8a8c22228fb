"""Conexión con Firebase: Firestore como almacén de documentos y Firebase Auth como proveedor de identidad."""

import os
import logging
from typing import Dict, List, Optional, Any

import firebase_admin
from firebase_admin import auth, credentials, firestore_async
from fastapi import HTTPException
from fastapi.concurrency import run_in_threadpool
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore import SERVER_TIMESTAMP, async_transactional
from google.cloud.firestore_v1.base_query import FieldFilter
from dotenv import load_dotenv

from .errors import ConflictError

# Configuración del logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Carga variables de entorno desde el archivo .env
load_dotenv()

__all__ = ["SERVER_TIMESTAMP", "DocumentNotFound", "FirestoreStore", "FirebaseIdentityProvider", "get_store", "get_identity_provider"]


class DocumentNotFound(Exception):
    """Se intentó actualizar un documento que no existe."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} no existe")
        self.collection = collection
        self.doc_id = doc_id


class FirestoreStore:
    """
    Adaptador mínimo sobre el cliente asíncrono de Firestore.

    Todos los documentos se devuelven como diccionarios con su id en la clave 'id'.
    """

    def __init__(self, client):
        self.client = client

    @staticmethod
    def _to_dict(snapshot) -> Dict[str, Any]:
        return {"id": snapshot.id, **(snapshot.to_dict() or {})}

    def _filtered(self, collection: str, equals: Dict[str, Any]):
        query = self.client.collection(collection)
        for field, value in equals.items():
            query = query.where(filter=FieldFilter(field, "==", value))
        return query

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snapshot = await self.client.collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        return self._to_dict(snapshot)

    async def find(self, collection: str, **equals) -> List[Dict[str, Any]]:
        """Documentos cuyos campos son iguales a los valores dados (todos los documentos si no hay filtros)."""
        snapshots = await self._filtered(collection, equals).get()
        return [self._to_dict(s) for s in snapshots]

    async def find_containing(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        """Documentos cuyo campo de tipo arreglo contiene el valor."""
        query = self.client.collection(collection).where(filter=FieldFilter(field, "array_contains", value))
        snapshots = await query.get()
        return [self._to_dict(s) for s in snapshots]

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self.client.collection(collection).document(doc_id).set(data)

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            await self.client.collection(collection).document(doc_id).update(data)
        except google_exceptions.NotFound as e:
            raise DocumentNotFound(collection, doc_id) from e

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.client.collection(collection).document(doc_id).delete()

    async def create_unique(self, collection: str, unique: Dict[str, Any], data: Dict[str, Any]) -> Optional[str]:
        """
        Crea el documento sólo si ningún otro comparte los valores de 'unique'.
        La consulta y la creación corren en la misma transacción.

        Returns:
            El id del documento creado, o None si ya existía uno igual.
        """
        collection_ref = self.client.collection(collection)
        query = self._filtered(collection, unique).limit(1)
        doc_ref = collection_ref.document()

        @async_transactional
        async def _create(transaction):
            existing = await query.get(transaction=transaction)
            if existing:
                return None
            transaction.create(doc_ref, data)
            return doc_ref.id

        return await _create(self.client.transaction())

    async def ping(self) -> None:
        await self.client.collection("users").limit(1).get()


class FirebaseIdentityProvider:
    """Alta y baja de cuentas en Firebase Authentication."""

    def __init__(self, app):
        self.app = app

    async def create_user(self, email: str, password: str, display_name: str) -> str:
        try:
            # El SDK de Auth es bloqueante
            record = await run_in_threadpool(
                auth.create_user,
                email=email,
                password=password,
                display_name=display_name,
                app=self.app,
            )
        except auth.EmailAlreadyExistsError:
            logger.warning(f"Firebase Auth rechazó el email {email}: ya existe.")
            raise ConflictError("El correo electrónico ya está registrado")
        return record.uid

    async def delete_user(self, uid: str) -> None:
        await run_in_threadpool(auth.delete_user, uid, app=self.app)


# --- Inicialización de Firebase ---
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")
FIREBASE_PRIVATE_KEY = os.getenv("FIREBASE_PRIVATE_KEY")
FIREBASE_CLIENT_EMAIL = os.getenv("FIREBASE_CLIENT_EMAIL")

required_firebase_vars = {"FIREBASE_PROJECT_ID", "FIREBASE_PRIVATE_KEY", "FIREBASE_CLIENT_EMAIL"}
missing_vars = required_firebase_vars - set(os.environ)

firebase_app = None
store: Optional[FirestoreStore] = None
identity_provider: Optional[FirebaseIdentityProvider] = None

if missing_vars:
    logger.error(f"Faltan variables de entorno para Firebase: {', '.join(sorted(missing_vars))}")
else:
    try:
        service_account = {
            "type": "service_account",
            "project_id": FIREBASE_PROJECT_ID,
            # Las claves en .env suelen llevar '\n' escapados
            "private_key": FIREBASE_PRIVATE_KEY.replace("\\n", "\n"),
            "client_email": FIREBASE_CLIENT_EMAIL,
            "token_uri": "https://oauth2.googleapis.com/token",
        }
        firebase_app = firebase_admin.initialize_app(credentials.Certificate(service_account))
        store = FirestoreStore(firestore_async.client(firebase_app))
        identity_provider = FirebaseIdentityProvider(firebase_app)
        logger.info(f"Firebase inicializado para el proyecto {FIREBASE_PROJECT_ID}.")
    except Exception as e:
        logger.error(f"Error al inicializar Firebase: {e}", exc_info=True)
        firebase_app = None


# --- Funciones de Dependencia para FastAPI ---
def get_store() -> FirestoreStore:
    """Dependencia de FastAPI que entrega el almacén de documentos."""
    if store is None:
        logger.error("El cliente de Firestore no está inicializado.")
        raise HTTPException(status_code=503, detail="Servicio de base de datos no disponible.")
    return store


def get_identity_provider() -> FirebaseIdentityProvider:
    """Dependencia de FastAPI que entrega el proveedor de identidad."""
    if identity_provider is None:
        logger.error("Firebase Auth no está inicializado.")
        raise HTTPException(status_code=503, detail="Servicio de autenticación no disponible.")
    return identity_provider
