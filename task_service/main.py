import os
import time
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, Depends, HTTPException, status, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, JSONResponse
from fastapi.security import OAuth2PasswordBearer
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from dotenv import load_dotenv

# Importaciones locales
from . import schemas
from .db import SERVER_TIMESTAMP, DocumentNotFound, FirestoreStore, FirebaseIdentityProvider, get_store, get_identity_provider
from .errors import (
    ValidationError,
    ConflictError,
    NotFoundError,
    AuthError,
    InvalidTokenError,
    AuthorizationError,
    register_exception_handlers,
)
from .models import (
    USERS_COLLECTION,
    TASKS_COLLECTION,
    GROUPS_COLLECTION,
    NOT_AVAILABLE,
    UserRole,
    TaskStatus,
    is_valid_category,
    is_list_status,
    is_board_status,
)
from .utils import (
    get_password_hash,
    verify_password,
    create_access_token,
    decode_token,
    is_valid_email,
    parse_deadline,
    format_last_login,
    to_iso,
    serialize_document,
)

load_dotenv()

# Configura logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

PORT = int(os.getenv("PORT", 3000))
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)

# Inicializa FastAPI
app = FastAPI(
    title="Task Service",
    description="Registro y login de usuarios, tareas y grupos de trabajo sobre Firestore.",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- Métricas Prometheus ---
REQUEST_COUNT = Counter(
    "tasks_requests_total",
    "Total requests processed by Task Service",
    ["method", "endpoint", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "tasks_request_latency_seconds",
    "Request latency in seconds for Task Service",
    ["endpoint"]
)
USERS_REGISTERED_COUNT = Counter("tasks_users_registered_total", "Usuarios registrados")
TASKS_CREATED_COUNT = Counter("tasks_tasks_created_total", "Tareas creadas")
GROUPS_CREATED_COUNT = Counter("tasks_groups_created_total", "Grupos creados")

# Rutas con un id en la posición 3: /api/<recurso>/<id>
TEMPLATED_RESOURCES = {"groups", "tareas", "usuarios"}


def _endpoint_label(path: str) -> str:
    """Colapsa los ids de la ruta para no crear una serie de métricas por documento."""
    parts = path.split("/")
    if len(parts) == 4 and parts[1] == "api" and parts[2] in TEMPLATED_RESOURCES:
        return f"/api/{parts[2]}/{{id}}"
    return path


# --- Middleware para Métricas ---
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    response = None
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        # Cualquier fallo no previsto (Firestore, Firebase Auth, red) termina aquí
        logger.error(f"Unhandled exception during request processing: {exc}", exc_info=True)
        response = JSONResponse(status_code=500, content={"message": str(exc)})
    finally:
        latency = time.time() - start_time
        endpoint = _endpoint_label(request.url.path)
        final_status_code = getattr(response, 'status_code', status_code)
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=final_status_code
        ).inc()

    return response


# --- Endpoints de Salud y Métricas ---
@app.get("/metrics", tags=["Monitoring"])
def metrics():
    """Exposes application metrics for Prometheus."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", tags=["Monitoring"])
async def health_check(store: FirestoreStore = Depends(get_store)):
    """Performs a basic health check of the service and its Firestore connection."""
    try:
        await store.ping()
    except Exception as e:
        logger.error(f"Health check fallido - Error de Firestore: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail=f"Database connection error: {e}")
    return {"status": "ok", "service": "task_service", "database": "ok"}


# --- Helpers ---

def _serialize_task(task: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_document(task, "createdAt", "deadline", "updatedAt")


def _serialize_group(group: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_document(group, "created_at", "updatedAt")


def _serialize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "email": user.get("email") or NOT_AVAILABLE,
        "username": user.get("username") or NOT_AVAILABLE,
        "rol": user.get("rol") or NOT_AVAILABLE,
        "last_login": to_iso(user.get("last_login")) or NOT_AVAILABLE,
    }


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    store: FirestoreStore = Depends(get_store),
) -> Dict[str, Any]:
    """Resuelve la cuenta dueña del token Bearer de la petición."""
    if not token:
        raise InvalidTokenError("Cabecera Authorization ausente o inválida")
    payload = decode_token(token)
    if payload is None or not payload.get("uid"):
        raise InvalidTokenError("Token inválido o expirado")
    user = await store.get(USERS_COLLECTION, payload["uid"])
    if user is None:
        raise NotFoundError("Usuario no encontrado")
    return user


# --- Endpoints de Autenticación ---

@app.post("/api/register", response_model=schemas.RegisterResponse, status_code=status.HTTP_201_CREATED, tags=["Authentication"])
async def register(
    user: schemas.UserRegister,
    store: FirestoreStore = Depends(get_store),
    provider: FirebaseIdentityProvider = Depends(get_identity_provider),
):
    """
    Registers a new account.
    Creates the Firebase Auth user first and then its document in 'users'.
    If the document cannot be written, the Firebase Auth user is deleted again.
    """
    if not user.username or not user.email or not user.password:
        raise ValidationError("Todos los campos son obligatorios")

    if not is_valid_email(user.email):
        raise ValidationError("El formato del correo electrónico es inválido")

    logger.info(f"Registration attempt for email: {user.email}")
    existing = await store.find(USERS_COLLECTION, email=user.email)
    if existing:
        logger.warning(f"Registration failed: Email {user.email} already exists.")
        raise ConflictError("El correo electrónico ya está registrado")

    hashed_password = await run_in_threadpool(get_password_hash, user.password)

    uid = await provider.create_user(email=user.email, password=user.password, display_name=user.username)

    try:
        await store.set(USERS_COLLECTION, uid, {
            "email": user.email,
            "username": user.username,
            "last_login": SERVER_TIMESTAMP,
            "rol": UserRole.EMPLOYEE.value,
            "password": hashed_password,
        })
    except Exception as e:
        logger.error(f"Error al guardar el documento del usuario {uid}; revirtiendo alta en Firebase Auth: {e}", exc_info=True)
        try:
            await provider.delete_user(uid)
            logger.info(f"Usuario {uid} eliminado de Firebase Auth tras el fallo.")
        except Exception as cleanup_error:
            logger.critical(f"CRÍTICO: No se pudo eliminar el usuario {uid} de Firebase Auth: {cleanup_error}", exc_info=True)
        raise

    USERS_REGISTERED_COUNT.inc()
    logger.info(f"User created with uid: {uid} for email: {user.email}")
    return {"message": "Usuario registrado exitosamente", "uid": uid}


@app.post("/api/login", response_model=schemas.LoginResponse, tags=["Authentication"])
async def login(credentials: schemas.UserLogin, store: FirestoreStore = Depends(get_store)):
    """
    Authenticates an account by email and password.
    Returns a JWT valid for 10 minutes and a summary of the account.
    """
    if not credentials.email or not credentials.password:
        raise ValidationError("El correo y la contraseña son obligatorios")

    logger.info(f"Login attempt for user: {credentials.email}")
    users = await store.find(USERS_COLLECTION, email=credentials.email)
    if not users:
        logger.warning(f"Login failed: email {credentials.email} not found.")
        raise NotFoundError("Correo electrónico no encontrado")

    user = users[0]
    password_ok = await run_in_threadpool(verify_password, credentials.password, user.get("password"))
    if not password_ok:
        logger.warning(f"Login failed for user: {credentials.email}")
        raise AuthError("Contraseña incorrecta")

    last_login = format_last_login()
    await store.update(USERS_COLLECTION, user["id"], {"last_login": last_login})

    token = create_access_token({
        "sub": user["id"],
        "uid": user["id"],
        "email": user.get("email"),
        "username": user.get("username"),
    })
    logger.info(f"Login successful for uid: {user['id']}")

    return {
        "message": "Inicio de sesión exitoso",
        "token": token,
        "user": {
            "docId": user["id"],
            "email": user.get("email"),
            "username": user.get("username"),
            "rol": user.get("rol"),
            "last_login": last_login,
        },
    }


@app.get("/api/verify", response_model=schemas.TokenPayload, tags=["Authentication"])
def verify(token: str):
    """Validates a JWT passed as the 'token' query parameter and returns its payload."""
    payload = decode_token(token)
    if payload is None:
        raise InvalidTokenError("Token inválido o expirado")
    return payload


@app.get("/api/me", response_model=schemas.UserResponse, tags=["Authentication"])
async def read_me(user: Dict[str, Any] = Depends(get_current_user)):
    """Returns the account that owns the Bearer token."""
    return _serialize_user(user)


# --- Endpoints de Tareas ---

@app.post("/api/task", response_model=schemas.TaskCreatedResponse, status_code=status.HTTP_201_CREATED, tags=["Tasks"])
async def create_task(task: schemas.TaskCreate, store: FirestoreStore = Depends(get_store)):
    """
    Crea una tarea para un usuario.
    El nombre debe ser único entre las tareas del mismo usuario.
    """
    required = (task.category, task.deadline, task.description, task.nameTask, task.status, task.userId)
    if not all(required):
        raise ValidationError("Todos los campos son obligatorios, excepto el nombre del grupo")

    deadline = parse_deadline(task.deadline)
    if deadline is None:
        raise ValidationError("El formato de la fecha límite es inválido")

    logger.info(f"Usuario {task.userId} creando tarea '{task.nameTask}'")
    new_task = {
        "category": task.category,
        "deadline": deadline,
        "description": task.description,
        "nameTask": task.nameTask,
        "status": task.status,
        "userId": task.userId,
        "groupName": task.groupName or None,
        "createdAt": SERVER_TIMESTAMP,
    }
    task_id = await store.create_unique(
        TASKS_COLLECTION,
        {"nameTask": task.nameTask, "userId": task.userId},
        new_task,
    )
    if task_id is None:
        logger.warning(f"Tarea duplicada '{task.nameTask}' para el usuario {task.userId}")
        raise ConflictError("Ya existe una tarea con este nombre para este usuario")

    TASKS_CREATED_COUNT.inc()
    logger.info(f"Tarea {task_id} creada para el usuario {task.userId}")
    return {"message": "Tarea creada exitosamente", "id": task_id}


@app.get("/api/tasks", response_model=List[schemas.TaskResponse], tags=["Tasks"])
async def list_user_tasks(userId: Optional[str] = None, store: FirestoreStore = Depends(get_store)):
    """Lista las tareas de un usuario; lista vacía si no tiene ninguna."""
    if not userId:
        raise ValidationError("El userId es obligatorio")
    tasks = await store.find(TASKS_COLLECTION, userId=userId)
    return [_serialize_task(t) for t in tasks]


async def _set_task_status(store: FirestoreStore, task_id: Optional[str], new_status: TaskStatus) -> None:
    if not task_id:
        raise ValidationError("El ID de la tarea es obligatorio")
    if await store.get(TASKS_COLLECTION, task_id) is None:
        raise NotFoundError("Tarea no encontrada")
    await store.update(TASKS_COLLECTION, task_id, {"status": new_status.value})
    logger.info(f"Tarea {task_id} marcada como {new_status.value}")


@app.post("/api/task/complete", response_model=schemas.MessageResponse, tags=["Tasks"])
async def complete_task(body: schemas.TaskIdRequest, store: FirestoreStore = Depends(get_store)):
    await _set_task_status(store, body.taskId, TaskStatus.COMPLETED)
    return {"message": "Tarea completada exitosamente"}


@app.post("/api/task/pending", response_model=schemas.MessageResponse, tags=["Tasks"])
async def set_task_pending(body: schemas.TaskIdRequest, store: FirestoreStore = Depends(get_store)):
    await _set_task_status(store, body.taskId, TaskStatus.PENDING)
    return {"message": "Estado de tarea cambiado a pendiente"}


@app.delete("/api/task/delete", response_model=schemas.MessageResponse, tags=["Tasks"])
async def delete_task(body: schemas.TaskIdRequest, store: FirestoreStore = Depends(get_store)):
    if not body.taskId:
        raise ValidationError("El ID de la tarea es obligatorio")
    if await store.get(TASKS_COLLECTION, body.taskId) is None:
        raise NotFoundError("Tarea no encontrada")
    await store.delete(TASKS_COLLECTION, body.taskId)
    logger.info(f"Tarea {body.taskId} eliminada")
    return {"message": "Tarea eliminada exitosamente"}


@app.patch("/api/task/edit", response_model=schemas.MessageResponse, tags=["Tasks"])
async def edit_task(changes: schemas.TaskEdit, store: FirestoreStore = Depends(get_store)):
    """
    Actualiza sólo los campos enviados de una tarea.
    Categoría, estado y fecha límite se validan antes de escribir nada.
    """
    if not changes.taskId:
        raise ValidationError("El ID de la tarea es obligatorio")

    if await store.get(TASKS_COLLECTION, changes.taskId) is None:
        raise NotFoundError("Tarea no encontrada")

    if changes.category and not is_valid_category(changes.category):
        raise ValidationError("Categoría inválida")
    if changes.status and not is_list_status(changes.status):
        raise ValidationError("Estado inválido")

    updated_task: Dict[str, Any] = {}
    if changes.category:
        updated_task["category"] = changes.category
    if changes.deadline:
        deadline = parse_deadline(changes.deadline)
        if deadline is None:
            raise ValidationError("El formato de la fecha límite es inválido")
        updated_task["deadline"] = deadline
    if changes.description:
        updated_task["description"] = changes.description
    if changes.nameTask:
        updated_task["nameTask"] = changes.nameTask
    if changes.status:
        updated_task["status"] = changes.status

    if updated_task:
        await store.update(TASKS_COLLECTION, changes.taskId, updated_task)
        logger.info(f"Tarea {changes.taskId} actualizada: {', '.join(updated_task)}")
    return {"message": "Tarea actualizada exitosamente"}


@app.get("/api/tareas", response_model=List[schemas.TaskResponse], tags=["Tasks"])
async def list_group_tasks(groupId: Optional[str] = None, store: FirestoreStore = Depends(get_store)):
    """Tareas asignadas a un grupo (campo groupName), o todas si no se indica grupo."""
    if groupId:
        tasks = await store.find(TASKS_COLLECTION, groupName=groupId)
    else:
        tasks = await store.find(TASKS_COLLECTION)
    return [_serialize_task(t) for t in tasks]


@app.put("/api/tareas/{task_id}", response_model=schemas.MessageResponse, tags=["Tasks"])
async def update_board_status(task_id: str, body: schemas.TaskStatusUpdate, store: FirestoreStore = Depends(get_store)):
    """Cambia el estado de una tarea del tablero (Por hacer / En proceso / Hecho)."""
    if not body.status or not is_board_status(body.status):
        raise ValidationError("Estado inválido")
    try:
        await store.update(TASKS_COLLECTION, task_id, {"status": body.status})
    except DocumentNotFound:
        raise NotFoundError("Tarea no encontrada")
    return {"message": "Estado actualizado correctamente"}


# --- Endpoints de Grupos ---

def _is_member_list(members: Any) -> bool:
    return isinstance(members, list) and all(isinstance(m, str) for m in members)


@app.post("/api/groups", response_model=schemas.GroupResponse, status_code=status.HTTP_201_CREATED, tags=["Groups"])
async def create_group(group_in: schemas.GroupCreate, store: FirestoreStore = Depends(get_store)):
    """
    Crea un grupo. El nombre debe ser único entre los grupos del mismo creador.
    """
    if not group_in.created_by or not group_in.description or not group_in.name:
        raise ValidationError("Los campos created_by, descripción, miembros y nombre son obligatorios")
    if not _is_member_list(group_in.members):
        raise ValidationError("El campo miembros debe ser una lista de IDs de usuario")

    logger.info(f"Usuario {group_in.created_by} creando grupo con nombre: {group_in.name}")
    new_group = {
        "created_by": group_in.created_by,
        "description": group_in.description,
        "members": group_in.members,
        "name": group_in.name,
        "created_at": datetime.now(timezone.utc),
    }
    group_id = await store.create_unique(
        GROUPS_COLLECTION,
        {"created_by": group_in.created_by, "name": group_in.name},
        new_group,
    )
    if group_id is None:
        logger.warning(f"Grupo duplicado '{group_in.name}' para el usuario {group_in.created_by}")
        raise ConflictError("Ya existe un grupo con ese nombre para este usuario")

    GROUPS_CREATED_COUNT.inc()
    logger.info(f"Grupo {group_id} creado exitosamente por {group_in.created_by}")
    return _serialize_group({"id": group_id, **new_group})


async def _find_user_groups(store: FirestoreStore, user_id: str, include_created: bool) -> List[Dict[str, Any]]:
    """
    Grupos donde el usuario figura en 'members'. Con include_created, si no
    pertenece a ninguno se devuelven los grupos que creó.
    """
    groups = await store.find_containing(GROUPS_COLLECTION, "members", user_id)
    if not groups and include_created:
        logger.info(f"Sin grupos por membresía para {user_id}, buscando grupos creados...")
        groups = await store.find(GROUPS_COLLECTION, created_by=user_id)
    return [_serialize_group(g) for g in groups]


@app.get("/api/groups", response_model=List[schemas.GroupResponse], tags=["Groups"])
async def list_groups(userId: Optional[str] = None, store: FirestoreStore = Depends(get_store)):
    """Grupos del usuario por membresía, o los que creó si no es miembro de ninguno."""
    if not userId:
        raise ValidationError("El userId es obligatorio")
    logger.info(f"Buscando grupos para el userId: {userId}")
    groups = await _find_user_groups(store, userId, include_created=True)
    if not groups:
        raise NotFoundError("No se encontraron grupos para este usuario")
    return groups


@app.get("/api/misgrupos", response_model=List[schemas.GroupResponse], tags=["Groups"])
async def list_member_groups(userId: Optional[str] = None, store: FirestoreStore = Depends(get_store)):
    """Grupos en los que el usuario figura como miembro."""
    if not userId:
        raise ValidationError("El userId es obligatorio")
    groups = await _find_user_groups(store, userId, include_created=False)
    if not groups:
        raise NotFoundError("El usuario no pertenece a ningún grupo")
    return groups


@app.get("/api/groups/{group_id}", response_model=schemas.GroupResponse, tags=["Groups"])
async def get_group(group_id: str, store: FirestoreStore = Depends(get_store)):
    group = await store.get(GROUPS_COLLECTION, group_id)
    if group is None:
        raise NotFoundError("Grupo no encontrado")
    return _serialize_group(group)


@app.put("/api/groups/{group_id}", response_model=schemas.MessageResponse, tags=["Groups"])
async def edit_group(group_id: str, group_in: schemas.GroupUpdate, store: FirestoreStore = Depends(get_store)):
    """Reemplaza nombre, descripción y lista de miembros de un grupo."""
    if not group_in.name or not group_in.description or group_in.members is None:
        raise ValidationError("Los campos nombre, descripción y miembros son obligatorios")
    if not _is_member_list(group_in.members):
        raise ValidationError("El campo miembros debe ser una lista de IDs de usuario")

    if await store.get(GROUPS_COLLECTION, group_id) is None:
        raise NotFoundError("Grupo no encontrado")

    await store.update(GROUPS_COLLECTION, group_id, {
        "name": group_in.name,
        "description": group_in.description,
        "members": group_in.members,
        "updatedAt": SERVER_TIMESTAMP,
    })
    logger.info(f"Grupo {group_id} editado")
    return {"message": "Grupo editado exitosamente"}


@app.delete("/api/groups/{group_id}", response_model=schemas.MessageResponse, tags=["Groups"])
async def delete_group(group_id: str, userId: Optional[str] = None, store: FirestoreStore = Depends(get_store)):
    """Elimina un grupo. Sólo su creador puede hacerlo."""
    if not userId:
        raise ValidationError("El userId es obligatorio")

    group = await store.get(GROUPS_COLLECTION, group_id)
    if group is None:
        raise NotFoundError("Grupo no encontrado")

    if group.get("created_by") != userId:
        logger.warning(f"Acceso denegado: Usuario {userId} intentó eliminar el grupo {group_id} (no es el creador).")
        raise AuthorizationError("No tienes permisos para eliminar este grupo")

    await store.delete(GROUPS_COLLECTION, group_id)
    logger.info(f"Grupo {group_id} eliminado por {userId}")
    return {"message": "Grupo eliminado exitosamente"}


# --- Endpoints de Usuarios (administración) ---

@app.get("/api/usuarios", response_model=List[schemas.UserResponse], tags=["Users"])
async def list_users(store: FirestoreStore = Depends(get_store)):
    users = await store.find(USERS_COLLECTION)
    if not users:
        logger.info("No hay usuarios registrados")
        raise NotFoundError("No hay usuarios registrados")
    return [_serialize_user(u) for u in users]


@app.put("/api/usuarios/{user_id}", response_model=schemas.MessageResponse, tags=["Users"])
async def update_user(user_id: str, user_in: schemas.UserUpdate, store: FirestoreStore = Depends(get_store)):
    """Sobrescribe email, username y rol de una cuenta existente."""
    try:
        await store.update(USERS_COLLECTION, user_id, {
            "email": user_in.email,
            "username": user_in.username,
            "rol": user_in.rol,
        })
    except DocumentNotFound:
        raise NotFoundError("Usuario no encontrado")
    logger.info(f"Usuario {user_id} actualizado")
    return {"message": "Usuario actualizado exitosamente"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
