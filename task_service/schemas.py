"""Modelos Pydantic (schemas) para validación de datos de entrada/salida del servicio de tareas."""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Any

# Los campos de entrada son opcionales a nivel de schema: cada endpoint
# comprueba los obligatorios y responde con su propio mensaje.

# --- Schemas de Usuario ---

class UserRegister(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class UserLogin(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserUpdate(BaseModel):
    """Edición administrativa: los tres campos se sobrescriben tal cual llegan."""
    email: Optional[str] = None
    username: Optional[str] = None
    rol: Optional[str] = None


class UserResponse(BaseModel):
    id: str
    email: str
    username: str
    rol: str
    last_login: str


class LoginUser(BaseModel):
    docId: str
    # La edición administrativa puede dejar estos campos en null
    email: Optional[str] = None
    username: Optional[str] = None
    rol: Optional[str] = None
    last_login: str


class RegisterResponse(BaseModel):
    message: str
    uid: str


class LoginResponse(BaseModel):
    message: str
    token: str
    user: LoginUser


# --- Schemas de Token ---

class TokenPayload(BaseModel):
    """Payload decodificado de un token JWT válido."""
    sub: Optional[str] = None
    uid: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    iat: Optional[int] = None
    exp: Optional[int] = None


# --- Schemas de Tarea ---

class TaskCreate(BaseModel):
    category: Optional[str] = None
    deadline: Optional[str] = None
    description: Optional[str] = None
    nameTask: Optional[str] = None
    status: Optional[str] = None
    userId: Optional[str] = None
    groupName: Optional[str] = None


class TaskIdRequest(BaseModel):
    """Cuerpo de complete/pending/delete."""
    taskId: Optional[str] = None


class TaskEdit(BaseModel):
    taskId: Optional[str] = None
    category: Optional[str] = None
    deadline: Optional[str] = None
    description: Optional[str] = None
    nameTask: Optional[str] = None
    status: Optional[str] = None


class TaskStatusUpdate(BaseModel):
    status: Optional[str] = None


class TaskResponse(BaseModel):
    """Tarea con sus timestamps ya convertidos a texto ISO-8601."""
    id: str
    category: Optional[str] = None
    deadline: Optional[str] = None
    description: Optional[str] = None
    nameTask: Optional[str] = None
    status: Optional[str] = None
    userId: Optional[str] = None
    groupName: Optional[str] = None
    createdAt: Optional[str] = None

    # Los documentos antiguos pueden traer campos adicionales
    model_config = ConfigDict(extra="allow")


class TaskCreatedResponse(BaseModel):
    message: str
    id: str


# --- Schemas de Grupo ---

class GroupCreate(BaseModel):
    created_by: Optional[str] = None
    description: Optional[str] = None
    members: Optional[Any] = None
    name: Optional[str] = None


class GroupUpdate(BaseModel):
    """Reemplazo completo de nombre, descripción y miembros."""
    name: Optional[str] = None
    description: Optional[str] = None
    members: Optional[Any] = None


class GroupResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    created_by: Optional[str] = None
    members: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updatedAt: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
