"""Define las colecciones de Firestore y los valores enumerados que usan sus documentos."""

import enum

# Nombres de colección tal como existen en Firestore
USERS_COLLECTION = "users"
TASKS_COLLECTION = "task"
GROUPS_COLLECTION = "groups"

# Valor mostrado cuando un campo de usuario no existe en el documento
NOT_AVAILABLE = "No disponible"


class UserRole(str, enum.Enum):
    """Roles posibles de una cuenta."""
    EMPLOYEE = "Empleado"


class TaskCategory(str, enum.Enum):
    """Categorías aceptadas para una tarea."""
    URGENT = "Urgente"
    IMPORTANT = "Importante"
    SMALL = "Pequeña"


class TaskStatus(str, enum.Enum):
    """
    Estados de una tarea.

    Existen dos familias: la de la lista personal (Completada/Pendiente/Pospuesta)
    y la del tablero de grupo (Por hacer/En proceso/Hecho). Ambas se guardan en el
    mismo campo 'status'; cada endpoint valida contra su propia familia.
    """
    COMPLETED = "Completada"
    PENDING = "Pendiente"
    POSTPONED = "Pospuesta"
    TODO = "Por hacer"
    IN_PROGRESS = "En proceso"
    DONE = "Hecho"


LIST_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.POSTPONED})
BOARD_STATUSES = frozenset({TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.DONE})


def is_valid_category(value: str) -> bool:
    return value in {category.value for category in TaskCategory}


def is_list_status(value: str) -> bool:
    return value in {s.value for s in LIST_STATUSES}


def is_board_status(value: str) -> bool:
    return value in {s.value for s in BOARD_STATUSES}
