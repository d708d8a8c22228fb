"""Funciones de utilidad: hash de contraseñas, JWT, validación de email y manejo de fechas."""

import os
import re
import time
import logging
from datetime import date, datetime, timezone
from typing import Dict, Optional, Any

from passlib.context import CryptContext
from jose import JWTError, jwt
from dotenv import load_dotenv

# Carga variables de entorno desde .env
load_dotenv()

logger = logging.getLogger(__name__)

# --- Configuración de Seguridad ---
SECRET_KEY = os.getenv("JWT_SECRET")
if not SECRET_KEY:
    logger.warning("JWT_SECRET no está definida en las variables de entorno. Usando clave insegura por defecto para desarrollo.")
    SECRET_KEY = "clave_secreta_insegura_por_defecto_cambiar_urgentemente"

ALGORITHM = "HS256"

# El token vive 10 minutos; no hay mecanismo de refresco
ACCESS_TOKEN_EXPIRE_SECONDS = int(os.getenv("ACCESS_TOKEN_EXPIRE_SECONDS", 10 * 60))

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 10))

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS,
)

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,4}$")

SPANISH_MONTHS = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifica una contraseña plana contra un hash almacenado."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # El hash guardado no es un hash bcrypt reconocible
        logger.warning("Hash de contraseña almacenado con formato desconocido.")
        return False


def get_password_hash(password: str) -> str:
    """Genera el hash de una contraseña plana usando bcrypt."""
    return pwd_context.hash(password)


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_REGEX.match(email))


# --- Utilidades para Tokens JWT ---
def create_access_token(data: Dict, now: Optional[float] = None) -> str:
    """
    Genera un token de acceso JWT con los datos proporcionados.

    Args:
        data: Payload a incluir en el token (ej., {'uid': ..., 'email': ...}).
        now: Instante de emisión en segundos epoch; por defecto, el reloj actual.

    Returns:
        String del JWT codificado.
    """
    issued_at = int(now if now is not None else time.time())
    to_encode = data.copy()
    to_encode.update({"iat": issued_at, "exp": issued_at + ACCESS_TOKEN_EXPIRE_SECONDS})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str, now: Optional[float] = None) -> Optional[Dict]:
    """
    Decodifica y valida un token JWT.

    El token se acepta mientras el instante actual no supere 'exp'
    (el segundo exacto de expiración todavía es válido).

    Returns:
        El payload si la firma es válida y no ha expirado; None en caso contrario.
    """
    try:
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            options={"verify_exp": False, "verify_aud": False},
        )
    except JWTError as e:
        logger.warning(f"Fallo en decodificación de token: {e}")
        return None

    current = now if now is not None else time.time()
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or current > exp:
        logger.warning("Fallo en decodificación de token: El token ha expirado.")
        return None
    return payload


# --- Fechas ---
def parse_deadline(value: Any) -> Optional[datetime]:
    """
    Interpreta una fecha ISO-8601 ('2024-05-01', '2024-05-01T10:00:00Z',
    '2024-05-01T10:00:00-05:00'). Las fechas sin zona horaria se toman como UTC.
    Devuelve None si el valor no es una fecha válida.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_last_login(moment: Optional[datetime] = None) -> str:
    """Formatea un instante como '5 de octubre de 2026, 3:07:09 pm'."""
    moment = moment or datetime.now()
    hour = moment.hour % 12 or 12
    meridiem = "am" if moment.hour < 12 else "pm"
    return (
        f"{moment.day} de {SPANISH_MONTHS[moment.month - 1]} de {moment.year}, "
        f"{hour}:{moment.minute:02d}:{moment.second:02d} {meridiem}"
    )


def to_iso(value: Any) -> Any:
    """
    Convierte timestamps de Firestore (datetime) a texto ISO-8601 en UTC con
    milisegundos y sufijo 'Z'. Cualquier otro valor se devuelve sin cambios.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return value


def serialize_document(document: Dict, *fields: str) -> Dict:
    """Devuelve una copia del documento con los campos indicados normalizados a ISO."""
    result = dict(document)
    for field in fields:
        if field in result:
            result[field] = to_iso(result[field])
    return result
